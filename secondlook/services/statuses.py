"""Canonical status vocabularies and their connector aliases.

Each connector names statuses its own way ("Approved", "won", "canceled",
"in_progress"). Normalizers map them onto these fixed sets; anything not
listed becomes "unknown".
"""

ESTIMATE_STATUSES = (
    "draft",
    "sent",
    "accepted",
    "declined",
    "expired",
    "cancelled",
    "converted",
    "unknown",
)
MEANINGFUL_ESTIMATE_STATUSES = frozenset({"sent", "accepted", "converted"})

INVOICE_STATUSES = (
    "draft",
    "sent",
    "void",
    "paid",
    "unpaid",
    "overdue",
    "refunded",
    "partial",
    "unknown",
)

JOB_STATUSES = ("active", "completed", "cancelled", "archived", "converted", "unknown")

PAYMENT_TYPES = ("card", "cash", "check", "bank_transfer", "other", "unknown")

_ESTIMATE_ALIASES = {
    "closed": "accepted",
    "approved": "accepted",
    "won": "converted",
    "canceled": "cancelled",
    "awaiting_response": "sent",
    "changes_requested": "sent",
    "rejected": "declined",
    "lost": "declined",
}

_INVOICE_ALIASES = {
    "voided": "void",
    "partially_paid": "partial",
    "partial_payment": "partial",
    "partially_paid_off": "partial",
    "past_due": "overdue",
    "awaiting_payment": "unpaid",
    "open": "unpaid",
}

_JOB_ALIASES = {
    "scheduled": "active",
    "requires_action": "active",
    "action_required": "active",
    "in_progress": "active",
    "inprogress": "active",
    "open": "active",
    "done": "completed",
    "finished": "completed",
    "canceled": "cancelled",
}

_PAYMENT_ALIASES = {
    "credit_card": "card",
    "debit_card": "card",
    "credit": "card",
    "debit": "card",
    "cheque": "check",
    "ach": "bank_transfer",
    "eft": "bank_transfer",
    "wire": "bank_transfer",
    "bank": "bank_transfer",
}


def _key(raw) -> str:
    if raw is None:
        return ""
    return str(raw).strip().lower().replace("-", "_").replace(" ", "_")


def _canonical(raw, allowed: tuple[str, ...], aliases: dict[str, str]) -> str:
    key = _key(raw)
    if key in allowed:
        return key
    return aliases.get(key, "unknown")


def normalize_estimate_status(raw) -> str:
    return _canonical(raw, ESTIMATE_STATUSES, _ESTIMATE_ALIASES)


def normalize_invoice_status(raw) -> str:
    return _canonical(raw, INVOICE_STATUSES, _INVOICE_ALIASES)


def normalize_job_status(raw) -> str:
    return _canonical(raw, JOB_STATUSES, _JOB_ALIASES)


def normalize_payment_type(raw) -> str:
    return _canonical(raw, PAYMENT_TYPES, _PAYMENT_ALIASES)


def is_meaningful(status: str) -> bool:
    return status in MEANINGFUL_ESTIMATE_STATUSES
