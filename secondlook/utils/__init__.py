"""Shared utility helpers used by the scorers."""


def half_up(x: float) -> int:
    """Round half away from zero for non-negative scores (2.5 -> 3)."""
    return int(x + 0.5) if x >= 0 else -int(-x + 0.5)


def clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))
