"""
test_jobber_webhook.py — Webhook signature check and payload readers

Called by: pytest
Depends on: secondlook.services.jobber_webhook
"""

import base64
from datetime import datetime, timedelta, timezone

import pytest

from secondlook.models import ConnectionEvent, OAuthConnection
from secondlook.services.credential_service import upsert_connection
from secondlook.services.jobber_webhook import (
    handle_jobber_event,
    read_account_id,
    read_event_type,
    sign,
    verify_signature,
)

SECRET = "whsec-test"
BODY = b'{"topic":"APP_DISCONNECT","accountId":"acct-1"}'


class TestVerifySignature:
    def test_hex(self):
        assert verify_signature(BODY, sign(BODY, SECRET).hex(), SECRET) is True

    def test_base64(self):
        assert verify_signature(BODY, base64.b64encode(sign(BODY, SECRET)).decode(), SECRET) is True

    def test_wrong_secret(self):
        assert verify_signature(BODY, sign(BODY, "other").hex(), SECRET) is False

    def test_tampered_body(self):
        assert verify_signature(BODY + b" ", sign(BODY, SECRET).hex(), SECRET) is False

    @pytest.mark.parametrize("signature", ["", "not base64!", "zz" * 32])
    def test_garbage(self, signature):
        assert verify_signature(BODY, signature, SECRET) is False

    def test_no_secret(self):
        assert verify_signature(BODY, sign(BODY, "").hex(), "") is False


class TestReaders:
    @pytest.mark.parametrize("payload", [
        {"topic": "APP_DISCONNECT"},
        {"type": "APP_DISCONNECT"},
        {"event": {"type": "APP_DISCONNECT"}},
        {"event": {"topic": "APP_DISCONNECT"}},
    ])
    def test_event_type(self, payload):
        assert read_event_type(payload) == "APP_DISCONNECT"

    def test_event_type_missing(self):
        assert read_event_type({"event": "flat"}) is None

    @pytest.mark.parametrize("payload", [
        {"accountId": "a1"},
        {"account_id": "a1"},
        {"jobberAccountId": "a1"},
        {"event": {"data": {"accountId": "a1"}}},
        {"data": {"account_id": "a1"}},
        {"data": {"account": {"id": "a1"}}},
    ])
    def test_account_id(self, payload):
        assert read_account_id(payload) == "a1"

    def test_account_id_missing(self):
        assert read_account_id({"data": {}}) is None


def _connect(db_session, installation_id, account="acct-1"):
    upsert_connection(
        db_session, installation_id, "jobber",
        access_token="a", refresh_token="r",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        external_account_id=account,
    )


class TestHandleEvent:
    def test_disconnect(self, db_session, installation_id):
        _connect(db_session, installation_id)
        assert handle_jobber_event({"topic": "APP_DISCONNECT", "accountId": "acct-1"}, db_session) == installation_id
        assert db_session.query(OAuthConnection).count() == 0
        event = db_session.query(ConnectionEvent).one()
        assert event.phase == "webhook_disconnect"
        assert event.installation_id == installation_id

    def test_other_installation_untouched(self, db_session, installation_id):
        _connect(db_session, installation_id)
        _connect(db_session, "install-other", account="acct-2")
        handle_jobber_event({"topic": "APP_DISCONNECT", "accountId": "acct-2"}, db_session)
        [conn] = db_session.query(OAuthConnection).all()
        assert conn.installation_id == installation_id

    def test_ignored_topic(self, db_session, installation_id):
        _connect(db_session, installation_id)
        assert handle_jobber_event({"topic": "INVOICE_CREATE", "accountId": "acct-1"}, db_session) is None
        assert db_session.query(OAuthConnection).count() == 1
        assert db_session.query(ConnectionEvent).count() == 0

    def test_missing_account(self, db_session):
        assert handle_jobber_event({"topic": "APP_DISCONNECT"}, db_session) is None
