"""Tests for the security audit log: redaction, persistence, and queries."""

import uuid
from datetime import timedelta

import pytest

from wyzar.services.audit_log import (
    REDACTED,
    AuditEventKind,
    AuditOutcome,
    is_sensitive_key,
    redact,
)


class TestIsSensitiveKey:
    """Key-name denylist matching."""

    @pytest.mark.parametrize(
        "key",
        [
            "password",
            "new_password",
            "resetToken",
            "session-token",
            "otp",
            "otp_code",
            "pin",
            "card_number",
            "cardNumber",
            "API-Key",
            "client_secret",
            "cvv",
        ],
    )
    def test_sensitive_keys_match(self, key):
        assert is_sensitive_key(key) is True

    @pytest.mark.parametrize(
        "key",
        ["email", "pinned", "tokenizer", "card_type", "purpose", "attempts_left"],
    )
    def test_ordinary_keys_do_not_match(self, key):
        assert is_sensitive_key(key) is False


class TestRedact:
    """redact() recursive masking."""

    def test_masks_top_level_secret(self):
        assert redact({"password": "hunter2", "email": "a@b.c"}) == {
            "password": REDACTED,
            "email": "a@b.c",
        }

    def test_masks_nested_dicts_and_lists(self):
        payload = {"items": [{"card_number": "4111", "amount": 5}], "meta": {"otp": "1"}}

        assert redact(payload) == {
            "items": [{"card_number": REDACTED, "amount": 5}],
            "meta": {"otp": REDACTED},
        }

    def test_converts_uuid_and_enum_to_string(self):
        account_id = uuid.uuid4()

        result = redact({"account": account_id, "kind": AuditEventKind.LOGOUT})

        assert result == {"account": str(account_id), "kind": "LOGOUT"}

    def test_does_not_mutate_input(self):
        payload = {"password": "hunter2"}
        redact(payload)
        assert payload == {"password": "hunter2"}


class TestAuditLogRecord:
    """AuditLog.record() persistence."""

    async def test_record_is_persisted_with_redacted_payload(self, audit_log, clock):
        account_id = uuid.uuid4()

        await audit_log.record(
            AuditEventKind.LOGIN_FAILURE,
            outcome=AuditOutcome.FAILURE,
            account_id=account_id,
            identifier="ann@example.com",
            ip_address="10.0.0.1",
            payload={"password": "wrong", "attempts_left": 2},
        )

        entries, total = await audit_log.query()
        assert total == 1
        entry = entries[0]
        assert entry.event_kind == "LOGIN_FAILURE"
        assert entry.outcome == "failure"
        assert entry.account_id == account_id
        assert entry.identifier == "ann@example.com"
        assert entry.payload == {"password": REDACTED, "attempts_left": 2}
        assert entry.occurred_on == clock().date()

    async def test_default_outcome_is_success(self, audit_log):
        entry = await audit_log.record(AuditEventKind.LOGOUT)

        assert entry.outcome == "success"
        assert entry.payload == {}


class TestAuditLogQuery:
    """AuditLog.query() filters and ordering."""

    async def test_newest_first(self, audit_log, clock):
        await audit_log.record(AuditEventKind.LOGIN_SUCCESS)
        clock.advance(5)
        await audit_log.record(AuditEventKind.LOGOUT)

        entries, _ = await audit_log.query()

        assert [e.event_kind for e in entries] == ["LOGOUT", "LOGIN_SUCCESS"]

    async def test_filters_by_event_kind(self, audit_log):
        await audit_log.record(AuditEventKind.LOGIN_SUCCESS)
        await audit_log.record(AuditEventKind.LOGIN_FAILURE)
        await audit_log.record(AuditEventKind.LOGIN_FAILURE)

        entries, total = await audit_log.query(event_kind="LOGIN_FAILURE")

        assert total == 2
        assert all(e.event_kind == "LOGIN_FAILURE" for e in entries)

    async def test_filters_by_time_range(self, audit_log, clock):
        start = clock()
        await audit_log.record(AuditEventKind.LOGIN_SUCCESS)
        clock.advance(3600)
        await audit_log.record(AuditEventKind.LOGIN_FAILURE)
        clock.advance(3600)
        await audit_log.record(AuditEventKind.LOGOUT)

        entries, total = await audit_log.query(
            start=start + timedelta(minutes=30),
            end=start + timedelta(minutes=90),
        )

        assert total == 1
        assert entries[0].event_kind == "LOGIN_FAILURE"

    async def test_pagination_limit_and_offset(self, audit_log, clock):
        for _ in range(5):
            await audit_log.record(AuditEventKind.OTP_ISSUED)
            clock.advance(1)

        page, total = await audit_log.query(limit=2, offset=2)

        assert total == 5
        assert len(page) == 2
