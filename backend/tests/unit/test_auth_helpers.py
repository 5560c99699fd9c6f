"""Tests for auth helper functions.

Password hashing and strength rules, legacy tokens, reset grants, opaque
session tokens, and cookie management.
"""

import uuid
from datetime import UTC, datetime, timedelta

import bcrypt
import jwt
import pytest
from fastapi import Response

from tests.conftest import TEST_AUTH_SECRET, TEST_PASSWORD, TEST_PASSWORD_HASH
from wyzar.core.auth import (
    DUMMY_HASH,
    clear_session_cookie,
    create_legacy_token,
    create_reset_grant,
    decode_legacy_token,
    decode_reset_grant,
    generate_session_token,
    hash_token,
    is_self_issued_token,
    set_session_cookie,
    validate_password_strength,
    verify_password,
)
from wyzar.core.config import settings
from wyzar.core.errors import SessionExpiredError, SessionInvalidError, ValidationError

_ACCOUNT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


class TestVerifyPassword:
    """Tests for verify_password()."""

    def test_matching_password(self):
        assert verify_password(TEST_PASSWORD, TEST_PASSWORD_HASH) is True

    def test_wrong_password(self):
        assert verify_password("WrongP@ss1", TEST_PASSWORD_HASH) is False

    def test_missing_hash_never_matches(self):
        """Password-less accounts compare against DUMMY_HASH and fail."""
        assert verify_password(TEST_PASSWORD, None) is False

    def test_malformed_hash_is_rejected(self):
        assert verify_password(TEST_PASSWORD, "not-a-bcrypt-hash") is False

    def test_dummy_hash_is_valid_bcrypt(self):
        """DUMMY_HASH must be checkable, or the timing defense is lost."""
        assert bcrypt.checkpw(b"anything", DUMMY_HASH) is False


class TestValidatePasswordStrength:
    """Tests for validate_password_strength()."""

    def test_valid_password_passes(self):
        validate_password_strength("Secure1!pass")

    @pytest.mark.parametrize(
        ("password", "message"),
        [
            ("Ab1!", "at least 8"),
            ("A1!" + "a" * 126, "at most 128"),
            ("12345678!", "letter"),
            ("abcdefgh!", "number"),
            ("abcdefg1", "special"),
        ],
    )
    def test_rejections(self, password, message):
        with pytest.raises(ValidationError, match=message):
            validate_password_strength(password)


class TestLegacyToken:
    """Tests for create_legacy_token() / decode_legacy_token()."""

    def test_round_trip_returns_subject_and_iat(self):
        issued = datetime.now(UTC).replace(microsecond=0) - timedelta(minutes=5)
        token = create_legacy_token(_ACCOUNT_ID, now=issued)

        account_id, issued_at = decode_legacy_token(token)

        assert account_id == _ACCOUNT_ID
        assert issued_at == issued

    def test_contains_required_claims(self):
        token = create_legacy_token(_ACCOUNT_ID)
        payload = jwt.decode(
            token,
            TEST_AUTH_SECRET,
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        for claim in ("sub", "aud", "iss", "exp", "iat"):
            assert claim in payload, f"Missing claim: {claim}"

    def test_expired_token(self):
        token = create_legacy_token(
            _ACCOUNT_ID,
            now=datetime.now(UTC) - timedelta(hours=2),
            expires_delta=timedelta(hours=1),
        )

        with pytest.raises(SessionExpiredError):
            decode_legacy_token(token)

    def test_wrong_secret(self):
        token = jwt.encode(
            {
                "sub": str(_ACCOUNT_ID),
                "aud": settings.auth_audience,
                "iss": settings.auth_issuer,
                "iat": datetime.now(UTC),
                "exp": datetime.now(UTC) + timedelta(hours=1),
            },
            "some-other-secret-that-is-also-32-characters",
            algorithm="HS256",
        )

        with pytest.raises(SessionInvalidError):
            decode_legacy_token(token)

    def test_reset_grant_is_not_a_login_token(self):
        grant = create_reset_grant(_ACCOUNT_ID)

        with pytest.raises(SessionInvalidError):
            decode_legacy_token(grant)

    def test_non_uuid_subject(self):
        token = jwt.encode(
            {
                "sub": "not-a-uuid",
                "aud": settings.auth_audience,
                "iss": settings.auth_issuer,
                "iat": datetime.now(UTC),
                "exp": datetime.now(UTC) + timedelta(hours=1),
            },
            TEST_AUTH_SECRET,
            algorithm="HS256",
        )

        with pytest.raises(SessionInvalidError):
            decode_legacy_token(token)


class TestResetGrant:
    """Tests for create_reset_grant() / decode_reset_grant()."""

    def test_round_trip(self):
        account_id, _ = decode_reset_grant(create_reset_grant(_ACCOUNT_ID))

        assert account_id == _ACCOUNT_ID

    def test_issue_time_keeps_microseconds(self):
        issued = datetime.now(UTC).replace(microsecond=123_456) - timedelta(seconds=5)

        _, issued_at = decode_reset_grant(create_reset_grant(_ACCOUNT_ID, now=issued))

        assert issued_at == issued

    def test_login_token_is_not_a_grant(self):
        with pytest.raises(SessionInvalidError):
            decode_reset_grant(create_legacy_token(_ACCOUNT_ID))

    def test_expired_grant(self):
        grant = create_reset_grant(
            _ACCOUNT_ID,
            now=datetime.now(UTC)
            - timedelta(seconds=settings.password_reset_grant_ttl_seconds + 60),
        )

        with pytest.raises(SessionExpiredError):
            decode_reset_grant(grant)


class TestIsSelfIssuedToken:
    """is_self_issued_token() ignores claims, checks only the signature."""

    def test_expired_legacy_token_is_ours(self):
        token = create_legacy_token(
            _ACCOUNT_ID,
            expires_delta=timedelta(minutes=1),
            now=datetime.now(UTC) - timedelta(hours=1),
        )

        assert is_self_issued_token(token) is True

    def test_reset_grant_is_ours(self):
        assert is_self_issued_token(create_reset_grant(_ACCOUNT_ID)) is True

    def test_foreign_signature_is_not_ours(self):
        token = jwt.encode(
            {"sub": "someone"},
            "some-other-secret-that-is-also-32-characters",
            algorithm="HS256",
        )

        assert is_self_issued_token(token) is False

    def test_opaque_value_is_not_ours(self):
        assert is_self_issued_token("not-a-jwt") is False


class TestSessionTokens:
    """Tests for generate_session_token() / hash_token()."""

    def test_hash_is_sha256_hex(self):
        digest = hash_token("abc")

        assert len(digest) == 64
        assert digest == hash_token("abc")

    def test_generated_token_matches_hash(self):
        token, token_hash = generate_session_token()

        assert hash_token(token) == token_hash
        assert token != token_hash

    def test_tokens_are_unique(self):
        assert generate_session_token()[0] != generate_session_token()[0]


class TestSessionCookie:
    """Tests for set_session_cookie() / clear_session_cookie()."""

    def test_cookie_is_httponly(self):
        response = Response()

        set_session_cookie(response, "plain-token")

        header = response.headers["set-cookie"]
        assert f"{settings.session_cookie_name}=plain-token" in header
        assert "HttpOnly" in header
        assert "Path=/" in header
        assert f"Max-Age={settings.session_ttl_seconds}" in header

    def test_clear_expires_cookie(self):
        response = Response()

        clear_session_cookie(response)

        header = response.headers["set-cookie"]
        assert header.startswith(f"{settings.session_cookie_name}=")
        assert "Max-Age=0" in header
