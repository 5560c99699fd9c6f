"""Tests for outbound passcode delivery (Resend email, SMS gateway)."""

from unittest.mock import patch

import httpx
import pytest

from wyzar.core.email import send_passcode_email
from wyzar.core.errors import DeliveryError
from wyzar.core.sms import format_phone_number, normalize_identifier, send_passcode_sms

_REAL_ASYNC_CLIENT = httpx.AsyncClient


def _mock_client(handler):
    """Patch target returning a real AsyncClient over a MockTransport."""
    transport = httpx.MockTransport(handler)

    def _factory(*args, **kwargs):
        return _REAL_ASYNC_CLIENT(transport=transport)

    return _factory


class TestFormatPhoneNumber:
    """Tests for format_phone_number()."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("0771234567", "+263771234567"),
            ("771234567", "+263771234567"),
            ("077 123-4567", "+263771234567"),
            ("+27821234567", "+27821234567"),
        ],
    )
    def test_normalization(self, raw, expected):
        assert format_phone_number(raw) == expected


class TestNormalizeIdentifier:
    """Tests for normalize_identifier()."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("  Ann@Example.COM ", "ann@example.com"),
            ("0771234567", "+263771234567"),
            (" +263771234567", "+263771234567"),
        ],
    )
    def test_canonical_form(self, raw, expected):
        assert normalize_identifier(raw) == expected


class TestSendPasscodeEmail:
    """Tests for send_passcode_email()."""

    async def test_posts_code_to_resend(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"id": "email-1"})

        with patch("wyzar.core.email.httpx.AsyncClient", _mock_client(handler)):
            await send_passcode_email(
                to_email="ann@example.com", code="123456", purpose="registration"
            )

        assert len(captured) == 1
        body = captured[0].content.decode()
        assert "ann@example.com" in body
        assert "123456" in body
        assert "Verify Your WyZar Account" in body

    async def test_reset_wording(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={})

        with patch("wyzar.core.email.httpx.AsyncClient", _mock_client(handler)):
            await send_passcode_email(
                to_email="ann@example.com", code="654321", purpose="password-reset"
            )

        assert "password reset code" in captured[0].content.decode()

    async def test_provider_error_raises_delivery_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"message": "invalid from"})

        with (
            patch("wyzar.core.email.httpx.AsyncClient", _mock_client(handler)),
            pytest.raises(DeliveryError) as exc_info,
        ):
            await send_passcode_email(
                to_email="ann@example.com", code="123456", purpose="login"
            )

        assert exc_info.value.channel == "email"

    async def test_network_error_raises_delivery_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with (
            patch("wyzar.core.email.httpx.AsyncClient", _mock_client(handler)),
            pytest.raises(DeliveryError),
        ):
            await send_passcode_email(
                to_email="ann@example.com", code="123456", purpose="login"
            )


class TestSendPasscodeSms:
    """Tests for send_passcode_sms()."""

    async def test_posts_normalized_number(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(201, json={"SMSMessageData": {}})

        with patch("wyzar.core.sms.httpx.AsyncClient", _mock_client(handler)):
            await send_passcode_sms(to_phone="0771234567", code="123456", purpose="login")

        request = captured[0]
        body = request.content.decode()
        assert "%2B263771234567" in body
        assert "123456" in body
        assert "apikey" in request.headers

    async def test_gateway_error_raises_delivery_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="bad key")

        with (
            patch("wyzar.core.sms.httpx.AsyncClient", _mock_client(handler)),
            pytest.raises(DeliveryError) as exc_info,
        ):
            await send_passcode_sms(to_phone="0771234567", code="123456", purpose="login")

        assert exc_info.value.channel == "sms"
