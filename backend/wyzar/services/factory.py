"""Service factory functions.

Singleton pattern for the keyed store and the services built on it.
Tests either replace the module globals directly or call reset_services().
"""

from wyzar.core.config import OTPPurpose, settings
from wyzar.core.database import async_session_factory
from wyzar.core.identity_provider import HttpIdentityProvider, IdentityProvider
from wyzar.core.kv_store import KeyValueStore, build_kv_store
from wyzar.services.audit_log import AuditLog
from wyzar.services.lockout_guard import LockoutGuard, LockoutPolicy
from wyzar.services.otp_manager import OTPManager, OTPPolicy
from wyzar.services.session_resolver import SessionResolver

_kv_store: KeyValueStore | None = None
_lockout_guard: LockoutGuard | None = None
_otp_manager: OTPManager | None = None
_audit_log: AuditLog | None = None
_identity_provider: IdentityProvider | None = None
_session_resolver: SessionResolver | None = None

_PURPOSES: tuple[OTPPurpose, ...] = ("registration", "login", "password-reset")


def get_kv_store() -> KeyValueStore:
    """Get or create the keyed state store singleton.

    WHY SINGLETON:
    - Lockout and passcode state must be shared by every request
    - Reuses the Redis connection pool
    """
    global _kv_store

    if _kv_store is None:
        _kv_store = build_kv_store(
            settings.kv_store_url,
            timeout_seconds=settings.kv_store_timeout_seconds,
        )
    return _kv_store


def get_lockout_guard() -> LockoutGuard:
    """Get or create the lockout guard singleton."""
    global _lockout_guard

    if _lockout_guard is None:
        _lockout_guard = LockoutGuard(
            get_kv_store(),
            LockoutPolicy(
                max_attempts=settings.lockout_max_attempts,
                window_seconds=settings.lockout_window_seconds,
                lockout_seconds=settings.lockout_duration_seconds,
            ),
        )
    return _lockout_guard


def build_otp_policies() -> tuple[OTPPolicy, dict[str, OTPPolicy]]:
    """Default policy plus per-purpose overrides from settings."""
    default = OTPPolicy(
        length=settings.otp_length,
        ttl_seconds=settings.otp_ttl_seconds,
        resend_interval_seconds=settings.otp_resend_interval_seconds,
        max_attempts=settings.otp_max_attempts,
    )
    overrides: dict[str, OTPPolicy] = {}
    for purpose in _PURPOSES:
        max_attempts = settings.otp_max_attempts_by_purpose.get(purpose)
        resend = settings.otp_resend_interval_by_purpose.get(purpose)
        if max_attempts is None and resend is None:
            continue
        overrides[purpose] = OTPPolicy(
            length=default.length,
            ttl_seconds=default.ttl_seconds,
            resend_interval_seconds=(
                resend if resend is not None else default.resend_interval_seconds
            ),
            max_attempts=max_attempts if max_attempts is not None else default.max_attempts,
        )
    return default, overrides


def get_otp_manager() -> OTPManager:
    """Get or create the passcode manager singleton."""
    global _otp_manager

    if _otp_manager is None:
        default, overrides = build_otp_policies()
        _otp_manager = OTPManager(get_kv_store(), default, policies=overrides)
    return _otp_manager


def get_audit_log() -> AuditLog:
    """Get or create the audit log singleton."""
    global _audit_log

    if _audit_log is None:
        _audit_log = AuditLog(async_session_factory)
    return _audit_log


def get_identity_provider() -> IdentityProvider:
    """Get or create the identity provider client singleton."""
    global _identity_provider

    if _identity_provider is None:
        _identity_provider = HttpIdentityProvider(
            settings.identity_provider_userinfo_url,
            timeout_seconds=settings.identity_provider_timeout_seconds,
        )
    return _identity_provider


def get_session_resolver() -> SessionResolver:
    """Get or create the session resolver singleton."""
    global _session_resolver

    if _session_resolver is None:
        _session_resolver = SessionResolver(get_identity_provider(), get_audit_log())
    return _session_resolver


async def close_services() -> None:
    """Release the keyed store connection (app shutdown)."""
    if _kv_store is not None:
        await _kv_store.close()


def reset_services() -> None:
    """Reset all singletons (for testing)."""
    global _kv_store, _lockout_guard, _otp_manager, _audit_log
    global _identity_provider, _session_resolver

    _kv_store = None
    _lockout_guard = None
    _otp_manager = None
    _audit_log = None
    _identity_provider = None
    _session_resolver = None
