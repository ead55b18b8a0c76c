from __future__ import annotations

from typing import Dict, Optional


class BackendError(RuntimeError):
    """Base error for the backend data-access layer."""


class FetchTimeoutError(BackendError):
    """Primary path did not settle before its deadline. Triggers the fallback."""


class ConnectionFailedError(BackendError):
    """Request failed at the transport level without an HTTP answer."""


class HttpError(BackendError):
    """Non-2xx answer from either path; keeps status and raw body for diagnostics."""

    def __init__(self, status: int, body: str = "") -> None:
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status
        self.body = body


class UnauthorizedError(BackendError):
    """Write without a usable credential, or 401 after one refresh and retry."""


class RefreshError(BackendError):
    """Session refresh could not proceed."""


class NoRefreshTokenError(RefreshError):
    """No stored refresh token to refresh with."""


class DecodeError(BackendError):
    """Backend payload did not match the expected record schema."""


class NotificationDeliveryError(BackendError):
    """All delivery attempts for an outbound notification failed."""

    def __init__(self, message: str, *, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.details = details


class CheckoutValidationError(BackendError):
    """Client-side form validation failed; maps field name to message."""

    def __init__(self, errors: Dict[str, str]) -> None:
        fields = ", ".join(sorted(errors))
        super().__init__(f"Invalid checkout fields: {fields}")
        self.errors = errors


__all__ = [
    "BackendError",
    "FetchTimeoutError",
    "ConnectionFailedError",
    "HttpError",
    "UnauthorizedError",
    "RefreshError",
    "NoRefreshTokenError",
    "DecodeError",
    "NotificationDeliveryError",
    "CheckoutValidationError",
]
