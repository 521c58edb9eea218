"""Domain-specific exception types for chatrelay."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class ChatRelayError(Exception):
    """Base exception for chatrelay domain errors."""

    message: str
    code: str = "chatrelay_error"
    details: Dict[str, Any] | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.details is None:
            self.details = {}


class ConfigError(ChatRelayError):
    """Error raised for configuration failures."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="config_error", details=details)


class MissingSenderError(ChatRelayError):
    """Error raised when no send function is wired for a provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            message=f"no send function configured for provider '{provider}'",
            code="missing_sender",
            details={"provider": provider},
        )


class SendError(ChatRelayError):
    """Error raised when a platform send call fails."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status: int | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        details.setdefault("provider", provider)
        if status is not None:
            details.setdefault("status", status)
        self.provider = provider
        self.status = status
        super().__init__(message=message, code="send_error", details=details)


class GatewayError(ChatRelayError):
    """Base error for a failed gateway call."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "gateway_error",
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class GatewayRequestError(GatewayError):
    """Error returned by the gateway for a request (``ok: false``)."""

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if error_code:
            details.setdefault("error_code", error_code)
        self.error_code = error_code
        super().__init__(message, code="gateway_request_error", details=details)


class GatewayClosedError(GatewayError):
    """The gateway connection closed before the request completed."""

    def __init__(self, message: str, *, close_code: int, reason: str) -> None:
        self.close_code = close_code
        self.reason = reason
        super().__init__(
            message,
            code="gateway_closed",
            details={"close_code": close_code, "reason": reason},
        )


class GatewayTimeoutError(GatewayError):
    """The gateway call did not settle within its timeout."""

    def __init__(self, message: str, *, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(
            message,
            code="gateway_timeout",
            details={"timeout_ms": timeout_ms},
        )
