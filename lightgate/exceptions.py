"""Standardized exception hierarchy for lightgate.

All exceptions carry structured context for logging. Remote failures reported
by the node are modelled as ``RemoteError``; the classified wrappers
(``TransientRemoteError``, ``PermanentRemoteError``, ``UnclassifiedRemoteError``)
are produced by the call executor once the error classifier has run.

Usage:
    from lightgate.exceptions import RemoteError

    try:
        await gateway.get_info()
    except RemoteError as e:
        logger.error("getinfo_failed", code=e.code, error=e.message)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from lightgate.lightning.domain.enums import ErrorClassification


class LightGateError(Exception):
    """Base exception for all lightgate errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Format exception with context for logging."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


class ConfigurationError(LightGateError):
    """Raised when client configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if setting:
            context["setting"] = setting
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(LightGateError):
    """Base class for failures talking to the node API."""


class GatewayConnectionError(GatewayError):
    """Raised when the node cannot be reached (connect, TLS, timeout)."""


class RemoteError(GatewayError):
    """Error object reported by the node: ``{code: int, error: str}``.

    ``message`` always holds the raw remote text so it can be classified and
    passed through verbatim.
    """

    def __init__(
        self,
        message: str,
        *,
        code: int = 0,
        status_code: int | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        context["code"] = code
        if status_code is not None:
            context["status_code"] = status_code
        kwargs["context"] = context
        super().__init__(message, **kwargs)
        self.code = code
        self.status_code = status_code


class ClassifiedRemoteError(GatewayError):
    """A ``RemoteError`` after it went through the error classifier."""

    def __init__(self, remote: RemoteError, classification: ErrorClassification) -> None:
        super().__init__(
            remote.message,
            context={"code": remote.code, "classification": str(classification)},
            original_error=remote,
        )
        self.remote = remote
        self.classification = classification


class TransientRemoteError(ClassifiedRemoteError):
    """Retryable remote failure (node syncing, too early to open channels)."""


class PermanentRemoteError(ClassifiedRemoteError):
    """Classified, non-retryable remote failure with a specific typed result."""


class UnclassifiedRemoteError(ClassifiedRemoteError):
    """Remote failure that matched no rule; raw text is passed through."""


# =============================================================================
# Stream Errors
# =============================================================================


class ProtocolViolationError(LightGateError):
    """Raised when the invoice subscription stream carries malformed content."""

    def __init__(self, message: str, *, line: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if line is not None:
            context["line"] = line[:200]
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class CancellationRequestedError(LightGateError):
    """Cooperative shutdown signal; never a failure.

    Raised by ``InvoiceStreamSession.wait_invoice`` when the session was
    released or the remote closed the stream, and when the caller's own
    cancellation event fires.
    """

    def __init__(self, message: str = "Invoice listener cancelled", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
