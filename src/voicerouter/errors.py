"""Error taxonomy shared by adapters, sessions and the router.

Batch operations never raise these past the adapter boundary: they are turned
into `TranscriptError` data on the response. Streaming sessions report them
through `on_error` or return them inside a `SessionResult`.
"""

from __future__ import annotations

from typing import Any, Optional

ERROR_CODES = {
    "PARSE_ERROR": "PARSE_ERROR",
    "WEBSOCKET_ERROR": "WEBSOCKET_ERROR",
    "CONNECTION_ERROR": "CONNECTION_ERROR",
    "POLLING_TIMEOUT": "POLLING_TIMEOUT",
    "TRANSCRIPTION_ERROR": "TRANSCRIPTION_ERROR",
    "CONNECTION_TIMEOUT": "CONNECTION_TIMEOUT",
    "CLOSE_TIMEOUT": "CLOSE_TIMEOUT",
    "INVALID_INPUT": "INVALID_INPUT",
    "NOT_SUPPORTED": "NOT_SUPPORTED",
    "CAPABILITY_ERROR": "CAPABILITY_ERROR",
    "CONFIG_ERROR": "CONFIG_ERROR",
    "SESSION_CLOSED": "SESSION_CLOSED",
    "PROVIDER_ERROR": "PROVIDER_ERROR",
    "NO_RESULTS": "NO_RESULTS",
    "UNKNOWN_ERROR": "UNKNOWN_ERROR",
}

ERROR_MESSAGES = {
    "PARSE_ERROR": "Failed to parse response data",
    "WEBSOCKET_ERROR": "WebSocket connection error",
    "CONNECTION_ERROR": "Connection failed",
    "POLLING_TIMEOUT": "Transcription did not complete within timeout period",
    "TRANSCRIPTION_ERROR": "Transcription processing failed",
    "CONNECTION_TIMEOUT": "Connection attempt timed out",
    "CLOSE_TIMEOUT": "Provider did not acknowledge close in time",
    "INVALID_INPUT": "Invalid input provided",
    "NOT_SUPPORTED": "Operation not supported by this provider",
    "CAPABILITY_ERROR": "Requested feature not supported by this provider",
    "CONFIG_ERROR": "Provider configuration is invalid",
    "SESSION_CLOSED": "Streaming session is closed",
    "PROVIDER_ERROR": "Provider returned an error",
    "NO_RESULTS": "No transcription results available",
    "UNKNOWN_ERROR": "An unknown error occurred",
}


class VoiceRouterError(Exception):
    default_code = "UNKNOWN_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES.get(self.code, ERROR_MESSAGES["UNKNOWN_ERROR"])
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_error(self):
        from voicerouter.types import TranscriptError

        return TranscriptError(
            code=self.code,
            message=self.message,
            status_code=self.status_code,
            details=self.details,
        )


class ConfigError(VoiceRouterError):
    """Missing or invalid credentials / router configuration."""

    default_code = "CONFIG_ERROR"


class CapabilityError(VoiceRouterError):
    """A requested option needs a feature the provider does not offer."""

    default_code = "CAPABILITY_ERROR"


class UnsupportedOperationError(VoiceRouterError):
    """An operation (or mid-session update field) the provider cannot perform."""

    default_code = "NOT_SUPPORTED"


class SessionClosedError(VoiceRouterError):
    default_code = "SESSION_CLOSED"


class TransportError(VoiceRouterError):
    """Connection failure before or during a streaming session, or an HTTP transport failure."""

    default_code = "WEBSOCKET_ERROR"


class ProviderError(VoiceRouterError):
    """The provider answered with an explicit error response or error frame."""

    default_code = "PROVIDER_ERROR"


class OperationTimeoutError(VoiceRouterError):
    """Connect, close-handshake, acknowledgment, request or polling timeout."""

    default_code = "CONNECTION_TIMEOUT"


class InvalidTransitionError(VoiceRouterError):
    default_code = "UNKNOWN_ERROR"
