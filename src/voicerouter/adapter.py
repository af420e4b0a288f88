"""Provider adapter contract.

Every provider is one `ProviderAdapter` subclass configured by a read-only
`ProviderProfile`. Batch operations never raise: failures come back as
`success=False` data. `transcribe_stream` raises only while validating,
before a session exists.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional, Tuple, Type

import httpx
from loguru import logger

from voicerouter.audio import bytes_per_second
from voicerouter.config import ProviderConfig, Timeouts
from voicerouter.errors import (
    CapabilityError,
    ConfigError,
    OperationTimeoutError,
    ProviderError,
    TransportError,
    UnsupportedOperationError,
    VoiceRouterError,
)
from voicerouter.session import StreamingSession, WireProtocol
from voicerouter.transport import Transport, WebSocketTransport
from voicerouter.types import (
    FEATURE_FIELDS,
    AudioFileResponse,
    AudioInput,
    DeleteTranscriptResponse,
    FieldPolicy,
    ListTranscriptsOptions,
    ListTranscriptsResponse,
    ProviderProfile,
    StreamingOptions,
    TranscribeOptions,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
)

TransportFactory = Callable[..., Transport]


def error_from_exception(exc: BaseException, label: str = "Provider") -> VoiceRouterError:
    if isinstance(exc, VoiceRouterError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        try:
            details: Any = response.json()
        except ValueError:
            details = response.text
        return ProviderError(
            f"{label} API error: {response.status_code} - {response.text[:500]}",
            status_code=response.status_code,
            details=details,
        )
    if isinstance(exc, httpx.TimeoutException):
        return OperationTimeoutError(f"{label} request timed out", code="CONNECTION_TIMEOUT", details=exc)
    if isinstance(exc, httpx.HTTPError):
        return TransportError(f"{label} request failed: {exc}", code="CONNECTION_ERROR", details=exc)
    return ProviderError(f"Failed to parse {label} response: {exc}", code="PARSE_ERROR", details=exc)


def _requested(value: Any) -> bool:
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value) > 0
    return bool(value)


def ws_url(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://") :]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://") :]
    return base_url


class ProviderAdapter:
    """Base class for the provider variants.

    Subclasses set `PROFILE`, `label` and `default_base_url`, implement the
    `_`-prefixed hooks for the operations their capabilities allow and, for
    streaming providers, point `protocol_class` at their `WireProtocol`.
    """

    PROFILE: ProviderProfile
    label = "Provider"
    default_base_url = ""
    protocol_class: Optional[Type[WireProtocol]] = None

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        *,
        profile: Optional[ProviderProfile] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.profile = profile or self.PROFILE
        self._config: Optional[ProviderConfig] = None
        self._http_transport = http_transport
        self._transport_factory = transport_factory or WebSocketTransport
        if config is not None:
            self.initialize(config)

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def capabilities(self):
        return self.profile.capabilities

    def initialize(self, config: ProviderConfig) -> None:
        config.validate(self.name)
        self._config = config
        logger.debug(f"[VoiceRouter.{self.label}] Initialized")

    @property
    def config(self) -> ProviderConfig:
        self._ensure_initialized()
        return self._config

    @property
    def timeouts(self) -> Timeouts:
        return self.config.timeouts()

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.default_base_url).rstrip("/")

    def check_options(self, options: Any, *, streaming: bool = False) -> Tuple[str, ...]:
        """Apply the per-field policy to the requested features.

        Returns the names of ignored fields and raises `CapabilityError`
        naming every rejected one. The outcome depends only on the profile
        and the field, never on the rest of the request.
        """
        ignored = []
        rejected = []
        for feature in FEATURE_FIELDS:
            if not _requested(getattr(options, feature, None)):
                continue
            supported = self.capabilities.supports(feature)
            if streaming and supported:
                supported = feature in self.profile.streaming_features
            if supported:
                continue
            if self.profile.policy_for(feature) is FieldPolicy.IGNORE:
                ignored.append(feature)
            else:
                rejected.append(feature)
        if rejected:
            mode = "streaming" if streaming else "batch"
            raise CapabilityError(
                f"{self.name} {mode} does not support: {', '.join(rejected)}",
                details={"fields": rejected},
            )
        if ignored:
            logger.warning(f"[VoiceRouter.{self.label}] Ignoring unsupported options: {ignored}")
        return tuple(ignored)

    # Batch

    async def transcribe(
        self, audio: AudioInput, options: Optional[TranscribeOptions] = None
    ) -> UnifiedTranscriptResponse:
        options = options or TranscribeOptions()
        try:
            self._ensure_initialized()
            ignored = self.check_options(options)
            response = await self._transcribe(audio, options)
            if (
                response.success
                and options.wait_for_completion
                and not options.webhook_url
                and response.data.status in (TranscriptionStatus.QUEUED, TranscriptionStatus.PROCESSING)
            ):
                response = await self._poll(response.data.id)
        except Exception as e:
            return self._failed(e)
        response.ignored_options = ignored
        return response

    async def get_transcript(self, transcript_id: str) -> UnifiedTranscriptResponse:
        try:
            self._ensure_initialized()
            return await self._get_transcript(transcript_id)
        except Exception as e:
            return self._failed(e)

    async def list_transcripts(
        self, options: Optional[ListTranscriptsOptions] = None
    ) -> ListTranscriptsResponse:
        try:
            self._require_capability("list_transcripts", "listing transcripts")
            self._ensure_initialized()
            return await self._list_transcripts(options or ListTranscriptsOptions())
        except Exception as e:
            return ListTranscriptsResponse(
                success=False, provider=self.name, error=self._error(e).to_error()
            )

    async def delete_transcript(self, transcript_id: str) -> DeleteTranscriptResponse:
        try:
            self._require_capability("delete_transcript", "deleting transcripts")
            self._ensure_initialized()
            await self._delete_transcript(transcript_id)
        except Exception as e:
            return DeleteTranscriptResponse(
                success=False, provider=self.name, error=self._error(e).to_error()
            )
        return DeleteTranscriptResponse(success=True, provider=self.name)

    async def get_audio_file(self, transcript_id: str) -> AudioFileResponse:
        try:
            self._require_capability("get_audio_file", "downloading audio")
            self._ensure_initialized()
            return await self._get_audio_file(transcript_id)
        except Exception as e:
            return AudioFileResponse(success=False, provider=self.name, error=self._error(e).to_error())

    # Streaming

    async def transcribe_stream(
        self, options: Optional[StreamingOptions] = None, callbacks: Any = None
    ) -> StreamingSession:
        """Validate, then start connecting and return the session handle.

        The handle comes back once the handshake has begun; audio sent
        before the connection opens is buffered.
        """
        if not self.capabilities.streaming or self.protocol_class is None:
            raise UnsupportedOperationError(f"{self.name} does not support streaming transcription")
        config = self.config
        options = options or StreamingOptions()
        self.check_options(options, streaming=True)
        protocol = self._make_protocol(options)

        max_bytes = int(
            bytes_per_second(options.sample_rate, options.channels, options.encoding)
            * config.buffer_seconds
        )
        session = StreamingSession(
            provider=self.name,
            protocol=protocol,
            connector=lambda: self._open_stream(options),
            options=options,
            callbacks=callbacks,
            timeouts=config.timeouts(),
            max_buffered_bytes=max_bytes,
        )
        session.start()
        await asyncio.sleep(0)
        return session

    # Provider hooks

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        raise NotImplementedError

    async def _get_transcript(self, transcript_id: str) -> UnifiedTranscriptResponse:
        raise UnsupportedOperationError(
            f"{self.name} returns results synchronously; keep the response from transcribe()"
        )

    async def _list_transcripts(self, options: ListTranscriptsOptions) -> ListTranscriptsResponse:
        raise UnsupportedOperationError(f"{self.name} does not support listing transcripts")

    async def _delete_transcript(self, transcript_id: str) -> None:
        raise UnsupportedOperationError(f"{self.name} does not support deleting transcripts")

    async def _get_audio_file(self, transcript_id: str) -> AudioFileResponse:
        raise UnsupportedOperationError(f"{self.name} does not support downloading audio")

    def _make_protocol(self, options: StreamingOptions) -> WireProtocol:
        return self.protocol_class(options)

    def _stream_url(self, options: StreamingOptions) -> str:
        raise NotImplementedError

    def _stream_headers(self) -> Dict[str, str]:
        return {}

    async def _open_stream(self, options: StreamingOptions) -> Transport:
        return self._transport_factory(self._stream_url(options), self._stream_headers(), name=self.label)

    # HTTP

    def _auth_headers(self) -> Dict[str, str]:
        return {}

    def _client(self, authenticated: bool = True) -> httpx.AsyncClient:
        headers = dict(self.config.headers)
        if authenticated:
            headers.update(self._auth_headers())
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeouts.http,
            transport=self._http_transport,
        )

    async def _request(self, method: str, url: str, *, authenticated: bool = True, **kwargs) -> httpx.Response:
        async with self._client(authenticated) as client:
            logger.debug(f"[VoiceRouter.{self.label}] {method} {url}")
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

    async def _poll(self, transcript_id: str) -> UnifiedTranscriptResponse:
        timeouts = self.timeouts
        for _ in range(timeouts.poll_attempts):
            result = await self._get_transcript(transcript_id)
            if not result.success or result.data.status is TranscriptionStatus.COMPLETED:
                return result
            await asyncio.sleep(timeouts.poll_interval)
        raise OperationTimeoutError(
            f"Transcription did not complete after {timeouts.poll_attempts} attempts",
            code="POLLING_TIMEOUT",
            details={"id": transcript_id},
        )

    # Helpers

    def _ensure_initialized(self) -> None:
        if self._config is None:
            raise ConfigError(f"Adapter {self.name} is not initialized. Call initialize() first.")

    def _require_capability(self, flag: str, what: str) -> None:
        if not self.capabilities.supports(flag):
            raise UnsupportedOperationError(f"{self.name} does not support {what}")

    def _error(self, exc: BaseException) -> VoiceRouterError:
        error = error_from_exception(exc, self.label)
        logger.error(f"[VoiceRouter.{self.label}] {error}")
        return error

    def _failed(self, exc: BaseException) -> UnifiedTranscriptResponse:
        error = self._error(exc)
        raw = error.details if isinstance(exc, httpx.HTTPStatusError) else None
        return UnifiedTranscriptResponse.failed(self.name, error.to_error(), raw=raw)
