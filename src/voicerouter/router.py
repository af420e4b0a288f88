"""Provider selection and the single facade callers talk to.

The router does no protocol work. It resolves one registered adapter per
call and forwards to it. The round-robin cursor is the only state shared
between concurrent calls and is advanced under a lock.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from loguru import logger

from voicerouter.adapter import ProviderAdapter
from voicerouter.config import ProviderConfig, providers_from_env, router_settings_from_env
from voicerouter.errors import ConfigError
from voicerouter.providers import create_adapter
from voicerouter.session import StreamingSession
from voicerouter.types import (
    AudioFileResponse,
    AudioInput,
    DeleteTranscriptResponse,
    ListTranscriptsOptions,
    ListTranscriptsResponse,
    ProviderCapabilities,
    StreamingOptions,
    TranscribeOptions,
    UnifiedTranscriptResponse,
)


class RoutingStrategy(str, Enum):
    EXPLICIT = "explicit"
    DEFAULT = "default"
    ROUND_ROBIN = "round-robin"


ProviderSpec = Union[ProviderConfig, ProviderAdapter]


class VoiceRouter:
    """Dispatches calls to one of several configured provider adapters.

    Strategies:
        - ``explicit``: every call must name its provider.
        - ``default``: a named provider wins, otherwise ``default_provider``,
          otherwise the first registered one.
        - ``round-robin``: a named provider wins, otherwise providers are
          taken in registration order, one step per call whatever the
          outcome of the previous call.
    """

    def __init__(
        self,
        providers: Optional[Mapping[str, ProviderSpec]] = None,
        default_provider: Optional[str] = None,
        strategy: Union[RoutingStrategy, str] = RoutingStrategy.DEFAULT,
        **adapter_kwargs: Any,
    ):
        try:
            self.strategy = RoutingStrategy(strategy)
        except ValueError:
            raise ConfigError(
                f"Unknown routing strategy '{strategy}'. "
                f"Use one of: {', '.join(s.value for s in RoutingStrategy)}"
            )
        self._adapters: Dict[str, ProviderAdapter] = {}
        self._adapter_kwargs = adapter_kwargs
        self._cursor = 0
        self._lock = threading.Lock()

        for name, spec in (providers or {}).items():
            self.register_adapter(name, spec)

        if default_provider is not None and default_provider not in self._adapters:
            raise ConfigError(f"Default provider '{default_provider}' is not configured")
        self.default_provider = default_provider

    @classmethod
    def from_env(cls, **kwargs: Any) -> "VoiceRouter":
        """Build a router from ``*_API_KEY`` variables (and a `.env` file if present)."""
        settings = router_settings_from_env()
        providers = providers_from_env()
        if not providers:
            raise ConfigError("No provider API keys found in the environment")
        return cls(
            providers,
            default_provider=kwargs.pop("default_provider", settings["default_provider"]),
            strategy=kwargs.pop("strategy", settings["strategy"] or RoutingStrategy.DEFAULT),
            **kwargs,
        )

    # Registry

    def register_adapter(self, name: str, spec: ProviderSpec) -> ProviderAdapter:
        if isinstance(spec, ProviderAdapter):
            adapter = spec
        else:
            adapter = create_adapter(name, spec, **self._adapter_kwargs)
        with self._lock:
            self._adapters[name] = adapter
        logger.debug(f"[VoiceRouter] Registered provider {name}")
        return adapter

    def get_adapter(self, name: str) -> ProviderAdapter:
        try:
            return self._adapters[name]
        except KeyError:
            raise ConfigError(
                f"Provider '{name}' is not registered. Registered: {', '.join(self._adapters) or 'none'}"
            )

    def registered_providers(self) -> List[str]:
        return list(self._adapters)

    def get_provider_capabilities(self, name: str) -> ProviderCapabilities:
        return self.get_adapter(name).capabilities

    def select_provider(self, provider: Optional[str] = None) -> str:
        if not self._adapters:
            raise ConfigError("No providers registered")
        if provider is not None:
            self.get_adapter(provider)
            return provider
        if self.strategy is RoutingStrategy.EXPLICIT:
            raise ConfigError("Provider must be specified when using the explicit strategy")
        if self.strategy is RoutingStrategy.ROUND_ROBIN:
            with self._lock:
                names = list(self._adapters)
                selected = names[self._cursor % len(names)]
                self._cursor = (self._cursor + 1) % len(names)
            return selected
        return self.default_provider or next(iter(self._adapters))

    def _route(self, provider: Optional[str]) -> ProviderAdapter:
        name = self.select_provider(provider)
        logger.debug(f"[VoiceRouter] Routing to {name}")
        return self._adapters[name]

    # Facade

    async def transcribe(
        self,
        audio: AudioInput,
        options: Optional[TranscribeOptions] = None,
        *,
        provider: Optional[str] = None,
    ) -> UnifiedTranscriptResponse:
        return await self._route(provider).transcribe(audio, options)

    async def transcribe_stream(
        self,
        options: Optional[StreamingOptions] = None,
        callbacks: Any = None,
        *,
        provider: Optional[str] = None,
    ) -> StreamingSession:
        return await self._route(provider).transcribe_stream(options, callbacks)

    async def get_transcript(self, transcript_id: str, *, provider: Optional[str] = None) -> UnifiedTranscriptResponse:
        return await self._route(provider).get_transcript(transcript_id)

    async def list_transcripts(
        self, options: Optional[ListTranscriptsOptions] = None, *, provider: Optional[str] = None
    ) -> ListTranscriptsResponse:
        return await self._route(provider).list_transcripts(options)

    async def delete_transcript(self, transcript_id: str, *, provider: Optional[str] = None) -> DeleteTranscriptResponse:
        return await self._route(provider).delete_transcript(transcript_id)

    async def get_audio_file(self, transcript_id: str, *, provider: Optional[str] = None) -> AudioFileResponse:
        return await self._route(provider).get_audio_file(transcript_id)


def create_voice_router(
    providers: Mapping[str, ProviderSpec],
    default_provider: Optional[str] = None,
    strategy: Union[RoutingStrategy, str] = RoutingStrategy.DEFAULT,
    **adapter_kwargs: Any,
) -> VoiceRouter:
    return VoiceRouter(providers, default_provider=default_provider, strategy=strategy, **adapter_kwargs)
