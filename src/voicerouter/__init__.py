"""VoiceRouter: one interface over several speech-to-text providers.

Batch transcription, job retrieval and live streaming sessions for Deepgram,
AssemblyAI, Gladia, Azure Speech, OpenAI, Speechmatics and Soniox, with a
Pipecat STT service on top (`voicerouter.service`).
"""

from voicerouter.adapter import ProviderAdapter
from voicerouter.config import ProviderConfig
from voicerouter.errors import (
    CapabilityError,
    ConfigError,
    OperationTimeoutError,
    ProviderError,
    SessionClosedError,
    TransportError,
    UnsupportedOperationError,
    VoiceRouterError,
)
from voicerouter.providers import ADAPTERS, create_adapter
from voicerouter.router import RoutingStrategy, VoiceRouter, create_voice_router
from voicerouter.session import SessionResult, StreamingSession
from voicerouter.types import (
    AudioFile,
    AudioUrl,
    FieldPolicy,
    ListTranscriptsOptions,
    ProviderCapabilities,
    SessionState,
    StreamingCallbacks,
    StreamingOptions,
    TranscribeOptions,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
)

__all__ = [
    "ADAPTERS",
    "AudioFile",
    "AudioUrl",
    "CapabilityError",
    "ConfigError",
    "FieldPolicy",
    "ListTranscriptsOptions",
    "OperationTimeoutError",
    "ProviderAdapter",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderError",
    "RoutingStrategy",
    "SessionClosedError",
    "SessionResult",
    "SessionState",
    "StreamingCallbacks",
    "StreamingOptions",
    "StreamingSession",
    "TranscribeOptions",
    "TranscriptionStatus",
    "TransportError",
    "UnifiedTranscriptResponse",
    "UnsupportedOperationError",
    "VoiceRouter",
    "VoiceRouterError",
    "__version__",
    "create_adapter",
    "create_voice_router",
]

__version__ = "0.1.0"
