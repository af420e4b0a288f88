"""Provider-agnostic request options, responses and stream events.

Pure data. Adapters and normalizers translate provider payloads into these
shapes; nothing here talks to the network.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from pipecat.transcriptions.language import Language

from voicerouter.errors import VoiceRouterError

# Capability flags that correspond to request option fields of the same name.
FEATURE_FIELDS: Tuple[str, ...] = (
    "diarization",
    "word_timestamps",
    "language_detection",
    "custom_vocabulary",
    "summarization",
    "sentiment_analysis",
    "entity_detection",
    "pii_redaction",
)


class TranscriptionStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CONFIGURING = "configuring"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ERRORED)


class FieldPolicy(str, Enum):
    """What an adapter does when asked for a feature it cannot serve."""

    REJECT = "reject"
    IGNORE = "ignore"


@dataclass(frozen=True)
class ProviderCapabilities:
    streaming: bool = False
    diarization: bool = False
    word_timestamps: bool = False
    language_detection: bool = False
    custom_vocabulary: bool = False
    summarization: bool = False
    sentiment_analysis: bool = False
    entity_detection: bool = False
    pii_redaction: bool = False
    list_transcripts: bool = False
    delete_transcript: bool = False
    get_audio_file: bool = False

    def supports(self, feature: str) -> bool:
        return bool(getattr(self, feature, False))


@dataclass(frozen=True)
class ProviderProfile:
    """Read-only description of a provider, injected into its adapter.

    `field_policies` only matters for features the provider cannot serve;
    anything not listed there is rejected. `streaming_features` lists the
    features the streaming wire protocol can express (a subset of the
    capabilities) and `updatable_fields` the option names that may change
    mid-session.
    """

    name: str
    capabilities: ProviderCapabilities
    field_policies: Mapping[str, FieldPolicy] = field(default_factory=dict)
    streaming_features: FrozenSet[str] = frozenset()
    updatable_fields: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "field_policies", MappingProxyType(dict(self.field_policies)))
        object.__setattr__(self, "streaming_features", frozenset(self.streaming_features))
        object.__setattr__(self, "updatable_fields", frozenset(self.updatable_fields))

    def policy_for(self, feature: str) -> FieldPolicy:
        return self.field_policies.get(feature, FieldPolicy.REJECT)


# Transcript data


@dataclass
class Word:
    text: str
    start: float
    end: float
    confidence: Optional[float] = None
    speaker: Optional[str] = None


@dataclass
class Speaker:
    id: str
    label: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class Utterance:
    text: str
    start: float
    end: float
    speaker: Optional[str] = None
    confidence: Optional[float] = None
    words: List[Word] = field(default_factory=list)


@dataclass
class TranscriptData:
    id: str
    text: str
    status: TranscriptionStatus
    confidence: Optional[float] = None
    language: Optional[str] = None
    duration: Optional[float] = None
    speakers: Optional[List[Speaker]] = None
    words: Optional[List[Word]] = None
    utterances: Optional[List[Utterance]] = None
    summary: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TranscriptError:
    code: str
    message: str
    status_code: Optional[int] = None
    details: Any = None

    @classmethod
    def from_exception(cls, exc: BaseException, default_code: str = "UNKNOWN_ERROR") -> "TranscriptError":
        if isinstance(exc, VoiceRouterError):
            return exc.to_error()
        return cls(code=default_code, message=str(exc) or type(exc).__name__, details=exc)


@dataclass
class UnifiedTranscriptResponse:
    """Result of a batch call.

    `success` is true exactly when `data` is set and `error` is not. `raw`
    always holds the untouched provider payload when there was one.
    """

    success: bool
    provider: str
    data: Optional[TranscriptData] = None
    error: Optional[TranscriptError] = None
    raw: Any = None
    ignored_options: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.success != (self.data is not None and self.error is None):
            raise ValueError("success must be True iff data is present and error is absent")
        if not self.success and self.error is None:
            raise ValueError("a failed response needs an error")

    @classmethod
    def succeeded(cls, provider: str, data: TranscriptData, raw: Any = None) -> "UnifiedTranscriptResponse":
        return cls(success=True, provider=provider, data=data, raw=raw)

    @classmethod
    def failed(
        cls, provider: str, error: Union[TranscriptError, BaseException], raw: Any = None
    ) -> "UnifiedTranscriptResponse":
        if isinstance(error, BaseException):
            error = TranscriptError.from_exception(error)
        return cls(success=False, provider=provider, error=error, raw=raw)


@dataclass
class ListTranscriptsResponse:
    success: bool
    provider: str
    transcripts: List[UnifiedTranscriptResponse] = field(default_factory=list)
    total: Optional[int] = None
    has_more: Optional[bool] = None
    error: Optional[TranscriptError] = None
    raw: Any = None


@dataclass
class DeleteTranscriptResponse:
    success: bool
    provider: str
    error: Optional[TranscriptError] = None


@dataclass
class AudioFileResponse:
    success: bool
    provider: str
    content: Optional[bytes] = None
    content_type: Optional[str] = None
    error: Optional[TranscriptError] = None


# Requests


@dataclass(frozen=True)
class AudioUrl:
    url: str


@dataclass(frozen=True)
class AudioFile:
    content: bytes
    filename: str = "audio.wav"
    mime_type: str = "application/octet-stream"


AudioInput = Union[AudioUrl, AudioFile]


@dataclass
class TranscribeOptions:
    model: Optional[str] = None
    language: Union[Language, str, None] = None
    language_detection: bool = False
    diarization: bool = False
    speakers_expected: Optional[int] = None
    word_timestamps: bool = False
    custom_vocabulary: Sequence[str] = ()
    summarization: bool = False
    sentiment_analysis: bool = False
    entity_detection: bool = False
    pii_redaction: bool = False
    webhook_url: Optional[str] = None
    wait_for_completion: bool = False
    # Provider-specific passthrough, merged into the request body/params.
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamingOptions:
    encoding: str = "linear16"
    sample_rate: int = 16000
    channels: int = 1
    bit_depth: int = 16
    model: Optional[str] = None
    language: Union[Language, str, None] = None
    language_detection: bool = False
    interim_results: bool = True
    diarization: bool = False
    word_timestamps: bool = False
    custom_vocabulary: Tuple[str, ...] = ()
    sentiment_analysis: bool = False
    entity_detection: bool = False
    summarization: bool = False
    pii_redaction: bool = False
    endpointing: Optional[int] = None
    max_silence: Optional[int] = None
    translation_languages: Tuple[str, ...] = ()
    region: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def with_updates(self, partial: Mapping[str, Any]) -> "StreamingOptions":
        names = {f.name for f in dataclasses.fields(self)} - {"extra"}
        known = {k: v for k, v in partial.items() if k in names}
        extra = dict(self.extra)
        extra.update({k: v for k, v in partial.items() if k not in names})
        return dataclasses.replace(self, extra=extra, **known)


@dataclass
class ListTranscriptsOptions:
    limit: Optional[int] = None
    offset: Optional[int] = None
    status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


# Stream events


@dataclass
class TranscriptEvent:
    text: str
    is_final: bool
    words: Optional[List[Word]] = None
    confidence: Optional[float] = None
    language: Optional[str] = None
    speaker: Optional[str] = None
    raw: Any = None


@dataclass
class UtteranceEvent:
    text: str
    start: float
    end: float
    words: List[Word] = field(default_factory=list)
    speaker: Optional[str] = None
    raw: Any = None


@dataclass
class SpeechStartEvent:
    timestamp: Optional[float] = None
    raw: Any = None


@dataclass
class SpeechEndEvent:
    timestamp: Optional[float] = None
    raw: Any = None


@dataclass
class TranslationEvent:
    target_language: str
    translated_text: str
    original: Optional[str] = None
    raw: Any = None


@dataclass
class SentimentEvent:
    sentiment: str
    confidence: Optional[float] = None
    text: Optional[str] = None
    raw: Any = None


@dataclass
class EntityEvent:
    text: str
    entity_type: str
    start: Optional[float] = None
    end: Optional[float] = None
    raw: Any = None


@dataclass
class MetadataEvent:
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    raw: Any = None


@dataclass
class ErrorEvent:
    code: str
    message: str
    details: Any = None
    raw: Any = None

    @classmethod
    def from_error(cls, error: VoiceRouterError) -> "ErrorEvent":
        return cls(code=error.code, message=error.message, details=error.details)


@dataclass
class CloseEvent:
    code: int
    reason: str
    forced: bool = False
    raw: Any = None


StreamEvent = Union[
    TranscriptEvent,
    UtteranceEvent,
    SpeechStartEvent,
    SpeechEndEvent,
    TranslationEvent,
    SentimentEvent,
    EntityEvent,
    MetadataEvent,
    ErrorEvent,
    CloseEvent,
]

# Callback slot invoked for each event class.
CALLBACK_SLOTS: Mapping[type, str] = MappingProxyType(
    {
        TranscriptEvent: "on_transcript",
        UtteranceEvent: "on_utterance",
        SpeechStartEvent: "on_speech_start",
        SpeechEndEvent: "on_speech_end",
        TranslationEvent: "on_translation",
        SentimentEvent: "on_sentiment",
        EntityEvent: "on_entity",
        MetadataEvent: "on_metadata",
        ErrorEvent: "on_error",
        CloseEvent: "on_close",
    }
)


@dataclass
class StreamingCallbacks:
    """Callback slots for a streaming session.

    Any object exposing the same attribute names can be passed instead.
    Slots may be plain functions or coroutine functions; empty slots are
    never invoked.
    """

    on_transcript: Optional[Any] = None
    on_utterance: Optional[Any] = None
    on_speech_start: Optional[Any] = None
    on_speech_end: Optional[Any] = None
    on_translation: Optional[Any] = None
    on_sentiment: Optional[Any] = None
    on_entity: Optional[Any] = None
    on_metadata: Optional[Any] = None
    on_error: Optional[Any] = None
    on_close: Optional[Any] = None


def language_code(language: Union[Language, str, None]) -> Optional[str]:
    if language is None:
        return None
    if isinstance(language, Language):
        return language.value
    return str(language)
