"""Gladia v2 payloads -> unified shapes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from voicerouter.errors import ProviderError
from voicerouter.normalizers.common import flatten_words, opt_str, speakers_from
from voicerouter.normalizers.status import normalize_status
from voicerouter.types import (
    EntityEvent,
    MetadataEvent,
    SentimentEvent,
    SpeechEndEvent,
    SpeechStartEvent,
    StreamEvent,
    TranscriptData,
    TranscriptError,
    TranscriptEvent,
    TranscriptionStatus,
    TranslationEvent,
    UnifiedTranscriptResponse,
    Utterance,
    UtteranceEvent,
    Word,
)

PROVIDER = "gladia"

# Result sections without a unified field; copied to data.metadata.
_EXTRA_RESULTS = (
    "translation",
    "moderation",
    "named_entity_recognition",
    "sentiment_analysis",
    "audio_to_llm",
    "chapterization",
    "speaker_reidentification",
    "structured_data_extraction",
)

LIFECYCLE_MESSAGES = frozenset(
    {
        "start_session",
        "start_recording",
        "end_recording",
        "end_session",
        "audio_chunk_ack",
        "stop_recording_ack",
        "post_summarization",
        "post_chapterization",
        "metadata",
    }
)


def _word(w: Dict[str, Any], speaker: Optional[str] = None) -> Word:
    return Word(
        text=str(w.get("word", "")).strip(),
        start=float(w.get("start") or 0.0),
        end=float(w.get("end") or 0.0),
        confidence=w.get("confidence"),
        speaker=speaker,
    )


def _utterance(u: Dict[str, Any]) -> Utterance:
    speaker = opt_str(u.get("speaker"))
    return Utterance(
        text=u.get("text", ""),
        start=float(u.get("start") or 0.0),
        end=float(u.get("end") or 0.0),
        speaker=speaker,
        confidence=u.get("confidence"),
        words=[_word(w, speaker) for w in u.get("words") or []],
    )


def normalize_transcript(payload: Dict[str, Any]) -> UnifiedTranscriptResponse:
    status = normalize_status(PROVIDER, payload.get("status", ""))
    if status is TranscriptionStatus.ERROR:
        code = payload.get("error_code")
        return UnifiedTranscriptResponse.failed(
            PROVIDER,
            TranscriptError(
                code=str(code) if code is not None else "TRANSCRIPTION_ERROR",
                message="Transcription failed",
                status_code=code if isinstance(code, int) else None,
            ),
            raw=payload,
        )

    result = payload.get("result") or {}
    transcription = result.get("transcription") or {}
    utterances = [_utterance(u) for u in transcription.get("utterances") or []]
    file_info = payload.get("file") or {}
    languages = transcription.get("languages") or []
    summary = (result.get("summarization") or {}).get("results")

    metadata: Dict[str, Any] = {
        "source_audio_url": file_info.get("source"),
        "filename": file_info.get("filename"),
        "audio_duration": file_info.get("audio_duration"),
        "request_params": payload.get("request_params"),
        "created_at": payload.get("created_at"),
        "completed_at": payload.get("completed_at"),
    }
    for key in _EXTRA_RESULTS:
        if result.get(key):
            metadata[key] = result[key]

    data = TranscriptData(
        id=payload.get("id", ""),
        text=transcription.get("full_transcript") or "",
        status=status,
        language=languages[0] if languages else None,
        duration=file_info.get("audio_duration"),
        speakers=speakers_from(transcription.get("utterances"), lambda u: u.get("speaker")),
        words=flatten_words(utterances),
        utterances=utterances or None,
        summary=summary,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=payload)


def normalize_list_item(item: Dict[str, Any]) -> UnifiedTranscriptResponse:
    """List items are partial jobs; an errored job is still a listed job."""
    status = normalize_status(PROVIDER, item.get("status", ""))
    result = item.get("result") or {}
    file_info = item.get("file") or {}
    data = TranscriptData(
        id=item.get("id", ""),
        text=((result.get("transcription") or {}).get("full_transcript")) or "",
        status=status,
        duration=file_info.get("audio_duration"),
        metadata={
            k: v
            for k, v in {
                "kind": item.get("kind"),
                "source_audio_url": file_info.get("source"),
                "created_at": item.get("created_at"),
                "completed_at": item.get("completed_at"),
            }.items()
            if v is not None
        },
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=item)


def _feature_error(kind: str, message: Dict[str, Any]) -> MetadataEvent:
    return MetadataEvent(kind=f"{kind}_error", data={"error": message.get("error")}, raw=message)


def stream_events(message: Dict[str, Any]) -> List[StreamEvent]:
    """Events for one live message. Error messages are handled by the caller."""
    kind = message.get("type")
    data = message.get("data") or {}

    if kind == "transcript":
        u = data.get("utterance") or {}
        speaker = opt_str(u.get("speaker"))
        words = [_word(w, speaker) for w in u.get("words") or []]
        events: List[StreamEvent] = [
            TranscriptEvent(
                text=u.get("text", ""),
                is_final=bool(data.get("is_final")),
                words=words or None,
                confidence=u.get("confidence"),
                language=u.get("language"),
                speaker=speaker,
                raw=message,
            )
        ]
        if data.get("is_final"):
            events.append(
                UtteranceEvent(
                    text=u.get("text", ""),
                    start=float(u.get("start") or 0.0),
                    end=float(u.get("end") or 0.0),
                    words=words,
                    speaker=speaker,
                    raw=message,
                )
            )
        return events

    if kind == "post_transcript":
        return [TranscriptEvent(text=data.get("full_transcript") or "", is_final=True, raw=message)]

    if kind == "post_final_transcript":
        text = ((data.get("transcription") or {}).get("full_transcript")) or ""
        return [TranscriptEvent(text=text, is_final=True, raw=message)]

    if kind == "speech_start":
        return [SpeechStartEvent(timestamp=data.get("time"), raw=message)]

    if kind == "speech_end":
        return [SpeechEndEvent(timestamp=data.get("time"), raw=message)]

    if kind == "translation":
        if message.get("error"):
            return [_feature_error("translation", message)]
        return [
            TranslationEvent(
                target_language=data.get("target_language", ""),
                translated_text=(data.get("translated_utterance") or {}).get("text", ""),
                original=(data.get("utterance") or {}).get("text"),
                raw=message,
            )
        ]

    if kind == "sentiment_analysis":
        if message.get("error"):
            return [_feature_error("sentiment_analysis", message)]
        return [
            SentimentEvent(sentiment=r.get("sentiment", ""), text=r.get("text"), raw=message)
            for r in data.get("results") or []
        ]

    if kind == "named_entity_recognition":
        if message.get("error"):
            return [_feature_error("named_entity_recognition", message)]
        return [
            EntityEvent(
                text=r.get("text", ""),
                entity_type=r.get("entity_type", ""),
                start=r.get("start"),
                end=r.get("end"),
                raw=message,
            )
            for r in data.get("results") or []
        ]

    if kind in LIFECYCLE_MESSAGES:
        meta = dict(data) if isinstance(data, dict) else {"data": data}
        if message.get("session_id"):
            meta["session_id"] = message["session_id"]
        if message.get("error"):
            meta["error"] = message["error"]
        return [MetadataEvent(kind=kind, data=meta, raw=message)]

    return [MetadataEvent(kind=str(kind or "unknown"), data={}, raw=message)]


def stream_error(message: Dict[str, Any]) -> ProviderError:
    err = message.get("error") or {}
    if not isinstance(err, dict):
        err = {"message": str(err)}
    return ProviderError(
        err.get("message") or "Unknown streaming error",
        code=str(err.get("code") or "TRANSCRIPTION_ERROR"),
        details=message,
    )
