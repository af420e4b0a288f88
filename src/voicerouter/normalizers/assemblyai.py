"""AssemblyAI payloads -> unified shapes.

Batch (v2) and streaming (v3) both report times in milliseconds; everything
unified is in seconds.
"""

from __future__ import annotations

from typing import Any, Dict, List

from voicerouter.errors import ProviderError
from voicerouter.normalizers.common import ms, opt_str, speakers_from
from voicerouter.normalizers.status import normalize_status
from voicerouter.types import (
    MetadataEvent,
    StreamEvent,
    TranscriptData,
    TranscriptError,
    TranscriptEvent,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    Utterance,
    UtteranceEvent,
    Word,
)

PROVIDER = "assemblyai"


def _word(w: Dict[str, Any]) -> Word:
    return Word(
        text=w.get("text", ""),
        start=ms(w.get("start")),
        end=ms(w.get("end")),
        confidence=w.get("confidence"),
        speaker=opt_str(w.get("speaker")),
    )


def normalize_transcript(payload: Dict[str, Any]) -> UnifiedTranscriptResponse:
    status = normalize_status(PROVIDER, payload.get("status", ""))
    if status is TranscriptionStatus.ERROR:
        return UnifiedTranscriptResponse.failed(
            PROVIDER,
            TranscriptError(
                code="TRANSCRIPTION_ERROR",
                message=payload.get("error") or "Transcription failed",
            ),
            raw=payload,
        )

    raw_utterances = payload.get("utterances") or []
    utterances = [
        Utterance(
            text=u.get("text", ""),
            start=ms(u.get("start")),
            end=ms(u.get("end")),
            speaker=opt_str(u.get("speaker")),
            confidence=u.get("confidence"),
            words=[_word(w) for w in u.get("words") or []],
        )
        for u in raw_utterances
    ]
    words = [_word(w) for w in payload.get("words") or []]
    duration = payload.get("audio_duration")

    extras = {
        "audio_url": payload.get("audio_url"),
        "entities": payload.get("entities"),
        "sentiment_analysis_results": payload.get("sentiment_analysis_results"),
        "content_safety_labels": payload.get("content_safety_labels"),
        "chapters": payload.get("chapters"),
    }
    data = TranscriptData(
        id=payload.get("id", ""),
        text=payload.get("text") or "",
        status=status,
        confidence=payload.get("confidence"),
        language=payload.get("language_code"),
        # v2 reports audio_duration in whole seconds
        duration=float(duration) if duration is not None else None,
        speakers=speakers_from(raw_utterances, lambda u: u.get("speaker"), label=lambda sid: sid),
        words=words or None,
        utterances=utterances or None,
        summary=payload.get("summary") or None,
        metadata={k: v for k, v in extras.items() if v is not None},
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=payload)


def normalize_list_item(item: Dict[str, Any]) -> UnifiedTranscriptResponse:
    data = TranscriptData(
        id=item.get("id", ""),
        text="",
        status=normalize_status(PROVIDER, item.get("status", "")),
        metadata={
            k: v
            for k, v in {
                "audio_url": item.get("audio_url"),
                "created": item.get("created"),
                "completed": item.get("completed"),
                "resource_url": item.get("resource_url"),
            }.items()
            if v is not None
        },
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=item)


def turn_is_final(message: Dict[str, Any], format_turns: bool) -> bool:
    """A turn is final at end of turn, and once formatted when formatting was asked for."""
    if not message.get("end_of_turn"):
        return False
    return bool(message.get("turn_is_formatted")) or not format_turns


def stream_events(message: Dict[str, Any], format_turns: bool = True) -> List[StreamEvent]:
    kind = message.get("type")

    if kind == "Turn":
        words = [_word(w) for w in message.get("words") or []]
        is_final = turn_is_final(message, format_turns)
        text = message.get("transcript") or ""
        events: List[StreamEvent] = [
            TranscriptEvent(
                text=text,
                is_final=is_final,
                words=words or None,
                confidence=message.get("end_of_turn_confidence") if is_final else None,
                raw=message,
            )
        ]
        if is_final:
            events.append(
                UtteranceEvent(
                    text=text,
                    start=words[0].start if words else 0.0,
                    end=words[-1].end if words else 0.0,
                    words=words,
                    raw=message,
                )
            )
        return events

    if kind == "Begin":
        return [
            MetadataEvent(
                kind="begin",
                data={"id": message.get("id"), "expires_at": message.get("expires_at")},
                raw=message,
            )
        ]

    if kind == "Termination":
        return [
            MetadataEvent(
                kind="termination",
                data={
                    "audio_duration_seconds": message.get("audio_duration_seconds"),
                    "session_duration_seconds": message.get("session_duration_seconds"),
                },
                raw=message,
            )
        ]

    data = {k: v for k, v in message.items() if k != "type"}
    return [MetadataEvent(kind=str(kind or "unknown").lower(), data=data, raw=message)]


def stream_error(message: Dict[str, Any]) -> ProviderError:
    return ProviderError(str(message.get("error") or "AssemblyAI streaming error"), details=message)
