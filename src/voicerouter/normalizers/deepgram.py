"""Deepgram /v1/listen payloads -> unified shapes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from loguru import logger

from voicerouter.errors import ProviderError
from voicerouter.normalizers.common import opt_str, speakers_from
from voicerouter.types import (
    MetadataEvent,
    SpeechEndEvent,
    SpeechStartEvent,
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

PROVIDER = "deepgram"


def _word(w: Dict[str, Any]) -> Word:
    return Word(
        text=w.get("punctuated_word") or w.get("word") or "",
        start=float(w.get("start") or 0.0),
        end=float(w.get("end") or 0.0),
        confidence=w.get("confidence"),
        speaker=opt_str(w.get("speaker")),
    )


def _summary(alternative: Dict[str, Any], results: Dict[str, Any]) -> Optional[str]:
    summaries = alternative.get("summaries") or []
    text = " ".join(s.get("summary", "") for s in summaries if s.get("summary"))
    if text:
        return text
    # summarize=v2 puts a single summary on results
    return (results.get("summary") or {}).get("short")


def normalize_transcript(payload: Dict[str, Any]) -> UnifiedTranscriptResponse:
    results = payload.get("results") or {}
    metadata = payload.get("metadata") or {}
    channels = results.get("channels") or []
    channel = channels[0] if channels else {}
    alternatives = channel.get("alternatives") or []
    if not alternatives:
        return UnifiedTranscriptResponse.failed(
            PROVIDER,
            TranscriptError(code="NO_RESULTS", message="No transcription results returned by Deepgram"),
            raw=payload,
        )
    alternative = alternatives[0]

    raw_utterances = results.get("utterances") or []
    utterances = [
        Utterance(
            text=u.get("transcript", ""),
            start=float(u.get("start") or 0.0),
            end=float(u.get("end") or 0.0),
            speaker=opt_str(u.get("speaker")),
            confidence=u.get("confidence"),
            words=[_word(w) for w in u.get("words") or []],
        )
        for u in raw_utterances
    ]
    words = [_word(w) for w in alternative.get("words") or []]

    extras = {
        "model_info": metadata.get("model_info"),
        "channels": metadata.get("channels"),
        "sentiments": results.get("sentiments"),
        "intents": results.get("intents"),
        "topics": results.get("topics"),
        "entities": alternative.get("entities"),
    }
    data = TranscriptData(
        id=metadata.get("request_id", ""),
        text=alternative.get("transcript", ""),
        status=TranscriptionStatus.COMPLETED,
        confidence=alternative.get("confidence"),
        language=channel.get("detected_language"),
        duration=metadata.get("duration"),
        speakers=speakers_from(raw_utterances, lambda u: u.get("speaker")),
        words=words or None,
        utterances=utterances or None,
        summary=_summary(alternative, results),
        metadata={k: v for k, v in extras.items() if v is not None},
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=payload)


def stream_events(message: Dict[str, Any]) -> List[StreamEvent]:
    kind = message.get("type")

    if kind == "Results":
        alternatives = (message.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return []
        alternative = alternatives[0]
        transcript = alternative.get("transcript") or ""
        if not transcript:
            return []
        is_final = bool(message.get("is_final"))
        words = [_word(w) for w in alternative.get("words") or []]
        languages = alternative.get("languages") or []
        logger.trace(f"[VoiceRouter.Deepgram] recv transcript final={is_final} text={transcript!r}")
        events: List[StreamEvent] = [
            TranscriptEvent(
                text=transcript,
                is_final=is_final,
                words=words or None,
                confidence=alternative.get("confidence"),
                language=languages[0] if languages else None,
                speaker=words[0].speaker if words else None,
                raw=message,
            )
        ]
        if is_final and message.get("speech_final"):
            start = float(message.get("start") or 0.0)
            events.append(
                UtteranceEvent(
                    text=transcript,
                    start=start,
                    end=start + float(message.get("duration") or 0.0),
                    words=words,
                    speaker=words[0].speaker if words else None,
                    raw=message,
                )
            )
        return events

    if kind == "SpeechStarted":
        return [SpeechStartEvent(timestamp=message.get("timestamp"), raw=message)]

    if kind == "UtteranceEnd":
        return [SpeechEndEvent(timestamp=message.get("last_word_end"), raw=message)]

    data = {k: v for k, v in message.items() if k != "type"}
    return [MetadataEvent(kind=str(kind or "unknown").lower(), data=data, raw=message)]


def stream_error(message: Dict[str, Any]) -> ProviderError:
    return ProviderError(
        message.get("description") or message.get("message") or "Deepgram streaming error",
        code=str(message.get("variant") or "PROVIDER_ERROR"),
        details=message,
    )
