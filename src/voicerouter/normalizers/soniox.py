"""Soniox tokens -> unified shapes.

Soniox reports sub-word tokens in milliseconds. A token that does not start
with whitespace continues the previous word, so punctuation ends up attached
to the word before it.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from voicerouter.errors import ProviderError
from voicerouter.normalizers.common import ms, opt_str, speakers_from
from voicerouter.normalizers.status import normalize_status
from voicerouter.types import (
    MetadataEvent,
    SpeechEndEvent,
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

PROVIDER = "soniox"

# Control tokens: endpoint detected, manual finalization done.
END_TOKEN = "<end>"
FIN_TOKEN = "<fin>"
MARKERS = frozenset({END_TOKEN, FIN_TOKEN})


def spoken(tokens: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [t for t in tokens if t.get("text") and t.get("text") not in MARKERS]


def token_text(tokens: Iterable[Dict[str, Any]]) -> str:
    return "".join(t.get("text") or "" for t in tokens).strip()


def words_from_tokens(tokens: Iterable[Dict[str, Any]]) -> List[Word]:
    words: List[Word] = []
    for token in spoken(tokens):
        text = token["text"]
        speaker = opt_str(token.get("speaker"))
        confidence = token.get("confidence")
        if words and not text[0].isspace() and words[-1].speaker == speaker:
            word = words[-1]
            word.text += text
            word.end = ms(token.get("end_ms"))
            if confidence is not None:
                word.confidence = confidence if word.confidence is None else min(word.confidence, confidence)
            continue
        words.append(
            Word(
                text=text.strip(),
                start=ms(token.get("start_ms")),
                end=ms(token.get("end_ms")),
                confidence=confidence,
                speaker=speaker,
            )
        )
    return words


def utterances_from_words(words: List[Word]) -> List[Utterance]:
    """Split on speaker changes; without diarization everything is one utterance."""
    utterances: List[Utterance] = []
    for word in words:
        if utterances and utterances[-1].speaker == word.speaker:
            current = utterances[-1]
            current.words.append(word)
            current.text += " " + word.text
            current.end = word.end
        else:
            utterances.append(
                Utterance(text=word.text, start=word.start, end=word.end, speaker=word.speaker, words=[word])
            )
    return utterances


def _language(tokens: Iterable[Dict[str, Any]]) -> Optional[str]:
    for token in tokens:
        if token.get("language"):
            return token["language"]
    return None


# Batch


def normalize_transcription(job: Dict[str, Any]) -> UnifiedTranscriptResponse:
    """A transcription job without its tokens."""
    status = normalize_status(PROVIDER, job.get("status", ""))
    if status is TranscriptionStatus.ERROR:
        return UnifiedTranscriptResponse.failed(
            PROVIDER,
            TranscriptError(
                code="TRANSCRIPTION_ERROR",
                message=job.get("error_message") or "Transcription failed",
                details=job,
            ),
            raw=job,
        )
    duration = job.get("audio_duration_ms")
    data = TranscriptData(
        id=job.get("id", ""),
        text="",
        status=status,
        duration=ms(duration) if duration is not None else None,
        metadata={
            k: v
            for k, v in {
                "model": job.get("model"),
                "created_at": job.get("created_at"),
                "audio_url": job.get("audio_url"),
                "filename": job.get("filename"),
            }.items()
            if v is not None
        },
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=job)


def normalize_transcript(job: Dict[str, Any], transcript: Dict[str, Any]) -> UnifiedTranscriptResponse:
    response = normalize_transcription(job)
    if not response.success:
        return response
    tokens = transcript.get("tokens") or []
    words = words_from_tokens(tokens)
    utterances = utterances_from_words(words)
    data = response.data
    data.text = transcript.get("text") or token_text(spoken(tokens))
    data.language = _language(tokens)
    data.words = words or None
    data.utterances = utterances or None
    data.speakers = speakers_from(words, lambda w: w.speaker)
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw={"job": job, "transcript": transcript})


# Streaming


def stream_error(message: Dict[str, Any]) -> ProviderError:
    code = message.get("error_code")
    return ProviderError(
        str(message.get("error_message") or "Soniox streaming error"),
        status_code=code if isinstance(code, int) else None,
        details=message,
    )


def endpoint_events(tokens: List[Dict[str, Any]], message: Dict[str, Any]) -> List[StreamEvent]:
    """Final transcript for the finished segment, one utterance per speaker turn."""
    tokens = spoken(tokens)
    if not tokens:
        return []
    words = words_from_tokens(tokens)
    events: List[StreamEvent] = [
        TranscriptEvent(
            text=token_text(tokens),
            is_final=True,
            words=words or None,
            confidence=tokens[-1].get("confidence"),
            language=_language(tokens),
            speaker=words[0].speaker if words else None,
            raw=message,
        )
    ]
    for utterance in utterances_from_words(words):
        events.append(
            UtteranceEvent(
                text=utterance.text,
                start=utterance.start,
                end=utterance.end,
                words=utterance.words,
                speaker=utterance.speaker,
                raw=message,
            )
        )
    events.append(SpeechEndEvent(timestamp=words[-1].end if words else None, raw=message))
    return events


def interim_event(tokens: List[Dict[str, Any]], message: Dict[str, Any]) -> Optional[TranscriptEvent]:
    tokens = spoken(tokens)
    if not tokens:
        return None
    words = words_from_tokens(tokens)
    return TranscriptEvent(
        text=token_text(tokens),
        is_final=False,
        words=words or None,
        language=_language(tokens),
        speaker=words[0].speaker if words else None,
        raw=message,
    )


def finished_event(message: Dict[str, Any]) -> MetadataEvent:
    return MetadataEvent(
        kind="finished",
        data={
            "final_audio_proc_ms": message.get("final_audio_proc_ms"),
            "total_audio_proc_ms": message.get("total_audio_proc_ms"),
        },
        raw=message,
    )
