"""Speechmatics batch jobs -> unified shapes.

The transcript is a flat list of `word` and `punctuation` items, each with
its best alternative first. Punctuation attaches to the previous word.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from voicerouter.normalizers.common import opt_str, speakers_from
from voicerouter.normalizers.status import normalize_status
from voicerouter.types import (
    TranscriptData,
    TranscriptError,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    Utterance,
    Word,
)

PROVIDER = "speechmatics"


def _best(item: Dict[str, Any]) -> Dict[str, Any]:
    alternatives = item.get("alternatives") or []
    return alternatives[0] if alternatives else {}


def _join(items: List[Dict[str, Any]]) -> str:
    text = ""
    for item in items:
        content = _best(item).get("content") or ""
        if not content:
            continue
        if text and item.get("type") != "punctuation":
            text += " "
        text += content
    return text


def _word(item: Dict[str, Any]) -> Word:
    best = _best(item)
    return Word(
        text=best.get("content") or "",
        start=float(item.get("start_time") or 0.0),
        end=float(item.get("end_time") or 0.0),
        confidence=best.get("confidence"),
        speaker=opt_str(best.get("speaker")),
    )


def _utterances(items: List[Dict[str, Any]]) -> List[Utterance]:
    """Consecutive items from the same speaker form one utterance."""
    groups: List[List[Dict[str, Any]]] = []
    current: Optional[str] = None
    for item in items:
        speaker = _best(item).get("speaker")
        if speaker is None:
            continue
        if not groups or speaker != current:
            groups.append([])
            current = speaker
        groups[-1].append(item)

    utterances = []
    for group in groups:
        words = [_word(i) for i in group if i.get("type") == "word"]
        if not words:
            continue
        utterances.append(
            Utterance(
                text=_join(group),
                start=words[0].start,
                end=words[-1].end,
                speaker=words[0].speaker,
                words=words,
            )
        )
    return utterances


def _job_error(job: Dict[str, Any]) -> str:
    errors = job.get("errors") or []
    if errors:
        return errors[-1].get("message") or "Transcription failed"
    return f"Job {job.get('status')}"


def normalize_job(job: Dict[str, Any]) -> UnifiedTranscriptResponse:
    """A job without its transcript: status and bookkeeping only."""
    status = normalize_status(PROVIDER, job.get("status", ""))
    if status is TranscriptionStatus.ERROR:
        return UnifiedTranscriptResponse.failed(
            PROVIDER,
            TranscriptError(code="TRANSCRIPTION_ERROR", message=_job_error(job), details=job),
            raw=job,
        )
    data = TranscriptData(
        id=job.get("id", ""),
        text="",
        status=status,
        duration=job.get("duration"),
        metadata={
            k: v
            for k, v in {"created_at": job.get("created_at"), "data_name": job.get("data_name")}.items()
            if v is not None
        },
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=job)


def normalize_transcript(payload: Dict[str, Any]) -> UnifiedTranscriptResponse:
    job = payload.get("job") or {}
    metadata = payload.get("metadata") or {}
    results = payload.get("results") or []
    words = [_word(item) for item in results if item.get("type") == "word"]
    utterances = _utterances(results)
    summary = (payload.get("summary") or {}).get("content")

    extras = {
        "created_at": job.get("created_at"),
        "sentiment_analysis": payload.get("sentiment_analysis"),
        "topics": payload.get("topics"),
    }
    data = TranscriptData(
        id=job.get("id", ""),
        text=_join(results),
        status=TranscriptionStatus.COMPLETED,
        language=(metadata.get("transcription_config") or {}).get("language"),
        duration=job.get("duration"),
        speakers=speakers_from(words, lambda w: w.speaker),
        words=words or None,
        utterances=utterances or None,
        summary=summary or None,
        metadata={k: v for k, v in extras.items() if v is not None},
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=payload)
