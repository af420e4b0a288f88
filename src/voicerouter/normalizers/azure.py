"""Azure Speech batch transcription (v3.1) payloads -> unified shapes.

Azure times are 100ns ticks.
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

PROVIDER = "azure-stt"
TICKS_PER_SECOND = 10_000_000


def ticks(value: Any) -> float:
    return float(value or 0) / TICKS_PER_SECOND


def transcription_id(job: Dict[str, Any]) -> str:
    return str(job.get("self") or "").rstrip("/").split("/")[-1]


def normalize_job(job: Dict[str, Any]) -> UnifiedTranscriptResponse:
    """A job resource that has not produced (or will never produce) a result."""
    status = normalize_status(PROVIDER, job.get("status", ""))
    if status is TranscriptionStatus.ERROR:
        error = (job.get("properties") or {}).get("error") or {}
        return UnifiedTranscriptResponse.failed(
            PROVIDER,
            TranscriptError(
                code=str(error.get("code") or "TRANSCRIPTION_ERROR"),
                message=error.get("message") or "Transcription failed",
            ),
            raw=job,
        )
    data = TranscriptData(
        id=transcription_id(job),
        text="",
        status=status,
        language=job.get("locale"),
        metadata={k: v for k, v in {"created_at": job.get("createdDateTime")}.items() if v},
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=job)


def _best(phrase: Dict[str, Any]) -> Dict[str, Any]:
    nbest = phrase.get("nBest") or []
    return nbest[0] if nbest else {}


def _words(phrase: Dict[str, Any]) -> List[Word]:
    speaker = opt_str(phrase.get("speaker"))
    out = []
    for w in _best(phrase).get("words") or []:
        start = ticks(w.get("offsetInTicks"))
        out.append(
            Word(
                text=w.get("word", ""),
                start=start,
                end=start + ticks(w.get("durationInTicks")),
                confidence=w.get("confidence"),
                speaker=speaker,
            )
        )
    return out


def normalize_result(job: Dict[str, Any], content: Dict[str, Any]) -> UnifiedTranscriptResponse:
    combined = content.get("combinedRecognizedPhrases") or []
    phrases = content.get("recognizedPhrases") or []

    utterances = []
    for phrase in phrases:
        best = _best(phrase)
        start = ticks(phrase.get("offsetInTicks"))
        utterances.append(
            Utterance(
                text=best.get("display") or best.get("lexical") or "",
                start=start,
                end=start + ticks(phrase.get("durationInTicks")),
                speaker=opt_str(phrase.get("speaker")),
                confidence=best.get("confidence"),
                words=_words(phrase),
            )
        )
    words = [w for phrase in phrases for w in _words(phrase)]
    duration: Optional[float] = None
    if content.get("durationInTicks"):
        duration = ticks(content["durationInTicks"])

    data = TranscriptData(
        id=transcription_id(job),
        text=" ".join(p.get("display") or p.get("lexical") or "" for p in combined).strip(),
        status=TranscriptionStatus.COMPLETED,
        confidence=_best(phrases[0]).get("confidence") if phrases else None,
        language=job.get("locale"),
        duration=duration,
        speakers=speakers_from(phrases, lambda p: p.get("speaker")),
        words=words or None,
        utterances=utterances or None,
        metadata={
            k: v
            for k, v in {
                "created_at": job.get("createdDateTime"),
                "completed_at": job.get("lastActionDateTime"),
                "source": content.get("source"),
            }.items()
            if v is not None
        },
    )
    return UnifiedTranscriptResponse.succeeded(
        PROVIDER, data, raw={"transcription": job, "content": content}
    )
