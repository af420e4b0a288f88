"""OpenAI audio transcription responses -> unified shapes."""

from __future__ import annotations

import uuid
from typing import Any, Dict

from voicerouter.normalizers.common import opt_str, speakers_from
from voicerouter.types import (
    TranscriptData,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    Utterance,
    Word,
)

PROVIDER = "openai-whisper"


def normalize_transcript(payload: Dict[str, Any], model: str = "") -> UnifiedTranscriptResponse:
    # The API is synchronous and returns no job id.
    segments = payload.get("segments") or []
    words = [
        Word(text=w.get("word", ""), start=float(w.get("start") or 0.0), end=float(w.get("end") or 0.0))
        for w in payload.get("words") or []
    ]
    utterances = [
        Utterance(
            text=(s.get("text") or "").strip(),
            start=float(s.get("start") or 0.0),
            end=float(s.get("end") or 0.0),
            speaker=opt_str(s.get("speaker")),
        )
        for s in segments
    ]
    data = TranscriptData(
        id=f"openai-{uuid.uuid4().hex[:12]}",
        text=payload.get("text") or "",
        status=TranscriptionStatus.COMPLETED,
        language=payload.get("language"),
        duration=payload.get("duration"),
        # diarized_json labels speakers "A", "B", ... or with the known speaker names
        speakers=speakers_from(segments, lambda s: s.get("speaker"), label=lambda sid: sid),
        words=words or None,
        utterances=utterances or None,
        metadata={"model": model} if model else {},
    )
    return UnifiedTranscriptResponse.succeeded(PROVIDER, data, raw=payload)
