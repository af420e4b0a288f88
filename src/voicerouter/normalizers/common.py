"""Helpers shared by the per-provider normalizers."""

from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional

from voicerouter.types import Speaker, Utterance, Word


def speakers_from(
    items: Optional[Iterable[Any]],
    speaker_of: Callable[[Any], Any],
    label: Callable[[str], str] = lambda sid: f"Speaker {sid}",
) -> Optional[List[Speaker]]:
    """Unique speakers in first-seen order, or None when there are none."""
    if not items:
        return None
    seen = []
    for item in items:
        sid = speaker_of(item)
        if sid is None:
            continue
        sid = str(sid)
        if sid not in seen:
            seen.append(sid)
    return [Speaker(id=sid, label=label(sid)) for sid in seen] or None


def flatten_words(utterances: Optional[List[Utterance]]) -> Optional[List[Word]]:
    if not utterances:
        return None
    words = [w for u in utterances for w in u.words]
    return words or None


def opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def ms(value: Any) -> float:
    return float(value or 0) / 1000.0
