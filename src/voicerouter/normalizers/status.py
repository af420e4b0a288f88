"""Native job status -> unified `TranscriptionStatus`.

Each provider has a closed status vocabulary and a table mapping it. The
tables are checked on import so a vocabulary entry without a mapping fails
loudly before any request is made.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Mapping

from voicerouter.errors import ProviderError
from voicerouter.types import TranscriptionStatus

QUEUED = TranscriptionStatus.QUEUED
PROCESSING = TranscriptionStatus.PROCESSING
COMPLETED = TranscriptionStatus.COMPLETED
ERROR = TranscriptionStatus.ERROR

STATUS_VOCABULARY: Dict[str, FrozenSet[str]] = {
    "deepgram": frozenset({"completed"}),
    "assemblyai": frozenset({"queued", "processing", "completed", "error"}),
    "gladia": frozenset({"queued", "processing", "done", "error"}),
    "azure-stt": frozenset({"notstarted", "running", "succeeded", "failed"}),
    "openai-whisper": frozenset({"completed"}),
    "speechmatics": frozenset({"running", "done", "rejected", "deleted", "expired"}),
    "soniox": frozenset({"queued", "processing", "completed", "error"}),
}

STATUS_TABLES: Dict[str, Mapping[str, TranscriptionStatus]] = {
    "deepgram": {"completed": COMPLETED},
    "assemblyai": {
        "queued": QUEUED,
        "processing": PROCESSING,
        "completed": COMPLETED,
        "error": ERROR,
    },
    "gladia": {
        "queued": QUEUED,
        "processing": PROCESSING,
        "done": COMPLETED,
        "error": ERROR,
    },
    "azure-stt": {
        "notstarted": QUEUED,
        "running": PROCESSING,
        "succeeded": COMPLETED,
        "failed": ERROR,
    },
    "openai-whisper": {"completed": COMPLETED},
    "speechmatics": {
        "running": PROCESSING,
        "done": COMPLETED,
        "rejected": ERROR,
        "deleted": ERROR,
        "expired": ERROR,
    },
    "soniox": {
        "queued": QUEUED,
        "processing": PROCESSING,
        "completed": COMPLETED,
        "error": ERROR,
    },
}


def verify_tables(
    vocabulary: Mapping[str, FrozenSet[str]] = STATUS_VOCABULARY,
    tables: Mapping[str, Mapping[str, TranscriptionStatus]] = STATUS_TABLES,
) -> None:
    for provider, statuses in vocabulary.items():
        table = tables.get(provider)
        if table is None:
            raise RuntimeError(f"No status table for provider '{provider}'")
        missing = sorted(statuses - set(table))
        if missing:
            raise RuntimeError(f"Unmapped {provider} statuses: {missing}")
        for native, unified in table.items():
            if not isinstance(unified, TranscriptionStatus):
                raise RuntimeError(f"{provider} status '{native}' maps to {unified!r}")


verify_tables()


def normalize_status(provider: str, native: str) -> TranscriptionStatus:
    table = STATUS_TABLES.get(provider)
    if table is None:
        raise ProviderError(f"No status table for provider '{provider}'", code="PARSE_ERROR")
    key = str(native).strip().lower()
    if key not in table:
        raise ProviderError(
            f"Unknown {provider} status '{native}'",
            code="PARSE_ERROR",
            details={"status": native},
        )
    return table[key]
