"""Audio helpers: encoding names per provider and PCM conversion."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Union

import numpy as np

from voicerouter.errors import CapabilityError


class AudioEncoding(str, Enum):
    LINEAR16 = "linear16"
    MULAW = "mulaw"
    ALAW = "alaw"
    FLAC = "flac"
    OPUS = "opus"
    MP3 = "mp3"


# Wire names each streaming provider accepts for a unified encoding.
PROVIDER_ENCODINGS: Dict[str, Dict[AudioEncoding, str]] = {
    "deepgram": {
        AudioEncoding.LINEAR16: "linear16",
        AudioEncoding.MULAW: "mulaw",
        AudioEncoding.ALAW: "alaw",
        AudioEncoding.FLAC: "flac",
        AudioEncoding.OPUS: "opus",
    },
    "assemblyai": {
        AudioEncoding.LINEAR16: "pcm_s16le",
        AudioEncoding.MULAW: "pcm_mulaw",
    },
    "gladia": {
        AudioEncoding.LINEAR16: "wav/pcm",
        AudioEncoding.ALAW: "wav/alaw",
        AudioEncoding.MULAW: "wav/ulaw",
    },
    "soniox": {
        AudioEncoding.LINEAR16: "pcm_s16le",
        AudioEncoding.MULAW: "mulaw",
        AudioEncoding.ALAW: "alaw",
        AudioEncoding.FLAC: "flac",
        AudioEncoding.OPUS: "ogg_opus",
        AudioEncoding.MP3: "mp3",
    },
}

_BYTES_PER_SAMPLE = {
    AudioEncoding.LINEAR16: 2,
    AudioEncoding.MULAW: 1,
    AudioEncoding.ALAW: 1,
}


def provider_encoding(provider: str, encoding: Union[AudioEncoding, str]) -> str:
    try:
        unified = AudioEncoding(encoding)
    except ValueError:
        raise CapabilityError(f"Unknown audio encoding '{encoding}'", details={"field": "encoding"})
    table = PROVIDER_ENCODINGS.get(provider, {})
    if unified not in table:
        raise CapabilityError(
            f"Encoding '{unified.value}' is not supported by {provider} streaming",
            details={"field": "encoding"},
        )
    return table[unified]


def bytes_per_second(
    sample_rate: int, channels: int = 1, encoding: Union[AudioEncoding, str] = AudioEncoding.LINEAR16
) -> int:
    """Raw byte rate; compressed encodings are sized as if they were linear16."""
    try:
        width = _BYTES_PER_SAMPLE.get(AudioEncoding(encoding), 2)
    except ValueError:
        width = 2
    return int(sample_rate) * int(channels) * width


def to_pcm16_bytes(audio: Union[bytes, bytearray, memoryview, np.ndarray]) -> bytes:
    if isinstance(audio, (bytes, bytearray, memoryview)):
        return bytes(audio)
    if isinstance(audio, np.ndarray):
        if audio.dtype == np.int16:
            return audio.tobytes()
        if np.issubdtype(audio.dtype, np.floating):
            clipped = np.clip(audio, -1.0, 1.0)
            return (clipped * 32767.0).astype(np.int16).tobytes()
        raise TypeError(f"Unsupported sample dtype {audio.dtype}")
    raise TypeError(f"Unsupported audio type {type(audio).__name__}")
