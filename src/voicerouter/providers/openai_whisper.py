"""OpenAI audio transcription (Whisper and the gpt-4o transcribe models).

Batch only and synchronous: the upload request returns the transcript.
Requesting diarization switches to the diarizing model, which answers with
speaker-labelled segments instead of word timings.
"""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from voicerouter.adapter import ProviderAdapter
from voicerouter.errors import CapabilityError, VoiceRouterError
from voicerouter.normalizers import openai as normalizer
from voicerouter.types import (
    AudioFile,
    AudioInput,
    ProviderCapabilities,
    ProviderProfile,
    TranscribeOptions,
    UnifiedTranscriptResponse,
    language_code,
)

DEFAULT_MODEL = "whisper-1"
DIARIZE_MODEL = "gpt-4o-transcribe-diarize"

OPENAI_WHISPER_PROFILE = ProviderProfile(
    name="openai-whisper",
    capabilities=ProviderCapabilities(
        diarization=True,
        word_timestamps=True,
        language_detection=True,
        custom_vocabulary=True,
    ),
)


def select_model(options: TranscribeOptions) -> str:
    if options.diarization:
        if options.model and options.model != DIARIZE_MODEL:
            raise CapabilityError(
                f"Model {options.model} cannot diarize; use {DIARIZE_MODEL} or leave the model unset",
                details={"fields": ["diarization"]},
            )
        return DIARIZE_MODEL
    return options.model or DEFAULT_MODEL


class OpenAIWhisperAdapter(ProviderAdapter):
    PROFILE = OPENAI_WHISPER_PROFILE
    label = "OpenAIWhisper"
    default_base_url = "https://api.openai.com/v1"

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def form_fields(self, options: TranscribeOptions) -> Dict[str, Any]:
        model = select_model(options)
        fields: Dict[str, Any] = {"model": model}
        if model == DIARIZE_MODEL:
            fields["response_format"] = "diarized_json"
            # required by the diarizing model for inputs longer than 30s
            fields["chunking_strategy"] = "auto"
        else:
            fields["response_format"] = "verbose_json"
            fields["timestamp_granularities[]"] = ["word", "segment"]
        language = language_code(options.language)
        if language:
            # ISO-639-1 only, e.g. "en" rather than "en-US"
            fields["language"] = language.split("-")[0]
        if options.custom_vocabulary:
            if model == DIARIZE_MODEL:
                logger.warning(f"[VoiceRouter.{self.label}] {model} takes no prompt; custom vocabulary dropped")
            else:
                fields["prompt"] = ", ".join(options.custom_vocabulary)
        fields.update(options.extra)
        return fields

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        if not isinstance(audio, AudioFile):
            raise VoiceRouterError(
                "OpenAI transcription needs the audio bytes; download the URL first",
                code="INVALID_INPUT",
            )
        fields = self.form_fields(options)
        response = await self._request(
            "POST",
            "/audio/transcriptions",
            data=fields,
            files={"file": (audio.filename, audio.content, audio.mime_type)},
        )
        return normalizer.normalize_transcript(response.json(), fields["model"])
