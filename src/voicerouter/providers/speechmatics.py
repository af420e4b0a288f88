"""Speechmatics batch transcription (jobs API v2).

Batch only. A job is created with a multipart POST carrying the JSON job
config and, for local audio, the file itself; URLs are fetched by
Speechmatics. The transcript is a separate resource once the job is done.
"""

from __future__ import annotations

import json
from typing import Any, Dict

import httpx
from loguru import logger

from voicerouter.adapter import ProviderAdapter
from voicerouter.normalizers import speechmatics as normalizer
from voicerouter.types import (
    AudioFile,
    AudioInput,
    FieldPolicy,
    ListTranscriptsOptions,
    ListTranscriptsResponse,
    ProviderCapabilities,
    ProviderProfile,
    TranscribeOptions,
    TranscriptData,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    language_code,
)

DEFAULT_REGION = "eu1"
DEFAULT_LANGUAGE = "en"
DEFAULT_OPERATING_POINT = "standard"

SPEECHMATICS_PROFILE = ProviderProfile(
    name="speechmatics",
    capabilities=ProviderCapabilities(
        diarization=True,
        word_timestamps=True,
        custom_vocabulary=True,
        summarization=True,
        sentiment_analysis=True,
        entity_detection=True,
        list_transcripts=True,
        delete_transcript=True,
    ),
    field_policies={"pii_redaction": FieldPolicy.IGNORE},
)


class SpeechmaticsAdapter(ProviderAdapter):
    PROFILE = SPEECHMATICS_PROFILE
    label = "Speechmatics"

    @property
    def base_url(self) -> str:
        if self.config.base_url:
            return self.config.base_url.rstrip("/")
        region = self.config.region or DEFAULT_REGION
        return f"https://{region}.asr.api.speechmatics.com/v2"

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def job_config(self, options: TranscribeOptions, audio_url: str = "") -> Dict[str, Any]:
        language = language_code(options.language) or DEFAULT_LANGUAGE
        transcription: Dict[str, Any] = {
            # Speechmatics takes the bare language code, e.g. "en" for "en-US"
            "language": language.split("-")[0],
            "operating_point": options.model or DEFAULT_OPERATING_POINT,
        }
        if options.diarization:
            transcription["diarization"] = "speaker"
            if options.speakers_expected:
                transcription["speaker_diarization_config"] = {
                    "speaker_sensitivity": min(1.0, options.speakers_expected / 10)
                }
        if options.custom_vocabulary:
            transcription["additional_vocab"] = [{"content": term} for term in options.custom_vocabulary]
        if options.entity_detection:
            transcription["enable_entities"] = True

        config: Dict[str, Any] = {"type": "transcription", "transcription_config": transcription}
        if audio_url:
            config["fetch_data"] = {"url": audio_url}
        if options.sentiment_analysis:
            config["sentiment_analysis_config"] = {}
        if options.summarization:
            config["summarization_config"] = {"summary_type": "bullets", "summary_length": "brief"}
        if options.webhook_url:
            config["notification_config"] = [{"url": options.webhook_url, "contents": ["jobinfo"]}]
        config.update(options.extra)
        return config

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        if isinstance(audio, AudioFile):
            config = self.job_config(options)
            files = {
                "config": (None, json.dumps(config)),
                "data_file": (audio.filename, audio.content, audio.mime_type),
            }
        else:
            config = self.job_config(options, audio.url)
            files = {"config": (None, json.dumps(config))}
        response = await self._request("POST", "/jobs", files=files)
        payload = response.json()
        logger.debug(f"[VoiceRouter.{self.label}] Created job {payload['id']}")
        # The create response carries only the id; the job has not started yet.
        data = TranscriptData(id=payload["id"], text="", status=TranscriptionStatus.QUEUED)
        return UnifiedTranscriptResponse.succeeded(self.name, data, raw=payload)

    async def _get_transcript(self, transcript_id: str) -> UnifiedTranscriptResponse:
        response = await self._request("GET", f"/jobs/{transcript_id}")
        job = response.json().get("job") or {}
        result = normalizer.normalize_job(job)
        if not result.success or result.data.status is not TranscriptionStatus.COMPLETED:
            return result
        transcript = await self._request("GET", f"/jobs/{transcript_id}/transcript", params={"format": "json-v2"})
        return normalizer.normalize_transcript(transcript.json())

    async def _list_transcripts(self, options: ListTranscriptsOptions) -> ListTranscriptsResponse:
        params: Dict[str, Any] = dict(options.extra)
        if options.limit:
            params["limit"] = options.limit
        response = await self._request("GET", "/jobs", params=params)
        payload = response.json()
        jobs = [normalizer.normalize_job(job) for job in payload.get("jobs") or []]
        if options.status:
            # No server-side status filter; failed jobs come back as error responses.
            jobs = [j for j in jobs if (j.data.status.value if j.success else "error") == options.status]
        return ListTranscriptsResponse(
            success=True,
            provider=self.name,
            transcripts=jobs,
            has_more=bool(options.limit) and len(payload.get("jobs") or []) >= options.limit,
            raw=payload,
        )

    async def _delete_transcript(self, transcript_id: str) -> None:
        params = {"force": "true"} if self.config.options.get("force_delete") else None
        try:
            await self._request("DELETE", f"/jobs/{transcript_id}", params=params)
        except httpx.HTTPStatusError as e:
            # already gone
            if e.response.status_code != 404:
                raise
