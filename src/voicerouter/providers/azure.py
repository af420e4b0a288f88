"""Azure Speech batch transcription (REST v3.1).

Batch only. Azure fetches the audio itself, so the input must be a URL it
can reach (for example a blob SAS URL). Results live in a separate file
resource linked from the finished job.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from voicerouter.adapter import ProviderAdapter
from voicerouter.errors import ProviderError, VoiceRouterError
from voicerouter.normalizers import azure as normalizer
from voicerouter.types import (
    AudioFile,
    AudioInput,
    FieldPolicy,
    ListTranscriptsOptions,
    ListTranscriptsResponse,
    ProviderCapabilities,
    ProviderProfile,
    TranscribeOptions,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    language_code,
)

DEFAULT_REGION = "eastus"
DEFAULT_LOCALE = "en-US"

AZURE_PROFILE = ProviderProfile(
    name="azure-stt",
    capabilities=ProviderCapabilities(
        diarization=True,
        word_timestamps=True,
        custom_vocabulary=True,
        list_transcripts=True,
        delete_transcript=True,
    ),
    field_policies={
        "summarization": FieldPolicy.IGNORE,
        "sentiment_analysis": FieldPolicy.IGNORE,
        "entity_detection": FieldPolicy.IGNORE,
        "pii_redaction": FieldPolicy.IGNORE,
    },
)


class AzureSTTAdapter(ProviderAdapter):
    PROFILE = AZURE_PROFILE
    label = "AzureSTT"

    @property
    def base_url(self) -> str:
        if self.config.base_url:
            return self.config.base_url.rstrip("/")
        region = self.config.region or DEFAULT_REGION
        return f"https://{region}.api.cognitive.microsoft.com/speechtotext/v3.1"

    def _auth_headers(self) -> Dict[str, str]:
        return {"Ocp-Apim-Subscription-Key": self.config.api_key}

    def build_request(self, audio_url: str, options: TranscribeOptions) -> Dict[str, Any]:
        properties: Dict[str, Any] = {
            "wordLevelTimestampsEnabled": bool(options.word_timestamps or options.diarization),
            "punctuationMode": "DictatedAndAutomatic",
            "profanityFilterMode": "Masked",
        }
        if options.diarization:
            properties["diarizationEnabled"] = True
            if options.speakers_expected:
                properties["diarization"] = {
                    "speakers": {"minCount": 1, "maxCount": options.speakers_expected}
                }
        if options.webhook_url:
            # Azure delivers callbacks through registered web hooks, not per job.
            properties["customProperties"] = {"callback": options.webhook_url}
        request: Dict[str, Any] = {
            "displayName": options.extra.get("display_name", "voicerouter transcription"),
            "locale": language_code(options.language) or DEFAULT_LOCALE,
            "contentUrls": [audio_url],
            "properties": properties,
        }
        if options.model:
            request["model"] = {"self": options.model}
        if options.custom_vocabulary:
            # Phrase lists are passed through as-is; a custom model is the durable option.
            properties.setdefault("customProperties", {})["phrases"] = ",".join(options.custom_vocabulary)
        request.update({k: v for k, v in options.extra.items() if k != "display_name"})
        return request

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        if isinstance(audio, AudioFile):
            raise VoiceRouterError(
                "Azure batch transcription needs an audio URL; upload the file to storage first",
                code="INVALID_INPUT",
            )
        response = await self._request("POST", "/transcriptions", json=self.build_request(audio.url, options))
        return normalizer.normalize_job(response.json())

    async def _get_transcript(self, transcript_id: str) -> UnifiedTranscriptResponse:
        response = await self._request("GET", f"/transcriptions/{transcript_id}")
        job = response.json()
        result = normalizer.normalize_job(job)
        if not result.success or result.data.status is not TranscriptionStatus.COMPLETED:
            return result

        content_url = await self._result_url(job)
        if content_url is None:
            raise ProviderError("Azure job finished without a transcription file", code="NO_RESULTS", details=job)
        # contentUrl is a SAS link; sending the subscription key is rejected.
        content = await self._request("GET", content_url, authenticated=False)
        return normalizer.normalize_result(job, content.json())

    async def _result_url(self, job: Dict[str, Any]) -> Optional[str]:
        files_url = (job.get("links") or {}).get("files")
        if not files_url:
            return None
        response = await self._request("GET", files_url)
        for item in response.json().get("values") or []:
            if item.get("kind") == "Transcription":
                return (item.get("links") or {}).get("contentUrl")
        return None

    async def _list_transcripts(self, options: ListTranscriptsOptions) -> ListTranscriptsResponse:
        params: Dict[str, Any] = dict(options.extra)
        if options.offset:
            params["skip"] = options.offset
        if options.limit:
            params["top"] = options.limit
        response = await self._request("GET", "/transcriptions", params=params)
        payload = response.json()
        jobs = [normalizer.normalize_job(job) for job in payload.get("values") or []]
        if options.status:
            # No server-side status filter; failed jobs come back as error responses.
            jobs = [j for j in jobs if (j.data.status.value if j.success else "error") == options.status]
        return ListTranscriptsResponse(
            success=True,
            provider=self.name,
            transcripts=jobs,
            has_more=bool(payload.get("@nextLink")),
            raw=payload,
        )

    async def _delete_transcript(self, transcript_id: str) -> None:
        await self._request("DELETE", f"/transcriptions/{transcript_id}")
