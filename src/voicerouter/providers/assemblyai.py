"""AssemblyAI provider.

Batch jobs go through /v2/transcript and are polled when the caller asks to
wait. Streaming uses the v3 Universal Streaming WebSocket; it is the only
protocol here that accepts configuration updates mid-session (the
end-of-turn detection thresholds).
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

from voicerouter.adapter import ProviderAdapter
from voicerouter.audio import provider_encoding
from voicerouter.errors import ProviderError
from voicerouter.normalizers import assemblyai as normalizer
from voicerouter.session import Decoded, WireProtocol
from voicerouter.transport import Frame
from voicerouter.types import (
    AudioFile,
    AudioInput,
    ListTranscriptsOptions,
    ListTranscriptsResponse,
    ProviderCapabilities,
    ProviderProfile,
    StreamingOptions,
    TranscribeOptions,
    TranscriptData,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    language_code,
)

STREAMING_URL = "wss://streaming.assemblyai.com/v3/ws"

# Unified option name -> v3 parameter name.
UPDATE_ALIASES = {
    "endpointing": "min_end_of_turn_silence_when_confident",
    "max_silence": "max_turn_silence",
}
UPDATABLE_FIELDS = frozenset(
    {
        "end_of_turn_confidence_threshold",
        "min_end_of_turn_silence_when_confident",
        "max_turn_silence",
    }
    | set(UPDATE_ALIASES)
)

ASSEMBLYAI_PROFILE = ProviderProfile(
    name="assemblyai",
    capabilities=ProviderCapabilities(
        streaming=True,
        diarization=True,
        word_timestamps=True,
        language_detection=True,
        custom_vocabulary=True,
        summarization=True,
        sentiment_analysis=True,
        entity_detection=True,
        pii_redaction=True,
        list_transcripts=True,
        delete_transcript=True,
    ),
    streaming_features={"word_timestamps", "custom_vocabulary", "language_detection"},
    updatable_fields=UPDATABLE_FIELDS,
)


def provider_fields(partial: Mapping[str, Any]) -> Dict[str, Any]:
    return {UPDATE_ALIASES.get(name, name): value for name, value in partial.items()}


def live_params(options: StreamingOptions) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "sample_rate": options.sample_rate,
        "encoding": provider_encoding("assemblyai", options.encoding),
        "format_turns": "true" if options.extra.get("format_turns", True) else "false",
    }
    if options.model:
        params["speech_model"] = options.model
    if options.language_detection:
        params["language_detection"] = "true"
    if options.custom_vocabulary:
        params["keyterms_prompt"] = json.dumps(list(options.custom_vocabulary))
    if options.endpointing is not None:
        params["min_end_of_turn_silence_when_confident"] = options.endpointing
    if options.max_silence is not None:
        params["max_turn_silence"] = options.max_silence
    for key, value in options.extra.items():
        if key == "format_turns":
            continue
        params[key] = value
    return params


class AssemblyAIProtocol(WireProtocol):
    label = "AssemblyAI"
    awaits_ready_frame = True
    awaits_close_ack = True
    update_requires_ack = False
    updatable_fields = UPDATABLE_FIELDS

    def __init__(self, options: StreamingOptions):
        super().__init__(options)
        self.format_turns = bool(options.extra.get("format_turns", True))

    def encode_update(self, partial: Mapping[str, Any]) -> Frame:
        return json.dumps({"type": "UpdateConfiguration", **provider_fields(partial)})

    def encode_force_endpoint(self) -> Optional[Frame]:
        return json.dumps({"type": "ForceEndpoint"})

    def encode_finalize(self) -> List[Frame]:
        return [json.dumps({"type": "Terminate"})]

    def decode(self, frame: Frame) -> Decoded:
        message = self.parse_json(frame)
        if "error" in message and "type" not in message:
            return Decoded(error=normalizer.stream_error(message))
        kind = message.get("type")
        events = normalizer.stream_events(message, self.format_turns)
        if kind == "Begin":
            return Decoded(events=events, ready=True, session_id=message.get("id"))
        if kind == "Termination":
            return Decoded(events=events, final=True)
        return Decoded(events=events)


class AssemblyAIAdapter(ProviderAdapter):
    PROFILE = ASSEMBLYAI_PROFILE
    label = "AssemblyAI"
    default_base_url = "https://api.assemblyai.com"
    protocol_class = AssemblyAIProtocol

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": self.config.api_key}

    def _stream_headers(self) -> Dict[str, str]:
        return self._auth_headers()

    def _stream_url(self, options: StreamingOptions) -> str:
        base = self.config.options.get("streaming_url", STREAMING_URL)
        return f"{base}?{urlencode(live_params(options))}"

    def build_request(self, audio_url: str, options: TranscribeOptions) -> Dict[str, Any]:
        request: Dict[str, Any] = {"audio_url": audio_url, "punctuate": True, "format_text": True}
        if options.model:
            request["speech_model"] = options.model
        language = language_code(options.language)
        if language:
            request["language_code"] = language
        if options.language_detection:
            request["language_detection"] = True
        if options.diarization:
            request["speaker_labels"] = True
            if options.speakers_expected:
                request["speakers_expected"] = options.speakers_expected
        if options.custom_vocabulary:
            request["word_boost"] = list(options.custom_vocabulary)
            request["boost_param"] = "high"
        if options.summarization:
            request["summarization"] = True
            request["summary_model"] = "informative"
            request["summary_type"] = "bullets"
        if options.sentiment_analysis:
            request["sentiment_analysis"] = True
        if options.entity_detection:
            request["entity_detection"] = True
        if options.pii_redaction:
            request["redact_pii"] = True
            request["redact_pii_policies"] = options.extra.get(
                "redact_pii_policies", ["person_name", "phone_number", "email_address"]
            )
        if options.webhook_url:
            request["webhook_url"] = options.webhook_url
        request.update(options.extra)
        return request

    async def _upload(self, audio: AudioFile) -> str:
        response = await self._request(
            "POST",
            "/v2/upload",
            content=audio.content,
            headers={"Content-Type": "application/octet-stream"},
        )
        upload_url = response.json().get("upload_url")
        if not upload_url:
            raise ProviderError("AssemblyAI upload returned no upload_url", code="PARSE_ERROR")
        return upload_url

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        audio_url = await self._upload(audio) if isinstance(audio, AudioFile) else audio.url
        response = await self._request("POST", "/v2/transcript", json=self.build_request(audio_url, options))
        payload = response.json()
        if options.webhook_url:
            data = TranscriptData(id=payload["id"], text="", status=TranscriptionStatus.QUEUED)
            return UnifiedTranscriptResponse.succeeded(self.name, data, raw=payload)
        return normalizer.normalize_transcript(payload)

    async def _get_transcript(self, transcript_id: str) -> UnifiedTranscriptResponse:
        response = await self._request("GET", f"/v2/transcript/{transcript_id}")
        return normalizer.normalize_transcript(response.json())

    async def _list_transcripts(self, options: ListTranscriptsOptions) -> ListTranscriptsResponse:
        params: Dict[str, Any] = dict(options.extra)
        if options.limit:
            params["limit"] = options.limit
        if options.status:
            params["status"] = options.status
        response = await self._request("GET", "/v2/transcript", params=params)
        payload = response.json()
        page = payload.get("page_details") or {}
        return ListTranscriptsResponse(
            success=True,
            provider=self.name,
            transcripts=[normalizer.normalize_list_item(t) for t in payload.get("transcripts") or []],
            total=page.get("result_count"),
            has_more=bool(page.get("prev_url")),
            raw=payload,
        )

    async def _delete_transcript(self, transcript_id: str) -> None:
        await self._request("DELETE", f"/v2/transcript/{transcript_id}")
