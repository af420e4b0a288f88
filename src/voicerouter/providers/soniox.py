"""Soniox provider.

Batch transcriptions are async jobs under /v1/transcriptions; local audio is
uploaded to /v1/files first. Streaming opens the real-time WebSocket and
sends a JSON config as the very first frame, then raw audio. An empty frame
ends the audio, after which the server flushes its last tokens and answers
with `finished`.

API keys are tied to the region of the project that issued them.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from voicerouter.adapter import ProviderAdapter
from voicerouter.audio import provider_encoding
from voicerouter.errors import ConfigError, ProviderError
from voicerouter.normalizers import soniox as normalizer
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
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    language_code,
)

DEFAULT_BATCH_MODEL = "stt-async-preview"
DEFAULT_STREAMING_MODEL = "stt-rt-preview"
DEFAULT_REGION = "us"

API_HOSTS = {"us": "api.soniox.com", "eu": "api.eu.soniox.com", "jp": "api.jp.soniox.com"}
WS_HOSTS = {"us": "stt-rt.soniox.com", "eu": "stt-rt.eu.soniox.com", "jp": "stt-rt.jp.soniox.com"}

# Headerless formats need the sample rate and channel count spelled out.
RAW_FORMATS = frozenset({"pcm_s16le", "mulaw", "alaw"})

SONIOX_PROFILE = ProviderProfile(
    name="soniox",
    capabilities=ProviderCapabilities(
        streaming=True,
        diarization=True,
        word_timestamps=True,
        language_detection=True,
        custom_vocabulary=True,
        list_transcripts=True,
        delete_transcript=True,
    ),
    streaming_features={"diarization", "word_timestamps", "language_detection", "custom_vocabulary"},
)


def _hints(language: Any) -> Optional[List[str]]:
    code = language_code(language)
    return [code.split("-")[0]] if code else None


def start_config(options: StreamingOptions, api_key: str) -> Dict[str, Any]:
    audio_format = provider_encoding("soniox", options.encoding)
    config: Dict[str, Any] = {
        "api_key": api_key,
        "model": options.model or DEFAULT_STREAMING_MODEL,
        "audio_format": audio_format,
        "enable_endpoint_detection": True,
    }
    if audio_format in RAW_FORMATS:
        config["sample_rate"] = options.sample_rate
        config["num_channels"] = options.channels
    hints = _hints(options.language)
    if hints:
        config["language_hints"] = hints
    if options.diarization:
        config["enable_speaker_diarization"] = True
    if options.language_detection:
        config["enable_language_identification"] = True
    if options.custom_vocabulary:
        config["context"] = {"terms": list(options.custom_vocabulary)}
    config.update(options.extra)
    return config


class SonioxProtocol(WireProtocol):
    """Final tokens are held until an endpoint (`<end>`), a manual
    finalization (`<fin>`) or the end of the stream, then emitted as one
    final transcript. Everything in between is reported as interim text.
    """

    label = "Soniox"
    awaits_close_ack = True
    keepalive_interval = 10.0

    def __init__(self, options: StreamingOptions, api_key: str = ""):
        super().__init__(options)
        # built up front so a bad encoding fails before connecting
        self.session_config = start_config(options, api_key)
        self._final_tokens: List[Dict[str, Any]] = []

    def encode_start(self) -> List[Frame]:
        return [json.dumps(self.session_config)]

    def encode_force_endpoint(self) -> Optional[Frame]:
        return json.dumps({"type": "finalize"})

    def encode_finalize(self) -> List[Frame]:
        return [""]

    def encode_keepalive(self) -> Optional[Frame]:
        return json.dumps({"type": "keepalive"})

    def decode(self, frame: Frame) -> Decoded:
        message = self.parse_json(frame)
        if message.get("error_code") is not None or message.get("error_message"):
            return Decoded(error=normalizer.stream_error(message))

        events = []
        pending = []
        for token in message.get("tokens") or []:
            if not token.get("is_final"):
                pending.append(token)
            elif token.get("text") in normalizer.MARKERS:
                events.extend(normalizer.endpoint_events(self._final_tokens, message))
                self._final_tokens = []
            else:
                self._final_tokens.append(token)

        if message.get("finished"):
            events.extend(normalizer.endpoint_events(self._final_tokens, message))
            self._final_tokens = []
            events.append(normalizer.finished_event(message))
            return Decoded(events=events, final=True)

        if self.options.interim_results:
            interim = normalizer.interim_event(self._final_tokens + pending, message)
            if interim is not None:
                events.append(interim)
        return Decoded(events=events)


class SonioxAdapter(ProviderAdapter):
    PROFILE = SONIOX_PROFILE
    label = "Soniox"
    protocol_class = SonioxProtocol

    def _region(self, override: Optional[str] = None) -> str:
        region = override or self.config.region or DEFAULT_REGION
        if region not in API_HOSTS:
            raise ConfigError(f"Unknown Soniox region '{region}'. Available: {', '.join(API_HOSTS)}")
        return region

    @property
    def base_url(self) -> str:
        if self.config.base_url:
            return self.config.base_url.rstrip("/")
        return f"https://{API_HOSTS[self._region()]}"

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _make_protocol(self, options: StreamingOptions) -> WireProtocol:
        return SonioxProtocol(options, api_key=self.config.api_key)

    def _stream_url(self, options: StreamingOptions) -> str:
        override = self.config.options.get("streaming_url")
        if override:
            return override
        return f"wss://{WS_HOSTS[self._region(options.region)]}/transcribe-websocket"

    def build_request(self, options: TranscribeOptions, *, audio_url: str = "", file_id: str = "") -> Dict[str, Any]:
        request: Dict[str, Any] = {"model": options.model or DEFAULT_BATCH_MODEL}
        if audio_url:
            request["audio_url"] = audio_url
        if file_id:
            request["file_id"] = file_id
        hints = _hints(options.language)
        if hints:
            request["language_hints"] = hints
        if options.diarization:
            request["enable_speaker_diarization"] = True
        if options.language_detection:
            request["enable_language_identification"] = True
        if options.custom_vocabulary:
            request["context"] = {"terms": list(options.custom_vocabulary)}
        if options.webhook_url:
            request["webhook_url"] = options.webhook_url
        request.update(options.extra)
        return request

    async def _upload(self, audio: AudioFile) -> str:
        response = await self._request(
            "POST", "/v1/files", files={"file": (audio.filename, audio.content, audio.mime_type)}
        )
        file_id = response.json().get("id")
        if not file_id:
            raise ProviderError("Soniox upload returned no file id", code="PARSE_ERROR")
        return file_id

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        if isinstance(audio, AudioFile):
            request = self.build_request(options, file_id=await self._upload(audio))
        else:
            request = self.build_request(options, audio_url=audio.url)
        response = await self._request("POST", "/v1/transcriptions", json=request)
        return normalizer.normalize_transcription(response.json())

    async def _get_transcript(self, transcript_id: str) -> UnifiedTranscriptResponse:
        response = await self._request("GET", f"/v1/transcriptions/{transcript_id}")
        job = response.json()
        result = normalizer.normalize_transcription(job)
        if not result.success or result.data.status is not TranscriptionStatus.COMPLETED:
            return result
        transcript = await self._request("GET", f"/v1/transcriptions/{transcript_id}/transcript")
        return normalizer.normalize_transcript(job, transcript.json())

    async def _list_transcripts(self, options: ListTranscriptsOptions) -> ListTranscriptsResponse:
        params: Dict[str, Any] = dict(options.extra)
        if options.limit:
            params["limit"] = options.limit
        response = await self._request("GET", "/v1/transcriptions", params=params)
        payload = response.json()
        jobs = [normalizer.normalize_transcription(job) for job in payload.get("transcriptions") or []]
        if options.status:
            jobs = [j for j in jobs if (j.data.status.value if j.success else "error") == options.status]
        return ListTranscriptsResponse(
            success=True,
            provider=self.name,
            transcripts=jobs,
            has_more=bool(payload.get("next_page_cursor")),
            raw=payload,
        )

    async def _delete_transcript(self, transcript_id: str) -> None:
        await self._request("DELETE", f"/v1/transcriptions/{transcript_id}")
