"""Gladia provider.

Pre-recorded jobs are created against /v2/pre-recorded and polled. A live
session is a two step handshake: POST /v2/live returns a one-time WebSocket
URL, then audio goes over that socket as binary frames.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
from loguru import logger

from voicerouter.adapter import ProviderAdapter, error_from_exception
from voicerouter.audio import provider_encoding
from voicerouter.errors import ProviderError
from voicerouter.normalizers import gladia as normalizer
from voicerouter.session import Decoded, WireProtocol
from voicerouter.transport import Frame, Transport
from voicerouter.types import (
    AudioFile,
    AudioFileResponse,
    AudioInput,
    FieldPolicy,
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

GLADIA_PROFILE = ProviderProfile(
    name="gladia",
    capabilities=ProviderCapabilities(
        streaming=True,
        diarization=True,
        word_timestamps=True,
        language_detection=True,
        custom_vocabulary=True,
        summarization=True,
        sentiment_analysis=True,
        entity_detection=True,
        pii_redaction=False,
        list_transcripts=True,
        delete_transcript=True,
        get_audio_file=True,
    ),
    field_policies={"pii_redaction": FieldPolicy.IGNORE},
    streaming_features={
        "word_timestamps",
        "custom_vocabulary",
        "sentiment_analysis",
        "entity_detection",
        "summarization",
        "language_detection",
    },
)

# Unified list filter -> Gladia job status.
_LIST_STATUS = {"completed": "done"}


def _language_config(language: Any, detect: bool) -> Dict[str, Any]:
    code = language_code(language)
    return {"languages": [code] if code else [], "code_switching": bool(detect)}


def live_request(options: StreamingOptions) -> Dict[str, Any]:
    request: Dict[str, Any] = {
        "encoding": provider_encoding("gladia", options.encoding),
        "sample_rate": options.sample_rate,
        "bit_depth": options.bit_depth,
        "channels": options.channels,
    }
    if options.model:
        request["model"] = options.model
    if options.endpointing is not None:
        request["endpointing"] = options.endpointing / 1000.0
    if options.max_silence is not None:
        request["maximum_duration_without_endpointing"] = options.max_silence / 1000.0
    if options.language is not None or options.language_detection:
        request["language_config"] = _language_config(options.language, options.language_detection)

    realtime: Dict[str, Any] = {}
    if options.custom_vocabulary:
        realtime["custom_vocabulary"] = True
        realtime["custom_vocabulary_config"] = {"vocabulary": list(options.custom_vocabulary)}
    if options.translation_languages:
        realtime["translation"] = True
        realtime["translation_config"] = {"target_languages": list(options.translation_languages)}
    if options.sentiment_analysis:
        realtime["sentiment_analysis"] = True
    if options.entity_detection:
        realtime["named_entity_recognition"] = True
    if realtime:
        request["realtime_processing"] = realtime
    if options.summarization:
        request["post_processing"] = {"summarization": True}

    request["messages_config"] = {
        "receive_partial_transcripts": options.interim_results,
        "receive_final_transcripts": True,
        "receive_speech_events": True,
        "receive_pre_processing_events": True,
        "receive_realtime_processing_events": True,
        "receive_post_processing_events": True,
        "receive_acknowledgments": False,
        "receive_lifecycle_events": True,
    }
    request.update(options.extra)
    return request


class GladiaProtocol(WireProtocol):
    label = "Gladia"
    awaits_close_ack = True

    def encode_finalize(self) -> List[Frame]:
        return [json.dumps({"type": "stop_recording"})]

    def decode(self, frame: Frame) -> Decoded:
        message = self.parse_json(frame)
        kind = message.get("type")
        if kind == "error":
            return Decoded(error=normalizer.stream_error(message))
        return Decoded(
            events=normalizer.stream_events(message),
            final=kind == "end_session",
            session_id=message.get("session_id"),
        )


class GladiaAdapter(ProviderAdapter):
    PROFILE = GLADIA_PROFILE
    label = "Gladia"
    default_base_url = "https://api.gladia.io"
    protocol_class = GladiaProtocol

    def _auth_headers(self) -> Dict[str, str]:
        return {"x-gladia-key": self.config.api_key}

    async def _open_stream(self, options: StreamingOptions) -> Transport:
        try:
            response = await self._request("POST", "/v2/live", json=live_request(options))
            session = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise error_from_exception(e, self.label)
        url = session.get("url")
        if not url:
            raise ProviderError("Gladia did not return a live session URL", code="PARSE_ERROR", details=session)
        logger.debug(f"[VoiceRouter.{self.label}] Live session {session.get('id')} created")
        # The URL carries its own token.
        return self._transport_factory(url, {}, name=self.label)

    def build_request(self, audio_url: str, options: TranscribeOptions) -> Dict[str, Any]:
        request: Dict[str, Any] = {"audio_url": audio_url}
        if options.language is not None or options.language_detection:
            request["language_config"] = _language_config(options.language, options.language_detection)
        if options.diarization:
            request["diarization"] = True
            if options.speakers_expected:
                request["diarization_config"] = {"number_of_speakers": options.speakers_expected}
        if options.custom_vocabulary:
            request["custom_vocabulary"] = True
            request["custom_vocabulary_config"] = {"vocabulary": list(options.custom_vocabulary)}
        if options.summarization:
            request["summarization"] = True
        if options.sentiment_analysis:
            request["sentiment_analysis"] = True
        if options.entity_detection:
            request["named_entity_recognition"] = True
        if options.webhook_url:
            request["callback"] = True
            request["callback_config"] = {"url": options.webhook_url, "method": "POST"}
        request.update(options.extra)
        return request

    async def _upload(self, audio: AudioFile) -> str:
        response = await self._request(
            "POST", "/v2/upload", files={"audio": (audio.filename, audio.content, audio.mime_type)}
        )
        audio_url = response.json().get("audio_url")
        if not audio_url:
            raise ProviderError("Gladia upload returned no audio_url", code="PARSE_ERROR")
        return audio_url

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        audio_url = await self._upload(audio) if isinstance(audio, AudioFile) else audio.url
        response = await self._request("POST", "/v2/pre-recorded", json=self.build_request(audio_url, options))
        payload = response.json()
        # The job is only created here; the result comes from polling.
        data = TranscriptData(
            id=payload["id"],
            text="",
            status=TranscriptionStatus.QUEUED,
            metadata={"result_url": payload.get("result_url")} if payload.get("result_url") else {},
        )
        return UnifiedTranscriptResponse.succeeded(self.name, data, raw=payload)

    async def _get_transcript(self, transcript_id: str) -> UnifiedTranscriptResponse:
        response = await self._request("GET", f"/v2/pre-recorded/{transcript_id}")
        return normalizer.normalize_transcript(response.json())

    async def _list_transcripts(self, options: ListTranscriptsOptions) -> ListTranscriptsResponse:
        params: Dict[str, Any] = {"kind": "pre-recorded", **options.extra}
        if options.limit:
            params["limit"] = options.limit
        if options.offset:
            params["offset"] = options.offset
        if options.status:
            params["status"] = _LIST_STATUS.get(options.status, options.status)
        response = await self._request("GET", "/v2/transcription", params=params)
        payload = response.json()
        items = payload.get("items") or []
        return ListTranscriptsResponse(
            success=True,
            provider=self.name,
            transcripts=[normalizer.normalize_list_item(item) for item in items],
            total=payload.get("total"),
            has_more=bool(payload.get("next")),
            raw=payload,
        )

    async def _delete_transcript(self, transcript_id: str) -> None:
        await self._request("DELETE", f"/v2/pre-recorded/{transcript_id}")

    async def _get_audio_file(self, transcript_id: str) -> AudioFileResponse:
        response = await self._request("GET", f"/v2/pre-recorded/{transcript_id}/file")
        return AudioFileResponse(
            success=True,
            provider=self.name,
            content=response.content,
            content_type=response.headers.get("content-type"),
        )
