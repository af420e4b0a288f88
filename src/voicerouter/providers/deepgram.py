"""Deepgram provider.

Batch is synchronous: one POST to /v1/listen returns the finished
transcript. Streaming talks the /v1/listen WebSocket protocol directly.
Provider-side VAD is off by default; rely on Pipecat VAD and
`force_endpoint()` for segmentation.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from voicerouter.adapter import ProviderAdapter, ws_url
from voicerouter.audio import provider_encoding
from voicerouter.errors import VoiceRouterError
from voicerouter.normalizers import deepgram as normalizer
from voicerouter.session import Decoded, WireProtocol
from voicerouter.transport import Frame
from voicerouter.types import (
    AudioFile,
    AudioInput,
    ProviderCapabilities,
    ProviderProfile,
    StreamingOptions,
    TranscribeOptions,
    TranscriptData,
    TranscriptionStatus,
    UnifiedTranscriptResponse,
    language_code,
)

DEFAULT_MODEL = "nova-3-general"

DEEPGRAM_PROFILE = ProviderProfile(
    name="deepgram",
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
    ),
    streaming_features={"diarization", "word_timestamps", "custom_vocabulary", "pii_redaction"},
)


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _vocabulary_param(model: str) -> str:
    # nova-3 replaced keyword boosting with keyterm prompting
    return "keyterm" if model.startswith("nova-3") else "keywords"


def live_params(options: StreamingOptions) -> Dict[str, Any]:
    model = options.model or DEFAULT_MODEL
    params: Dict[str, Any] = {
        "encoding": provider_encoding("deepgram", options.encoding),
        "sample_rate": options.sample_rate,
        "channels": options.channels,
        "model": model,
        "interim_results": _flag(options.interim_results),
        "smart_format": "true",
        "punctuate": "true",
        "profanity_filter": "true",
        "vad_events": "false",
    }
    language = language_code(options.language)
    if language:
        params["language"] = language
    if options.diarization:
        params["diarize"] = "true"
    if options.pii_redaction:
        params["redact"] = "pii"
    if options.custom_vocabulary:
        params[_vocabulary_param(model)] = list(options.custom_vocabulary)
    if options.endpointing is not None:
        params["endpointing"] = options.endpointing
    if options.max_silence is not None:
        params["utterance_end_ms"] = options.max_silence
    params.update(options.extra)
    return params


class DeepgramProtocol(WireProtocol):
    label = "Deepgram"
    # The server closes the socket once CloseStream has been processed.
    awaits_close_ack = True
    keepalive_interval = 5.0

    def encode_force_endpoint(self) -> Optional[Frame]:
        return json.dumps({"type": "Finalize"})

    def encode_finalize(self) -> List[Frame]:
        return [json.dumps({"type": "CloseStream"})]

    def encode_keepalive(self) -> Optional[Frame]:
        return json.dumps({"type": "KeepAlive"})

    def decode(self, frame: Frame) -> Decoded:
        message = self.parse_json(frame)
        kind = message.get("type")
        if kind == "Error":
            return Decoded(error=normalizer.stream_error(message))
        return Decoded(
            events=normalizer.stream_events(message),
            session_id=message.get("request_id") if kind == "Metadata" else None,
        )


class DeepgramAdapter(ProviderAdapter):
    PROFILE = DEEPGRAM_PROFILE
    label = "Deepgram"
    default_base_url = "https://api.deepgram.com"
    protocol_class = DeepgramProtocol

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self.config.api_key}"}

    def _stream_headers(self) -> Dict[str, str]:
        return self._auth_headers()

    def _stream_url(self, options: StreamingOptions) -> str:
        return f"{ws_url(self.base_url)}/v1/listen?{urlencode(live_params(options), doseq=True)}"

    def batch_params(self, options: TranscribeOptions) -> Dict[str, Any]:
        model = options.model or DEFAULT_MODEL
        params: Dict[str, Any] = {
            "model": model,
            "punctuate": "true",
            "utterances": "true",
            "smart_format": "true",
        }
        language = language_code(options.language)
        if language:
            params["language"] = language
        if options.language_detection:
            params["detect_language"] = "true"
        if options.diarization:
            params["diarize"] = "true"
        if options.custom_vocabulary:
            params[_vocabulary_param(model)] = list(options.custom_vocabulary)
        if options.summarization:
            params["summarize"] = "v2"
        if options.sentiment_analysis:
            params["sentiment"] = "true"
        if options.entity_detection:
            params["detect_entities"] = "true"
        if options.pii_redaction:
            params["redact"] = "pii"
        if options.webhook_url:
            params["callback"] = options.webhook_url
        params.update(options.extra)
        return params

    async def _transcribe(self, audio: AudioInput, options: TranscribeOptions) -> UnifiedTranscriptResponse:
        params = self.batch_params(options)
        if isinstance(audio, AudioFile):
            response = await self._request(
                "POST",
                "/v1/listen",
                params=params,
                content=audio.content,
                headers={"Content-Type": audio.mime_type or "audio/*"},
            )
        else:
            response = await self._request("POST", "/v1/listen", params=params, json={"url": audio.url})
        payload = response.json()
        if options.webhook_url:
            # With a callback the API only acknowledges the request.
            return _accepted(payload)
        return normalizer.normalize_transcript(payload)


def _accepted(payload: Dict[str, Any]) -> UnifiedTranscriptResponse:
    request_id = payload.get("request_id")
    if not request_id:
        raise VoiceRouterError("Deepgram did not return a request id", code="PARSE_ERROR", details=payload)
    data = TranscriptData(id=request_id, text="", status=TranscriptionStatus.QUEUED)
    return UnifiedTranscriptResponse.succeeded("deepgram", data, raw=payload)
