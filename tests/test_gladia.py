import asyncio
import json

import httpx
import pytest
from fakes import FakeAPI, FakeTransportFactory, Recorder, wait_until

from voicerouter.config import ProviderConfig
from voicerouter.errors import CapabilityError
from voicerouter.providers.gladia import GladiaAdapter, GladiaProtocol, live_request
from voicerouter.types import (
    AudioFile,
    AudioUrl,
    EntityEvent,
    ListTranscriptsOptions,
    MetadataEvent,
    SessionState,
    SpeechStartEvent,
    StreamingOptions,
    TranscribeOptions,
    TranscriptionStatus,
    TranslationEvent,
)

CONFIG = ProviderConfig(api_key="gl-key", options={"poll_interval": 0, "close_timeout": 0.5})

DONE = {
    "id": "job-1",
    "status": "done",
    "file": {"source": "https://example.com/a.wav", "audio_duration": 4.2},
    "result": {
        "transcription": {
            "full_transcript": "Bonjour. Hello.",
            "languages": ["fr"],
            "utterances": [
                {
                    "text": "Bonjour.",
                    "start": 0.0,
                    "end": 0.8,
                    "speaker": 0,
                    "confidence": 0.9,
                    "words": [{"word": " Bonjour.", "start": 0.0, "end": 0.8, "confidence": 0.9}],
                },
                {"text": "Hello.", "start": 1.0, "end": 1.5, "speaker": 1, "confidence": 0.8, "words": []},
            ],
        },
        "summarization": {"success": True, "results": "A greeting."},
        "moderation": {"success": True, "results": "safe"},
    },
}


def _end_session_replies(frame):
    if isinstance(frame, str) and json.loads(frame)["type"] == "stop_recording":
        return [{"type": "end_session", "session_id": "live-1"}]
    return None


def test_pii_redaction_is_ignored_not_rejected() -> None:
    api = FakeAPI({("POST", "/v2/pre-recorded"): {"id": "job-1", "result_url": "https://api.gladia.io/v2/pre-recorded/job-1"}})
    adapter = GladiaAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(
        adapter.transcribe(AudioUrl("https://example.com/a.wav"), TranscribeOptions(pii_redaction=True))
    )

    assert response.success
    assert response.ignored_options == ("pii_redaction",)
    assert response.data.status is TranscriptionStatus.QUEUED
    assert "pii_redaction" not in api.json_body("POST", "/v2/pre-recorded")


def test_streaming_rejects_diarization() -> None:
    adapter = GladiaAdapter(CONFIG, transport_factory=FakeTransportFactory())
    with pytest.raises(CapabilityError) as exc:
        asyncio.run(adapter.transcribe_stream(StreamingOptions(diarization=True)))
    assert exc.value.details == {"fields": ["diarization"]}


def test_live_request_body() -> None:
    body = live_request(
        StreamingOptions(
            sample_rate=8000,
            encoding="mulaw",
            bit_depth=8,
            endpointing=300,
            translation_languages=("en",),
            entity_detection=True,
            language="fr",
        )
    )
    assert body["encoding"] == "wav/ulaw"
    assert body["sample_rate"] == 8000
    assert body["endpointing"] == 0.3
    assert body["language_config"] == {"languages": ["fr"], "code_switching": False}
    assert body["realtime_processing"]["translation_config"] == {"target_languages": ["en"]}
    assert body["realtime_processing"]["named_entity_recognition"] is True
    assert body["messages_config"]["receive_partial_transcripts"] is True


def test_live_session_initialises_then_streams() -> None:
    api = FakeAPI({("POST", "/v2/live"): {"id": "live-1", "url": "wss://api.gladia.io/v2/live?token=abc"}})
    factory = FakeTransportFactory(responder=_end_session_replies)
    adapter = GladiaAdapter(CONFIG, http_transport=api.transport, transport_factory=factory)
    rec = Recorder()

    async def scenario():
        session = await adapter.transcribe_stream(StreamingOptions(translation_languages=("en",)), rec)
        await session.send(b"\x01\x02" * 100)
        await wait_until(lambda: session.state is SessionState.STREAMING)
        transport = factory.last
        transport.push({"type": "speech_start", "session_id": "live-1", "data": {"time": 0.4}})
        transport.push(
            {
                "type": "transcript",
                "session_id": "live-1",
                "data": {
                    "is_final": True,
                    "utterance": {
                        "text": "Bonjour",
                        "start": 0.4,
                        "end": 1.1,
                        "language": "fr",
                        "confidence": 0.9,
                        "words": [{"word": "Bonjour", "start": 0.4, "end": 1.1, "confidence": 0.9}],
                    },
                },
            }
        )
        transport.push(
            {
                "type": "translation",
                "session_id": "live-1",
                "error": None,
                "data": {
                    "target_language": "en",
                    "utterance": {"text": "Bonjour"},
                    "translated_utterance": {"text": "Hello"},
                },
            }
        )
        transport.push({"type": "named_entity_recognition", "error": {"message": "quota"}, "data": None})
        await wait_until(lambda: len(rec.events) >= 5)
        await session.close()
        return session, transport

    session, transport = asyncio.run(scenario())

    assert transport.url == "wss://api.gladia.io/v2/live?token=abc"
    assert transport.headers == {}
    init = api.sent("POST", "/v2/live")[0]
    assert init.headers["x-gladia-key"] == "gl-key"
    assert json.loads(init.content)["encoding"] == "wav/pcm"

    assert session.state is SessionState.CLOSED
    assert session.provider_session_id == "live-1"
    assert rec.slots[:5] == ["on_speech_start", "on_transcript", "on_utterance", "on_translation", "on_metadata"]
    assert isinstance(rec.of("on_speech_start")[0], SpeechStartEvent)
    translation = rec.of("on_translation")[0]
    assert isinstance(translation, TranslationEvent)
    assert (translation.translated_text, translation.original) == ("Hello", "Bonjour")
    assert rec.of("on_metadata")[0].kind == "named_entity_recognition_error"
    assert "on_error" not in rec.slots
    assert transport.text_frames[-1] == {"type": "stop_recording"}
    assert rec.of("on_close")[0].code == 1000


def test_live_initialisation_failure_is_reported_through_callbacks() -> None:
    api = FakeAPI({("POST", "/v2/live"): (401, {"message": "Invalid key"})})
    factory = FakeTransportFactory()
    adapter = GladiaAdapter(CONFIG, http_transport=api.transport, transport_factory=factory)
    rec = Recorder()

    async def scenario():
        session = await adapter.transcribe_stream(StreamingOptions(), rec)
        await wait_until(lambda: session.state.is_terminal)
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert session.state is SessionState.ERRORED
    assert rec.slots == ["on_error", "on_close"]
    assert rec.of("on_error")[0].code == "PROVIDER_ERROR"
    assert factory.transports == []


def test_error_message_is_terminal() -> None:
    decoded = GladiaProtocol(StreamingOptions()).decode(
        json.dumps({"type": "error", "error": {"code": "INVALID_AUDIO", "message": "bad frame"}})
    )
    assert decoded.error.code == "INVALID_AUDIO"
    assert decoded.error.message == "bad frame"


def test_entities_and_lifecycle_messages() -> None:
    protocol = GladiaProtocol(StreamingOptions())
    entities = protocol.decode(
        json.dumps(
            {
                "type": "named_entity_recognition",
                "error": None,
                "data": {"results": [{"text": "Paris", "entity_type": "LOCATION", "start": 1.0, "end": 1.4}]},
            }
        )
    )
    assert isinstance(entities.events[0], EntityEvent)
    assert entities.events[0].entity_type == "LOCATION"

    ended = protocol.decode(json.dumps({"type": "end_session", "session_id": "s"}))
    assert ended.final
    assert isinstance(ended.events[0], MetadataEvent)


def test_upload_then_poll_until_done() -> None:
    def upload(request: httpx.Request) -> httpx.Response:
        assert b'name="audio"' in request.content
        assert b"sound" in request.content
        return httpx.Response(200, json={"audio_url": "https://api.gladia.io/file/abc"})

    api = FakeAPI(
        {
            ("POST", "/v2/upload"): upload,
            ("POST", "/v2/pre-recorded"): {"id": "job-1", "result_url": "https://api.gladia.io/v2/pre-recorded/job-1"},
            ("GET", "/v2/pre-recorded/job-1"): [{"id": "job-1", "status": "processing"}, DONE],
        }
    )
    adapter = GladiaAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(
        adapter.transcribe(
            AudioFile(b"sound", filename="a.wav", mime_type="audio/wav"),
            TranscribeOptions(diarization=True, summarization=True, wait_for_completion=True),
        )
    )

    assert response.success
    data = response.data
    assert data.status is TranscriptionStatus.COMPLETED
    assert data.text == "Bonjour. Hello."
    assert data.language == "fr"
    assert data.summary == "A greeting."
    assert data.duration == 4.2
    assert [s.id for s in data.speakers] == ["0", "1"]
    assert data.words[0].text == "Bonjour."
    assert data.metadata["moderation"] == {"success": True, "results": "safe"}

    body = api.json_body("POST", "/v2/pre-recorded")
    assert body["audio_url"] == "https://api.gladia.io/file/abc"
    assert body["diarization"] is True
    assert body["summarization"] is True


def test_errored_job() -> None:
    api = FakeAPI({("GET", "/v2/pre-recorded/job-2"): {"id": "job-2", "status": "error", "error_code": 422}})
    adapter = GladiaAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(adapter.get_transcript("job-2"))

    assert not response.success
    assert response.error.status_code == 422


def test_list_maps_completed_filter_to_done() -> None:
    api = FakeAPI(
        {
            ("GET", "/v2/transcription"): {
                "items": [{"id": "job-1", "status": "done", "kind": "pre-recorded"}],
                "next": "https://api.gladia.io/v2/transcription?offset=1",
            }
        }
    )
    adapter = GladiaAdapter(CONFIG, http_transport=api.transport)

    listed = asyncio.run(adapter.list_transcripts(ListTranscriptsOptions(limit=1, status="completed")))

    assert listed.success and listed.has_more
    assert listed.transcripts[0].data.status is TranscriptionStatus.COMPLETED
    params = api.sent("GET", "/v2/transcription")[0].url.params
    assert params["status"] == "done"
    assert params["limit"] == "1"


def test_audio_file_and_delete() -> None:
    api = FakeAPI(
        {
            ("GET", "/v2/pre-recorded/job-1/file"): lambda request: httpx.Response(
                200, content=b"RIFFdata", headers={"content-type": "audio/wav"}
            ),
            ("DELETE", "/v2/pre-recorded/job-1"): lambda request: httpx.Response(202),
        }
    )
    adapter = GladiaAdapter(CONFIG, http_transport=api.transport)

    async def scenario():
        return await adapter.get_audio_file("job-1"), await adapter.delete_transcript("job-1")

    audio, deleted = asyncio.run(scenario())

    assert audio.success and audio.content == b"RIFFdata" and audio.content_type == "audio/wav"
    assert deleted.success
