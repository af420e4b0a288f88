import asyncio
import json
from urllib.parse import parse_qs, urlparse

import pytest
from fakes import FakeAPI, FakeTransportFactory, Recorder, wait_until

from voicerouter.config import ProviderConfig
from voicerouter.errors import CapabilityError
from voicerouter.providers.deepgram import DeepgramAdapter, DeepgramProtocol, live_params
from voicerouter.transport import TransportClosed
from voicerouter.types import (
    AudioFile,
    AudioUrl,
    MetadataEvent,
    SessionState,
    SpeechEndEvent,
    StreamingOptions,
    TranscribeOptions,
    TranscriptEvent,
    TranscriptionStatus,
    UtteranceEvent,
)

CONFIG = ProviderConfig(api_key="dg-key", options={"close_timeout": 0.5})

PRERECORDED = {
    "metadata": {"request_id": "req-1", "duration": 2.5, "model_info": {"m": {"name": "nova-3"}}},
    "results": {
        "channels": [
            {
                "detected_language": "en",
                "alternatives": [
                    {
                        "transcript": "hello world",
                        "confidence": 0.93,
                        "words": [
                            {"word": "hello", "punctuated_word": "Hello", "start": 0.1, "end": 0.4, "speaker": 0},
                            {"word": "world", "punctuated_word": "world.", "start": 0.5, "end": 0.9, "speaker": 1},
                        ],
                    }
                ],
            }
        ],
        "utterances": [
            {"transcript": "Hello", "start": 0.1, "end": 0.4, "speaker": 0, "words": []},
            {"transcript": "world.", "start": 0.5, "end": 0.9, "speaker": 1, "words": []},
        ],
    },
}


def _close_stream_replies(frame):
    if isinstance(frame, str) and json.loads(frame)["type"] == "CloseStream":
        return [{"type": "Metadata", "request_id": "live-1"}, TransportClosed(1000, "", clean=True)]
    return None


def test_live_params_defaults_and_keyterms() -> None:
    params = live_params(
        StreamingOptions(language="en-US", custom_vocabulary=("Pipecat", "Daily"), max_silence=1000)
    )
    assert params["model"] == "nova-3-general"
    assert params["encoding"] == "linear16"
    assert params["interim_results"] == "true"
    assert params["vad_events"] == "false"
    assert params["keyterm"] == ["Pipecat", "Daily"]
    assert params["utterance_end_ms"] == 1000
    assert "keywords" not in params


def test_older_models_use_keywords() -> None:
    params = live_params(StreamingOptions(model="nova-2", custom_vocabulary=("x",)))
    assert params["keywords"] == ["x"]


def test_streaming_rejects_features_the_socket_cannot_express() -> None:
    adapter = DeepgramAdapter(CONFIG, transport_factory=FakeTransportFactory())
    with pytest.raises(CapabilityError) as exc:
        asyncio.run(adapter.transcribe_stream(StreamingOptions(summarization=True, sentiment_analysis=True)))
    assert exc.value.details == {"fields": ["summarization", "sentiment_analysis"]}


def test_stream_url_and_auth_header() -> None:
    factory = FakeTransportFactory(responder=_close_stream_replies)
    adapter = DeepgramAdapter(CONFIG, transport_factory=factory)

    async def scenario():
        session = await adapter.transcribe_stream(StreamingOptions(diarization=True, custom_vocabulary=("a", "b")))
        await wait_until(lambda: factory.transports)
        await session.close()

    asyncio.run(scenario())

    transport = factory.last
    url = urlparse(transport.url)
    query = parse_qs(url.query)
    assert (url.scheme, url.netloc, url.path) == ("wss", "api.deepgram.com", "/v1/listen")
    assert query["diarize"] == ["true"]
    assert query["keyterm"] == ["a", "b"]
    assert transport.headers["Authorization"] == "Token dg-key"


def test_streaming_session_end_to_end() -> None:
    factory = FakeTransportFactory(responder=_close_stream_replies)
    adapter = DeepgramAdapter(CONFIG, transport_factory=factory)
    rec = Recorder()

    async def scenario():
        session = await adapter.transcribe_stream(StreamingOptions(), rec)
        await session.send(b"\x00\x01" * 160)
        await wait_until(lambda: session.state is SessionState.STREAMING)
        transport = factory.last
        transport.push(
            {
                "type": "Results",
                "is_final": False,
                "channel": {"alternatives": [{"transcript": "hel", "confidence": 0.5, "words": []}]},
            }
        )
        transport.push(
            {
                "type": "Results",
                "is_final": True,
                "speech_final": True,
                "start": 1.0,
                "duration": 0.8,
                "channel": {
                    "alternatives": [
                        {
                            "transcript": "hello",
                            "confidence": 0.9,
                            "words": [{"word": "hello", "start": 1.0, "end": 1.5, "confidence": 0.9}],
                        }
                    ]
                },
            }
        )
        transport.push({"type": "Results", "is_final": True, "channel": {"alternatives": [{"transcript": ""}]}})
        transport.push({"type": "UtteranceEnd", "last_word_end": 1.5})
        endpoint = await session.force_endpoint()
        await wait_until(lambda: len(rec.events) >= 4)
        await session.close()
        return session, transport, endpoint

    session, transport, endpoint = asyncio.run(scenario())

    assert endpoint.ok
    assert session.state is SessionState.CLOSED
    assert session.provider_session_id == "live-1"
    events = [e for _, e in rec.events]
    assert [type(e) for e in events] == [
        TranscriptEvent,
        TranscriptEvent,
        UtteranceEvent,
        SpeechEndEvent,
        MetadataEvent,
        type(events[-1]),
    ]
    assert [e.is_final for e in events[:2]] == [False, True]
    assert (events[2].start, events[2].end) == (1.0, 1.8)
    assert rec.slots[-1] == "on_close"
    assert rec.of("on_close")[0].code == 1000
    assert {"type": "Finalize"} in transport.text_frames
    assert transport.text_frames[-1] == {"type": "CloseStream"}


def test_error_frame_ends_the_session() -> None:
    factory = FakeTransportFactory()
    adapter = DeepgramAdapter(CONFIG, transport_factory=factory)
    rec = Recorder()

    async def scenario():
        session = await adapter.transcribe_stream(StreamingOptions(), rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        factory.last.push({"type": "Error", "variant": "INVALID_AUDIO", "description": "bad audio"})
        await wait_until(lambda: session.state.is_terminal)
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert session.state is SessionState.ERRORED
    assert rec.slots == ["on_error", "on_close"]
    assert rec.of("on_error")[0].code == "INVALID_AUDIO"


def test_malformed_results_frame_is_surfaced_and_reading_continues() -> None:
    factory = FakeTransportFactory(responder=_close_stream_replies)
    adapter = DeepgramAdapter(CONFIG, transport_factory=factory)
    rec = Recorder()

    async def scenario():
        session = await adapter.transcribe_stream(StreamingOptions(), rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        factory.last.push({"type": "Results", "channel": "x"})
        factory.last.push(
            {"type": "Results", "is_final": True, "channel": {"alternatives": [{"transcript": "after"}]}}
        )
        await wait_until(lambda: rec.of("on_transcript"))
        state = session.state
        await session.close()
        return rec, state

    rec, state = asyncio.run(scenario())

    assert state is SessionState.OPEN
    assert rec.slots[:2] == ["on_metadata", "on_transcript"]
    assert rec.of("on_metadata")[0].kind == "unparsed"
    assert rec.of("on_transcript")[0].text == "after"


def test_transcribe_url() -> None:
    api = FakeAPI({("POST", "/v1/listen"): PRERECORDED})
    adapter = DeepgramAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(
        adapter.transcribe(AudioUrl("https://example.com/a.wav"), TranscribeOptions(diarization=True))
    )

    assert response.success
    data = response.data
    assert (data.id, data.text, data.status) == ("req-1", "hello world", TranscriptionStatus.COMPLETED)
    assert data.language == "en"
    assert [w.text for w in data.words] == ["Hello", "world."]
    assert [s.id for s in data.speakers] == ["0", "1"]
    assert data.metadata["model_info"] == {"m": {"name": "nova-3"}}
    assert response.raw == PRERECORDED

    request = api.sent("POST", "/v1/listen")[0]
    assert request.headers["authorization"] == "Token dg-key"
    assert request.url.params["diarize"] == "true"
    assert request.url.params["utterances"] == "true"
    assert json.loads(request.content) == {"url": "https://example.com/a.wav"}


def test_transcribe_file_posts_raw_bytes() -> None:
    api = FakeAPI({("POST", "/v1/listen"): PRERECORDED})
    adapter = DeepgramAdapter(CONFIG, http_transport=api.transport)

    asyncio.run(adapter.transcribe(AudioFile(b"RIFF....", mime_type="audio/wav")))

    request = api.sent("POST", "/v1/listen")[0]
    assert request.content == b"RIFF...."
    assert request.headers["content-type"] == "audio/wav"


def test_webhook_returns_queued_request() -> None:
    api = FakeAPI({("POST", "/v1/listen"): {"request_id": "cb-1"}})
    adapter = DeepgramAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(
        adapter.transcribe(AudioUrl("https://example.com/a.wav"), TranscribeOptions(webhook_url="https://hook"))
    )

    assert response.success
    assert response.data.status is TranscriptionStatus.QUEUED
    assert api.sent("POST", "/v1/listen")[0].url.params["callback"] == "https://hook"


def test_http_error_is_returned_not_raised() -> None:
    api = FakeAPI({("POST", "/v1/listen"): (401, {"err_msg": "Invalid credentials"})})
    adapter = DeepgramAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(adapter.transcribe(AudioUrl("https://example.com/a.wav")))

    assert not response.success
    assert response.error.status_code == 401
    assert response.error.code == "PROVIDER_ERROR"
    assert response.raw == {"err_msg": "Invalid credentials"}


def test_empty_results_are_no_results() -> None:
    api = FakeAPI({("POST", "/v1/listen"): {"metadata": {}, "results": {"channels": []}}})
    adapter = DeepgramAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(adapter.transcribe(AudioUrl("https://example.com/a.wav")))

    assert response.error.code == "NO_RESULTS"


def test_unexpected_body_shape_is_a_parse_error() -> None:
    api = FakeAPI({("POST", "/v1/listen"): (200, ["unexpected"])})
    adapter = DeepgramAdapter(CONFIG, http_transport=api.transport)

    response = asyncio.run(adapter.transcribe(AudioUrl("https://example.com/a.wav")))

    assert not response.success
    assert response.error.code == "PARSE_ERROR"


def test_job_operations_are_unsupported() -> None:
    adapter = DeepgramAdapter(CONFIG)

    async def scenario():
        return (
            await adapter.get_transcript("x"),
            await adapter.list_transcripts(),
            await adapter.delete_transcript("x"),
            await adapter.get_audio_file("x"),
        )

    for response in asyncio.run(scenario()):
        assert not response.success
        assert response.error.code == "NOT_SUPPORTED"


def test_protocol_keepalive_and_session_id() -> None:
    protocol = DeepgramProtocol(StreamingOptions())
    assert json.loads(protocol.encode_keepalive()) == {"type": "KeepAlive"}
    decoded = protocol.decode(json.dumps({"type": "Metadata", "request_id": "r-9"}))
    assert decoded.session_id == "r-9"
    assert isinstance(decoded.events[0], MetadataEvent)
