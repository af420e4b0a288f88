import asyncio

from fakes import (
    AckingProtocol,
    FakeTransport,
    ReadyFrameProtocol,
    Recorder,
    ScriptedProtocol,
    clean_close_on_finalize,
    finalize_replies,
    make_session,
    wait_until,
)

from voicerouter.errors import (
    OperationTimeoutError,
    SessionClosedError,
    TransportError,
    UnsupportedOperationError,
)
from voicerouter.session import OutboundQueue
from voicerouter.state import TRANSITIONS
from voicerouter.transport import TransportClosed
from voicerouter.types import SessionState


def _assert_legal_history(history) -> None:
    for before, after in zip(history, history[1:]):
        assert after in TRANSITIONS[before], f"{before} -> {after}"


def test_send_then_close_reaches_closed_with_one_close_event() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, callbacks=rec)
        for chunk in (b"a1", b"a2", b"a3"):
            assert (await session.send(chunk)).ok
        await wait_until(lambda: session.state is SessionState.STREAMING)
        await session.close()
        await session.close()
        return session, transport, rec

    session, transport, rec = asyncio.run(scenario())

    assert session.state is SessionState.CLOSED
    assert rec.slots == ["on_close"]
    close = rec.of("on_close")[0]
    assert (close.code, close.reason, close.forced) == (1000, "normal closure", False)
    assert transport.audio_frames == [b"a1", b"a2", b"a3"]
    assert transport.text_frames[-1] == {"type": "finalize"}
    assert transport.closed_with == (1000, "")
    assert session.history == [
        SessionState.CONNECTING,
        SessionState.OPEN,
        SessionState.STREAMING,
        SessionState.CLOSING,
        SessionState.CLOSED,
    ]


def test_close_forces_transport_when_provider_never_acknowledges() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport()
        session = make_session(transport, callbacks=rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        await session.close()
        return session, transport, rec

    session, transport, rec = asyncio.run(scenario())

    assert session.state is SessionState.CLOSED
    assert transport.aborted
    [close] = rec.of("on_close")
    assert close.forced
    assert close.code == 1006
    assert close.reason.startswith("forced close")


def test_clean_server_close_counts_as_close_acknowledgment() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport(responder=clean_close_on_finalize)
        session = make_session(transport, callbacks=rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        await session.close()
        return session, rec

    session, rec = asyncio.run(scenario())

    assert session.state is SessionState.CLOSED
    [close] = rec.of("on_close")
    assert (close.code, close.reason, close.forced) == (1000, "bye", False)


def test_transport_drop_while_streaming_reports_error_then_close() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport()
        session = make_session(transport, callbacks=rec)
        await session.send(b"chunk")
        await wait_until(lambda: session.state is SessionState.STREAMING)
        transport.push(TransportClosed(1006, "gone"))
        await wait_until(lambda: session.state.is_terminal)
        await session.close()
        late = await session.send(b"late")
        return session, rec, late

    session, rec, late = asyncio.run(scenario())

    assert session.state is SessionState.ERRORED
    assert rec.slots == ["on_error", "on_close"]
    assert rec.of("on_error")[0].code == "WEBSOCKET_ERROR"
    assert rec.of("on_close")[0].code == 1006
    assert not late.ok
    assert isinstance(late.error, SessionClosedError)
    _assert_legal_history(session.history)


def test_provider_error_frame_is_terminal() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport()
        session = make_session(transport, callbacks=rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        transport.push({"type": "transcript", "text": "hello"})
        transport.push({"type": "error", "message": "quota exceeded"})
        transport.push({"type": "transcript", "text": "never delivered"})
        await wait_until(lambda: session.state.is_terminal)
        await session.close()
        return session, rec, transport

    session, rec, transport = asyncio.run(scenario())

    assert rec.slots == ["on_transcript", "on_error", "on_close"]
    assert rec.of("on_error")[0].message == "quota exceeded"
    assert rec.of("on_close")[0].code == 1011
    assert transport.closed_with is not None


def test_events_are_delivered_in_frame_order() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, callbacks=rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        for i in range(5):
            transport.push({"type": "transcript", "text": str(i), "final": i == 4})
        await wait_until(lambda: len(rec.of("on_transcript")) == 5)
        await session.close()
        return rec

    rec = asyncio.run(scenario())

    assert [e.text for e in rec.of("on_transcript")] == ["0", "1", "2", "3", "4"]
    assert rec.slots[-1] == "on_close"


def test_unparsed_frame_becomes_metadata_event() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, callbacks=rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        transport.push("not json")
        await wait_until(lambda: rec.of("on_metadata"))
        state = session.state
        await session.close()
        return rec, state

    rec, state = asyncio.run(scenario())

    [meta] = rec.of("on_metadata")
    assert meta.kind == "unparsed"
    assert meta.raw == "not json"
    assert state is SessionState.OPEN


def test_callback_exception_does_not_stop_delivery() -> None:
    seen = []

    class Flaky:
        def on_transcript(self, event):
            seen.append(event.text)
            if event.text == "first":
                raise RuntimeError("callback bug")

    async def scenario():
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, callbacks=Flaky())
        await wait_until(lambda: session.state is SessionState.OPEN)
        transport.push({"type": "transcript", "text": "first"})
        transport.push({"type": "transcript", "text": "second"})
        await wait_until(lambda: len(seen) == 2)
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert seen == ["first", "second"]
    assert session.state is SessionState.CLOSED


def test_close_from_inside_callback_does_not_deadlock() -> None:
    async def scenario():
        transport = FakeTransport(responder=finalize_replies)
        holder = {}

        class CloseOnFinal:
            async def on_transcript(self, event):
                if event.is_final:
                    await holder["session"].close()

        session = make_session(transport, callbacks=CloseOnFinal())
        holder["session"] = session
        await wait_until(lambda: session.state is SessionState.OPEN)
        transport.push({"type": "transcript", "text": "done", "final": True})
        await wait_until(lambda: session.state.is_terminal)
        await session.close()
        return session

    session = asyncio.run(scenario())

    assert session.state is SessionState.CLOSED


def test_unsupported_update_leaves_session_streaming() -> None:
    async def scenario():
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport)
        await session.send(b"chunk")
        await wait_until(lambda: session.state is SessionState.STREAMING)
        result = await session.update_configuration({"unsupportedField": 1})
        state = session.state
        await session.close()
        return result, state, transport

    result, state, transport = asyncio.run(scenario())

    assert not result.ok
    assert isinstance(result.error, UnsupportedOperationError)
    assert result.error.details == {"fields": ["unsupportedField"]}
    assert state is SessionState.STREAMING
    assert {"type": "update", "unsupportedField": 1} not in transport.text_frames


def test_fire_and_forget_update_passes_through_configuring() -> None:
    async def scenario():
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport)
        await session.send(b"chunk")
        await wait_until(lambda: session.state is SessionState.STREAMING)
        result = await session.update_configuration({"threshold": 0.7})
        state = session.state
        await session.close()
        return session, result, state, transport

    session, result, state, transport = asyncio.run(scenario())

    assert result.ok and result.fire_and_forget and not result.acknowledged
    assert state is SessionState.STREAMING
    assert SessionState.CONFIGURING in session.history
    assert session.config.extra["threshold"] == 0.7
    assert {"type": "update", "threshold": 0.7} in transport.text_frames
    _assert_legal_history(session.history)


def test_acknowledged_update_waits_for_ack_frame() -> None:
    def ack_updates(frame):
        if isinstance(frame, str) and '"update"' in frame:
            return [{"type": "ack"}]
        return finalize_replies(frame)

    async def scenario():
        transport = FakeTransport(responder=ack_updates)
        session = make_session(transport, AckingProtocol)
        await session.send(b"chunk")
        await wait_until(lambda: session.state is SessionState.STREAMING)
        result = await session.update_configuration({"threshold": 0.2})
        await session.close()
        return result

    result = asyncio.run(scenario())

    assert result.ok and result.acknowledged and not result.fire_and_forget


def test_unacknowledged_update_times_out_and_resumes_streaming() -> None:
    async def scenario():
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, AckingProtocol)
        await session.send(b"chunk")
        await wait_until(lambda: session.state is SessionState.STREAMING)
        result = await session.update_configuration({"threshold": 0.2})
        state = session.state
        await session.close()
        return session, result, state

    session, result, state = asyncio.run(scenario())

    assert not result.ok
    assert isinstance(result.error, OperationTimeoutError)
    assert state is SessionState.STREAMING
    assert "threshold" not in session.config.extra


class DropOnUpdate(FakeTransport):
    async def send(self, frame):
        if isinstance(frame, str) and '"update"' in frame:
            raise TransportClosed(1006, "connection lost")
        await super().send(frame)


def test_update_returns_when_the_socket_drops_while_sending_it() -> None:
    async def scenario():
        rec = Recorder()
        transport = DropOnUpdate(responder=finalize_replies)
        session = make_session(transport, callbacks=rec)
        await session.send(b"chunk")
        await wait_until(lambda: session.state is SessionState.STREAMING)
        result = await asyncio.wait_for(session.update_configuration({"threshold": 0.5}), timeout=1.0)
        await wait_until(lambda: rec.of("on_close"))
        return session, result, rec

    session, result, rec = asyncio.run(scenario())

    assert not result.ok
    assert isinstance(result.error, SessionClosedError)
    assert "threshold" not in session.config.extra
    assert session.state is SessionState.ERRORED
    assert rec.slots == ["on_error", "on_close"]
    assert rec.of("on_close")[0].code == 1006
    _assert_legal_history(session.history)


class BrittleProtocol(ScriptedProtocol):
    def decode(self, frame):
        if frame == "boom":
            raise RuntimeError("decoder bug")
        return super().decode(frame)


def test_decoder_bug_does_not_stop_the_reader() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, BrittleProtocol, callbacks=rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        transport.push("boom")
        transport.push({"type": "transcript", "text": "still here"})
        await wait_until(lambda: rec.of("on_transcript"))
        state = session.state
        await session.close()
        return rec, state

    rec, state = asyncio.run(scenario())

    assert rec.slots[:2] == ["on_metadata", "on_transcript"]
    assert rec.of("on_metadata")[0].data == {"error": "decoder bug"}
    assert rec.of("on_transcript")[0].text == "still here"
    assert state is SessionState.OPEN


def test_unexpected_receive_failure_ends_the_session() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport()
        session = make_session(transport, callbacks=rec)
        await wait_until(lambda: session.state is SessionState.OPEN)
        transport.push(RuntimeError("socket bug"))
        await wait_until(lambda: session.state.is_terminal)
        await session.close()
        return session, rec

    session, rec = asyncio.run(scenario())

    assert session.state is SessionState.ERRORED
    assert rec.slots == ["on_error", "on_close"]
    assert "socket bug" in rec.of("on_error")[0].message


def test_force_endpoint_sends_control_frame() -> None:
    async def scenario():
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport)
        await wait_until(lambda: session.state is SessionState.OPEN)
        result = await session.force_endpoint()
        await session.close()
        return result, transport

    result, transport = asyncio.run(scenario())

    assert result.ok
    assert transport.text_frames[0] == {"type": "force"}


def test_audio_is_buffered_while_connecting_and_backpressured() -> None:
    async def scenario():
        gate = asyncio.Event()
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, max_buffered_bytes=4, gate=gate)
        assert (await session.send(b"abcd")).ok
        blocked = asyncio.create_task(session.send(b"ef"))
        for _ in range(10):
            await asyncio.sleep(0)
        was_blocked = not blocked.done()
        state_while_blocked = session.state
        gate.set()
        second = await blocked
        await wait_until(lambda: len(transport.audio_frames) == 2)
        await session.close()
        return was_blocked, state_while_blocked, second, transport

    was_blocked, state_while_blocked, second, transport = asyncio.run(scenario())

    assert was_blocked
    assert state_while_blocked is SessionState.CONNECTING
    assert second.ok
    assert transport.audio_frames == [b"abcd", b"ef"]


def test_ready_frame_opens_session() -> None:
    async def scenario():
        transport = FakeTransport(responder=finalize_replies)
        session = make_session(transport, ReadyFrameProtocol)
        await wait_until(lambda: transport.connected)
        await asyncio.sleep(0.01)
        before = session.state
        transport.push({"type": "ready"})
        await wait_until(lambda: session.state is SessionState.OPEN)
        await session.close()
        return before

    assert asyncio.run(scenario()) is SessionState.CONNECTING


def test_connection_failure_reports_error_and_close() -> None:
    async def scenario():
        rec = Recorder()
        transport = FakeTransport(connect_error=TransportError("refused", code="CONNECTION_ERROR"))
        session = make_session(transport, callbacks=rec)
        await wait_until(lambda: session.state.is_terminal)
        await session.close()
        return session, rec

    session, rec = asyncio.run(scenario())

    assert session.state is SessionState.ERRORED
    assert rec.slots == ["on_error", "on_close"]
    assert rec.of("on_error")[0].code == "CONNECTION_ERROR"


def test_close_while_connecting_completes() -> None:
    async def scenario():
        gate = asyncio.Event()
        rec = Recorder()
        session = make_session(FakeTransport(), callbacks=rec, gate=gate)
        await session.close()
        return session, rec

    session, rec = asyncio.run(scenario())

    assert session.state.is_terminal
    assert len(rec.of("on_close")) == 1


def test_cancelled_sender_does_not_block_the_queue() -> None:
    async def scenario():
        queue = OutboundQueue(max_bytes=2)
        assert await queue.put_audio(b"aa", 2)
        cancelled = asyncio.create_task(queue.put_audio(b"bb", 2))
        waiting = asyncio.create_task(queue.put_audio(b"cc", 2))
        await asyncio.sleep(0)
        cancelled.cancel()
        await asyncio.sleep(0)
        first = await queue.get()
        queue.task_done()
        accepted = await asyncio.wait_for(waiting, timeout=1.0)
        second = await queue.get()
        return first.frame, accepted, second.frame

    assert asyncio.run(scenario()) == (b"aa", True, b"cc")
