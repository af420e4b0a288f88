"""Streaming session shared by every provider.

One `StreamingSession` drives the lifecycle in `voicerouter.state`; the
provider-specific parts (frame encoding, decoding and which fields can be
updated mid-session) live in a `WireProtocol` handed to it by the adapter.

Per session there is one reader task (transport -> decoder -> events), one
writer task (outbound queue -> transport) and one dispatcher task (events ->
user callbacks), so callbacks always see events in the order frames arrived
and audio always leaves in the order it was sent.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, FrozenSet, List, Mapping, Optional

from loguru import logger

from voicerouter.audio import to_pcm16_bytes
from voicerouter.config import Timeouts
from voicerouter.errors import (
    OperationTimeoutError,
    SessionClosedError,
    TransportError,
    UnsupportedOperationError,
    VoiceRouterError,
)
from voicerouter.state import SessionStateMachine
from voicerouter.transport import Frame, Transport, TransportClosed
from voicerouter.types import (
    CALLBACK_SLOTS,
    CloseEvent,
    ErrorEvent,
    MetadataEvent,
    SessionState,
    StreamEvent,
    StreamingOptions,
)

Connector = Callable[[], Awaitable[Transport]]

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
INTERNAL_ERROR = 1011


@dataclass
class Decoded:
    """What one inbound frame means to the session."""

    events: List[StreamEvent] = field(default_factory=list)
    ready: bool = False
    ack: bool = False
    final: bool = False
    error: Optional[VoiceRouterError] = None
    session_id: Optional[str] = None


@dataclass
class SessionResult:
    ok: bool
    error: Optional[VoiceRouterError] = None
    acknowledged: bool = False
    fire_and_forget: bool = False


class WireProtocol:
    """Frame codec for one provider's streaming API.

    Subclasses set the class attributes and override `decode` plus whichever
    encoders the provider supports. `encode_force_endpoint` returning None
    means the provider has no such control message.
    """

    label = "Provider"
    # Session becomes OPEN on a server frame rather than on socket connect.
    awaits_ready_frame = False
    # close() waits for a final frame or the server closing the socket.
    awaits_close_ack = True
    update_requires_ack = False
    updatable_fields: FrozenSet[str] = frozenset()
    # Seconds of outbound silence before `encode_keepalive` is sent.
    keepalive_interval: Optional[float] = None

    def __init__(self, options: StreamingOptions):
        self.options = options

    def can_update(self, name: str) -> bool:
        return name in self.updatable_fields

    def encode_start(self) -> List[Frame]:
        """Frames sent right after connecting, ahead of any queued audio."""
        return []

    def encode_audio(self, chunk: bytes) -> Frame:
        return chunk

    def encode_update(self, partial: Mapping[str, Any]) -> Frame:
        raise UnsupportedOperationError(f"{self.label} does not support mid-session updates")

    def encode_force_endpoint(self) -> Optional[Frame]:
        return None

    def encode_finalize(self) -> List[Frame]:
        return []

    def encode_keepalive(self) -> Optional[Frame]:
        return None

    def decode(self, frame: Frame) -> Decoded:
        raise NotImplementedError

    @staticmethod
    def parse_json(frame: Frame) -> dict:
        message = json.loads(frame)
        if not isinstance(message, dict):
            raise ValueError(f"expected a JSON object, got {type(message).__name__}")
        return message


class EventChannel:
    """Ordered delivery of stream events to user callbacks.

    At most one ErrorEvent and exactly one CloseEvent get through; once the
    CloseEvent is queued nothing else is accepted. Exceptions raised by
    callbacks are logged and do not stop delivery.
    """

    def __init__(self, callbacks: Any, label: str = "Session"):
        self._callbacks = callbacks
        self._label = label
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._errored = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._dispatch())

    def emit(self, event: StreamEvent) -> bool:
        if self._closed:
            logger.debug(f"[VoiceRouter.{self._label}] Dropping {type(event).__name__} after close")
            return False
        if isinstance(event, ErrorEvent):
            if self._errored:
                return False
            self._errored = True
        elif isinstance(event, CloseEvent):
            self._closed = True
        self._queue.put_nowait(event)
        return True

    async def drain(self) -> None:
        """Wait until the CloseEvent has been delivered."""
        if self._task is None or self._task is asyncio.current_task():
            return
        await asyncio.wait([self._task])

    async def _dispatch(self) -> None:
        while True:
            event = await self._queue.get()
            await self._deliver(event)
            if isinstance(event, CloseEvent):
                return

    async def _deliver(self, event: StreamEvent) -> None:
        if self._callbacks is None:
            return
        slot = CALLBACK_SLOTS[type(event)]
        callback = getattr(self._callbacks, slot, None)
        if callback is None:
            return
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"[VoiceRouter.{self._label}] {slot} callback raised")


@dataclass
class _Outbound:
    frame: Frame
    audio: bool = False
    size: int = 0
    waiter: Optional[asyncio.Future] = None


class OutboundQueue:
    """FIFO of frames waiting for the writer.

    Audio is bounded by a byte budget: `put_audio` suspends while the budget
    is used up and admits senders strictly in call order. A chunk larger than
    the whole budget is still accepted once the queue holds no audio. Control
    frames are never blocked.
    """

    def __init__(self, max_bytes: int):
        self._max_bytes = max(int(max_bytes), 1)
        self._items: Deque[_Outbound] = deque()
        self._bytes = 0
        self._cond = asyncio.Condition()
        self._closed = False
        self._unfinished = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._next_ticket = 0
        self._serving = 0
        self._abandoned = set()

    @property
    def buffered_bytes(self) -> int:
        return self._bytes

    @property
    def has_audio(self) -> bool:
        return any(item.audio for item in self._items)

    async def put_audio(self, frame: Frame, size: int) -> bool:
        async with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            try:
                await self._cond.wait_for(
                    lambda: self._closed
                    or (
                        ticket == self._serving
                        and (self._bytes == 0 or self._bytes + size <= self._max_bytes)
                    )
                )
            finally:
                if ticket == self._serving:
                    self._advance()
                elif ticket > self._serving:
                    # cancelled while waiting for its turn
                    self._abandoned.add(ticket)
                self._cond.notify_all()
            if self._closed:
                return False
            self._append(_Outbound(frame, audio=True, size=size))
            return True

    async def put_control(self, frame: Frame, waiter: Optional[asyncio.Future] = None) -> bool:
        async with self._cond:
            if self._closed:
                return False
            self._append(_Outbound(frame, waiter=waiter))
            return True

    async def get(self) -> Optional[_Outbound]:
        async with self._cond:
            await self._cond.wait_for(lambda: self._items or self._closed)
            if not self._items:
                return None
            item = self._items.popleft()
            if item.audio:
                self._bytes -= item.size
            self._cond.notify_all()
            return item

    def task_done(self) -> None:
        self._unfinished -= 1
        if self._unfinished <= 0:
            self._unfinished = 0
            self._idle.set()

    async def join(self) -> None:
        await self._idle.wait()

    async def close(self) -> None:
        async with self._cond:
            if self._closed:
                return
            self._closed = True
            while self._items:
                item = self._items.popleft()
                if item.waiter is not None and not item.waiter.done():
                    item.waiter.set_exception(SessionClosedError("Session closed before frame was sent"))
                self.task_done()
            self._bytes = 0
            self._cond.notify_all()

    def _advance(self) -> None:
        self._serving += 1
        while self._serving in self._abandoned:
            self._abandoned.discard(self._serving)
            self._serving += 1

    def _append(self, item: _Outbound) -> None:
        self._items.append(item)
        if item.audio:
            self._bytes += item.size
        self._unfinished += 1
        self._idle.clear()
        self._cond.notify_all()


class StreamingSession:
    """Handle for one live connection to a provider.

    Created by `ProviderAdapter.transcribe_stream`. Every handle method
    returns normally; failures are reported as a `SessionResult` or through
    `on_error` / `on_close`.
    """

    def __init__(
        self,
        *,
        provider: str,
        protocol: WireProtocol,
        connector: Connector,
        options: StreamingOptions,
        callbacks: Any = None,
        timeouts: Optional[Timeouts] = None,
        max_buffered_bytes: int = 64000,
    ):
        self.id = f"{provider}-{uuid.uuid4().hex[:12]}"
        self.provider = provider
        self.config = options
        self.pending_close = False
        self.provider_session_id: Optional[str] = None

        self._protocol = protocol
        self._connector = connector
        self._timeouts = timeouts or Timeouts()
        self._label = protocol.label
        self._sm = SessionStateMachine(self.id)
        self._events = EventChannel(callbacks, self._label)
        self._outbound = OutboundQueue(max_buffered_bytes)

        self._transport: Optional[Transport] = None
        self._run_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Future] = None
        self._last_sent = 0.0

        self._opened = asyncio.Event()
        self._final = asyncio.Event()
        self._terminated = asyncio.Event()
        self._ack_waiters: Deque[asyncio.Future] = deque()
        self._pending_updates = 0
        self._remote_close: Optional[TransportClosed] = None
        self._shutting_down = False

    # Handle

    @property
    def state(self) -> SessionState:
        return self._sm.state

    @property
    def history(self) -> List[SessionState]:
        return list(self._sm.history)

    def can_update(self, name: str) -> bool:
        return self._protocol.can_update(name)

    def start(self) -> None:
        if self._run_task is not None:
            return
        self._events.start()
        self._run_task = asyncio.create_task(self._run())

    async def send(self, audio: Any) -> SessionResult:
        if self._refusing():
            return self._closed_result()
        chunk = to_pcm16_bytes(audio)
        accepted = await self._outbound.put_audio(self._protocol.encode_audio(chunk), len(chunk))
        if not accepted:
            return self._closed_result()
        if self._sm.state is SessionState.OPEN:
            self._sm.transition(SessionState.STREAMING)
        return SessionResult(ok=True)

    async def update_configuration(self, partial: Mapping[str, Any]) -> SessionResult:
        if self._refusing():
            return self._closed_result()
        unsupported = sorted(name for name in partial if not self._protocol.can_update(name))
        if unsupported or not partial:
            return SessionResult(
                ok=False,
                error=UnsupportedOperationError(
                    f"{self._label} cannot update {unsupported or 'nothing'} mid-session",
                    details={"fields": unsupported},
                ),
            )

        await self._wait_first(self._opened, self._terminated)
        if self._refusing():
            return self._closed_result()

        if self._sm.state is not SessionState.CONFIGURING:
            self._sm.transition(SessionState.CONFIGURING)
        self._pending_updates += 1
        requires_ack = self._protocol.update_requires_ack
        waiter = asyncio.get_running_loop().create_future()
        try:
            frame = self._protocol.encode_update(partial)
            if not await self._outbound.put_control(frame, waiter=waiter):
                return self._closed_result()
            # resolves on acknowledgment, or on send when there is none
            await asyncio.wait_for(waiter, timeout=self._timeouts.ack)
        except asyncio.TimeoutError:
            outcome = "acknowledge" if requires_ack else "send"
            return SessionResult(
                ok=False,
                error=OperationTimeoutError(
                    f"{self._label} did not {outcome} the configuration update within {self._timeouts.ack}s",
                    code="CONNECTION_TIMEOUT",
                ),
            )
        except VoiceRouterError as e:
            return SessionResult(ok=False, error=e)
        finally:
            self._pending_updates -= 1
            if self._pending_updates == 0 and self._sm.state is SessionState.CONFIGURING:
                self._sm.transition(SessionState.STREAMING)

        self.config = self.config.with_updates(partial)
        logger.debug(f"[VoiceRouter.{self._label}] Updated configuration: {dict(partial)}")
        return SessionResult(ok=True, acknowledged=requires_ack, fire_and_forget=not requires_ack)

    async def force_endpoint(self) -> SessionResult:
        frame = self._protocol.encode_force_endpoint()
        if frame is None:
            return SessionResult(
                ok=False,
                error=UnsupportedOperationError(f"{self._label} does not support forcing an endpoint"),
            )
        if self._refusing() or not await self._outbound.put_control(frame):
            return self._closed_result()
        return SessionResult(ok=True)

    async def close(self) -> None:
        """Finish the session. Safe to call repeatedly and from callbacks."""
        if self._close_task is None:
            if self._run_task is None:
                self.start()
            self._close_task = asyncio.ensure_future(self._close())
        await asyncio.shield(self._close_task)
        await self._events.drain()

    # Lifecycle

    async def _run(self) -> None:
        try:
            await asyncio.wait_for(self._open_transport(), timeout=self._timeouts.connect)
        except asyncio.TimeoutError:
            await self._fail(
                OperationTimeoutError(
                    f"{self._label} connection timed out after {self._timeouts.connect}s",
                    code="CONNECTION_TIMEOUT",
                )
            )
            return
        except TransportClosed as e:
            await self._on_transport_closed(e)
            return
        except VoiceRouterError as e:
            await self._fail(e)
            return
        except Exception as e:
            await self._fail(TransportError(f"Connection failed: {e}", code="CONNECTION_ERROR", details=e))
            return
        self._last_sent = asyncio.get_running_loop().time()
        self._writer_task = asyncio.create_task(self._writer())
        if self._protocol.keepalive_interval and self._protocol.encode_keepalive() is not None:
            self._keepalive_task = asyncio.create_task(self._keepalive())

    async def _open_transport(self) -> None:
        self._transport = await self._connector()
        await self._transport.connect()
        for frame in self._protocol.encode_start():
            await self._transport.send(frame)
        self._reader_task = asyncio.create_task(self._reader())
        if self._protocol.awaits_ready_frame:
            await self._opened.wait()
        else:
            self._mark_open()

    def _mark_open(self) -> None:
        if self._opened.is_set():
            return
        self._opened.set()
        if self._sm.state is not SessionState.CONNECTING:
            return
        self._sm.transition(SessionState.OPEN)
        logger.info(f"[VoiceRouter.{self._label}] Session {self.id} open")
        if self._outbound.has_audio:
            self._sm.transition(SessionState.STREAMING)

    async def _reader(self) -> None:
        while True:
            try:
                frame = await self._transport.recv()
            except TransportClosed as e:
                await self._on_transport_closed(e)
                return
            except Exception as e:
                await self._fail(TransportError(f"Receive failed: {e}", details=e))
                return
            try:
                keep_reading = await self._handle_frame(frame)
            except Exception as e:
                logger.exception(f"[VoiceRouter.{self._label}] Reader failed")
                await self._fail(TransportError(f"Reader failed: {e}", details=e))
                return
            if not keep_reading:
                return

    async def _handle_frame(self, frame: Frame) -> bool:
        try:
            decoded = self._protocol.decode(frame)
        except Exception as e:
            logger.warning(f"[VoiceRouter.{self._label}] Could not decode frame: {e!r}")
            self._events.emit(MetadataEvent(kind="unparsed", data={"error": str(e)}, raw=frame))
            return True

        if decoded.session_id:
            self.provider_session_id = decoded.session_id
        for event in decoded.events:
            self._events.emit(event)
        if decoded.ready:
            self._mark_open()
        if decoded.ack and self._ack_waiters:
            waiter = self._ack_waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
        if decoded.error is not None:
            await self._fail(decoded.error)
            return False
        if decoded.final:
            self._final.set()
        return True

    async def _writer(self) -> None:
        try:
            while True:
                item = await self._outbound.get()
                if item is None:
                    return
                try:
                    await self._transport.send(item.frame)
                    self._frame_sent(item)
                except BaseException:
                    if item.waiter is not None and not item.waiter.done():
                        item.waiter.set_exception(SessionClosedError("Session closed while sending frame"))
                    raise
                finally:
                    self._outbound.task_done()
        except TransportClosed as e:
            await self._outbound.close()
            await self._on_transport_closed(e)
        except Exception as e:
            await self._outbound.close()
            await self._fail(TransportError(f"Send failed: {e}", details=e))

    async def _keepalive(self) -> None:
        interval = self._protocol.keepalive_interval
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(interval)
            if self._refusing():
                return
            if loop.time() - self._last_sent >= interval and not self._outbound.has_audio:
                await self._outbound.put_control(self._protocol.encode_keepalive())

    def _frame_sent(self, item: _Outbound) -> None:
        self._last_sent = asyncio.get_running_loop().time()
        if item.waiter is None or item.waiter.done():
            return
        if self._protocol.update_requires_ack:
            self._ack_waiters.append(item.waiter)
        else:
            item.waiter.set_result(None)

    async def _on_transport_closed(self, e: TransportClosed) -> None:
        if self._shutting_down:
            return
        if self._sm.state is SessionState.CLOSING:
            if e.clean:
                self._remote_close = e
                self._final.set()
                return
        elif e.clean:
            logger.info(f"[VoiceRouter.{self._label}] Server closed the session ({e.code}) {e.reason}")
            await self._shutdown(e.code, e.reason or "closed by server")
            return
        await self._fail(
            TransportError(
                f"Connection closed unexpectedly ({e.code}) {e.reason}".strip(),
                details={"code": e.code, "reason": e.reason},
            ),
            code=e.code,
        )

    async def _close(self) -> None:
        if self._sm.is_terminal or self._shutting_down:
            return
        self.pending_close = True
        self._sm.transition(SessionState.CLOSING)
        logger.debug(f"[VoiceRouter.{self._label}] Closing session {self.id}")
        try:
            await asyncio.wait_for(self._graceful_close(), timeout=self._timeouts.close)
        except asyncio.TimeoutError:
            logger.warning(
                f"[VoiceRouter.{self._label}] No close acknowledgment within {self._timeouts.close}s, forcing"
            )
            await self._shutdown(
                ABNORMAL_CLOSURE,
                f"forced close: no acknowledgment within {self._timeouts.close}s",
                forced=True,
            )
            return
        if self._remote_close is not None:
            await self._shutdown(self._remote_close.code, self._remote_close.reason or "normal closure")
        else:
            await self._shutdown(NORMAL_CLOSURE, "normal closure")

    async def _graceful_close(self) -> None:
        await self._wait_first(self._opened, self._terminated)
        if self._terminated.is_set():
            return
        for frame in self._protocol.encode_finalize():
            await self._outbound.put_control(frame)
        await self._wait_first(self._drained(), self._terminated)
        if self._protocol.awaits_close_ack:
            await self._wait_first(self._final, self._terminated)

    async def _drained(self) -> None:
        await self._outbound.join()

    async def _fail(self, error: VoiceRouterError, code: int = INTERNAL_ERROR) -> None:
        if self._shutting_down or self._sm.is_terminal:
            return
        logger.error(f"[VoiceRouter.{self._label}] Session {self.id} failed: {error}")
        self._sm.transition(SessionState.ERRORED)
        event = ErrorEvent.from_error(error)
        event.raw = error.details
        self._events.emit(event)
        await self._shutdown(code, error.message)

    async def _shutdown(self, code: int, reason: str, forced: bool = False) -> None:
        if self._shutting_down:
            return
        self._shutting_down = True
        await self._outbound.close()

        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._run_task, self._reader_task, self._writer_task, self._keepalive_task)
            if t is not None and t is not current and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        while self._ack_waiters:
            waiter = self._ack_waiters.popleft()
            if not waiter.done():
                waiter.set_exception(SessionClosedError("Session closed before acknowledgment"))

        await self._release_transport(forced)

        if not self._sm.is_terminal:
            if self._sm.state is not SessionState.CLOSING:
                self._sm.transition(SessionState.CLOSING)
            self._sm.transition(SessionState.CLOSED)
        self._terminated.set()
        logger.info(f"[VoiceRouter.{self._label}] Session {self.id} {self._sm.state.value} ({code}) {reason}")
        self._events.emit(CloseEvent(code=code, reason=reason, forced=forced))

    async def _release_transport(self, forced: bool) -> None:
        transport = self._transport
        if transport is None:
            return
        if forced:
            transport.abort()
            return
        try:
            await asyncio.wait_for(transport.close(), timeout=self._timeouts.close)
        except (asyncio.TimeoutError, TransportClosed, TransportError, OSError) as e:
            logger.warning(f"[VoiceRouter.{self._label}] Transport close failed ({e!r}), aborting")
            transport.abort()

    # Helpers

    def _refusing(self) -> bool:
        return self.pending_close or self._shutting_down or self._sm.is_terminal

    def _closed_result(self) -> SessionResult:
        return SessionResult(
            ok=False, error=SessionClosedError(f"Session {self.id} is {self._sm.state.value}")
        )

    @staticmethod
    async def _wait_first(*waitables: Any) -> None:
        tasks = [
            asyncio.ensure_future(w.wait() if isinstance(w, asyncio.Event) else w) for w in waitables
        ]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
