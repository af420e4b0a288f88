"""RouterSTTService glue, exercised without a running pipeline."""

import asyncio
from types import SimpleNamespace

from pipecat.frames.frames import ErrorFrame
from pipecat.transcriptions.language import Language

from voicerouter.service import RouterSTTService, _SessionCallbacks, to_language
from voicerouter.session import SessionResult
from voicerouter.types import CloseEvent, ErrorEvent, StreamingOptions, TranscriptEvent


class FakeService:
    def __init__(self):
        self.finals = []
        self.interims = []
        self.errors = []

    async def _handle_final(self, evt):
        self.finals.append(evt.text)

    async def _handle_interim(self, evt):
        self.interims.append(evt.text)

    async def push_error(self, frame):
        self.errors.append(frame)


class FakeSession:
    def __init__(self, updatable=(), update_ok=True):
        self.updatable = set(updatable)
        self.update_ok = update_ok
        self.updates = []

    def can_update(self, name):
        return name in self.updatable

    async def update_configuration(self, partial):
        self.updates.append(dict(partial))
        return SessionResult(ok=self.update_ok)


def _reconfigurable(session):
    calls = []
    holder = SimpleNamespace(_options=StreamingOptions(), _session=session, calls=calls)

    async def _close():
        calls.append("close")
        holder._session = None

    async def _open():
        calls.append("open")
        holder._session = FakeSession()

    holder._close = _close
    holder._open = _open
    return holder


def test_to_language() -> None:
    assert to_language("en") is Language.EN
    assert to_language("not-a-language") is None
    assert to_language(None) is None


def test_transcripts_are_routed_by_finality() -> None:
    service = FakeService()
    callbacks = _SessionCallbacks(service)

    async def scenario():
        await callbacks.on_transcript(TranscriptEvent(text="hel", is_final=False))
        await callbacks.on_transcript(TranscriptEvent(text="", is_final=True))
        await callbacks.on_transcript(TranscriptEvent(text="hello", is_final=True))
        await callbacks.on_close(CloseEvent(code=1000, reason="normal closure"))

    asyncio.run(scenario())

    assert service.interims == ["hel"]
    assert service.finals == ["hello"]


def test_session_errors_become_error_frames() -> None:
    service = FakeService()

    asyncio.run(_SessionCallbacks(service).on_error(ErrorEvent(code="WEBSOCKET_ERROR", message="dropped")))

    [frame] = service.errors
    assert isinstance(frame, ErrorFrame)
    assert frame.error == "VoiceRouter WEBSOCKET_ERROR: dropped"


def test_updatable_change_is_applied_in_place() -> None:
    session = FakeSession(updatable={"language"})
    holder = _reconfigurable(session)

    asyncio.run(RouterSTTService._reconfigure(holder, language="fr"))

    assert session.updates == [{"language": "fr"}]
    assert holder.calls == []
    assert holder._options.language == "fr"


def test_other_changes_reopen_the_session() -> None:
    holder = _reconfigurable(FakeSession(updatable={"language"}))

    asyncio.run(RouterSTTService._reconfigure(holder, model="nova-3-medical"))

    assert holder.calls == ["close", "open"]
    assert holder._options.model == "nova-3-medical"


def test_failed_update_falls_back_to_reopening() -> None:
    holder = _reconfigurable(FakeSession(updatable={"language"}, update_ok=False))

    asyncio.run(RouterSTTService._reconfigure(holder, language="de"))

    assert holder.calls == ["close", "open"]


def test_reconfigure_before_start_only_records_options() -> None:
    holder = _reconfigurable(None)

    asyncio.run(RouterSTTService._reconfigure(holder, language="es"))

    assert holder.calls == []
    assert holder._options.language == "es"
