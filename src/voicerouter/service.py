"""Pipecat STT service backed by a VoiceRouter or a single provider adapter.

Streams pipeline audio into a streaming session and pushes interim/final
transcription frames back into the pipeline. Segmentation is expected to be
handled by Pipecat VAD: a `UserStoppedSpeakingFrame` forces an endpoint.
"""

from __future__ import annotations

import dataclasses
from typing import Any, AsyncGenerator, Optional, Union

from loguru import logger

from pipecat.frames.frames import (
    ErrorFrame,
    Frame,
    InterimTranscriptionFrame,
    StartFrame,
    TranscriptionFrame,
    UserStoppedSpeakingFrame,
)
from pipecat.processors.frame_processor import FrameDirection
from pipecat.services.stt_service import STTService
from pipecat.transcriptions.language import Language
from pipecat.utils.time import time_now_iso8601
from pipecat.utils.tracing.service_decorators import traced_stt

from voicerouter.adapter import ProviderAdapter
from voicerouter.router import VoiceRouter
from voicerouter.session import StreamingSession
from voicerouter.types import CloseEvent, ErrorEvent, StreamingOptions, TranscriptEvent


def to_language(code: Optional[str]) -> Optional[Language]:
    if not code:
        return None
    try:
        return Language(code)
    except ValueError:
        return None


class _SessionCallbacks:
    def __init__(self, service: "RouterSTTService"):
        self._s = service

    async def on_transcript(self, evt: TranscriptEvent) -> None:
        if not evt.text:
            return
        if evt.is_final:
            await self._s._handle_final(evt)
        else:
            await self._s._handle_interim(evt)

    async def on_error(self, evt: ErrorEvent) -> None:
        await self._s.push_error(ErrorFrame(f"VoiceRouter {evt.code}: {evt.message}"))

    async def on_close(self, evt: CloseEvent) -> None:
        logger.debug(f"[VoiceRouter] STT session closed ({evt.code}) {evt.reason}")


class RouterSTTService(STTService):
    """Pipecat STT service that delegates to a streaming provider session.

    Notes:
        - Provider VAD should be disabled; rely on Pipecat VAD events.
        - Language and model changes are applied in place when the provider
          allows that field to change mid-session, otherwise the session is
          reopened with the new options.
    """

    def __init__(
        self,
        source: Union[VoiceRouter, ProviderAdapter],
        *,
        provider: Optional[str] = None,
        options: Optional[StreamingOptions] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._source = source
        self._provider = provider
        self._options = options or StreamingOptions()
        self._callbacks = _SessionCallbacks(self)
        self._session: Optional[StreamingSession] = None

    @property
    def session(self) -> Optional[StreamingSession]:
        return self._session

    def can_generate_metrics(self) -> bool:
        return True

    async def set_model(self, model: str):
        await super().set_model(model)
        logger.info(f"[VoiceRouter] Switching STT model to: [{model}]")
        await self._reconfigure(model=model)

    async def set_language(self, language: Language):
        logger.info(f"[VoiceRouter] Switching STT language to: [{language}]")
        await self._reconfigure(language=language)

    async def start(self, frame: StartFrame):
        await super().start(frame)
        self._options = dataclasses.replace(self._options, sample_rate=self.sample_rate)
        await self._open()

    async def stop(self, frame: Frame):
        await super().stop(frame)
        await self._close()

    async def cancel(self, frame: Frame):
        await super().cancel(frame)
        await self._close()

    async def run_stt(self, audio: bytes) -> AsyncGenerator[Frame, None]:
        if self._session is not None:
            result = await self._session.send(audio)
            if not result.ok:
                logger.debug(f"[VoiceRouter] Audio not sent: {result.error}")
        yield None

    async def process_frame(self, frame: Frame, direction: FrameDirection):
        await super().process_frame(frame, direction)

        if isinstance(frame, UserStoppedSpeakingFrame) and self._session is not None:
            # Finalize turn on VAD stop
            result = await self._session.force_endpoint()
            if not result.ok and result.error.code != "NOT_SUPPORTED":
                await self.push_error(ErrorFrame(f"VoiceRouter finalize error: {result.error}"))

    # Session management

    async def _open(self) -> None:
        if isinstance(self._source, VoiceRouter):
            self._session = await self._source.transcribe_stream(
                self._options, self._callbacks, provider=self._provider
            )
        else:
            self._session = await self._source.transcribe_stream(self._options, self._callbacks)

    async def _close(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    async def _reconfigure(self, **changes: Any) -> None:
        self._options = self._options.with_updates(changes)
        session = self._session
        if session is None:
            return
        if all(session.can_update(name) for name in changes):
            result = await session.update_configuration(changes)
            if result.ok:
                return
            logger.warning(f"[VoiceRouter] In-place update failed ({result.error}), reopening session")
        await self._close()
        await self._open()

    # Callback handlers

    async def _handle_interim(self, evt: TranscriptEvent) -> None:
        await self.push_frame(
            InterimTranscriptionFrame(
                evt.text,
                self._user_id,
                time_now_iso8601(),
                to_language(evt.language),
                result=evt.raw,
            )
        )

    @traced_stt
    async def _handle_transcription(
        self, transcript: str, is_final: bool, language: Optional[Language] = None
    ):
        pass

    async def _handle_final(self, evt: TranscriptEvent) -> None:
        language = to_language(evt.language)
        await self.push_frame(
            TranscriptionFrame(
                evt.text,
                self._user_id,
                time_now_iso8601(),
                language,
                result=evt.raw,
            )
        )
        await self._handle_transcription(evt.text, True, language)
