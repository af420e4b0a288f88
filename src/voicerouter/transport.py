"""Bidirectional frame transports for streaming sessions.

A session only needs connect / send / recv / close / abort. The WebSocket
implementation wraps `websockets`; tests inject scripted fakes.
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol, Union

import websockets
from loguru import logger
from websockets.asyncio.client import ClientConnection, connect

from voicerouter.errors import TransportError

Frame = Union[str, bytes]


class TransportClosed(Exception):
    """The peer closed the connection. `clean` means a normal close handshake."""

    def __init__(self, code: int = 1006, reason: str = "", clean: bool = False):
        super().__init__(f"connection closed ({code}) {reason}".strip())
        self.code = code
        self.reason = reason
        self.clean = clean


class Transport(Protocol):
    async def connect(self) -> None: ...
    async def send(self, frame: Frame) -> None: ...
    async def recv(self) -> Frame: ...
    async def close(self, code: int = 1000, reason: str = "") -> None: ...
    def abort(self) -> None: ...


class WebSocketTransport:
    def __init__(self, url: str, headers: Optional[Dict[str, str]] = None, name: str = "WebSocket"):
        self._url = url
        self._headers = dict(headers or {})
        self._name = name
        self._ws: Optional[ClientConnection] = None

    @property
    def url(self) -> str:
        return self._url

    async def connect(self) -> None:
        logger.debug(f"[VoiceRouter.{self._name}] Connecting")
        try:
            # Timeouts are enforced by the session.
            self._ws = await connect(self._url, additional_headers=self._headers, open_timeout=None)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"Connection failed: {e}", code="CONNECTION_ERROR", details=e)
        logger.info(f"[VoiceRouter.{self._name}] Connected")

    async def send(self, frame: Frame) -> None:
        ws = self._require()
        try:
            await ws.send(frame)
        except websockets.exceptions.ConnectionClosed as e:
            raise self._closed(e)

    async def recv(self) -> Frame:
        ws = self._require()
        try:
            return await ws.recv()
        except websockets.exceptions.ConnectionClosed as e:
            raise self._closed(e)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws is None:
            return
        logger.debug(f"[VoiceRouter.{self._name}] Disconnecting")
        await self._ws.close(code=code, reason=reason)

    def abort(self) -> None:
        if self._ws is not None and self._ws.transport is not None:
            self._ws.transport.abort()

    def _require(self) -> ClientConnection:
        if self._ws is None:
            raise TransportError("Transport is not connected")
        return self._ws

    @staticmethod
    def _closed(e: websockets.exceptions.ConnectionClosed) -> TransportClosed:
        rcvd = e.rcvd
        code = rcvd.code if rcvd is not None else 1006
        reason = rcvd.reason if rcvd is not None else ""
        clean = isinstance(e, websockets.exceptions.ConnectionClosedOK)
        return TransportClosed(code, reason, clean)
