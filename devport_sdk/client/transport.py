"""Socket transport for the Devport client.

A transport owns exactly one connection attempt. It moves text frames
in both directions and reports when the connection ends; it never looks
inside a frame.

Usage:
    transport = WebSocketTransport()
    transport.on_frame(handle_frame)
    transport.on_close(handle_close)
    await transport.open("ws://localhost:8080/ws", timeout=10.0)
    await transport.send('{"jsonrpc": "2.0", ...}')
    await transport.close()
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import websockets
from websockets import ClientConnection
from websockets.exceptions import ConnectionClosed

from devport_sdk.errors import NotConnected
from devport_sdk.trace import trace_frame

logger = logging.getLogger(__name__)


FrameCallback = Callable[[str], None]
CloseCallback = Callable[[Optional[str]], None]


class Transport(ABC):
    """Base class for frame transports.

    Subclasses call :meth:`_emit_frame` for every inbound frame and
    :meth:`_emit_close` once when the connection ends without the owner
    having called :meth:`close`.
    """

    def __init__(self) -> None:
        self._frame_callback: Optional[FrameCallback] = None
        self._close_callback: Optional[CloseCallback] = None
        self._close_emitted = False

    def on_frame(self, callback: FrameCallback) -> None:
        """Register the inbound frame callback."""
        self._frame_callback = callback

    def on_close(self, callback: CloseCallback) -> None:
        """Register the connection-ended callback."""
        self._close_callback = callback

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while frames can be sent."""

    @abstractmethod
    async def open(self, endpoint: str, timeout: Optional[float] = None) -> None:
        """Open the connection to ``endpoint``."""

    @abstractmethod
    async def send(self, frame: str) -> None:
        """Send one frame.

        Raises:
            NotConnected: If the transport is not open.
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Does not fire the close callback."""

    def _emit_frame(self, frame: str) -> None:
        if self._frame_callback is None:
            return
        try:
            self._frame_callback(frame)
        except Exception:
            logger.exception("Error in frame callback")

    def _emit_close(self, reason: Optional[str]) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        if self._close_callback is None:
            return
        try:
            self._close_callback(reason)
        except Exception:
            logger.exception("Error in close callback")


class WebSocketTransport(Transport):
    """Transport over a ``websockets`` client connection."""

    def __init__(self, additional_headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__()
        self._additional_headers = additional_headers
        self._ws: Optional[ClientConnection] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def open(self, endpoint: str, timeout: Optional[float] = None) -> None:
        if self._ws is not None or self._closed:
            raise RuntimeError("A transport can only be opened once")

        kwargs: Dict[str, Any] = {"open_timeout": timeout}
        if self._additional_headers:
            kwargs["additional_headers"] = self._additional_headers

        logger.debug("Opening WebSocket to %s", endpoint)
        self._ws = await websockets.connect(endpoint, **kwargs)
        self._reader_task = asyncio.create_task(self._read_loop())

    async def send(self, frame: str) -> None:
        if not self.is_open:
            raise NotConnected()
        trace_frame("->", frame)
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            raise NotConnected(f"Connection closed: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._reader_task and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._reader_task = None

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug("Error closing WebSocket: %s", e)

    async def _read_loop(self) -> None:
        """Forward inbound frames until the connection ends."""
        reason: Optional[str] = None
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                trace_frame("<-", message)
                self._emit_frame(message)
        except ConnectionClosed as e:
            reason = str(e)
        except Exception as e:
            logger.warning("WebSocket reader failed: %s", e)
            reason = str(e)

        if self._closed:
            return
        self._closed = True
        logger.info("WebSocket closed: %s", reason or "normal closure")
        self._emit_close(reason)


__all__ = [
    "CloseCallback",
    "FrameCallback",
    "Transport",
    "WebSocketTransport",
]
