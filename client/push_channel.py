"""
Push channel: WebSocket subscription to import events with reconnect backoff.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger("client.push")

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class PushChannel:
    """
    Keeps a WebSocket subscription open and hands decoded envelopes to a handler.

    After ``max_reconnect_attempts`` consecutive failed reconnects the channel
    marks itself unavailable for good and polling becomes the only source of
    truth.
    """

    def __init__(
        self,
        url: Optional[str],
        on_message: MessageHandler,
        max_reconnect_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        connect: Callable[[str], Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.on_message = on_message
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._connect = connect or websockets.connect
        self._sleep = sleep

        self.connected = False
        self.unavailable = False
        self.reconnect_attempts = 0
        self.last_error: Optional[str] = None
        self._socket = None
        self._stopping = False
        self._ever_connected = asyncio.Event()

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def wait_connected(self, timeout: float = None) -> bool:
        try:
            await asyncio.wait_for(self._ever_connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def run(self) -> None:
        """Connect and dispatch until closed or out of reconnect attempts."""
        if not self.url:
            logger.info("No WebSocket URL configured, push channel disabled")
            self.unavailable = True
            return

        while not self._stopping:
            try:
                async with self._connect(self.url) as socket:
                    self._socket = socket
                    self.connected = True
                    self.reconnect_attempts = 0
                    self.last_error = None
                    self._ever_connected.set()
                    logger.info(f"WebSocket connected: {self.url}")

                    async for raw in socket:
                        await self._dispatch(raw)
                self.last_error = "Connection closed by server"
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                self.last_error = f"{e.__class__.__name__}: {e}"
                logger.info(f"WebSocket disconnected: {self.last_error}")
            finally:
                self.connected = False
                self._socket = None

            if self._stopping:
                break

            if self.reconnect_attempts >= self.max_reconnect_attempts:
                self.unavailable = True
                self.last_error = f"Failed to connect after {self.max_reconnect_attempts} attempts"
                logger.warning(f"Push channel unavailable: {self.last_error}")
                break

            self.reconnect_attempts += 1
            delay = self.backoff_delay(self.reconnect_attempts)
            logger.info(f"Attempting to reconnect ({self.reconnect_attempts}/{self.max_reconnect_attempts}) in {delay}s")
            await self._sleep(delay)

    async def close(self) -> None:
        self._stopping = True
        if self._socket is not None:
            await self._socket.close()

    async def _dispatch(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Failed to parse WebSocket message: {raw!r}")
            return
        if not isinstance(message, dict) or "type" not in message:
            logger.warning(f"Ignoring malformed WebSocket envelope: {message!r}")
            return

        if message["type"] != "connection_established":
            logger.debug(f"WebSocket message: {message['type']} {message.get('data')}")
        try:
            await self.on_message(message)
        except Exception:
            logger.exception(f"Error handling WebSocket message {message['type']}")
