"""Bidirectional streaming channel to the remote translation engine.

The connection speaks the Live API JSON protocol over a raw WebSocket:

- outbound: one ``setup`` message, then ``realtimeInput`` audio chunks;
- inbound: ``setupComplete`` (the channel is open), then ``serverContent``
  messages carrying audio, transcripts and turn boundaries.

Inbound traffic is delivered to a :class:`ChannelListener`. Listener failures
are logged and never reach the ingress loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..audio.types import EncodedFrame
from ..config import ProviderConfig, SystemConfig
from ..core.websocket_client import WireLoggingWebSocket
from ..core.wire_log_sink import WireLogSink
from ..utils.dict_utils import first_present
from .config import ChannelConfig
from .errors import ChannelConnectError, ChannelSendError

logger = logging.getLogger(__name__)


class ChannelListener(Protocol):
    async def on_open(self) -> None:
        ...

    async def on_message(self, payload: Dict[str, Any]) -> None:
        ...

    async def on_error(self, cause: BaseException) -> None:
        ...

    async def on_close(self, reason: str) -> None:
        ...


class Channel(Protocol):
    """What the session controller needs from an open channel."""

    async def send(self, frame: EncodedFrame) -> None:
        ...

    async def close(self) -> None:
        ...


ChannelFactory = Callable[[ChannelConfig, ChannelListener], Awaitable[Channel]]


class LiveTranslationChannel:
    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str],
        config: ChannelConfig,
        listener: ChannelListener,
        *,
        connect_timeout_s: float = 10.0,
        log_wire: bool = False,
        log_wire_dir: str = "logs",
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.config = config
        self.listener = listener
        self.connect_timeout_s = connect_timeout_s
        self.log_wire = log_wire
        self.log_wire_dir = log_wire_dir
        self.name = f"live_channel_{uuid.uuid4().hex}"
        self._ws: Optional[WireLoggingWebSocket] = None
        self._ingress_task: Optional[asyncio.Task] = None
        self._opened = False
        self._closed = False

    @property
    def opened(self) -> bool:
        return self._opened

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Connect, send the setup message and start the ingress loop.

        ``on_open`` fires later, once the engine acknowledges the setup.
        """
        if self._closed:
            raise ChannelConnectError("Cannot reopen a closed channel")
        if not self.api_key:
            raise ChannelConnectError("No API key configured (set GEMINI_API_KEY)")

        try:
            raw_ws = await websockets.connect(
                f"{self.endpoint}?key={self.api_key}",
                open_timeout=self.connect_timeout_s,
                ping_interval=20,
                ping_timeout=10,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ChannelConnectError(f"Failed to connect to {self.endpoint}: {exc}") from exc

        try:
            log_sink = WireLogSink(self.name, base_dir=self.log_wire_dir) if self.log_wire else None
        except OSError as exc:
            await raw_ws.close()
            raise ChannelConnectError(f"Failed to open wire log in {self.log_wire_dir}: {exc}") from exc
        self._ws = WireLoggingWebSocket(
            websocket=raw_ws,
            name=self.name,
            debug_wire=self.log_wire,
            log_sink=log_sink,
        )
        logger.info("Live channel connected to %s (model=%s voice=%s)", self.endpoint, self.config.model, self.config.voice)

        try:
            await self._ws.send(json.dumps(self.config.to_setup_payload()))
        except (ConnectionClosed, WebSocketException, OSError) as exc:
            await self._close_socket()
            raise ChannelConnectError(f"Failed to send setup message: {exc}") from exc

        self._ingress_task = asyncio.create_task(self._ingress_loop(), name=f"{self.name}-ingress")

    async def send(self, frame: EncodedFrame) -> None:
        if self._closed or self._ws is None:
            raise ChannelSendError("Channel is closed")
        payload = {"realtimeInput": {"mediaChunks": [{"mimeType": frame.mime_type, "data": frame.data}]}}
        try:
            await self._ws.send(json.dumps(payload))
        except (ConnectionClosed, WebSocketException, OSError) as exc:
            raise ChannelSendError(f"Failed to send audio frame: {exc}") from exc

    async def close(self) -> None:
        """Stop the ingress loop and close the socket. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        task, self._ingress_task = self._ingress_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_socket()
        logger.info("Live channel %s closed", self.name)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (WebSocketException, OSError) as exc:
            logger.debug("Ignoring error while closing %s: %s", self.name, exc)

    async def _ingress_loop(self) -> None:
        ws = self._ws
        if ws is None:
            logger.error("Ingress loop started without a connection")
            return

        try:
            async for raw_message in ws:
                try:
                    data = json.loads(raw_message)
                except json.JSONDecodeError as exc:
                    logger.warning("Received non-JSON message on %s: %s", self.name, exc)
                    continue
                if not isinstance(data, dict):
                    continue

                if first_present(data, "setupComplete", "setup_complete") is not None:
                    self._opened = True
                    logger.info("Live channel %s ready", self.name)
                    await self._notify("on_open")
                    continue

                await self._notify("on_message", data)

        except ConnectionClosed as exc:
            reason = _close_reason(exc)
            logger.warning("Live channel %s closed by remote: %s", self.name, reason)
            await self._notify("on_close", reason)
        except WebSocketException as exc:
            logger.error("Live channel %s error: %s", self.name, exc)
            await self._notify("on_error", exc)
        except OSError as exc:
            logger.error("Live channel %s transport error: %s", self.name, exc)
            await self._notify("on_error", exc)

    async def _notify(self, callback: str, *args: Any) -> None:
        if self._closed:
            return
        try:
            await getattr(self.listener, callback)(*args)
        except Exception:
            logger.exception("Channel listener %s failed", callback)


def _close_reason(exc: ConnectionClosed) -> str:
    frame = exc.rcvd
    if frame is None:
        return "connection lost"
    return f"code={frame.code} reason={frame.reason or '-'}"


def live_channel_factory(provider: ProviderConfig, system: SystemConfig) -> ChannelFactory:
    """Build a factory that opens :class:`LiveTranslationChannel` instances."""

    async def connect(config: ChannelConfig, listener: ChannelListener) -> LiveTranslationChannel:
        channel = LiveTranslationChannel(
            provider.endpoint,
            provider.api_key,
            config,
            listener,
            connect_timeout_s=provider.connect_timeout_s,
            log_wire=system.log_wire,
            log_wire_dir=system.log_wire_dir,
        )
        await channel.open()
        return channel

    return connect


__all__ = [
    "Channel",
    "ChannelFactory",
    "ChannelListener",
    "LiveTranslationChannel",
    "live_channel_factory",
]
