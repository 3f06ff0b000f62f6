"""Client-side WebSocket wrapper with optional wire logging."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

from .wire_log_sink import WireLogSink

logger = logging.getLogger(__name__)

_ELIDED_KEYS = {"data"}


class WireLoggingWebSocket:
    """Thin wrapper over a ``websockets`` client connection.

    When ``debug_wire`` is set every frame is logged at DEBUG and, with a sink,
    appended to a JSONL file. Base64 audio payloads are elided from the record.
    """

    def __init__(
        self,
        websocket: Any,
        name: str,
        debug_wire: bool = False,
        log_sink: Optional[WireLogSink] = None,
    ) -> None:
        self.websocket = websocket
        self.name = name
        self.debug_wire = debug_wire
        self.log_sink = log_sink

    def __aiter__(self) -> AsyncIterator[Any]:
        return self

    async def __anext__(self) -> Any:
        return await self.recv()

    async def send(self, message: str) -> None:
        self._record("outbound", message)
        await self.websocket.send(message)

    async def recv(self) -> Any:
        message = await self.websocket.recv()
        self._record("inbound", message)
        return message

    async def close(self) -> None:
        await self.websocket.close()

    def _record(self, direction: str, message: Any) -> None:
        if not self.debug_wire:
            return

        normalized = _elide_audio(self._normalize_message(message))
        logger.debug("WS[%s] %s: %s", self.name, direction, normalized)

        if self.log_sink:
            self.log_sink.append_message({"direction": direction, "message": normalized, "name": self.name})

    @staticmethod
    def _normalize_message(message: Any) -> Any:
        if isinstance(message, bytes):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError:
                return f"<{len(message)} bytes>"
        if isinstance(message, str):
            try:
                return json.loads(message)
            except json.JSONDecodeError:
                return message
        return message


def _elide_audio(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: (f"<{len(item)} chars>" if key in _ELIDED_KEYS and isinstance(item, str) else _elide_audio(item))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_elide_audio(item) for item in value]
    return value


__all__ = ["WireLoggingWebSocket"]
