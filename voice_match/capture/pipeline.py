from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..audio.codec import PcmCodec
from ..audio.devices import Microphone
from ..audio.types import EncodedFrame
from ..channel.errors import ChannelSendError

logger = logging.getLogger(__name__)

SendFn = Callable[[EncodedFrame], Awaitable[None]]
FatalFn = Callable[[BaseException], Awaitable[None]]


class CapturePipeline:
    """Reads microphone frames, encodes them and sends them on the channel.

    ``is_current`` is checked twice per frame: before encoding and again right
    before sending. Once it reports False the pipeline sends nothing more and
    exits. A transport failure on send is handed to ``on_fatal``.
    """

    def __init__(
        self,
        microphone: Microphone,
        codec: PcmCodec,
        is_current: Callable[[], bool],
        send: SendFn,
        on_fatal: FatalFn,
        name: str = "capture",
    ):
        self.microphone = microphone
        self.codec = codec
        self.is_current = is_current
        self.send = send
        self.on_fatal = on_fatal
        self.name = name
        self.frames_sent = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-pipeline")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    async def _run(self) -> None:
        async for frame in self.microphone.frames():
            if not self.is_current():
                logger.debug("%s: session ended, disconnecting", self.name)
                break

            encoded = self.codec.encode_frame(frame)

            if not self.is_current():
                logger.debug("%s: session ended before send, frame dropped", self.name)
                break

            try:
                await self.send(encoded)
            except ChannelSendError as exc:
                logger.info("%s: send failed, stopping session: %s", self.name, exc)
                await self.on_fatal(exc)
                break
            self.frames_sent += 1

        logger.debug("%s: pipeline finished after %s frame(s)", self.name, self.frames_sent)
