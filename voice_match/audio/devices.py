"""Sound card access: microphone capture and sample-accurate scheduled playback.

Both wrap ``sounddevice`` streams whose callbacks run on PortAudio threads;
anything that touches asyncio state is handed back to the owning loop with
``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Deque, List, Optional, Protocol

import numpy as np

from .types import PlaybackBuffer

logger = logging.getLogger(__name__)


def _sounddevice() -> Any:
    """Import ``sounddevice`` on first use; it loads PortAudio at import time."""
    import sounddevice

    return sounddevice


class AudioDeviceUnavailableError(RuntimeError):
    """Raised when a sound device cannot be opened."""


class MicrophoneUnavailableError(AudioDeviceUnavailableError):
    """Raised when the input device cannot be opened (missing, busy or denied)."""


class PlaybackStateError(RuntimeError):
    """Raised when stopping a source that never started or already stopped."""


class ScheduledSource(Protocol):
    def stop(self) -> None:
        ...


class OutputContext(Protocol):
    """Playback device with a monotonically advancing output clock."""

    sample_rate_hz: int

    @property
    def current_time(self) -> float:
        ...

    def schedule(
        self,
        buffer: PlaybackBuffer,
        start_at: float,
        on_ended: Callable[[], None],
    ) -> ScheduledSource:
        ...

    def resume(self) -> None:
        ...

    def close(self) -> None:
        ...


class Microphone(Protocol):
    """A live capture stream delivering fixed-size mono frames."""

    def frames(self) -> AsyncIterator[np.ndarray]:
        ...

    def latest_samples(self, count: int) -> np.ndarray:
        ...

    def stop(self) -> None:
        ...


class CaptureContext(Protocol):
    sample_rate_hz: int

    async def open_microphone(self, frame_samples: int) -> Microphone:
        ...

    def resume(self) -> None:
        ...

    def close(self) -> None:
        ...


class AudioDevices(Protocol):
    """Factory for the two device contexts a session needs."""

    def capture_context(self, sample_rate_hz: int) -> CaptureContext:
        ...

    def output_context(self, sample_rate_hz: int) -> OutputContext:
        ...


class SoundDeviceMicrophone:
    """Microphone backed by ``sounddevice.InputStream``."""

    _SENTINEL = None

    def __init__(
        self,
        sample_rate_hz: int,
        frame_samples: int,
        loop: asyncio.AbstractEventLoop,
        max_pending_frames: int = 32,
    ):
        self.sample_rate_hz = sample_rate_hz
        self.frame_samples = frame_samples
        self._loop = loop
        self._queue: asyncio.Queue[Optional[np.ndarray]] = asyncio.Queue(maxsize=max_pending_frames)
        self._dropped_frames = 0
        self._history: Deque[np.ndarray] = deque(maxlen=8)
        self._history_lock = threading.Lock()
        self._stream: Optional[Any] = None
        self._stopped = False
        self._overflow_count = 0

    def start(self) -> None:
        try:
            sd = _sounddevice()
        except OSError as exc:
            raise MicrophoneUnavailableError(f"Audio backend unavailable: {exc}") from exc
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate_hz,
                channels=1,
                dtype="float32",
                blocksize=self.frame_samples,
                callback=self._callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            raise MicrophoneUnavailableError(f"Cannot open microphone: {exc}") from exc
        logger.info("Microphone opened: rate=%sHz frame=%s samples", self.sample_rate_hz, self.frame_samples)

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    async def frames(self) -> AsyncIterator[np.ndarray]:
        while True:
            frame = await self._queue.get()
            if frame is self._SENTINEL:
                return
            yield frame

    def latest_samples(self, count: int) -> np.ndarray:
        with self._history_lock:
            recent = list(self._history)
        if not recent:
            return np.zeros(count, dtype=np.float32)
        joined = np.concatenate(recent)
        return joined[-count:]

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except _sounddevice().PortAudioError as exc:
                logger.debug("Ignoring error while closing microphone: %s", exc)
        self._loop.call_soon_threadsafe(self._enqueue, self._SENTINEL)
        logger.info("Microphone stopped")

    def _enqueue(self, item: Optional[np.ndarray]) -> None:
        # loop thread only
        if self._queue.full():
            self._queue.get_nowait()
            self._dropped_frames += 1
            logger.warning("Dropped oldest captured frame due to overflow (max=%s)", self._queue.maxsize)
        self._queue.put_nowait(item)

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status.input_overflow:
            self._overflow_count += 1
            if self._overflow_count % 10 == 0:
                logger.warning("Microphone input overflow (x%s)", self._overflow_count)
        frame = indata[:, 0].copy()
        with self._history_lock:
            self._history.append(frame)
        if self._stopped:
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, frame)
        except RuntimeError:
            # loop already closed
            pass


class SoundDeviceCaptureContext:
    def __init__(self, sample_rate_hz: int, max_pending_frames: int = 32):
        self.sample_rate_hz = sample_rate_hz
        self.max_pending_frames = max_pending_frames

    async def open_microphone(self, frame_samples: int) -> SoundDeviceMicrophone:
        microphone = SoundDeviceMicrophone(
            self.sample_rate_hz,
            frame_samples,
            asyncio.get_running_loop(),
            max_pending_frames=self.max_pending_frames,
        )
        microphone.start()
        return microphone

    def resume(self) -> None:
        return None

    def close(self) -> None:
        # each microphone is released by its session
        return None


@dataclass(eq=False)
class _MixSource:
    samples: np.ndarray
    start_frame: int
    on_ended: Callable[[], None]
    context: "SoundDeviceOutputContext"
    stopped: bool = False
    ended: bool = False

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.samples.shape[0]

    def stop(self) -> None:
        self.context._stop_source(self)


@dataclass
class _MixState:
    sources: List[_MixSource] = field(default_factory=list)
    frames_rendered: int = 0


class SoundDeviceOutputContext:
    """Mixes scheduled buffers into a single ``sounddevice.OutputStream``.

    The output clock is the number of frames rendered so far divided by the
    sample rate, so scheduling is sample accurate and independent of wall time.
    """

    def __init__(self, sample_rate_hz: int, channels: int = 1):
        self.sample_rate_hz = sample_rate_hz
        self.channels = channels
        self._state = _MixState()
        self._lock = threading.Lock()
        self._stream: Optional[Any] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._state.frames_rendered / self.sample_rate_hz

    def resume(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._stream is not None:
            return
        try:
            sd = _sounddevice()
        except OSError as exc:
            raise AudioDeviceUnavailableError(f"Audio backend unavailable: {exc}") from exc
        try:
            stream = sd.OutputStream(
                samplerate=self.sample_rate_hz,
                channels=self.channels,
                dtype="float32",
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise AudioDeviceUnavailableError(f"Cannot open output device: {exc}") from exc
        self._stream = stream
        logger.info("Output stream started at %sHz", self.sample_rate_hz)

    def schedule(self, buffer: PlaybackBuffer, start_at: float, on_ended: Callable[[], None]) -> _MixSource:
        samples = buffer.samples
        if buffer.channels != self.channels:
            samples = np.repeat(samples.mean(axis=1, keepdims=True), self.channels, axis=1)
        source = _MixSource(
            samples=samples.astype(np.float32, copy=False),
            start_frame=int(round(start_at * self.sample_rate_hz)),
            on_ended=on_ended,
            context=self,
        )
        with self._lock:
            self._state.sources.append(source)
        return source

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except _sounddevice().PortAudioError as exc:
            logger.debug("Ignoring error while closing output stream: %s", exc)
        with self._lock:
            self._state.sources.clear()
        logger.info("Output stream closed")

    def _stop_source(self, source: _MixSource) -> None:
        with self._lock:
            if source.stopped or source.ended:
                raise PlaybackStateError("Source already stopped")
            source.stopped = True
            if source in self._state.sources:
                self._state.sources.remove(source)
        self._notify_ended(source)

    def _notify_ended(self, source: _MixSource) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(source.on_ended)

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        outdata.fill(0)
        finished: List[_MixSource] = []
        with self._lock:
            block_start = self._state.frames_rendered
            block_end = block_start + frames
            for source in self._state.sources:
                lo = max(block_start, source.start_frame)
                hi = min(block_end, source.end_frame)
                if lo < hi:
                    outdata[lo - block_start:hi - block_start] += source.samples[lo - source.start_frame:hi - source.start_frame]
                if source.end_frame <= block_end:
                    source.ended = True
                    finished.append(source)
            for source in finished:
                self._state.sources.remove(source)
            self._state.frames_rendered = block_end
        for source in finished:
            self._notify_ended(source)


class SoundDeviceAudio:
    """Default ``AudioDevices`` implementation using the system's default devices."""

    def __init__(self, capture_queue_max: int = 32):
        self.capture_queue_max = capture_queue_max

    def capture_context(self, sample_rate_hz: int) -> SoundDeviceCaptureContext:
        return SoundDeviceCaptureContext(sample_rate_hz, max_pending_frames=self.capture_queue_max)

    def output_context(self, sample_rate_hz: int) -> SoundDeviceOutputContext:
        return SoundDeviceOutputContext(sample_rate_hz)


def list_devices() -> Any:
    """Return the ``sounddevice`` device table."""
    return _sounddevice().query_devices()


__all__ = [
    "AudioDeviceUnavailableError",
    "AudioDevices",
    "CaptureContext",
    "Microphone",
    "MicrophoneUnavailableError",
    "OutputContext",
    "PlaybackStateError",
    "ScheduledSource",
    "SoundDeviceAudio",
    "SoundDeviceCaptureContext",
    "SoundDeviceMicrophone",
    "SoundDeviceOutputContext",
    "list_devices",
]
