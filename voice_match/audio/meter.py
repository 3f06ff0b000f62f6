from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

import numpy as np

logger = logging.getLogger(__name__)

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


class SampleSource(Protocol):
    def latest_samples(self, count: int) -> np.ndarray:
        ...


def spectrum_level(samples: np.ndarray, fft_size: int = 256) -> float:
    """Average byte-scaled spectral magnitude (0..255) of the last ``fft_size`` samples.

    Bins are windowed (Blackman), converted to dBFS and mapped linearly from
    [-100, -30] dB onto [0, 255] before averaging.
    """
    window_input = np.zeros(fft_size, dtype=np.float64)
    tail = np.asarray(samples, dtype=np.float64).reshape(-1)[-fft_size:]
    if tail.size:
        window_input[-tail.size:] = tail

    spectrum = np.abs(np.fft.rfft(window_input * np.blackman(fft_size)))[: fft_size // 2] / fft_size
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(spectrum)
    scaled = (decibels - MIN_DECIBELS) * (255.0 / (MAX_DECIBELS - MIN_DECIBELS))
    return float(np.clip(scaled, 0.0, 255.0).mean())


class VolumeMeter:
    """Samples a microphone at a fixed rate and publishes its level."""

    def __init__(
        self,
        source: SampleSource,
        on_level: Callable[[float], None],
        *,
        fps: int = 60,
        fft_size: int = 256,
    ):
        self.source = source
        self.on_level = on_level
        self.interval = 1.0 / max(1, fps)
        self.fft_size = fft_size
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="volume-meter")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            level = spectrum_level(self.source.latest_samples(self.fft_size), self.fft_size)
            self.on_level(level)
            await asyncio.sleep(self.interval)
