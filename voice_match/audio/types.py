from __future__ import annotations

from dataclasses import dataclass

import numpy as np


class AudioDecodingError(Exception):
    """Raised when an inbound audio chunk cannot be turned into a playable buffer."""


@dataclass(frozen=True)
class AudioFormat:
    """Describes raw little-endian PCM16 audio on the wire."""

    sample_rate_hz: int
    channels: int

    def bytes_per_sample(self) -> int:
        return 2

    def bytes_per_frame(self) -> int:
        return self.bytes_per_sample() * self.channels

    @property
    def mime_type(self) -> str:
        return f"audio/pcm;rate={self.sample_rate_hz}"


@dataclass(frozen=True)
class EncodedFrame:
    """A capture frame ready for transmission: base64 PCM16 plus its mime type."""

    data: str
    mime_type: str


@dataclass(frozen=True, eq=False)
class PlaybackBuffer:
    """Decoded float32 audio, shaped ``(frames, channels)``."""

    samples: np.ndarray
    sample_rate_hz: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1]) if self.samples.ndim == 2 else 1

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return self.frames / self.sample_rate_hz


__all__ = [
    "AudioDecodingError",
    "AudioFormat",
    "EncodedFrame",
    "PlaybackBuffer",
]
