from __future__ import annotations

import base64
import binascii
from typing import Optional

import numpy as np

from .types import AudioDecodingError, AudioFormat, EncodedFrame, PlaybackBuffer

_PCM16_SCALE = 32768.0


class PcmCodec:
    """Stateless conversions between capture samples, the wire and playable buffers.

    Capture frames are float32 in ``[-1, 1]``; the wire carries base64
    little-endian PCM16.
    """

    def __init__(self, capture_format: AudioFormat):
        self.capture_format = capture_format

    def encode_frame(self, samples: np.ndarray) -> EncodedFrame:
        """Encode one mono capture frame for transmission."""
        mono = np.asarray(samples, dtype=np.float32).reshape(-1)
        pcm = (np.clip(mono, -1.0, 1.0) * _PCM16_SCALE).clip(-_PCM16_SCALE, _PCM16_SCALE - 1)
        data = pcm.astype("<i2").tobytes()
        return EncodedFrame(
            data=base64.b64encode(data).decode("ascii"),
            mime_type=self.capture_format.mime_type,
        )

    @staticmethod
    def decode(data_b64: str) -> bytes:
        """Decode a base64 payload into raw bytes."""
        try:
            return base64.b64decode(data_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AudioDecodingError(f"Invalid base64 audio payload: {exc}") from exc

    @staticmethod
    def decode_audio_data(
        raw: bytes,
        sample_rate_hz: int,
        channels: int,
        target_rate_hz: Optional[int] = None,
    ) -> PlaybackBuffer:
        """Turn raw PCM16 bytes into a playable float32 buffer.

        With ``target_rate_hz`` the samples are resampled to the output
        device's rate.
        """
        fmt = AudioFormat(sample_rate_hz=sample_rate_hz, channels=channels)
        frame_bytes = fmt.bytes_per_frame()
        if not raw:
            raise AudioDecodingError("Empty audio payload")
        if len(raw) % frame_bytes:
            raise AudioDecodingError(
                f"Audio payload of {len(raw)} bytes is not aligned to {frame_bytes}-byte frames"
            )

        pcm = np.frombuffer(raw, dtype="<i2").astype(np.float32) / _PCM16_SCALE
        samples = pcm.reshape(-1, channels)
        if target_rate_hz and target_rate_hz != sample_rate_hz:
            samples = resample(samples, sample_rate_hz, target_rate_hz)
            sample_rate_hz = target_rate_hz
        return PlaybackBuffer(samples=samples, sample_rate_hz=sample_rate_hz)


def resample(samples: np.ndarray, src_rate_hz: int, dst_rate_hz: int) -> np.ndarray:
    """Linear-interpolation resampling of ``(frames, channels)`` float samples."""
    if src_rate_hz == dst_rate_hz:
        return samples
    src_length = samples.shape[0]
    target_length = max(1, int(round(src_length * (dst_rate_hz / src_rate_hz))))

    x_old = np.linspace(0.0, 1.0, num=src_length, endpoint=False)
    x_new = np.linspace(0.0, 1.0, num=target_length, endpoint=False)
    resampled_channels = [np.interp(x_new, x_old, samples[:, ch]) for ch in range(samples.shape[1])]
    return np.stack(resampled_channels, axis=1).astype(np.float32)


def sample_rate_from_mime(mime_type: str, default: int) -> int:
    """Read the ``rate=`` parameter of an ``audio/pcm`` mime type.

    >>> sample_rate_from_mime("audio/pcm;rate=24000", 16000)
    24000
    """
    for param in mime_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key.lower() == "rate" and value.isdigit():
            return int(value)
    return default
