from .codec import PcmCodec, sample_rate_from_mime
from .devices import (
    AudioDeviceUnavailableError,
    AudioDevices,
    CaptureContext,
    Microphone,
    MicrophoneUnavailableError,
    OutputContext,
    PlaybackStateError,
    SoundDeviceAudio,
)
from .meter import VolumeMeter, spectrum_level
from .types import AudioDecodingError, AudioFormat, EncodedFrame, PlaybackBuffer

__all__ = [
    "AudioDecodingError",
    "AudioDeviceUnavailableError",
    "AudioDevices",
    "AudioFormat",
    "CaptureContext",
    "EncodedFrame",
    "Microphone",
    "MicrophoneUnavailableError",
    "OutputContext",
    "PcmCodec",
    "PlaybackBuffer",
    "PlaybackStateError",
    "SoundDeviceAudio",
    "VolumeMeter",
    "sample_rate_from_mime",
    "spectrum_level",
]
