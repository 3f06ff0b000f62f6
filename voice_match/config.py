from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml
from dotenv import load_dotenv

from .core.queues import OverflowPolicy
from .models.direction import TranslationDirection
from .utils.dict_utils import deep_merge
from .utils.env_config import apply_env_overrides

logger = logging.getLogger(__name__)

API_KEY_ENV = "GEMINI_API_KEY"

DEFAULT_ENDPOINT = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
DEFAULT_MODEL = "models/gemini-2.5-flash-native-audio-preview-09-2025"
DEFAULT_TEXT_MODEL = "models/gemini-2.0-flash-live-001"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""


@dataclass
class SystemConfig:
    log_level: str = "INFO"
    log_wire: bool = False
    log_wire_dir: str = "logs"

    def to_dict(self) -> Dict:
        return {
            "log_level": self.log_level,
            "log_wire": self.log_wire,
            "log_wire_dir": self.log_wire_dir,
        }


@dataclass
class AudioConfig:
    capture_sample_rate: int = 16_000
    playback_sample_rate: int = 24_000
    frame_samples: int = 4096
    meter_fps: int = 60
    meter_fft_size: int = 256

    def to_dict(self) -> Dict:
        return {
            "capture_sample_rate": self.capture_sample_rate,
            "playback_sample_rate": self.playback_sample_rate,
            "frame_samples": self.frame_samples,
            "meter_fps": self.meter_fps,
            "meter_fft_size": self.meter_fft_size,
        }


@dataclass
class ProviderConfig:
    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    text_model: str = DEFAULT_TEXT_MODEL
    api_key: Optional[str] = None
    connect_timeout_s: float = 10.0
    voices: Dict[str, str] = field(
        default_factory=lambda: {
            TranslationDirection.EN_TO_RU.config_key: "Kore",
            TranslationDirection.RU_TO_EN.config_key: "Zephyr",
        }
    )

    def voice_for(self, direction: TranslationDirection) -> str:
        try:
            return self.voices[direction.config_key]
        except KeyError as exc:
            raise ConfigError(f"No voice configured for direction {direction.value}") from exc

    def to_dict(self) -> Dict:
        return {
            "endpoint": self.endpoint,
            "model": self.model,
            "text_model": self.text_model,
            "api_key": self.api_key,
            "connect_timeout_s": self.connect_timeout_s,
            "voices": dict(self.voices),
        }


@dataclass
class BufferingConfig:
    inbound_queue_max: int = 2_000
    capture_queue_max: int = 32
    overflow_policy: str = OverflowPolicy.DROP_OLDEST.value

    def to_dict(self) -> Dict:
        return {
            "inbound_queue_max": self.inbound_queue_max,
            "capture_queue_max": self.capture_queue_max,
            "overflow_policy": self.overflow_policy,
        }


@dataclass
class Config:
    system: SystemConfig = field(default_factory=SystemConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    buffering: BufferingConfig = field(default_factory=BufferingConfig)

    def to_dict(self) -> Dict:
        return {
            "system": self.system.to_dict(),
            "audio": self.audio.to_dict(),
            "provider": self.provider.to_dict(),
            "buffering": self.buffering.to_dict(),
        }

    @classmethod
    def from_yaml(cls, paths: Iterable[Path]) -> "Config":
        """Load and merge YAML config files left-to-right over the defaults."""
        merged = Config().to_dict()
        for path in paths or []:
            path = Path(path)
            if not path.is_file():
                logger.warning("Config path does not exist or is not a file: %s", path)
                continue
            try:
                with path.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigError(f"Config file {path} must contain a mapping at the top level")
            merged = deep_merge(merged, data)
        return cls.from_dict(merged)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        system = data.get("system") or {}
        audio = data.get("audio") or {}
        provider = data.get("provider") or {}
        buffering = data.get("buffering") or {}

        try:
            config = cls(
                system=SystemConfig(**system),
                audio=AudioConfig(**audio),
                provider=ProviderConfig(**provider),
                buffering=BufferingConfig(**buffering),
            )
        except TypeError as exc:
            raise ConfigError(f"Unknown configuration key: {exc}") from exc

        try:
            OverflowPolicy(config.buffering.overflow_policy)
        except ValueError as exc:
            raise ConfigError(f"Unsupported overflow policy: {config.buffering.overflow_policy}") from exc
        if config.buffering.capture_queue_max <= 0:
            raise ConfigError("buffering.capture_queue_max must be positive")
        if config.audio.frame_samples <= 0:
            raise ConfigError("audio.frame_samples must be positive")
        return config


def load_config(
    paths: Iterable[Path] | None = None,
    *,
    dotenv_path: Optional[str] = None,
) -> Config:
    """Build the runtime config: YAML files, then ``VM_*`` overrides, then the API key.

    The API key falls back to ``GEMINI_API_KEY`` (a ``.env`` file is loaded
    first) when neither YAML nor ``VM_PROVIDER_API_KEY`` sets it.
    """
    load_dotenv(dotenv_path)

    base = Config.from_yaml(list(paths or []))
    config = Config.from_dict(apply_env_overrides(base.to_dict()))

    if not config.provider.api_key:
        config.provider.api_key = os.getenv(API_KEY_ENV)
    return config


__all__ = [
    "API_KEY_ENV",
    "AudioConfig",
    "BufferingConfig",
    "Config",
    "ConfigError",
    "ProviderConfig",
    "SystemConfig",
    "load_config",
]
