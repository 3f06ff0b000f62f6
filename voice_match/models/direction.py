"""Translation directions supported by the client."""

from __future__ import annotations

from enum import Enum


class TranslationDirection(str, Enum):
    """The configured language pair, one value per direction."""

    EN_TO_RU = "EN_TO_RU"
    RU_TO_EN = "RU_TO_EN"

    @property
    def source_language(self) -> str:
        return "English" if self is TranslationDirection.EN_TO_RU else "Russian"

    @property
    def target_language(self) -> str:
        return "Russian" if self is TranslationDirection.EN_TO_RU else "English"

    @property
    def target_locale(self) -> str:
        return "ru-RU" if self is TranslationDirection.EN_TO_RU else "en-US"

    @property
    def config_key(self) -> str:
        """Key used for per-direction settings (``en_to_ru``/``ru_to_en``)."""
        return self.value.lower()

    @classmethod
    def parse(cls, raw: str) -> "TranslationDirection":
        """Accept ``EN_TO_RU``, ``en_to_ru``, ``en-ru`` and similar spellings."""
        normalized = raw.strip().upper().replace("-", "_")
        aliases = {"EN_RU": cls.EN_TO_RU, "RU_EN": cls.RU_TO_EN}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError as exc:
            valid = ", ".join(d.value for d in cls)
            raise ValueError(f"Unsupported direction '{raw}'. Choose one of: {valid}.") from exc


class SessionStatus(str, Enum):
    IDLE = "Idle"
    CONNECTING = "Connecting"
    LIVE = "Live"


__all__ = ["SessionStatus", "TranslationDirection"]
