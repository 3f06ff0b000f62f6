"""Conversation log records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from ..utils.time_utils import epoch_ms


class Sender(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class MessageRecord:
    """A finalized entry of the conversation log. Never mutated after creation."""

    sender: Sender
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = field(default_factory=epoch_ms)

    def matches(self, sender: Sender, text: str) -> bool:
        """True when ``text`` from ``sender`` would duplicate this record."""
        return self.sender is sender and self.text.lower() == text.lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class LiveTranscript:
    """Provisional, not yet finalized text of the turn in progress."""

    source: str = ""
    translated: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.source and not self.translated


__all__ = ["LiveTranscript", "MessageRecord", "Sender"]
