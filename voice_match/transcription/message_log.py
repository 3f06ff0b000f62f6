from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Tuple

from ..models.messages import MessageRecord, Sender

logger = logging.getLogger(__name__)

NOISE_PATTERNS = (
    re.compile(r"^<.*>$", re.IGNORECASE),
    re.compile(r"^\d+$", re.ASCII),
    re.compile(r"^[.,!?;: ]+$"),
    re.compile(r"^noise$", re.IGNORECASE),
    re.compile(r"^static$", re.IGNORECASE),
)

MessageListener = Callable[[MessageRecord], None]


def is_noise(text: str) -> bool:
    """True for transcription artifacts: ``<tags>``, bare numbers, punctuation, "noise", "static"."""
    return any(pattern.match(text) for pattern in NOISE_PATTERNS)


class MessageLog:
    """Append-only conversation log.

    ``add`` trims the text, drops live-channel noise artifacts and collapses a
    record into the previous one when both come from the same sender with the
    same text, ignoring case.
    """

    def __init__(self) -> None:
        self._records: List[MessageRecord] = []
        self._listeners: List[MessageListener] = []

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Tuple[MessageRecord, ...]:
        return tuple(self._records)

    def subscribe(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def add(self, sender: Sender, text: str, *, from_keyboard: bool = False) -> Optional[MessageRecord]:
        trimmed = text.strip()
        if not trimmed:
            return None

        if not from_keyboard and is_noise(trimmed):
            logger.debug("Dropped noise artifact from %s: %r", sender.value, trimmed)
            return None

        if self._records and self._records[-1].matches(sender, trimmed):
            logger.debug("Collapsed duplicate %s message", sender.value)
            return None

        record = MessageRecord(sender=sender, text=trimmed)
        self._records.append(record)
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Message listener failed")
        return record

    def clear(self) -> None:
        self._records.clear()
