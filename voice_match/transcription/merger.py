from __future__ import annotations

import logging
import re
from typing import Callable, List

from ..models.channel_events import TranscriptStream
from ..models.messages import LiveTranscript, MessageRecord, Sender
from .message_log import MessageLog

logger = logging.getLogger(__name__)

_LEADING_PUNCTUATION = re.compile(r"^[.,!?;: ]+")

LiveListener = Callable[[LiveTranscript], None]


def suppress_echo(source: str, translated: str) -> str:
    """Strip the source phrase when the engine echoed it ahead of the translation.

    Only an exact case-insensitive prefix is recognised.

    >>> suppress_echo("hello there", "Hello there, привет")
    'привет'
    """
    if source and translated.lower().startswith(source.lower()):
        remainder = translated[len(source):].strip()
        return _LEADING_PUNCTUATION.sub("", remainder)
    return translated


class TranscriptionMerger:
    """Accumulates transcript deltas for the turn in progress.

    Two buffers grow independently: what the user said and what the model
    translated. ``finalize`` turns them into message records when the turn
    completes.
    """

    def __init__(self, log: MessageLog):
        self.log = log
        self._source = ""
        self._translated = ""
        self._listeners: List[LiveListener] = []

    @property
    def live(self) -> LiveTranscript:
        return LiveTranscript(source=self._source, translated=self._translated)

    def subscribe(self, listener: LiveListener) -> None:
        self._listeners.append(listener)

    def append(self, stream: TranscriptStream, delta: str) -> None:
        if stream is TranscriptStream.SOURCE:
            self.append_source(delta)
        else:
            self.append_translated(delta)

    def append_source(self, delta: str) -> None:
        self._source += delta
        self._publish()

    def append_translated(self, delta: str) -> None:
        self._translated += delta
        self._publish()

    def finalize(self) -> List[MessageRecord]:
        source = self._source.strip()
        translated = suppress_echo(source, self._translated.strip())
        if translated != self._translated.strip():
            logger.info("Suppressed echoed source text in translation")

        emitted: List[MessageRecord] = []
        for sender, text in ((Sender.USER, source), (Sender.MODEL, translated)):
            if not text:
                continue
            record = self.log.add(sender, text)
            if record is not None:
                emitted.append(record)

        self.reset()
        return emitted

    def reset(self) -> None:
        had_content = bool(self._source or self._translated)
        self._source = ""
        self._translated = ""
        if had_content:
            self._publish()

    def _publish(self) -> None:
        snapshot = self.live
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Live transcript listener failed")
