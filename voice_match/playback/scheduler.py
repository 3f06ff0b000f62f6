from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Set

from ..audio.devices import OutputContext, PlaybackStateError, ScheduledSource
from ..audio.types import PlaybackBuffer

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PlaybackUnit:
    buffer: PlaybackBuffer
    start_at: float
    source: Optional[ScheduledSource] = None

    @property
    def end_at(self) -> float:
        return self.start_at + self.buffer.duration


class PlaybackScheduler:
    """Schedules decoded chunks back-to-back on one output context.

    A single cursor marks where the next unit starts. Each unit starts at
    ``max(cursor, output clock)`` and the cursor then advances by exactly the
    unit's duration, so units never overlap and never leave a gap while audio
    keeps arriving ahead of the clock.
    """

    def __init__(self, output: OutputContext):
        self.output = output
        self._cursor = 0.0
        self._live: Set[PlaybackUnit] = set()

    @property
    def cursor(self) -> float:
        return self._cursor

    @property
    def live_units(self) -> frozenset:
        return frozenset(self._live)

    def enqueue(self, buffer: PlaybackBuffer) -> PlaybackUnit:
        start_at = max(self._cursor, self.output.current_time)
        unit = PlaybackUnit(buffer=buffer, start_at=start_at)
        unit.source = self.output.schedule(buffer, start_at, lambda: self._release(unit))
        self._cursor = start_at + buffer.duration
        self._live.add(unit)
        logger.debug(
            "Scheduled %.3fs of audio at %.3f (cursor=%.3f live=%s)",
            buffer.duration,
            start_at,
            self._cursor,
            len(self._live),
        )
        return unit

    def force_stop_all(self) -> int:
        """Stop every live unit and rewind the cursor. Returns how many were stopped."""
        units = list(self._live)
        for unit in units:
            if unit.source is None:
                continue
            try:
                unit.source.stop()
            except PlaybackStateError:
                logger.debug("Playback unit at %.3f was not running", unit.start_at)
        self._live.clear()
        self._cursor = 0.0
        if units:
            logger.info("Force-stopped %s playback unit(s)", len(units))
        return len(units)

    def _release(self, unit: PlaybackUnit) -> None:
        self._live.discard(unit)
