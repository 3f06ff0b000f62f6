"""Session: one remote channel bound to one translation direction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..audio.devices import Microphone
from ..audio.meter import VolumeMeter
from ..capture.pipeline import CapturePipeline
from ..channel.live_channel import Channel
from ..models.channel_events import ChannelEvent
from ..models.direction import SessionStatus, TranslationDirection


@dataclass(eq=False)
class Session:
    """State owned by the controller for a single start..stop span.

    Identity is what matters: callbacks capture the object they were created
    for and compare it with the controller's current session. ``generation``
    is carried for logging.
    """

    generation: int
    direction: TranslationDirection
    status: SessionStatus = SessionStatus.CONNECTING
    channel: Optional[Channel] = None
    microphone: Optional[Microphone] = None
    meter: Optional[VolumeMeter] = None
    pipeline: Optional[CapturePipeline] = None

    @property
    def label(self) -> str:
        return f"session#{self.generation}[{self.direction.value}]"


@dataclass(frozen=True, eq=False)
class InboundEvent:
    """A channel event tagged with the session whose channel produced it."""

    session: Session
    event: ChannelEvent


__all__ = ["InboundEvent", "Session"]
