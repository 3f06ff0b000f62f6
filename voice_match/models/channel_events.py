"""Normalized events carried by the remote translation channel.

One server message may carry several of these at once (an audio part, both
transcript deltas and the turn-complete marker). ``events_from_server_message``
flattens a message into a list in the order they must be applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Union

from ..utils.dict_utils import first_present

logger = logging.getLogger(__name__)


class TranscriptStream(str, Enum):
    SOURCE = "source"
    TRANSLATED = "translated"


@dataclass(frozen=True)
class AudioChunkEvent:
    """Base64 PCM16 audio from the model turn."""

    data_b64: str
    mime_type: str = "audio/pcm"


@dataclass(frozen=True)
class TranscriptDeltaEvent:
    stream: TranscriptStream
    text: str


@dataclass(frozen=True)
class TurnCompleteEvent:
    pass


ChannelEvent = Union[AudioChunkEvent, TranscriptDeltaEvent, TurnCompleteEvent]


def events_from_server_message(message: Dict[str, Any]) -> List[ChannelEvent]:
    """Flatten a server message into ordered channel events.

    Order: audio parts, source transcript, translated transcript, turn complete.
    """
    content = first_present(message, "serverContent", "server_content")
    if not isinstance(content, dict):
        return []

    events: List[ChannelEvent] = []

    model_turn = first_present(content, "modelTurn", "model_turn")
    parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
    for part in parts or []:
        if not isinstance(part, dict):
            continue
        inline = first_present(part, "inlineData", "inline_data")
        if not isinstance(inline, dict):
            continue
        data = inline.get("data")
        if data:
            mime_type = first_present(inline, "mimeType", "mime_type") or "audio/pcm"
            events.append(AudioChunkEvent(data_b64=data, mime_type=mime_type))

    for keys, stream in (
        (("inputTranscription", "input_transcription"), TranscriptStream.SOURCE),
        (("outputTranscription", "output_transcription"), TranscriptStream.TRANSLATED),
    ):
        transcription = first_present(content, *keys)
        if isinstance(transcription, dict) and transcription.get("text"):
            events.append(TranscriptDeltaEvent(stream=stream, text=transcription["text"]))

    if first_present(content, "turnComplete", "turn_complete"):
        events.append(TurnCompleteEvent())

    if not events:
        logger.debug("Server content without actionable fields: %s", sorted(content.keys()))
    return events


__all__ = [
    "AudioChunkEvent",
    "ChannelEvent",
    "TranscriptDeltaEvent",
    "TranscriptStream",
    "TurnCompleteEvent",
    "events_from_server_message",
]
