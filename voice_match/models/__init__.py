from .channel_events import (
    AudioChunkEvent,
    ChannelEvent,
    TranscriptDeltaEvent,
    TranscriptStream,
    TurnCompleteEvent,
    events_from_server_message,
)
from .direction import SessionStatus, TranslationDirection
from .messages import LiveTranscript, MessageRecord, Sender

__all__ = [
    "AudioChunkEvent",
    "ChannelEvent",
    "LiveTranscript",
    "MessageRecord",
    "Sender",
    "SessionStatus",
    "TranscriptDeltaEvent",
    "TranscriptStream",
    "TranslationDirection",
    "TurnCompleteEvent",
    "events_from_server_message",
]
