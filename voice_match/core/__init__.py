"""Core infrastructure for the translation client."""

from .event_bus import EventBus, HandlerConfig
from .queues import BoundedQueue, OverflowPolicy
from .websocket_client import WireLoggingWebSocket
from .wire_log_sink import WireLogSink

__all__ = [
    "BoundedQueue",
    "EventBus",
    "HandlerConfig",
    "OverflowPolicy",
    "WireLogSink",
    "WireLoggingWebSocket",
]
