from .controller import CONNECTION_ERROR_TEXT, SessionController, StateChange
from .session import InboundEvent, Session

__all__ = ["CONNECTION_ERROR_TEXT", "InboundEvent", "Session", "SessionController", "StateChange"]
