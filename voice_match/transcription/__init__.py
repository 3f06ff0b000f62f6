from .merger import TranscriptionMerger, suppress_echo
from .message_log import MessageLog, is_noise

__all__ = ["MessageLog", "TranscriptionMerger", "is_noise", "suppress_echo"]
