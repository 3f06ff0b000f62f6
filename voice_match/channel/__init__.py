from .config import ChannelConfig, build_system_instruction
from .errors import ChannelConnectError, ChannelError, ChannelSendError
from .live_channel import Channel, ChannelFactory, ChannelListener, LiveTranslationChannel, live_channel_factory
from .text_translator import LiveTextTranslator, TextTranslator

__all__ = [
    "Channel",
    "ChannelConfig",
    "ChannelConnectError",
    "ChannelError",
    "ChannelFactory",
    "ChannelListener",
    "ChannelSendError",
    "LiveTextTranslator",
    "LiveTranslationChannel",
    "TextTranslator",
    "build_system_instruction",
    "live_channel_factory",
]
