class ChannelError(Exception):
    """Base class for remote channel failures."""


class ChannelConnectError(ChannelError):
    """The channel could not be opened (bad key, network, handshake, timeout)."""


class ChannelSendError(ChannelError):
    """A frame could not be written to the channel."""


__all__ = ["ChannelConnectError", "ChannelError", "ChannelSendError"]
