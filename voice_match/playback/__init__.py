from .scheduler import PlaybackScheduler, PlaybackUnit

__all__ = ["PlaybackScheduler", "PlaybackUnit"]
