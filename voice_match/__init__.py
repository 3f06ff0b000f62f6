"""Voice Match real-time speech-to-speech translation client."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("voice-match")
except PackageNotFoundError:  # pragma: no cover - fallback during local execution
    __version__ = "0.0.0"

__all__ = ["__version__"]
