from .pipeline import CapturePipeline

__all__ = ["CapturePipeline"]
