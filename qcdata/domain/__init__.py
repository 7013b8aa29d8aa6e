"""Domain layer definitions."""

from .state import FallbackDataset, FileStatus, LoadState

__all__ = [
    "FallbackDataset",
    "FileStatus",
    "LoadState",
]
