"""Application services."""

from .transformer import DatasetTransformer, IngestResult

__all__ = [
    "DatasetTransformer",
    "IngestResult",
]
