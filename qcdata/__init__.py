"""Quality-control analytics data pipeline."""

from qcdata.application import DatasetTransformer
from qcdata.core.schema import AnalyticsDocument, Record, SourceDescriptor
from qcdata.domain import FallbackDataset, FileStatus, LoadState
from qcdata.workers import PipelineOrchestrator, RetryPolicy, SourceResolver, build_orchestrator

__version__ = "0.1.0"

__all__ = [
    "AnalyticsDocument",
    "DatasetTransformer",
    "FallbackDataset",
    "FileStatus",
    "LoadState",
    "PipelineOrchestrator",
    "Record",
    "RetryPolicy",
    "SourceDescriptor",
    "SourceResolver",
    "build_orchestrator",
]
