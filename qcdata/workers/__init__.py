"""Asynchronous workers driving load cycles."""

from .pipeline import (
    PipelineOrchestrator,
    build_orchestrator,
    configure_pipeline,
    get_pipeline,
)
from .resolver import Resolution, RetryPolicy, SourceResolver

__all__ = [
    "PipelineOrchestrator",
    "Resolution",
    "RetryPolicy",
    "SourceResolver",
    "build_orchestrator",
    "configure_pipeline",
    "get_pipeline",
]
