"""Domain values describing a load cycle."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

FALLBACK_STATUS = "Fallback Data"


@dataclass(frozen=True, slots=True)
class FileStatus:
    """Outcome of resolving one source descriptor during a cycle."""

    attempted: bool = False
    succeeded: bool = False
    error_message: str | None = None
    attempts: int = 0

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "attempts": self.attempts,
        }
        if self.error_message is not None:
            payload["errorMessage"] = self.error_message
        return payload


@dataclass(frozen=True, slots=True)
class FallbackDataset:
    """Versioned, pre-aggregated document served when every source fails."""

    version: str
    document: Mapping[str, Any]

    @property
    def name(self) -> str:
        return f"fallback-{self.version}"

    def materialise(self) -> dict[str, Any]:
        """Return a private copy flagged as degraded in its overview."""

        document = copy.deepcopy(dict(self.document))
        overview = document.setdefault("overview", {})
        overview["analysisStatus"] = FALLBACK_STATUS
        overview["degraded"] = True
        return document


@dataclass(frozen=True, slots=True)
class LoadState:
    """Immutable snapshot published by the pipeline orchestrator."""

    is_loading: bool = True
    error: str | None = None
    data: dict[str, Any] | None = None
    last_updated: datetime | None = None
    file_statuses: Mapping[str, FileStatus] = field(default_factory=dict)

    @classmethod
    def initial(cls, source_names: Iterable[str]) -> "LoadState":
        return cls(file_statuses={name: FileStatus() for name in source_names})

    def with_status(self, name: str, status: FileStatus) -> "LoadState":
        statuses = dict(self.file_statuses)
        statuses[name] = status
        return replace(self, file_statuses=statuses)

    @property
    def degraded(self) -> bool:
        return self.data is not None and self.error is not None

    def as_dict(self) -> dict[str, Any]:
        return {
            "isLoading": self.is_loading,
            "error": self.error,
            "data": self.data,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "fileStatus": {name: status.as_dict() for name, status in self.file_statuses.items()},
        }
