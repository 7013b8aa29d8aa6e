"""Cascading source resolution with bounded retry and a built-in fallback."""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Sequence

from qcdata.core.schema import DOMAIN_ORDER, SOURCE_TAG, SourceDescriptor
from qcdata.core.validation import (
    MalformedPayloadError,
    NetworkError,
    SourceError,
    validate_aggregated_document,
    validate_record_payload,
)
from qcdata.domain import FallbackDataset, FileStatus
from qcdata.infrastructure.http import Fetch
from qcdata.logging import get_logger

logger = get_logger("resolver")

Sleep = Callable[[float], Awaitable[None]]
StatusCallback = Callable[[str, FileStatus], None]

ResolutionKind = Literal["aggregated", "records", "fallback", "failed"]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempts per descriptor and the exponential backoff between them."""

    attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 1.5

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.base_delay < 0 or self.multiplier < 1:
            raise ValueError("base_delay must be >= 0 and multiplier >= 1")

    def delays(self) -> list[float]:
        """Delays slept between consecutive attempts (``attempts - 1`` values)."""

        return [self.base_delay * self.multiplier**index for index in range(self.attempts - 1)]


@dataclass(slots=True)
class Resolution:
    """Result of one resolution cycle."""

    kind: ResolutionKind
    statuses: dict[str, FileStatus]
    document: dict[str, Any] | None = None
    records: list[dict[str, Any]] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.kind == "fallback"


@dataclass(slots=True)
class _Outcome:
    status: FileStatus
    payload: Any = None


class SourceResolver:
    """Walks the descriptor priority list and returns the first usable payload."""

    def __init__(
        self,
        descriptors: Sequence[SourceDescriptor],
        fetch: Fetch,
        *,
        fallback: FallbackDataset | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        names = [descriptor.name for descriptor in descriptors]
        if len(set(names)) != len(names):
            raise ValueError("source descriptor names must be unique")
        self._descriptors = tuple(descriptors)
        self._fetch = fetch
        self._fallback = fallback
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def descriptors(self) -> tuple[SourceDescriptor, ...]:
        return self._descriptors

    @property
    def fallback(self) -> FallbackDataset | None:
        return self._fallback

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    # ------------------------------------------------------------------
    # single attempts
    # ------------------------------------------------------------------
    async def _fetch_payload(self, descriptor: SourceDescriptor) -> Any:
        try:
            response = await self._fetch(descriptor.url)
        except SourceError:
            raise
        except Exception as exc:  # transport failures of any injected fetch
            raise NetworkError(f"Failed to load {descriptor.name}: {exc}") from exc

        if not response.ok:
            raise NetworkError(
                f"Failed to load {descriptor.name}: {response.status} {response.status_text}".rstrip()
            )

        try:
            payload = response.json()
            if inspect.isawaitable(payload):
                payload = await payload
        except ValueError as exc:
            raise MalformedPayloadError(f"{descriptor.name} is not valid JSON: {exc}") from exc

        if descriptor.expects_aggregated_document:
            return validate_aggregated_document(payload)
        return validate_record_payload(payload)

    async def _attempt(self, descriptor: SourceDescriptor) -> _Outcome:
        delays = self._retry.delays()
        last_error = "not attempted"
        for attempt in range(1, self._retry.attempts + 1):
            try:
                payload = await self._fetch_payload(descriptor)
            except SourceError as exc:
                last_error = str(exc)
                logger.warning(
                    "Attempt %s/%s for %s failed: %s", attempt, self._retry.attempts, descriptor.name, exc
                )
                if attempt < self._retry.attempts:
                    await self._sleep(delays[attempt - 1])
                continue
            logger.info("Loaded %s on attempt %s", descriptor.name, attempt)
            return _Outcome(FileStatus(attempted=True, succeeded=True, attempts=attempt), payload)

        return _Outcome(
            FileStatus(
                attempted=True,
                succeeded=False,
                error_message=last_error,
                attempts=self._retry.attempts,
            )
        )

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def resolve(self, on_status: StatusCallback | None = None) -> Resolution:
        statuses: dict[str, FileStatus] = {descriptor.name: FileStatus() for descriptor in self._descriptors}

        def record(name: str, status: FileStatus) -> None:
            statuses[name] = status
            if on_status is not None:
                on_status(name, status)

        errors: list[str] = []
        index = 0
        while index < len(self._descriptors):
            descriptor = self._descriptors[index]

            if descriptor.expects_aggregated_document:
                index += 1
                outcome = await self._attempt(descriptor)
                record(descriptor.name, outcome.status)
                if outcome.status.succeeded:
                    return Resolution(
                        kind="aggregated",
                        statuses=dict(statuses),
                        document=outcome.payload,
                        sources=[descriptor.name],
                    )
                errors.append(f"{descriptor.name}: {outcome.status.error_message}")
                continue

            # consecutive raw-record descriptors form one set; each is tried independently
            group: list[SourceDescriptor] = []
            while index < len(self._descriptors) and not self._descriptors[index].expects_aggregated_document:
                group.append(self._descriptors[index])
                index += 1

            loaded: list[tuple[SourceDescriptor, list[dict[str, Any]]]] = []
            for member in group:
                outcome = await self._attempt(member)
                record(member.name, outcome.status)
                if outcome.status.succeeded:
                    loaded.append((member, outcome.payload))
                else:
                    errors.append(f"{member.name}: {outcome.status.error_message}")

            if loaded:
                loaded.sort(key=lambda item: _domain_rank(item[0]))
                records: list[dict[str, Any]] = []
                for member, rows in loaded:
                    records.extend(_tag_rows(member, rows))
                logger.info(
                    "Resolved %s raw record(s) from %s", len(records), ", ".join(m.name for m, _ in loaded)
                )
                return Resolution(
                    kind="records",
                    statuses=dict(statuses),
                    records=records,
                    sources=[member.name for member, _ in loaded],
                )

        summary = "; ".join(errors) or "no sources configured"
        if self._fallback is not None:
            logger.error("All sources failed, serving %s: %s", self._fallback.name, summary)
            return Resolution(
                kind="fallback",
                statuses=dict(statuses),
                document=self._fallback.materialise(),
                sources=[self._fallback.name],
                error=f"All data sources failed; showing fallback data ({summary})",
            )

        logger.error("All sources failed and no fallback dataset is configured: %s", summary)
        return Resolution(
            kind="failed",
            statuses=dict(statuses),
            error=f"Failed to load data: {summary}",
        )


def _domain_rank(descriptor: SourceDescriptor) -> int:
    if descriptor.domain is None:
        return len(DOMAIN_ORDER)
    return DOMAIN_ORDER.index(descriptor.domain)


def _tag_rows(descriptor: SourceDescriptor, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if descriptor.domain is None:
        return [dict(row) for row in rows]
    return [{**row, SOURCE_TAG: descriptor.domain} for row in rows]
