from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from qcdata.application import DatasetTransformer
from qcdata.core.config import (
    Settings,
    load_fallback_dataset,
    load_historical_defaults,
    load_retry_options,
    load_settings,
    load_source_descriptors,
)
from qcdata.core.validation import EmptyDatasetError
from qcdata.domain import FileStatus, LoadState
from qcdata.infrastructure.http import Fetch, HttpxFetcher
from qcdata.logging import configure_logging, get_logger
from qcdata.workers.resolver import Resolution, RetryPolicy, Sleep, SourceResolver

logger = get_logger("pipeline")

Observer = Callable[[LoadState], None]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineOrchestrator:
    """Runs resolve -> transform -> publish cycles, one at a time."""

    def __init__(
        self,
        resolver: SourceResolver,
        transformer: DatasetTransformer,
        *,
        clock: Clock | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._resolver = resolver
        self._transformer = transformer
        self._clock = clock or _utcnow
        self._on_close = on_close
        self._source_names = [descriptor.name for descriptor in resolver.descriptors]
        self._state = LoadState.initial(self._source_names)
        self._observers: list[Observer] = []
        self._generation = 0
        self._task: asyncio.Task[LoadState] | None = None
        self._closed = False

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # observers
    # ------------------------------------------------------------------
    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer`` for every published state; returns an unsubscribe callable."""

        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, generation: int, state: LoadState) -> bool:
        if self._closed or generation != self._generation:
            logger.debug("Discarding state from stale cycle %s (current %s)", generation, self._generation)
            return False
        self._state = state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                logger.exception("Observer %r failed while handling a state update", observer)
        return True

    # ------------------------------------------------------------------
    # cycles
    # ------------------------------------------------------------------
    async def refresh(self) -> LoadState:
        """Start a new load cycle, superseding any cycle still in flight."""

        if self._closed:
            raise RuntimeError("pipeline has been closed")

        self._generation += 1
        generation = self._generation
        previous = self._task
        if previous is not None and not previous.done():
            logger.info("Cancelling in-flight cycle %s", generation - 1)
            previous.cancel()

        self._publish(generation, LoadState.initial(self._source_names))
        task = asyncio.get_running_loop().create_task(self._run_cycle(generation))
        self._task = task

        while True:
            try:
                return await task
            except asyncio.CancelledError:
                # superseded by a newer refresh: report that cycle's outcome instead
                if self._closed or task is self._task or self._task is None:
                    raise
                task = self._task

    async def _run_cycle(self, generation: int) -> LoadState:
        def on_status(name: str, status: FileStatus) -> None:
            self._publish(generation, self._state.with_status(name, status))

        resolution = await self._resolver.resolve(on_status=on_status)
        data, error = self._materialise(resolution)
        final = LoadState(
            is_loading=False,
            error=error,
            data=data,
            last_updated=self._clock() if data is not None else None,
            file_statuses=dict(resolution.statuses),
        )
        if self._publish(generation, final):
            logger.info(
                "Cycle %s finished: %s%s",
                generation,
                resolution.kind,
                f" ({error})" if error else "",
            )
        return final

    def _materialise(self, resolution: Resolution) -> tuple[dict[str, Any] | None, str | None]:
        if resolution.kind == "aggregated":
            return resolution.document, None

        if resolution.kind == "records":
            try:
                return self._transformer.transform_rows(resolution.records), None
            except EmptyDatasetError as exc:
                fallback = self._resolver.fallback
                if fallback is None:
                    logger.error("No usable records and no fallback dataset: %s", exc)
                    return None, f"Failed to load data: {exc}"
                logger.error("No usable records, serving %s: %s", fallback.name, exc)
                return fallback.materialise(), f"No usable records; showing fallback data ({exc})"

        return resolution.document, resolution.error

    # ------------------------------------------------------------------
    # presentation contract
    # ------------------------------------------------------------------
    def snapshot(self) -> dict[str, Any]:
        payload = self._state.as_dict()
        payload["refreshData"] = self.refresh
        return payload

    async def close(self) -> None:
        """Tear the pipeline down; no further retries or state updates are issued."""

        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._observers.clear()
        if self._on_close is not None:
            await self._on_close()


def _retry_policy(settings: Settings) -> RetryPolicy:
    options = load_retry_options(settings.sources_file)
    defaults = RetryPolicy()
    attempts = settings.retry_attempts if settings.retry_attempts is not None else options.get("attempts")
    base_delay = settings.retry_base_delay if settings.retry_base_delay is not None else options.get("base_delay")
    multiplier = settings.retry_multiplier if settings.retry_multiplier is not None else options.get("multiplier")
    return RetryPolicy(
        attempts=int(attempts if attempts is not None else defaults.attempts),
        base_delay=float(base_delay if base_delay is not None else defaults.base_delay),
        multiplier=float(multiplier if multiplier is not None else defaults.multiplier),
    )


def build_orchestrator(
    settings: Settings | None = None,
    *,
    fetch: Fetch | None = None,
    sleep: Sleep = asyncio.sleep,
    clock: Clock | None = None,
) -> PipelineOrchestrator:
    """Wire resolver, transformer and fetcher from configuration."""

    settings = settings or load_settings()
    if settings.log_level or settings.log_file:
        configure_logging(settings.log_level or "INFO", log_file=settings.log_file)

    descriptors = load_source_descriptors(settings.sources_file, settings.base_url)
    fallback = load_fallback_dataset(settings.fallback_file) if settings.fallback_file else None
    historical = (
        load_historical_defaults(settings.historical_defaults_file)
        if settings.historical_defaults_file
        else None
    )

    on_close = None
    if fetch is None:
        fetcher = HttpxFetcher()
        fetch = fetcher
        on_close = fetcher.aclose

    resolver = SourceResolver(
        descriptors,
        fetch,
        fallback=fallback,
        retry_policy=_retry_policy(settings),
        sleep=sleep,
    )
    transformer = DatasetTransformer(historical_defaults=historical)
    logger.debug("Pipeline configured with %s source(s)", len(descriptors))
    return PipelineOrchestrator(resolver, transformer, clock=clock, on_close=on_close)


_pipeline: PipelineOrchestrator | None = None


def configure_pipeline(pipeline: PipelineOrchestrator | None) -> None:
    """Install the process-wide pipeline (``None`` resets it)."""

    global _pipeline
    _pipeline = pipeline


def get_pipeline() -> PipelineOrchestrator:
    """Return the process-wide pipeline, building it from the environment on first use."""

    global _pipeline
    if _pipeline is None or _pipeline.closed:
        _pipeline = build_orchestrator()
    return _pipeline
