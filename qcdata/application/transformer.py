"""Application service turning raw quality-control rows into the analytics document."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from qcdata.core import aggregations
from qcdata.core.schema import (
    DOMAIN_ORDER,
    SOURCE_TAG,
    AnalyticsDocument,
    ExternalRFT,
    InternalRFT,
    Overview,
    ProcessMetrics,
    Record,
    normalise_domain,
)
from qcdata.core.validation import (
    EmptyDatasetError,
    InvalidRecord,
    UnattributedRecordWarning,
    parse_record,
)
from qcdata.logging import get_logger

logger = get_logger("transformer")

STATUS_COMPLETE = "Complete"
STATUS_HISTORICAL = "Historical Defaults"


@dataclass(slots=True)
class IngestResult:
    """Records accepted from a batch of raw rows plus what was left behind."""

    records: list[Record] = field(default_factory=list)
    dropped: int = 0
    unattributed: int = 0
    errors: list[str] = field(default_factory=list)


class DatasetTransformer:
    """Owns the raw-records to analytics-document transformation."""

    def __init__(self, historical_defaults: Mapping[str, Sequence[Record]] | None = None) -> None:
        self._historical_defaults: dict[str, list[Record]] = {
            domain: list(records) for domain, records in (historical_defaults or {}).items() if records
        }

    @property
    def has_historical_defaults(self) -> bool:
        return bool(self._historical_defaults)

    # ------------------------------------------------------------------
    # ingestion
    # ------------------------------------------------------------------
    @staticmethod
    def infer_domain(row: Mapping[str, Any], source_domain: str | None = None) -> str | None:
        """Domain of ``row`` from its originating source, falling back to its own field."""

        for candidate in (row.get(SOURCE_TAG), source_domain, row.get("domain")):
            domain = normalise_domain(candidate)
            if domain is not None:
                return domain
        return None

    def ingest(self, rows: Iterable[Mapping[str, Any]], *, source_domain: str | None = None) -> IngestResult:
        result = IngestResult()
        for index, row in enumerate(rows):
            domain = self.infer_domain(row, source_domain)
            if domain is None:
                result.unattributed += 1
                logger.warning(
                    "%s: dropping row %s (id=%s), no domain can be inferred",
                    UnattributedRecordWarning.__name__,
                    index,
                    row.get("id"),
                )
                continue
            payload = {key: value for key, value in row.items() if key != SOURCE_TAG}
            try:
                record = parse_record(payload, domain=domain)
            except InvalidRecord as exc:
                result.dropped += 1
                result.errors.append(f"row {index}: {exc}")
                logger.debug("Invalid record at row %s dropped: %s", index, exc)
                continue
            result.records.append(record)

        if result.dropped:
            logger.warning("Dropped %s invalid record(s) during ingestion", result.dropped)
        return result

    # ------------------------------------------------------------------
    # transformation
    # ------------------------------------------------------------------
    def transform(
        self,
        records: Sequence[Record],
        *,
        dropped: int = 0,
        unattributed: int = 0,
    ) -> dict[str, Any]:
        records = list(records)
        status = STATUS_COMPLETE
        if not records:
            if not self._historical_defaults:
                raise EmptyDatasetError("no usable records and no historical defaults configured")
            records = [
                record for domain in DOMAIN_ORDER for record in self._historical_defaults.get(domain, [])
            ]
            status = STATUS_HISTORICAL
            logger.info("No records supplied, aggregating %s historical default record(s)", len(records))

        by_domain: dict[str, list[Record]] = {domain: [] for domain in DOMAIN_ORDER}
        for record in records:
            by_domain[record.domain].append(record)

        document = AnalyticsDocument(
            overview=self._overview(records, status=status, dropped=dropped, unattributed=unattributed),
            internal_rft=self._internal_rft(by_domain["Internal"]),
            external_rft=self._external_rft(by_domain["Internal"], by_domain["External"]),
            process_metrics=self._process_metrics(by_domain["Process"]),
            lot_data=aggregations.lot_summary(records),
        )
        return document.to_payload()

    def transform_rows(
        self, rows: Iterable[Mapping[str, Any]], *, source_domain: str | None = None
    ) -> dict[str, Any]:
        ingested = self.ingest(rows, source_domain=source_domain)
        return self.transform(
            ingested.records,
            dropped=ingested.dropped,
            unattributed=ingested.unattributed,
        )

    # ------------------------------------------------------------------
    # sections
    # ------------------------------------------------------------------
    @staticmethod
    def _overview(records: list[Record], *, status: str, dropped: int, unattributed: int) -> Overview:
        rate = aggregations.pass_fail_rate(records)
        warnings: list[str] = []
        if dropped:
            warnings.append(f"{dropped} invalid record(s) dropped")
        if unattributed:
            warnings.append(f"{unattributed} record(s) without a source domain dropped")
        return Overview(
            total_records=rate.total,
            total_lots=len({record.lot for record in records}),
            overall_rft_rate=rate.rate,
            analysis_status=status,
            rft_performance=aggregations.rft_performance(records),
            issue_distribution=aggregations.issue_distribution(records),
            lot_quality=aggregations.lot_quality(records),
            process_timeline=aggregations.process_timeline(records),
            dropped_records=dropped,
            unattributed_records=unattributed,
            warnings=warnings,
        )

    @staticmethod
    def _internal_rft(internal: list[Record]) -> InternalRFT:
        return InternalRFT(
            department_performance=aggregations.department_performance(internal),
            form_errors=aggregations.form_errors(internal),
            error_type_pareto=aggregations.pareto(internal, "error_type"),
        )

    @staticmethod
    def _external_rft(internal: list[Record], external: list[Record]) -> ExternalRFT:
        comments = aggregations.customer_comments(external)
        return ExternalRFT(
            issue_categories=aggregations.issue_categories(external),
            customer_comments=comments,
            correlation_data=aggregations.correlation_series(internal, external),
            overall_sentiment=aggregations.overall_sentiment(external) if comments else None,
        )

    @staticmethod
    def _process_metrics(process: list[Record]) -> ProcessMetrics:
        return ProcessMetrics(
            review_times=aggregations.review_times(process),
            cycle_time_breakdown=aggregations.cycle_time_breakdown(process),
        )
