from __future__ import annotations

import datetime as dt
from typing import Any, Literal

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Domain = Literal["Internal", "External", "Process"]
Status = Literal["Pass", "Fail", "Open", "Closed"]

DOMAIN_ORDER: tuple[str, ...] = ("Internal", "External", "Process")

# Key attached to raw rows naming the domain of the source they came from.
SOURCE_TAG = "source"

DOMAIN_STATUSES: dict[str, frozenset[str]] = {
    "Internal": frozenset({"Pass", "Fail"}),
    "External": frozenset({"Open", "Closed"}),
    "Process": frozenset({"Pass", "Fail", "Open", "Closed"}),
}

PASSING_STATUSES = frozenset({"Pass", "Closed"})
ERROR_STATUSES = frozenset({"Fail", "Open"})

# Optional fields owned by a single domain; ``department`` is shared.
DOMAIN_FIELDS: dict[str, frozenset[str]] = {
    "Internal": frozenset({"error_type", "form"}),
    "External": frozenset({"issue_type", "sentiment"}),
    "Process": frozenset({"stage", "duration_hours"}),
}

_ALIASES = {
    "errorType": "error_type",
    "issueType": "issue_type",
    "durationHours": "duration_hours",
}


def normalise_domain(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    for domain in DOMAIN_ORDER:
        if domain.lower() == text:
            return domain
    return None


class Record(BaseModel):
    """One observed quality-control event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    date: dt.date
    lot: str
    domain: Domain
    status: Status
    department: str | None = None
    error_type: str | None = Field(default=None, alias="errorType")
    issue_type: str | None = Field(default=None, alias="issueType")
    form: str | None = None
    stage: str | None = None
    sentiment: float | None = Field(default=None, ge=-1, le=1)
    duration_hours: float | None = Field(default=None, alias="durationHours", ge=0)

    @model_validator(mode="before")
    @classmethod
    def _strip_foreign_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        domain = normalise_domain(data.get("domain"))
        if domain is None:
            return data
        foreign = set().union(*(fields for name, fields in DOMAIN_FIELDS.items() if name != domain))
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            if _ALIASES.get(key, key) in foreign:
                continue
            cleaned[key] = value
        cleaned["domain"] = domain
        return cleaned

    @field_validator("id", "lot", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            return str(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("identifier must not be blank")
        return value

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Any:
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, dt.date):
            return value
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                raise ValueError("date is empty")
            timestamp = pd.to_datetime(raw)
            if pd.isna(timestamp):
                raise ValueError(f"unparseable date: {value!r}")
            return timestamp.date()
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().title()
        return value

    @field_validator("department", "error_type", "issue_type", "form", "stage", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @model_validator(mode="after")
    def _check_status_for_domain(self) -> "Record":
        allowed = DOMAIN_STATUSES[self.domain]
        if self.status not in allowed:
            raise ValueError(
                f"status {self.status!r} is not allowed for {self.domain} records "
                f"(expected one of {', '.join(sorted(allowed))})"
            )
        return self

    @property
    def passed(self) -> bool:
        return self.status in PASSING_STATUSES

    @property
    def month(self) -> str:
        return self.date.strftime("%Y-%m")


class SourceDescriptor(BaseModel):
    """Static description of one upstream data source."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    url: str
    expects_aggregated_document: bool = Field(default=False, alias="expectsAggregatedDocument")
    domain: Domain | None = None

    @field_validator("domain", mode="before")
    @classmethod
    def _normalise_domain(cls, value: Any) -> Any:
        if value is None:
            return None
        return normalise_domain(value) or value


# ----------------------------------------------------------------------
# analytics document
# ----------------------------------------------------------------------
class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class NamedValue(_Section):
    name: str
    value: int | float


class RatePoint(_Section):
    name: str
    value: int
    percentage: float


class PassFailRate(_Section):
    passed: int = Field(alias="pass")
    fail: int
    total: int
    rate: float


class LotQuality(_Section):
    passed: int = Field(alias="pass")
    fail: int
    percentage: float
    change: float = 0.0


class TimelinePoint(_Section):
    month: str
    record_rft: float = Field(alias="recordRFT")
    lot_rft: float = Field(alias="lotRFT")


class Overview(_Section):
    total_records: int
    total_lots: int
    overall_rft_rate: float = Field(alias="overallRFTRate")
    analysis_status: str
    degraded: bool = False
    rft_performance: list[RatePoint] = Field(default_factory=list)
    issue_distribution: list[NamedValue] = Field(default_factory=list)
    lot_quality: LotQuality | None = None
    process_timeline: list[TimelinePoint] = Field(default_factory=list)
    dropped_records: int = 0
    unattributed_records: int = 0
    warnings: list[str] = Field(default_factory=list)


class DepartmentPerformance(_Section):
    department: str
    passed: int = Field(alias="pass")
    fail: int
    rft_rate: float


class FormError(_Section):
    name: str
    errors: int
    percentage: float
    trend: Literal["up", "down", "flat"] = "flat"


class ParetoEntry(_Section):
    type: str
    count: int
    cumulative: int


class InternalRFT(_Section):
    department_performance: list[DepartmentPerformance] = Field(default_factory=list)
    form_errors: list[FormError] = Field(default_factory=list)
    error_type_pareto: list[ParetoEntry] = Field(default_factory=list)


class CommentSummary(_Section):
    category: str
    count: int
    sentiment: float
    label: str | None = None


class SentimentSummary(_Section):
    score: float
    label: str
    count: int


class CorrelationPoint(_Section):
    internal_rft: float = Field(alias="internalRFT")
    external_rft: float = Field(alias="externalRFT")
    month: str


class ExternalRFT(_Section):
    issue_categories: list[NamedValue] = Field(default_factory=list)
    customer_comments: list[CommentSummary] = Field(default_factory=list)
    correlation_data: list[CorrelationPoint] = Field(default_factory=list)
    overall_sentiment: SentimentSummary | None = None


class CycleStep(_Section):
    step: str
    time: float


class WaitingTime(_Section):
    origin: str = Field(alias="from")
    to: str
    time: float


class ProcessMetrics(_Section):
    review_times: dict[str, list[float]] = Field(default_factory=dict)
    cycle_time_breakdown: list[CycleStep] = Field(default_factory=list)
    waiting_times: list[WaitingTime] = Field(default_factory=list)


class LotSummary(_Section):
    rft_rate: float
    cycle_time: float
    has_errors: bool
    release_date: str | None = None
    department: str | None = None


class AnalyticsDocument(_Section):
    overview: Overview
    internal_rft: InternalRFT = Field(alias="internalRFT")
    external_rft: ExternalRFT = Field(alias="externalRFT")
    process_metrics: ProcessMetrics
    lot_data: dict[str, LotSummary] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
