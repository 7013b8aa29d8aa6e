"""Pure aggregation functions turning records into analytics document sections.

Every function takes a sequence of :class:`Record` (possibly empty) and builds
its result from a fresh dataframe, so concurrent or repeated calls never share
an accumulator.  Grouping keeps first-seen order (``sort=False``) and ranked
outputs are re-ordered with Python's stable ``sorted``.
"""
from __future__ import annotations

from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

import pandas as pd

from qcdata.core.schema import (
    ERROR_STATUSES,
    PASSING_STATUSES,
    CommentSummary,
    CorrelationPoint,
    CycleStep,
    DepartmentPerformance,
    FormError,
    LotQuality,
    LotSummary,
    NamedValue,
    ParetoEntry,
    PassFailRate,
    RatePoint,
    Record,
    SentimentSummary,
    TimelinePoint,
)

FRAME_COLUMNS = [
    "id",
    "date",
    "month",
    "lot",
    "domain",
    "status",
    "passed",
    "has_error",
    "department",
    "error_type",
    "issue_type",
    "form",
    "stage",
    "sentiment",
    "duration_hours",
]

SENTIMENT_THRESHOLDS: tuple[tuple[Decimal, str], ...] = (
    (Decimal("-0.4"), "Very Negative"),
    (Decimal("-0.1"), "Negative"),
    (Decimal("0.1"), "Neutral"),
    (Decimal("0.4"), "Positive"),
)
SENTIMENT_TOP_LABEL = "Very Positive"

REVIEW_SUFFIX = " Review"

RATE_PRECISION = Decimal("0.0001")
PERCENT_PRECISION = Decimal("0.1")
TIME_PRECISION = Decimal("0.01")


def _quantize(value: Any, precision: Decimal) -> float:
    return float(Decimal(str(value)).quantize(precision, rounding=ROUND_HALF_UP))


def _ratio(numerator: Any, denominator: Any) -> float:
    denominator = int(denominator)
    if denominator == 0:
        return 0.0
    value = Decimal(int(numerator)) / Decimal(denominator)
    return float(value.quantize(RATE_PRECISION, rounding=ROUND_HALF_UP))


def _percentage(numerator: Any, denominator: Any) -> float:
    denominator = int(denominator)
    if denominator == 0:
        return 0.0
    value = Decimal(int(numerator)) * Decimal(100) / Decimal(denominator)
    return float(value.quantize(PERCENT_PRECISION, rounding=ROUND_HALF_UP))


def _frame(records: Iterable[Record]) -> pd.DataFrame:
    rows = [
        {
            "id": record.id,
            "date": record.date,
            "month": record.month,
            "lot": record.lot,
            "domain": record.domain,
            "status": record.status,
            "passed": record.status in PASSING_STATUSES,
            "has_error": record.status in ERROR_STATUSES,
            "department": record.department,
            "error_type": record.error_type,
            "issue_type": record.issue_type,
            "form": record.form,
            "stage": record.stage,
            "sentiment": record.sentiment,
            "duration_hours": record.duration_hours,
        }
        for record in records
    ]
    frame = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    frame["passed"] = frame["passed"].astype(bool)
    frame["has_error"] = frame["has_error"].astype(bool)
    for column in ("sentiment", "duration_hours"):
        frame[column] = pd.to_numeric(frame[column], errors="coerce").astype("float64")
    return frame


def _ranked_counts(values: pd.Series) -> list[tuple[str, int]]:
    counts = values.dropna().groupby(values.dropna(), sort=False).size()
    return sorted(((str(key), int(count)) for key, count in counts.items()), key=lambda item: -item[1])


# ----------------------------------------------------------------------
# rates
# ----------------------------------------------------------------------
def pass_fail_rate(records: Iterable[Record]) -> PassFailRate:
    """Count passing (Pass/Closed) against all other records."""

    passed = 0
    total = 0
    for record in records:
        total += 1
        if record.status in PASSING_STATUSES:
            passed += 1
    return PassFailRate(passed=passed, fail=total - passed, total=total, rate=_ratio(passed, total))


def rft_performance(records: Iterable[Record]) -> list[RatePoint]:
    summary = pass_fail_rate(records)
    return [
        RatePoint(name="Pass", value=summary.passed, percentage=_percentage(summary.passed, summary.total)),
        RatePoint(name="Fail", value=summary.fail, percentage=_percentage(summary.fail, summary.total)),
    ]


def monthly_rates(records: Iterable[Record]) -> dict[str, float]:
    """Pass rate per ``YYYY-MM`` bucket, chronological."""

    frame = _frame(records)
    grouped = frame.groupby("month", sort=True)["passed"].agg(["sum", "count"])
    return {str(month): _ratio(row["sum"], row["count"]) for month, row in grouped.iterrows()}


def department_performance(records: Iterable[Record]) -> list[DepartmentPerformance]:
    frame = _frame(records).dropna(subset=["department"])
    grouped = frame.groupby("department", sort=False)["passed"].agg(["sum", "count"])
    results: list[DepartmentPerformance] = []
    for department, row in grouped.iterrows():
        passed = int(row["sum"])
        total = int(row["count"])
        if total == 0:
            continue
        results.append(
            DepartmentPerformance(
                department=str(department),
                passed=passed,
                fail=total - passed,
                rft_rate=_ratio(passed, total),
            )
        )
    return results


# ----------------------------------------------------------------------
# distributions
# ----------------------------------------------------------------------
def pareto(records: Iterable[Record], field: str = "error_type") -> list[ParetoEntry]:
    """Group by ``field`` and rank descending with a running cumulative count."""

    if field not in ("error_type", "issue_type", "form", "department", "stage"):
        raise ValueError(f"cannot build a Pareto distribution over {field!r}")
    frame = _frame(records)
    entries: list[ParetoEntry] = []
    cumulative = 0
    for name, count in _ranked_counts(frame[field]):
        cumulative += count
        entries.append(ParetoEntry(type=name, count=count, cumulative=cumulative))
    return entries


def issue_categories(records: Iterable[Record]) -> list[NamedValue]:
    frame = _frame(records)
    return [NamedValue(name=name, value=count) for name, count in _ranked_counts(frame["issue_type"])]


def issue_distribution(records: Iterable[Record]) -> list[NamedValue]:
    """Combined internal error types and external issue types."""

    frame = _frame(records)
    combined = frame["error_type"].combine_first(frame["issue_type"])
    return [NamedValue(name=name, value=count) for name, count in _ranked_counts(combined)]


def form_errors(records: Iterable[Record]) -> list[FormError]:
    """Failing internal records per form with share and month-over-month trend."""

    frame = _frame(records)
    months = sorted(frame["month"].dropna().unique())
    failing = frame[(frame["status"] == "Fail") & frame["form"].notna()]
    ranked = _ranked_counts(failing["form"])
    total = sum(count for _, count in ranked)

    results: list[FormError] = []
    for name, count in ranked:
        trend = "flat"
        if len(months) >= 2:
            form_rows = failing[failing["form"] == name]
            latest = int((form_rows["month"] == months[-1]).sum())
            previous = int((form_rows["month"] == months[-2]).sum())
            if latest > previous:
                trend = "up"
            elif latest < previous:
                trend = "down"
        results.append(FormError(name=name, errors=count, percentage=_percentage(count, total), trend=trend))
    return results


# ----------------------------------------------------------------------
# sentiment
# ----------------------------------------------------------------------
def _weighted_mean(pairs: Iterable[tuple[Any, Any]]) -> Decimal | None:
    weighted = Decimal("0")
    total = 0
    for value, count in pairs:
        if value is None or pd.isna(value):
            continue
        weighted += Decimal(str(value)) * int(count)
        total += int(count)
    if total == 0:
        return None
    return weighted / total


def sentiment_label(value: float | Decimal) -> str:
    """Bucket a sentiment score; each threshold is inclusive of its upper bound."""

    exact = value if isinstance(value, Decimal) else Decimal(str(value))
    for threshold, label in SENTIMENT_THRESHOLDS:
        if exact <= threshold:
            return label
    return SENTIMENT_TOP_LABEL


def weighted_sentiment(entries: Iterable[Mapping[str, Any] | CommentSummary]) -> float:
    """Count-weighted mean of ``{sentiment, count}`` entries; 0 when empty."""

    pairs = []
    for entry in entries:
        if isinstance(entry, CommentSummary):
            pairs.append((entry.sentiment, entry.count))
        else:
            pairs.append((entry.get("sentiment"), entry.get("count", 1)))
    mean = _weighted_mean(pairs)
    return _quantize(mean, TIME_PRECISION) if mean is not None else 0.0


def label_comments(entries: Iterable[Mapping[str, Any]]) -> list[CommentSummary]:
    """Attach sentiment labels to pre-aggregated ``{category, count, sentiment}`` rows."""

    labelled: list[CommentSummary] = []
    for entry in entries:
        comment = CommentSummary.model_validate(dict(entry))
        labelled.append(comment.model_copy(update={"label": sentiment_label(comment.sentiment)}))
    return labelled


def _scored(values: Iterable[Any]) -> tuple[float, str]:
    # label from the exact mean, round only the emitted score
    mean = _weighted_mean((value, 1) for value in values)
    if mean is None:
        mean = Decimal("0")
    return _quantize(mean, TIME_PRECISION), sentiment_label(mean)


def customer_comments(records: Iterable[Record]) -> list[CommentSummary]:
    frame = _frame(records).dropna(subset=["issue_type"])
    results: list[CommentSummary] = []
    for category, count in _ranked_counts(frame["issue_type"]):
        members = frame[frame["issue_type"] == category]
        score, label = _scored(members["sentiment"])
        results.append(CommentSummary(category=category, count=count, sentiment=score, label=label))
    return results


def overall_sentiment(records: Iterable[Record]) -> SentimentSummary:
    """Mean sentiment over every categorised external record."""

    frame = _frame(records).dropna(subset=["issue_type"])
    score, label = _scored(frame["sentiment"])
    return SentimentSummary(score=score, label=label, count=len(frame))


# ----------------------------------------------------------------------
# time series
# ----------------------------------------------------------------------
def correlation_series(internal: Iterable[Record], external: Iterable[Record]) -> list[CorrelationPoint]:
    """Pair monthly internal and external RFT; months missing either side are skipped."""

    internal_rates = monthly_rates(internal)
    external_rates = monthly_rates(external)
    return [
        CorrelationPoint(internal_rft=internal_rates[month], external_rft=external_rates[month], month=month)
        for month in internal_rates
        if month in external_rates
    ]


def _lot_rates_by_month(frame: pd.DataFrame) -> dict[str, float]:
    rates: dict[str, float] = {}
    for month, rows in frame.groupby("month", sort=True):
        lots = rows.groupby("lot", sort=False)["has_error"].any()
        rates[str(month)] = _ratio(int((~lots).sum()), len(lots))
    return rates


def process_timeline(records: Iterable[Record]) -> list[TimelinePoint]:
    frame = _frame(records)
    lot_rates = _lot_rates_by_month(frame)
    grouped = frame.groupby("month", sort=True)["passed"].agg(["sum", "count"])
    return [
        TimelinePoint(
            month=str(month),
            record_rft=_ratio(row["sum"], row["count"]),
            lot_rft=lot_rates.get(str(month), 0.0),
        )
        for month, row in grouped.iterrows()
    ]


def lot_quality(records: Iterable[Record]) -> LotQuality:
    frame = _frame(records)
    lots = frame.groupby("lot", sort=False)["has_error"].any()
    failing = int(lots.sum())
    passing = len(lots) - failing
    monthly = list(_lot_rates_by_month(frame).values())
    change = 0.0
    if len(monthly) >= 2:
        change = _quantize((Decimal(str(monthly[-1])) - Decimal(str(monthly[-2]))) * 100, PERCENT_PRECISION)
    return LotQuality(passed=passing, fail=failing, percentage=_percentage(passing, len(lots)), change=change)


# ----------------------------------------------------------------------
# process
# ----------------------------------------------------------------------
def cycle_time_breakdown(records: Iterable[Record]) -> list[CycleStep]:
    """Average duration per stage, in the order stages first appear."""

    frame = _frame(records).dropna(subset=["stage", "duration_hours"])
    means = frame.groupby("stage", sort=False)["duration_hours"].mean()
    return [CycleStep(step=str(stage), time=_quantize(value, TIME_PRECISION)) for stage, value in means.items()]


def review_times(records: Iterable[Record]) -> dict[str, list[float]]:
    """Monthly mean durations of ``"<reviewer> Review"`` stages keyed by reviewer."""

    frame = _frame(records).dropna(subset=["stage", "duration_hours"])
    reviews = frame[frame["stage"].str.endswith(REVIEW_SUFFIX)]
    results: dict[str, list[float]] = {}
    for stage, rows in reviews.groupby("stage", sort=False):
        reviewer = str(stage)[: -len(REVIEW_SUFFIX)].strip() or str(stage)
        monthly = rows.groupby("month", sort=True)["duration_hours"].mean()
        results[reviewer] = [_quantize(value, TIME_PRECISION) for value in monthly]
    return results


def lot_summary(records: Iterable[Record]) -> dict[str, LotSummary]:
    frame = _frame(records)
    summaries: dict[str, LotSummary] = {}
    for lot, rows in frame.groupby("lot", sort=False):
        departments = Counter(rows["department"].dropna())
        top_department = departments.most_common(1)[0][0] if departments else None
        summaries[str(lot)] = LotSummary(
            rft_rate=_ratio(rows["passed"].sum(), len(rows)),
            cycle_time=_quantize(rows["duration_hours"].sum(), TIME_PRECISION),
            has_errors=bool(rows["has_error"].any()),
            release_date=max(rows["date"]).isoformat(),
            department=top_department,
        )
    return summaries
