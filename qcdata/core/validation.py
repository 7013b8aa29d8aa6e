from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from qcdata.core.schema import AnalyticsDocument, Record


class SourceError(RuntimeError):
    """Base class for failures of a single upstream source attempt."""


class NetworkError(SourceError):
    """Raised when a fetch fails in transport or returns a non-2xx status."""


class MalformedPayloadError(SourceError):
    """Raised when a payload is not JSON or does not match the declared shape."""


class InvalidRecord(ValueError):
    """Raised when a raw row cannot be turned into a :class:`Record`."""


class EmptyDatasetError(RuntimeError):
    """Raised when there are no usable records and no historical defaults."""


class UnattributedRecordWarning(UserWarning):
    """Emitted (as a log entry) for rows whose domain cannot be inferred."""


def _summarise(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "record"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def parse_record(row: Mapping[str, Any], *, domain: str | None = None) -> Record:
    """Validate one raw row, optionally forcing its domain."""

    data = dict(row)
    if domain is not None:
        data["domain"] = domain
    try:
        return Record.model_validate(data)
    except ValidationError as exc:
        raise InvalidRecord(_summarise(exc)) from exc


def validate_aggregated_document(payload: Any) -> dict[str, Any]:
    """Check that ``payload`` has the analytics document shape and return it unchanged."""

    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"expected a JSON object, got {type(payload).__name__}")
    try:
        AnalyticsDocument.model_validate(payload)
    except ValidationError as exc:
        raise MalformedPayloadError(f"not an analytics document: {_summarise(exc)}") from exc
    return payload


def validate_record_payload(payload: Any) -> list[dict[str, Any]]:
    """Return the ``records`` array of a raw-record document."""

    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"expected a JSON object, got {type(payload).__name__}")
    records = payload.get("records")
    if not isinstance(records, list):
        raise MalformedPayloadError("raw document has no 'records' array")
    rows: list[dict[str, Any]] = []
    for index, item in enumerate(records):
        if not isinstance(item, dict):
            raise MalformedPayloadError(f"records[{index}] is not an object")
        rows.append(item)
    return rows
