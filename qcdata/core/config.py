from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import yaml

from qcdata.core.schema import SourceDescriptor
from qcdata.core.validation import InvalidRecord, parse_record, validate_aggregated_document
from qcdata.domain import FallbackDataset
from qcdata.logging import get_logger

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

DEFAULT_BASE_URL = "http://localhost:3000/data/"
DEFAULT_SOURCES_FILE = CONFIG_DIR / "sources.yaml"
DEFAULT_FALLBACK_FILE = CONFIG_DIR / "fallback_dataset.json"

logger = get_logger("config")


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    sources_file: Path = DEFAULT_SOURCES_FILE
    fallback_file: Path | None = DEFAULT_FALLBACK_FILE
    retry_attempts: int | None = None
    retry_base_delay: float | None = None
    retry_multiplier: float | None = None
    historical_defaults_file: Path | None = None
    log_level: str | None = None
    log_file: Path | None = None


def _env_path(name: str) -> Path | None:
    value = os.getenv(name)
    if not value:
        return None
    return Path(value).expanduser().resolve()


def _env_number(name: str, kind: type) -> Any:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return kind(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a {kind.__name__}, got {value!r}") from exc


def load_settings() -> Settings:
    """Build :class:`Settings` from ``QC_*`` environment variables."""

    fallback_env = os.getenv("QC_FALLBACK_FILE")
    if fallback_env is None:
        fallback_file: Path | None = DEFAULT_FALLBACK_FILE
    elif fallback_env.strip().lower() in {"", "none", "off"}:
        fallback_file = None
    else:
        fallback_file = Path(fallback_env).expanduser().resolve()

    return Settings(
        base_url=os.getenv("QC_DATA_BASE_URL") or DEFAULT_BASE_URL,
        sources_file=_env_path("QC_SOURCES_FILE") or DEFAULT_SOURCES_FILE,
        fallback_file=fallback_file,
        retry_attempts=_env_number("QC_RETRY_ATTEMPTS", int),
        retry_base_delay=_env_number("QC_RETRY_BASE_DELAY", float),
        retry_multiplier=_env_number("QC_RETRY_MULTIPLIER", float),
        historical_defaults_file=_env_path("QC_HISTORICAL_DEFAULTS"),
        log_level=os.getenv("QC_LOG_LEVEL") or None,
        log_file=_env_path("QC_LOG_FILE"),
    )


def _load_yaml(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as fp:
        loaded = yaml.safe_load(fp)
    if not isinstance(loaded, dict):
        raise ValueError(f"{path} must contain a mapping")
    return loaded


def _resolve_url(url: str, base_url: str | None) -> str:
    if not base_url or httpx.URL(url).is_absolute_url:
        return url
    return str(httpx.URL(base_url).join(url))


def load_source_descriptors(path: Path | None = None, base_url: str | None = None) -> list[SourceDescriptor]:
    """Read the ordered descriptor list, joining relative URLs onto ``base_url``."""

    path = path or DEFAULT_SOURCES_FILE
    config = _load_yaml(path)
    entries = config.get("sources") or []
    descriptors = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"{path}: every source entry must be a mapping")
        data = dict(entry)
        data["url"] = _resolve_url(str(data.get("url") or data.get("name")), base_url)
        descriptors.append(SourceDescriptor.model_validate(data))
    return descriptors


def load_retry_options(path: Path | None = None) -> dict[str, float]:
    config = _load_yaml(path or DEFAULT_SOURCES_FILE)
    retry = config.get("retry") or {}
    return {key: retry[key] for key in ("attempts", "base_delay", "multiplier") if key in retry}


def load_fallback_dataset(path: Path | None = None) -> FallbackDataset:
    """Load and validate the bundled fallback document."""

    path = path or DEFAULT_FALLBACK_FILE
    with path.open("r", encoding="utf-8") as fp:
        raw = json.load(fp)
    if not isinstance(raw, dict) or "document" not in raw:
        raise ValueError(f"{path} must contain a 'version' and a 'document'")
    document = validate_aggregated_document(raw["document"])
    return FallbackDataset(version=str(raw.get("version") or "0"), document=document)


def load_historical_defaults(path: Path) -> dict[str, list]:
    """Parse a ``{records: [...]}`` file into validated records grouped by domain."""

    with path.open("r", encoding="utf-8") as fp:
        raw = json.load(fp)
    rows = raw.get("records") if isinstance(raw, dict) else raw
    if not isinstance(rows, list):
        raise ValueError(f"{path} must contain a 'records' array")

    grouped: dict[str, list] = {}
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ValueError(f"{path}: records[{index}] is not an object")
        try:
            record = parse_record(row)
        except InvalidRecord as exc:
            raise ValueError(f"{path}: records[{index}] is invalid: {exc}") from exc
        grouped.setdefault(record.domain, []).append(record)
    logger.debug("Loaded %s historical default record(s) from %s", len(rows), path)
    return grouped
