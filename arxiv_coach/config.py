"""Loading and validation of config.yaml and tracks.yaml."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .models import (
    AppConfig,
    ArtifactConfig,
    DiscoveryConfig,
    FetchConfig,
    LimitsConfig,
    StorageConfig,
    TrackConfig,
)

logger = logging.getLogger(__name__)

EXTRACTORS = ("pdftotext", "pypdf", "none")


class ConfigError(ValueError):
    """Raised when a configuration file is missing or invalid."""


def load_yaml(path: str) -> dict:
    """Load a YAML mapping, raising ConfigError if the file is absent."""
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Missing config file: {p}")
    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {p.name}")
    return data


def _int_in_range(value: Any, name: str, low: int, high: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if value < low or (high is not None and value > high):
        bounds = f">= {low}" if high is None else f"in [{low}, {high}]"
        raise ConfigError(f"{name} must be {bounds}, got {value}")
    return value


def _positive_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {number}")
    return number


def _timezone(value: Any) -> str:
    name = str(value or "Europe/Amsterdam")
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"timezone must be an IANA timezone name, got {name!r}")
    return name


def _str_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{name} must be a list of strings")
    return list(value)


def parse_config(data: dict) -> AppConfig:
    """Build an AppConfig from the raw config.yaml mapping."""
    discovery = data.get("discovery") or {}
    categories = _str_list(discovery.get("categories"), "discovery.categories")
    if not categories:
        raise ConfigError("discovery.categories must list at least one category")

    delay = discovery.get("politeness_delay") or {}
    delay_min = _positive_float(delay.get("min_seconds", 3.0), "politeness_delay.min_seconds")
    delay_max = _positive_float(delay.get("max_seconds", 5.0), "politeness_delay.max_seconds")

    fetch = data.get("fetch") or {}
    storage = data.get("storage") or {}
    artifacts = data.get("artifacts") or {}
    limits = data.get("limits") or {}

    root = storage.get("root")
    if not isinstance(root, str) or not root.strip():
        raise ConfigError("storage.root must be a non-empty path")

    extractor = str(artifacts.get("extractor", "pdftotext")).lower()
    if extractor not in EXTRACTORS:
        raise ConfigError(f"artifacts.extractor must be one of {', '.join(EXTRACTORS)}")

    min_relevance = limits.get("min_relevance_score", 3)
    if min_relevance is not None:
        min_relevance = _int_in_range(min_relevance, "limits.min_relevance_score", 0)

    return AppConfig(
        timezone=_timezone(data.get("timezone")),
        discovery=DiscoveryConfig(
            categories=categories,
            days_window=_int_in_range(discovery.get("days_window", 3), "discovery.days_window", 1),
            max_results=_int_in_range(discovery.get("max_results", 100), "discovery.max_results", 1, 2000),
            politeness_min_seconds=min(delay_min, delay_max),
            politeness_max_seconds=max(delay_min, delay_max),
        ),
        fetch=FetchConfig(
            timeout_seconds=_positive_float(fetch.get("timeout_seconds", 30), "fetch.timeout_seconds"),
            max_attempts=_int_in_range(fetch.get("max_attempts", 5), "fetch.max_attempts", 1, 10),
            backoff_initial_seconds=_positive_float(
                fetch.get("backoff_initial_seconds", 1.0), "fetch.backoff_initial_seconds"
            ),
            backoff_max_seconds=_positive_float(fetch.get("backoff_max_seconds", 60), "fetch.backoff_max_seconds"),
            user_agent=str(fetch.get("user_agent") or FetchConfig.user_agent),
        ),
        storage=StorageConfig(root=root),
        artifacts=ArtifactConfig(
            limit=_int_in_range(artifacts.get("limit", 500), "artifacts.limit", 1),
            extractor=extractor,
            download_timeout_seconds=_positive_float(
                artifacts.get("download_timeout_seconds", 60), "artifacts.download_timeout_seconds"
            ),
            extract_timeout_seconds=_positive_float(
                artifacts.get("extract_timeout_seconds", 120), "artifacts.extract_timeout_seconds"
            ),
        ),
        limits=LimitsConfig(
            max_items_per_digest=_int_in_range(
                limits.get("max_items_per_digest", 5), "limits.max_items_per_digest", 1, 50
            ),
            max_per_track_per_day=_int_in_range(
                limits.get("max_per_track_per_day", 2), "limits.max_per_track_per_day", 1, 10
            ),
            dedup_days=_int_in_range(limits.get("dedup_days", 7), "limits.dedup_days", 0),
            min_relevance_score=min_relevance,
        ),
        logging=dict(data.get("logging") or {}),
    )


def parse_tracks(data: dict) -> List[TrackConfig]:
    """Build the list of TrackConfig from the raw tracks.yaml mapping."""
    raw_tracks = data.get("tracks")
    if not isinstance(raw_tracks, list):
        raise ConfigError("tracks.yaml must contain a `tracks` list")

    tracks: List[TrackConfig] = []
    seen = set()
    for idx, raw in enumerate(raw_tracks):
        if not isinstance(raw, dict):
            raise ConfigError(f"tracks[{idx}] must be a mapping")
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigError(f"tracks[{idx}].name is required")
        if name in seen:
            raise ConfigError(f"Duplicate track name: {name}")
        seen.add(name)

        tracks.append(
            TrackConfig(
                name=name,
                enabled=bool(raw.get("enabled", True)),
                categories=_str_list(raw.get("categories"), f"{name}.categories"),
                phrases=_str_list(raw.get("phrases"), f"{name}.phrases"),
                keywords=_str_list(raw.get("keywords"), f"{name}.keywords"),
                exclude=_str_list(raw.get("exclude"), f"{name}.exclude"),
                threshold=_int_in_range(raw.get("threshold", 0), f"{name}.threshold", 0),
                max_per_day=_int_in_range(raw.get("max_per_day", 2), f"{name}.max_per_day", 1, 20),
            )
        )

    return tracks


def load_config(path: str = "config/config.yaml") -> AppConfig:
    """Load and validate config.yaml."""
    config = parse_config(load_yaml(path))
    logger.debug("Loaded config from %s (%d categories)", path, len(config.discovery.categories))
    return config


def load_tracks(path: str = "config/tracks.yaml") -> List[TrackConfig]:
    """Load and validate tracks.yaml."""
    tracks = parse_tracks(load_yaml(path))
    enabled = sum(1 for t in tracks if t.enabled)
    logger.debug("Loaded %d tracks (%d enabled) from %s", len(tracks), enabled, path)
    return tracks
