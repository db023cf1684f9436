"""Daily run: discovery, matching and artifact retrieval under one tracked run."""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .artifacts import ArtifactManager, ArtifactStats, TextExtractor, build_extractor
from .db import migrate, open_db
from .fetcher import ArxivFetcher
from .http_client import PolitenessDelay, ResilientClient
from .matcher import TrackMatcher
from .models import AppConfig, TrackConfig
from .parser import parse_feed, within_window
from .repository import PaperRepository
from .runs import RunStatus, RunTracker
from .storage import db_path, ensure_storage_root, write_meta

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryStats:
    """Counters for the discovery stage of one run."""

    categories: int = 0
    fetched_entries: int = 0
    in_window: int = 0
    papers_upserted: int = 0
    matches_upserted: int = 0
    discovery_errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def failed_categories(self) -> List[str]:
        return [e["category"] for e in self.discovery_errors]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DailyRunResult:
    run_id: str
    status: str
    discovery: DiscoveryStats
    artifacts: ArtifactStats

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "discovery": self.discovery.to_dict(),
            "artifacts": self.artifacts.to_dict(),
        }


def run_discovery(
    fetcher: ArxivFetcher,
    repo: PaperRepository,
    matcher: TrackMatcher,
    categories: List[str],
    days_window: int,
    stats: Optional[DiscoveryStats] = None,
    now: Optional[datetime] = None,
) -> DiscoveryStats:
    """
    Fetch every category, persist in-window entries and their track matches.

    A failed category is recorded in ``stats.discovery_errors`` and the
    remaining categories are still processed.

    Args:
        fetcher: Feed fetcher
        repo: Paper repository
        matcher: Track matcher for the enabled tracks
        categories: Categories in configured order
        days_window: Only entries updated within this many days are kept
        stats: Optional stats object to fill
        now: Reference time for the window

    Returns:
        DiscoveryStats for this stage
    """
    stats = stats if stats is not None else DiscoveryStats()
    now = now or datetime.now(timezone.utc)
    seen = set()

    for fetched in fetcher.fetch_categories(categories):
        stats.categories += 1
        if not fetched.ok:
            stats.discovery_errors.append({"category": fetched.category, "error": str(fetched.error)})
            continue

        entries = parse_feed(fetched.payload)
        stats.fetched_entries += len(entries)
        logger.info(f"{fetched.category}: {len(entries)} entries")

        for entry in entries:
            if not within_window(entry, days_window, now):
                continue
            stats.in_window += 1
            if entry.arxiv_id in seen:
                continue
            seen.add(entry.arxiv_id)

            paths = repo.upsert_paper(entry, now=now)
            stats.papers_upserted += 1
            try:
                write_meta(paths.meta_path, entry)
            except OSError as e:
                logger.warning(f"Could not write meta for {entry.arxiv_id}: {e}")

            for track_name, result in matcher.score(entry).items():
                repo.upsert_match(entry.arxiv_id, track_name, result.score, result.matched_terms, now=now)
                stats.matches_upserted += 1

    logger.info(
        f"Discovery done: {stats.papers_upserted} papers, {stats.matches_upserted} matches, "
        f"{len(stats.discovery_errors)} failed categories"
    )
    return stats


def _open(config: AppConfig) -> sqlite3.Connection:
    ensure_storage_root(config.storage.root)
    conn = open_db(str(db_path(config.storage.root)))
    migrate(conn)
    return conn


def _build_client(config: AppConfig, sleep: Callable[[float], None]) -> ResilientClient:
    return ResilientClient.from_config(config.fetch, sleep=sleep)


def _build_delay(config: AppConfig, sleep: Callable[[float], None]) -> PolitenessDelay:
    return PolitenessDelay(
        config.discovery.politeness_min_seconds,
        config.discovery.politeness_max_seconds,
        sleep=sleep,
    )


def _artifact_manager(
    config: AppConfig,
    repo: PaperRepository,
    client: ResilientClient,
    delay: PolitenessDelay,
    extractor: Optional[TextExtractor],
) -> ArtifactManager:
    if extractor is None:
        extractor = build_extractor(config.artifacts.extractor, config.artifacts.extract_timeout_seconds)
    return ArtifactManager(
        repo,
        client,
        extractor=extractor,
        delay=delay,
        download_timeout=config.artifacts.download_timeout_seconds,
    )


def run_daily(
    config: AppConfig,
    tracks: List[TrackConfig],
    now: Optional[datetime] = None,
    client: Optional[ResilientClient] = None,
    extractor: Optional[TextExtractor] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DailyRunResult:
    """
    Run discovery then artifact retrieval as one tracked run.

    The run ends ``ok`` when every category was fetched, ``warn`` when some
    category failed, and ``error`` when an exception escapes; in that case
    the partial stats and the message are stored and the exception is
    re-raised.

    Args:
        config: Application configuration
        tracks: Track profiles
        now: Reference time (default: now, UTC)
        client: Optional HTTP client (injected in tests)
        extractor: Optional text extractor; built from config when omitted
        sleep: Sleep function for backoff and politeness delays

    Returns:
        DailyRunResult with the run id, final status and stage stats
    """
    now = now or datetime.now(timezone.utc)
    conn = _open(config)
    try:
        tracker = RunTracker(conn)
        run_id = tracker.start("daily", now)
        discovery = DiscoveryStats()
        artifact_stats = ArtifactStats()

        def _stats() -> dict:
            return {"discovery": discovery.to_dict(), "artifacts": artifact_stats.to_dict()}

        try:
            client = client or _build_client(config, sleep)
            delay = _build_delay(config, sleep)
            repo = PaperRepository(conn, config.storage.root)
            fetcher = ArxivFetcher(client, delay, max_results=config.discovery.max_results)
            matcher = TrackMatcher(tracks)

            run_discovery(
                fetcher,
                repo,
                matcher,
                config.discovery.categories,
                config.discovery.days_window,
                stats=discovery,
                now=now,
            )
            _artifact_manager(config, repo, client, delay, extractor).run(
                config.artifacts.limit, stats=artifact_stats
            )
        except Exception as e:
            logger.error(f"Daily run {run_id} failed: {e}", exc_info=True)
            tracker.finalize(run_id, RunStatus.ERROR, {**_stats(), "error": str(e)})
            raise

        status = RunStatus.WARN if discovery.discovery_errors else RunStatus.OK
        tracker.finalize(run_id, status, _stats())
        return DailyRunResult(run_id=run_id, status=status, discovery=discovery, artifacts=artifact_stats)
    finally:
        conn.close()


def run_artifacts(
    config: AppConfig,
    limit: Optional[int] = None,
    client: Optional[ResilientClient] = None,
    extractor: Optional[TextExtractor] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ArtifactStats:
    """Work through the artifact backlog without touching the feed."""
    conn = _open(config)
    try:
        tracker = RunTracker(conn)
        run_id = tracker.start("artifacts")
        stats = ArtifactStats()
        try:
            client = client or _build_client(config, sleep)
            repo = PaperRepository(conn, config.storage.root)
            manager = _artifact_manager(config, repo, client, _build_delay(config, sleep), extractor)
            manager.run(limit or config.artifacts.limit, stats=stats)
        except Exception as e:
            logger.error(f"Artifact run {run_id} failed: {e}", exc_info=True)
            tracker.finalize(run_id, RunStatus.ERROR, {"artifacts": stats.to_dict(), "error": str(e)})
            raise

        tracker.finalize(run_id, RunStatus.OK, {"artifacts": stats.to_dict()})
        return stats
    finally:
        conn.close()
