"""Digest plans for delivery and read-only previews."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .ledger import DeliveryLedger
from .models import AppConfig, SelectedPaper, TrackConfig
from .render import render_header_message, render_markdown, render_track_message, snippet
from .selector import DigestSelector, local_date
from .storage import daily_digest_path

logger = logging.getLogger(__name__)


def period_key(now: Optional[datetime] = None, tz_name: str = "UTC") -> str:
    """Delivery period identifier: the local calendar date, YYYY-MM-DD."""
    return local_date(now, tz_name).isoformat()


@dataclass
class DigestPlan:
    """Everything needed to deliver one period's digest."""

    period_key: str
    header: str
    tracks: List[Dict[str, str]] = field(default_factory=list)
    papers: List[Tuple[str, str]] = field(default_factory=list)
    digest_path: Optional[str] = None
    already_sent: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.papers

    def to_dict(self) -> dict:
        return {
            "period_key": self.period_key,
            "header": self.header,
            "tracks": self.tracks,
            "papers": [{"arxiv_id": a, "track": t} for a, t in self.papers],
            "digest_path": self.digest_path,
            "already_sent": self.already_sent,
        }

    @staticmethod
    def from_dict(data: dict) -> "DigestPlan":
        """
        Rebuild a plan from ``to_dict`` output.

        Raises:
            ValueError: If required keys are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError("Digest plan must be a JSON object")
        try:
            key = str(data["period_key"])
            header = str(data["header"])
        except KeyError as e:
            raise ValueError(f"Digest plan is missing {e}") from e

        tracks = []
        for item in data.get("tracks") or []:
            if not isinstance(item, dict) or "track" not in item or "message" not in item:
                raise ValueError(f"Malformed track message in plan: {item!r}")
            tracks.append({"track": str(item["track"]), "message": str(item["message"])})

        papers = []
        for item in data.get("papers") or []:
            if not isinstance(item, dict) or "arxiv_id" not in item or "track" not in item:
                raise ValueError(f"Malformed paper entry in plan: {item!r}")
            papers.append((str(item["arxiv_id"]), str(item["track"])))

        return DigestPlan(
            period_key=key,
            header=header,
            tracks=tracks,
            papers=papers,
            digest_path=data.get("digest_path"),
            already_sent=bool(data.get("already_sent", False)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


def track_caps(tracks: List[TrackConfig]) -> Dict[str, int]:
    return {t.name: t.max_per_day for t in tracks if t.enabled}


def build_digest_plan(
    conn: sqlite3.Connection,
    config: AppConfig,
    tracks: Optional[List[TrackConfig]] = None,
    now: Optional[datetime] = None,
    write_markdown: bool = True,
) -> DigestPlan:
    """
    Select today's papers and render the messages for delivery.

    The markdown digest is written to the storage root. Nothing is recorded
    in the ledger; that happens once delivery succeeds.

    Args:
        conn: Migrated SQLite connection
        config: Application configuration
        tracks: Track profiles, for per-track caps
        now: Reference time (period key and dedup window)
        write_markdown: Write digests/daily/<period>.md

    Returns:
        DigestPlan for the current period
    """
    key = period_key(now, config.timezone)
    ledger = DeliveryLedger(conn)
    limits = config.limits

    selection = DigestSelector(conn, config.timezone).select(
        max_total=limits.max_items_per_digest,
        max_per_track=limits.max_per_track_per_day,
        dedup_days=limits.dedup_days,
        min_score=limits.min_relevance_score,
        track_caps=track_caps(tracks or []),
        now=now,
    )

    header, _ = render_header_message(key, selection.by_track)
    messages = []
    for track, papers in selection.by_track.items():
        text, truncated = render_track_message(track, papers)
        if truncated:
            logger.info(f"Message for track {track} was truncated")
        messages.append({"track": track, "message": text})

    digest_file = None
    if write_markdown:
        path = daily_digest_path(config.storage.root, local_date(now, config.timezone))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_markdown(key, selection.by_track), encoding="utf-8")
        digest_file = str(path)
        logger.info(f"Digest written to {path}")

    return DigestPlan(
        period_key=key,
        header=header,
        tracks=messages,
        papers=[(p.arxiv_id, p.track_name) for p in selection.papers()],
        digest_path=digest_file,
        already_sent=ledger.has_been_sent(key),
    )


def load_plan(path: str) -> DigestPlan:
    with open(Path(path), "r", encoding="utf-8") as f:
        return DigestPlan.from_dict(json.load(f))


@dataclass
class PreviewResult:
    by_track: Dict[str, List[SelectedPaper]]
    candidate_count: int
    preview_date: str

    @property
    def selected_count(self) -> int:
        return sum(len(p) for p in self.by_track.values())

    @property
    def track_count(self) -> int:
        return len(self.by_track)

    @property
    def has_content(self) -> bool:
        return self.selected_count > 0


def digest_preview(
    conn: sqlite3.Connection,
    config: AppConfig,
    tracks: Optional[List[TrackConfig]] = None,
    track_filter: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PreviewResult:
    """Run the digest selection without touching the ledger or the disk."""
    limits = config.limits
    selector = DigestSelector(conn, config.timezone)
    selection = selector.select(
        max_total=limits.max_items_per_digest,
        max_per_track=limits.max_per_track_per_day,
        dedup_days=limits.dedup_days,
        track_filter=track_filter,
        min_score=limits.min_relevance_score,
        track_caps=track_caps(tracks or []),
        now=now,
    )
    return PreviewResult(
        by_track=selection.by_track,
        candidate_count=selector.candidate_count(
            limits.dedup_days, limits.min_relevance_score, now, track_filter=track_filter
        ),
        preview_date=period_key(now, config.timezone),
    )


def format_preview_message(result: PreviewResult) -> str:
    lines = [
        f"🔭 Digest preview: {result.preview_date}",
        f"{result.candidate_count} candidates in queue -> {result.selected_count} would be selected "
        f"across {result.track_count} track(s)",
    ]

    if not result.has_content:
        lines.append("")
        lines.append("📭 Nothing to preview: the queue is empty or everything was sent within the dedup window.")
        return "\n".join(lines)

    lines.append("")
    for track, papers in result.by_track.items():
        lines.append(f"📂 {track} ({len(papers)})")
        for paper in papers:
            lines.append(f"  • {paper.title}")
            meta = []
            if paper.relevance_score is not None:
                meta.append(f"relevance: {paper.relevance_score}/5")
            if paper.matched_terms:
                meta.append(f"matched: {', '.join(paper.matched_terms[:3])}")
            if meta:
                lines.append(f"    {' • '.join(meta)}")
            if paper.abs_url:
                lines.append(f"    {paper.abs_url}")
            lines.append(f"    {snippet(paper.abstract, 200)}")
        lines.append("")

    lines.append("───")
    lines.append("This is a preview; nothing has been marked as sent.")
    return "\n".join(lines).strip()


def format_preview_summary(result: PreviewResult) -> str:
    if not result.has_content:
        return f"🔭 Preview ({result.preview_date}): queue empty, 0 papers would be selected."

    breakdown = ", ".join(f"{t}: {len(p)}" for t, p in result.by_track.items())
    return (
        f"🔭 Preview ({result.preview_date}): "
        f"{result.selected_count}/{result.candidate_count} candidates -> [{breakdown}]"
    )
