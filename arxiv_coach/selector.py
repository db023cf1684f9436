"""Ranking and capping of matched papers into a digest."""

import json
import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from .models import DigestSelection, SelectedPaper
from .storage import read_meta

logger = logging.getLogger(__name__)


def local_date(now: Optional[datetime] = None, tz_name: str = "UTC") -> date:
    """Calendar date of ``now`` in the given IANA timezone."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()


def _terms(raw: Optional[str]) -> List[str]:
    try:
        value = json.loads(raw or "[]")
    except ValueError:
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


class DigestSelector:
    """
    Builds bounded, deduplicated digests from the track_matches table.

    Selection is read-only; recording what was delivered is the ledger's job.
    """

    def __init__(self, conn: sqlite3.Connection, tz_name: str = "UTC"):
        self.conn = conn
        self.tz_name = tz_name

    def _where(self, dedup_days: int, min_score: Optional[int], now: Optional[datetime]):
        clauses: List[str] = []
        params: List = []

        if dedup_days > 0:
            cutoff = local_date(now, self.tz_name) - timedelta(days=dedup_days)
            clauses.append(
                "NOT EXISTS (SELECT 1 FROM digest_papers dp "
                "WHERE dp.arxiv_id = tm.arxiv_id AND dp.digest_date >= ?)"
            )
            params.append(cutoff.isoformat())

        if min_score is not None:
            clauses.append("(rs.relevance_score IS NULL OR rs.relevance_score >= ?)")
            params.append(int(min_score))

        where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, params

    def select(
        self,
        max_total: int,
        max_per_track: int,
        dedup_days: int = 7,
        track_filter: Optional[str] = None,
        min_score: Optional[int] = None,
        track_caps: Optional[Dict[str, int]] = None,
        now: Optional[datetime] = None,
    ) -> DigestSelection:
        """
        Select papers for one digest.

        Scored papers rank above unscored ones (relevance descending), then
        by keyword score, then by match recency. Groups follow the order in
        which tracks first appear in that ranking; each group is capped at
        ``max_per_track`` and the whole selection at ``max_total``. A paper
        matched by several tracks is placed once, under the first track that
        still has room.

        Args:
            max_total: Maximum papers in the digest (>= 1)
            max_per_track: Maximum papers per track (>= 1)
            dedup_days: Exclude papers delivered within this many days; 0 disables
            track_filter: Only tracks whose name contains this (case-insensitive)
            min_score: Minimum relevance score; unscored papers always pass
            track_caps: Optional per-track caps, tighter than ``max_per_track``
            now: Reference time for the dedup window

        Returns:
            DigestSelection, possibly empty
        """
        if max_total < 1 or max_per_track < 1:
            raise ValueError("max_total and max_per_track must be >= 1")
        if dedup_days < 0:
            raise ValueError("dedup_days must be >= 0")

        where, params = self._where(dedup_days, min_score, now)
        rows = self.conn.execute(
            f"""SELECT
                tm.arxiv_id AS arxiv_id,
                tm.track_name AS track_name,
                tm.score AS score,
                tm.matched_terms_json AS matched_terms_json,
                p.title AS title,
                p.abstract AS abstract,
                p.updated_at AS updated_at,
                p.meta_path AS meta_path,
                rs.relevance_score AS relevance_score
            FROM track_matches tm
            JOIN papers p ON p.arxiv_id = tm.arxiv_id
            LEFT JOIN relevance_scores rs ON rs.arxiv_id = tm.arxiv_id
            {where}
            ORDER BY
                CASE WHEN rs.relevance_score IS NULL THEN 1 ELSE 0 END,
                rs.relevance_score DESC,
                tm.score DESC,
                tm.matched_at DESC,
                tm.arxiv_id ASC,
                tm.track_name ASC""",
            params,
        ).fetchall()

        needle = track_filter.lower() if track_filter else None
        track_caps = track_caps or {}

        by_track: Dict[str, List[SelectedPaper]] = {}
        placed = set()

        for row in rows:
            track_name = row["track_name"]
            if needle and needle not in track_name.lower():
                continue
            if row["arxiv_id"] in placed:
                continue

            cap = min(max_per_track, track_caps.get(track_name, max_per_track))
            group = by_track.get(track_name, [])
            if len(group) >= cap:
                continue

            meta = read_meta(row["meta_path"])
            group.append(
                SelectedPaper(
                    arxiv_id=row["arxiv_id"],
                    title=row["title"],
                    abstract=row["abstract"],
                    updated_at=row["updated_at"],
                    track_name=track_name,
                    score=row["score"],
                    matched_terms=_terms(row["matched_terms_json"]),
                    abs_url=meta.abs_url,
                    pdf_url=meta.pdf_url,
                    relevance_score=row["relevance_score"],
                )
            )
            by_track[track_name] = group
            placed.add(row["arxiv_id"])

        # Total cap across groups, in first-appearance order
        capped: Dict[str, List[SelectedPaper]] = {}
        remaining = max_total
        for track_name, papers in by_track.items():
            if remaining <= 0:
                break
            capped[track_name] = papers[:remaining]
            remaining -= len(capped[track_name])

        selection = DigestSelection(by_track=capped)
        logger.info(
            f"Selected {selection.items} papers across {selection.tracks_with_items} tracks "
            f"from {len(rows)} candidate matches"
        )
        return selection

    def candidate_count(
        self,
        dedup_days: int = 7,
        min_score: Optional[int] = None,
        now: Optional[datetime] = None,
        track_filter: Optional[str] = None,
    ) -> int:
        """Number of distinct eligible papers, before any cap.

        With ``track_filter`` only matches on tracks whose name contains it
        (case-insensitive) count, as in ``select``.
        """
        where, params = self._where(dedup_days, min_score, now)
        rows = self.conn.execute(
            f"""SELECT DISTINCT tm.arxiv_id, tm.track_name
            FROM track_matches tm
            JOIN papers p ON p.arxiv_id = tm.arxiv_id
            LEFT JOIN relevance_scores rs ON rs.arxiv_id = tm.arxiv_id
            {where}""",
            params,
        ).fetchall()

        needle = track_filter.lower() if track_filter else None
        return len({
            row["arxiv_id"] for row in rows
            if not needle or needle in row["track_name"].lower()
        })
