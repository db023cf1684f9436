"""Idempotent persistence of papers, track matches and relevance scores."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .models import FeedEntry, PaperRecord, RelevanceScore
from .parser import parse_timestamp
from .storage import PaperPaths, paper_paths

logger = logging.getLogger(__name__)


def _now_iso(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def _json_list(raw: Optional[str]) -> List[str]:
    try:
        value = json.loads(raw or "[]")
    except ValueError:
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def _row_to_paper(row: sqlite3.Row) -> PaperRecord:
    return PaperRecord(
        arxiv_id=row["arxiv_id"],
        latest_version=row["latest_version"],
        title=row["title"],
        abstract=row["abstract"],
        authors=_json_list(row["authors_json"]),
        categories=_json_list(row["categories_json"]),
        published_at=row["published_at"],
        updated_at=row["updated_at"],
        pdf_path=row["pdf_path"],
        txt_path=row["txt_path"],
        meta_path=row["meta_path"],
        sha256_pdf=row["sha256_pdf"],
        ingested_at=row["ingested_at"],
    )


class PaperRepository:
    """Papers and their per-track matches, keyed by arXiv id."""

    def __init__(self, conn: sqlite3.Connection, storage_root: str):
        """
        Initialize the repository.

        Args:
            conn: Migrated SQLite connection
            storage_root: Root directory for per-paper artifact paths
        """
        self.conn = conn
        self.storage_root = storage_root

    def paths_for(self, entry: FeedEntry) -> PaperPaths:
        stamp = parse_timestamp(entry.updated_at) or parse_timestamp(entry.published_at)
        return paper_paths(self.storage_root, entry.arxiv_id, stamp)

    def upsert_paper(self, entry: FeedEntry, now: Optional[datetime] = None) -> PaperPaths:
        """
        Create or refresh a paper row from a feed entry.

        Mutable metadata is overwritten in place; the stored document hash
        and the first ingestion time are preserved. The revision is recorded
        in paper_versions if not seen before.

        Returns:
            Artifact paths assigned to the paper
        """
        paths = self.paths_for(entry)
        paths.paper_dir.mkdir(parents=True, exist_ok=True)
        stamp = _now_iso(now)

        with self.conn:
            self.conn.execute(
                """INSERT INTO papers (
                    arxiv_id, latest_version, title, abstract, authors_json, categories_json,
                    published_at, updated_at, pdf_path, txt_path, meta_path, sha256_pdf, ingested_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
                ON CONFLICT(arxiv_id) DO UPDATE SET
                    latest_version = excluded.latest_version,
                    title = excluded.title,
                    abstract = excluded.abstract,
                    authors_json = excluded.authors_json,
                    categories_json = excluded.categories_json,
                    published_at = excluded.published_at,
                    updated_at = excluded.updated_at,
                    pdf_path = excluded.pdf_path,
                    txt_path = excluded.txt_path,
                    meta_path = excluded.meta_path""",
                (
                    entry.arxiv_id,
                    entry.version,
                    entry.title,
                    entry.summary,
                    json.dumps(entry.authors, ensure_ascii=False),
                    json.dumps(entry.categories),
                    entry.published_at,
                    entry.updated_at,
                    str(paths.pdf_path),
                    str(paths.txt_path),
                    str(paths.meta_path),
                    stamp,
                ),
            )
            self.conn.execute(
                """INSERT OR IGNORE INTO paper_versions (arxiv_id, version, updated_at, pdf_sha256, created_at)
                VALUES (?, ?, ?, NULL, ?)""",
                (entry.arxiv_id, entry.version, entry.updated_at, stamp),
            )

        return paths

    def upsert_match(
        self,
        arxiv_id: str,
        track_name: str,
        score: int,
        matched_terms: List[str],
        now: Optional[datetime] = None,
    ) -> None:
        """Create or overwrite the (paper, track) match."""
        with self.conn:
            self.conn.execute(
                """INSERT INTO track_matches (arxiv_id, track_name, score, matched_terms_json, matched_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(arxiv_id, track_name) DO UPDATE SET
                    score = excluded.score,
                    matched_terms_json = excluded.matched_terms_json,
                    matched_at = excluded.matched_at""",
                (arxiv_id, track_name, int(score), json.dumps(matched_terms, ensure_ascii=False), _now_iso(now)),
            )

    def update_doc_hash(self, arxiv_id: str, sha256: str, version: Optional[str] = None) -> None:
        """Record the hash of a freshly downloaded document."""
        with self.conn:
            self.conn.execute("UPDATE papers SET sha256_pdf = ? WHERE arxiv_id = ?", (sha256, arxiv_id))
            if version:
                self.conn.execute(
                    "UPDATE paper_versions SET pdf_sha256 = ? WHERE arxiv_id = ? AND version = ?",
                    (sha256, arxiv_id, version),
                )

    def get_paper(self, arxiv_id: str) -> Optional[PaperRecord]:
        row = self.conn.execute("SELECT * FROM papers WHERE arxiv_id = ?", (arxiv_id,)).fetchone()
        return _row_to_paper(row) if row else None

    def get_matches(self, arxiv_id: str) -> List[Dict]:
        rows = self.conn.execute(
            """SELECT track_name, score, matched_terms_json, matched_at
            FROM track_matches WHERE arxiv_id = ? ORDER BY track_name""",
            (arxiv_id,),
        ).fetchall()
        return [
            {
                "track_name": r["track_name"],
                "score": r["score"],
                "matched_terms": _json_list(r["matched_terms_json"]),
                "matched_at": r["matched_at"],
            }
            for r in rows
        ]

    def get_versions(self, arxiv_id: str) -> List[Dict]:
        rows = self.conn.execute(
            "SELECT version, updated_at, pdf_sha256 FROM paper_versions WHERE arxiv_id = ? ORDER BY version",
            (arxiv_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def count_papers(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM papers").fetchone()[0]

    def count_matches(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM track_matches").fetchone()[0]

    def list_matched_papers(self) -> List[PaperRecord]:
        """Papers with at least one track match, most recently matched first."""
        rows = self.conn.execute(
            """SELECT p.*, MAX(tm.matched_at) AS last_matched_at
            FROM papers p
            JOIN track_matches tm ON tm.arxiv_id = p.arxiv_id
            GROUP BY p.arxiv_id
            ORDER BY last_matched_at DESC, p.arxiv_id ASC"""
        ).fetchall()
        return [_row_to_paper(r) for r in rows]

    def list_matched_missing_artifacts(
        self,
        limit: int = 500,
        doc_validator: Optional[Callable[[Path], bool]] = None,
    ) -> List[PaperRecord]:
        """
        Matched papers whose artifact set is incomplete.

        A set is incomplete when the document or text file is missing, the
        document hash was never recorded, or ``doc_validator`` rejects the
        stored document.

        Args:
            limit: Maximum number of candidates
            doc_validator: Optional check applied to existing documents
        """
        candidates: List[PaperRecord] = []
        for paper in self.list_matched_papers():
            if len(candidates) >= limit:
                break

            pdf = Path(paper.pdf_path)
            incomplete = (
                not pdf.exists()
                or not Path(paper.txt_path).exists()
                or not paper.sha256_pdf
                or (doc_validator is not None and not doc_validator(pdf))
            )
            if incomplete:
                candidates.append(paper)

        return candidates


class RelevanceScoreRepository:
    """Relevance scores produced by an external model."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    _UPSERT = """INSERT INTO relevance_scores (arxiv_id, relevance_score, reasoning, model, scored_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(arxiv_id) DO UPDATE SET
            relevance_score = excluded.relevance_score,
            reasoning = excluded.reasoning,
            model = excluded.model,
            scored_at = excluded.scored_at"""

    @staticmethod
    def _params(score: RelevanceScore) -> tuple:
        return (
            score.arxiv_id,
            int(score.relevance_score),
            score.reasoning or "",
            score.model or "",
            score.scored_at or _now_iso(),
        )

    def upsert_score(self, score: RelevanceScore) -> None:
        with self.conn:
            self.conn.execute(self._UPSERT, self._params(score))

    def upsert_scores(self, scores: Iterable[RelevanceScore]) -> int:
        """Write several scores in one transaction; returns how many."""
        params = [self._params(s) for s in scores]
        with self.conn:
            self.conn.executemany(self._UPSERT, params)
        return len(params)

    def get_score(self, arxiv_id: str) -> Optional[RelevanceScore]:
        row = self.conn.execute(
            "SELECT * FROM relevance_scores WHERE arxiv_id = ?", (arxiv_id,)
        ).fetchone()
        if not row:
            return None
        return RelevanceScore(
            arxiv_id=row["arxiv_id"],
            relevance_score=row["relevance_score"],
            reasoning=row["reasoning"],
            model=row["model"],
            scored_at=row["scored_at"],
        )

    def list_unscored_papers(self) -> List[Dict]:
        """Matched papers without a score, best keyword score first."""
        rows = self.conn.execute(
            """SELECT
                p.arxiv_id AS arxiv_id,
                p.title AS title,
                p.abstract AS abstract,
                MAX(tm.score) AS keyword_score,
                GROUP_CONCAT(DISTINCT tm.track_name) AS tracks
            FROM papers p
            JOIN track_matches tm ON tm.arxiv_id = p.arxiv_id
            LEFT JOIN relevance_scores rs ON rs.arxiv_id = p.arxiv_id
            WHERE rs.arxiv_id IS NULL
            GROUP BY p.arxiv_id
            ORDER BY keyword_score DESC, p.updated_at DESC"""
        ).fetchall()
        return [
            {
                "arxiv_id": r["arxiv_id"],
                "title": r["title"],
                "abstract": r["abstract"],
                "keyword_score": r["keyword_score"],
                "tracks": r["tracks"].split(",") if r["tracks"] else [],
            }
            for r in rows
        ]

    def count_scored(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM relevance_scores").fetchone()[0]
