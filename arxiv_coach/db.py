"""SQLite connection handling and schema migrations."""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3

_V1 = """
CREATE TABLE IF NOT EXISTS papers (
    arxiv_id TEXT PRIMARY KEY,
    latest_version TEXT,
    title TEXT NOT NULL,
    abstract TEXT NOT NULL,
    authors_json TEXT NOT NULL,
    categories_json TEXT NOT NULL,
    published_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pdf_path TEXT NOT NULL,
    txt_path TEXT NOT NULL,
    meta_path TEXT NOT NULL,
    sha256_pdf TEXT,
    ingested_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS paper_versions (
    arxiv_id TEXT NOT NULL,
    version TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pdf_sha256 TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (arxiv_id, version),
    FOREIGN KEY (arxiv_id) REFERENCES papers(arxiv_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS track_matches (
    arxiv_id TEXT NOT NULL,
    track_name TEXT NOT NULL,
    score INTEGER NOT NULL,
    matched_terms_json TEXT NOT NULL,
    matched_at TEXT NOT NULL,
    PRIMARY KEY (arxiv_id, track_name),
    FOREIGN KEY (arxiv_id) REFERENCES papers(arxiv_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    status TEXT NOT NULL,
    stats_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_papers_updated_at ON papers(updated_at);
CREATE INDEX IF NOT EXISTS idx_track_matches_track ON track_matches(track_name);
CREATE INDEX IF NOT EXISTS idx_track_matches_matched_at ON track_matches(matched_at);
"""

_V2 = """
CREATE TABLE IF NOT EXISTS sent_digests (
    digest_date TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    sent_at TEXT NOT NULL,
    header_text TEXT NOT NULL,
    tracks_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS digest_papers (
    arxiv_id TEXT NOT NULL,
    digest_date TEXT NOT NULL,
    track_name TEXT NOT NULL,
    sent_at TEXT NOT NULL,
    PRIMARY KEY (arxiv_id, digest_date, track_name)
);

CREATE INDEX IF NOT EXISTS idx_sent_digests_sent_at ON sent_digests(sent_at);
CREATE INDEX IF NOT EXISTS idx_digest_papers_date ON digest_papers(digest_date);
"""

_V3 = """
CREATE TABLE IF NOT EXISTS relevance_scores (
    arxiv_id TEXT PRIMARY KEY,
    relevance_score INTEGER NOT NULL,
    reasoning TEXT NOT NULL DEFAULT '',
    model TEXT NOT NULL DEFAULT '',
    scored_at TEXT NOT NULL
);
"""

_MIGRATIONS = {1: _V1, 2: _V2, 3: _V3}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def open_db(db_path: str) -> sqlite3.Connection:
    """Open (and create if needed) the SQLite database at ``db_path``."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def current_version(conn: sqlite3.Connection) -> int:
    conn.execute(
        """CREATE TABLE IF NOT EXISTS schema_meta (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version INTEGER NOT NULL,
            updated_at TEXT NOT NULL
        )"""
    )
    row = conn.execute("SELECT version FROM schema_meta WHERE id = 1").fetchone()
    return int(row["version"]) if row else 0


def migrate(conn: sqlite3.Connection) -> int:
    """
    Bring the schema up to SCHEMA_VERSION. Safe to call repeatedly.

    Returns:
        The schema version after migrating
    """
    version = current_version(conn)
    if version >= SCHEMA_VERSION:
        return version

    for target in range(version + 1, SCHEMA_VERSION + 1):
        conn.executescript(_MIGRATIONS[target])
        with conn:
            conn.execute(
                "INSERT INTO schema_meta (id, version, updated_at) VALUES (1, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET version = excluded.version, updated_at = excluded.updated_at",
                (target, utc_now_iso()),
            )
        logger.info("Migrated schema to v%d", target)

    return SCHEMA_VERSION
