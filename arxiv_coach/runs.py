"""Bookkeeping for pipeline runs."""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class RunStatus:
    RUNNING = "running"
    OK = "ok"
    WARN = "warn"
    ERROR = "error"

    FINAL = (OK, WARN, ERROR)


class RunError(RuntimeError):
    """Raised when a run record is used out of order."""


class RunTracker:
    """
    Records one row per run: started as ``running`` and finalized exactly once
    with a terminal status and stats.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def start(self, kind: str, now: Optional[datetime] = None) -> str:
        run_id = str(uuid.uuid4())
        started_at = (now or datetime.now(timezone.utc)).isoformat()
        with self.conn:
            self.conn.execute(
                "INSERT INTO runs (run_id, kind, started_at, finished_at, status, stats_json) "
                "VALUES (?, ?, ?, NULL, ?, ?)",
                (run_id, kind, started_at, RunStatus.RUNNING, "{}"),
            )
        logger.info(f"Started {kind} run {run_id}")
        return run_id

    def finalize(
        self,
        run_id: str,
        status: str,
        stats: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        """
        Close a running run.

        Raises:
            RunError: unknown run, already finalized, or non-terminal status
        """
        if status not in RunStatus.FINAL:
            raise RunError(f"Invalid final status: {status}")

        finished_at = (now or datetime.now(timezone.utc)).isoformat()
        with self.conn:
            cur = self.conn.execute(
                "UPDATE runs SET finished_at = ?, status = ?, stats_json = ? "
                "WHERE run_id = ? AND status = ?",
                (finished_at, status, json.dumps(stats, default=str), run_id, RunStatus.RUNNING),
            )
        if cur.rowcount != 1:
            raise RunError(f"Run {run_id} is unknown or already finalized")
        logger.info(f"Finished run {run_id} with status {status}")

    def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
        if not row:
            return None
        record = dict(row)
        record["stats"] = json.loads(record.pop("stats_json") or "{}")
        return record

    def latest(self, kind: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if kind:
            row = self.conn.execute(
                "SELECT run_id FROM runs WHERE kind = ? ORDER BY started_at DESC LIMIT 1", (kind,)
            ).fetchone()
        else:
            row = self.conn.execute("SELECT run_id FROM runs ORDER BY started_at DESC LIMIT 1").fetchone()
        return self.get(row["run_id"]) if row else None
