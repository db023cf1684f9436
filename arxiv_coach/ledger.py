"""Record of delivered digests, keyed by period."""

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DISCOVERY_ISSUES_NOTE = "Note: discovery had issues for {categories}; results may be incomplete."


class DeliveryLedger:
    """
    Idempotency record for digest delivery.

    A period is written once, together with the papers it carried; those
    rows feed the selector's dedup window.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def has_been_sent(self, period_key: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sent_digests WHERE digest_date = ?", (period_key,)
        ).fetchone()
        return row is not None

    def mark_sent(
        self,
        period_key: str,
        header: str,
        tracks: List[Dict[str, str]],
        papers: Optional[Iterable[Tuple[str, str]]] = None,
        kind: str = "daily",
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Commit a delivered period in one transaction.

        The period row is inserted only if absent, so two racing callers
        cannot both commit the same period.

        Args:
            period_key: Period identifier (YYYY-MM-DD)
            header: Header message that was sent
            tracks: Per-track messages that were sent
            papers: (arxiv_id, track_name) pairs delivered in this period
            kind: Digest kind
            now: Timestamp to record (default: now, UTC)

        Returns:
            True if this call recorded the period, False if it already was
        """
        sent_at = (now or datetime.now(timezone.utc)).isoformat()
        with self.conn:
            cur = self.conn.execute(
                """INSERT INTO sent_digests (digest_date, kind, sent_at, header_text, tracks_json)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(digest_date) DO NOTHING""",
                (period_key, kind, sent_at, header, json.dumps(tracks, ensure_ascii=False)),
            )
            inserted = cur.rowcount == 1
            if papers:
                self.conn.executemany(
                    """INSERT OR IGNORE INTO digest_papers (arxiv_id, digest_date, track_name, sent_at)
                    VALUES (?, ?, ?, ?)""",
                    [(arxiv_id, period_key, track, sent_at) for arxiv_id, track in papers],
                )

        if inserted:
            logger.info(f"Marked digest {period_key} as sent")
        else:
            logger.info(f"Digest {period_key} was already marked as sent")
        return inserted

    def sent_papers(self, period_key: str) -> List[Tuple[str, str]]:
        rows = self.conn.execute(
            "SELECT arxiv_id, track_name FROM digest_papers WHERE digest_date = ? ORDER BY arxiv_id, track_name",
            (period_key,),
        ).fetchall()
        return [(r["arxiv_id"], r["track_name"]) for r in rows]


def deliver_digest(
    send: Callable[[str], None],
    ledger: DeliveryLedger,
    plan,
    discovery_errors: Sequence[str] = (),
    delay_seconds: float = 0.6,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Send a digest plan message by message, then record it.

    The ledger is written only after every message went out. If a send
    raises, nothing is recorded and the exception propagates; retrying
    re-sends the whole period starting from the header.

    Args:
        send: Callable that transmits one message
        ledger: DeliveryLedger for the plan's database
        plan: DigestPlan to deliver
        discovery_errors: Categories whose fetch failed in the last run
        delay_seconds: Pause between messages
        sleep: Sleep function (injected in tests)

    Returns:
        True if the digest was sent now, False if it had been sent already
    """
    if ledger.has_been_sent(plan.period_key):
        logger.info(f"Digest {plan.period_key} already sent, skipping")
        return False

    header = plan.header
    if discovery_errors:
        header = header + "\n\n" + DISCOVERY_ISSUES_NOTE.format(categories=", ".join(discovery_errors))

    send(header)
    for track in plan.tracks:
        if delay_seconds > 0:
            sleep(delay_seconds)
        send(track["message"])

    ledger.mark_sent(plan.period_key, header, plan.tracks, papers=plan.papers)
    return True
