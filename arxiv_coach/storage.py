"""On-disk layout for paper artifacts, metadata and digests."""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from .models import ArtifactMeta, FeedEntry

logger = logging.getLogger(__name__)


@dataclass
class PaperPaths:
    """Filesystem locations for one paper's artifacts."""

    paper_dir: Path
    pdf_path: Path
    txt_path: Path
    meta_path: Path


def ensure_storage_root(root: str) -> Path:
    """Create the storage root and its fixed subdirectories."""
    base = Path(root)
    for sub in ("papers", "digests/daily"):
        (base / sub).mkdir(parents=True, exist_ok=True)
    return base


def db_path(root: str) -> Path:
    return Path(root) / "db.sqlite"


def paper_paths(root: str, arxiv_id: str, when: Optional[datetime] = None) -> PaperPaths:
    """
    Locate a paper's directory, partitioned by year and month (UTC).

    Args:
        root: Storage root
        arxiv_id: Canonical arXiv id (old-style ids have "/" replaced)
        when: Timestamp used for the year/month partition (default: now)
    """
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)

    paper_dir = Path(root) / "papers" / f"{when.year:04d}" / f"{when.month:02d}" / arxiv_id.replace("/", "_")
    return PaperPaths(
        paper_dir=paper_dir,
        pdf_path=paper_dir / "paper.pdf",
        txt_path=paper_dir / "paper.txt",
        meta_path=paper_dir / "meta.json",
    )


def write_meta(meta_path: Path, entry: FeedEntry) -> None:
    """Write the entry's metadata blob next to its artifacts."""
    meta_path = Path(meta_path)
    meta_path.parent.mkdir(parents=True, exist_ok=True)
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(entry.to_dict(), f, indent=2, ensure_ascii=False)


def read_meta(meta_path: str) -> ArtifactMeta:
    """
    Read a metadata blob into an ArtifactMeta.

    A missing or unreadable file yields an empty record; callers decide
    whether the absent fields matter.
    """
    path = Path(meta_path)
    if not path.exists():
        return ArtifactMeta()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Unreadable meta file {path}: {e}")
        return ArtifactMeta()
    return ArtifactMeta.from_dict(data)


def daily_digest_path(root: str, day: date) -> Path:
    return Path(root) / "digests" / "daily" / f"{day.isoformat()}.md"
