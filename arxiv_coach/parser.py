"""Normalization of arXiv Atom feed entries."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import feedparser

from .models import FeedEntry

logger = logging.getLogger(__name__)

_ABS_TAIL_RE = re.compile(r"arxiv\.org/abs/(.+)$")
_MODERN_ID_RE = re.compile(r"^(?P<id>\d{4}\.\d{4,7})(?P<v>v\d+)?$")
_VERSION_SUFFIX_RE = re.compile(r"v\d+$")
_WS_RE = re.compile(r"\s+")


class ParseError(ValueError):
    """Raised when a single feed entry cannot be normalized."""


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def parse_arxiv_id(id_url: str) -> Tuple[str, str]:
    """
    Split an identifier URL into canonical id and revision.

    Example: ``http://arxiv.org/abs/2502.12345v2`` -> ``("2502.12345", "v2")``.
    The revision defaults to ``v1`` when absent.
    """
    match = _ABS_TAIL_RE.search(id_url)
    tail = match.group(1) if match else id_url
    tail = tail.strip()

    modern = _MODERN_ID_RE.match(tail)
    if modern:
        return modern.group("id"), modern.group("v") or "v1"

    version_match = _VERSION_SUFFIX_RE.search(tail)
    version = version_match.group(0) if version_match else "v1"
    return _VERSION_SUFFIX_RE.sub("", tail), version


def _links(entry) -> Tuple[Optional[str], Optional[str]]:
    """Return (pdf_url, abs_url) from an entry's link list."""
    pdf_url = None
    abs_url = None
    for link in entry.get("links") or []:
        href = link.get("href") or ""
        if not href:
            continue
        if pdf_url is None and (link.get("type") == "application/pdf" or link.get("title") == "pdf"):
            pdf_url = href
        elif abs_url is None and (link.get("rel") == "alternate" or "/abs/" in href):
            abs_url = href
    return pdf_url, abs_url


def normalize_entry(entry) -> FeedEntry:
    """
    Convert one feedparser entry into a FeedEntry.

    Raises:
        ParseError: If the entry lacks an identifier or a title
    """
    raw_id = collapse_whitespace(entry.get("id") or "")
    if not raw_id:
        raise ParseError("entry has no id")

    arxiv_id, version = parse_arxiv_id(raw_id)
    if not arxiv_id:
        raise ParseError(f"cannot extract arXiv id from {raw_id!r}")

    title = collapse_whitespace(entry.get("title") or "")
    if not title:
        raise ParseError(f"entry {arxiv_id} has no title")

    authors = [
        collapse_whitespace(author.get("name") or "")
        for author in entry.get("authors") or []
    ]
    categories = [tag.get("term") for tag in entry.get("tags") or [] if tag.get("term")]
    pdf_url, abs_url = _links(entry)

    return FeedEntry(
        arxiv_id=arxiv_id,
        version=version,
        raw_id_url=raw_id,
        title=title,
        summary=collapse_whitespace(entry.get("summary") or ""),
        authors=[a for a in authors if a],
        categories=categories,
        published_at=entry.get("published") or "",
        updated_at=entry.get("updated") or "",
        pdf_url=pdf_url,
        abs_url=abs_url,
    )


def parse_feed(payload: str) -> List[FeedEntry]:
    """
    Parse a raw Atom payload into normalized entries.

    Malformed entries are logged and skipped; they never fail the batch.
    """
    feed = feedparser.parse(payload)
    if feed.get("bozo") and not feed.entries:
        logger.warning("Feed payload could not be parsed: %s", feed.get("bozo_exception"))

    entries: List[FeedEntry] = []
    for idx, raw in enumerate(feed.entries):
        try:
            entries.append(normalize_entry(raw))
        except ParseError as e:
            logger.warning("Skipping malformed feed entry #%d: %s", idx, e)
    return entries


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def within_window(entry: FeedEntry, days: int, now: Optional[datetime] = None) -> bool:
    """True if the entry was updated (or, failing that, published) in the last ``days`` days."""
    stamp = parse_timestamp(entry.updated_at) or parse_timestamp(entry.published_at)
    if stamp is None:
        return False
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return stamp >= now - timedelta(days=days)
