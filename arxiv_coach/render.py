"""Markdown and chat-message rendering of a digest selection."""

import re
from typing import Dict, List, Tuple

from .models import SelectedPaper

MAX_MESSAGE_CHARS = 3500
TRUNCATION_NOTE = "\n\n(Truncated. The full digest is saved on the server.)"


def snippet(text: str, max_length: int = 420) -> str:
    """Collapse whitespace and cut at a word boundary with an ellipsis."""
    text = re.sub(r"\s+", " ", text or "").strip()
    if len(text) <= max_length:
        return text
    return re.sub(r"\s+\S*$", "", text[: max_length - 1]) + "…"


def truncate_message(text: str, max_chars: int = MAX_MESSAGE_CHARS) -> Tuple[str, bool]:
    """
    Fit a message into ``max_chars``, appending a note when cut.

    Returns:
        (text, truncated)
    """
    if len(text) <= max_chars:
        return text, False

    # Too small to fit the note: hard cut.
    if max_chars <= len(TRUNCATION_NOTE) + 5:
        return text[:max_chars].rstrip(), True

    budget = max_chars - len(TRUNCATION_NOTE)
    return (text[:budget].rstrip() + TRUNCATION_NOTE)[:max_chars], True


def _meta_parts(paper: SelectedPaper, include_score: bool) -> List[str]:
    parts = []
    if include_score:
        parts.append(f"score: {paper.score}")
    if paper.relevance_score is not None:
        parts.append(f"relevance: {paper.relevance_score}/5")
    if paper.matched_terms:
        parts.append(f"matched: {', '.join(paper.matched_terms)}")
    return parts


def render_markdown(period_key: str, by_track: Dict[str, List[SelectedPaper]]) -> str:
    """Full digest as a markdown document."""
    lines = [f"# arxiv-coach daily digest: {period_key}", ""]

    if not by_track:
        lines.append("No matching papers today.")
        lines.append("")

    for track, papers in by_track.items():
        lines.append(f"## {track}")
        lines.append("")
        for paper in papers:
            lines.append(f"- **{paper.title}**")
            if paper.abs_url:
                lines.append(f"  - {paper.abs_url}")
            lines.append(f"  - {' • '.join(_meta_parts(paper, include_score=True))}")
            lines.append(f"  - {snippet(paper.abstract)}")
        lines.append("")

    return "\n".join(lines)


def render_header_message(period_key: str, by_track: Dict[str, List[SelectedPaper]]) -> Tuple[str, bool]:
    total = sum(len(p) for p in by_track.values())

    lines = [f"arxiv-coach daily digest ({period_key})"]
    if total == 0:
        lines.append("No matching papers today across your tracks.")
        return truncate_message("\n".join(lines))

    lines.append(f"{total} papers across {len(by_track)} track(s).")
    lines.append("")
    for track, papers in by_track.items():
        lines.append(f"• {track}: {len(papers)}")

    return truncate_message("\n".join(lines))


def render_track_message(track: str, papers: List[SelectedPaper]) -> Tuple[str, bool]:
    lines = [f"Daily digest: {track}", ""]
    for paper in papers:
        lines.append(f"• {paper.title}")
        if paper.abs_url:
            lines.append(f"  {paper.abs_url}")
        meta = _meta_parts(paper, include_score=False)
        if meta:
            lines.append(f"  {' • '.join(meta)}")
        lines.append(f"  {snippet(paper.abstract, 260)}")
        lines.append("")

    return truncate_message("\n".join(lines).strip())
