"""Scoring of feed entries against track keyword profiles."""

import logging
import re
from typing import Dict, List

from .models import FeedEntry, MatchResult, TrackConfig

logger = logging.getLogger(__name__)

PHRASE_WEIGHT = 3
KEYWORD_WEIGHT = 1


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace."""
    return re.sub(r"\s+", " ", (text or "").lower()).strip()


def word_match(haystack: str, word: str) -> bool:
    """Match ``word`` only where it is not glued to other letters or digits."""
    pattern = r"(?:^|[^a-z0-9])" + re.escape(word) + r"(?:[^a-z0-9]|$)"
    return re.search(pattern, haystack) is not None


def match_track(track: TrackConfig, title: str, summary: str) -> MatchResult:
    """
    Score title + summary against one track.

    Any exclusion phrase short-circuits to a zero score with no terms.
    Otherwise each phrase found as a substring adds 3 and each keyword found
    on word boundaries adds 1.

    Args:
        track: Track profile
        title: Entry title
        summary: Entry abstract

    Returns:
        MatchResult with score and de-duplicated matched terms
    """
    hay = normalize_text(f"{title} {summary}")

    for excluded in track.exclude:
        needle = normalize_text(excluded)
        if needle and needle in hay:
            return MatchResult(score=0, matched_terms=[])

    score = 0
    matched: List[str] = []

    for phrase in track.phrases:
        needle = normalize_text(phrase)
        if needle and needle in hay:
            score += PHRASE_WEIGHT
            matched.append(phrase)

    for keyword in track.keywords:
        needle = normalize_text(keyword)
        if needle and word_match(hay, needle):
            score += KEYWORD_WEIGHT
            matched.append(keyword)

    return MatchResult(score=score, matched_terms=list(dict.fromkeys(matched)))


class TrackMatcher:
    """Applies every enabled track to feed entries."""

    def __init__(self, tracks: List[TrackConfig]):
        """
        Initialize the matcher.

        Args:
            tracks: All configured tracks; disabled ones are ignored
        """
        self.tracks = [t for t in tracks if t.enabled]
        logger.info(f"Track matcher ready with {len(self.tracks)} enabled tracks")

    @staticmethod
    def matches_categories(track: TrackConfig, entry: FeedEntry) -> bool:
        """A track without a category filter accepts every entry."""
        if not track.categories:
            return True
        return any(c in track.categories for c in entry.categories)

    def score(self, entry: FeedEntry) -> Dict[str, MatchResult]:
        """
        Score an entry against every enabled track, in configured order.

        Tracks whose category filter rejects the entry are not scored, and
        only matches that reach the track threshold with at least one term
        are returned.

        Returns:
            Ordered mapping of track name to MatchResult
        """
        results: Dict[str, MatchResult] = {}
        for track in self.tracks:
            if not self.matches_categories(track, entry):
                continue

            result = match_track(track, entry.title, entry.summary)
            if result.matched_terms and result.score >= track.threshold:
                results[track.name] = result

        return results

    def get_statistics(self, matches: List[Dict[str, MatchResult]]) -> Dict:
        """
        Summarize a batch of per-entry match results.

        Args:
            matches: Output of ``score`` for several entries

        Returns:
            Dictionary with per-track counts and the most frequent terms
        """
        per_track: Dict[str, int] = {}
        term_counts: Dict[str, int] = {}
        for result in matches:
            for track_name, match in result.items():
                per_track[track_name] = per_track.get(track_name, 0) + 1
                for term in match.matched_terms:
                    term_counts[term] = term_counts.get(term, 0) + 1

        top_terms = sorted(term_counts.items(), key=lambda x: x[1], reverse=True)[:10]

        return {
            "entries_with_matches": sum(1 for r in matches if r),
            "matches_per_track": per_track,
            "top_terms": top_terms,
        }
