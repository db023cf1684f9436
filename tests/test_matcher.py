"""Tests for track matching."""

from unittest import TestCase

from arxiv_coach.matcher import TrackMatcher, match_track, word_match
from arxiv_coach.models import FeedEntry, TrackConfig


def _entry(title: str, summary: str = "", categories=None) -> FeedEntry:
    return FeedEntry(
        arxiv_id="2502.00001",
        version="v1",
        raw_id_url="http://arxiv.org/abs/2502.00001v1",
        title=title,
        summary=summary,
        authors=["Alice"],
        categories=categories if categories is not None else ["cs.AI"],
        published_at="2025-02-18T00:00:00Z",
        updated_at="2025-02-18T00:00:00Z",
    )


AGENTS = TrackConfig(
    name="Agents",
    phrases=["tool use"],
    keywords=["agent", "planning"],
    exclude=["survey"],
    threshold=3,
)


class TestMatchTrack(TestCase):
    def test_phrase_and_keywords_are_weighted(self):
        result = match_track(AGENTS, "Agent tool use", "Planning with tools")
        self.assertEqual(result.score, 3 + 1 + 1)
        self.assertEqual(result.matched_terms, ["tool use", "agent", "planning"])

    def test_exclusion_wins_over_matches(self):
        result = match_track(AGENTS, "A survey of agent tool use", "")
        self.assertEqual(result.score, 0)
        self.assertEqual(result.matched_terms, [])

    def test_keywords_respect_word_boundaries(self):
        result = match_track(AGENTS, "Reagents in chemistry", "")
        self.assertEqual(result.score, 0)

    def test_term_listed_as_phrase_and_keyword_reported_once(self):
        track = TrackConfig(name="T", phrases=["agent"], keywords=["agent"])
        result = match_track(track, "An agent", "")
        self.assertEqual(result.score, 4)
        self.assertEqual(result.matched_terms, ["agent"])

    def test_word_match(self):
        self.assertTrue(word_match("large language model", "language"))
        self.assertTrue(word_match("llm-based agent", "llm"))
        self.assertFalse(word_match("multilingual", "lingual"))


class TestTrackMatcher(TestCase):
    def test_threshold_and_disabled_tracks(self):
        disabled = TrackConfig(name="Off", enabled=False, keywords=["agent"])
        low = TrackConfig(name="Low", keywords=["agent"], threshold=0)
        matcher = TrackMatcher([AGENTS, disabled, low])

        results = matcher.score(_entry("Agent tool use"))
        self.assertEqual(list(results), ["Agents", "Low"])
        self.assertEqual(results["Low"].score, 1)

    def test_below_threshold_is_dropped(self):
        matcher = TrackMatcher([AGENTS])
        self.assertEqual(matcher.score(_entry("An agent")), {})

    def test_zero_score_never_matches(self):
        matcher = TrackMatcher([TrackConfig(name="Any", keywords=["agent"], threshold=0)])
        self.assertEqual(matcher.score(_entry("Unrelated topic")), {})

    def test_category_filter(self):
        track = TrackConfig(name="NLP", categories=["cs.CL"], keywords=["agent"])
        matcher = TrackMatcher([track])
        self.assertEqual(matcher.score(_entry("agent", categories=["cs.CV"])), {})
        self.assertIn("NLP", matcher.score(_entry("agent", categories=["cs.CL"])))

    def test_statistics(self):
        matcher = TrackMatcher([AGENTS])
        results = [matcher.score(_entry("Agent tool use")), matcher.score(_entry("Nothing"))]
        stats = matcher.get_statistics(results)
        self.assertEqual(stats["entries_with_matches"], 1)
        self.assertEqual(stats["matches_per_track"], {"Agents": 1})
