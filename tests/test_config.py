"""Tests for configuration loading."""

import os
import shutil
import tempfile
from unittest import TestCase

import yaml

from arxiv_coach.config import ConfigError, load_config, load_tracks, parse_config, parse_tracks


def _base() -> dict:
    return {
        "timezone": "UTC",
        "discovery": {"categories": ["cs.AI"]},
        "storage": {"root": "data"},
    }


class TestParseConfig(TestCase):
    def test_defaults(self):
        config = parse_config(_base())
        self.assertEqual(config.discovery.days_window, 3)
        self.assertEqual(config.discovery.max_results, 100)
        self.assertEqual(config.discovery.politeness_min_seconds, 3.0)
        self.assertEqual(config.fetch.max_attempts, 5)
        self.assertEqual(config.artifacts.extractor, "pdftotext")
        self.assertEqual(config.limits.max_items_per_digest, 5)
        self.assertEqual(config.limits.dedup_days, 7)
        self.assertEqual(config.limits.min_relevance_score, 3)

    def test_overrides(self):
        data = _base()
        data["discovery"]["politeness_delay"] = {"min_seconds": 6, "max_seconds": 2}
        data["limits"] = {"dedup_days": 0, "min_relevance_score": None, "max_per_track_per_day": 3}
        data["artifacts"] = {"extractor": "PyPDF"}

        config = parse_config(data)

        self.assertEqual(config.discovery.politeness_min_seconds, 2.0)
        self.assertEqual(config.discovery.politeness_max_seconds, 6.0)
        self.assertEqual(config.limits.dedup_days, 0)
        self.assertIsNone(config.limits.min_relevance_score)
        self.assertEqual(config.limits.max_per_track_per_day, 3)
        self.assertEqual(config.artifacts.extractor, "pypdf")

    def test_invalid_values(self):
        cases = [
            {"discovery": {"categories": []}},
            {"storage": {"root": ""}},
            {"limits": {"max_items_per_digest": 0}},
            {"limits": {"max_per_track_per_day": 11}},
            {"limits": {"dedup_days": -1}},
            {"artifacts": {"extractor": "ocr"}},
            {"fetch": {"timeout_seconds": "fast"}},
            {"timezone": "Mars/Olympus_Mons"},
        ]
        for override in cases:
            data = _base()
            data.update(override)
            with self.assertRaises(ConfigError, msg=str(override)):
                parse_config(data)


class TestParseTracks(TestCase):
    def test_tracks(self):
        tracks = parse_tracks({
            "tracks": [
                {"name": "Agents", "phrases": ["tool use"], "keywords": ["agent"], "threshold": 3},
                {"name": "Off", "enabled": False},
            ]
        })
        self.assertEqual(tracks[0].phrases, ["tool use"])
        self.assertEqual(tracks[0].max_per_day, 2)
        self.assertFalse(tracks[1].enabled)

    def test_duplicate_names_rejected(self):
        with self.assertRaises(ConfigError):
            parse_tracks({"tracks": [{"name": "A"}, {"name": "A"}]})

    def test_bad_shapes_rejected(self):
        with self.assertRaises(ConfigError):
            parse_tracks({"tracks": "nope"})
        with self.assertRaises(ConfigError):
            parse_tracks({"tracks": [{"name": "A", "keywords": "agent"}]})
        with self.assertRaises(ConfigError):
            parse_tracks({"tracks": [{"name": "A", "threshold": -1}]})


class TestLoadFiles(TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_config(os.path.join(self.temp_dir, "config.yaml"))

    def test_load_from_yaml(self):
        path = os.path.join(self.temp_dir, "tracks.yaml")
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"tracks": [{"name": "Agents", "keywords": ["agent"]}]}, f)
        self.assertEqual([t.name for t in load_tracks(path)], ["Agents"])

    def test_non_mapping_file(self):
        path = os.path.join(self.temp_dir, "config.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("- just\n- a list\n")
        with self.assertRaises(ConfigError):
            load_config(path)
