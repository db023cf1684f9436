"""Repository hygiene checks."""

from pathlib import Path

from arxiv_coach.config import load_config, load_tracks

ROOT = Path(__file__).resolve().parents[1]


def test_example_configs_are_valid():
    config = load_config(str(ROOT / "config" / "config.example.yaml"))
    tracks = load_tracks(str(ROOT / "config" / "tracks.example.yaml"))

    assert config.discovery.categories
    assert any(t.enabled for t in tracks)


def test_no_stray_databases_or_documents():
    ignored_parts = {".git", "__pycache__", ".pytest_cache", ".venv", "data", "logs"}
    offenders = []
    for path in ROOT.rglob("*"):
        if any(part in ignored_parts for part in path.relative_to(ROOT).parts):
            continue
        if path.is_file() and path.suffix in {".sqlite", ".pdf", ".log"}:
            offenders.append(path.relative_to(ROOT).as_posix())

    assert not offenders, f"Local artifacts found in the source tree: {offenders}"
