"""Tests for the main.py command-line entry point."""

import json

import pytest
import yaml

import main as cli


def _write_configs(tmp_path):
    config = {
        "timezone": "UTC",
        "discovery": {"categories": ["cs.AI"]},
        "storage": {"root": str(tmp_path / "data")},
        "limits": {"min_relevance_score": 3},
        "logging": {"level": "WARNING", "log_file": str(tmp_path / "logs" / "test.log"), "console_output": False},
    }
    tracks = {"tracks": [{"name": "Agents", "keywords": ["agent"]}]}
    config_path = tmp_path / "config.yaml"
    tracks_path = tmp_path / "tracks.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    tracks_path.write_text(yaml.safe_dump(tracks), encoding="utf-8")
    return ["--config", str(config_path), "--tracks", str(tracks_path)]


def _stdout_json(capsys):
    return json.loads(capsys.readouterr().out)


def test_missing_config_returns_error_code(tmp_path):
    code = cli.main(["--config", str(tmp_path / "absent.yaml"), "init-db"])
    assert code == 2


def test_init_db_creates_storage(tmp_path, capsys):
    args = _write_configs(tmp_path)

    assert cli.main(args + ["init-db"]) == 0

    assert (tmp_path / "data" / "db.sqlite").exists()
    assert (tmp_path / "data" / "digests" / "daily").is_dir()
    assert _stdout_json(capsys)["storage_root"] == str(tmp_path / "data")


def test_run_reports_result_and_plan(tmp_path, capsys, monkeypatch):
    args = _write_configs(tmp_path)
    captured = {}

    class _Result:
        def to_dict(self):
            return {"status": "ok"}

    def _fake_run_daily(config, tracks):
        captured["tracks"] = [t.name for t in tracks]
        return _Result()

    monkeypatch.setattr(cli, "run_daily", _fake_run_daily)

    assert cli.main(args + ["run"]) == 0

    payload = _stdout_json(capsys)
    assert captured["tracks"] == ["Agents"]
    assert payload["status"] == "ok"
    assert payload["plan"]["papers"] == []


def test_plan_then_mark_sent(tmp_path, capsys):
    args = _write_configs(tmp_path)
    plan_path = tmp_path / "plan.json"

    assert cli.main(args + ["plan", "--out", str(plan_path)]) == 0
    plan = _stdout_json(capsys)
    assert plan_path.exists()
    assert plan["already_sent"] is False

    assert cli.main(args + ["mark-sent", str(plan_path)]) == 0
    assert _stdout_json(capsys)["recorded"] is True

    assert cli.main(args + ["mark-sent", str(plan_path)]) == 0
    assert _stdout_json(capsys)["recorded"] is False

    assert cli.main(args + ["plan"]) == 0
    assert _stdout_json(capsys)["already_sent"] is True


def test_record_scores_and_preview(tmp_path, capsys):
    args = _write_configs(tmp_path)
    scores = tmp_path / "scores.json"
    scores.write_text(json.dumps([{"arxiv_id": "2502.00001", "relevance_score": 4}]), encoding="utf-8")

    assert cli.main(args + ["record-scores", str(scores)]) == 0
    assert _stdout_json(capsys) == {"written": 1, "unscored_remaining": 0}

    assert cli.main(args + ["preview", "--summary"]) == 0
    assert "queue empty" in capsys.readouterr().out


def test_record_scores_rejects_out_of_range(tmp_path):
    args = _write_configs(tmp_path)
    scores = tmp_path / "scores.json"
    scores.write_text(json.dumps([{"arxiv_id": "2502.00001", "relevance_score": 9}]), encoding="utf-8")

    with pytest.raises(ValueError):
        cli.main(args + ["record-scores", str(scores)])


def test_unknown_timezone_returns_error_code(tmp_path):
    args = _write_configs(tmp_path)
    config_path = tmp_path / "config.yaml"
    config = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    config["timezone"] = "Europe/Amsterdm"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")

    assert cli.main(args + ["preview"]) == 2
