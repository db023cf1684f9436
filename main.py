#!/usr/bin/env python3
"""
arxiv-coach - Main entry point

Daily arXiv ingestion, track matching, artifact retrieval and digest planning.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from arxiv_coach import (
    ConfigError,
    DeliveryLedger,
    RelevanceScoreRepository,
    build_digest_plan,
    digest_preview,
    load_config,
    load_tracks,
    run_artifacts,
    run_daily,
)
from arxiv_coach.db import migrate, open_db
from arxiv_coach.digest import format_preview_message, format_preview_summary, load_plan
from arxiv_coach.models import RelevanceScore
from arxiv_coach.storage import db_path, ensure_storage_root

logger = logging.getLogger(__name__)


def setup_logging(log_config: dict) -> None:
    """Configure logging based on the `logging` config section."""
    log_file = log_config.get("log_file", "logs/arxiv_coach.log")
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, str(log_config.get("level", "INFO")).upper(), logging.INFO)
    handlers = []

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    handlers.append(file_handler)

    if log_config.get("console_output", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        handlers.append(console_handler)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def _open_db(config):
    ensure_storage_root(config.storage.root)
    conn = open_db(str(db_path(config.storage.root)))
    migrate(conn)
    return conn


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _load_scores(path: str) -> List[RelevanceScore]:
    """Read a JSON list of {arxiv_id, relevance_score, reasoning?, model?}."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("Scores file must contain a JSON list")

    scores = []
    for item in data:
        if not isinstance(item, dict) or "arxiv_id" not in item or "relevance_score" not in item:
            raise ValueError(f"Malformed score entry: {item!r}")
        value = item["relevance_score"]
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
            raise ValueError(f"relevance_score must be an integer 1-5 for {item['arxiv_id']}")
        scores.append(
            RelevanceScore(
                arxiv_id=str(item["arxiv_id"]),
                relevance_score=value,
                reasoning=str(item.get("reasoning") or ""),
                model=str(item.get("model") or ""),
            )
        )
    return scores


def cmd_run(args, config) -> int:
    tracks = load_tracks(args.tracks)
    result = run_daily(config, tracks)

    conn = _open_db(config)
    try:
        plan = build_digest_plan(conn, config, tracks)
    finally:
        conn.close()

    payload = result.to_dict()
    payload["plan"] = plan.to_dict()
    _print_json(payload)
    return 0


def cmd_artifacts(args, config) -> int:
    stats = run_artifacts(config, limit=args.limit)
    _print_json(stats.to_dict())
    return 0


def cmd_plan(args, config) -> int:
    tracks = load_tracks(args.tracks)
    conn = _open_db(config)
    try:
        plan = build_digest_plan(conn, config, tracks)
    finally:
        conn.close()

    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(plan.to_json() + "\n", encoding="utf-8")
        logger.info(f"Plan written to {out}")
    _print_json(plan.to_dict())
    return 0


def cmd_preview(args, config) -> int:
    tracks = load_tracks(args.tracks)
    conn = _open_db(config)
    try:
        result = digest_preview(conn, config, tracks, track_filter=args.track)
    finally:
        conn.close()

    print(format_preview_summary(result) if args.summary else format_preview_message(result))
    return 0


def cmd_mark_sent(args, config) -> int:
    plan = load_plan(args.plan)
    conn = _open_db(config)
    try:
        inserted = DeliveryLedger(conn).mark_sent(plan.period_key, plan.header, plan.tracks, papers=plan.papers)
    finally:
        conn.close()

    _print_json({"period_key": plan.period_key, "recorded": inserted})
    return 0


def cmd_record_scores(args, config) -> int:
    scores = _load_scores(args.scores)
    conn = _open_db(config)
    try:
        repo = RelevanceScoreRepository(conn)
        written = repo.upsert_scores(scores)
        remaining = len(repo.list_unscored_papers())
    finally:
        conn.close()

    _print_json({"written": written, "unscored_remaining": remaining})
    return 0


def cmd_init_db(args, config) -> int:
    conn = _open_db(config)
    conn.close()
    _print_json({"storage_root": config.storage.root, "db": str(db_path(config.storage.root))})
    return 0


COMMANDS = {
    "run": cmd_run,
    "artifacts": cmd_artifacts,
    "plan": cmd_plan,
    "preview": cmd_preview,
    "mark-sent": cmd_mark_sent,
    "record-scores": cmd_record_scores,
    "init-db": cmd_init_db,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="arxiv-coach")
    parser.add_argument("--config", default="config/config.yaml", help="Path to configuration file")
    parser.add_argument("--tracks", default="config/tracks.yaml", help="Path to tracks file")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Discovery, matching and artifacts, then plan today's digest")

    artifacts = sub.add_parser("artifacts", help="Download/extract missing artifacts only")
    artifacts.add_argument("--limit", type=int, default=None, help="Max papers to process")

    plan = sub.add_parser("plan", help="Build today's digest plan (does not mark it sent)")
    plan.add_argument("--out", default="", help="Write the plan JSON to this path")

    preview = sub.add_parser("preview", help="Show what the next digest would contain")
    preview.add_argument("--track", default=None, help="Only tracks containing this text")
    preview.add_argument("--summary", action="store_true", help="One-line summary")

    mark_sent = sub.add_parser("mark-sent", help="Record a delivered digest plan")
    mark_sent.add_argument("plan", help="Path to plan JSON produced by `plan --out`")

    record = sub.add_parser("record-scores", help="Store externally produced relevance scores")
    record.add_argument("scores", help="Path to a JSON list of scores")

    sub.add_parser("init-db", help="Create the storage root and migrate the database")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    setup_logging(config.logging)

    try:
        return COMMANDS[args.command](args, config)
    except ConfigError as e:
        logger.error(f"Config error: {e}")
        return 2
    except Exception as e:
        logger.error(f"Error during {args.command}: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    sys.exit(main())
