"""arxiv-coach - Core modules for paper ingestion, track matching, artifacts and digests."""

__version__ = "0.1.0"

from .artifacts import ArtifactError, ArtifactManager, ArtifactStats
from .config import ConfigError, load_config, load_tracks
from .digest import DigestPlan, build_digest_plan, digest_preview
from .fetcher import ArxivFetcher
from .http_client import FetchError, PolitenessDelay, ResilientClient
from .ledger import DeliveryLedger, deliver_digest
from .matcher import TrackMatcher, match_track
from .models import AppConfig, FeedEntry, TrackConfig
from .parser import ParseError, parse_arxiv_id, parse_feed
from .pipeline import DailyRunResult, run_artifacts, run_daily
from .repository import PaperRepository, RelevanceScoreRepository
from .runs import RunError, RunStatus, RunTracker
from .selector import DigestSelector

__all__ = [
    "ArtifactError",
    "ArtifactManager",
    "ArtifactStats",
    "ConfigError",
    "load_config",
    "load_tracks",
    "DigestPlan",
    "build_digest_plan",
    "digest_preview",
    "ArxivFetcher",
    "FetchError",
    "PolitenessDelay",
    "ResilientClient",
    "DeliveryLedger",
    "deliver_digest",
    "TrackMatcher",
    "match_track",
    "AppConfig",
    "FeedEntry",
    "TrackConfig",
    "ParseError",
    "parse_arxiv_id",
    "parse_feed",
    "DailyRunResult",
    "run_artifacts",
    "run_daily",
    "PaperRepository",
    "RelevanceScoreRepository",
    "RunError",
    "RunStatus",
    "RunTracker",
    "DigestSelector",
]
