"""Data models for feed entries, tracks, artifacts and configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class FeedEntry:
    """A single normalized entry from the arXiv Atom feed."""

    # Core identifiers
    arxiv_id: str  # canonical, without revision suffix
    version: str  # v1, v2, ...
    raw_id_url: str

    title: str
    summary: str
    authors: List[str]
    categories: List[str]

    # ISO-8601 strings exactly as the feed reports them
    published_at: str
    updated_at: str

    # URLs
    pdf_url: Optional[str] = None
    abs_url: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert entry to the dictionary persisted as meta.json."""
        return {
            "arxivId": self.arxiv_id,
            "version": self.version,
            "rawIdUrl": self.raw_id_url,
            "title": self.title,
            "summary": self.summary,
            "authors": self.authors,
            "categories": self.categories,
            "publishedAt": self.published_at,
            "updatedAt": self.updated_at,
            "pdfUrl": self.pdf_url,
            "absUrl": self.abs_url,
        }


@dataclass
class ArtifactMeta:
    """Typed view of a paper's meta.json, validated where it is read."""

    arxiv_id: Optional[str] = None
    version: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    pdf_url: Optional[str] = None
    abs_url: Optional[str] = None

    @staticmethod
    def from_dict(data: Any) -> "ArtifactMeta":
        """
        Build an ArtifactMeta from a parsed JSON value.

        Unknown keys are ignored and wrongly typed values are dropped, so a
        hand-edited or truncated blob never leaks odd types downstream.

        Args:
            data: Parsed JSON (expected to be an object)

        Returns:
            ArtifactMeta with only well-typed fields populated
        """
        if not isinstance(data, dict):
            return ArtifactMeta()

        def _str(key: str) -> Optional[str]:
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            return None

        authors = data.get("authors")
        return ArtifactMeta(
            arxiv_id=_str("arxivId"),
            version=_str("version"),
            title=_str("title"),
            summary=_str("summary"),
            authors=[a for a in authors if isinstance(a, str)] if isinstance(authors, list) else [],
            pdf_url=_str("pdfUrl"),
            abs_url=_str("absUrl"),
        )


@dataclass
class MatchResult:
    """Outcome of scoring one entry against one track."""

    score: int
    matched_terms: List[str] = field(default_factory=list)


@dataclass
class PaperRecord:
    """A row of the papers table."""

    arxiv_id: str
    latest_version: Optional[str]
    title: str
    abstract: str
    authors: List[str]
    categories: List[str]
    published_at: str
    updated_at: str
    pdf_path: str
    txt_path: str
    meta_path: str
    sha256_pdf: Optional[str]
    ingested_at: str


@dataclass
class RelevanceScore:
    """An externally produced relevance judgement (1-5) for one paper."""

    arxiv_id: str
    relevance_score: int
    reasoning: str = ""
    model: str = ""
    scored_at: Optional[str] = None


@dataclass
class SelectedPaper:
    """A paper chosen for a digest, with the track it is delivered under."""

    arxiv_id: str
    title: str
    abstract: str
    updated_at: str
    track_name: str
    score: int
    matched_terms: List[str] = field(default_factory=list)
    abs_url: Optional[str] = None
    pdf_url: Optional[str] = None
    relevance_score: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "arxiv_id": self.arxiv_id,
            "title": self.title,
            "abstract": self.abstract,
            "updated_at": self.updated_at,
            "track_name": self.track_name,
            "score": self.score,
            "matched_terms": self.matched_terms,
            "abs_url": self.abs_url,
            "pdf_url": self.pdf_url,
            "relevance_score": self.relevance_score,
        }


@dataclass
class DigestSelection:
    """Papers selected for one digest, grouped by track in ranking order."""

    by_track: Dict[str, List[SelectedPaper]] = field(default_factory=dict)

    @property
    def items(self) -> int:
        return sum(len(papers) for papers in self.by_track.values())

    @property
    def tracks_with_items(self) -> int:
        return len(self.by_track)

    def papers(self) -> List[SelectedPaper]:
        """Flatten the grouped selection, preserving group order."""
        return [paper for papers in self.by_track.values() for paper in papers]


@dataclass
class TrackConfig:
    """A named topic profile supplied by tracks.yaml."""

    name: str
    enabled: bool = True
    categories: List[str] = field(default_factory=list)
    phrases: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    threshold: int = 0
    max_per_day: int = 2


@dataclass
class DiscoveryConfig:
    """Configuration for fetching the arXiv feed."""

    categories: List[str]
    days_window: int = 3
    max_results: int = 100
    politeness_min_seconds: float = 3.0
    politeness_max_seconds: float = 5.0


@dataclass
class FetchConfig:
    """HTTP behaviour for feed requests and document downloads."""

    timeout_seconds: float = 30.0
    max_attempts: int = 5
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    user_agent: str = "arxiv-coach (+https://github.com/mindofindica/arxiv-coach)"


@dataclass
class StorageConfig:
    root: str = "data"


@dataclass
class ArtifactConfig:
    """Configuration for document download and text extraction."""

    limit: int = 500
    # "pdftotext", "pypdf" or "none"
    extractor: str = "pdftotext"
    download_timeout_seconds: float = 60.0
    extract_timeout_seconds: float = 120.0


@dataclass
class LimitsConfig:
    """Caps applied when selecting a digest."""

    max_items_per_digest: int = 5
    max_per_track_per_day: int = 2
    dedup_days: int = 7
    min_relevance_score: Optional[int] = 3


@dataclass
class AppConfig:
    """Top-level application configuration."""

    discovery: DiscoveryConfig
    storage: StorageConfig = field(default_factory=StorageConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    artifacts: ArtifactConfig = field(default_factory=ArtifactConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    timezone: str = "Europe/Amsterdam"
    logging: Dict[str, Any] = field(default_factory=dict)
