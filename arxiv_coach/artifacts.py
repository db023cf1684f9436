"""Download, validation and text extraction of paper documents."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import subprocess
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import requests
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .http_client import FetchError, PolitenessDelay, ResilientClient
from .models import PaperRecord
from .repository import PaperRepository
from .storage import read_meta

logger = logging.getLogger(__name__)

# Leading bytes every valid document of a given extension starts with.
MAGIC_SIGNATURES: Dict[str, bytes] = {
    ".pdf": b"%PDF-",
}

CHUNK_SIZE = 64 * 1024


class ArtifactError(RuntimeError):
    """Raised when one paper's artifacts cannot be produced."""

    DOWNLOAD_FAILED = "download-failed"
    EXTRACTION_UNAVAILABLE = "extraction-unavailable"
    EXTRACTION_FAILED = "extraction-failed"
    CORRUPT = "corrupt"

    def __init__(self, message: str, kind: str):
        super().__init__(message)
        self.kind = kind


def has_valid_signature(path: Path) -> bool:
    """True if the file starts with the magic bytes for its extension."""
    path = Path(path)
    magic = MAGIC_SIGNATURES.get(path.suffix.lower())
    if magic is None:
        return path.exists()
    try:
        with open(path, "rb") as f:
            return f.read(len(magic)) == magic
    except OSError:
        return False


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass
class DownloadResult:
    bytes: int
    sha256: str


def download_to_file(
    client: ResilientClient,
    url: str,
    out_path: Path,
    timeout: Optional[float] = None,
) -> DownloadResult:
    """
    Stream ``url`` into ``out_path`` and verify its signature.

    The body goes to a temporary sibling first and only replaces
    ``out_path`` once it passes the magic-byte check.

    Raises:
        ArtifactError: ``download-failed`` on HTTP/transport errors,
            ``corrupt`` when the body is not a valid document
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = out_path.with_name(out_path.name + ".tmp")

    try:
        response = client.get(url, stream=True, timeout=timeout)
    except FetchError as e:
        raise ArtifactError(f"Download failed for {url}: {e}", ArtifactError.DOWNLOAD_FAILED) from e

    digest = hashlib.sha256()
    size = 0
    try:
        with open(tmp_path, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                size += len(chunk)
                digest.update(chunk)
                f.write(chunk)
    except (requests.exceptions.RequestException, OSError) as e:
        tmp_path.unlink(missing_ok=True)
        raise ArtifactError(f"Download interrupted for {url}: {e}", ArtifactError.DOWNLOAD_FAILED) from e
    finally:
        response.close()

    # Validate against the final extension, not ".tmp".
    magic = MAGIC_SIGNATURES.get(out_path.suffix.lower())
    if magic is not None:
        with open(tmp_path, "rb") as f:
            head = f.read(len(magic))
        if head != magic:
            tmp_path.unlink(missing_ok=True)
            content_type = response.headers.get("Content-Type", "")
            raise ArtifactError(
                f"Downloaded file is not a valid {out_path.suffix} ({content_type or 'unknown type'}): {url}",
                ArtifactError.CORRUPT,
            )

    os.replace(tmp_path, out_path)
    return DownloadResult(bytes=size, sha256=digest.hexdigest())


class TextExtractor:
    """Base class for document-to-text extraction."""

    name = "base"

    def is_available(self) -> bool:
        return True

    def extract(self, pdf_path: Path, txt_path: Path) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class PdfToTextExtractor(TextExtractor):
    """Runs poppler's ``pdftotext -layout``."""

    name = "pdftotext"

    def __init__(self, timeout: float = 120.0, binary: str = "pdftotext"):
        self.timeout = timeout
        self.binary = binary

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def extract(self, pdf_path: Path, txt_path: Path) -> None:
        if not Path(pdf_path).exists():
            raise ArtifactError(f"PDF not found: {pdf_path}", ArtifactError.EXTRACTION_FAILED)
        try:
            subprocess.run(
                [self.binary, "-layout", str(pdf_path), str(txt_path)],
                check=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ArtifactError(f"{self.binary} is not installed", ArtifactError.EXTRACTION_UNAVAILABLE) from e
        except subprocess.TimeoutExpired as e:
            raise ArtifactError(
                f"{self.binary} timed out after {self.timeout}s on {pdf_path}",
                ArtifactError.EXTRACTION_FAILED,
            ) from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", "replace").strip()
            raise ArtifactError(
                f"{self.binary} failed on {pdf_path}: {stderr or e.returncode}",
                ArtifactError.EXTRACTION_FAILED,
            ) from e

        if not Path(txt_path).exists():
            raise ArtifactError(f"Text extraction produced no file: {txt_path}", ArtifactError.EXTRACTION_FAILED)


class PypdfExtractor(TextExtractor):
    """Pure-Python extraction with pypdf."""

    name = "pypdf"

    def extract(self, pdf_path: Path, txt_path: Path) -> None:
        try:
            reader = PdfReader(str(pdf_path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PyPdfError, OSError, ValueError) as e:
            raise ArtifactError(f"pypdf failed on {pdf_path}: {e}", ArtifactError.EXTRACTION_FAILED) from e

        text = "\n\n".join(pages)
        # Math-heavy PDFs can yield lone surrogates.
        text = text.encode("utf-8", "replace").decode("utf-8")
        Path(txt_path).write_text(text, encoding="utf-8")


def build_extractor(name: str, timeout: float = 120.0) -> Optional[TextExtractor]:
    """Return the configured extractor, or None when extraction is disabled."""
    name = (name or "").lower()
    if name == "pdftotext":
        return PdfToTextExtractor(timeout=timeout)
    if name == "pypdf":
        return PypdfExtractor()
    if name == "none":
        return None
    raise ValueError(f"Unknown extractor: {name}")


@dataclass
class ArtifactStats:
    """Counters for one artifact pass."""

    candidates: int = 0
    downloaded_pdfs: int = 0
    extracted_texts: int = 0
    corrupt_redownloads: int = 0
    skipped_no_pdf_url: int = 0
    failures: int = 0
    extraction_available: bool = True
    errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ArtifactManager:
    """Ensures matched papers have a valid document and extracted text."""

    def __init__(
        self,
        repo: PaperRepository,
        client: ResilientClient,
        extractor: Optional[TextExtractor] = None,
        delay: Optional[PolitenessDelay] = None,
        download_timeout: float = 60.0,
    ):
        """
        Initialize the manager.

        Args:
            repo: Paper repository supplying candidates and storing hashes
            client: HTTP client used for downloads
            extractor: Text extractor, or None to skip extraction
            delay: Politeness delay applied before each download
            download_timeout: Per-attempt download timeout in seconds
        """
        self.repo = repo
        self.client = client
        self.extractor = extractor
        self.delay = delay or PolitenessDelay()
        self.download_timeout = download_timeout

    def run(self, limit: int = 500, stats: Optional[ArtifactStats] = None) -> ArtifactStats:
        """
        Process every candidate with an incomplete artifact set.

        Failures are isolated per paper: they are logged, counted and the
        next candidate is processed.

        Args:
            limit: Maximum number of candidates to process
            stats: Optional stats object to fill (a new one by default)

        Returns:
            ArtifactStats for this pass
        """
        stats = stats if stats is not None else ArtifactStats()

        can_extract = self.extractor is not None and self.extractor.is_available()
        stats.extraction_available = can_extract
        if not can_extract:
            name = self.extractor.name if self.extractor else "extraction"
            logger.warning(f"{name} is not available; skipping text extraction")

        candidates = self.repo.list_matched_missing_artifacts(limit, doc_validator=has_valid_signature)
        stats.candidates = len(candidates)
        logger.info(f"Artifact pass: {len(candidates)} candidates")

        for paper in candidates:
            try:
                self._process(paper, can_extract, stats)
            except ArtifactError as e:
                stats.failures += 1
                stats.errors.append({"arxiv_id": paper.arxiv_id, "kind": e.kind, "error": str(e)})
                logger.warning(f"Artifact step failed for {paper.arxiv_id} ({e.kind}): {e}")
            except Exception as e:
                stats.failures += 1
                stats.errors.append({"arxiv_id": paper.arxiv_id, "kind": "unexpected", "error": str(e)})
                logger.warning(f"Artifact step failed for {paper.arxiv_id}: {e}", exc_info=True)

        logger.info(
            f"Artifacts done: downloaded={stats.downloaded_pdfs} extracted={stats.extracted_texts} "
            f"corrupt={stats.corrupt_redownloads} failures={stats.failures}"
        )
        return stats

    def _process(self, paper: PaperRecord, can_extract: bool, stats: ArtifactStats) -> None:
        pdf_path = Path(paper.pdf_path)
        txt_path = Path(paper.txt_path)

        pdf_exists = pdf_path.exists()
        pdf_valid = pdf_exists and has_valid_signature(pdf_path)
        needs_pdf = not pdf_valid
        needs_txt = not txt_path.exists()

        if not needs_pdf and not paper.sha256_pdf:
            # Valid file on disk but no recorded hash: adopt it.
            self.repo.update_doc_hash(paper.arxiv_id, sha256_file(pdf_path), paper.latest_version)

        if needs_pdf:
            if not self._ensure_document(paper, corrupt_local=pdf_exists, stats=stats):
                return
            needs_txt = True

        if needs_txt and can_extract:
            self.extractor.extract(pdf_path, txt_path)
            stats.extracted_texts += 1

    def _ensure_document(self, paper: PaperRecord, corrupt_local: bool, stats: ArtifactStats) -> bool:
        """
        Download the document, replacing a corrupt local copy.

        A corrupt result (local or freshly downloaded) earns exactly one
        forced redownload; a second corrupt result is an error.

        Returns:
            False if the paper has no document URL, True once downloaded
        """
        pdf_path = Path(paper.pdf_path)
        meta = read_meta(paper.meta_path)

        if corrupt_local:
            stats.corrupt_redownloads += 1
            logger.warning(f"Stored document for {paper.arxiv_id} is corrupt; redownloading")
            pdf_path.unlink(missing_ok=True)

        if not meta.pdf_url:
            stats.skipped_no_pdf_url += 1
            logger.warning(f"No pdf_url for {paper.arxiv_id}, skipping download")
            return False

        forced = corrupt_local
        while True:
            self.delay.wait()
            try:
                result = download_to_file(self.client, meta.pdf_url, pdf_path, timeout=self.download_timeout)
                break
            except ArtifactError as e:
                if e.kind != ArtifactError.CORRUPT or forced:
                    raise
                stats.corrupt_redownloads += 1
                forced = True
                logger.warning(f"Fresh download for {paper.arxiv_id} is corrupt; forcing one redownload")

        self.repo.update_doc_hash(paper.arxiv_id, result.sha256, meta.version or paper.latest_version)
        stats.downloaded_pdfs += 1
        logger.info(f"Downloaded {paper.arxiv_id} ({result.bytes} bytes)")
        return True
