"""Text extraction for uploaded files and websites."""

import asyncio
import html
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol
from urllib.parse import urlparse

import requests

from cipherdocs.core.config import settings
from cipherdocs.core.errors import ExtractionError, ValidationError
from cipherdocs.utils.validators import sanitize_text, validate_url

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
TEXT_MIME_TYPE = "text/plain"

# Elements whose content is never page text
STRIPPED_ELEMENTS = ("script", "style", "noscript", "iframe", "embed", "object", "nav", "footer", "header", "aside")


@dataclass
class UploadedFile:
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ExtractionResult:
    """Text per page. Plain text and websites are a single page."""
    pages: List[str]
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def text(self) -> str:
        return "\n".join(self.pages)


class TextExtractor(Protocol):
    def extract(self, file: UploadedFile) -> ExtractionResult: ...


# ==================== Validation ====================

def validate_document_file(file: UploadedFile, max_size: Optional[int] = None, allowed_types: Optional[List[str]] = None) -> None:
    max_size = max_size or settings.MAX_FILE_SIZE
    allowed_types = allowed_types or settings.ALLOWED_FILE_TYPES

    if file.content_type not in allowed_types:
        raise ValidationError("Only PDF and TXT files are supported.")
    if file.size == 0:
        raise ValidationError("File is empty.")
    if file.size > max_size:
        raise ValidationError(f"File size exceeds maximum allowed ({max_size // (1024 * 1024)}MB).")


def validate_website_url(url: str) -> str:
    is_valid, error = validate_url(url)
    if not is_valid:
        raise ValidationError(error)
    return url.strip()


# ==================== Files ====================

class PlainTextExtractor:
    def extract(self, file: UploadedFile) -> ExtractionResult:
        try:
            text = file.data.decode("utf-8")
        except UnicodeDecodeError:
            text = file.data.decode("latin-1")
            logger.warning(f"⚠️ {file.name} is not valid UTF-8, decoded as latin-1")
        return ExtractionResult(pages=[sanitize_text(text)])


class PdfExtractor:
    """PyMuPDF based extraction; needs the `pdf` extra installed"""

    def extract(self, file: UploadedFile) -> ExtractionResult:
        try:
            import fitz  # PyMuPDF
        except ImportError as e:
            raise ExtractionError("PDF support requires PyMuPDF (pip install cipherdocs[pdf])") from e

        try:
            with fitz.open(stream=file.data, filetype="pdf") as doc:
                pages = [sanitize_text(page.get_text()) for page in doc]
                info = doc.metadata or {}
        except (RuntimeError, ValueError) as e:
            raise ExtractionError(f"Could not read PDF {file.name}: {e}") from e

        metadata = {"title": info.get("title", ""), "author": info.get("author", "")}
        return ExtractionResult(pages=pages, metadata=metadata)


DEFAULT_EXTRACTORS: Dict[str, TextExtractor] = {
    TEXT_MIME_TYPE: PlainTextExtractor(),
    PDF_MIME_TYPE: PdfExtractor(),
}


# ==================== Websites ====================

def clean_html_content(raw_html: str) -> str:
    """Strip tags and decode entities, keeping readable text"""
    text = raw_html
    for tag in STRIPPED_ELEMENTS:
        text = re.sub(rf"<{tag}\b[^>]*>.*?</{tag}\s*>", " ", text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<!--.*?-->", " ", text, flags=re.DOTALL)
    text = re.sub(r"<(br|/p|/div|/li|/h[1-6]|/tr)\b[^>]*>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return sanitize_text(text).strip()


def _extract_title(raw_html: str) -> Optional[str]:
    match = re.search(r"<title[^>]*>(.*?)</title>", raw_html, flags=re.IGNORECASE | re.DOTALL)
    if match:
        title = html.unescape(re.sub(r"\s+", " ", match.group(1))).strip()
        return title or None
    return None


def _extract_meta_description(raw_html: str) -> str:
    for pattern in (
        r'<meta[^>]+name=["\']description["\'][^>]*content=["\'](.*?)["\']',
        r'<meta[^>]+content=["\'](.*?)["\'][^>]*name=["\']description["\']',
    ):
        match = re.search(pattern, raw_html, flags=re.IGNORECASE | re.DOTALL)
        if match:
            return html.unescape(match.group(1)).strip()
    return ""


class WebsiteExtractor:
    """Fetches a page with requests and reduces it to text"""

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout or settings.WEBSITE_TIMEOUT_SECONDS

    def fetch(self, url: str) -> str:
        try:
            response = self.session.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": settings.WEBSITE_USER_AGENT},
            )
        except requests.RequestException as e:
            raise ExtractionError(f"Could not fetch {url}: {e}") from e

        if response.status_code != 200:
            raise ExtractionError(f"Could not fetch {url}: HTTP {response.status_code}")
        content = response.text
        if len(content) > settings.WEBSITE_MAX_CONTENT_LENGTH:
            raise ExtractionError("Website content exceeds maximum allowed length")
        return content

    def extract_from_html(self, url: str, raw_html: str) -> ExtractionResult:
        text = clean_html_content(raw_html)
        title = _extract_title(raw_html) or urlparse(url).hostname or url
        metadata = {
            "url": url,
            "title": title,
            "description": _extract_meta_description(raw_html),
            "extractedAt": datetime.now(timezone.utc).isoformat(),
            "contentLength": len(text),
        }
        return ExtractionResult(pages=[text], metadata=metadata)

    def extract_url(self, url: str) -> ExtractionResult:
        return self.extract_from_html(url, self.fetch(url))

    async def extract_url_async(self, url: str) -> ExtractionResult:
        return await asyncio.to_thread(self.extract_url, url)
