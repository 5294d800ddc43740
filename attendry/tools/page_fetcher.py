"""Fetch event pages as markdown-ish text and split them into extraction chunks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from attendry.config import settings
from attendry.errors import SchemaValidationError, ServiceError
from attendry.services.reliability import ReliabilityManager, RetryConfig
from attendry.tools.web_utils import extract_domain

USER_AGENT = "AttendryBot/1.0 (+https://attendry.app)"

SPEAKER_SECTION_PATTERNS = (
    re.compile(r"\b(speakers?|referenten?|referentinnen|sprecher|faculty|presenters?|panelists?|moderators?|keynotes?)\b", re.IGNORECASE),
    re.compile(r"\b(about\s+(?:the\s+)?speakers?|über\s+(?:die\s+)?referenten?)\b", re.IGNORECASE),
    re.compile(r"\b(meet\s+(?:the\s+)?(?:speakers?|team)|lernen\s+sie\s+(?:die\s+)?referenten?\s+kennen)\b", re.IGNORECASE),
)

_HEADING = re.compile(r"^(#{1,3})\s+(.+?)\s*#*\s*$", re.MULTILINE)
_DROP_TAGS = ["script", "style", "noscript", "svg", "iframe", "form"]


@dataclass(slots=True)
class PageContent:
    url: str
    content: str
    method: str
    status_code: int | None = None


@dataclass(slots=True)
class Section:
    heading: str
    content: str


def normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def html_to_text(html: str) -> str:
    """Visible text with h1-h3 rendered as markdown headings so sections survive."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_DROP_TAGS):
        tag.decompose()
    for level in (1, 2, 3):
        for heading in soup.find_all(f"h{level}"):
            heading.replace_with(f"\n\n{'#' * level} {heading.get_text(' ', strip=True)}\n\n")
    return normalize_text(soup.get_text("\n"))


def is_speaker_section(heading: str) -> bool:
    return any(pattern.search(heading or "") for pattern in SPEAKER_SECTION_PATTERNS)


def split_sections(content: str) -> list[Section]:
    """Split markdown on h1-h3 headings; text before the first heading has an empty heading."""
    sections: list[Section] = []
    matches = list(_HEADING.finditer(content))
    if not matches:
        return [Section(heading="", content=content)] if content.strip() else []
    if matches[0].start() > 0 and content[: matches[0].start()].strip():
        sections.append(Section(heading="", content=content[: matches[0].start()].strip()))
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(content)
        sections.append(Section(heading=match.group(2).strip(), content=content[match.start() : end].strip()))
    return sections


def split_into_chunks(text: str, chunk_size: int) -> list[str]:
    """Split on paragraph boundaries where possible, hard-cutting oversized paragraphs."""
    chunks: list[str] = []
    current = ""
    for paragraph in text.split("\n\n"):
        while len(paragraph) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(paragraph[:chunk_size])
            paragraph = paragraph[chunk_size:]
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) > chunk_size:
            chunks.append(current)
            current = paragraph
        else:
            current = candidate
    if current.strip():
        chunks.append(current)
    return [c.strip() for c in chunks if c.strip()]


def create_smart_chunks(content: str, *, chunk_size: int | None = None, max_chunks: int | None = None) -> list[str]:
    """Chunks for extraction, speaker sections first.

    The page head stays first since it carries title, dates and venue; speaker
    sections follow; remaining text fills any budget left.
    """
    chunk_size = chunk_size or settings.chunk_size_chars
    max_chunks = max_chunks or settings.chunk_max_chunks
    content = content.strip()
    if not content:
        return []
    if len(content) <= chunk_size:
        return [content]

    generic = split_into_chunks(content, chunk_size)
    speaker_sections = [s for s in split_sections(content) if s.heading and is_speaker_section(s.heading)]
    if not speaker_sections:
        return generic[:max_chunks]

    chunks: list[str] = [generic[0]]
    for section in speaker_sections:
        for piece in split_into_chunks(section.content, chunk_size):
            if piece not in chunks:
                chunks.append(piece)
    for piece in generic[1:]:
        if len(chunks) >= max_chunks:
            break
        if piece not in chunks:
            chunks.append(piece)
    logger.debug(f"Smart chunking: {len(speaker_sections)} speaker section(s), {len(chunks)} chunk(s)")
    return chunks[:max_chunks]


class PageFetcher:
    """Firecrawl scrape (markdown) with a plain httpx + BeautifulSoup fallback."""

    service = "firecrawl_scrape"

    def __init__(
        self,
        reliability: ReliabilityManager,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_chars: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._reliability = reliability
        self._api_key = settings.firecrawl_api_key if api_key is None else api_key
        self._base_url = (base_url or settings.firecrawl_base_url).rstrip("/")
        self._timeout = timeout or settings.fetch_timeout_s
        self.max_chars = max_chars or settings.fetch_max_page_chars
        self._transport = transport

    async def _scrape_firecrawl(self, url: str) -> str:
        payload = {"url": url, "formats": ["markdown"], "onlyMainContent": False}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self._base_url}/v1/scrape",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
            )
            response.raise_for_status()
            data: Any = response.json()
        markdown = (data.get("data") or {}).get("markdown") if isinstance(data, dict) else None
        if not isinstance(markdown, str) or not markdown.strip():
            raise SchemaValidationError("firecrawl scrape returned no markdown", service="firecrawl")
        return markdown

    async def _fetch_direct(self, url: str) -> tuple[str, int]:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.get(url, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()
            return response.text, response.status_code

    async def fetch(self, url: str) -> PageContent | None:
        """None when neither Firecrawl nor a direct fetch produced content."""
        if self._api_key:
            try:
                result = await self._reliability.execute_with_retry(
                    self.service, "scrape", lambda: self._scrape_firecrawl(url), config=RetryConfig(max_retries=1)
                )
                content = normalize_text(result.data)[: self.max_chars]
                return PageContent(url=url, content=content, method="firecrawl")
            except ServiceError as exc:
                logger.info(f"Firecrawl scrape failed for {url} ({type(exc).__name__}); falling back to direct fetch")

        try:
            result = await self._reliability.execute_with_retry(
                f"page_fetch:{extract_domain(url)}", "get", lambda: self._fetch_direct(url), config=RetryConfig(max_retries=1)
            )
        except ServiceError as exc:
            logger.warning(f"Direct fetch failed for {url}: {type(exc).__name__}: {exc}")
            return None
        html, status = result.data
        content = html_to_text(html)[: self.max_chars]
        if not content:
            return None
        return PageContent(url=url, content=content, method="direct", status_code=status)
