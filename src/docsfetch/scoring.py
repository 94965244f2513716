"""Documentation quality scoring.

Each candidate URL is first checked with a HEAD request (status, content
type, Last-Modified), then fetched and scored on five weighted criteria:

  freshness     age from Last-Modified, 0.5 when unknown
  size          page weight between min_size_bytes and max_size_bytes
  language      English pages score 1, others 0.3
  readability   sentence and word length, with bonuses for structure
  completeness  code samples, headings, paragraphs, lists and length

The weighted sum is curved (``score ** 0.7``) and cut to 30% for pages with
no code, no headings, or under 50 words.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import httpx
import structlog
from bs4 import BeautifulSoup

from docsfetch.errors import NavigationError
from docsfetch.fetcher import HttpRenderer, is_url_allowed
from docsfetch.models.score import DocsScore, LinkCheck, ScoreDetails

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docsfetch.config import ScoreSettings

log = structlog.get_logger()

ENGLISH_WORDS = frozenset(
    {
        "the", "be", "to", "of", "and", "a", "in", "that", "have", "i",
        "it", "for", "not", "on", "with", "he", "as", "you", "do", "at",
        "this", "but", "his", "by", "from", "they", "we", "say", "her", "or",
        "will", "my", "all", "would", "there", "their", "what", "so", "up", "if",
        "about", "who", "get", "which", "go", "when", "make", "can", "like", "no",
    }
)  # fmt: skip

_WORD = re.compile(r"\w+")
_SENTENCE_END = re.compile(r"[.!?]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class PageStats:
    """Structural counts taken from a page's main content."""

    text: str
    size_bytes: int
    word_count: int
    code_blocks: int
    headings: int
    paragraphs: int
    list_items: int


def page_stats(html: str) -> PageStats:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "nav", "noscript", "template"]):
        tag.decompose()
    root = soup.find("main") or soup.body or soup
    text = _WHITESPACE.sub(" ", root.get_text(" ")).strip()
    return PageStats(
        text=text,
        size_bytes=len(html.encode("utf-8")),
        word_count=len(_WORD.findall(text)),
        code_blocks=len(root.find_all("pre")),
        headings=len(root.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])),
        paragraphs=len(root.find_all("p")),
        list_items=len(root.find_all("li")),
    )


# ---------------------------------------------------------------------------
# Criteria
# ---------------------------------------------------------------------------


def freshness_score(
    last_modified: datetime | None, max_age_days: float, *, now: datetime | None = None
) -> float:
    if last_modified is None:
        return 0.5
    now = now or datetime.now(UTC)
    age_days = (now - last_modified).total_seconds() / 86400
    return min(1.0, max(0.0, 1 - age_days / max_age_days))


def size_score(size_bytes: int, min_size: int, max_size: int) -> float:
    if size_bytes == 0:
        return 0.0
    if size_bytes < min_size:
        return 0.3
    if size_bytes > max_size:
        return 0.5
    return max(0.0, 1 - abs(size_bytes - min_size * 2) / max_size)


def detect_language(text: str) -> str:
    """``en`` when more than 5% of the words are common English words."""
    words = _WORD.findall(text.lower())
    if not words:
        return "unknown"
    english = sum(1 for word in words if word in ENGLISH_WORDS)
    return "en" if english / len(words) > 0.05 else "unknown"


def readability_score(stats: PageStats) -> float:
    sentences = [s for s in _SENTENCE_END.split(stats.text) if s.strip()]
    words = _WORD.findall(stats.text)
    if not sentences or not words:
        return 0.0

    avg_sentence_length = len(words) / len(sentences)
    avg_word_length = sum(len(word) for word in words) / len(words)

    # Sentences of 10-25 words and words of 4-7 characters read best
    score = max(0.4, 1 - abs(avg_sentence_length - 17.5) / 35)
    score *= max(0.4, 1 - abs(avg_word_length - 5.5) / 11)
    if stats.headings:
        score *= 1.4
    if stats.list_items:
        score *= 1.3
    if stats.paragraphs > 1:
        score *= 1.2
    score *= max(0.5, min(1.0, len(words) / 200))
    return min(1.0, max(0.0, score))


def completeness_score(stats: PageStats, min_word_count: int) -> float:
    if not stats.text:
        return 0.0
    words = stats.word_count
    code = stats.code_blocks
    headings = stats.headings

    structure = (
        min(1.0, headings / 3) * 0.5
        + min(1.0, stats.paragraphs / 4) * 0.3
        + min(1.0, stats.list_items / 2) * 0.2
    )
    score = (
        min(1.0, code / 2) * 0.25
        + structure * 0.35
        + min(1.0, words / (min_word_count * 0.75)) * 0.25
        + min(1.0, words / max(1, headings) / 50) * 0.15
    )

    if code >= 3 and headings >= 4 and words >= min_word_count * 1.5:
        score *= 1.5
    elif code >= 2 and headings >= 3 and words >= min_word_count:
        score *= 1.3
    if words < 50 or code == 0 or headings == 0:
        score *= 0.1
    return min(1.0, max(0.0, score))


def total_score(details: ScoreDetails, settings: ScoreSettings) -> float:
    if details.word_count == 0:
        return 0.0
    weights = settings.weights
    score = (
        details.freshness * weights.freshness
        + details.size * weights.size
        + (1.0 if details.language == "en" else 0.3) * weights.language
        + details.readability * weights.readability
        + details.completeness * weights.completeness
    )
    score **= 0.7
    if details.word_count < 50 or details.code_block_count == 0 or details.heading_count == 0:
        score *= 0.3
    return min(1.0, max(0.0, score))


def score_page(
    html: str, check: LinkCheck, settings: ScoreSettings, *, now: datetime | None = None
) -> DocsScore:
    """Score fetched HTML. Pure: the link check supplies Last-Modified."""
    stats = page_stats(html)
    details = ScoreDetails(
        freshness=freshness_score(check.last_modified, settings.max_age_days, now=now),
        size=size_score(stats.size_bytes, settings.min_size_bytes, settings.max_size_bytes),
        language=detect_language(stats.text),
        readability=readability_score(stats),
        completeness=completeness_score(stats, settings.min_word_count),
        word_count=stats.word_count,
        code_block_count=stats.code_blocks,
        heading_count=stats.headings,
        last_modified=check.last_modified,
    )
    return DocsScore(
        url=check.url, score=total_score(details, settings), check=check, details=details
    )


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


async def check_link(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float = 10.0,
    allowed_content_types: Iterable[str] = (),
    max_redirects: int = 5,
) -> LinkCheck:
    """HEAD the URL, following redirects, and report whether it looks usable.

    Never raises for network problems; they are reported in ``error``.
    Every redirect hop must point at a public address.
    """
    started = time.monotonic()

    def elapsed_ms() -> float:
        return round((time.monotonic() - started) * 1000, 1)

    current_url = url
    try:
        for hop in range(max_redirects + 1):
            if not is_url_allowed(current_url, frozenset(), allow_any_public=True):
                return LinkCheck(
                    url=url,
                    is_valid=False,
                    response_time_ms=elapsed_ms(),
                    error=f"URL not allowed: {current_url}",
                )
            response = await client.head(current_url, timeout=timeout_seconds)
            if response.is_redirect and "location" in response.headers and hop < max_redirects:
                current_url = urljoin(current_url, response.headers["location"])
                continue
            break
    except httpx.TimeoutException:
        return LinkCheck(
            url=url, is_valid=False, response_time_ms=elapsed_ms(), error="Request timed out"
        )
    except httpx.HTTPError as exc:
        log.warning("link_check_failed", url=url, error=str(exc))
        return LinkCheck(url=url, is_valid=False, response_time_ms=elapsed_ms(), error=str(exc))

    content_type = response.headers.get("content-type")
    error = None
    allowed = [t.lower() for t in allowed_content_types]
    if allowed and not (content_type and any(t in content_type.lower() for t in allowed)):
        error = "Invalid content type"
    if response.status_code >= 300:
        error = f"HTTP error: {response.status_code}"

    return LinkCheck(
        url=url,
        is_valid=error is None,
        status_code=response.status_code,
        content_type=content_type,
        response_time_ms=elapsed_ms(),
        last_modified=_parse_http_date(response.headers.get("last-modified")),
        error=error,
    )


class DocsScorer:
    """Check, fetch and score candidate documentation URLs."""

    def __init__(self, client: httpx.AsyncClient, settings: ScoreSettings) -> None:
        self._client = client
        self._settings = settings

    async def score_url(self, url: str) -> DocsScore:
        check = await check_link(
            self._client,
            url,
            timeout_seconds=self._settings.timeout_seconds,
            allowed_content_types=self._settings.allowed_content_types,
            max_redirects=self._settings.max_redirects,
        )
        if not check.is_valid:
            log.info("docs_url_invalid", url=url, error=check.error)
            return DocsScore(url=url, score=0.0, check=check)

        renderer = HttpRenderer(self._client, max_redirects=self._settings.max_redirects)
        try:
            page = await renderer.navigate(url)
        except NavigationError as exc:
            log.warning("docs_url_unreadable", url=url, error=exc.message)
            failed = check.model_copy(update={"is_valid": False, "error": exc.message})
            return DocsScore(url=url, score=0.0, check=failed)

        result = score_page(page.html, check, self._settings)
        log.debug("docs_url_scored", url=url, score=round(result.score, 3))
        return result

    async def score_urls(self, urls: Iterable[str]) -> list[DocsScore]:
        """Score every URL, best first. URLs are checked one after another."""
        scores = [await self.score_url(url) for url in urls]
        return sorted(scores, key=lambda result: result.score, reverse=True)


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
