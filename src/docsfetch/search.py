"""Keyword search over cached documentation pages."""

from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING

import structlog
from bs4 import BeautifulSoup

from docsfetch.models.search import SearchResult

if TYPE_CHECKING:
    from pathlib import Path

    from docsfetch.storage import StorageManager

log = structlog.get_logger()

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
        "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
        "to", "was", "were", "will", "with",
    }
)  # fmt: skip

SNIPPET_LENGTH = 150
_NON_WORD = re.compile(r"\W+")
_WHITESPACE = re.compile(r"\s+")


def tokenize(text: str) -> list[str]:
    return [term for term in _NON_WORD.split(text.lower()) if term and term not in STOP_WORDS]


def extract_text(html: str) -> str:
    """Visible text of a page with scripts, styles and navigation removed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "nav", "noscript", "template"]):
        tag.decompose()
    return _WHITESPACE.sub(" ", soup.get_text(" ")).strip()


def score_document(terms: list[str], title: str, content: str) -> float:
    """Relevance of one document; 0 when nothing matches.

    Title hits weigh 3, content hits grow with log2(count + 1) so long pages
    do not dominate, and documents matching every term get a 1.5x boost.
    """
    if not terms:
        return 0.0
    title = title.lower()
    content = content.lower()

    score = 0.0
    matched = 0
    for term in terms:
        term_score = 0.0
        if term in title:
            term_score += 3
        count = content.count(term)
        if count:
            term_score += math.log2(count + 1)
        if term_score > 0:
            matched += 1
            score += term_score

    if matched == len(terms):
        score *= 1.5
    return score / len(terms)


def extract_snippet(content: str, terms: list[str], length: int = SNIPPET_LENGTH) -> str:
    """About ``length`` characters of content centred on the first term hit."""
    lowered = content.lower()
    hits = [pos for pos in (lowered.find(term) for term in terms) if pos >= 0]
    if not hits:
        return content[:length].strip()
    first = min(hits)
    start = max(0, min(first - length // 2, len(content) - length))
    snippet = content[start : start + length].strip()
    if start > 0:
        snippet = "…" + snippet
    if start + length < len(content):
        snippet += "…"
    return snippet


def search_cache(
    storage: StorageManager,
    query: str,
    *,
    package: str | None = None,
    max_results: int = 10,
    min_score: float = 0.3,
) -> list[SearchResult]:
    """Rank cached pages against query, best first."""
    terms = tokenize(query)
    if not terms:
        return []

    results: list[SearchResult] = []
    for package_dir, metadata, html_path in storage.iter_documents(package):
        content = _read_text(html_path)
        if content is None:
            continue
        score = score_document(terms, metadata.title, content)
        if score < min_score:
            continue
        results.append(
            SearchResult(
                package=package_dir,
                url=metadata.url,
                title=metadata.title,
                path=str(html_path),
                snippet=extract_snippet(content, terms),
                score=round(score, 4),
            )
        )

    results.sort(key=lambda r: (-r.score, r.package, r.path))
    log.debug("search_completed", query=query, terms=terms, matches=len(results))
    return results[:max_results]


def _read_text(html_path: Path) -> str | None:
    try:
        return extract_text(html_path.read_text(encoding="utf-8", errors="replace"))
    except OSError as exc:
        log.warning("document_unreadable", path=str(html_path), error=str(exc))
        return None
