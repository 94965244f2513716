"""Crawl frontier: URL queue, visited set, depth bound and ordering counters."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from posixpath import splitext
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlsplit, urlunsplit

import structlog

from docsfetch.fetcher import is_host_allowed

if TYPE_CHECKING:
    from collections.abc import Iterable

log = structlog.get_logger()

OVERVIEW_SECTION = "overview"

DEFAULT_EXCLUDE_PATHS = ("/blog", "/news", "/community", "/download", "/changelog")

ASSET_EXTENSIONS = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".bmp",
        ".css", ".js", ".mjs", ".map", ".json", ".xml", ".txt",
        ".pdf", ".zip", ".gz", ".tgz", ".tar", ".mp4", ".webm", ".mp3",
        ".woff", ".woff2", ".ttf", ".eot", ".otf",
    }
)  # fmt: skip


@dataclass
class CrawlState:
    """Mutable per-package crawl state, owned by exactly one frontier.

    ``visited_urls`` only grows. A URL enters it when it is enqueued, so a page
    linked from several places is queued (and fetched) once.
    """

    visited_urls: set[str] = field(default_factory=set)
    url_queue: deque[str] = field(default_factory=deque)
    depths: dict[str, int] = field(default_factory=dict)
    section_order: dict[str, int] = field(default_factory=dict)
    page_order: dict[str, dict[str, int]] = field(default_factory=dict)
    dequeued: int = 0


def normalize_url(url: str, base: str | None = None) -> str | None:
    """Absolute form without fragment, query or trailing slash; None if unusable."""
    try:
        absolute = urljoin(base, url.strip()) if base else url.strip()
        parts = urlsplit(absolute)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


class UrlFrontier:
    """Breadth-first queue of documentation URLs for one package."""

    def __init__(
        self,
        base_url: str,
        *,
        max_depth: int = 3,
        limit: int = 15,
        allowed_domains: Iterable[str] = (),
        restrict_to_base_path: bool = True,
        exclude_paths: Iterable[str] = DEFAULT_EXCLUDE_PATHS,
        state: CrawlState | None = None,
    ) -> None:
        normalized = normalize_url(base_url)
        if normalized is None:
            raise ValueError(f"Invalid base URL: {base_url!r}")
        self.base_url = normalized
        base = urlsplit(normalized)
        self._base_host = base.hostname or ""
        # A start page like /guide/introduction.html scopes the crawl to /guide
        self._base_path = base.path.rsplit("/", 1)[0] if splitext(base.path)[1] else base.path
        self._allowed = frozenset(
            [self._base_host, *(d.lower() for d in allowed_domains)]
        )
        self._restrict_to_base_path = restrict_to_base_path
        self._exclude_paths = tuple(p.rstrip("/") for p in exclude_paths if p.strip("/"))
        self.max_depth = max_depth
        self.limit = limit
        self.state = state if state is not None else CrawlState()

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def add_to_queue(self, url: str, *, depth: int = 0, parent: str | None = None) -> bool:
        """Validate and enqueue url. Returns True when it was newly queued."""
        normalized = normalize_url(url, parent or self.base_url)
        if normalized is None or depth > self.max_depth:
            return False
        if normalized in self.state.visited_urls:
            return False
        if not self.is_crawlable(normalized):
            return False

        self.state.visited_urls.add(normalized)
        self.state.url_queue.append(normalized)
        self.state.depths[normalized] = depth
        log.debug("url_enqueued", url=normalized, depth=depth)
        return True

    def enqueue_links(self, parent_url: str, links: Iterable[str]) -> int:
        """Queue links found on parent_url one hop deeper. Returns count added."""
        depth = self.depth_of(parent_url) + 1
        if depth > self.max_depth:
            return 0
        return sum(1 for link in links if self.add_to_queue(link, depth=depth, parent=parent_url))

    def has_next(self) -> bool:
        return bool(self.state.url_queue) and self.state.dequeued < self.limit

    def next(self) -> str:
        if not self.has_next():
            raise IndexError("Crawl frontier is exhausted")
        self.state.dequeued += 1
        return self.state.url_queue.popleft()

    def depth_of(self, url: str) -> int:
        normalized = normalize_url(url, self.base_url) or url
        return self.state.depths.get(normalized, 0)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def is_crawlable(self, normalized_url: str) -> bool:
        parts = urlsplit(normalized_url)
        if parts.scheme not in ("http", "https"):
            return False
        if not is_host_allowed(parts.hostname or "", self._allowed):
            return False
        path = parts.path
        if splitext(path)[1].lower() in ASSET_EXTENSIONS:
            return False
        if any(_has_prefix(path, excluded) for excluded in self._exclude_paths):
            return False
        # Subtree restriction only applies on the base host
        return not (
            self._restrict_to_base_path
            and parts.hostname == self._base_host
            and self._base_path
            and not _has_prefix(path, self._base_path)
        )

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def path_segments(self, url: str) -> list[str]:
        """Path segments below the base path (all segments on other hosts)."""
        parts = urlsplit(url)
        path = parts.path.rstrip("/")
        if parts.hostname == self._base_host and _has_prefix(path, self._base_path):
            path = path[len(self._base_path) :]
        return [segment for segment in path.split("/") if segment]

    def section_for(self, url: str) -> str:
        segments = self.path_segments(url)
        return segments[0] if segments else OVERVIEW_SECTION

    def get_section_number(self, section: str) -> int:
        order = self.state.section_order
        if section not in order:
            order[section] = len(order) + 1
        return order[section]

    def get_page_number(self, section: str, url: str) -> int:
        pages = self.state.page_order.setdefault(section, {})
        if url not in pages:
            pages[url] = len(pages) + 1
        return pages[url]


def _has_prefix(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")
