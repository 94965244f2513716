"""Crawl orchestration.

Per package: URL resolution → cache policy check → frontier / fetcher loop,
with every fetched page handed to the storage manager → package metadata.
Packages are processed one after another; pages within a package too.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from docsfetch.cache_policy import UNKNOWN_VERSIONS, needs_update
from docsfetch.errors import (
    FATAL_ERRORS,
    DocsFetchError,
    ErrorCode,
    ResolutionError,
    StorageError,
)
from docsfetch.fetcher import PageFetcher, is_url_allowed
from docsfetch.frontier import UrlFrontier
from docsfetch.models.crawl import CacheMeta, CrawlSummary, DocumentMetadata, RunSummary
from docsfetch.models.package import PackageInfo

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from docsfetch.config import CrawlSettings
    from docsfetch.models.crawl import FetchedPage
    from docsfetch.protocols import PageRenderer
    from docsfetch.resolver import DocsResolver
    from docsfetch.storage import StorageManager

log = structlog.get_logger()


class DocsCrawler:
    def __init__(
        self,
        storage: StorageManager,
        resolver: DocsResolver,
        renderer_factory: Callable[[], PageRenderer],
        crawl: CrawlSettings,
        *,
        max_age_days: float = 30,
    ) -> None:
        self._storage = storage
        self._resolver = resolver
        self._renderer_factory = renderer_factory
        self._crawl = crawl
        self._max_age_days = max_age_days

    async def run_all(
        self,
        packages: Iterable[PackageInfo],
        *,
        force: bool = False,
        limit: int | None = None,
    ) -> RunSummary:
        """Fetch docs for every package. One package failing never stops the run."""
        summary = RunSummary()
        for package in packages:
            try:
                result = await self.fetch_package(package, force=force, limit=limit)
            except FATAL_ERRORS:
                raise
            except DocsFetchError as exc:
                log.error(
                    "package_failed",
                    package=package.name,
                    code=exc.code,
                    error=exc.message,
                )
                result = CrawlSummary(package=package.name, status="failed", reason=exc.message)
            summary.results.append(result)

        log.info(
            "run_completed",
            packages=len(summary.results),
            crawled=summary.count("crawled"),
            fresh=summary.count("fresh"),
            unresolved=summary.count("unresolved"),
            failed=summary.count("failed"),
            pages_saved=summary.pages_saved,
        )
        return summary

    async def fetch_package(
        self,
        package: PackageInfo | str,
        *,
        docs_url: str | None = None,
        force: bool = False,
        limit: int | None = None,
    ) -> CrawlSummary:
        """Resolve (unless docs_url is given) and crawl one package."""
        if isinstance(package, str):
            package = PackageInfo(name=package, path="")

        if docs_url is None:
            docs_url = await self._resolver.resolve_docs_url(
                package.name, ecosystem=package.ecosystem, refresh=force
            )
            if docs_url is None:
                log.warning("package_skipped", package=package.name, reason="unresolved")
                return CrawlSummary(
                    package=package.name,
                    status="unresolved",
                    reason="no documentation URL found",
                )

        return await self.crawl_package(package, docs_url, force=force, limit=limit)

    async def crawl_package(
        self,
        package: PackageInfo,
        docs_url: str,
        *,
        force: bool = False,
        limit: int | None = None,
    ) -> CrawlSummary:
        """Crawl docs_url into the cache for package, unless the cache is fresh.

        A StorageError aborts the package: the result is ``failed`` and no
        package metadata is written, so the next run starts over.
        """
        name = package.name
        bound = log.bind(package=name)
        version = None if package.version in UNKNOWN_VERSIONS else package.version

        decision = needs_update(
            name,
            self._storage.load_meta(name),
            force,
            max_age_days=self._max_age_days,
            current_version=version,
        )
        if not decision.needs_update:
            bound.info("package_skipped", reason=decision.reason)
            return CrawlSummary(
                package=name, status="fresh", reason=decision.reason, docs_url=docs_url
            )

        if not is_url_allowed(docs_url, frozenset(), allow_any_public=True):
            raise ResolutionError(
                f"Documentation URL not allowed: {docs_url}",
                code=ErrorCode.URL_NOT_ALLOWED,
                suggestion="Use a public http(s) URL.",
            )

        frontier = UrlFrontier(
            docs_url,
            max_depth=self._crawl.max_depth,
            limit=limit or self._crawl.limit,
            allowed_domains=self._crawl.allowed_domains,
            restrict_to_base_path=self._crawl.restrict_to_base_path,
            exclude_paths=self._crawl.exclude_paths,
        )
        frontier.add_to_queue(frontier.base_url)
        bound.info(
            "crawl_started",
            url=frontier.base_url,
            reason=decision.reason,
            limit=frontier.limit,
        )

        saved: list[Path] = []
        failures: list[str] = []
        try:
            self._storage.clear_package_dir(name)
            async with self._renderer_factory() as renderer:
                fetcher = PageFetcher(
                    renderer,
                    delay_ms=self._crawl.delay_ms,
                    timeout_seconds=self._crawl.navigation_timeout_seconds,
                    max_retries=self._crawl.max_retries,
                )
                failures = fetcher.failures
                while frontier.has_next():
                    url = frontier.next()
                    page = await fetcher.fetch_page(url)
                    if page is None:
                        continue
                    path = self._save_page(name, frontier, url, page)
                    saved.append(path)
                    added = frontier.enqueue_links(url, await fetcher.extract_links(url))
                    bound.info("page_saved", url=url, path=str(path), links_added=added)

            if not saved:
                bound.error("crawl_failed", url=frontier.base_url, pages_failed=len(failures))
                return CrawlSummary(
                    package=name,
                    status="failed",
                    reason="no pages could be fetched",
                    docs_url=frontier.base_url,
                    pages_failed=len(failures),
                )

            self._storage.save_meta(
                name,
                CacheMeta(
                    last_fetched=datetime.now(UTC),
                    base_url=frontier.base_url,
                    project_name=name,
                    version=version,
                    pages_saved=len(saved),
                    pages_failed=len(failures),
                    complete=not failures,
                ),
            )
        except StorageError as exc:
            bound.error("crawl_aborted", code=exc.code, error=exc.message)
            return CrawlSummary(
                package=name,
                status="failed",
                reason=exc.message,
                docs_url=frontier.base_url,
                pages_saved=len(saved),
                pages_failed=len(failures),
                saved_paths=[str(p) for p in saved],
            )

        bound.info(
            "crawl_completed",
            pages_saved=len(saved),
            pages_failed=len(failures),
            sections=len(frontier.state.section_order),
        )
        return CrawlSummary(
            package=name,
            status="crawled",
            reason=decision.reason,
            docs_url=frontier.base_url,
            pages_saved=len(saved),
            pages_failed=len(failures),
            saved_paths=[str(p) for p in saved],
        )

    def _save_page(self, name: str, frontier: UrlFrontier, url: str, page: FetchedPage) -> Path:
        section = frontier.section_for(url)
        segments = frontier.path_segments(url)
        section_number = frontier.get_section_number(section)
        page_number = frontier.get_page_number(section, url)
        title = page.title.strip() or (segments[-1] if segments else section)
        metadata = DocumentMetadata(
            url=url,
            title=title,
            fetched_at=datetime.now(UTC),
            path_segments=segments,
            category=section,
            section_number=section_number,
            page_number=page_number,
            depth=frontier.depth_of(url),
        )
        return self._storage.save_document(
            name, section, title, page.html, metadata, section_number, page_number
        )
