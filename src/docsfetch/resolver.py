"""Documentation URL resolution.

Static table first, then a package-registry metadata lookup. Every outcome,
positive or negative, is recorded through the storage layer so that a
package whose search failed is skipped on later runs instead of hitting the
registry again.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlparse

import httpx
import structlog

from docsfetch.errors import ResolutionError
from docsfetch.fetcher import backoff_delay, is_url_allowed
from docsfetch.models.package import ResolutionRecord

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from docsfetch.models.package import Ecosystem
    from docsfetch.storage import StorageManager

log = structlog.get_logger()

DEFAULT_KNOWN_DOCS: Mapping[str, str] = MappingProxyType(
    {
        "next": "https://nextjs.org/docs",
        "react": "https://react.dev/reference/react",
        "vue": "https://vuejs.org/guide/introduction.html",
        "@angular/core": "https://angular.dev/overview",
        "svelte": "https://svelte.dev/docs",
        "typescript": "https://www.typescriptlang.org/docs/",
        "payload": "https://payloadcms.com/docs",
        "prisma": "https://www.prisma.io/docs",
        "@prisma/client": "https://www.prisma.io/docs",
        "react-hook-form": "https://react-hook-form.com/docs",
        "tailwindcss": "https://tailwindcss.com/docs",
        "vitest": "https://vitest.dev/guide/",
        "zod": "https://zod.dev",
    }
)

_DOC_HOST_MARKERS = (
    "docs.",
    "documentation.",
    "developer.",
    "developers.",
    "wiki.",
    "github.io",
    "readthedocs.io",
    "gitbook.io",
)
_DOC_PATH_MARKERS = ("/docs", "/documentation", "/wiki/", "/guide", "/manual")


def is_docs_url(url: str) -> bool:
    """Heuristic: does this URL look like a documentation site?"""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    hostname = parsed.hostname.lower()
    return any(marker in hostname for marker in _DOC_HOST_MARKERS) or any(
        marker in parsed.path for marker in _DOC_PATH_MARKERS
    )


def clean_repository_url(raw: str) -> str | None:
    """``git+https://github.com/a/b.git`` → ``https://github.com/a/b``."""
    url = raw.strip()
    if url.startswith("github:"):
        url = "https://github.com/" + url.removeprefix("github:")
    url = url.removeprefix("git+")
    if url.startswith("git://"):
        url = "https://" + url.removeprefix("git://")
    if url.startswith("ssh://git@"):
        url = "https://" + url.removeprefix("ssh://git@")
    url = url.removesuffix(".git")
    return url if url.startswith(("http://", "https://")) else None


def extract_candidate_urls(data: dict[str, Any]) -> tuple[list[str], str | None]:
    """Pull documentation candidates out of registry metadata.

    Understands both the npm document shape and the PyPI JSON API shape.
    Returns (candidates in preference order, homepage).
    """
    candidates: list[str] = []
    homepage: str | None = None

    if isinstance(data.get("info"), dict):
        info = data["info"]
        project_urls = info.get("project_urls") or {}
        for key, value in project_urls.items():
            if key.lower() in ("documentation", "docs"):
                candidates.append(value)
        homepage = info.get("home_page") or project_urls.get("Homepage")
        candidates.extend(project_urls.values())
    else:
        latest_tag = (data.get("dist-tags") or {}).get("latest")
        latest = (data.get("versions") or {}).get(latest_tag or "", {})
        for source in (latest, data):
            documentation = source.get("documentation")
            if isinstance(documentation, str):
                candidates.append(documentation)
        homepage = latest.get("homepage") or data.get("homepage")
        repository = latest.get("repository") or data.get("repository")
        repo_url = repository.get("url") if isinstance(repository, dict) else repository
        if homepage:
            candidates.append(homepage)
        if isinstance(repo_url, str):
            cleaned = clean_repository_url(repo_url)
            if cleaned:
                candidates.append(cleaned)

    unique: list[str] = []
    for candidate in candidates:
        if isinstance(candidate, str) and candidate and candidate not in unique:
            unique.append(candidate)
    return unique, homepage if isinstance(homepage, str) else None


class DocsResolver:
    """Resolve a package name to a documentation root URL, or None.

    npm packages are looked up on the npm registry and Python packages on
    PyPI. Records for PyPI names are stored under a ``pypi:`` prefix so the
    same name in both ecosystems keeps separate history.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        storage: StorageManager,
        *,
        registry_url: str = "https://registry.npmjs.org/{name}",
        pypi_url: str = "https://pypi.org/pypi/{name}/json",
        known_docs: Mapping[str, str] = DEFAULT_KNOWN_DOCS,
        allowed_domains: Iterable[str] = (),
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
    ) -> None:
        self._client = client
        self._storage = storage
        self._registry_urls: dict[Ecosystem, str] = {
            "npm": _with_name_placeholder(registry_url),
            "pypi": _with_name_placeholder(pypi_url),
        }
        self._known_docs = MappingProxyType(dict(known_docs))
        self._allowlist = frozenset(d.lower() for d in allowed_domains)
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._records: dict[str, ResolutionRecord] | None = None

    @property
    def records(self) -> dict[str, ResolutionRecord]:
        if self._records is None:
            self._records = self._storage.load_resolution_records()
        return self._records

    async def resolve_docs_url(
        self,
        package_name: str,
        *,
        ecosystem: Ecosystem = "npm",
        refresh: bool = False,
    ) -> str | None:
        """Return a validated documentation URL, or None when none can be found.

        A previously failed search is not retried unless ``refresh`` is set.
        """
        bound = log.bind(package=package_name, ecosystem=ecosystem)

        known = self._known_docs.get(package_name)
        if known is not None:
            if self._is_allowed(known):
                bound.debug("docs_url_resolved", source="known", url=known)
                return known
            bound.warning("docs_url_rejected", source="known", url=known)

        key = record_key(package_name, ecosystem)
        record = self.records.get(key)
        if record is not None and record.search_attempted and not refresh:
            cached_url = record.docs_url
            if record.search_error is None and cached_url and self._is_allowed(cached_url):
                bound.debug("docs_url_resolved", source="record", url=cached_url)
                return cached_url
            if record.search_error is not None:
                bound.info(
                    "docs_url_skipped",
                    reason="previous_search_failed",
                    error=record.search_error,
                )
                return None

        url, error = await self._search_registry(package_name, ecosystem)
        self._record(key, docs_url=url, search_error=error)
        if url is None:
            bound.warning("docs_url_unresolved", error=error)
        else:
            bound.info("docs_url_resolved", source="registry", url=url)
        return url

    async def candidate_urls(self, package_name: str, *, ecosystem: Ecosystem = "npm") -> list[str]:
        """Every allowed documentation candidate for a package, best guess first.

        The known-docs entry comes first, then registry candidates that look
        like documentation, then the remaining ones. Raises ResolutionError
        when the registry lookup itself fails.
        """
        urls: list[str] = []
        known = self._known_docs.get(package_name)
        if known is not None and self._is_allowed(known):
            urls.append(known)

        data, error = await self._fetch_metadata(package_name, ecosystem)
        if data is None:
            if urls:
                return urls
            raise ResolutionError(
                f"Could not look up {package_name}: {error}",
                suggestion="Check the package name, or pass a URL with fetch --url.",
            )

        candidates, _homepage = extract_candidate_urls(data)
        ranked = sorted(candidates, key=lambda candidate: not is_docs_url(candidate))
        for candidate in ranked:
            if candidate not in urls and self._is_allowed(candidate):
                urls.append(candidate)
        return urls

    # ------------------------------------------------------------------

    async def _search_registry(
        self, package_name: str, ecosystem: Ecosystem
    ) -> tuple[str | None, str | None]:
        data, error = await self._fetch_metadata(package_name, ecosystem)
        if data is None:
            return None, error

        candidates, homepage = extract_candidate_urls(data)
        for candidate in candidates:
            if is_docs_url(candidate) and self._is_allowed(candidate):
                return candidate, None
        if homepage and self._is_allowed(homepage):
            return homepage, None
        return None, "no documentation URL in registry metadata"

    async def _fetch_metadata(
        self, package_name: str, ecosystem: Ecosystem
    ) -> tuple[dict[str, Any] | None, str | None]:
        """Registry document for a package, or (None, reason)."""
        url = self._registry_urls[ecosystem].format(name=quote(package_name, safe="@"))
        try:
            response = await self._get_with_retry(url)
        except httpx.HTTPError as exc:
            return None, f"registry lookup failed: {exc}"

        if response.status_code == 404:
            return None, "package not found in registry"
        if not response.is_success:
            return None, f"registry returned HTTP {response.status_code}"

        try:
            data = response.json()
        except ValueError:
            return None, "registry returned invalid JSON"
        if not isinstance(data, dict):
            return None, "registry returned unexpected payload"
        return data, None

    async def _get_with_retry(self, url: str) -> httpx.Response:
        """GET with up to ``max_retries`` retries after the first attempt."""
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.get(
                    url, timeout=self._timeout, follow_redirects=True
                )
            except httpx.HTTPError as exc:
                if attempt == attempts:
                    raise
                delay = backoff_delay(attempt)
                log.warning(
                    "registry_lookup_retry",
                    url=url,
                    attempt=attempt,
                    delay_seconds=round(delay, 2),
                    error=str(exc),
                )
                await asyncio.sleep(delay)
                continue
            if response.status_code >= 500 and attempt < attempts:
                await asyncio.sleep(backoff_delay(attempt))
                continue
            return response
        # Unreachable but satisfies the type checker
        raise httpx.HTTPError(f"Registry lookup exhausted retries for {url}")

    def _is_allowed(self, url: str) -> bool:
        return is_url_allowed(url, self._allowlist, allow_any_public=not self._allowlist)

    def _record(self, key: str, *, docs_url: str | None, search_error: str | None) -> None:
        self.records[key] = ResolutionRecord(
            name=key,
            docs_url=docs_url,
            search_attempted=True,
            search_error=search_error,
            last_attempted=datetime.now(UTC),
        )
        self._storage.save_resolution_records(self.records)


def record_key(package_name: str, ecosystem: Ecosystem) -> str:
    """Key in ``package-docs.json``: bare name for npm, ``pypi:<name>`` for PyPI."""
    return package_name if ecosystem == "npm" else f"{ecosystem}:{package_name}"


def _with_name_placeholder(url: str) -> str:
    return url if "{name}" in url else url.rstrip("/") + "/{name}"
