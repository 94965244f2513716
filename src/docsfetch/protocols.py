"""Protocol interfaces for swappable components.

The crawler references these protocols, not the concrete implementations.
This allows:
- Tests to drive a crawl with an in-memory fake site
- A plain HTTP renderer for static sites and a headless browser for
  JavaScript-rendered ones, selected by configuration
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from types import TracebackType

    from docsfetch.models.crawl import FetchedPage


class PageRenderer(Protocol):
    """Navigates to a URL and returns its rendered HTML, title and links.

    Used as an async context manager: entering acquires the underlying
    resource (browser process, tab), exiting releases it on every path.
    Raises NavigationError for per-page failures.
    """

    async def __aenter__(self) -> PageRenderer: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...

    async def navigate(self, url: str) -> FetchedPage: ...
