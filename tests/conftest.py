"""Shared test fixtures for the docsfetch test suite."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
import structlog

from docsfetch.config import CrawlSettings
from docsfetch.storage import StorageManager
from tests.fakes import FakeRenderer, make_page

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from docsfetch.models.crawl import FetchedPage


@pytest.fixture()
def docs_site() -> dict[str, FetchedPage | BaseException]:
    """Start page at /docs linking to two pages one hop down."""
    return {
        "https://example.com/docs": make_page(
            "https://example.com/docs",
            "Introduction",
            ["/docs/guide/install", "https://example.com/docs/api/client#usage"],
            body="Welcome to the example documentation.",
        ),
        "https://example.com/docs/guide/install": make_page(
            "https://example.com/docs/guide/install",
            "Installation",
            ["/docs", "/blog/release"],
            body="Install the client with npm install example.",
        ),
        "https://example.com/docs/api/client": make_page(
            "https://example.com/docs/api/client",
            "Client API",
            ["/docs/guide/install"],
            body="The client exposes a request method.",
        ),
    }


@pytest.fixture()
def fake_renderer(docs_site: dict[str, FetchedPage | BaseException]) -> FakeRenderer:
    return FakeRenderer(docs_site)


@pytest.fixture()
def crawl_settings() -> CrawlSettings:
    """Crawl settings with no inter-request delay and no retries."""
    return CrawlSettings(delay_ms=0, max_retries=0, limit=10, navigation_timeout_seconds=5)


@pytest.fixture()
def storage(tmp_path: Path) -> StorageManager:
    return StorageManager(tmp_path / "cache")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep DOCSFETCH__* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.upper().startswith("DOCSFETCH__"):
            monkeypatch.delenv(key)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo any structlog.configure() a test triggered through the CLI.

    The CLI binds its logger to the sys.stderr of the moment, which under
    pytest is a capture stream closed at the end of the test.
    """
    yield
    structlog.reset_defaults()
