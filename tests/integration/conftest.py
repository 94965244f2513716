"""Integration test fixtures.

Wires a DocsCrawler to real storage under tmp_path, a fake in-memory docs
site (tests/conftest.py: docs_site, fake_renderer) and a table-driven
resolver, so full crawls run without a browser or network.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from docsfetch.crawler import DocsCrawler
from tests.fakes import TableResolver

if TYPE_CHECKING:
    from docsfetch.config import CrawlSettings
    from docsfetch.storage import StorageManager
    from tests.fakes import FakeRenderer

BASE_URL = "https://example.com/docs"


@pytest.fixture()
def resolver() -> TableResolver:
    return TableResolver({"example": BASE_URL})


@pytest.fixture()
def crawler(
    storage: StorageManager,
    resolver: TableResolver,
    fake_renderer: FakeRenderer,
    crawl_settings: CrawlSettings,
) -> DocsCrawler:
    return DocsCrawler(
        storage,
        resolver,  # type: ignore[arg-type]
        lambda: fake_renderer,
        crawl_settings,
    )
