"""Application state container.

AppState is created once at CLI startup, after settings are loaded, and
handed to the command that runs. It owns the shared HTTP client, which the
CLI closes on exit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from docsfetch.config import Settings
    from docsfetch.crawler import DocsCrawler
    from docsfetch.resolver import DocsResolver
    from docsfetch.scoring import DocsScorer
    from docsfetch.storage import StorageManager


@dataclass
class AppState:
    """Holds all shared runtime state for one CLI invocation."""

    settings: Settings
    http_client: httpx.AsyncClient
    storage: StorageManager
    resolver: DocsResolver
    crawler: DocsCrawler
    scorer: DocsScorer
