from __future__ import annotations

from docsfetch.models.crawl import (
    CacheMeta,
    CrawlStatus,
    CrawlSummary,
    DocumentMetadata,
    FetchedPage,
    RunSummary,
    UpdateDecision,
)
from docsfetch.models.package import Ecosystem, PackageInfo, ResolutionRecord
from docsfetch.models.score import DocsScore, LinkCheck, ScoreDetails
from docsfetch.models.search import SearchResult

__all__ = [
    # package
    "Ecosystem",
    "PackageInfo",
    "ResolutionRecord",
    # crawl
    "FetchedPage",
    "DocumentMetadata",
    "CacheMeta",
    "UpdateDecision",
    "CrawlStatus",
    "CrawlSummary",
    "RunSummary",
    # search
    "SearchResult",
    # score
    "LinkCheck",
    "ScoreDetails",
    "DocsScore",
]
