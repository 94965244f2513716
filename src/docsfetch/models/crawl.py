from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

_ON_DISK = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class FetchedPage(BaseModel):
    """Rendered HTML plus the outbound links found on it."""

    model_config = ConfigDict(frozen=True)

    url: str
    html: str
    title: str = ""
    links: list[str] = []


class DocumentMetadata(BaseModel):
    """Sidecar record written next to every saved page (``*.meta.json``)."""

    model_config = _ON_DISK

    url: str
    title: str
    fetched_at: datetime
    path_segments: list[str] = []
    category: str
    section_number: int | None = None
    page_number: int | None = None
    depth: int = 0


class CacheMeta(BaseModel):
    """Package-level ``meta.json``: when and from where the docs were crawled."""

    model_config = _ON_DISK

    last_fetched: datetime
    base_url: str = ""
    project_name: str = ""
    version: str | None = None
    pages_saved: int = 0
    pages_failed: int = 0
    complete: bool = True

    @model_validator(mode="before")
    @classmethod
    def _accept_last_updated(cls, data: Any) -> Any:
        # Older caches only carry {"lastUpdated": ...}
        if isinstance(data, dict) and "lastFetched" not in data and "last_fetched" not in data:
            if "lastUpdated" in data:
                data = {**data, "lastFetched": data["lastUpdated"]}
        return data


class UpdateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    needs_update: bool
    reason: str


CrawlStatus = Literal["crawled", "fresh", "unresolved", "failed"]


class CrawlSummary(BaseModel):
    """Outcome of processing one package."""

    package: str
    status: CrawlStatus
    reason: str = ""
    docs_url: str | None = None
    pages_saved: int = 0
    pages_failed: int = 0
    saved_paths: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Outcome of a multi-package run."""

    results: list[CrawlSummary] = Field(default_factory=list)

    @property
    def pages_saved(self) -> int:
        return sum(r.pages_saved for r in self.results)

    def count(self, status: CrawlStatus) -> int:
        return sum(1 for r in self.results if r.status == status)
