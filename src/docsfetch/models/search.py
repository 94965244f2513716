from __future__ import annotations

from pydantic import BaseModel


class SearchResult(BaseModel):
    """Single hit returned by a cache search."""

    package: str
    url: str
    title: str
    path: str  # Cached HTML file
    snippet: str
    score: float
