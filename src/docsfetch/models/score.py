from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class LinkCheck(BaseModel):
    """Result of a HEAD request against a candidate documentation URL."""

    model_config = ConfigDict(frozen=True)

    url: str
    is_valid: bool
    status_code: int | None = None
    content_type: str | None = None
    response_time_ms: float = 0.0
    last_modified: datetime | None = None
    error: str | None = None


class ScoreDetails(BaseModel):
    """Per-criterion scores in [0, 1], plus the raw counts behind them."""

    model_config = ConfigDict(frozen=True)

    freshness: float
    size: float
    language: str
    readability: float
    completeness: float
    word_count: int = 0
    code_block_count: int = 0
    heading_count: int = 0
    last_modified: datetime | None = None


class DocsScore(BaseModel):
    """Quality score of one documentation URL. ``details`` is None when unreachable."""

    model_config = ConfigDict(frozen=True)

    url: str
    score: float
    check: LinkCheck
    details: ScoreDetails | None = None
