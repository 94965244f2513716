"""Freshness decision for a package's cached documentation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from docsfetch.models.crawl import UpdateDecision

if TYPE_CHECKING:
    from docsfetch.models.crawl import CacheMeta

UNKNOWN_VERSIONS = frozenset({"", "latest", "*"})


def needs_update(
    package_name: str,
    cache_meta: CacheMeta | None,
    force: bool,
    *,
    max_age_days: float = 30,
    current_version: str | None = None,
    now: datetime | None = None,
) -> UpdateDecision:
    """Decide whether package_name must be recrawled.

    Pure function: the only inputs are the arguments. ``now`` defaults to the
    current UTC time and exists so callers can pin the clock.
    """
    if force:
        return UpdateDecision(needs_update=True, reason="forced")
    if cache_meta is None:
        return UpdateDecision(needs_update=True, reason="no cache")

    now = now or datetime.now(UTC)
    last_fetched = cache_meta.last_fetched
    if last_fetched.tzinfo is None:
        last_fetched = last_fetched.replace(tzinfo=UTC)
    age = now - last_fetched
    if age > timedelta(days=max_age_days):
        return UpdateDecision(
            needs_update=True,
            reason=f"cache is {age.days} days old (max {max_age_days:g})",
        )

    if (
        current_version is not None
        and cache_meta.version is not None
        and current_version not in UNKNOWN_VERSIONS
        and cache_meta.version not in UNKNOWN_VERSIONS
        and current_version != cache_meta.version
    ):
        return UpdateDecision(
            needs_update=True,
            reason=f"{package_name} version changed {cache_meta.version} -> {current_version}",
        )

    return UpdateDecision(needs_update=False, reason="fresh")
