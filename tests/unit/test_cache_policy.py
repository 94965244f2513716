"""Unit tests for docsfetch.cache_policy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from docsfetch.cache_policy import needs_update
from docsfetch.models.crawl import CacheMeta

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _meta(age_days: float, version: str | None = None) -> CacheMeta:
    return CacheMeta(
        last_fetched=NOW - timedelta(days=age_days),
        base_url="https://example.com/docs",
        project_name="pkg",
        version=version,
    )


class TestNeedsUpdate:
    def test_missing_meta(self) -> None:
        decision = needs_update("pkg", None, False, now=NOW)
        assert decision.needs_update
        assert decision.reason == "no cache"

    def test_fresh(self) -> None:
        decision = needs_update("pkg", _meta(2), False, now=NOW)
        assert not decision.needs_update
        assert decision.reason == "fresh"

    def test_stale(self) -> None:
        assert needs_update("pkg", _meta(31), False, now=NOW).needs_update

    def test_custom_max_age(self) -> None:
        assert needs_update("pkg", _meta(2), False, max_age_days=1, now=NOW).needs_update

    def test_force_always_wins(self) -> None:
        for meta in (None, _meta(0), _meta(100)):
            decision = needs_update("pkg", meta, True, now=NOW)
            assert decision.needs_update
            assert decision.reason == "forced"

    def test_version_change(self) -> None:
        decision = needs_update("pkg", _meta(1, "1.0.0"), False, current_version="2.0.0", now=NOW)
        assert decision.needs_update
        assert "1.0.0 -> 2.0.0" in decision.reason

    def test_unknown_version_does_not_trigger(self) -> None:
        assert not needs_update(
            "pkg", _meta(1, "1.0.0"), False, current_version="latest", now=NOW
        ).needs_update
        assert not needs_update(
            "pkg", _meta(1, None), False, current_version="2.0.0", now=NOW
        ).needs_update

    def test_legacy_last_updated_meta(self) -> None:
        legacy = CacheMeta.model_validate({"lastUpdated": (NOW - timedelta(days=1)).isoformat()})
        assert not needs_update("pkg", legacy, False, now=NOW).needs_update

    def test_naive_timestamp_treated_as_utc(self) -> None:
        meta = CacheMeta(last_fetched=(NOW - timedelta(days=1)).replace(tzinfo=None))
        assert not needs_update("pkg", meta, False, now=NOW).needs_update
