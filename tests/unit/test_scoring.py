"""Unit tests for docsfetch.scoring."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import httpx
import pytest
import respx

from docsfetch.config import ScoreSettings
from docsfetch.models.score import LinkCheck
from docsfetch.scoring import (
    DocsScorer,
    check_link,
    completeness_score,
    detect_language,
    freshness_score,
    page_stats,
    readability_score,
    score_page,
    size_score,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

NOW = datetime(2026, 6, 1, tzinfo=UTC)

PARAGRAPH = (
    "This guide shows you how to install the client and make your first request. "
    "You can configure the timeout for each call and the client will retry when "
    "the server is busy. It is the best way to get started with the library. "
)

RICH_PAGE = (
    "<html><body><nav>Home Docs Blog</nav><main>"
    "<h1>Getting started</h1>"
    f"<p>{PARAGRAPH}</p><p>{PARAGRAPH}</p>"
    "<h2>Install</h2><pre>npm install example</pre>"
    f"<p>{PARAGRAPH}</p>"
    "<h2>Usage</h2><pre>client.request('/users')</pre>"
    "<ul><li>Fast</li><li>Typed</li></ul>"
    f"<h2>Configuration</h2><p>{PARAGRAPH}</p><pre>client.timeout = 5</pre>"
    f"<h2>Errors</h2><p>{PARAGRAPH}</p>"
    "</main></body></html>"
)

THIN_PAGE = "<html><body><main><p>Coming soon.</p></main></body></html>"


def _check(url: str = "https://example.com/docs", **kwargs) -> LinkCheck:
    return LinkCheck(url=url, is_valid=True, status_code=200, **kwargs)


@pytest.fixture()
async def client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as http_client:
        yield http_client


# ---------------------------------------------------------------------------
# Criteria
# ---------------------------------------------------------------------------


class TestPageStats:
    def test_counts_main_content_only(self) -> None:
        stats = page_stats(RICH_PAGE)
        assert stats.headings == 5
        assert stats.code_blocks == 3
        assert stats.list_items == 2
        assert stats.paragraphs == 5
        assert "Home Docs Blog" not in stats.text


class TestFreshness:
    def test_unknown_age_is_neutral(self) -> None:
        assert freshness_score(None, 365, now=NOW) == 0.5

    def test_decays_linearly(self) -> None:
        half_year = NOW - timedelta(days=182.5)
        assert freshness_score(half_year, 365, now=NOW) == pytest.approx(0.5)

    def test_clamped(self) -> None:
        assert freshness_score(NOW - timedelta(days=1000), 365, now=NOW) == 0.0
        assert freshness_score(NOW + timedelta(days=3), 365, now=NOW) == 1.0


class TestSize:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [(0, 0.0), (500, 0.3), (2_000_000, 0.5), (2000, 1.0)],
    )
    def test_bands(self, size: int, expected: float) -> None:
        assert size_score(size, 1000, 1_000_000) == pytest.approx(expected)


class TestLanguage:
    def test_english(self) -> None:
        assert detect_language(PARAGRAPH) == "en"

    def test_other(self) -> None:
        assert detect_language("Dieses Handbuch erklärt Installation und Konfiguration") == (
            "unknown"
        )

    def test_empty(self) -> None:
        assert detect_language("") == "unknown"


class TestStructureScores:
    def test_rich_page_beats_thin_page(self) -> None:
        rich, thin = page_stats(RICH_PAGE), page_stats(THIN_PAGE)
        assert readability_score(rich) > readability_score(thin)
        assert completeness_score(rich, 100) > completeness_score(thin, 100)

    def test_missing_code_is_penalised(self) -> None:
        no_code = page_stats(RICH_PAGE.replace("<pre>", "<p>").replace("</pre>", "</p>"))
        assert completeness_score(no_code, 100) < completeness_score(page_stats(RICH_PAGE), 100)

    def test_scores_stay_in_range(self) -> None:
        stats = page_stats(RICH_PAGE)
        assert 0 <= readability_score(stats) <= 1
        assert 0 <= completeness_score(stats, 1) <= 1


class TestScorePage:
    def test_rich_page_scores_well(self) -> None:
        result = score_page(RICH_PAGE, _check(), ScoreSettings(), now=NOW)
        assert result.details is not None
        assert result.details.language == "en"
        assert result.details.code_block_count == 3
        assert 0.5 < result.score <= 1

    def test_thin_page_scores_low(self) -> None:
        rich = score_page(RICH_PAGE, _check(), ScoreSettings(), now=NOW)
        thin = score_page(THIN_PAGE, _check(), ScoreSettings(), now=NOW)
        assert thin.score < 0.3 < rich.score

    def test_last_modified_feeds_freshness(self) -> None:
        stale = _check(last_modified=NOW - timedelta(days=400))
        result = score_page(RICH_PAGE, stale, ScoreSettings(), now=NOW)
        assert result.details is not None
        assert result.details.freshness == 0.0


# ---------------------------------------------------------------------------
# Link checks
# ---------------------------------------------------------------------------


class TestCheckLink:
    async def test_valid_html(self, client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.head("https://example.com/docs").mock(
                return_value=httpx.Response(
                    200,
                    headers={
                        "content-type": "text/html; charset=utf-8",
                        "last-modified": "Wed, 01 Apr 2026 10:00:00 GMT",
                    },
                )
            )
            check = await check_link(
                client, "https://example.com/docs", allowed_content_types=["text/html"]
            )

        assert check.is_valid
        assert check.status_code == 200
        assert check.last_modified == datetime(2026, 4, 1, 10, tzinfo=UTC)

    async def test_follows_redirects(self, client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.head("https://example.com/docs").mock(
                return_value=httpx.Response(301, headers={"location": "/docs/latest"})
            )
            respx.head("https://example.com/docs/latest").mock(
                return_value=httpx.Response(200, headers={"content-type": "text/html"})
            )
            check = await check_link(client, "https://example.com/docs")

        assert check.is_valid
        assert check.url == "https://example.com/docs"

    async def test_redirect_to_private_address_rejected(
        self, client: httpx.AsyncClient
    ) -> None:
        with respx.mock:
            respx.head("https://example.com/docs").mock(
                return_value=httpx.Response(302, headers={"location": "http://127.0.0.1/admin"})
            )
            check = await check_link(client, "https://example.com/docs")

        assert not check.is_valid
        assert "not allowed" in (check.error or "")

    async def test_http_error(self, client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.head("https://example.com/gone").mock(return_value=httpx.Response(404))
            check = await check_link(client, "https://example.com/gone")

        assert not check.is_valid
        assert check.error == "HTTP error: 404"

    async def test_wrong_content_type(self, client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.head("https://example.com/file.zip").mock(
                return_value=httpx.Response(200, headers={"content-type": "application/zip"})
            )
            check = await check_link(
                client, "https://example.com/file.zip", allowed_content_types=["text/html"]
            )

        assert check.error == "Invalid content type"

    async def test_network_failure_reported_not_raised(self, client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.head("https://example.com/docs").mock(
                side_effect=httpx.ConnectError("Connection refused")
            )
            check = await check_link(client, "https://example.com/docs")

        assert not check.is_valid
        assert "Connection refused" in (check.error or "")

    async def test_timeout(self, client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.head("https://example.com/docs").mock(side_effect=httpx.ReadTimeout("slow"))
            check = await check_link(client, "https://example.com/docs")

        assert check.error == "Request timed out"


# ---------------------------------------------------------------------------
# DocsScorer
# ---------------------------------------------------------------------------


class TestDocsScorer:
    async def test_ranks_best_first_and_zeroes_broken(self, client: httpx.AsyncClient) -> None:
        scorer = DocsScorer(client, ScoreSettings())
        html_headers = {"content-type": "text/html"}
        with respx.mock:
            for url, body in (
                ("https://thin.dev/", THIN_PAGE),
                ("https://rich.dev/docs", RICH_PAGE),
            ):
                respx.head(url).mock(return_value=httpx.Response(200, headers=html_headers))
                respx.get(url).mock(
                    return_value=httpx.Response(200, headers=html_headers, text=body)
                )
            respx.head("https://gone.dev/").mock(return_value=httpx.Response(404))

            results = await scorer.score_urls(
                ["https://thin.dev/", "https://gone.dev/", "https://rich.dev/docs"]
            )

        assert [r.url for r in results] == [
            "https://rich.dev/docs",
            "https://thin.dev/",
            "https://gone.dev/",
        ]
        assert results[-1].score == 0.0
        assert results[-1].details is None

    async def test_unfetchable_page_scores_zero(self, client: httpx.AsyncClient) -> None:
        scorer = DocsScorer(client, ScoreSettings())
        with respx.mock:
            respx.head("https://flaky.dev/").mock(
                return_value=httpx.Response(200, headers={"content-type": "text/html"})
            )
            respx.get("https://flaky.dev/").mock(return_value=httpx.Response(500))
            result = await scorer.score_url("https://flaky.dev/")

        assert result.score == 0.0
        assert result.check.is_valid is False
