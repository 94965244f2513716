"""Command-line interface.

    docsfetch fetch <package> [--force] [--limit N] [--url URL] [--ecosystem npm|pypi]
    docsfetch fetch --all [--force] [--limit N]
    docsfetch search <query> [--package NAME] [--max-results N]
    docsfetch discover
    docsfetch score <package> [--ecosystem npm|pypi] [--details] [--threshold F]

Exit codes: 0 success (including "already fresh" and ``--all`` runs where
some packages failed), 1 fatal or single-package failure, 2 usage error.
Command output goes to stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

import structlog

from docsfetch import __version__
from docsfetch.config import Settings, load_settings
from docsfetch.crawler import DocsCrawler
from docsfetch.discovery import discover_packages
from docsfetch.errors import DiscoveryError, DocsFetchError
from docsfetch.fetcher import BrowserRenderer, HttpRenderer, build_http_client
from docsfetch.models.package import PackageInfo
from docsfetch.resolver import DEFAULT_KNOWN_DOCS, DocsResolver
from docsfetch.scoring import DocsScorer
from docsfetch.search import search_cache
from docsfetch.state import AppState
from docsfetch.storage import StorageManager

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    import httpx

    from docsfetch.models.crawl import CrawlSummary
    from docsfetch.models.score import DocsScore
    from docsfetch.protocols import PageRenderer

log = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILURE = 1


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def _stderr_logger(*args: object) -> structlog.PrintLogger:
    # Looked up per logger so a replaced sys.stderr is honoured
    return structlog.PrintLogger(file=sys.stderr)


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout carries command output
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"{value!r} must be at least 1")
    return number


def _fraction(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a number") from None
    if not 0 <= number <= 1:
        raise argparse.ArgumentTypeError(f"{value!r} must be between 0 and 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsfetch",
        description="Discover project dependencies and cache their documentation locally.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to a docsfetch.yaml file")
    parser.add_argument("--cache-dir", help="Cache root directory")
    parser.add_argument("--root", help="Workspace root to scan for manifests")
    parser.add_argument(
        "--renderer",
        choices=["browser", "http"],
        help="Headless browser (default) or plain HTTP for static sites",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Log verbosity (logs are written to stderr)",
    )

    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    fetch = commands.add_parser("fetch", help="Fetch documentation for one or all packages")
    fetch.add_argument("package", nargs="?", help="Package name, e.g. react or @scope/pkg")
    fetch.add_argument("--all", action="store_true", help="Fetch every discovered package")
    fetch.add_argument("--force", action="store_true", help="Ignore cache freshness")
    fetch.add_argument("--limit", type=_positive_int, help="Maximum pages per package")
    fetch.add_argument("--url", help="Documentation root URL (skips resolution)")
    fetch.add_argument(
        "--ecosystem",
        choices=["npm", "pypi"],
        default="npm",
        help="Registry to resolve the package name against",
    )

    search = commands.add_parser("search", help="Search cached documentation")
    search.add_argument("query", help="Search terms")
    search.add_argument("--package", help="Only search this package")
    search.add_argument("--max-results", type=_positive_int, default=10)

    commands.add_parser("discover", help="List packages found in the workspace")

    score = commands.add_parser("score", help="Score documentation quality for a package")
    score.add_argument("package", help="Package name")
    score.add_argument("--ecosystem", choices=["npm", "pypi"], default="npm")
    score.add_argument("--details", action="store_true", help="Show the per-criterion breakdown")
    score.add_argument(
        "--threshold", type=_fraction, help="Only show URLs scoring at least this (0-1)"
    )
    return parser


def _settings_overrides(args: argparse.Namespace) -> dict[str, dict[str, str]]:
    overrides: dict[str, dict[str, str]] = {}
    if args.cache_dir:
        overrides["cache"] = {"dir": args.cache_dir}
    if args.root:
        overrides["scan"] = {"root_dir": args.root}
    if args.renderer:
        overrides["crawl"] = {"renderer": args.renderer}
    if args.log_level:
        overrides["logging"] = {"level": args.log_level}
    return overrides


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_renderer_factory(
    settings: Settings, client: httpx.AsyncClient
) -> Callable[[], PageRenderer]:
    """Return a zero-argument factory producing a fresh renderer per package."""
    if settings.crawl.renderer == "http":
        return lambda: HttpRenderer(client)
    return lambda: BrowserRenderer.from_settings(settings.crawl)


def build_state(settings: Settings) -> AppState:
    client = build_http_client(settings)
    storage = StorageManager(settings.cache.dir)
    resolver = DocsResolver(
        client,
        storage,
        registry_url=settings.resolver.registry_url,
        pypi_url=settings.resolver.pypi_url,
        known_docs={**DEFAULT_KNOWN_DOCS, **settings.resolver.known_docs},
        allowed_domains=settings.resolver.allowed_domains,
        timeout_seconds=settings.resolver.timeout_seconds,
        max_retries=settings.resolver.max_retries,
    )
    crawler = DocsCrawler(
        storage,
        resolver,
        build_renderer_factory(settings, client),
        settings.crawl,
        max_age_days=settings.cache.max_age_days,
    )
    return AppState(
        settings=settings,
        http_client=client,
        storage=storage,
        resolver=resolver,
        crawler=crawler,
        scorer=DocsScorer(client, settings.score),
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _discover(settings: Settings) -> list[PackageInfo]:
    scan = settings.scan
    return discover_packages(
        scan.root_dir,
        scan.scan_patterns,
        scan.exclude_patterns,
        exclude_packages=scan.exclude_packages,
        exclude_name_patterns=scan.exclude_name_patterns,
    )


def _print_summary(result: CrawlSummary) -> None:
    line = f"{result.package}: {result.status}"
    if result.status == "crawled":
        line += f" ({result.pages_saved} pages"
        if result.pages_failed:
            line += f", {result.pages_failed} failed"
        line += ")"
    elif result.reason:
        line += f" ({result.reason})"
    print(line)


async def _cmd_fetch(state: AppState, args: argparse.Namespace) -> int:
    state.storage.ensure_cache_dir()
    if args.all:
        try:
            packages = _discover(state.settings)
        except DiscoveryError as exc:
            log.warning("discovery_failed", error=exc.message)
            print("No packages found.")
            return EXIT_OK
        summary = await state.crawler.run_all(packages, force=args.force, limit=args.limit)
        for result in summary.results:
            _print_summary(result)
        print(
            f"{summary.count('crawled')} crawled, {summary.count('fresh')} fresh, "
            f"{summary.count('unresolved')} unresolved, {summary.count('failed')} failed, "
            f"{summary.pages_saved} pages saved"
        )
        return EXIT_OK

    result = await state.crawler.fetch_package(
        PackageInfo(name=args.package, path="", ecosystem=args.ecosystem),
        docs_url=args.url,
        force=args.force,
        limit=args.limit,
    )
    _print_summary(result)
    return EXIT_OK if result.status in ("crawled", "fresh") else EXIT_FAILURE


def _cmd_search(state: AppState, args: argparse.Namespace) -> int:
    results = search_cache(
        state.storage,
        args.query,
        package=args.package,
        max_results=args.max_results,
    )
    if not results:
        print("No results.")
        return EXIT_OK
    for result in results:
        print(f"[{result.score:.2f}] {result.package}: {result.title}")
        print(f"    {result.url}")
        print(f"    {result.path}")
        print(f"    {result.snippet}")
    return EXIT_OK


def _cmd_discover(state: AppState) -> int:
    try:
        packages = _discover(state.settings)
    except DiscoveryError as exc:
        log.warning("discovery_failed", error=exc.message)
        print("No packages found.")
        return EXIT_OK
    for package in packages:
        print(f"{package.name}\t{package.version}\t{package.path}")
    return EXIT_OK


def _format_score(score: float) -> str:
    return f"{round(score * 100):3d}%"


def _print_score(result: DocsScore, *, details: bool) -> None:
    print(f"{_format_score(result.score)}  {result.url}")
    if result.details is None:
        print(f"      unusable: {result.check.error}")
        return
    if details:
        d = result.details
        print(f"      freshness     {_format_score(d.freshness)}")
        print(f"      size          {_format_score(d.size)}")
        print(f"      language      {d.language}")
        print(f"      readability   {_format_score(d.readability)}")
        print(f"      completeness  {_format_score(d.completeness)}")
        print(
            f"      {d.word_count} words, {d.heading_count} headings, "
            f"{d.code_block_count} code blocks"
        )


async def _cmd_score(state: AppState, args: argparse.Namespace) -> int:
    urls = await state.resolver.candidate_urls(args.package, ecosystem=args.ecosystem)
    if not urls:
        print(f"No documentation found for {args.package}.")
        return EXIT_OK

    results = await state.scorer.score_urls(urls)
    shown = [r for r in results if args.threshold is None or r.score >= args.threshold]
    if not shown:
        print(f"No documentation for {args.package} scored at least {args.threshold}.")
        return EXIT_OK
    for result in shown:
        _print_score(result, details=args.details)
    return EXIT_OK


async def _run(settings: Settings, args: argparse.Namespace) -> int:
    state = build_state(settings)
    try:
        if args.command == "fetch":
            return await _cmd_fetch(state, args)
        if args.command == "search":
            return _cmd_search(state, args)
        if args.command == "score":
            return await _cmd_score(state, args)
        return _cmd_discover(state)
    finally:
        await state.http_client.aclose()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "fetch" and bool(args.package) == bool(args.all):
        parser.error("fetch needs exactly one of <package> or --all")
    if args.command == "fetch" and args.all and args.url:
        parser.error("--url cannot be combined with --all")

    try:
        settings = load_settings(args.config, **_settings_overrides(args))
        _setup_logging(settings)
        return asyncio.run(_run(settings, args))
    except DocsFetchError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        if exc.suggestion:
            print(f"hint: {exc.suggestion}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
