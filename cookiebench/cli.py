"""CLI entry point and benchmark orchestration."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from playwright.async_api import Playwright, async_playwright

from .config import BenchConfig, load_config, validate_config
from .db import Database
from .engine import run_benchmark
from .errors import BenchmarkError
from .models import BenchmarkResult
from .report import RESULTS_FILENAME, build_results_document, print_scores, print_summary, write_results
from .scoring import AppMetadata, calculate_scores, score_inputs_from_summary
from .server import ServerInfo, build_and_serve, cleanup_server

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cookiebench",
        description="Cookiebench - cookie banner performance benchmark",
    )
    parser.add_argument(
        "target", nargs="?", default=".",
        help="App directory containing config.json, or a config file (default: .)",
    )
    parser.add_argument(
        "--iterations", "-n", type=int, default=None,
        help="Override the configured number of iterations",
    )
    parser.add_argument(
        "--url", type=str, default=None,
        help="Benchmark this URL instead of building the app locally",
    )
    parser.add_argument(
        "--headed", action="store_true",
        help="Run in headed mode (visible browser window)",
    )
    parser.add_argument(
        "--output", "-o", type=str, default=None,
        help=f"Results file path (default: {RESULTS_FILENAME} next to the config)",
    )
    parser.add_argument(
        "--db", type=str, default=None,
        help="Also store the run summary in this SQLite database",
    )
    parser.add_argument(
        "--no-scores", action="store_true",
        help="Do not print the score tables",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet noisy loggers
    logging.getLogger("playwright").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def apply_overrides(config: BenchConfig, args: argparse.Namespace) -> BenchConfig:
    """Apply CLI overrides and re-validate."""
    if args.iterations is not None:
        config.iterations = args.iterations
    if args.headed:
        config.runner.headless = False
    if args.url:
        config.remote.enabled = True
        config.remote.url = args.url
    validate_config(config)
    return config


async def _run(pw: Playwright, config: BenchConfig) -> BenchmarkResult:
    """Resolve the target URL, launch the browser and run every iteration."""
    server: ServerInfo | None = None
    browser = None
    try:
        if config.is_remote:
            url = config.remote.url
            logger.info("Benchmarking remote URL %s", url)
        elif config.url:
            url = config.url
            logger.info("Benchmarking configured URL %s", url)
        else:
            api_request = await pw.request.new_context()
            try:
                server = await build_and_serve(config.project_root, api_request)
            finally:
                await api_request.dispose()
            url = server.url

        browser = await pw.chromium.launch(headless=config.runner.headless)
        logger.info("Browser launched (headless=%s)", config.runner.headless)
        return await run_benchmark(browser, config, url)
    finally:
        if browser:
            await browser.close()
        await cleanup_server(server)


async def main(args: argparse.Namespace) -> None:
    """Load the config, run the benchmark, score it and write the artifact."""
    setup_logging(args.verbose)

    try:
        config = apply_overrides(load_config(Path(args.target).resolve()), args)
        logger.info(
            "Benchmark %s: %d iteration(s), selectors %s",
            config.name, config.iterations, config.cookie_banner.selectors,
        )

        async with async_playwright() as pw:
            result = await _run(pw, config)
    except BenchmarkError as e:
        logger.error("Benchmark failed: %s", e)
        sys.exit(1)

    scores = calculate_scores(
        score_inputs_from_summary(result.summary, config.tech_stack),
        AppMetadata.from_config(config),
    )

    output = Path(args.output) if args.output else config.project_root / RESULTS_FILENAME
    write_results(output, build_results_document(config, result, scores))

    print_summary(result)
    if not args.no_scores:
        print_scores(scores)

    if args.db:
        db = Database(args.db)
        await db.connect()
        try:
            run_id = await db.save_run(config, result, scores)
            stats = await db.get_stats()
        finally:
            await db.close()
        print(f"  Saved run {run_id} to {db.db_path} ({stats['total_runs']} runs stored)")


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main(parse_args()))
