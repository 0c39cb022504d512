"""Command-line entry point for the gallery crawler."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config import CrawlConfig
from .crawler import run_job
from .errors import CrawlerError
from .jobs import JobController
from .models import CrawlTarget, JobState
from .utils import sanitize_filename

logger = logging.getLogger("gallery_crawler.cli")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("run", *argv)


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure root logging for console output and an optional log file."""
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = log_file or os.getenv("LOG_FILE")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        default=None,
        type=Path,
        help="Directory where images are written (default: DOWNLOADS_DIR or ./downloads)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Navigation timeout in seconds",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Site root to crawl",
    )
    parser.add_argument(
        "--no-headless",
        action="store_true",
        help="Show the browser window",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write log records to this file",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Download gallery images from idol and creator listings.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Download an idol's listing pages")
    run_parser.add_argument("name", help="Idol name as it appears in the site URL")
    run_parser.add_argument("start", type=int, help="First listing page")
    run_parser.add_argument("end", type=int, help="Last listing page (inclusive)")
    _add_common_arguments(run_parser)

    creator_parser = subparsers.add_parser("creator", help="Download a creator's listing pages")
    creator_parser.add_argument("name", help="Creator name as it appears in the site URL")
    creator_parser.add_argument("--start", type=int, default=1, help="First listing page")
    creator_parser.add_argument(
        "--end",
        type=int,
        default=None,
        help="Last listing page; omit to continue until a page has no posts",
    )
    _add_common_arguments(creator_parser)

    post_parser = subparsers.add_parser("post", help="Download every image of one post")
    post_parser.add_argument("url", help="Post URL")
    post_parser.add_argument(
        "--name", default="single", help="Folder name for the downloaded images"
    )
    _add_common_arguments(post_parser)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP download service")
    serve_parser.add_argument("--host", default=None, help="Interface to bind")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--output", default=None, type=Path, help="Downloads root")
    serve_parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    serve_parser.add_argument("--log-file", default=None, help="Also write log records to this file")

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    args = parser.parse_args(argv)
    if args.command == "run" and (args.start < 1 or args.end < args.start):
        parser.error("pages must satisfy 1 <= start <= end")
    if args.command == "creator" and (
        args.start < 1 or (args.end is not None and args.end < args.start)
    ):
        parser.error("pages must satisfy 1 <= start <= end")
    return args


def _build_target(args: argparse.Namespace) -> CrawlTarget:
    if args.command == "run":
        return CrawlTarget.idol(args.name, args.start, args.end)
    if args.command == "creator":
        return CrawlTarget.creator(args.name, args.start, args.end)
    return CrawlTarget.post(args.name, args.url)


async def _crawl(target: CrawlTarget, config: CrawlConfig):
    controller = JobController()
    download_dir = config.downloads_root / sanitize_filename(target.name)
    async with controller.run(target, "local") as job:
        await run_job(job, config, download_dir)
    return job


def _run_crawl(args: argparse.Namespace) -> int:
    configure_logging(args.verbose, args.log_file)
    config = CrawlConfig.from_env(
        downloads_root=args.output.resolve() if args.output else None,
        navigation_timeout=args.timeout,
        base_url=args.base_url,
        headless=False if args.no_headless else None,
    )
    target = _build_target(args)

    overall_start = time.perf_counter()
    try:
        job = asyncio.run(_crawl(target, config))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except CrawlerError as exc:
        logger.error("%s", exc)
        return 1
    total_elapsed = time.perf_counter() - overall_start

    result = job.result
    logger.info(
        "Finished in %.2fs (%d pages, %d posts, %d saved, %d skipped, %d errors)",
        total_elapsed,
        result.pages_processed,
        result.posts_processed,
        result.images_downloaded,
        result.images_skipped,
        len(result.errors),
    )
    if args.verbose:
        for error in result.errors:
            logger.debug("%s %s: %s", error.scope, error.identifier, error.message)
    return 0 if job.state is JobState.COMPLETED else 1


def _run_server(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    configure_logging(args.verbose, args.log_file)
    config = CrawlConfig.from_env(
        host=args.host,
        port=args.port,
        downloads_root=args.output.resolve() if args.output else None,
    )
    logger.info("API listening on http://%s:%d", config.host, config.port)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_config=None)
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "serve":
        code = _run_server(args)
    else:
        code = _run_crawl(args)
    sys.exit(code)


if __name__ == "__main__":
    main()
