"""MCP server exposing gallery download jobs as tools."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .config import CrawlConfig
from .crawler import run_job
from .jobs import JobController
from .models import CrawlTarget
from .utils import sanitize_filename

logger = logging.getLogger("gallery_crawler.mcp")
logger.setLevel(logging.ERROR)

MCP_IDENTITY = "mcp"

mcp = FastMCP(name="gallery-crawler")
controller = JobController()


async def _run_target(target: CrawlTarget, config: Optional[CrawlConfig] = None) -> Dict[str, Any]:
    config = config or CrawlConfig.from_env()
    download_dir = config.downloads_root / MCP_IDENTITY / sanitize_filename(target.name)
    async with controller.run(target, MCP_IDENTITY) as job:
        await run_job(job, config, download_dir)
    payload = job.snapshot()
    payload["status"] = payload.pop("state")
    payload["directory"] = str(download_dir)
    return payload


@mcp.tool()
async def download_idol(name: str, start: int = 1, end: int = 1) -> Dict[str, Any]:
    """Download every image from an idol's listing pages ``start..end``."""
    return await _run_target(CrawlTarget.idol(name, start, end))


@mcp.tool()
async def download_creator(name: str, start: int = 1, end: Optional[int] = None) -> Dict[str, Any]:
    """Download a creator's listing pages; without ``end`` stop at the first empty page."""
    return await _run_target(CrawlTarget.creator(name, start, end))


@mcp.tool()
async def download_post(name: str, post_url: str) -> Dict[str, Any]:
    """Download every image of a single post into the ``name`` folder."""
    return await _run_target(CrawlTarget.post(name, post_url))


@mcp.tool()
async def stop_download() -> Dict[str, Any]:
    """Cancel the running download, if any."""
    job = await controller.stop()
    if job is None:
        return {"status": "no_job"}
    return {"status": "stopping", "job": job.snapshot()}


@mcp.tool()
async def job_status() -> Dict[str, Any]:
    """Report the running download, if any."""
    job = controller.current
    if job is None:
        return {"status": "idle"}
    return {"status": "running", "job": job.snapshot()}


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
