"""MCP tools driven with a fake job runner."""

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeRunner

from gallery_crawler import mcp_server
from gallery_crawler.models import CrawlTarget


@pytest.fixture
def runner(monkeypatch, tmp_path):
    fake = FakeRunner(images=3)
    monkeypatch.setattr(mcp_server, "run_job", fake)
    monkeypatch.setenv("DOWNLOADS_DIR", str(tmp_path / "downloads"))
    return fake


def test_download_creator_reports_result(runner, tmp_path) -> None:
    payload = asyncio.run(mcp_server.download_creator("maker"))

    assert payload["status"] == "completed"
    assert payload["imagesDownloaded"] == 3
    assert payload["directory"] == str(tmp_path / "downloads" / "mcp" / "maker")
    assert runner.calls[0][0] == CrawlTarget.creator("maker", 1, None)
    assert mcp_server.controller.current is None


def test_download_idol_and_post_build_targets(runner) -> None:
    asyncio.run(mcp_server.download_idol("jihyo", 2, 4))
    asyncio.run(mcp_server.download_post("nayeon", "https://idolfap.com/post/1/"))

    assert [call[0] for call in runner.calls] == [
        CrawlTarget.idol("jihyo", 2, 4),
        CrawlTarget.post("nayeon", "https://idolfap.com/post/1/"),
    ]


def test_cancelled_download_reports_cancelled(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(mcp_server, "run_job", FakeRunner(1, "cancel"))
    monkeypatch.setenv("DOWNLOADS_DIR", str(tmp_path))

    assert asyncio.run(mcp_server.download_creator("maker"))["status"] == "cancelled"


def test_failed_download_raises_and_frees_slot(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(mcp_server, "run_job", FakeRunner(1, "fail"))
    monkeypatch.setenv("DOWNLOADS_DIR", str(tmp_path))

    with pytest.raises(RuntimeError, match="Browser launch failed"):
        asyncio.run(mcp_server.download_creator("maker"))
    assert mcp_server.controller.current is None


def test_stop_and_status_tools() -> None:
    assert asyncio.run(mcp_server.stop_download()) == {"status": "no_job"}
    assert asyncio.run(mcp_server.job_status()) == {"status": "idle"}

    job = mcp_server.controller.start(CrawlTarget.creator("maker"), "mcp")
    try:
        status = asyncio.run(mcp_server.job_status())
        assert status["status"] == "running"
        assert status["job"]["name"] == "maker"

        stopped = asyncio.run(mcp_server.stop_download())
        assert stopped["status"] == "stopping"
        assert job.cancelled
    finally:
        mcp_server.controller.release(job)
