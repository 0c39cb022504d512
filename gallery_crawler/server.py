"""HTTP service exposing crawl jobs, live logs and downloaded files."""

from __future__ import annotations

import asyncio
import contextlib
import io
import logging
import zipfile
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse, Response
from starlette.routing import Route

from .config import CrawlConfig
from .crawler import run_job
from .errors import JobConflictError, RateLimitExceeded
from .jobs import Job, JobController, ProgressSink
from .logstream import CLOSED, ChannelSink, LogBroker, stamp, timestamp
from .models import CrawlTarget, JobResult, JobState, TargetKind
from .ratelimit import RateLimiter
from .utils import sanitize_filename, sanitize_identity

logger = logging.getLogger("gallery_crawler.server")

JobRunner = Callable[[Job, CrawlConfig, Path, ProgressSink], Awaitable[JobResult]]

STATUS_CODES = {
    JobState.COMPLETED: 200,
    JobState.CANCELLED: 499,
    JobState.FAILED: 500,
}


def client_identity(request: Request) -> str:
    """Identify the requester, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for", "")
    raw = forwarded.split(",")[0].strip()
    if not raw:
        raw = request.headers.get("x-real-ip", "").strip()
    if not raw and request.client is not None:
        raw = request.client.host
    return sanitize_identity(raw or "unknown")


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def _rate_limited(exc: RateLimitExceeded, config: CrawlConfig) -> JSONResponse:
    status = exc.status
    minutes, seconds = divmod(status.reset_in, 60)
    window_minutes = int(config.rate_limit_window // 60)
    if exc.estimate is None:
        message = (
            f"You have reached the limit of {config.rate_limit_max_images} images per "
            f"{window_minutes} minutes. Please try again in {minutes}m {seconds}s."
        )
        error = "Rate limit exceeded"
    else:
        message = (
            f"This request would download approximately {exc.estimate} images, but you only "
            f"have {status.remaining} remaining in this {window_minutes}-minute window."
        )
        error = "Rate limit would be exceeded"
    return _error(429, error, message=message, remaining=status.remaining, resetIn=status.reset_in)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(400, "Request body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(400, "Request body must be a JSON object")
    return body


def _number(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(400, f"{field} must be a number")


def _page_number(value: Any, field: str) -> int:
    number = _number(value, field)
    if number < 1:
        raise HTTPException(400, f"{field} must be >= 1")
    return number


def _target_name(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(400, f"{field} must be a non-empty string")
    return value.strip()


async def _execute(request: Request, target: CrawlTarget) -> JSONResponse:
    """Run one job for the requester and turn its settlement into a response."""
    app = request.app
    config: CrawlConfig = app.state.config
    controller: JobController = app.state.controller
    limiter: RateLimiter = app.state.limiter
    identity = client_identity(request)

    if controller.busy:
        return _error(409, "A download job is already running")

    estimate: Optional[int] = None
    if target.kind is TargetKind.IDOL and config.images_per_page_estimate > 0:
        estimate = (target.pages.page_count or 1) * config.images_per_page_estimate
    try:
        limiter.require(identity, estimate)
    except RateLimitExceeded as exc:
        return _rate_limited(exc, config)

    download_dir = config.downloads_root / identity / sanitize_filename(target.name)
    sink = ChannelSink(app.state.broker, identity)
    sink.on_log(f"Starting job {target.describe()} (IP: {identity})")

    job: Optional[Job] = None
    try:
        async with controller.run(target, identity) as job:
            await app.state.runner(job, config, download_dir, sink)
    except JobConflictError as exc:
        return _error(409, str(exc))
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Job failed: %s", target.describe())
        sink.on_log(f"Job failed: {exc}")
    finally:
        if job is not None:
            limiter.consume(identity, job.result.images_downloaded)

    assert job is not None
    if job.state is JobState.CANCELLED:
        sink.on_log("Job cancelled by user")
    payload = job.snapshot()
    payload["status"] = payload.pop("state")
    return JSONResponse(payload, status_code=STATUS_CODES.get(job.state, 500))


async def download(request: Request) -> Response:
    body = await _json_body(request)
    idol = body.get("idol")
    creator = body.get("creator")
    if not (idol or creator) or body.get("start") in (None, "") or body.get("end") in (None, ""):
        raise HTTPException(400, "idol (or creator), start, end are required")
    start = _page_number(body["start"], "start")
    end = _page_number(body["end"], "end")
    if start > end:
        raise HTTPException(400, "start must be less than or equal to end")
    if idol:
        target = CrawlTarget.idol(_target_name(idol, "idol"), start, end)
    else:
        target = CrawlTarget.creator(_target_name(creator, "creator"), start, end)
    return await _execute(request, target)


async def download_post(request: Request) -> Response:
    body = await _json_body(request)
    idol = body.get("idol")
    post_url = body.get("postUrl")
    if not idol or not post_url:
        raise HTTPException(400, "idol and postUrl are required")
    base_url = request.app.state.config.base_url.rstrip("/") + "/"
    if not isinstance(post_url, str) or not post_url.startswith(base_url):
        raise HTTPException(400, f"postUrl must start with {base_url}")
    return await _execute(request, CrawlTarget.post(_target_name(idol, "idol"), post_url))


async def download_creator(request: Request) -> Response:
    body = await _json_body(request)
    creator = _target_name(body.get("creator"), "creator")
    start = max(1, _number(body.get("start") or 1, "start"))
    end_value = body.get("end")
    end = None if end_value in (None, "") else max(start, _number(end_value, "end"))
    return await _execute(request, CrawlTarget.creator(creator, start, end))


async def stop(request: Request) -> Response:
    controller: JobController = request.app.state.controller
    job = await controller.stop()
    if job is None:
        return JSONResponse({"status": "no_job", "message": "No active download job"})
    broker: LogBroker = request.app.state.broker
    identity = client_identity(request)
    line = stamp("Stop requested by user")
    broker.publish(identity, line)
    if job.identity != identity:
        broker.publish(job.identity, line)
    return JSONResponse({"status": "stopping", "message": "Download job will be stopped"})


async def job_status(request: Request) -> Response:
    job = request.app.state.controller.current
    if job is None:
        return JSONResponse({"status": "idle"})
    return JSONResponse({"status": "running", "job": job.snapshot()})


async def log_events(
    broker: LogBroker, identity: str, queue: asyncio.Queue
) -> AsyncIterator[Dict[str, str]]:
    """Yield SSE events from a subscribed queue until the broker drops it."""
    try:
        yield {"data": stamp(f"Connected to logs (IP {identity})")}
        while True:
            line = await queue.get()
            if line is CLOSED:
                return
            yield {"data": line}
    finally:
        broker.unsubscribe(identity, queue)


async def logs(request: Request) -> Response:
    broker: LogBroker = request.app.state.broker
    config: CrawlConfig = request.app.state.config
    identity = client_identity(request)
    queue = broker.subscribe(identity)
    return EventSourceResponse(
        log_events(broker, identity, queue),
        ping=int(config.log_ping_interval),
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def health(request: Request) -> Response:
    return JSONResponse({"status": "ok", "time": timestamp()})


async def targets(request: Request) -> Response:
    config: CrawlConfig = request.app.state.config
    return JSONResponse({"idols": config.idols, "creators": config.creators})


def _user_root(request: Request) -> Path:
    return request.app.state.config.downloads_root / client_identity(request)


def _target_dir(request: Request) -> Path:
    return _user_root(request) / sanitize_filename(request.path_params["name"])


def _file_path(request: Request) -> Path:
    path = _target_dir(request) / sanitize_filename(request.path_params["filename"])
    if not path.is_file():
        raise HTTPException(404, "File not found")
    return path


async def list_targets(request: Request) -> Response:
    root = _user_root(request)
    if not root.is_dir():
        return JSONResponse([])
    return JSONResponse(sorted(entry.name for entry in root.iterdir() if entry.is_dir()))


async def list_files(request: Request) -> Response:
    name = request.path_params["name"]
    folder = _target_dir(request)
    try:
        limit = int(request.query_params.get("limit") or 20)
        offset = int(request.query_params.get("offset") or 0)
    except ValueError:
        raise HTTPException(400, "limit and offset must be numbers")
    if not folder.is_dir():
        return JSONResponse({"files": [], "total": 0, "hasMore": False, "offset": offset, "limit": limit})

    entries = sorted(
        (entry for entry in folder.iterdir() if entry.is_file() and not entry.name.startswith(".")),
        key=lambda entry: entry.name,
        reverse=True,
    )
    page = [
        {"name": entry.name, "path": f"/files/{name}/{entry.name}", "size": entry.stat().st_size}
        for entry in entries[offset : offset + limit]
    ]
    return JSONResponse(
        {
            "files": page,
            "total": len(entries),
            "hasMore": offset + limit < len(entries),
            "offset": offset,
            "limit": limit,
        }
    )


def build_zip(folder: Path) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for entry in sorted(folder.iterdir()):
            if entry.is_file() and not entry.name.startswith("."):
                archive.write(entry, arcname=entry.name)
    return buffer.getvalue()


async def download_zip(request: Request) -> Response:
    folder = _target_dir(request)
    if not folder.is_dir():
        raise HTTPException(404, "Folder not found")
    if not any(entry.is_file() for entry in folder.iterdir()):
        raise HTTPException(404, "Folder is empty")
    data = await asyncio.to_thread(build_zip, folder)
    return Response(
        data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{folder.name}.zip"'},
    )


async def download_file(request: Request) -> Response:
    path = _file_path(request)
    return FileResponse(path, filename=path.name)


async def serve_file(request: Request) -> Response:
    return FileResponse(_file_path(request))


async def http_error(request: Request, exc: HTTPException) -> Response:
    return _error(exc.status_code, exc.detail)


async def _sweep_forever(limiter: RateLimiter, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        removed = limiter.sweep()
        if removed:
            logger.debug("Removed %d expired rate limit records", removed)


def create_app(
    config: Optional[CrawlConfig] = None,
    *,
    controller: Optional[JobController] = None,
    limiter: Optional[RateLimiter] = None,
    broker: Optional[LogBroker] = None,
    runner: JobRunner = run_job,
) -> Starlette:
    """Assemble the Starlette application around shared service objects."""
    config = config or CrawlConfig.from_env()
    limiter = limiter or RateLimiter(config.rate_limit_max_images, config.rate_limit_window)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        sweeper = asyncio.create_task(_sweep_forever(limiter, config.rate_limit_sweep_interval))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    routes = [
        Route("/health", health),
        Route("/status", job_status),
        Route("/logs", logs),
        Route("/download", download, methods=["POST"]),
        Route("/download-post", download_post, methods=["POST"]),
        Route("/download-creator", download_creator, methods=["POST"]),
        Route("/stop", stop, methods=["POST"]),
        Route("/api/targets", targets),
        Route("/api/idols", list_targets),
        Route("/api/files/{name}", list_files),
        Route("/files/download-zip/{name}", download_zip),
        Route("/files/download/{name}/{filename}", download_file),
        Route("/files/{name}/{filename}", serve_file),
    ]
    app = Starlette(
        routes=routes,
        exception_handlers={HTTPException: http_error},
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.controller = controller or JobController()
    app.state.limiter = limiter
    app.state.broker = broker or LogBroker()
    app.state.runner = runner
    return app
