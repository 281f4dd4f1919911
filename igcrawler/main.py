"""Crawler micro-service.

This FastAPI app exposes:
- POST   /runs                 to start a crawl run (body = run input)
- GET    /runs/{run_id}        to poll its status
- GET    /runs/{run_id}/items  to read the records it produced
- DELETE /runs/{run_id}        to abort it
- /metrics for Prometheus and /healthz for liveness

Each run executes in the background on its own worker pool and writes a
JSON-lines dataset under ``DATA_ROOT/<run_id>/``.
"""

from __future__ import annotations

import asyncio
import datetime
import pathlib
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, Field

from .config import CrawlInput, get_config
from .observability import CrawlMetrics
from .reliability import ConfigurationError, EnhancedError, NoUrlsError
from .runner import run_crawl
from .sink import JsonLinesSink

config = get_config()
service_logger = config.setup_logging()

# ----------------------------------------------------------------------------
# Metrics
# ----------------------------------------------------------------------------

crawl_metrics = CrawlMetrics()

REQUEST_COUNT = Counter(
    "crawler_http_request_count",
    "Number of requests received",
    labelnames=["endpoint", "method", "status"],
    registry=crawl_metrics.registry,
)
REQUEST_LATENCY = Histogram(
    "crawler_http_request_latency_seconds",
    "Request latency in seconds",
    labelnames=["endpoint"],
    registry=crawl_metrics.registry,
)
RUN_COUNT = Counter(
    "crawler_run_count",
    "Number of crawl runs finished",
    labelnames=["status"],
    registry=crawl_metrics.registry,
)

# ----------------------------------------------------------------------------
# Run records
# ----------------------------------------------------------------------------


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class RunRecord(BaseModel):
    run_id: str
    status: RunStatus = RunStatus.QUEUED
    results_type: str
    results_limit: int
    created_at: datetime.datetime = Field(default_factory=datetime.datetime.utcnow)
    started_at: Optional[datetime.datetime] = None
    finished_at: Optional[datetime.datetime] = None
    summary: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


app = FastAPI(title="Instagram Crawler Service", version="1.0.0")

runs: Dict[str, RunRecord] = {}
run_tasks: Dict[str, asyncio.Task] = {}


def _run_dir(run_id: str) -> pathlib.Path:
    return pathlib.Path(config.system.data_root) / run_id


async def _execute_run(record: RunRecord, crawl_input: CrawlInput) -> None:
    record.status = RunStatus.RUNNING
    record.started_at = datetime.datetime.utcnow()
    try:
        record.summary = await run_crawl(
            crawl_input,
            run_id=record.run_id,
            config=config,
            sink=JsonLinesSink(_run_dir(record.run_id)),
            metrics=crawl_metrics,
            logger=service_logger,
        )
        record.status = RunStatus.SUCCEEDED
    except asyncio.CancelledError:
        record.status = RunStatus.ABORTED
        raise
    except NoUrlsError as e:
        service_logger.info(f"Run {record.run_id}: {e.message}")
        record.status = RunStatus.SUCCEEDED
        record.error = e.message
    except EnhancedError as e:
        service_logger.error(f"Run {record.run_id} failed: {e.message}")
        record.status = RunStatus.FAILED
        record.error = e.message
    except Exception as e:
        service_logger.exception(f"Run {record.run_id} crashed")
        record.status = RunStatus.FAILED
        record.error = str(e)
    finally:
        record.finished_at = datetime.datetime.utcnow()
        RUN_COUNT.labels(record.status.value).inc()
        run_tasks.pop(record.run_id, None)


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Collect Prometheus metrics for each request."""
    endpoint = request.url.path
    method = request.method
    with REQUEST_LATENCY.labels(endpoint).time():
        response = await call_next(request)
    REQUEST_COUNT.labels(endpoint, method, response.status_code).inc()
    return response


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    """Liveness probe."""
    return {
        "status": "ok",
        "active_runs": len(run_tasks),
        "config": config.get_configuration_summary(),
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if not config.monitoring.prometheus_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(content=crawl_metrics.export(), media_type=crawl_metrics.content_type)


@app.post("/runs")
async def submit_run(request: Request):
    """Validate the run input and start the crawl in the background."""
    if config.security.api_key_required:
        api_key_header = request.headers.get("x-api-key")
        if not api_key_header or api_key_header != config.security.api_key:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    try:
        crawl_input = CrawlInput.from_raw(body)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    record = RunRecord(
        run_id=uuid.uuid4().hex,
        results_type=crawl_input.results_type.value,
        results_limit=crawl_input.results_limit,
    )
    runs[record.run_id] = record
    run_tasks[record.run_id] = asyncio.create_task(_execute_run(record, crawl_input))
    service_logger.info(f"Submitted run {record.run_id} ({record.results_type}, limit {record.results_limit})")
    return {"run_id": record.run_id}


@app.get("/runs/{run_id}")
async def get_run(run_id: str):
    record = runs.get(run_id)
    if not record:
        raise HTTPException(status_code=404, detail="Run not found")
    return record.model_dump(mode="json")


@app.get("/runs/{run_id}/items")
async def get_run_items(run_id: str, offset: int = 0, limit: int = 100):
    """Records written so far, paginated."""
    if run_id not in runs:
        raise HTTPException(status_code=404, detail="Run not found")
    items = JsonLinesSink(_run_dir(run_id)).read_all()
    return {
        "run_id": run_id,
        "total": len(items),
        "offset": offset,
        "items": items[offset:offset + limit],
    }


@app.delete("/runs/{run_id}")
async def abort_run(run_id: str):
    record = runs.get(run_id)
    if not record:
        raise HTTPException(status_code=404, detail="Run not found")
    task = run_tasks.get(run_id)
    if task is None or task.done():
        raise HTTPException(status_code=409, detail=f"Run already {record.status.value}")
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    return {"message": f"Run {run_id} aborted"}


@app.on_event("startup")
async def on_startup() -> None:
    service_logger.info(f"Crawler service starting: {config.get_configuration_summary()}")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Abort runs still in progress."""
    service_logger.info("Shutting down crawler service...")
    tasks = list(run_tasks.values())
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
