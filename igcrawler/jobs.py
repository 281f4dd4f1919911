"""Request frontier with Redis backing and in-memory fallback.

The frontier hands out crawl requests, deduplicated by URL, and keeps the
retry bookkeeping: a failed request goes back to the queue until it has
used up its retries, then it leaves as a terminal failure.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import BaseModel, Field

from .config import FrontierBackend
from .consts import RequestLabel


class RequestStatus(str, Enum):
    """Request lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    HANDLED = "handled"
    FAILED = "failed"


class CrawlRequest(BaseModel):
    """One page to crawl and its retry bookkeeping."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    url: str
    label: RequestLabel = RequestLabel.LISTING
    limit: int = 200
    status: RequestStatus = RequestStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    error_messages: List[str] = Field(default_factory=list)
    # Item ids already pushed to the sink by earlier attempts
    emitted_ids: List[str] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=datetime.datetime.utcnow)
    handled_at: Optional[datetime.datetime] = None
    worker_id: Optional[str] = None

    @property
    def should_retry(self) -> bool:
        return self.retry_count < self.max_retries

    @property
    def attempt(self) -> int:
        return self.retry_count + 1

    def debug_info(self) -> Dict[str, Any]:
        """Summary attached to the record emitted for a request that failed for good."""
        return {
            "requestId": self.id,
            "url": self.url,
            "method": "GET",
            "retryCount": self.retry_count,
            "errorMessages": list(self.error_messages),
            "emittedCount": len(self.emitted_ids),
        }


class Frontier:
    """Request queue with Redis backing and graceful in-memory fallback."""

    def __init__(
        self,
        run_id: str,
        *,
        backend: FrontierBackend = FrontierBackend.MEMORY,
        redis_url: str = "redis://localhost:6379/0",
        logger: Optional[logging.Logger] = None,
    ):
        self.run_id = run_id
        self.redis_url = redis_url
        self.logger = logger or logging.getLogger("igcrawler.frontier")
        self.redis_client: Optional[redis.Redis] = None
        self.use_redis = backend == FrontierBackend.REDIS

        # Redis key patterns, namespaced per run
        prefix = f"igcrawler:{run_id}"
        self.requests_key = f"{prefix}:requests"
        self.queue_key = f"{prefix}:queue"
        self.seen_key = f"{prefix}:seen"
        self.running_key = f"{prefix}:running"
        self.counters_key = f"{prefix}:counters"

        # In-memory fallback storage
        self.memory_requests: Dict[str, CrawlRequest] = {}
        self.memory_queue: List[str] = []
        self.memory_seen: set = set()
        self.memory_running: set = set()
        self.memory_counters: Dict[str, int] = {"handled": 0, "failed": 0}

        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the Redis connection when configured; fall back to memory if it is unreachable."""
        if not self.use_redis:
            self.logger.debug("Using in-memory frontier")
            return

        try:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
            await self.redis_client.ping()
            self.logger.info(f"Connected to Redis at {self.redis_url}")
        except (RedisError, OSError) as e:
            self.logger.warning(f"Redis connection failed ({e}) - falling back to in-memory frontier")
            self.use_redis = False
            self.redis_client = None

    async def disconnect(self) -> None:
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    async def _save(self, request: CrawlRequest) -> None:
        if self.use_redis and self.redis_client:
            await self.redis_client.hset(self.requests_key, request.id, request.model_dump_json())
        else:
            self.memory_requests[request.id] = request

    async def get_request(self, request_id: str) -> Optional[CrawlRequest]:
        if self.use_redis and self.redis_client:
            data = await self.redis_client.hget(self.requests_key, request_id)
            return CrawlRequest.model_validate_json(data) if data else None
        return self.memory_requests.get(request_id)

    async def add_request(self, request: CrawlRequest) -> bool:
        """Enqueue a request. Returns False when its URL is already known."""
        if self.use_redis and self.redis_client:
            if not await self.redis_client.sadd(self.seen_key, request.url):
                return False
            await self._save(request)
            await self.redis_client.lpush(self.queue_key, request.id)
        else:
            async with self._lock:
                if request.url in self.memory_seen:
                    return False
                self.memory_seen.add(request.url)
                self.memory_requests[request.id] = request
                self.memory_queue.append(request.id)

        self.logger.debug(f"Enqueued {request.url} ({request.label.value})")
        return True

    async def fetch_next(self, worker_id: Optional[str] = None) -> Optional[CrawlRequest]:
        """Take the next pending request, FIFO. None when the queue is empty right now."""
        if self.use_redis and self.redis_client:
            request_id = await self.redis_client.rpop(self.queue_key)
            if request_id is None:
                return None
            await self.redis_client.sadd(self.running_key, request_id)
        else:
            async with self._lock:
                if not self.memory_queue:
                    return None
                request_id = self.memory_queue.pop(0)
                self.memory_running.add(request_id)

        request = await self.get_request(request_id)
        if request is None:
            raise KeyError(f"Request {request_id} is queued but not stored")
        request.status = RequestStatus.RUNNING
        request.worker_id = worker_id
        await self._save(request)
        return request

    async def _release(self, request: CrawlRequest) -> None:
        if self.use_redis and self.redis_client:
            await self.redis_client.srem(self.running_key, request.id)
        else:
            self.memory_running.discard(request.id)

    async def _count(self, name: str) -> None:
        if self.use_redis and self.redis_client:
            await self.redis_client.hincrby(self.counters_key, name, 1)
        else:
            self.memory_counters[name] += 1

    async def mark_handled(self, request: CrawlRequest) -> None:
        request.status = RequestStatus.HANDLED
        request.handled_at = datetime.datetime.utcnow()
        await self._save(request)
        await self._count("handled")
        await self._release(request)

    async def mark_failed(self, request: CrawlRequest, error: str, should_retry: bool = True) -> bool:
        """Record a failed attempt. Returns True when the request was put back in the queue."""
        request.error_messages.append(error)

        if should_retry and request.should_retry:
            request.retry_count += 1
            request.status = RequestStatus.PENDING
            request.worker_id = None
            await self._save(request)
            if self.use_redis and self.redis_client:
                await self.redis_client.lpush(self.queue_key, request.id)
            else:
                async with self._lock:
                    self.memory_queue.append(request.id)
            await self._release(request)
            self.logger.info(f"Retrying {request.url} (retry {request.retry_count}/{request.max_retries})")
            return True

        request.status = RequestStatus.FAILED
        request.handled_at = datetime.datetime.utcnow()
        await self._save(request)
        await self._count("failed")
        await self._release(request)
        self.logger.error(f"Request {request.url} failed {request.attempt} times, giving up: {error}")
        return False

    async def pending_count(self) -> int:
        if self.use_redis and self.redis_client:
            return int(await self.redis_client.llen(self.queue_key))
        return len(self.memory_queue)

    async def running_count(self) -> int:
        if self.use_redis and self.redis_client:
            return int(await self.redis_client.scard(self.running_key))
        return len(self.memory_running)

    async def is_finished(self) -> bool:
        """True once nothing is queued and nothing is in flight."""
        return await self.pending_count() == 0 and await self.running_count() == 0

    async def stats(self) -> Dict[str, Any]:
        if self.use_redis and self.redis_client:
            counters = await self.redis_client.hgetall(self.counters_key)
            handled = int(counters.get("handled", 0))
            failed = int(counters.get("failed", 0))
        else:
            handled = self.memory_counters["handled"]
            failed = self.memory_counters["failed"]
        return {
            "pending": await self.pending_count(),
            "running": await self.running_count(),
            "handled": handled,
            "failed": failed,
            "backend": "redis" if self.use_redis else "memory",
        }
