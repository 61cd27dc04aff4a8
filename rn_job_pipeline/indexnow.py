"""
IndexNow submission: HTTP client, Redis-backed URL queue and throttled worker.

Job URLs are queued by the scraper and classifier runs and submitted one at
a time by the worker so IndexNow sees a steady trickle instead of bursts.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import redis
import requests

from .models import utc_now
from .run_metrics import RunMetrics

logger = logging.getLogger(__name__)

INDEXNOW_API_URL = "https://api.indexnow.org/IndexNow"
MAX_URLS_PER_REQUEST = 1000
DEFAULT_QUEUE_KEY = "indexnow:urls"


class IndexNowError(RuntimeError):
    """IndexNow answered with a non-success status."""
    pass


def absolute_url(site_url: str, url: str) -> str:
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"{site_url.rstrip('/')}/{url.lstrip('/')}"


def job_path(slug: str) -> str:
    return f"/jobs/nursing/{slug}"


class IndexNowClient:
    """Posts URL notifications to the IndexNow endpoint"""

    def __init__(self, site_url: str, key: str, *, session: Optional[requests.Session] = None,
                 timeout: int = 30):
        if not key:
            raise IndexNowError("IndexNow key is not configured")
        self.site_url = site_url.rstrip("/")
        self.key = key
        self.host = urlparse(self.site_url).hostname or self.site_url
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def key_location(self) -> str:
        return f"{self.site_url}/{self.key}.txt"

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            response = self.session.post(
                INDEXNOW_API_URL,
                json=payload,
                headers={"Content-Type": "application/json; charset=utf-8"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise IndexNowError(f"IndexNow request failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise IndexNowError(f"IndexNow returned HTTP {response.status_code}: {response.text[:200]}")

    def submit_url(self, url: str) -> None:
        self._post({
            "host": self.host,
            "key": self.key,
            "keyLocation": self.key_location,
            "url": absolute_url(self.site_url, url),
        })

    def submit_batch(self, urls: Iterable[str]) -> int:
        """Submit URLs in chunks; returns how many were accepted."""
        full = [absolute_url(self.site_url, url) for url in urls]
        accepted = 0
        for start in range(0, len(full), MAX_URLS_PER_REQUEST):
            chunk = full[start:start + MAX_URLS_PER_REQUEST]
            try:
                self._post({
                    "host": self.host,
                    "key": self.key,
                    "keyLocation": self.key_location,
                    "urlList": chunk,
                })
            except IndexNowError as exc:
                logger.warning("IndexNow batch of %s failed: %s", len(chunk), exc)
                continue
            accepted += len(chunk)
            logger.info("IndexNow accepted %s URLs", len(chunk))
        return accepted


class IndexNowQueue:
    """FIFO of URLs in Redis, de-duplicated while an entry is waiting"""

    def __init__(self, client, site_url: str, key: str = DEFAULT_QUEUE_KEY):
        self.redis = client
        self.site_url = site_url.rstrip("/")
        self.key = key
        self.seen_key = f"{key}:seen"

    @classmethod
    def from_config(cls, config) -> "IndexNowQueue":
        settings = config.get_redis_settings()
        client = redis.Redis(
            host=settings["host"],
            port=settings["port"],
            db=settings["db"],
            decode_responses=True,
        )
        return cls(client, config.get_site_url(), config.get_indexnow_queue_key())

    def queue_url(self, url: str, action: str = "update") -> bool:
        full = absolute_url(self.site_url, url)
        entry = {"url": full, "action": action, "queued_at": utc_now().isoformat()}
        try:
            if not self.redis.sadd(self.seen_key, full):
                return False
        except redis.RedisError as exc:
            logger.warning("Failed to queue %s for IndexNow: %s", full, exc)
            return False
        try:
            self.redis.rpush(self.key, json.dumps(entry))
        except redis.RedisError as exc:
            logger.warning("Failed to queue %s for IndexNow: %s", full, exc)
            self._forget(full)
            return False
        return True

    def _forget(self, url: str) -> None:
        # seen holds only URLs that are waiting in the list
        try:
            self.redis.srem(self.seen_key, url)
        except redis.RedisError as exc:
            logger.warning("Failed to release %s from the IndexNow seen set: %s", url, exc)

    def queue_job_urls(self, slugs: Iterable[str], action: str = "update") -> int:
        return sum(1 for slug in slugs if slug and self.queue_url(job_path(slug), action))

    def pop(self) -> Optional[Dict[str, Any]]:
        raw = self.redis.lpop(self.key)
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping malformed IndexNow queue entry: %r", raw)
            return None
        self.redis.srem(self.seen_key, entry.get("url"))
        return entry

    def stats(self) -> Dict[str, int]:
        return {"waiting": int(self.redis.llen(self.key)), "seen": int(self.redis.scard(self.seen_key))}


@dataclass
class WorkerStats:
    submitted: int = 0
    failed: int = 0


class IndexNowWorker:
    """Submits queued URLs one at a time with a minimum gap between requests"""

    def __init__(
        self,
        queue: IndexNowQueue,
        client: IndexNowClient,
        *,
        throttle_seconds: float = 6.0,
        metrics: Optional[RunMetrics] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue = queue
        self.client = client
        self.throttle_seconds = throttle_seconds
        self.metrics = metrics or RunMetrics(pipeline="indexnow")
        self.sleep = sleep
        self.clock = clock
        self.stats = WorkerStats()
        self._last_submit: Optional[float] = None

    def _throttle(self) -> None:
        if self._last_submit is None:
            return
        wait = self.throttle_seconds - (self.clock() - self._last_submit)
        if wait > 0:
            self.sleep(wait)

    def process(self, entry: Dict[str, Any]) -> bool:
        url = entry.get("url")
        if not url:
            return False
        self._throttle()
        try:
            self.client.submit_url(url)
        except IndexNowError as exc:
            self.stats.failed += 1
            self.metrics.inc("indexnow_failed")
            logger.warning("IndexNow submission failed for %s: %s", url, exc)
            return False
        finally:
            self._last_submit = self.clock()
        self.stats.submitted += 1
        self.metrics.inc("indexnow_submitted")
        print(f"   ✓ IndexNow ({entry.get('action', 'update')}): {url}")
        return True

    def run(self, *, once: bool = False, idle_seconds: float = 5.0,
            should_stop: Callable[[], bool] = lambda: False) -> WorkerStats:
        """Drain the queue; with once=False keep polling until should_stop() is true."""
        while not should_stop():
            try:
                entry = self.queue.pop()
            except redis.RedisError as exc:
                self.metrics.inc("indexnow_queue_errors")
                logger.warning("IndexNow queue unavailable: %s", exc)
                if once:
                    break
                self.sleep(idle_seconds)
                continue
            if entry is None:
                if once:
                    break
                self.sleep(idle_seconds)
                continue
            self.process(entry)
        return self.stats


def queue_slugs_if_enabled(config, slugs: List[str], action: str) -> int:
    """Queue job URLs for IndexNow when enabled; queue errors never fail the caller."""
    if not slugs or not config.is_indexnow_enabled():
        return 0
    try:
        queued = IndexNowQueue.from_config(config).queue_job_urls(slugs, action)
    except redis.RedisError as exc:
        logger.warning("IndexNow queue unavailable: %s", exc)
        return 0
    logger.info("Queued %s job URLs for IndexNow (%s)", queued, action)
    return queued
