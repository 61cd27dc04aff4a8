import json
from unittest.mock import MagicMock

import pytest
import redis

from rn_job_pipeline import indexnow
from rn_job_pipeline.indexnow import (
    INDEXNOW_API_URL,
    IndexNowClient,
    IndexNowError,
    IndexNowQueue,
    IndexNowWorker,
    absolute_url,
    queue_slugs_if_enabled,
)

from conftest import FakeRedis

SITE_URL = "https://jobs.example.org"


class FakeTimer:
    """Monotonic clock that only moves when slept or advanced"""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FlakyRedis(FakeRedis):
    """FakeRedis whose named commands raise ConnectionError a set number of times"""

    def __init__(self, **failures):
        super().__init__()
        self.failures = dict(failures)

    def _maybe_fail(self, command):
        if self.failures.get(command, 0) > 0:
            self.failures[command] -= 1
            raise redis.ConnectionError(f"{command}: connection reset")

    def rpush(self, key, *values):
        self._maybe_fail("rpush")
        return super().rpush(key, *values)

    def lpop(self, key):
        self._maybe_fail("lpop")
        return super().lpop(key)


def _response(status, text=""):
    return MagicMock(status_code=status, text=text)


def _client(*statuses):
    session = MagicMock()
    session.post.side_effect = [_response(status) for status in statuses]
    return IndexNowClient(SITE_URL, "abc123", session=session), session


# === Client ===

def test_submit_url_payload():
    client, session = _client(202)

    client.submit_url("/jobs/nursing/rn-1")

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args == (INDEXNOW_API_URL,)
    assert kwargs["json"] == {
        "host": "jobs.example.org",
        "key": "abc123",
        "keyLocation": "https://jobs.example.org/abc123.txt",
        "url": "https://jobs.example.org/jobs/nursing/rn-1",
    }


def test_submit_url_error_status():
    client, _ = _client(422)
    with pytest.raises(IndexNowError):
        client.submit_url("https://jobs.example.org/jobs/nursing/rn-1")


def test_submit_batch_chunks_and_skips_failed_chunks():
    client, session = _client(200, 500, 200)
    urls = [f"/jobs/nursing/rn-{i}" for i in range(2500)]

    accepted = client.submit_batch(urls)

    assert session.post.call_count == 3
    assert accepted == 1500
    last_payload = session.post.call_args.kwargs["json"]
    assert len(last_payload["urlList"]) == 500


def test_client_requires_key():
    with pytest.raises(IndexNowError):
        IndexNowClient(SITE_URL, "")


def test_absolute_url():
    assert absolute_url(SITE_URL + "/", "/jobs/nursing/a") == "https://jobs.example.org/jobs/nursing/a"
    assert absolute_url(SITE_URL, "https://other.org/x") == "https://other.org/x"


# === Queue ===

def test_queue_dedupes_waiting_urls(fake_redis):
    queue = IndexNowQueue(fake_redis, SITE_URL, "indexnow:test")

    assert queue.queue_job_urls(["rn-1", "rn-2", "rn-1", ""]) == 2
    assert queue.stats() == {"waiting": 2, "seen": 2}

    entry = queue.pop()
    assert entry["url"] == "https://jobs.example.org/jobs/nursing/rn-1"
    assert entry["action"] == "update"
    assert queue.stats() == {"waiting": 1, "seen": 1}

    # popped URLs can be queued again
    assert queue.queue_url("/jobs/nursing/rn-1", "delete") is True


def test_queue_drops_malformed_entries(fake_redis):
    queue = IndexNowQueue(fake_redis, SITE_URL, "indexnow:test")
    fake_redis.rpush("indexnow:test", "{not json")

    assert queue.pop() is None
    assert queue.pop() is None


def test_queue_redis_errors_are_reported_as_not_queued():
    broken = MagicMock()
    broken.sadd.side_effect = redis.ConnectionError("connection refused")
    queue = IndexNowQueue(broken, SITE_URL)

    assert queue.queue_url("/jobs/nursing/rn-1") is False


def test_failed_push_can_be_retried():
    flaky = FlakyRedis(rpush=1)
    queue = IndexNowQueue(flaky, SITE_URL, "indexnow:test")

    assert queue.queue_url("/jobs/nursing/rn-1") is False
    assert queue.stats() == {"waiting": 0, "seen": 0}

    assert queue.queue_url("/jobs/nursing/rn-1") is True
    assert queue.stats() == {"waiting": 1, "seen": 1}


def test_queue_slugs_if_enabled(config, fake_redis, monkeypatch):
    assert queue_slugs_if_enabled(config, ["rn-1"], "update") == 0

    config.config["indexnow"]["enabled"] = True
    queue = IndexNowQueue(fake_redis, SITE_URL, "indexnow:test")
    monkeypatch.setattr(indexnow.IndexNowQueue, "from_config", classmethod(lambda cls, cfg: queue))

    assert queue_slugs_if_enabled(config, ["rn-1", "rn-2"], "delete") == 2
    assert queue_slugs_if_enabled(config, [], "delete") == 0
    assert json.loads(fake_redis.lists["indexnow:test"][0])["action"] == "delete"


# === Worker ===

def _worker(fake_redis, client, timer):
    queue = IndexNowQueue(fake_redis, SITE_URL, "indexnow:test")
    worker = IndexNowWorker(queue, client, throttle_seconds=6.0, sleep=timer.sleep, clock=timer)
    return queue, worker


def test_worker_spaces_submissions(fake_redis):
    timer = FakeTimer()
    client = MagicMock()
    queue, worker = _worker(fake_redis, client, timer)
    queue.queue_job_urls(["rn-1", "rn-2", "rn-3"])

    stats = worker.run(once=True)

    assert stats.submitted == 3
    assert timer.sleeps == [6.0, 6.0]
    assert client.submit_url.call_count == 3


def test_worker_does_not_wait_when_gap_already_elapsed(fake_redis):
    timer = FakeTimer()
    client = MagicMock()
    queue, worker = _worker(fake_redis, client, timer)
    queue.queue_job_urls(["rn-1"])
    worker.run(once=True)

    timer.now += 10
    queue.queue_job_urls(["rn-2"])
    worker.run(once=True)

    assert timer.sleeps == []


def test_worker_continues_after_failure(fake_redis):
    timer = FakeTimer()
    client = MagicMock()
    client.submit_url.side_effect = [None, IndexNowError("HTTP 429"), None]
    queue, worker = _worker(fake_redis, client, timer)
    queue.queue_job_urls(["rn-1", "rn-2", "rn-3"])

    stats = worker.run(once=True)

    assert stats.submitted == 2
    assert stats.failed == 1
    assert worker.metrics.counter("indexnow_failed") == 1
    # the failed attempt still counts toward spacing
    assert timer.sleeps == [6.0, 6.0]


def test_worker_idles_until_stopped(fake_redis):
    timer = FakeTimer()
    queue, worker = _worker(fake_redis, MagicMock(), timer)
    calls = []

    def should_stop():
        calls.append(1)
        return len(calls) > 2

    worker.run(idle_seconds=5.0, should_stop=should_stop)

    assert timer.sleeps == [5.0, 5.0]


def test_worker_survives_redis_outage():
    timer = FakeTimer()
    client = MagicMock()
    flaky = FlakyRedis()
    queue, worker = _worker(flaky, client, timer)
    queue.queue_job_urls(["rn-1", "rn-2"])
    flaky.failures["lpop"] = 1
    calls = []

    def should_stop():
        calls.append(1)
        return len(calls) > 4

    stats = worker.run(idle_seconds=5.0, should_stop=should_stop)

    assert stats.submitted == 2
    assert worker.metrics.counter("indexnow_queue_errors") == 1
    assert [c.args[0] for c in client.submit_url.call_args_list] == [
        "https://jobs.example.org/jobs/nursing/rn-1",
        "https://jobs.example.org/jobs/nursing/rn-2",
    ]
    assert timer.sleeps == [5.0, 6.0, 5.0]


def test_worker_once_stops_on_redis_outage():
    timer = FakeTimer()
    client = MagicMock()
    flaky = FlakyRedis()
    queue, worker = _worker(flaky, client, timer)
    queue.queue_job_urls(["rn-1"])
    flaky.failures["lpop"] = 1

    stats = worker.run(once=True)

    assert stats.submitted == 0
    assert queue.stats() == {"waiting": 1, "seen": 1}
