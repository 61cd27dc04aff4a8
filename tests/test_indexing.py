import base64
import json
from unittest.mock import MagicMock

import pytest
import requests

from rn_job_pipeline.indexing import (
    GoogleIndexingClient,
    IndexingEngine,
    IndexingError,
    IndexingRateLimitError,
    NotificationType,
    PUBLISH_URL,
    is_rate_limit_message,
    load_service_account_info,
)

from conftest import FakeIndexingClient, make_job

SITE_URL = "https://jobs.example.org/"


def _active_jobs(store, count, prefix="rn"):
    jobs = [make_job(f"{prefix}-{i}", source_url=f"https://example.org/job/{prefix}{i}") for i in range(count)]
    store.upsert_batch(jobs)
    for job in jobs:
        store.apply_classification(store.get_by_slug(job.slug).id, is_staff_rn=True)
    return [store.get_by_slug(job.slug) for job in jobs]


def _removed_job(store, clock, slug="rn-removed"):
    job = _active_jobs(store, 1, prefix=slug)[0]
    store.mark_submitted([job.id], clock.now)
    store.apply_classification(job.id, is_staff_rn=False)
    return store.get_by_slug(job.slug)


def _engine(store, client, clock, sleeps, **kwargs):
    options = dict(site_url=SITE_URL, daily_quota=195, batch_size=50, request_delay=0.5,
                   batch_delay=20.0, sleep=sleeps.append, clock=clock)
    options.update(kwargs)
    return IndexingEngine(store, client, **options)


# === Engine ===

def test_rate_limit_stops_run_and_keeps_earlier_submissions(store, clock):
    _active_jobs(store, 160)
    removed = _removed_job(store, clock)
    client = FakeIndexingClient(rate_limit_on_call=151)
    sleeps = []

    report = _engine(store, client, clock, sleeps, daily_quota=200).run()

    assert len(client.calls) == 151
    assert all(kind is NotificationType.UPDATED for _, kind in client.calls)
    assert report.updated.found == 160
    assert report.updated.success == 150
    assert report.quota_used == 150
    assert report.quota_exceeded is True
    assert report.needs_alert is True
    assert report.deleted.found == 0
    assert len(store.find_candidates(active=True, submitted=True)) == 150
    assert store.get_by_slug(removed.slug).google_indexed_at is not None
    assert sleeps.count(20.0) == 3


def test_quota_caps_submissions(store, clock):
    _active_jobs(store, 5)
    client = FakeIndexingClient()

    report = _engine(store, client, clock, [], daily_quota=3).run()

    assert len(client.calls) == 3
    assert report.updated.found == 3
    assert report.quota_used == 3
    assert len(store.find_candidates(active=True, submitted=False)) == 2


def test_removed_jobs_are_deleted_and_cleared(store, clock):
    active = _active_jobs(store, 1)[0]
    removed = _removed_job(store, clock)
    client = FakeIndexingClient()
    sleeps = []

    report = _engine(store, client, clock, sleeps).run()

    assert client.calls == [
        ("https://jobs.example.org/jobs/nursing/" + active.slug, NotificationType.UPDATED),
        ("https://jobs.example.org/jobs/nursing/" + removed.slug, NotificationType.DELETED),
    ]
    assert report.deleted.success == 1
    assert store.get_by_slug(active.slug).google_indexed_at == clock.now
    assert store.get_by_slug(removed.slug).google_indexed_at is None
    assert sleeps == [20.0]
    assert report.needs_alert is False


def test_failed_submission_does_not_stop_the_phase(store, clock):
    jobs = _active_jobs(store, 3)
    failing = "https://jobs.example.org/jobs/nursing/" + jobs[1].slug
    client = FakeIndexingClient(failing_urls=[failing])

    report = _engine(store, client, clock, []).run()

    assert report.updated.success == 2
    assert report.updated.failed == 1
    assert report.quota_used == 2
    assert report.needs_alert is True
    assert any(failing in error for error in report.errors)
    assert store.get_by_slug(jobs[1].slug).google_indexed_at is None


def test_dry_run_writes_nothing(store, clock):
    _active_jobs(store, 3)
    removed = _removed_job(store, clock)
    sleeps = []

    report = _engine(store, None, clock, sleeps, dry_run=True).run()

    assert report.updated.success == 3
    assert report.deleted.success == 1
    assert report.quota_used == 4
    assert report.needs_alert is False
    assert store.find_candidates(active=True, submitted=True) == []
    assert store.get_by_slug(removed.slug).google_indexed_at is not None
    assert sleeps == []


def test_report_text(store, clock):
    _active_jobs(store, 2)
    report = _engine(store, FakeIndexingClient(), clock, []).run()

    text = report.to_text()
    assert "Quota used: 2/195" in text
    assert "New jobs found: 2" in text


# === Client ===

def _response(status, payload=None):
    response = MagicMock(status_code=status, text="")
    response.json.return_value = payload if payload is not None else {}
    return response


def _client(response=None, get_response=None):
    session = MagicMock()
    session.post.return_value = response
    session.get.return_value = get_response
    return GoogleIndexingClient(session=session), session


def test_publish_posts_notification():
    client, session = _client(_response(200, {"urlNotificationMetadata": {"url": "u"}}))

    result = client.publish("https://jobs.example.org/jobs/nursing/rn-1", NotificationType.UPDATED)

    assert result == {"urlNotificationMetadata": {"url": "u"}}
    session.post.assert_called_once_with(
        PUBLISH_URL,
        json={"url": "https://jobs.example.org/jobs/nursing/rn-1", "type": "URL_UPDATED"},
        timeout=30,
    )


def test_publish_429_is_a_rate_limit():
    client, _ = _client(_response(429))
    with pytest.raises(IndexingRateLimitError):
        client.publish("https://jobs.example.org/x", NotificationType.UPDATED)


def test_publish_quota_message_is_a_rate_limit():
    client, _ = _client(_response(400, {"error": {"message": "Quota exceeded for quota metric"}}))
    with pytest.raises(IndexingRateLimitError):
        client.publish("https://jobs.example.org/x", NotificationType.DELETED)


def test_publish_403_is_a_permission_error():
    client, _ = _client(_response(403))
    with pytest.raises(IndexingError) as exc_info:
        client.publish("https://jobs.example.org/x", NotificationType.UPDATED)
    assert not isinstance(exc_info.value, IndexingRateLimitError)
    assert "owner" in str(exc_info.value)


def test_publish_network_error():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("connection reset")
    client = GoogleIndexingClient(session=session)

    with pytest.raises(IndexingError):
        client.publish("https://jobs.example.org/x", NotificationType.UPDATED)


def test_check_configuration():
    client, _ = _client(get_response=_response(404))
    assert client.check_configuration("https://jobs.example.org").working is True

    client, _ = _client(get_response=_response(500, {"error": {"message": "backend error"}}))
    status = client.check_configuration("https://jobs.example.org")
    assert status.working is False
    assert "backend error" in status.error


def test_client_requires_credentials_without_session():
    with pytest.raises(IndexingError):
        GoogleIndexingClient()


# === Credentials ===

def test_service_account_info_from_json_or_base64():
    info = {"type": "service_account", "client_email": "bot@example.iam.gserviceaccount.com"}
    raw = json.dumps(info)
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")

    assert load_service_account_info(raw) == info
    assert load_service_account_info(encoded) == info


@pytest.mark.parametrize("raw", ["", "   ", None, "not-json"])
def test_service_account_info_rejects_garbage(raw):
    with pytest.raises(IndexingError):
        load_service_account_info(raw)


def test_rate_limit_messages():
    assert is_rate_limit_message("HTTP 429 Too Many Requests")
    assert is_rate_limit_message("Quota exceeded")
    assert is_rate_limit_message("Rate limit hit")
    assert not is_rate_limit_message("backend error")
