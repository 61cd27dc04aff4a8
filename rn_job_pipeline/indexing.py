"""
Google Indexing API client and the daily submission engine.

Phase 1 submits active jobs that were never submitted (URL_UPDATED).
Phase 2 submits inactive jobs that were submitted before (URL_DELETED) and
only runs when quota remains and no rate limit was hit. Successful
submissions are recorded at batch boundaries and when the run ends,
including when it ends on an error.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from .job_store import JobStore
from .models import NormalizedJob, utc_now
from .run_metrics import RunMetrics

logger = logging.getLogger(__name__)

INDEXING_SCOPE = "https://www.googleapis.com/auth/indexing"
PUBLISH_URL = "https://indexing.googleapis.com/v3/urlNotifications:publish"
METADATA_URL = "https://indexing.googleapis.com/v3/urlNotifications/metadata"
MAX_REPORTED_ERRORS = 10


class NotificationType(str, Enum):
    UPDATED = "URL_UPDATED"
    DELETED = "URL_DELETED"


class IndexingError(RuntimeError):
    """A single submission failed."""
    pass


class IndexingRateLimitError(IndexingError):
    """Quota or rate limit reached; no further submissions this run."""
    pass


def is_rate_limit_message(message: str) -> bool:
    lower = (message or "").lower()
    return "429" in lower or "quota" in lower or "rate limit" in lower


def load_service_account_info(raw: Optional[str]) -> Dict[str, Any]:
    """Decode service account JSON given raw or base64-encoded."""
    if not raw or not raw.strip():
        raise IndexingError("Service account credentials are not set")
    raw = raw.strip()
    try:
        decoded = base64.b64decode(raw, validate=True).decode("utf-8")
        return json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        pass
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise IndexingError(f"Service account JSON is neither base64 nor JSON: {exc}") from exc


@dataclass
class ConfigurationStatus:
    configured: bool
    working: bool
    error: Optional[str] = None


class GoogleIndexingClient:
    """Publishes URL notifications with service-account credentials."""

    def __init__(
        self,
        service_account_info: Optional[Dict[str, Any]] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ) -> None:
        if session is None:
            if not service_account_info:
                raise IndexingError("Service account credentials are required")
            credentials = service_account.Credentials.from_service_account_info(
                service_account_info, scopes=[INDEXING_SCOPE]
            )
            session = AuthorizedSession(credentials)
        self.session = session
        self.timeout = timeout

    @classmethod
    def from_env(cls, env_var: str = "GOOGLE_SERVICE_ACCOUNT_JSON") -> "GoogleIndexingClient":
        return cls(load_service_account_info(os.getenv(env_var)))

    def _error_message(self, response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return (response.text or "")[:200]
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(payload)[:200]

    def _raise_for_status(self, response: requests.Response, url: str) -> None:
        if response.status_code == 429:
            raise IndexingRateLimitError(f"Rate limit exceeded (HTTP 429) for {url}")
        if response.status_code == 403:
            raise IndexingError(
                f"Permission denied (HTTP 403) for {url}: the service account must be an owner "
                f"of the Search Console property"
            )
        if response.status_code >= 400:
            message = self._error_message(response)
            if is_rate_limit_message(message):
                raise IndexingRateLimitError(f"HTTP {response.status_code}: {message}")
            raise IndexingError(f"HTTP {response.status_code}: {message}")

    def publish(self, url: str, notification_type: NotificationType) -> Dict[str, Any]:
        try:
            response = self.session.post(
                PUBLISH_URL,
                json={"url": url, "type": NotificationType(notification_type).value},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            if is_rate_limit_message(str(exc)):
                raise IndexingRateLimitError(str(exc)) from exc
            raise IndexingError(f"Request error for {url}: {exc}") from exc
        self._raise_for_status(response, url)
        try:
            return response.json()
        except ValueError:
            return {}

    def get_metadata(self, url: str) -> Dict[str, Any]:
        try:
            response = self.session.get(METADATA_URL, params={"url": url}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise IndexingError(f"Request error for {url}: {exc}") from exc
        if response.status_code == 404:
            return {}
        self._raise_for_status(response, url)
        return response.json()

    def check_configuration(self, site_url: str) -> ConfigurationStatus:
        """Probe the API with a metadata lookup of the site root."""
        try:
            self.get_metadata(site_url)
        except IndexingError as exc:
            if "not found" in str(exc).lower():
                return ConfigurationStatus(configured=True, working=True)
            return ConfigurationStatus(configured=True, working=False, error=str(exc))
        return ConfigurationStatus(configured=True, working=True)


@dataclass
class PhaseReport:
    found: int = 0
    success: int = 0
    failed: int = 0


@dataclass
class IndexingReport:
    dry_run: bool = False
    daily_quota: int = 0
    quota_used: int = 0
    quota_exceeded: bool = False
    updated: PhaseReport = field(default_factory=PhaseReport)
    deleted: PhaseReport = field(default_factory=PhaseReport)
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def total_failures(self) -> int:
        return self.updated.failed + self.deleted.failed

    @property
    def needs_alert(self) -> bool:
        return not self.dry_run and (self.total_failures > 0 or self.quota_exceeded)

    def add_error(self, message: str) -> None:
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(message)

    def to_text(self) -> str:
        lines = [
            f"Daily Google indexing {'(dry run) ' if self.dry_run else ''}report",
            f"Started: {self.started_at.isoformat()}",
            f"Finished: {(self.finished_at or utc_now()).isoformat()}",
            "",
            f"Quota used: {self.quota_used}/{self.daily_quota}",
            f"Quota exceeded: {'yes' if self.quota_exceeded else 'no'}",
            "",
            f"New jobs found: {self.updated.found}",
            f"  Submitted: {self.updated.success}",
            f"  Failed: {self.updated.failed}",
            f"Removed jobs found: {self.deleted.found}",
            f"  Submitted: {self.deleted.success}",
            f"  Failed: {self.deleted.failed}",
        ]
        if self.errors:
            lines += ["", "Errors:"] + [f"  - {error}" for error in self.errors]
        return "\n".join(lines)


class IndexingEngine:
    """Runs the two submission phases within a daily quota."""

    def __init__(
        self,
        store: JobStore,
        client: Optional[GoogleIndexingClient],
        *,
        site_url: str,
        daily_quota: int = 195,
        batch_size: int = 50,
        request_delay: float = 0.5,
        batch_delay: float = 20.0,
        dry_run: bool = False,
        metrics: Optional[RunMetrics] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.site_url = site_url.rstrip("/")
        self.daily_quota = daily_quota
        self.batch_size = batch_size
        self.request_delay = request_delay
        self.batch_delay = batch_delay
        self.dry_run = dry_run
        self.metrics = metrics or RunMetrics(pipeline="indexing")
        self.sleep = sleep
        self.clock = clock

    def job_url(self, job: NormalizedJob) -> str:
        return f"{self.site_url}/jobs/nursing/{job.slug}"

    def _persist(self, notification_type: NotificationType, job_ids: List[str]) -> None:
        if not job_ids or self.dry_run:
            return
        if notification_type is NotificationType.UPDATED:
            self.store.mark_submitted(job_ids, self.clock())
        else:
            self.store.clear_submitted(job_ids)
        logger.info("Recorded %s %s submissions", len(job_ids), notification_type.value)
        job_ids.clear()

    def _run_phase(
        self,
        jobs: Sequence[NormalizedJob],
        notification_type: NotificationType,
        phase: PhaseReport,
        report: IndexingReport,
        quota: int,
    ) -> int:
        """Submit jobs until done, out of quota, or rate limited; return remaining quota."""
        pending: List[str] = []
        verb = "update" if notification_type is NotificationType.UPDATED else "delete"
        try:
            for index, job in enumerate(jobs, 1):
                if quota <= 0:
                    break
                url = self.job_url(job)

                if self.dry_run:
                    print(f"   [dry-run] would {verb}: {url}")
                    phase.success += 1
                    quota -= 1
                    continue

                try:
                    self.client.publish(url, notification_type)
                except IndexingRateLimitError as exc:
                    report.quota_exceeded = True
                    report.add_error(f"{verb} {url}: {exc}")
                    self.metrics.record_event("rate_limited", url=url, phase=verb)
                    logger.warning("Rate limit reached after %s submissions: %s", report.quota_used, exc)
                    break
                except IndexingError as exc:
                    phase.failed += 1
                    report.add_error(f"{verb} {url}: {exc}")
                    self.metrics.inc("submission_failures")
                    logger.warning("Failed to %s %s: %s", verb, url, exc)
                else:
                    phase.success += 1
                    pending.append(job.id)
                    quota -= 1
                    report.quota_used += 1
                    self.metrics.inc(f"submitted_{verb}d")
                    print(f"   ✓ {verb}: {url}")

                if index < len(jobs) and quota > 0:
                    if index % self.batch_size == 0:
                        self._persist(notification_type, pending)
                        logger.info("Batch of %s done; pausing %ss", self.batch_size, self.batch_delay)
                        self.sleep(self.batch_delay)
                    else:
                        self.sleep(self.request_delay)
        finally:
            self._persist(notification_type, pending)

        if self.dry_run:
            report.quota_used = self.daily_quota - quota
        return quota

    def run(self) -> IndexingReport:
        report = IndexingReport(dry_run=self.dry_run, daily_quota=self.daily_quota)
        quota = self.daily_quota

        new_jobs = self.store.find_candidates(active=True, submitted=False, limit=quota)
        report.updated.found = len(new_jobs)
        print(f"\n📤 Phase 1: {len(new_jobs)} new jobs to submit (quota {quota})")
        quota = self._run_phase(new_jobs, NotificationType.UPDATED, report.updated, report, quota)

        if quota > 0 and not report.quota_exceeded:
            removed = self.store.find_candidates(
                active=False, submitted=True, limit=quota, order_by="updated_at"
            )
            report.deleted.found = len(removed)
            print(f"\n🗑️  Phase 2: {len(removed)} removed jobs to delete (quota left {quota})")
            if removed and self.batch_delay and not self.dry_run and report.updated.success:
                self.sleep(self.batch_delay)
            self._run_phase(removed, NotificationType.DELETED, report.deleted, report, quota)
        else:
            logger.info("Skipping removal phase (quota left %s, rate limited %s)", quota, report.quota_exceeded)

        report.finished_at = self.clock()
        self.metrics.set_gauge("quota_used", report.quota_used)
        return report
