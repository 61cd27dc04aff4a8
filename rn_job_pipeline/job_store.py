"""
Job Store - persistence gateway for normalized jobs

JobStore is the interface the scraper, classifier and indexing engine use.
JsonlJobStore keeps one JSON record per line, keyed by job slug, and rewrites
the file atomically after every mutating call.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from .models import NormalizedJob, utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 60

REASON_NOT_FOUND = "not_found"
REASON_EXPIRED = "expired"
REASON_NOT_RN = "not_staff_rn"

# Fields the classifier may refine; a re-scrape keeps them unless classification is reset
CLASSIFIED_FIELDS = ("specialty", "job_type", "shift_type", "experience_level")
# Lifecycle fields owned by the store, never taken from a scrape
STORE_FIELDS = ("id", "is_active", "classified_at", "google_indexed_at", "deactivated_reason")


class JobStoreError(RuntimeError):
    """Raised when the store itself cannot be read or written."""
    pass


@dataclass
class UpsertResult:
    total: int = 0
    created: int = 0
    updated: int = 0
    reactivated: int = 0
    deactivated: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)
    deactivated_slugs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JobStore(ABC):
    """Persistence operations used by the pipeline"""

    @abstractmethod
    def all_jobs(self) -> List[NormalizedJob]: ...

    @abstractmethod
    def find_candidates(
        self,
        *,
        active: bool,
        submitted: bool,
        limit: Optional[int] = None,
        order_by: str = "scraped_at",
    ) -> List[NormalizedJob]: ...

    @abstractmethod
    def find_pending_classification(
        self, limit: Optional[int] = None, employer_slug: Optional[str] = None
    ) -> List[NormalizedJob]: ...

    @abstractmethod
    def upsert_batch(
        self,
        jobs: Sequence[NormalizedJob],
        *,
        employer_slug: Optional[str] = None,
        verify_missing: bool = True,
    ) -> UpsertResult: ...

    @abstractmethod
    def mark_submitted(self, job_ids: Iterable[str], timestamp: datetime) -> int: ...

    @abstractmethod
    def clear_submitted(self, job_ids: Iterable[str]) -> int: ...

    @abstractmethod
    def apply_classification(
        self,
        job_id: str,
        *,
        is_staff_rn: bool,
        updates: Optional[Dict[str, Any]] = None,
        classified_at: Optional[datetime] = None,
    ) -> Optional[NormalizedJob]: ...


class JsonlJobStore(JobStore):
    """File-backed job store (one JSON record per line)"""

    def __init__(
        self,
        path: Path,
        expiry_days: int = DEFAULT_EXPIRY_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path = Path(path)
        self.expiry_days = expiry_days
        self.clock = clock
        self.jobs: Dict[str, NormalizedJob] = {}
        self._load()

    # === File handling ===

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        job = NormalizedJob(**json.loads(line))
                    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
                        logger.warning("Skipping invalid job store line: %s", exc)
                        continue
                    self.jobs[job.slug] = job
        except OSError as exc:
            raise JobStoreError(f"Failed to read job store {self.path}: {exc}") from exc

        logger.info("Loaded %s jobs from %s", len(self.jobs), self.path)

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".jobs-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for job in self.jobs.values():
                    f.write(json.dumps(job.model_dump(mode="json")) + "\n")
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise JobStoreError(f"Failed to write job store {self.path}: {exc}") from exc

    # === Queries ===

    def all_jobs(self) -> List[NormalizedJob]:
        return list(self.jobs.values())

    def get(self, job_id: str) -> Optional[NormalizedJob]:
        return next((job for job in self.jobs.values() if job.id == job_id), None)

    def get_by_slug(self, slug: str) -> Optional[NormalizedJob]:
        return self.jobs.get(slug)

    def find_candidates(
        self,
        *,
        active: bool,
        submitted: bool,
        limit: Optional[int] = None,
        order_by: str = "scraped_at",
    ) -> List[NormalizedJob]:
        """Jobs by active flag and whether a search-engine submission is recorded."""
        matches = [
            job for job in self.jobs.values()
            if job.is_active == active and (job.google_indexed_at is not None) == submitted
        ]
        matches.sort(key=lambda job: getattr(job, order_by), reverse=True)
        return matches[:limit] if limit is not None else matches

    def find_pending_classification(
        self, limit: Optional[int] = None, employer_slug: Optional[str] = None
    ) -> List[NormalizedJob]:
        matches = [
            job for job in self.jobs.values()
            if not job.is_active and job.classified_at is None
            and (employer_slug is None or job.employer_slug == employer_slug)
        ]
        matches.sort(key=lambda job: job.scraped_at, reverse=True)
        return matches[:limit] if limit is not None else matches

    # === Upsert ===

    def _save_job(self, job: NormalizedJob, now: datetime) -> str:
        expires = job.expires_date or now + timedelta(days=self.expiry_days)
        existing = self.jobs.get(job.slug)

        if existing is None:
            self.jobs[job.slug] = job.model_copy(update={
                "id": uuid.uuid4().hex,
                "is_active": False,
                "classified_at": None,
                "google_indexed_at": None,
                "deactivated_reason": None,
                "calculated_expires_date": expires,
                "scraped_at": now,
                "updated_at": now,
            })
            return "created"

        scraped = job.model_dump(exclude=set(STORE_FIELDS))
        description_changed = existing.description != job.description
        reset_classification = description_changed and existing.classified_at is not None
        dropped = not existing.is_active and existing.deactivated_reason in (REASON_NOT_FOUND, REASON_EXPIRED)

        if not reset_classification and existing.classified_at is not None:
            for name in CLASSIFIED_FIELDS:
                if getattr(existing, name) is not None:
                    scraped[name] = getattr(existing, name)

        updates = dict(scraped, calculated_expires_date=expires, scraped_at=now, updated_at=now)
        if reset_classification or dropped:
            updates.update(is_active=False, classified_at=None, deactivated_reason=None)

        self.jobs[job.slug] = existing.model_copy(update=updates)
        return "reactivated" if dropped else "updated"

    def upsert_batch(
        self,
        jobs: Sequence[NormalizedJob],
        *,
        employer_slug: Optional[str] = None,
        verify_missing: bool = True,
    ) -> UpsertResult:
        """Insert or update jobs, then deactivate missing and expired ones.

        New jobs are stored inactive and unclassified. Re-found jobs keep
        their classification unless the description changed after it was
        classified. Jobs previously dropped as missing or expired go back to
        pending classification.
        """
        now = self.clock()
        result = UpsertResult(total=len(jobs))
        found_urls = set()

        for job in jobs:
            try:
                outcome = self._save_job(job, now)
            except (ValueError, ValidationError) as exc:
                result.errors += 1
                result.error_details.append(f"{job.slug}: {exc}")
                logger.warning("Failed to save job %s: %s", job.slug, exc)
                continue
            found_urls.add(job.source_url)
            if outcome == "created":
                result.created += 1
            else:
                result.updated += 1
                if outcome == "reactivated":
                    result.reactivated += 1

        if verify_missing and employer_slug:
            if found_urls:
                result.deactivated_slugs.extend(self._verify_active_jobs(found_urls, employer_slug, now))
            else:
                logger.warning("No jobs saved for %s; skipping missing-job verification", employer_slug)
        result.deactivated_slugs.extend(self._deactivate_expired_jobs(now))
        result.deactivated = len(result.deactivated_slugs)

        self._flush()
        return result

    def _deactivate(self, job: NormalizedJob, reason: str, now: datetime) -> None:
        self.jobs[job.slug] = job.model_copy(update={
            "is_active": False,
            "deactivated_reason": reason,
            "updated_at": now,
        })

    def _verify_active_jobs(self, found_urls: set, employer_slug: str, now: datetime) -> List[str]:
        missing = [
            job for job in self.jobs.values()
            if job.is_active and job.employer_slug == employer_slug and job.source_url not in found_urls
        ]
        for job in missing:
            self._deactivate(job, REASON_NOT_FOUND, now)
        if missing:
            logger.info("Deactivated %s %s jobs no longer listed", len(missing), employer_slug)
        return [job.slug for job in missing]

    def verify_active_jobs(self, found_urls: Iterable[str], employer_slug: str) -> List[str]:
        """Deactivate an employer's active jobs whose URL was not seen in a full run."""
        slugs = self._verify_active_jobs(set(found_urls), employer_slug, self.clock())
        self._flush()
        return slugs

    def _deactivate_expired_jobs(self, now: datetime) -> List[str]:
        expired = []
        for job in list(self.jobs.values()):
            expires = job.expires_date or job.calculated_expires_date
            if job.is_active and expires is not None and expires < now:
                self._deactivate(job, REASON_EXPIRED, now)
                expired.append(job.slug)
        if expired:
            logger.info("Deactivated %s expired jobs", len(expired))
        return expired

    def deactivate_expired_jobs(self) -> List[str]:
        slugs = self._deactivate_expired_jobs(self.clock())
        self._flush()
        return slugs

    # === Submission bookkeeping ===

    def _update_ids(self, job_ids: Iterable[str], updates: Dict[str, Any]) -> int:
        wanted = set(job_ids)
        count = 0
        for slug, job in list(self.jobs.items()):
            if job.id in wanted:
                self.jobs[slug] = job.model_copy(update=updates)
                count += 1
        if count:
            self._flush()
        return count

    def mark_submitted(self, job_ids: Iterable[str], timestamp: datetime) -> int:
        return self._update_ids(job_ids, {"google_indexed_at": timestamp})

    def clear_submitted(self, job_ids: Iterable[str]) -> int:
        return self._update_ids(job_ids, {"google_indexed_at": None})

    # === Classification ===

    def apply_classification(
        self,
        job_id: str,
        *,
        is_staff_rn: bool,
        updates: Optional[Dict[str, Any]] = None,
        classified_at: Optional[datetime] = None,
    ) -> Optional[NormalizedJob]:
        job = self.get(job_id)
        if job is None:
            logger.warning("Classification for unknown job id %s", job_id)
            return None

        now = classified_at or self.clock()
        changes: Dict[str, Any] = {"classified_at": now, "updated_at": now}
        if is_staff_rn:
            changes.update(is_active=True, deactivated_reason=None)
            changes.update({k: v for k, v in (updates or {}).items() if v is not None})
        else:
            changes.update(is_active=False, deactivated_reason=REASON_NOT_RN)

        self.jobs[job.slug] = job.model_copy(update=changes)
        self._flush()
        return self.jobs[job.slug]
