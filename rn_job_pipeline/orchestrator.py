"""
Workday RN scraper orchestrator

Consumes candidate batches from the pagination controller, drops non-RN titles,
loads detail pages, verifies the posting is an RN role, normalizes and
validates each record, and hands valid jobs to the job store.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config_loader import ConfigLoader, EmployerConfig
from .extractor import DetailPageData, MIN_DESCRIPTION_CHARS
from .job_store import JobStore, UpsertResult
from .models import JobListingCandidate, NormalizedJob
from .normalize import (
    ParsedLocation,
    derive_salary_columns,
    detect_experience_level,
    detect_specialty,
    generate_job_slug,
    normalize_city,
    normalize_job_type,
    normalize_state,
    normalize_zip_code,
    parse_location,
    validate_job_data,
)
from .page_session import BrowserSession, NavigationError, PageSession
from .pagination import PaginationController, PaginationSettings
from .run_metrics import RunMetrics

logger = logging.getLogger(__name__)

NON_RN_TITLES = (
    "surgical technologist", "surgical technician", "clinical assistant",
    "clinical technician", "home health aide", "patient care assistant",
    "patient care aide", "pcna", "health unit coordinator", "nursing assistant",
    "nurse aide", "patient care tech", "patient care technician", "nurse technician",
    "lpn", "licensed practical nurse", "licensed vocational nurse", "lvn",
    "licensed vocational nursing assistant", "cna", "certified nursing assistant", "stna",
)

_RN_REF = r"(?:rn|registered\s+nurse|r\.n\.)"
RN_PATTERNS = (
    re.compile(r"\brn\b", re.IGNORECASE),
    re.compile(r"\bregistered nurse\b", re.IGNORECASE),
    re.compile(r"\br\.n\.(?!\w)", re.IGNORECASE),
    re.compile(r"\br\. n\.(?!\w)", re.IGNORECASE),
)
EXCLUSION_PATTERNS = (
    re.compile(r"\bassists\s+(?:the\s+)?" + _RN_REF + r"(?!\w)", re.IGNORECASE),
    re.compile(r"\bassisting\s+(?:the\s+)?" + _RN_REF + r"(?!\w)", re.IGNORECASE),
    re.compile(r"\bworks?\s+with\s+(?:the\s+)?" + _RN_REF + r"(?!\w)", re.IGNORECASE),
    re.compile(r"\bsupports?\s+(?:the\s+)?" + _RN_REF + r"(?!\w)", re.IGNORECASE),
    re.compile(r"\bunder\s+(?:the\s+)?supervision\s+of\s+(?:an?\s+|the\s+)?" + _RN_REF + r"(?!\w)",
               re.IGNORECASE),
)
PLACEHOLDER_PATTERNS = (
    re.compile(r"job\s+description\s+is\s+being\s+updated", re.IGNORECASE),
    re.compile(r"please\s+visit\s+(?:the\s+)?employer\s+website", re.IGNORECASE),
    re.compile(r"description\s+coming\s+soon", re.IGNORECASE),
    re.compile(r"job\s+description\s+not\s+available", re.IGNORECASE),
)


class ScraperRunError(RuntimeError):
    """Run-level failure: browser launch or the initial listing load."""
    pass


class JobRejected(Exception):
    """A candidate failed the RN role gate."""

    def __init__(self, reason: str, title: str = ""):
        super().__init__(f"{reason}: {title}" if title else reason)
        self.reason = reason
        self.title = title


def is_non_rn_title(title: Optional[str]) -> bool:
    lower = (title or "").lower()
    return any(term in lower for term in NON_RN_TITLES)


def mentions_rn(text: Optional[str]) -> bool:
    return any(pattern.search(text or "") for pattern in RN_PATTERNS)


def verify_rn_role(title: str, description: Optional[str], extraction_failed: bool = False) -> None:
    """Raise JobRejected unless the posting is an RN role.

    An "assists the RN" style phrase only rejects when the title itself
    does not name the RN role.
    """
    if extraction_failed:
        raise JobRejected("extraction_failed", title)
    text = description or ""
    if len(text) < MIN_DESCRIPTION_CHARS:
        raise JobRejected("description_too_short", title)
    if any(pattern.search(text) for pattern in PLACEHOLDER_PATTERNS):
        raise JobRejected("placeholder_description", title)
    title_is_rn = mentions_rn(title)
    if not title_is_rn and any(pattern.search(text) for pattern in EXCLUSION_PATTERNS):
        raise JobRejected("assists_rn", title)
    if not (title_is_rn or mentions_rn(text)):
        raise JobRejected("no_rn_mention", title)


@dataclass
class ScrapeResult:
    employer_slug: str
    employer_name: str
    success: bool = False
    total_listings: int = 0
    prefiltered: int = 0
    processed: int = 0
    rejected: int = 0
    invalid: int = 0
    errors: List[str] = field(default_factory=list)
    jobs: List[NormalizedJob] = field(default_factory=list)
    save_results: Optional[UpsertResult] = None
    page_limited: bool = False
    termination_reason: Optional[str] = None
    error: Optional[str] = None


class WorkdayScraper:
    """Scrapes RN jobs for one Workday employer"""

    def __init__(
        self,
        employer: EmployerConfig,
        config: ConfigLoader,
        *,
        store: Optional[JobStore] = None,
        save: bool = True,
        max_pages: Optional[int] = None,
        metrics: Optional[RunMetrics] = None,
        session_factory: Optional[Callable[[], PageSession]] = None,
        settings: Optional[PaginationSettings] = None,
    ):
        self.employer = employer
        self.config = config
        self.store = store
        self.save = save and store is not None
        self.metrics = metrics or RunMetrics(pipeline="scraper")
        self.session_factory = session_factory or (lambda: BrowserSession(config))
        self.settings = settings or PaginationSettings.from_config(config, max_pages)
        self.job_delay = config.get_scraper_delay('job_delay_seconds', 2)

    # === Record building ===

    def resolve_location(self, location_text: Optional[str]) -> ParsedLocation:
        facility = self.employer.facility_location_for(location_text)
        if facility:
            return ParsedLocation(city=facility.city, state=facility.state)
        return parse_location(location_text)

    def build_record(self, candidate: JobListingCandidate, details: DetailPageData) -> Dict[str, Any]:
        """Apply the role gate and normalize one candidate; raises JobRejected."""
        title = candidate.title or details.title or ""
        description = details.description or candidate.raw_card_text
        verify_rn_role(title, description, details.extraction_failed)

        location_text = candidate.location_text or details.location
        parsed = self.resolve_location(location_text)
        city = normalize_city(parsed.city)
        state = normalize_state(parsed.state)
        salary = details.salary

        record: Dict[str, Any] = {
            "slug": generate_job_slug(title, city, state, candidate.source_job_id),
            "source_job_id": candidate.source_job_id,
            "source_url": candidate.detail_url,
            "title": title,
            "description": description,
            "location": details.location or location_text or "Location not specified",
            "city": city,
            "state": state,
            "zip_code": normalize_zip_code(parsed.zip_code),
            "is_remote": details.is_remote,
            "requirements": details.requirements,
            "responsibilities": details.responsibilities,
            "benefits": details.benefits,
            "department": details.department,
            "specialty": detect_specialty(title, description),
            "experience_level": detect_experience_level(title, description),
            "job_type": normalize_job_type(details.employment_type),
            "shift_type": details.shift_type,
            "salary_min": salary.salary_min,
            "salary_max": salary.salary_max,
            "salary_type": salary.salary_type,
            "employer_name": self.employer.employer_name,
            "employer_slug": self.employer.employer_slug,
            "career_page_url": self.employer.resolved_career_page_url,
            "ats_platform": self.employer.ats_platform,
        }
        record.update(derive_salary_columns(salary.salary_min, salary.salary_max, salary.salary_type))
        return record

    # === Run ===

    def _process_candidate(self, controller: PaginationController, candidate: JobListingCandidate,
                           result: ScrapeResult) -> None:
        details = controller.fetch_detail(candidate)
        result.processed += 1
        self.metrics.inc("jobs_processed")
        try:
            record = self.build_record(candidate, details)
        except JobRejected as exc:
            result.rejected += 1
            self.metrics.inc("jobs_rejected")
            self.metrics.inc(f"rejected_{exc.reason}")
            logger.info("Rejected %s (%s)", candidate.title, exc.reason)
            return

        validation = validate_job_data(record)
        if not validation.valid:
            result.invalid += 1
            self.metrics.inc("jobs_invalid")
            logger.warning("Invalid job %s: %s", candidate.title, "; ".join(validation.errors))
            return

        job = NormalizedJob(**record)
        result.jobs.append(job)
        self.metrics.inc("jobs_valid")
        print(f"   ✓ {job.title} | {job.city}, {job.state} | {job.specialty}")

    def _filter_candidates(self, candidates: Sequence[JobListingCandidate],
                           result: ScrapeResult) -> List[JobListingCandidate]:
        survivors = [c for c in candidates if not is_non_rn_title(c.title)]
        dropped = len(candidates) - len(survivors)
        result.total_listings += len(candidates)
        result.prefiltered += dropped
        if dropped:
            self.metrics.inc("listings_prefiltered", dropped)
            logger.info("Pre-filtered %s non-RN titles", dropped)
        return survivors

    def scrape(self) -> ScrapeResult:
        """Run the listing loop and, when saving, persist the valid jobs."""
        result = ScrapeResult(employer_slug=self.employer.slug, employer_name=self.employer.employer_name)
        print(f"\n🚀 Scraping {self.employer.employer_name} RN jobs (Workday)")
        print(f"   Search URL: {self.employer.search_url}")

        session = self.session_factory()
        try:
            session.start()
        except Exception as exc:
            raise ScraperRunError(f"Browser launch failed: {exc}") from exc

        try:
            controller = PaginationController(session, self.employer, self.settings, self.metrics)
            try:
                for candidates in controller.iter_pages():
                    survivors = self._filter_candidates(candidates, result)
                    for index, candidate in enumerate(survivors):
                        try:
                            self._process_candidate(controller, candidate, result)
                        except Exception as exc:
                            result.errors.append(f"{candidate.detail_url}: {exc}")
                            self.metrics.inc("job_errors")
                            logger.warning("Job processing failed for %s", candidate.detail_url, exc_info=True)
                        if index < len(survivors) - 1:
                            session.pause(self.job_delay)
            except NavigationError as exc:
                if controller.iterations == 0:
                    raise ScraperRunError(f"Initial listing load failed: {exc}") from exc
                logger.error("Listing navigation failed on page %s: %s", controller.current_page, exc)
                result.errors.append(f"navigation: {exc}")
                controller.termination_reason = "navigation_error"
                controller.page_limited = True
            result.page_limited = controller.page_limited
            result.termination_reason = controller.termination_reason
        finally:
            session.stop()

        if self.save:
            result.save_results = self.store.upsert_batch(
                result.jobs,
                employer_slug=self.employer.employer_slug,
                verify_missing=not result.page_limited,
            )
            if result.page_limited:
                logger.info("Page-limited run; skipped missing-job verification")

        result.success = True
        self.metrics.set_gauge(f"{self.employer.slug}.jobs_valid", len(result.jobs))
        return result
