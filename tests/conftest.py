from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
import yaml

from rn_job_pipeline.config_loader import EmployerConfig, load_config
from rn_job_pipeline.extractor import DetailSnapshot
from rn_job_pipeline.indexing import IndexingError, IndexingRateLimitError
from rn_job_pipeline.job_store import JsonlJobStore
from rn_job_pipeline.models import JobListingCandidate, NormalizedJob
from rn_job_pipeline.page_session import PAGE_OK, PageSession
from rn_job_pipeline.pagination import PaginationSettings

BASE_URL = "https://example.wd5.myworkdayjobs.com/en-US/External"
SEARCH_URL = BASE_URL + "?q=registered+nurse"

RN_DESCRIPTION = (
    "The Registered Nurse provides direct patient care in our 24-bed intensive care unit. "
    "The RN assesses patients, plans and evaluates nursing care, administers medications "
    "and treatments, and educates patients and families. Collaborates with physicians, "
    "respiratory therapists and pharmacists to deliver evidence-based care. Maintains "
    "accurate documentation in the electronic health record and participates in unit "
    "quality improvement projects. Qualifications: current New York State RN license, "
    "BLS and ACLS certification, strong communication skills and the ability to work "
    "effectively in a fast-paced team environment with critically ill adult patients."
)

SUPPORT_DESCRIPTION = (
    "The Unit Secretary coordinates the front desk of a busy inpatient unit. Answers "
    "phones, greets visitors, schedules appointments, orders supplies and maintains "
    "patient charts. Works closely with physicians and therapy staff to keep the unit "
    "running smoothly. Requires a high school diploma, excellent customer service skills "
    "and familiarity with electronic scheduling systems. Previous hospital experience is "
    "helpful but not required. This position is eligible for full benefits including "
    "medical, dental and vision coverage, tuition assistance and paid time off for all "
    "eligible team members who work at least twenty hours per week."
)


class FixedClock:
    """Mutable clock for store and engine tests"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class FakeSession(PageSession):
    """Scripted page session: listing pages, detail snapshots and failures"""

    def __init__(
        self,
        pages: List[List[JobListingCandidate]],
        details: Optional[Dict[str, object]] = None,
        quick: Optional[Dict[str, DetailSnapshot]] = None,
    ):
        self.pages = pages or [[]]
        self.page_index = 0
        self.details = details or {}
        self.quick = quick or {}
        self.current_url = ""
        self.state = PAGE_OK
        self.next_selector: Optional[str] = None
        self.numbered_pages: List[int] = []
        self.goto_errors: Dict[str, List[Exception]] = {}
        self.start_error: Optional[Exception] = None

        self.started = False
        self.stopped = False
        self.extract_calls = 0
        self.goto_calls: List[str] = []
        self.page_clicks: List[int] = []
        self.recover_calls = 0
        self.pauses: List[float] = []

    def start(self) -> None:
        if self.start_error:
            raise self.start_error
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def _current(self) -> List[JobListingCandidate]:
        return self.pages[min(self.page_index, len(self.pages) - 1)]

    @property
    def url(self) -> str:
        return self.current_url

    def page_state(self) -> str:
        return self.state

    def recover(self, base_url: str, timeout_ms: int) -> None:
        self.recover_calls += 1
        self.state = PAGE_OK
        self.current_url = base_url

    def goto(self, url: str, timeout_ms: int) -> None:
        errors = self.goto_errors.get(url)
        if errors:
            raise errors.pop(0)
        self.goto_calls.append(url)
        self.current_url = url

    def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        return True

    def extract_listings(self, selectors) -> List[JobListingCandidate]:
        self.extract_calls += 1
        return list(self._current())

    def listing_urls(self, selectors) -> List[str]:
        return [candidate.detail_url for candidate in self._current()]

    def click_by_text(self, phrases) -> bool:
        return False

    def click_enabled(self, selector: str) -> bool:
        if selector == self.next_selector and self.page_index < len(self.pages) - 1:
            self.page_index += 1
            return True
        return False

    def scroll_to_bottom(self) -> None:
        pass

    def page_numbers(self) -> List[int]:
        return list(self.numbered_pages)

    def click_page_number(self, number: int) -> bool:
        self.page_clicks.append(number)
        if number in self.numbered_pages:
            self.page_index = min(number - 1, len(self.pages) - 1)
            return True
        return False

    def active_page_number(self) -> Optional[int]:
        return None

    def snapshot_detail(self, selectors) -> DetailSnapshot:
        entry = self.details.get(self.current_url)
        if isinstance(entry, Exception):
            raise entry
        return entry or DetailSnapshot(url=self.current_url)

    def quick_snapshot(self) -> DetailSnapshot:
        return self.quick.get(self.current_url) or DetailSnapshot(url=self.current_url)

    def pause(self, seconds: float) -> None:
        self.pauses.append(seconds)


class FakeIndexingClient:
    """Records publish calls; fails on chosen call numbers or URLs"""

    def __init__(self, rate_limit_on_call: Optional[int] = None, failing_urls=()):
        self.calls = []
        self.rate_limit_on_call = rate_limit_on_call
        self.failing_urls = set(failing_urls)

    def publish(self, url, notification_type):
        self.calls.append((url, notification_type))
        if self.rate_limit_on_call and len(self.calls) >= self.rate_limit_on_call:
            raise IndexingRateLimitError("Quota exceeded for quota metric 'Publish requests'")
        if url in self.failing_urls:
            raise IndexingError("HTTP 500: backend error")
        return {"urlNotificationMetadata": {"url": url}}


class FakeRedis:
    """The subset of redis.Redis used by the IndexNow queue"""

    def __init__(self):
        self.lists: Dict[str, List[str]] = {}
        self.sets: Dict[str, set] = {}

    def sadd(self, key, *values):
        members = self.sets.setdefault(key, set())
        added = len([v for v in values if v not in members])
        members.update(values)
        return added

    def srem(self, key, *values):
        members = self.sets.setdefault(key, set())
        removed = len([v for v in values if v in members])
        members.difference_update(values)
        return removed

    def scard(self, key):
        return len(self.sets.get(key, set()))

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    def lpop(self, key):
        items = self.lists.get(key) or []
        return items.pop(0) if items else None

    def llen(self, key):
        return len(self.lists.get(key, []))


def make_candidate(job_id: str, title: str = "Registered Nurse - ICU",
                   location: str = "Rochester, NY") -> JobListingCandidate:
    slug = title.replace(" ", "-")
    return JobListingCandidate(
        title=title,
        detail_url=f"{BASE_URL}/job/Rochester-NY/{slug}_{job_id}",
        source_job_id=job_id,
        location_text=location,
        raw_card_text=f"{title} {location}",
    )


def make_snapshot(url: str, title: str = "Registered Nurse - ICU",
                  description: str = RN_DESCRIPTION, body_extra: str = "") -> DetailSnapshot:
    body = (
        f"{title}\nRochester, NY\nScheduled Weekly Hours: 40\n"
        f"Primary Work Shift: Night Shift\nPay Range: $38.50 - $55.00 per hour\n{body_extra}"
    )
    return DetailSnapshot(
        url=url,
        page_title=f"{title} - Careers",
        body_text=body,
        title_texts=[title],
        location_texts=["Rochester, NY"],
        description_html=f"<p>{description}</p>",
    )


def make_job(slug: str = "registered-nurse-icu-rochester-ny-r1", **overrides) -> NormalizedJob:
    data = dict(
        slug=slug,
        source_job_id="R1",
        source_url=f"{BASE_URL}/job/Rochester-NY/{slug}",
        title="Registered Nurse - ICU",
        description=RN_DESCRIPTION,
        location="Rochester, NY",
        city="Rochester",
        state="NY",
        specialty="ICU",
        employer_name="Example Health",
        employer_slug="example-health",
        career_page_url=BASE_URL,
    )
    data.update(overrides)
    return NormalizedJob(**data)


@pytest.fixture
def employer() -> EmployerConfig:
    return EmployerConfig(
        slug="example",
        employer_name="Example Health",
        base_url=BASE_URL,
        search_url=SEARCH_URL,
    )


@pytest.fixture
def fast_settings() -> PaginationSettings:
    return PaginationSettings(
        page_settle_seconds=0,
        detail_settle_seconds=0,
        scroll_settle_seconds=0,
        scroll_attempts=1,
    )


@pytest.fixture
def settings_data(tmp_path) -> dict:
    return {
        "site": {"url": "https://jobs.example.org"},
        "employers_file": "employers.yaml",
        "browser": {"headless": True, "page_timeout": 30, "navigation_timeout": 30, "launch_timeout": 60},
        "scraper": {
            "max_stable_iterations": 3,
            "max_iterations": 50,
            "max_pages": 0,
            "page_settle_seconds": 0,
            "detail_settle_seconds": 0,
            "job_delay_seconds": 0,
            "employer_delay_seconds": 0,
            "scroll_settle_seconds": 0,
        },
        "store": {"path": str(tmp_path / "data" / "jobs.jsonl"), "expiry_days": 60},
        "indexing": {"daily_quota": 195, "hard_limit": 200, "batch_size": 50,
                     "request_delay_seconds": 0.5, "batch_delay_seconds": 20},
        "indexnow": {"enabled": False, "throttle_seconds": 6, "queue_key": "indexnow:test"},
        "classifier": {"enabled": True, "model": "llama3.1:8b", "max_retries": 2,
                       "max_description_chars": 1300},
        "logging": {"level": "INFO", "log_file": str(tmp_path / "logs" / "test.log")},
    }


@pytest.fixture
def employers_data() -> dict:
    return {
        "employers": {
            "example": {
                "employer_name": "Example Health",
                "base_url": BASE_URL,
                "search_url": SEARCH_URL,
            },
            "strong-memorial-hospital": {
                "employer_name": "Strong Memorial Hospital",
                "base_url": "https://rochester.wd5.myworkdayjobs.com/UR_Nursing",
                "search_url": "https://rochester.wd5.myworkdayjobs.com/UR_Nursing?q=RN",
                "selectors": {"load_more_button": 'button[data-automation-id="showMore"]'},
                "facility_locations": {
                    "Strong Memorial Hospital": {"city": "Rochester", "state": "NY"},
                    "_default": {"city": "Rochester", "state": "NY"},
                },
            },
        }
    }


@pytest.fixture
def write_config(tmp_path, settings_data, employers_data):
    def _write(settings: Optional[dict] = None, employers: Optional[dict] = None):
        settings_path = tmp_path / "settings.yaml"
        settings_path.write_text(yaml.safe_dump(settings or settings_data))
        (tmp_path / "employers.yaml").write_text(yaml.safe_dump(employers or employers_data))
        return settings_path
    return _write


@pytest.fixture
def config(write_config):
    return load_config(str(write_config()))


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(tmp_path, clock) -> JsonlJobStore:
    return JsonlJobStore(tmp_path / "jobs.jsonl", expiry_days=60, clock=clock)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
