"""
Pagination and navigation controller for Workday listing pages.

Workday sites paginate in several ways (load-more buttons, next buttons,
infinite scroll, numbered pages), so the controller tries each method in
order and treats "new job URLs appeared" as the only proof of progress.
Iteration stops after N consecutive passes with no new URLs, after the
iteration cap, or when no advance method works.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Set

from .config_loader import ConfigLoader, EmployerConfig
from .extractor import DetailPageData, extract_details, extract_quick_details, failed_details, MIN_DESCRIPTION_CHARS
from .models import JobListingCandidate
from .page_session import PAGE_OK, NavigationError, PageDetachedError, PageSession
from .run_metrics import RunMetrics

logger = logging.getLogger(__name__)

LOAD_MORE_PHRASES = ("load more", "show more")
LOAD_MORE_SELECTORS = (
    '[data-automation-id="loadMoreJobs"]',
    'button.wd-button[aria-label*="more" i]',
)
NEXT_SELECTORS = (
    'button[aria-label*="next" i]',
    'button[data-automation-id="paginationNext"]',
    'a[aria-label*="next" i]',
    '[data-automation-id="pagination"] button:last-child',
    'button.wd-button[aria-label*="next" i]',
)


class ControllerState(str, Enum):
    EXTRACTING_PAGE = "extracting_page"
    PROCESSING = "processing"
    RETURNING_TO_LISTING = "returning_to_listing"
    ADVANCING_PAGE = "advancing_page"
    TERMINAL = "terminal"


@dataclass
class PaginationSettings:
    """Loop limits, timeouts (ms) and pauses (seconds)"""

    max_stable_iterations: int = 3
    max_iterations: int = 200
    max_pages: Optional[int] = None
    initial_timeout_ms: int = 30000
    listing_wait_ms: int = 15000
    return_timeout_ms: int = 20000
    detail_timeout_ms: int = 20000
    description_wait_ms: int = 12000
    recovery_timeout_ms: int = 15000
    page_settle_seconds: float = 3.0
    detail_settle_seconds: float = 2.0
    scroll_attempts: int = 3
    scroll_settle_seconds: float = 2.0

    @classmethod
    def from_config(cls, config: ConfigLoader, max_pages: Optional[int] = None) -> "PaginationSettings":
        return cls(
            max_stable_iterations=config.get_max_stable_iterations(),
            max_iterations=config.get_max_iterations(),
            max_pages=max_pages if max_pages is not None else config.get_max_pages(),
            initial_timeout_ms=config.get_scraper_timeout('initial_load_timeout', 30),
            listing_wait_ms=config.get_scraper_timeout('listing_wait_timeout', 15),
            return_timeout_ms=config.get_scraper_timeout('return_timeout', 20),
            detail_timeout_ms=config.get_scraper_timeout('detail_timeout', 20),
            description_wait_ms=config.get_scraper_timeout('description_wait_timeout', 12),
            recovery_timeout_ms=config.get_scraper_timeout('recovery_timeout', 15),
            page_settle_seconds=config.get_scraper_delay('page_settle_seconds', 3),
            detail_settle_seconds=config.get_scraper_delay('detail_settle_seconds', 2),
            scroll_attempts=config.get_scroll_attempts(),
            scroll_settle_seconds=config.get_scraper_delay('scroll_settle_seconds', 2),
        )


@dataclass
class AdvanceResult:
    success: bool
    new_page_number: Optional[int] = None
    method: Optional[str] = None


class PaginationController:
    """Drives one employer's listing pages through a PageSession"""

    def __init__(
        self,
        session: PageSession,
        employer: EmployerConfig,
        settings: Optional[PaginationSettings] = None,
        metrics: Optional[RunMetrics] = None,
    ):
        self.session = session
        self.employer = employer
        self.selectors = employer.selectors
        self.settings = settings or PaginationSettings()
        self.metrics = metrics

        self.state = ControllerState.EXTRACTING_PAGE
        self.seen_urls: Set[str] = set()
        self.current_page = 1
        self.iterations = 0
        self.stable_count = 0
        self.pages_processed = 0
        self.page_limited = False
        self.termination_reason: Optional[str] = None

    def _inc(self, name: str, amount: int = 1) -> None:
        if self.metrics:
            self.metrics.inc(name, amount)

    def _event(self, name: str, **data) -> None:
        if self.metrics:
            self.metrics.record_event(name, **data)

    # === Listing loop ===

    def open_listing(self) -> None:
        """Load the search URL; failure here is fatal for the run."""
        logger.info("Loading listing page: %s", self.employer.search_url)
        self.session.goto(self.employer.search_url, self.settings.initial_timeout_ms)
        if not self.session.wait_for_selector(self.selectors.job_card, self.settings.listing_wait_ms):
            logger.warning("Job cards did not appear within %sms", self.settings.listing_wait_ms)
        self.session.pause(self.settings.page_settle_seconds)

    def iter_pages(self) -> Iterator[List[JobListingCandidate]]:
        """Yield batches of never-seen candidates, one per listing pass.

        The caller processes each batch before asking for the next one; the
        controller then returns to the listing and advances.
        """
        self.open_listing()

        while True:
            if self.iterations >= self.settings.max_iterations:
                self.termination_reason = "iteration_limit"
                logger.warning("Reached iteration cap (%s)", self.settings.max_iterations)
                break
            self.iterations += 1

            self.state = ControllerState.EXTRACTING_PAGE
            try:
                listings = self.session.extract_listings(self.selectors)
            except NavigationError as exc:
                logger.warning("Listing extraction failed: %s", exc)
                listings = []

            new_candidates = []
            for candidate in listings:
                if candidate.detail_url and candidate.detail_url not in self.seen_urls:
                    self.seen_urls.add(candidate.detail_url)
                    new_candidates.append(candidate)
            self._inc("listings_seen", len(new_candidates))
            print(f"   Page {self.current_page}: {len(listings)} cards, {len(new_candidates)} new")

            if not new_candidates:
                self.stable_count += 1
                self._event("stable_iteration", page=self.current_page, count=self.stable_count)
                logger.info("No new jobs (stable %s/%s)", self.stable_count, self.settings.max_stable_iterations)
                if self.stable_count >= self.settings.max_stable_iterations:
                    self.termination_reason = "stable"
                    break
            else:
                self.stable_count = 0
                self.state = ControllerState.PROCESSING
                yield new_candidates
                self.pages_processed += 1

            if self.settings.max_pages and self.pages_processed >= self.settings.max_pages:
                self.page_limited = True
                self.termination_reason = "max_pages"
                logger.info("Reached page limit (%s)", self.settings.max_pages)
                break

            self.state = ControllerState.RETURNING_TO_LISTING
            self.return_to_listing()

            self.state = ControllerState.ADVANCING_PAGE
            result = self.advance()
            if result.success:
                self.current_page = result.new_page_number or self.current_page
                self._event("page_advanced", method=result.method, page=self.current_page)
                continue

            available = self.session.page_numbers()
            if available and max(available) > self.current_page:
                target = self.current_page + 1
                if self.session.click_page_number(target):
                    self.current_page = target
                    self._event("page_advanced", method="direct_page_number", page=target)
                    self.session.pause(self.settings.page_settle_seconds)
                    continue

            self.termination_reason = "no_more_pages"
            logger.info("No more pages after page %s", self.current_page)
            break

        self.state = ControllerState.TERMINAL

    # === Returning to listing ===

    def _on_listing_page(self) -> bool:
        url = self.session.url
        return "/job/" not in url and self.employer.base_url in url

    def navigate_to_page_number(self, target: int) -> bool:
        """Click through to a page number, stepping page by page if needed."""
        if target <= 1:
            return True
        if self.session.click_page_number(target):
            self.session.pause(self.settings.page_settle_seconds)
            return True
        for number in range(2, target + 1):
            if not self.session.click_page_number(number):
                logger.warning("Could not reach page %s (stopped at %s)", target, number - 1)
                return False
            self.session.pause(self.settings.page_settle_seconds)
        return True

    def _reload_listing(self) -> None:
        self.session.goto(self.employer.search_url, self.settings.return_timeout_ms)
        self.session.wait_for_selector(self.selectors.job_card, self.settings.listing_wait_ms)
        self.session.pause(self.settings.detail_settle_seconds)
        self.navigate_to_page_number(self.current_page)

    def return_to_listing(self) -> None:
        """Get back to the listing at the current page number."""
        try:
            if not self._on_listing_page():
                logger.info("Returning to listing page %s", self.current_page)
                self._reload_listing()
                return
            active = self.session.active_page_number()
            if active is not None and active != self.current_page:
                logger.info("Listing shows page %s, expected %s; reloading", active, self.current_page)
                self._reload_listing()
        except NavigationError as exc:
            logger.warning("Return to listing failed: %s; retrying search URL", exc)
            try:
                self.session.goto(self.employer.search_url, self.settings.return_timeout_ms)
            except NavigationError as retry_exc:
                logger.warning("Search URL reload failed: %s", retry_exc)

    # === Advancing ===

    def _has_new_urls(self, before: Set[str]) -> bool:
        try:
            after = set(self.session.listing_urls(self.selectors))
        except NavigationError as exc:
            logger.debug("Could not read listing URLs: %s", exc)
            return False
        return bool(after - before)

    def advance(self) -> AdvanceResult:
        """Try each advance method in order; success means new URLs appeared."""
        try:
            before = set(self.session.listing_urls(self.selectors))
        except NavigationError as exc:
            logger.warning("Could not read listing URLs before advancing: %s", exc)
            return AdvanceResult(False)
        settle = self.settings.page_settle_seconds

        for selector in (self.selectors.load_more_button,) + LOAD_MORE_SELECTORS:
            if self.session.click_enabled(selector):
                self.session.pause(settle)
                if self._has_new_urls(before):
                    return AdvanceResult(True, self.current_page, "load_more")

        if self.session.click_by_text(LOAD_MORE_PHRASES):
            self.session.pause(settle)
            if self._has_new_urls(before):
                return AdvanceResult(True, self.current_page, "load_more_text")

        for selector in (self.selectors.pagination_next,) + NEXT_SELECTORS:
            if self.session.click_enabled(selector):
                self.session.pause(settle)
                if self._has_new_urls(before):
                    return AdvanceResult(True, self.current_page + 1, "next_button")

        for _ in range(self.settings.scroll_attempts):
            try:
                self.session.scroll_to_bottom()
            except NavigationError as exc:
                logger.debug("Scroll failed: %s", exc)
                break
            self.session.pause(self.settings.scroll_settle_seconds)
            if self._has_new_urls(before):
                return AdvanceResult(True, self.current_page, "scroll")

        target = self.current_page + 1
        if target in self.session.page_numbers() and self.session.click_page_number(target):
            self.session.wait_for_selector(self.selectors.job_card, 8000)
            self.session.pause(settle)
            if self._has_new_urls(before):
                return AdvanceResult(True, target, "page_number")

        return AdvanceResult(False)

    # === Detail pages ===

    def fetch_detail(self, candidate: JobListingCandidate) -> DetailPageData:
        """Load a detail page and extract it, with one recovery on a detached page."""
        try:
            state = self.session.page_state()
            if state != PAGE_OK:
                logger.warning("Page %s before detail load; re-establishing", state)
                self.session.recover(self.employer.base_url, self.settings.recovery_timeout_ms)
            self.session.goto(candidate.detail_url, self.settings.detail_timeout_ms)
            if not self.session.wait_for_selector(self.selectors.job_description, self.settings.description_wait_ms):
                logger.info("Description element not found for %s", candidate.detail_url)
            self.session.pause(self.settings.detail_settle_seconds)
            return extract_details(self.session.snapshot_detail(self.selectors))
        except PageDetachedError as exc:
            logger.warning("Detail page detached (%s); attempting recovery", exc)
            self._inc("detail_recoveries")
            details = self._recover_detail(candidate)
            if details:
                return details
        except NavigationError as exc:
            logger.warning("Detail page failed for %s: %s", candidate.detail_url, exc)

        self._inc("detail_failures")
        return failed_details(
            candidate.detail_url, candidate.title, candidate.location_text, candidate.raw_card_text
        )

    def _recover_detail(self, candidate: JobListingCandidate) -> Optional[DetailPageData]:
        try:
            self.session.recover(self.employer.base_url, self.settings.recovery_timeout_ms)
            self.session.goto(candidate.detail_url, self.settings.detail_timeout_ms)
            self.session.pause(self.settings.detail_settle_seconds)
            details = extract_quick_details(self.session.quick_snapshot())
        except NavigationError as exc:
            logger.warning("Recovery failed for %s: %s", candidate.detail_url, exc)
            return None
        if details.description and len(details.description) > MIN_DESCRIPTION_CHARS:
            logger.info("Recovered details for %s", candidate.detail_url)
            return details
        return None
