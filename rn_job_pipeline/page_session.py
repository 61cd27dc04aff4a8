"""
Browser page session used by the pagination controller.

PageSession is the seam between scraping logic and the browser. The controller
only calls these operations, so tests can script pages without Playwright.
BrowserSession implements them with the Playwright sync API.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from playwright.sync_api import sync_playwright, Page, Browser, BrowserContext
from playwright.sync_api import Error as PlaywrightError

from .config_loader import ConfigLoader, SelectorConfig
from .extractor import (
    COMPENSATION_SELECTORS,
    DESCRIPTION_FALLBACK_SELECTORS,
    DETAIL_LOCATION_SELECTORS,
    HEADER_SELECTORS,
    LISTING_LOCATION_SELECTORS,
    LOCATION_ICON_SELECTOR,
    MAIN_CONTENT_SELECTORS,
    TIME_TYPE_SELECTORS,
    TITLE_SELECTORS,
    DetailSnapshot,
    clean_text,
    listing_location,
    source_job_id_from_url,
)
from .models import JobListingCandidate

logger = logging.getLogger(__name__)

PAGE_OK = "ok"
PAGE_DETACHED = "detached"
PAGE_CLOSED = "closed"

_DETACHED_MARKERS = ("detached", "target closed", "has been closed", "frame was detached")

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--window-size=1920,1080",
    "--disable-infobars",
    "--disable-extensions",
    "--no-first-run",
]

_LISTING_URLS_JS = """(cards, linkSelector) => cards.map(card => {
    const link = card.querySelector(linkSelector) || card.querySelector('a[href]') || (card.href ? card : null);
    return link ? link.href : null;
}).filter(Boolean)"""

_PAGE_NUMBERS_JS = """() => Array.from(document.querySelectorAll('button, a'))
    .filter(el => /^\\d+$/.test((el.textContent || '').trim()))
    .filter(el => !el.disabled && el.getAttribute('aria-disabled') !== 'true')
    .map(el => parseInt(el.textContent.trim(), 10))
    .filter(n => n >= 1 && n <= 100)"""


class NavigationError(RuntimeError):
    """A navigation that was required to succeed did not."""
    pass


class PageDetachedError(NavigationError):
    """The page or its main frame was closed or detached mid-operation."""
    pass


def looks_detached(message: str) -> bool:
    lower = (message or "").lower()
    return any(marker in lower for marker in _DETACHED_MARKERS)


def _wrap_error(exc: Exception, action: str) -> NavigationError:
    message = f"{action} failed: {exc}"
    if looks_detached(str(exc)):
        return PageDetachedError(message)
    return NavigationError(message)


class PageSession(ABC):
    """Operations the scraper needs from one browser tab"""

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    @property
    @abstractmethod
    def url(self) -> str: ...

    @abstractmethod
    def page_state(self) -> str:
        """Return PAGE_OK, PAGE_DETACHED or PAGE_CLOSED."""

    @abstractmethod
    def recover(self, base_url: str, timeout_ms: int) -> None:
        """Re-establish a usable page and load base_url."""

    @abstractmethod
    def goto(self, url: str, timeout_ms: int) -> None: ...

    @abstractmethod
    def wait_for_selector(self, selector: str, timeout_ms: int) -> bool: ...

    @abstractmethod
    def extract_listings(self, selectors: SelectorConfig) -> List[JobListingCandidate]: ...

    @abstractmethod
    def listing_urls(self, selectors: SelectorConfig) -> List[str]: ...

    @abstractmethod
    def click_by_text(self, phrases: Sequence[str]) -> bool: ...

    @abstractmethod
    def click_enabled(self, selector: str) -> bool: ...

    @abstractmethod
    def scroll_to_bottom(self) -> None: ...

    @abstractmethod
    def page_numbers(self) -> List[int]: ...

    @abstractmethod
    def click_page_number(self, number: int) -> bool: ...

    @abstractmethod
    def active_page_number(self) -> Optional[int]: ...

    @abstractmethod
    def snapshot_detail(self, selectors: SelectorConfig) -> DetailSnapshot: ...

    @abstractmethod
    def quick_snapshot(self) -> DetailSnapshot: ...

    def pause(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class BrowserSession(PageSession):
    """Playwright-backed page session"""

    def __init__(self, config: ConfigLoader):
        self.config = config
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    # === Lifecycle ===

    def start(self) -> None:
        """Launch Chromium and open a page"""
        logger.info("Starting browser...")
        self.playwright = sync_playwright().start()
        self.browser = self.playwright.chromium.launch(
            headless=self.config.is_headless(),
            args=BROWSER_ARGS,
            timeout=self.config.get_launch_timeout(),
        )
        context_kwargs = dict(
            viewport={"width": 1920, "height": 1080},
            locale="en-US",
            timezone_id="America/New_York",
        )
        user_agent = self.config.get_user_agent()
        if user_agent:
            context_kwargs["user_agent"] = user_agent
        self.context = self.browser.new_context(**context_kwargs)
        self._open_page()
        logger.info("Browser started successfully")

    def _open_page(self) -> None:
        self.page = self.context.new_page()
        self.page.set_default_timeout(self.config.get_page_timeout())
        self.page.set_default_navigation_timeout(self.config.get_navigation_timeout())

        if self.config.use_stealth():
            try:
                from playwright_stealth.stealth import Stealth
                Stealth().apply_stealth_sync(self.page)
                logger.info("Playwright stealth enabled")
            except Exception as exc:
                logger.warning("Failed to enable stealth mode: %s", exc)

    def stop(self) -> None:
        """Clean up browser resources"""
        try:
            if self.page and not self.page.is_closed():
                self.page.close()
        except Exception:
            logger.debug("Page close failed", exc_info=True)
        try:
            if self.context:
                self.context.close()
        except Exception:
            logger.debug("Browser context close failed", exc_info=True)
        try:
            if self.browser:
                self.browser.close()
        except Exception:
            logger.debug("Browser close failed", exc_info=True)
        try:
            if self.playwright:
                self.playwright.stop()
        except Exception:
            logger.debug("Playwright stop failed", exc_info=True)
        logger.info("Browser closed")

    # === State / Navigation ===

    @property
    def url(self) -> str:
        if self.page is None or self.page.is_closed():
            return ""
        return self.page.url

    def page_state(self) -> str:
        if self.page is None or self.page.is_closed():
            return PAGE_CLOSED
        try:
            self.page.evaluate("() => document.readyState")
        except PlaywrightError as exc:
            if looks_detached(str(exc)):
                return PAGE_DETACHED
            raise _wrap_error(exc, "Page state check")
        return PAGE_OK

    def recover(self, base_url: str, timeout_ms: int) -> None:
        if self.page is None or self.page.is_closed():
            logger.warning("Page closed; opening a new page")
            try:
                self._open_page()
            except PlaywrightError as exc:
                raise _wrap_error(exc, "Opening replacement page") from exc
        self.goto(base_url, timeout_ms)
        self.pause(2)

    def goto(self, url: str, timeout_ms: int) -> None:
        try:
            self.page.goto(url, wait_until=self.config.get_wait_until(), timeout=timeout_ms)
        except PlaywrightError as exc:
            raise _wrap_error(exc, f"Navigation to {url}") from exc

    def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        try:
            self.page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightError as exc:
            if looks_detached(str(exc)):
                raise _wrap_error(exc, f"Waiting for {selector}") from exc
            logger.debug("Selector %s not found within %sms", selector, timeout_ms)
            return False

    # === Element helpers ===

    def _extract_text(self, element) -> str:
        if not element:
            return ""
        try:
            text = element.inner_text().strip()
        except PlaywrightError:
            text = ""
        if not text:
            try:
                text = (element.text_content() or "").strip()
            except PlaywrightError:
                text = ""
        return text

    def _texts(self, root, selectors: Sequence[str]) -> List[str]:
        texts = []
        for selector in selectors:
            element = root.query_selector(selector)
            text = self._extract_text(element)
            if text:
                texts.append(text)
        return texts

    def _inner_html(self, selector: str) -> Optional[str]:
        element = self.page.query_selector(selector)
        if not element:
            return None
        return element.inner_html()

    def _is_enabled(self, element) -> bool:
        aria_disabled = (element.get_attribute("aria-disabled") or "").lower()
        disabled_attr = element.get_attribute("disabled")
        class_name = (element.get_attribute("class") or "").lower()
        if aria_disabled in ("true", "disabled") or disabled_attr is not None:
            return False
        return "disabled" not in class_name

    # === Listing page ===

    def extract_listings(self, selectors: SelectorConfig) -> List[JobListingCandidate]:
        try:
            cards = self.page.query_selector_all(selectors.job_card)
        except PlaywrightError as exc:
            raise _wrap_error(exc, "Listing extraction") from exc

        candidates = []
        for card in cards:
            try:
                candidate = self._card_to_candidate(card, selectors)
            except PlaywrightError as exc:
                if looks_detached(str(exc)):
                    raise _wrap_error(exc, "Listing extraction") from exc
                logger.debug("Skipping unreadable job card: %s", exc)
                continue
            if candidate:
                candidates.append(candidate)
        return candidates

    def _card_to_candidate(self, card, selectors: SelectorConfig) -> Optional[JobListingCandidate]:
        title_element = card.query_selector(selectors.job_title) or card
        title = clean_text(self._extract_text(title_element))

        link = card.query_selector(selectors.job_link)
        if not link and title_element.evaluate("el => el.tagName") == "A":
            link = title_element
        if not link:
            link = card.query_selector("a[href]")
        href = link.evaluate("el => el.href") if link else None
        if not title or not href:
            return None

        configured = self._extract_text(card.query_selector(selectors.job_location))
        candidates = self._texts(card, LISTING_LOCATION_SELECTORS)
        icon = card.query_selector(LOCATION_ICON_SELECTOR)
        icon_text = None
        if icon:
            icon_text = icon.evaluate("el => el.parentElement ? el.parentElement.textContent : ''")

        return JobListingCandidate(
            title=title,
            detail_url=href,
            source_job_id=source_job_id_from_url(href),
            location_text=listing_location(configured, candidates, icon_text),
            raw_card_text=clean_text(card.text_content()),
        )

    def listing_urls(self, selectors: SelectorConfig) -> List[str]:
        try:
            return self.page.eval_on_selector_all(selectors.job_card, _LISTING_URLS_JS, selectors.job_link)
        except PlaywrightError as exc:
            raise _wrap_error(exc, "Reading listing URLs") from exc

    def _buttons(self) -> list:
        try:
            return self.page.query_selector_all("button, a")
        except PlaywrightError as exc:
            raise _wrap_error(exc, "Reading buttons") from exc

    def click_by_text(self, phrases: Sequence[str]) -> bool:
        for element in self._buttons():
            try:
                text = (element.text_content() or "").strip().lower()
                if not any(phrase in text for phrase in phrases):
                    continue
                if not element.is_visible() or not self._is_enabled(element):
                    continue
                element.click()
                return True
            except PlaywrightError as exc:
                logger.debug("Click by text failed: %s", exc)
        return False

    def click_enabled(self, selector: str) -> bool:
        try:
            element = self.page.query_selector(selector)
            if not element or not element.is_visible() or not self._is_enabled(element):
                return False
            element.click()
            return True
        except PlaywrightError as exc:
            logger.debug("Click on %s failed: %s", selector, exc)
            return False

    def scroll_to_bottom(self) -> None:
        try:
            self.page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
        except PlaywrightError as exc:
            raise _wrap_error(exc, "Scrolling") from exc

    def page_numbers(self) -> List[int]:
        try:
            return sorted(set(self.page.evaluate(_PAGE_NUMBERS_JS)))
        except PlaywrightError as exc:
            logger.debug("Reading page numbers failed: %s", exc)
            return []

    def click_page_number(self, number: int) -> bool:
        for element in self._buttons():
            try:
                if (element.text_content() or "").strip() != str(number):
                    continue
                if not self._is_enabled(element):
                    continue
                element.click()
            except PlaywrightError as exc:
                logger.debug("Clicking page %s failed: %s", number, exc)
                continue
            try:
                self.page.wait_for_load_state("networkidle", timeout=10000)
            except PlaywrightError:
                logger.debug("Network did not settle after clicking page %s", number)
            return True
        return False

    def active_page_number(self) -> Optional[int]:
        try:
            element = self.page.query_selector('[aria-current="page"], .active')
        except PlaywrightError as exc:
            raise _wrap_error(exc, "Reading active page") from exc
        match = re.search(r"\d+", self._extract_text(element))
        return int(match.group(0)) if match else None

    # === Detail page ===

    def snapshot_detail(self, selectors: SelectorConfig) -> DetailSnapshot:
        try:
            self.page.evaluate("() => document.querySelectorAll('script, style').forEach(el => el.remove())")
            description = self.page.query_selector(selectors.job_description)
            body_text = self._extract_text(description) or self._extract_text(self.page.query_selector("body"))

            icon = self.page.query_selector(LOCATION_ICON_SELECTOR)
            icon_text = None
            if icon:
                icon_text = icon.evaluate("el => el.parentElement ? el.parentElement.textContent : ''")

            return DetailSnapshot(
                url=self.page.url,
                page_title=self.page.title(),
                body_text=body_text,
                title_texts=self._texts(self.page, TITLE_SELECTORS),
                location_texts=self._texts(self.page, DETAIL_LOCATION_SELECTORS),
                location_icon_text=icon_text,
                header_texts=self._texts(self.page, HEADER_SELECTORS),
                time_type_texts=self._texts(self.page, TIME_TYPE_SELECTORS),
                compensation_texts=self._texts(self.page, COMPENSATION_SELECTORS),
                description_html=description.inner_html() if description else None,
                fallback_description_htmls=[
                    html for html in (self._inner_html(s) for s in DESCRIPTION_FALLBACK_SELECTORS) if html
                ],
                main_content_htmls=[
                    html for html in (self._inner_html(s) for s in MAIN_CONTENT_SELECTORS) if html
                ],
                body_html=self._inner_html("body") or "",
            )
        except PlaywrightError as exc:
            raise _wrap_error(exc, "Detail extraction") from exc

    def quick_snapshot(self) -> DetailSnapshot:
        try:
            return DetailSnapshot(
                url=self.page.url,
                page_title=self.page.title(),
                body_text=self._extract_text(self.page.query_selector("body")),
                title_texts=self._texts(self.page, ("h1",)),
            )
        except PlaywrightError as exc:
            raise _wrap_error(exc, "Quick extraction") from exc
