"""
Configuration loader for the RN job pipeline
Reads and validates settings.yaml and the employer registry (employers.yaml)
"""

import yaml
import os
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
import logging

from pydantic import BaseModel, Field, ValidationError

from .normalize import generate_employer_slug

logger = logging.getLogger(__name__)

DEFAULT_SITE_URL = "https://intelliresume.net"
MIN_INDEXNOW_THROTTLE_SECONDS = 6.0


class ConfigValidationError(ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and float(value) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and float(value) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_min_max_pair(min_val: Any, max_val: Any, min_field: str, max_field: str) -> None:
    """Validate that min_val <= max_val."""
    if min_val is not None and max_val is not None:
        if float(min_val) > float(max_val):
            raise ConfigValidationError(
                f"Invalid config: '{min_field}' ({min_val}) must be <= '{max_field}' ({max_val})"
            )


# === Employer registry ===

class SelectorConfig(BaseModel):
    """CSS selectors for one Workday career site"""

    job_card: str = '[data-automation-id="jobTitle"]'
    job_title: str = '[data-automation-id="jobTitle"]'
    job_location: str = '[data-automation-id="jobPostingHeader"]'
    job_link: str = 'a[data-automation-id="jobTitle"]'
    pagination_next: str = 'button[aria-label*="next" i], button[aria-label*="Next" i]'
    pagination_container: str = '[data-automation-id="pagination"]'
    load_more_button: str = 'button[data-automation-id="loadMoreJobs"]'
    job_description: str = '[data-automation-id="jobPostingDescription"]'

    class Config:
        extra = "forbid"


class FacilityLocation(BaseModel):
    city: str
    state: str


class EmployerConfig(BaseModel):
    """One employer entry from employers.yaml"""

    slug: str
    employer_name: str
    base_url: str
    search_url: str
    career_page_url: Optional[str] = None
    ats_platform: str = "workday"
    filters: Dict[str, Any] = Field(default_factory=dict)
    facility_locations: Dict[str, FacilityLocation] = Field(default_factory=dict)
    selectors: SelectorConfig = Field(default_factory=SelectorConfig)

    @property
    def employer_slug(self) -> str:
        return generate_employer_slug(self.employer_name)

    @property
    def resolved_career_page_url(self) -> str:
        return self.career_page_url or self.base_url

    def facility_location_for(self, name: Optional[str]) -> Optional[FacilityLocation]:
        """Map a facility or street address to a known city/state.

        Tries an exact key match, then a substring match in either direction,
        then the `_default` entry.
        """
        if not self.facility_locations:
            return None
        if name:
            text = name.strip()
            if text in self.facility_locations:
                return self.facility_locations[text]
            for key, location in self.facility_locations.items():
                if key == "_default":
                    continue
                if key in text or text in key:
                    return location
        return self.facility_locations.get("_default")

    def __str__(self) -> str:
        return f"{self.employer_name} ({self.slug})"


def merge_selectors(overrides: Optional[Dict[str, Any]]) -> SelectorConfig:
    """Merge employer selector overrides onto the Workday defaults.

    Unknown selector keys are a configuration error.
    """
    values = {key: value for key, value in (overrides or {}).items() if value}
    try:
        return SelectorConfig(**values)
    except ValidationError as exc:
        raise ConfigValidationError(f"Invalid selector overrides: {exc}") from exc


def load_employers(path: Path) -> Dict[str, EmployerConfig]:
    """Load employers.yaml into EmployerConfig objects keyed by slug."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Employer registry not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}

    employers: Dict[str, EmployerConfig] = {}
    for slug, entry in (raw.get("employers") or {}).items():
        entry = dict(entry or {})
        selectors = merge_selectors(entry.pop("selectors", None))
        try:
            employer = EmployerConfig(slug=slug, selectors=selectors, **entry)
        except ValidationError as exc:
            raise ConfigValidationError(f"Invalid employer config '{slug}': {exc}") from exc
        for field in ("employer_name", "base_url", "search_url"):
            if not getattr(employer, field).strip():
                raise ConfigValidationError(
                    f"Invalid employer config '{slug}': '{field}' is required"
                )
        employers[slug] = employer

    logger.info(f"✓ Loaded {len(employers)} employers from {path}")
    return employers


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: str = "config/settings.yaml"):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._employers: Optional[Dict[str, EmployerConfig]] = None
        self._load()

    def _load(self) -> None:
        """Load config from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"✓ Config loaded from {self.config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            raise

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        # Browser timeouts
        _validate_positive(self.get('browser.page_timeout'), 'browser.page_timeout')
        _validate_positive(self.get('browser.navigation_timeout'), 'browser.navigation_timeout')
        _validate_positive(self.get('browser.launch_timeout'), 'browser.launch_timeout')

        # Scraper timeouts and loop limits
        for key in ('initial_load_timeout', 'listing_wait_timeout', 'return_timeout',
                    'detail_timeout', 'description_wait_timeout', 'recovery_timeout'):
            _validate_positive(self.get(f'scraper.{key}'), f'scraper.{key}')
        _validate_positive(self.get('scraper.max_stable_iterations'), 'scraper.max_stable_iterations')
        _validate_positive(self.get('scraper.max_iterations'), 'scraper.max_iterations')
        for key in ('page_settle_seconds', 'detail_settle_seconds', 'job_delay_seconds',
                    'employer_delay_seconds', 'scroll_settle_seconds'):
            _validate_non_negative(self.get(f'scraper.{key}'), f'scraper.{key}')
        _validate_non_negative(self.get('scraper.max_pages'), 'scraper.max_pages')

        # Store
        _validate_positive(self.get('store.expiry_days'), 'store.expiry_days')

        # Indexing quota
        quota = self.get('indexing.daily_quota')
        hard_limit = self.get('indexing.hard_limit')
        _validate_positive(quota, 'indexing.daily_quota')
        _validate_positive(hard_limit, 'indexing.hard_limit')
        _validate_min_max_pair(quota, hard_limit, 'indexing.daily_quota', 'indexing.hard_limit')
        _validate_positive(self.get('indexing.batch_size'), 'indexing.batch_size')
        _validate_non_negative(self.get('indexing.request_delay_seconds'), 'indexing.request_delay_seconds')
        _validate_non_negative(self.get('indexing.batch_delay_seconds'), 'indexing.batch_delay_seconds')

        # IndexNow throttle floor
        throttle = self.get('indexnow.throttle_seconds')
        if throttle is not None and float(throttle) < MIN_INDEXNOW_THROTTLE_SECONDS:
            raise ConfigValidationError(
                f"Invalid config: 'indexnow.throttle_seconds' must be >= "
                f"{MIN_INDEXNOW_THROTTLE_SECONDS:g}, got {throttle}"
            )

        # Classifier
        _validate_non_negative(self.get('classifier.max_retries'), 'classifier.max_retries')
        _validate_positive(self.get('classifier.max_description_chars'), 'classifier.max_description_chars')

        logger.debug("✓ Config invariants validated")

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'indexing.daily_quota')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    # === Site Config ===

    def get_site_url(self) -> str:
        """Public site URL; NEXT_PUBLIC_SITE_URL overrides the config value"""
        url = (os.getenv("NEXT_PUBLIC_SITE_URL") or self.get('site.url', '') or DEFAULT_SITE_URL)
        return url.strip().rstrip('/')

    # === Employer Config ===

    def get_employers_path(self) -> Path:
        """Get employer registry path; relative paths resolve next to settings.yaml"""
        path = Path(self.get('employers_file', 'employers.yaml'))
        if not path.is_absolute():
            path = self.config_path.parent / path
        return path

    def get_employers(self) -> Dict[str, EmployerConfig]:
        """Get all configured employers keyed by slug"""
        if self._employers is None:
            self._employers = load_employers(self.get_employers_path())
        return self._employers

    def get_employer(self, slug: str) -> EmployerConfig:
        """Get one employer by slug; raises KeyError listing the known slugs"""
        employers = self.get_employers()
        if slug not in employers:
            available = ", ".join(sorted(employers))
            raise KeyError(f"Unknown employer '{slug}'. Available: {available}")
        return employers[slug]

    # === Browser Config ===

    def is_headless(self) -> bool:
        """Check if browser should run in headless mode"""
        return bool(self.get('browser.headless', True))

    def get_page_timeout(self) -> int:
        """Get page load timeout in milliseconds"""
        return int(self.get('browser.page_timeout', 30) * 1000)

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return int(self.get('browser.navigation_timeout', 30) * 1000)

    def get_launch_timeout(self) -> int:
        """Get browser launch timeout in milliseconds"""
        return int(self.get('browser.launch_timeout', 60) * 1000)

    def get_wait_until(self) -> str:
        """Get Playwright wait_until event for page.goto"""
        return self.get('browser.wait_until', 'domcontentloaded')

    def get_user_agent(self) -> str:
        return self.get('browser.user_agent', '') or ''

    def use_stealth(self) -> bool:
        """Check if Playwright stealth should be enabled"""
        return bool(self.get('browser.use_stealth', False))

    # === Scraper Config ===

    def get_scraper_timeout(self, name: str, default: float) -> int:
        """Get a scraper timeout (seconds in YAML) in milliseconds"""
        return int(float(self.get(f'scraper.{name}', default)) * 1000)

    def get_max_stable_iterations(self) -> int:
        return int(self.get('scraper.max_stable_iterations', 3))

    def get_max_iterations(self) -> int:
        return int(self.get('scraper.max_iterations', 200))

    def get_max_pages(self) -> Optional[int]:
        """Get page limit per employer (None or 0 means unlimited)"""
        value = self.get('scraper.max_pages')
        return int(value) if value else None

    def get_scraper_delay(self, name: str, default: float) -> float:
        return float(self.get(f'scraper.{name}', default))

    def get_scroll_attempts(self) -> int:
        return int(self.get('scraper.scroll_attempts', 3))

    # === Store Config ===

    def get_store_path(self) -> Path:
        """Get JSONL job store path"""
        return Path(self.get('store.path', 'data/jobs.jsonl'))

    def get_expiry_days(self) -> int:
        return int(self.get('store.expiry_days', 60))

    # === Indexing Config ===

    def get_daily_quota(self) -> int:
        """Effective daily quota, clamped to the hard limit"""
        quota = int(self.get('indexing.daily_quota', 195))
        return min(quota, self.get_hard_limit())

    def get_hard_limit(self) -> int:
        return int(self.get('indexing.hard_limit', 200))

    def get_batch_size(self) -> int:
        return int(self.get('indexing.batch_size', 50))

    def get_request_delay(self) -> float:
        return float(self.get('indexing.request_delay_seconds', 0.5))

    def get_batch_delay(self) -> float:
        return float(self.get('indexing.batch_delay_seconds', 20))

    def get_google_credentials_env(self) -> str:
        """Get env var name that holds the service account JSON (never stored in config)"""
        return (self.get('indexing.credentials_env', '') or 'GOOGLE_SERVICE_ACCOUNT_JSON').strip()

    # === IndexNow Config ===

    def is_indexnow_enabled(self) -> bool:
        return bool(self.get('indexnow.enabled', False))

    def get_indexnow_key(self) -> str:
        """Read IndexNow key from env using indexnow.key_env"""
        env_name = (self.get('indexnow.key_env', '') or 'INDEXNOW_KEY').strip()
        return (os.getenv(env_name) or '').strip()

    def get_indexnow_throttle(self) -> float:
        return float(self.get('indexnow.throttle_seconds', MIN_INDEXNOW_THROTTLE_SECONDS))

    def get_indexnow_idle_seconds(self) -> float:
        return float(self.get('indexnow.idle_seconds', 5))

    def get_indexnow_queue_key(self) -> str:
        return self.get('indexnow.queue_key', 'indexnow:urls')

    def get_redis_settings(self) -> Dict[str, Any]:
        """Redis connection settings; REDIS_HOST/REDIS_PORT override config"""
        host = os.getenv("REDIS_HOST") or self.get('indexnow.redis_host', 'localhost')
        port = os.getenv("REDIS_PORT") or self.get('indexnow.redis_port', 6379)
        return {"host": host, "port": int(port), "db": int(self.get('indexnow.redis_db', 0))}

    # === Classifier Config ===

    def is_classifier_enabled(self) -> bool:
        return bool(self.get('classifier.enabled', True))

    def get_classifier_model(self) -> str:
        return self.get('classifier.model', 'llama3.1:8b')

    def get_classifier_max_retries(self) -> int:
        return int(self.get('classifier.max_retries', 2))

    def get_classifier_max_description_chars(self) -> int:
        return int(self.get('classifier.max_description_chars', 1300))

    def get_classifier_prompt(self) -> str:
        return self.get('classifier.prompt', '') or ''

    # === Notification Config ===

    def is_email_enabled(self) -> bool:
        return bool(self.get('notifications.email_enabled', True))

    def get_subject_prefix(self) -> str:
        return self.get('notifications.subject_prefix', '[RN Jobs]')

    # === Output Config ===

    def get_metrics_path(self) -> Optional[str]:
        """Get run metrics JSON template ({timestamp} expands at write time)"""
        return self.get('output.metrics_file', '') or None

    # === Logging Config ===

    def get_log_level(self) -> str:
        """Get logging level"""
        return self.get('logging.level', 'INFO')

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/rn_job_pipeline.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = template.replace('{timestamp}', timestamp)
        return Path(filename)

    def __repr__(self) -> str:
        return f"<Config: {self.config_path}, site={self.get_site_url()}>"


# Convenience function
def load_config(config_path: str = "config/settings.yaml") -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path)
