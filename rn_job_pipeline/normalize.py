"""
Normalization helpers for scraped job data.

Everything here is a pure function over strings: state and city cleanup,
slug generation, job type and specialty detection, experience level
detection, salary column derivation and record validation.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .models import ExperienceLevel, JobType, SalaryType

HOURS_PER_YEAR = 2080
MIN_DESCRIPTION_CHARS = 50

STATE_NAMES: Dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}

# Common abbreviations seen in postings
STATE_ABBREVIATIONS: Dict[str, str] = {
    "calif": "CA", "cal": "CA", "conn": "CT", "del": "DE", "fla": "FL",
    "ill": "IL", "ind": "IN", "kan": "KS", "ken": "KY", "mass": "MA",
    "mich": "MI", "minn": "MN", "miss": "MS", "neb": "NE", "nev": "NV",
    "ore": "OR", "penn": "PA", "tenn": "TN", "tex": "TX", "wash": "WA",
    "wva": "WV", "wisc": "WI", "wis": "WI", "wyo": "WY",
}

_STATE_LOOKUP: Dict[str, str] = {name.lower(): code for code, name in STATE_NAMES.items()}
_STATE_LOOKUP.update(STATE_ABBREVIATIONS)

JOB_TYPE_ALIASES: Dict[str, JobType] = {
    "full-time": JobType.FULL_TIME, "fulltime": JobType.FULL_TIME,
    "full time": JobType.FULL_TIME, "ft": JobType.FULL_TIME,
    "f/t": JobType.FULL_TIME, "f.t.": JobType.FULL_TIME,
    "part-time": JobType.PART_TIME, "parttime": JobType.PART_TIME,
    "part time": JobType.PART_TIME, "pt": JobType.PART_TIME,
    "p/t": JobType.PART_TIME, "p.t.": JobType.PART_TIME,
    "prn": JobType.PRN, "per diem": JobType.PRN,
    "per-diem": JobType.PRN, "perdiem": JobType.PRN,
    "contract": JobType.CONTRACT, "temporary": JobType.CONTRACT,
    "temp": JobType.CONTRACT, "seasonal": JobType.CONTRACT,
    "travel": JobType.TRAVEL, "traveler": JobType.TRAVEL,
    "travel nurse": JobType.TRAVEL,
    "remote": JobType.REMOTE, "hybrid": JobType.HYBRID,
}

CITY_PREFIXES = {"st": "St.", "ft": "Ft.", "mt": "Mt."}

DEFAULT_SPECIALTY = "General Nursing"
FLOAT_POOL = "Float Pool"

FLOAT_TITLE_KEYWORDS = (
    "float", "floating", "all specialties", "all-specialties",
    "all specialities", "all speciality", "all specialty",
    "multi-specialty", "multiple specialties", "various specialties",
)
FLOAT_TEXT_KEYWORDS = (
    "float", "floating", "all specialties", "all-specialties",
    "all specialities", "all speciality", "multi-specialty",
    "multiple specialties", "various specialties",
)


@dataclass(frozen=True)
class SpecialtyRule:
    specialty: str
    keywords: tuple = ()
    patterns: tuple = ()

    def matches(self, text: str) -> bool:
        if any(keyword in text for keyword in self.keywords):
            return True
        return any(re.search(pattern, text) for pattern in self.patterns)


# Title rules run before description rules; order is significant
TITLE_SPECIALTY_RULES = (
    SpecialtyRule("Labor & Delivery",
                  ("labor and delivery", "labor & delivery", "l&d", "l & d"),
                  (r"\bl\s*&\s*d\b",)),
    SpecialtyRule("Maternity", ("maternity", "postpartum", "mother baby", "newborn nursery")),
    SpecialtyRule("NICU", ("nicu", "neonatal intensive care")),
    SpecialtyRule("PACU", ("pacu", "post-anesthesia", "post anesthesia", "recovery room")),
    SpecialtyRule("OR",
                  ("operating room", "perioperative", "or nurse"),
                  (r"\bor\s+registered\s+nurse", r"\bor\s+rn\b")),
    SpecialtyRule("Progressive Care",
                  ("progressive care", "stepdown", "step down", "pcu", "step-down")),
    SpecialtyRule("ICU", ("intensive care", "icu")),
    SpecialtyRule("ER",
                  ("emergency room", "emergency department", "emergency", "er nurse"),
                  (r"\ber\s+rn\b",)),
    SpecialtyRule("Radiology", ("radiology",)),
    SpecialtyRule("Oncology", ("oncology", "cancer")),
    SpecialtyRule("Cardiac", ("cardiac", "cardiology")),
    SpecialtyRule("Telemetry", ("telemetry",)),
    SpecialtyRule("Med-Surg", ("med-surg", "medical surgical", "med surg", "medsurg")),
    SpecialtyRule("Pediatrics", ("pediatric", "peds")),
    SpecialtyRule("Geriatrics", ("geriatric",)),
    SpecialtyRule("Mental Health", ("mental health", "psychiatric", "psych", "behavioral health")),
    SpecialtyRule("Rehabilitation", ("rehab",)),
    SpecialtyRule("Ambulatory", ("ambulatory",)),
    SpecialtyRule("Home Care", ("home care", "homecare")),
    SpecialtyRule("Home Health", ("home health",)),
    SpecialtyRule("Hospice", ("hospice", "palliative")),
    SpecialtyRule("Travel", ("travel",)),
)

TEXT_SPECIALTY_RULES = (
    SpecialtyRule("ER", ("emergency room", "emergency department",
                         "emergency dept", "emergency nursing")),
    SpecialtyRule("ICU", ("intensive care unit", "intensive care", "icu", "critical care unit")),
    SpecialtyRule("Labor & Delivery", ("labor and delivery", "labor & delivery", "l&d")),
    SpecialtyRule("Maternity", ("maternity", "postpartum", "newborn nursery")),
    SpecialtyRule("NICU", ("nicu", "neonatal intensive care")),
    SpecialtyRule("PACU", ("pacu", "post-anesthesia", "recovery room")),
    SpecialtyRule("Progressive Care", ("progressive care", "stepdown", "step down", "pcu")),
    SpecialtyRule("Radiology", ("radiology",)),
    SpecialtyRule("Oncology", ("oncology", "cancer care")),
    SpecialtyRule("Cardiac", ("cardiac", "cardiology")),
    SpecialtyRule("Telemetry", ("telemetry",)),
    SpecialtyRule("Med-Surg", ("med-surg", "medical surgical", "med surg")),
    SpecialtyRule("Pediatrics", ("pediatric", "pediatrics")),
    SpecialtyRule("Geriatrics", ("geriatric",)),
    SpecialtyRule("Mental Health", ("mental health", "psychiatric", "behavioral health")),
    SpecialtyRule("Rehabilitation", ("rehab",)),
    SpecialtyRule("Ambulatory", ("ambulatory",)),
    SpecialtyRule("Home Care", ("home care", "homecare")),
    SpecialtyRule("Home Health", ("home health",)),
    SpecialtyRule("Hospice", ("hospice", "palliative")),
    SpecialtyRule("Travel", ("travel",)),
)

SPECIALTIES = tuple(dict.fromkeys(
    [FLOAT_POOL] + [rule.specialty for rule in TITLE_SPECIALTY_RULES] + [DEFAULT_SPECIALTY]
))

SENIOR_TITLE_KEYWORDS = (
    "senior", "sr.", "lead rn", "lead nurse", "manager", "supervisor", "director",
    "chief", "head nurse", "nurse manager", "clinical coordinator", "charge nurse",
)
NEW_GRAD_TITLE_KEYWORDS = (
    "new grad", "new graduate", "new-grad", "entry level", "entry-level",
    "graduate nurse", "gn ", "newly licensed",
)
NEW_GRAD_TEXT_KEYWORDS = (
    "new grad", "new graduate", "new-grad", "no experience required",
    "no prior experience required", "newly licensed rn", "new rn graduate",
    "graduate nurse",
)

_NEW_GRAD_ANCHOR = re.compile(r"(?:new\s+grad|new\s+graduate|entry\s+level|no\s+experience)")
_YEARS_OF_EXPERIENCE = re.compile(r"\d+\s*years?\s+(?:of\s+)?experience")
_REQUIRED_YEARS = re.compile(
    r"\b(?:requires?|must\s+have|needed)\s+(?:a\s+minimum\s+of\s+)?(\d+)[\s\+\-]?\s*years?\s+"
    r"(?:of\s+)?(?:rn\s+)?(?:nursing\s+)?experience\b"
)
_MINIMUM_YEARS_REQUIRED = re.compile(
    r"\bminimum\s+(?:of\s+)?(\d+)[\s\+\-]?\s*years?\s+(?:of\s+)?(?:rn\s+)?(?:nursing\s+)?"
    r"experience\s+(?:required|needed|necessary)\b"
)

REQUIRED_FIELDS = (
    "title", "location", "city", "state", "description", "source_url",
    "employer_name", "employer_slug", "career_page_url",
)

_LOCATION_PATTERNS = (
    re.compile(r"^([A-Z][a-z]+(?:\s+(?:Heights?|Hts?|Beach|Hills|City|Town|Burg|Port|Haven))?),"
               r"\s+([A-Z]{2})(?:\s+(\d{5}))?$"),
    re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*),\s+([A-Z]{2})(?:\s+(\d{5}))?$"),
    re.compile(r"^([A-Z][a-z]+)\s+([A-Z]{2})()$"),
)


@dataclass
class ParsedLocation:
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive amounts."""
    return int(math.floor(value + 0.5))


# === State / City ===

def normalize_state(raw: Optional[str]) -> Optional[str]:
    """Return the 2-letter uppercase state code for a name, code or abbreviation."""
    if not raw:
        return None
    cleaned = re.sub(r"[^a-z\s]", "", raw.strip().lower())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if not cleaned:
        return None
    if len(cleaned) == 2:
        code = cleaned.upper()
        return code if code in STATE_NAMES else None
    return _STATE_LOOKUP.get(cleaned)


def normalize_city(raw: Optional[str]) -> Optional[str]:
    """Title-case a city name, expanding St/Ft/Mt prefixes."""
    if not raw:
        return None
    cleaned = raw.strip().strip(",;")
    words = []
    for word in cleaned.split():
        key = word.lower().rstrip(".")
        if key in CITY_PREFIXES:
            words.append(CITY_PREFIXES[key])
        else:
            words.append(word[0].upper() + word[1:].lower())
    return " ".join(words) or None


def get_state_full_name(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    return STATE_NAMES.get(code.strip().upper())


def get_state_code(name: Optional[str]) -> Optional[str]:
    return normalize_state(name)


def normalize_zip_code(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    digits = re.sub(r"\D", "", str(raw))
    return digits[:5] if len(digits) >= 5 else None


def parse_location(location: Optional[str]) -> ParsedLocation:
    """Split free-form location text like 'Rochester, NY 14642' into parts."""
    if not location:
        return ParsedLocation()
    text = location.strip()

    for pattern in _LOCATION_PATTERNS:
        match = pattern.match(text)
        if match:
            return ParsedLocation(
                city=match.group(1).strip(),
                state=match.group(2),
                zip_code=match.group(3) or None,
            )

    parts = [part.strip() for part in text.split(",")]
    if len(parts) >= 2:
        state_match = re.search(r"[A-Z]{2}", parts[1])
        zip_match = re.search(r"\d{5}", parts[1])
        return ParsedLocation(
            city=parts[0] or None,
            state=state_match.group(0) if state_match else None,
            zip_code=zip_match.group(0) if zip_match else None,
        )

    state_match = re.search(r"\b([A-Z]{2})\b", text)
    if state_match:
        if "," in text:
            city = text.split(",")[0].strip()
        else:
            city = text[:state_match.start()].strip()
        return ParsedLocation(city=city or None, state=state_match.group(1))

    return ParsedLocation()


# === Slugs ===

def _slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def generate_employer_slug(name: Optional[str]) -> str:
    if not name:
        return ""
    return _slugify(name)


def generate_job_slug(
    title: Optional[str],
    city: Optional[str],
    state: Optional[str],
    source_job_id: Optional[str] = None,
) -> str:
    """Build a URL-safe slug from title, city, state and source id.

    Bracketed or braced segments are dropped from the title, the title part
    is capped at 50 characters and the full slug at 100.
    """
    clean_title = (title or "").lower()
    clean_title = re.sub(r"\[[^\]]*\]", "", clean_title)
    clean_title = re.sub(r"\{[^}]*\}", "", clean_title)
    clean_title = _slugify(clean_title)[:50]

    clean_city = _slugify(city or "")
    clean_state = (state or "").lower()
    clean_id = re.sub(r"[^a-z0-9]", "", str(source_job_id).lower()) if source_job_id else ""

    parts = [part for part in (clean_title, clean_city, clean_state, clean_id) if part]
    slug = re.sub(r"-+", "-", "-".join(parts)).strip("-")
    return slug[:100].strip("-")


# === Job type / Specialty / Experience ===

def normalize_job_type(raw: Optional[str]) -> Optional[JobType]:
    if not raw:
        return None
    key = re.sub(r"\s+", " ", raw.strip().lower())
    return JOB_TYPE_ALIASES.get(key)


def detect_specialty(title: Optional[str], description: Optional[str] = None) -> str:
    """Pick a specialty from title keywords first, then from the combined text."""
    title_lower = (title or "").lower()
    text = f"{title or ''} {description or ''}".lower()

    if any(keyword in title_lower for keyword in FLOAT_TITLE_KEYWORDS):
        return FLOAT_POOL
    if any(keyword in text for keyword in FLOAT_TEXT_KEYWORDS):
        return FLOAT_POOL

    for rule in TITLE_SPECIALTY_RULES:
        if rule.matches(title_lower):
            return rule.specialty
    for rule in TEXT_SPECIALTY_RULES:
        if rule.matches(text):
            return rule.specialty
    return DEFAULT_SPECIALTY


def _level_for_years(years: int) -> Optional[ExperienceLevel]:
    if years == 1:
        return ExperienceLevel.NEW_GRAD
    if 2 <= years <= 4:
        return ExperienceLevel.EXPERIENCED
    if 5 <= years <= 20:
        return ExperienceLevel.SENIOR
    return None


def detect_experience_level(
    title: Optional[str], description: Optional[str] = None
) -> Optional[ExperienceLevel]:
    title_lower = (title or "").lower()
    text = f"{title or ''} {description or ''}".lower()

    if any(keyword in title_lower for keyword in SENIOR_TITLE_KEYWORDS):
        return ExperienceLevel.SENIOR
    if any(keyword in title_lower for keyword in NEW_GRAD_TITLE_KEYWORDS):
        return ExperienceLevel.NEW_GRAD

    if any(keyword in text for keyword in NEW_GRAD_TEXT_KEYWORDS):
        anchor = _NEW_GRAD_ANCHOR.search(text)
        if anchor:
            context = text[max(0, anchor.start() - 50):anchor.start() + 100]
            if not _YEARS_OF_EXPERIENCE.search(context):
                return ExperienceLevel.NEW_GRAD

    required = _REQUIRED_YEARS.search(text)
    if required:
        context = text[max(0, required.start() - 30):required.start() + 50]
        if "preferred" not in context and "preferably" not in context:
            level = _level_for_years(int(required.group(1)))
            if level:
                return level

    minimum = _MINIMUM_YEARS_REQUIRED.search(text)
    if minimum:
        level = _level_for_years(int(minimum.group(1)))
        if level:
            return level

    return None


# === Salary ===

def derive_salary_columns(
    salary_min: Optional[int],
    salary_max: Optional[int],
    salary_type: Optional[str],
) -> Dict[str, Optional[int]]:
    """Fill hourly and annual columns from a salary range at 2080 hours per year."""
    columns: Dict[str, Optional[int]] = {
        "salary_min_hourly": None,
        "salary_max_hourly": None,
        "salary_min_annual": None,
        "salary_max_annual": None,
    }
    if salary_type == SalaryType.HOURLY:
        columns["salary_min_hourly"] = salary_min
        columns["salary_max_hourly"] = salary_max
        if salary_min:
            columns["salary_min_annual"] = round_half_up(salary_min * HOURS_PER_YEAR)
        if salary_max:
            columns["salary_max_annual"] = round_half_up(salary_max * HOURS_PER_YEAR)
    elif salary_type == SalaryType.ANNUAL:
        columns["salary_min_annual"] = salary_min
        columns["salary_max_annual"] = salary_max
        if salary_min:
            columns["salary_min_hourly"] = round_half_up(salary_min / HOURS_PER_YEAR)
        if salary_max:
            columns["salary_max_hourly"] = round_half_up(salary_max / HOURS_PER_YEAR)
    return columns


# === Validation ===

def validate_job_data(record: Any) -> ValidationResult:
    """Check required fields and basic formats. Never raises."""
    if hasattr(record, "model_dump"):
        data: Mapping[str, Any] = record.model_dump()
    elif hasattr(record, "dict"):
        data = record.dict()
    else:
        data = record or {}

    errors = []
    for name in REQUIRED_FIELDS:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append(f"Missing required field: {name}")

    state = data.get("state")
    if state and len(str(state)) != 2:
        errors.append(f"Invalid state code: {state}")

    description = data.get("description")
    if description and len(description) < MIN_DESCRIPTION_CHARS:
        errors.append(f"Description too short ({len(description)} chars)")

    source_url = data.get("source_url")
    if source_url and not str(source_url).startswith("http"):
        errors.append(f"Invalid source URL: {source_url}")

    return ValidationResult(valid=not errors, errors=errors)
