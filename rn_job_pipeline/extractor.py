"""
Page content extraction for Workday job pages.

The browser layer captures a DetailSnapshot (raw texts and HTML per selector);
everything in this module is a pure function over those strings. Each field is
filled by an ordered list of strategies and the first non-empty result wins,
so one failing field never blocks the others.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

from .models import SalaryType, ShiftType
from .normalize import round_half_up

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_DESCRIPTION_CHARS = 500
BODY_FALLBACK_CHARS = 5000
FAILED_RAW_TEXT_CHARS = 1000

# === Selectors used on detail pages ===

TITLE_SELECTORS = (
    'h1[data-automation-id*="job"]',
    '[data-automation-id="jobPostingHeader"] h1',
    '[class*="job-title"]',
    'h1',
)
DESCRIPTION_FALLBACK_SELECTORS = ('[class*="description"]', '[class*="job-description"]')
MAIN_CONTENT_SELECTORS = ('main', '[role="main"]', '[class*="job-posting"]', '[class*="job-content"]')
DETAIL_LOCATION_SELECTORS = (
    '[data-automation-id="locations"]',
    '[data-automation-id="jobLocation"]',
    '[data-automation-id="locations"] dd',
    '[data-automation-id="locations"] span',
    '[data-automation-id="locations"] div',
)
LISTING_LOCATION_SELECTORS = (
    '[data-automation-id="locations"]',
    '[data-automation-id="jobLocation"]',
    '[data-automation-id="locations"] [data-automation-id="locations"]',
    '[data-automation-id="locations"] span',
    '[data-automation-id="locations"] div',
)
LOCATION_ICON_SELECTOR = 'svg[class*="location"], [class*="location-icon"], [aria-label*="location" i]'
HEADER_SELECTORS = ('[data-automation-id="jobPostingHeader"]', '[class*="job-header"]', '[class*="metadata"]')
TIME_TYPE_SELECTORS = (
    '[data-automation-id="time"]',
    '[data-automation-id="timeType"]',
    '[class*="time-type"]',
    '[class*="employment-type"]',
)
COMPENSATION_SELECTORS = (
    '[data-automation-id="compensation"]',
    '[data-automation-id="payRange"]',
    '[data-automation-id="salary"]',
    '[class*="compensation"]',
    '[class*="pay-range"]',
    '[class*="salary"]',
)

GENERIC_TITLES = ("career opportunities", "careers", "jobs", "job search")

CITY_STATE_RE = re.compile(r"^[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*,\s+[A-Z]{2}$")
CITY_STATE_SEARCH_RE = re.compile(r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*),\s+([A-Z]{2})")
JOB_ID_RE = re.compile(r"/([a-f0-9]{32}|[A-Z0-9]+)/?$")
REQUISITION_ID_RE = re.compile(r"_([A-Za-z0-9-]+)/?$")

_AMOUNT = r"(\d[\d,]*(?:\.\d+)?)"
_DASH = r"\s*(?:-|–|—|to)\s*"
PAY_RANGE_RE = re.compile(
    r"(?:Compensation\s+Range|Pay\s+Range|Salary\s+Range|Compensation|Pay|Salary)[:\s]+"
    r"(?:USD\s+)?\$?" + _AMOUNT + _DASH + r"\$?" + _AMOUNT,
    re.IGNORECASE,
)
SALARY_RANGE_RE = re.compile(r"\$?" + _AMOUNT + _DASH + r"\$?" + _AMOUNT, re.IGNORECASE)
DOLLAR_RANGE_RE = re.compile(r"\$" + _AMOUNT + _DASH + r"\$" + _AMOUNT, re.IGNORECASE)
SINGLE_AMOUNT_RE = re.compile(r"\$?" + _AMOUNT)
LABELED_AMOUNT_RE = {
    "min_hourly": re.compile(r"minimum\s+hourly[:\s]+(?:USD\s+)?\$?" + _AMOUNT, re.IGNORECASE),
    "max_hourly": re.compile(r"maximum\s+hourly[:\s]+(?:USD\s+)?\$?" + _AMOUNT, re.IGNORECASE),
    "min_annual": re.compile(r"minimum\s+annual\s+salary[:\s]+(?:USD\s+)?\$?" + _AMOUNT, re.IGNORECASE),
    "max_annual": re.compile(r"maximum\s+annual\s+salary[:\s]+(?:USD\s+)?\$?" + _AMOUNT, re.IGNORECASE),
}
GENERIC_SALARY_RE = re.compile(
    r"(?:hourly|annual|salary)[:\s]+(?:USD\s+)?\$?" + _AMOUNT
    + r"(?:\s*[-–—]\s*\$?" + _AMOUNT + r")?",
    re.IGNORECASE,
)

WEEKLY_HOURS_RE = re.compile(r"Scheduled Weekly Hours:\s*(\d+)", re.IGNORECASE)
PRN_CONTEXT_RE = (
    re.compile(r"\b(prn|per diem|per-diem)\s+(position|role|schedule|basis|nurse|rn)\b", re.IGNORECASE),
    re.compile(r"\b(on-call|on call)\s+(position|role|schedule|basis|nurse|rn)\b", re.IGNORECASE),
)
PRIMARY_SHIFT_RE = re.compile(r"Primary Work Shift:\s*([^\n]+)", re.IGNORECASE)
SHIFT_RE = re.compile(r"Shift:\s*([^\n]+)", re.IGNORECASE)
SCHEDULE_RE = re.compile(r"Schedule:\s*([^\n]+)", re.IGNORECASE)

_VARIABLE_SHIFT_WORDS = ("variable", "varied", "multiple", "various", "flexible", "all shifts", "mixed")

DEPARTMENT_RE = re.compile(r"^\s*Department(?: Name)?:\s*([^\n]+)", re.IGNORECASE | re.MULTILINE)
SECTION_HEADING_RE = re.compile(r"^(?:#{2,6}\s+(.+?)|\*\*(.+?)\*\*:?)\s*$")
SECTION_KEYWORDS = {
    "requirements": ("qualification", "requirement", "education", "licens", "what you bring", "what you need"),
    "responsibilities": ("responsibilit", "duties", "essential functions", "what you will do", "what you'll do"),
    "benefits": ("benefit", "what we offer", "perks"),
}


@dataclass
class SalaryRange:
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_type: Optional[SalaryType] = None

    def __bool__(self) -> bool:
        return self.salary_min is not None


@dataclass
class DetailSnapshot:
    """Raw texts and HTML captured from one job detail page"""

    url: str
    page_title: str = ""
    body_text: str = ""
    title_texts: List[str] = field(default_factory=list)
    location_texts: List[str] = field(default_factory=list)
    location_icon_text: Optional[str] = None
    header_texts: List[str] = field(default_factory=list)
    time_type_texts: List[str] = field(default_factory=list)
    compensation_texts: List[str] = field(default_factory=list)
    description_html: Optional[str] = None
    fallback_description_htmls: List[str] = field(default_factory=list)
    main_content_htmls: List[str] = field(default_factory=list)
    body_html: str = ""


@dataclass
class DetailPageData:
    """Fields extracted from a job detail page"""

    source_url: str
    title: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    employment_type: Optional[str] = None
    shift_type: Optional[ShiftType] = None
    salary: SalaryRange = field(default_factory=SalaryRange)
    is_remote: bool = False
    requirements: Optional[str] = None
    responsibilities: Optional[str] = None
    benefits: Optional[str] = None
    department: Optional[str] = None
    extraction_failed: bool = False


def first_success(strategies: Sequence[Callable[..., Optional[T]]], *args) -> Optional[T]:
    """Run strategies in order and return the first non-empty result."""
    for strategy in strategies:
        try:
            value = strategy(*args)
        except Exception as exc:
            logger.warning("Extraction strategy %s failed: %s", strategy.__name__, exc)
            continue
        if value:
            return value
    return None


def clean_text(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


# === Listing cards ===

def source_job_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    match = JOB_ID_RE.search(url) or REQUISITION_ID_RE.search(url)
    return match.group(1) if match else None


def listing_location(
    configured_text: Optional[str],
    candidate_texts: Sequence[str],
    icon_text: Optional[str],
) -> Optional[str]:
    """Pick a card location: configured selector, validated Workday fields, then map-pin text."""
    configured = clean_text(configured_text)
    if configured:
        return configured
    for text in candidate_texts:
        text = clean_text(text)
        if text and CITY_STATE_RE.match(text):
            return text
    if icon_text:
        match = CITY_STATE_SEARCH_RE.search(icon_text)
        if match:
            return match.group(0)
    return None


# === HTML to structured text ===

_SKIPPED_NODES = (Comment, Doctype, Declaration, ProcessingInstruction)
_BLOCK_TAGS = ("p", "div", "li", "br")
_HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_FONT_WEIGHT_RE = re.compile(r"font-weight\s*:\s*(bold|\d+)", re.IGNORECASE)
_LABEL_ONLY_RE = re.compile(r"^(Minimum Required|Preferred|Required|Optional):\s*$", re.IGNORECASE)
_BOLD_LINE_RE = re.compile(r"^\*\*.*\*\*\s*$")
_LABEL_LINE_RE = re.compile(r"^(•\s*)?([A-Z][A-Za-z\s&/]+?):\s*(.+)$")


def _is_bold(tag: Tag) -> bool:
    if tag.name in ("b", "strong"):
        return True
    match = _FONT_WEIGHT_RE.search(tag.get("style", "") or "")
    if not match:
        return False
    weight = match.group(1).lower()
    return weight == "bold" or (weight.isdigit() and int(weight) >= 600)


class _TextBuilder:
    """Walks a parsed tree and emits markdown-like text"""

    def __init__(self) -> None:
        self.text = ""

    def process(self, node, parent_name: str = "") -> None:
        if isinstance(node, _SKIPPED_NODES):
            return
        if isinstance(node, NavigableString):
            if parent_name == "li":
                self.text += str(node)
            elif node.strip():
                self.text += node.strip() + " "
            return
        if not isinstance(node, Tag):
            return

        name = node.name.lower()

        if name in _HEADING_TAGS:
            heading = node.get_text().strip()
            if heading:
                if self.text and not self.text.endswith("\n\n"):
                    self.text += "\n\n"
                level = int(name[1])
                self.text += "#" * min(level + 1, 6) + " " + heading + "\n\n"
            return

        if name in _BLOCK_TAGS:
            if name != "li" and self.text and not self.text.endswith("\n\n"):
                self.text += "\n\n"
            elif name == "li" and self.text and not self.text.endswith("\n"):
                self.text += "\n"
        if name in ("ul", "ol") and self.text and not self.text.endswith("\n"):
            self.text += "\n"
        if name == "li" and not self.text.endswith("• "):
            self.text += "• "

        if _is_bold(node):
            own_text = node.get_text().strip()
            paragraph = node if name == "p" else node.parent
            standalone = (
                paragraph is not None
                and getattr(paragraph, "name", None) == "p"
                and paragraph.get_text().strip() == own_text
                and len(own_text) < 100
            )
            for child in node.children:
                if isinstance(child, _SKIPPED_NODES):
                    continue
                bold_text = child.strip() if isinstance(child, NavigableString) else child.get_text().strip()
                if bold_text:
                    self.text += f"**{bold_text}**" if standalone else f"**{bold_text}** "
        else:
            for child in node.children:
                self.process(child, name)

        if name in ("p", "div", "li") and not self.text.endswith("\n"):
            self.text += "\n"


def _bold_labels(text: str) -> str:
    lines = []
    for line in text.split("\n"):
        trimmed = line.strip()
        if not trimmed:
            lines.append("")
            continue
        if _LABEL_ONLY_RE.match(trimmed) or _BOLD_LINE_RE.match(trimmed):
            lines.append(line)
            continue
        match = _LABEL_LINE_RE.match(trimmed)
        if match and len(match.group(2)) < 50:
            bullet = match.group(1) or ""
            lines.append(f"{bullet}**{match.group(2).strip()}:** {match.group(3)}")
        else:
            lines.append(line)
    return "\n".join(lines)


def _tidy(text: str) -> str:
    text = re.sub(r"\n{4,}", "\n\n\n", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    text = re.sub(r"•\s*\n+", "• ", text)
    text = re.sub(r"\n+(## )", r"\n\n\1", text)
    text = re.sub(r"##\s*\n+", "## ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def html_to_formatted_text(html: Optional[str]) -> Optional[str]:
    """Convert description HTML into readable text with headings, bullets and bold labels."""
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()

    builder = _TextBuilder()
    for child in soup.children:
        builder.process(child)

    text = _tidy(_bold_labels(builder.text))
    return text or None


# === Description / Title ===

def extract_description(snapshot: DetailSnapshot) -> Optional[str]:
    description = html_to_formatted_text(snapshot.description_html)
    if not description:
        for html in snapshot.fallback_description_htmls:
            formatted = html_to_formatted_text(html)
            if formatted:
                description = formatted
                if len(formatted) > MIN_DESCRIPTION_CHARS:
                    break

    if not description or len(description) < MIN_DESCRIPTION_CHARS:
        for html in snapshot.main_content_htmls:
            formatted = html_to_formatted_text(html)
            if formatted and len(formatted) > MIN_DESCRIPTION_CHARS:
                description = formatted
                break

    if not description or len(description) < MIN_DESCRIPTION_CHARS:
        body = html_to_formatted_text(snapshot.body_html) or clean_text(snapshot.body_text)
        if body:
            description = body[:BODY_FALLBACK_CHARS] + "..." if len(body) > BODY_FALLBACK_CHARS else body

    return description


def _title_from_selectors(snapshot: DetailSnapshot) -> Optional[str]:
    for text in snapshot.title_texts:
        text = clean_text(text)
        if text and len(text) < 200 and text.lower() not in GENERIC_TITLES:
            return text
    return None


def _title_from_page_title(snapshot: DetailSnapshot) -> Optional[str]:
    title = re.sub(r"\s*[-|]\s*.*$", "", snapshot.page_title or "").strip()
    return title or None


TITLE_STRATEGIES = (_title_from_selectors, _title_from_page_title)


def extract_title(snapshot: DetailSnapshot) -> Optional[str]:
    return first_success(TITLE_STRATEGIES, snapshot)


# === Location ===

def _location_from_fields(snapshot: DetailSnapshot) -> Optional[str]:
    for text in snapshot.location_texts:
        text = clean_text(text)
        if text and CITY_STATE_RE.match(text):
            return text
    return None


def _location_from_icon(snapshot: DetailSnapshot) -> Optional[str]:
    if not snapshot.location_icon_text:
        return None
    match = CITY_STATE_SEARCH_RE.search(snapshot.location_icon_text)
    return match.group(0) if match else None


def _location_from_header(snapshot: DetailSnapshot) -> Optional[str]:
    for text in snapshot.header_texts:
        text = clean_text(text)
        if text and len(text) < 50 and CITY_STATE_RE.match(text):
            return text
    return None


LOCATION_STRATEGIES = (_location_from_fields, _location_from_icon, _location_from_header)


def extract_location(snapshot: DetailSnapshot) -> Optional[str]:
    return first_success(LOCATION_STRATEGIES, snapshot)


# === Employment type ===

def _employment_from_weekly_hours(snapshot: DetailSnapshot) -> Optional[str]:
    match = WEEKLY_HOURS_RE.search(snapshot.body_text)
    if not match:
        return None
    hours = int(match.group(1))
    if hours >= 36:
        return "Full Time"
    if hours >= 1:
        return "Part Time"
    return None


def _employment_from_time_type(snapshot: DetailSnapshot) -> Optional[str]:
    for text in snapshot.time_type_texts:
        text = clean_text(text)
        if not text:
            continue
        lower = text.lower()
        if "full time" in lower or "full-time" in lower:
            return "Full Time"
        if "part time" in lower or "part-time" in lower:
            return "Part Time"
        if "prn" in lower or "per diem" in lower:
            return "PRN"
        if "contract" in lower:
            return "Contract"
        if len(text) < 50:
            return text
    return None


def _employment_from_prn_context(snapshot: DetailSnapshot) -> Optional[str]:
    if any(pattern.search(snapshot.body_text) for pattern in PRN_CONTEXT_RE):
        return "PRN"
    return None


EMPLOYMENT_TYPE_STRATEGIES = (
    _employment_from_weekly_hours,
    _employment_from_time_type,
    _employment_from_prn_context,
)


def extract_employment_type(snapshot: DetailSnapshot) -> Optional[str]:
    return first_success(EMPLOYMENT_TYPE_STRATEGIES, snapshot)


# === Shift ===

def classify_shift_value(value: Optional[str]) -> Optional[ShiftType]:
    """Map a 'Primary Work Shift' or 'Shift' value; rotating wins over day/night words."""
    text = (value or "").strip().lower()
    if not text or text in ("0", "n/a"):
        return None
    if "rotational" in text or "rotating" in text:
        return ShiftType.ROTATING
    if any(word in text for word in _VARIABLE_SHIFT_WORDS):
        return ShiftType.VARIABLE
    if "night" in text:
        return ShiftType.NIGHTS
    if "evening" in text:
        return ShiftType.EVENINGS
    if "day" in text:
        return ShiftType.DAYS
    return None


def classify_schedule_value(value: Optional[str]) -> Optional[ShiftType]:
    text = (value or "").strip().lower()
    if not text or text in ("0", "n/a"):
        return None
    if re.search(r"\b(rotating|rotational)\b", text):
        return ShiftType.ROTATING
    if any(word in text for word in ("variable", "multiple", "various", "flexible")):
        return ShiftType.VARIABLE
    if re.search(r"\b(day|days)\b", text) and "night" not in text:
        return ShiftType.DAYS
    if "night" in text:
        return ShiftType.NIGHTS
    if "evening" in text:
        return ShiftType.EVENINGS
    return None


def _shift_from_primary(body_text: str) -> Optional[ShiftType]:
    match = PRIMARY_SHIFT_RE.search(body_text)
    return classify_shift_value(match.group(1)) if match else None


def _shift_from_shift_label(body_text: str) -> Optional[ShiftType]:
    for match in SHIFT_RE.finditer(body_text):
        shift = classify_shift_value(match.group(1))
        if shift:
            return shift
    return None


def _shift_from_schedule(body_text: str) -> Optional[ShiftType]:
    match = SCHEDULE_RE.search(body_text)
    return classify_schedule_value(match.group(1)) if match else None


SHIFT_STRATEGIES = (_shift_from_primary, _shift_from_shift_label, _shift_from_schedule)


def detect_shift_type(body_text: Optional[str], title: Optional[str] = None) -> Optional[ShiftType]:
    """Detect shift from labeled fields; expression-of-interest postings have none."""
    if title and "expression of interest" in title.lower():
        return None
    return first_success(SHIFT_STRATEGIES, body_text or "")


# === Salary ===

def _amount(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    try:
        return round_half_up(float(text.replace(",", "")))
    except ValueError:
        return None


def _infer_salary_type(context: str, value: int) -> SalaryType:
    lower = context.lower()
    if "hourly" in lower or "per hour" in lower or "/hour" in lower or "/hr" in lower:
        return SalaryType.HOURLY
    if "annual" in lower or "per year" in lower or "/year" in lower or "yearly" in lower:
        return SalaryType.ANNUAL
    if value > 100000:
        return SalaryType.ANNUAL
    if value < 50:
        return SalaryType.HOURLY
    return SalaryType.ANNUAL if value > 1000 else SalaryType.HOURLY


def parse_salary_text(text: Optional[str]) -> SalaryRange:
    """Parse '$X - $Y' or a single amount, inferring hourly vs annual."""
    if not text:
        return SalaryRange()
    match = SALARY_RANGE_RE.search(text)
    if match:
        low, high = _amount(match.group(1)), _amount(match.group(2))
        if low is not None:
            return SalaryRange(low, high, _infer_salary_type(text, low))
    match = SINGLE_AMOUNT_RE.search(text)
    if match:
        value = _amount(match.group(1))
        if value:
            return SalaryRange(value, value, _infer_salary_type(text, value))
    return SalaryRange()


def _salary_from_compensation_field(snapshot: DetailSnapshot) -> Optional[SalaryRange]:
    for text in snapshot.compensation_texts:
        text = clean_text(text)
        if not text or len(text) >= 200:
            continue
        salary = parse_salary_text(text)
        if salary:
            return salary
    return None


def _salary_from_range_label(snapshot: DetailSnapshot) -> Optional[SalaryRange]:
    match = PAY_RANGE_RE.search(snapshot.body_text)
    return (parse_salary_text(match.group(0)) or None) if match else None


def _salary_from_min_max_labels(snapshot: DetailSnapshot) -> Optional[SalaryRange]:
    found = {}
    for key, pattern in LABELED_AMOUNT_RE.items():
        match = pattern.search(snapshot.body_text)
        if match:
            found[key] = _amount(match.group(1))

    for kind, salary_type in (("hourly", SalaryType.HOURLY), ("annual", SalaryType.ANNUAL)):
        low, high = found.get(f"min_{kind}"), found.get(f"max_{kind}")
        if low is not None or high is not None:
            low = low if low is not None else high
            high = high if high is not None else low
            return SalaryRange(low, high, salary_type)
    return None


def _salary_from_dollar_range(snapshot: DetailSnapshot) -> Optional[SalaryRange]:
    match = DOLLAR_RANGE_RE.search(snapshot.body_text)
    if not match:
        return None
    low, high = _amount(match.group(1)), _amount(match.group(2))
    if low is None:
        return None
    context = snapshot.body_text[match.start():match.end() + 40]
    return SalaryRange(low, high, _infer_salary_type(context, low))


def _salary_from_generic_label(snapshot: DetailSnapshot) -> Optional[SalaryRange]:
    match = GENERIC_SALARY_RE.search(snapshot.body_text)
    if not match:
        return None
    low = _amount(match.group(1))
    if low is None:
        return None
    high = _amount(match.group(2)) if match.group(2) else low
    salary_type = SalaryType.HOURLY if "hourly" in match.group(0).lower() else SalaryType.ANNUAL
    return SalaryRange(low, high, salary_type)


SALARY_STRATEGIES = (
    _salary_from_compensation_field,
    _salary_from_range_label,
    _salary_from_min_max_labels,
    _salary_from_dollar_range,
    _salary_from_generic_label,
)


def extract_salary(snapshot: DetailSnapshot) -> SalaryRange:
    return first_success(SALARY_STRATEGIES, snapshot) or SalaryRange()


# === Whole page ===

# === Content sections ===

def _section_key(heading: str) -> Optional[str]:
    heading = heading.strip().rstrip(":").lower()
    for key, keywords in SECTION_KEYWORDS.items():
        if any(word in heading for word in keywords):
            return key
    return None


def extract_sections(description: Optional[str]) -> Dict[str, str]:
    """Split formatted description text into requirements/responsibilities/benefits by heading."""
    if not description:
        return {}
    collected: Dict[str, List[str]] = {}
    current = None
    for line in description.split("\n"):
        heading = SECTION_HEADING_RE.match(line.strip())
        if heading:
            current = _section_key(heading.group(1) or heading.group(2))
            continue
        if current:
            collected.setdefault(current, []).append(line)

    sections = {}
    for key, lines in collected.items():
        text = "\n".join(lines).strip()
        if text:
            sections[key] = re.sub(r"\n{3,}", "\n\n", text)
    return sections


def extract_department(snapshot: DetailSnapshot) -> Optional[str]:
    match = DEPARTMENT_RE.search(snapshot.body_text or "")
    if not match:
        return None
    department = clean_text(match.group(1))
    return department[:100] or None


def extract_details(snapshot: DetailSnapshot) -> DetailPageData:
    """Run every field cascade over a detail snapshot."""
    title = extract_title(snapshot)
    description = extract_description(snapshot)
    sections = extract_sections(description)
    return DetailPageData(
        source_url=snapshot.url,
        title=title,
        location=extract_location(snapshot),
        description=description,
        employment_type=extract_employment_type(snapshot),
        shift_type=detect_shift_type(snapshot.body_text, title),
        salary=extract_salary(snapshot),
        is_remote="remote" in snapshot.body_text.lower(),
        department=extract_department(snapshot),
        **sections,
    )


def extract_quick_details(snapshot: DetailSnapshot) -> DetailPageData:
    """Reduced extraction used after a page recovery: title, body text and location only."""
    title = next((clean_text(t) for t in snapshot.title_texts if clean_text(t)), None)
    body = (snapshot.body_text or "")[:BODY_FALLBACK_CHARS]
    match = CITY_STATE_SEARCH_RE.search(body)
    return DetailPageData(
        source_url=snapshot.url,
        title=title or _title_from_page_title(snapshot),
        location=match.group(0) if match else None,
        description=body or None,
    )


def failed_details(url: str, title: Optional[str], location: Optional[str], raw_text: str) -> DetailPageData:
    return DetailPageData(
        source_url=url,
        title=title,
        location=location,
        description=(raw_text or "")[:FAILED_RAW_TEXT_CHARS],
        extraction_failed=True,
    )
