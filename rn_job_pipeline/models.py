"""
Data models for the RN job pipeline
Defines listing candidates, normalized job records, and enumerations
"""

from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobType(str, Enum):
    FULL_TIME = "full-time"
    PART_TIME = "part-time"
    PRN = "prn"
    CONTRACT = "contract"
    TRAVEL = "travel"
    REMOTE = "remote"
    HYBRID = "hybrid"


class ShiftType(str, Enum):
    DAYS = "days"
    NIGHTS = "nights"
    EVENINGS = "evenings"
    ROTATING = "rotating"
    VARIABLE = "variable"


class SalaryType(str, Enum):
    HOURLY = "hourly"
    ANNUAL = "annual"


class ExperienceLevel(str, Enum):
    NEW_GRAD = "new-grad"
    EXPERIENCED = "experienced"
    SENIOR = "senior"


class JobListingCandidate(BaseModel):
    """A job card found on an employer listing page"""

    title: str
    detail_url: str
    source_job_id: Optional[str] = None
    location_text: Optional[str] = None
    raw_card_text: str = ""

    def __str__(self) -> str:
        return f"{self.title} ({self.location_text or 'no location'})"


class NormalizedJob(BaseModel):
    """A validated RN job record ready for persistence"""

    # Identity
    id: Optional[str] = None
    slug: str
    source_job_id: Optional[str] = None
    source_url: str

    # Posting
    title: str
    description: str
    location: str
    city: str
    state: str
    zip_code: Optional[str] = None
    is_remote: bool = False

    # Content sections
    requirements: Optional[str] = None
    responsibilities: Optional[str] = None
    benefits: Optional[str] = None
    department: Optional[str] = None

    # Classification
    specialty: Optional[str] = None
    experience_level: Optional[ExperienceLevel] = None
    job_type: Optional[JobType] = None
    shift_type: Optional[ShiftType] = None

    # Compensation
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    salary_type: Optional[SalaryType] = None
    salary_currency: str = "USD"
    salary_min_hourly: Optional[int] = None
    salary_max_hourly: Optional[int] = None
    salary_min_annual: Optional[int] = None
    salary_max_annual: Optional[int] = None

    # Employer
    employer_name: str
    employer_slug: str
    career_page_url: str
    ats_platform: str = "workday"

    # Lifecycle
    is_active: bool = False
    classified_at: Optional[datetime] = None
    expires_date: Optional[datetime] = None
    calculated_expires_date: Optional[datetime] = None
    google_indexed_at: Optional[datetime] = None
    deactivated_reason: Optional[str] = None
    scraped_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def __str__(self) -> str:
        return f"{self.title} at {self.employer_name} ({self.city}, {self.state})"

    class Config:
        use_enum_values = True
        json_encoders = {
            datetime: lambda v: v.isoformat(),
        }
