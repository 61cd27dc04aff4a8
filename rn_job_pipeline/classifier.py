"""
Job Classifier - LLM verification of pending jobs.

Pending (inactive, unclassified) jobs are sent to a local Ollama model that
confirms the posting is a staff RN role and refines specialty, job type,
shift and experience level. Confirmed jobs are activated; the rest stay
inactive. Either way the job is marked classified.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .job_store import JobStore
from .models import ExperienceLevel, NormalizedJob, ShiftType
from .normalize import SPECIALTIES, normalize_job_type

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = """You are an expert nursing job classifier. Analyze this job posting and classify it accurately.

Job Title: {title}
Description Preview: {description}
Location: {city}, {state}
Employer: {employer}

Task 1: Is this a Registered Nurse (RN) position that requires only an RN license?
- TRUE for staff, bedside, clinical, unit and charge RNs, nurse managers and coordinators that only require an RN license
- FALSE for roles needing an advanced degree (NP, CRNA, CNS, CNM) and for non-RN roles (LPN, LVN, CNA, medical assistant)

Task 2: Pick ONE specialty from: {specialties}
- "Float Pool" only when the posting explicitly mentions floating or multiple units
- "General Nursing" only when no specialty can be determined

Task 3: Employment type: Full Time, Part Time, PRN, Per Diem, Contract, Travel, or null
Task 4: Shift type: days, nights, evenings, variable, rotating, or null
Task 5: Experience level: Entry Level, New Grad, Experienced, Senior, Leadership, or null

Respond with JSON only:
{{"isStaffRN": true, "specialty": "ICU", "jobType": "Full Time", "shiftType": "nights", "experienceLevel": "Experienced", "confidence": 0.95}}
"""

EXPERIENCE_ALIASES = {
    "entry level": ExperienceLevel.NEW_GRAD,
    "new grad": ExperienceLevel.NEW_GRAD,
    "new-grad": ExperienceLevel.NEW_GRAD,
    "experienced": ExperienceLevel.EXPERIENCED,
    "senior": ExperienceLevel.SENIOR,
    "leadership": ExperienceLevel.SENIOR,
}


class ClassifierError(RuntimeError):
    """Raised when the classification backend is unavailable."""
    pass


@dataclass
class ClassificationDecision:
    is_staff_rn: bool
    specialty: Optional[str] = None
    job_type: Optional[str] = None
    shift_type: Optional[str] = None
    experience_level: Optional[str] = None
    confidence: Optional[float] = None

    def updates(self) -> Dict[str, Any]:
        """Store field updates; unknown or empty values are left out."""
        return {
            "specialty": self.specialty if self.specialty in SPECIALTIES else None,
            "job_type": self.job_type,
            "shift_type": self.shift_type,
            "experience_level": self.experience_level,
        }


@dataclass
class ClassificationSummary:
    total: int = 0
    activated: int = 0
    rejected: int = 0
    failed: int = 0
    specialty_counts: Dict[str, int] = field(default_factory=dict)
    activated_slugs: List[str] = field(default_factory=list)


def parse_decision(text: str) -> Optional[ClassificationDecision]:
    """Parse the model's JSON reply, tolerating code fences and surrounding prose."""
    if not text:
        return None

    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip(), flags=re.IGNORECASE).strip()
    payload = None
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, flags=re.DOTALL)
        if match:
            try:
                payload = json.loads(match.group(0))
            except json.JSONDecodeError:
                payload = None
    if not isinstance(payload, dict) or "isStaffRN" not in payload:
        return None

    is_rn = payload.get("isStaffRN")
    if isinstance(is_rn, str):
        is_rn = is_rn.strip().lower() == "true"

    job_type = normalize_job_type(payload.get("jobType") or "")
    shift_raw = str(payload.get("shiftType") or "").strip().lower()
    shift = shift_raw if shift_raw in {s.value for s in ShiftType} else None
    experience = EXPERIENCE_ALIASES.get(str(payload.get("experienceLevel") or "").strip().lower())

    confidence = payload.get("confidence")
    try:
        confidence = float(confidence) if confidence is not None else None
    except (TypeError, ValueError):
        confidence = None

    return ClassificationDecision(
        is_staff_rn=bool(is_rn),
        specialty=(payload.get("specialty") or None),
        job_type=job_type.value if job_type else None,
        shift_type=shift,
        experience_level=experience.value if experience else None,
        confidence=confidence,
    )


class JobClassifier:
    """Classifies pending jobs with a local Ollama model."""

    def __init__(self, config) -> None:
        self.config = config
        self.model = config.get_classifier_model()
        self.prompt_template = config.get_classifier_prompt() or DEFAULT_PROMPT
        self.max_retries = max(config.get_classifier_max_retries(), 1)
        self.max_description_chars = config.get_classifier_max_description_chars()
        self.available = self._check_ollama()

    def _build_prompt(self, job: NormalizedJob) -> str:
        return self.prompt_template.format(
            title=job.title or "N/A",
            description=(job.description or "")[: self.max_description_chars],
            city=job.city,
            state=job.state,
            employer=job.employer_name or "N/A",
            specialties=", ".join(SPECIALTIES),
        )

    def _generate(self, prompt: str) -> str:
        # Lazy import keeps runs with classifier.enabled=false working without the client
        import importlib

        ollama = importlib.import_module("ollama")
        response = ollama.generate(model=self.model, prompt=prompt, format="json")
        return str((response or {}).get("response") or "")

    def classify(self, job: NormalizedJob) -> Optional[ClassificationDecision]:
        prompt = self._build_prompt(job)
        for attempt in range(1, self.max_retries + 1):
            try:
                decision = parse_decision(self._generate(prompt))
            except Exception as exc:
                logger.warning(
                    "Classification failed (attempt %s/%s) for %s: %s",
                    attempt, self.max_retries, job.slug, exc,
                )
                continue
            if decision is not None:
                return decision
            logger.warning("Unparseable classification for %s (attempt %s/%s)",
                           job.slug, attempt, self.max_retries)
        return None

    def classify_pending(
        self,
        store: JobStore,
        *,
        limit: Optional[int] = None,
        employer_slug: Optional[str] = None,
        dry_run: bool = False,
    ) -> ClassificationSummary:
        """Classify pending jobs; dry-run prints decisions without writing."""
        if not self.available:
            raise ClassifierError(f"Ollama model '{self.model}' is not available")

        jobs = store.find_pending_classification(limit=limit, employer_slug=employer_slug)
        summary = ClassificationSummary(total=len(jobs))
        print(f"🤖 Classifying {len(jobs)} pending jobs with {self.model}")

        for index, job in enumerate(jobs, 1):
            print(f"\n[{index}/{len(jobs)}] {job.title} ({job.city}, {job.state})")
            decision = self.classify(job)
            if decision is None:
                summary.failed += 1
                print("   ❌ Classification failed")
                continue

            confidence = f"{decision.confidence:.0%}" if decision.confidence is not None else "n/a"
            print(f"   Staff RN: {'✓ YES' if decision.is_staff_rn else '✗ NO'} | "
                  f"{decision.specialty} | confidence {confidence}")

            if decision.is_staff_rn:
                summary.activated += 1
                summary.activated_slugs.append(job.slug)
                specialty = decision.updates()["specialty"] or job.specialty or "General Nursing"
                summary.specialty_counts[specialty] = summary.specialty_counts.get(specialty, 0) + 1
            else:
                summary.rejected += 1

            if not dry_run:
                store.apply_classification(
                    job.id,
                    is_staff_rn=decision.is_staff_rn,
                    updates=decision.updates(),
                )

        return summary

    def _check_ollama(self) -> bool:
        try:
            import importlib

            ollama = importlib.import_module("ollama")
        except Exception as exc:
            logger.warning("Ollama module not installed: %s", exc)
            return False
        try:
            ollama.list()
            return True
        except Exception as exc:
            logger.warning("Ollama not reachable: %s", exc)
            return False
