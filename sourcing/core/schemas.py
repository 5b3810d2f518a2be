"""Core data models for the sourcing pipeline."""

from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

Phase = Literal["searching", "fetching", "processing", "completed", "failed"]

# Forward order of the non-failure phases; "failed" is reachable from any non-terminal phase.
PHASE_ORDER: tuple[str, ...] = ("searching", "fetching", "processing", "completed")
TERMINAL_PHASES = frozenset({"completed", "failed"})

PHASE_TO_STATUS: dict[str, str] = {
    "searching": "searching",
    "fetching": "fetching_profiles",
    "processing": "processing",
    "completed": "completed",
    "failed": "failed",
}

LinkStatus = Literal["sourced", "recommended", "reviewed", "shortlisted",
                     "presented", "interview", "offer", "placed", "rejected"]

UNKNOWN = "Unknown"


class ProgressSnapshot(BaseModel):
    """Full progress state of a sourcing run, replaced as a whole on every write."""

    model_config = ConfigDict(frozen=True)

    phase: Phase = "searching"
    profiles_found: int = Field(default=0, ge=0)
    profiles_fetched: int = Field(default=0, ge=0)
    profiles_processed: int = Field(default=0, ge=0)
    candidates_created: int = Field(default=0, ge=0)
    candidates_duplicate: int = Field(default=0, ge=0)
    current_batch: int = Field(default=0, ge=0)
    total_batches: int = Field(default=0, ge=0)
    message: str = ""
    errors: list[str] = Field(default_factory=list)


class SourcingRun(BaseModel):
    """One execution of the fetch → ingest → score → link pipeline."""

    id: int
    job_id: int | None = None
    search_type: str = "linkedin_profile_fetch"
    search_intent: str = ""
    status: str = "queued"
    progress: ProgressSnapshot = Field(default_factory=ProgressSnapshot)
    profile_urls: list[str] = Field(default_factory=list)
    candidates_created: list[int] = Field(default_factory=list)
    fetch_calls: int = 0
    estimated_cost: float = 0.0
    budget_ceiling: float | None = None
    target_count: int | None = None
    error_log: list[str] = Field(default_factory=list)
    cancel_requested: bool = False
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Provider payloads
# ---------------------------------------------------------------------------

def _only_dicts(v: Any) -> list[dict[str, Any]]:
    if not isinstance(v, list):
        return []
    return [item for item in v if isinstance(item, dict)]


def _text_or_none(v: Any) -> str | None:
    if v is None:
        return None
    if isinstance(v, (str, int, float)):
        text = str(v).strip()
        return text or None
    return None


class ExperienceEntry(BaseModel):
    """One position from the provider's experience list."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    company: str | None = None
    location: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    description: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        return _text_or_none(v)


class EducationEntry(BaseModel):
    """One education record from the provider."""

    model_config = ConfigDict(extra="ignore")

    school: str | None = None
    degree: str | None = None
    field_of_study: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        return _text_or_none(v)


class ProfilePayload(BaseModel):
    """Normalized profile record returned by the scraping provider.

    Every field is optional and malformed values are coerced or dropped,
    so untrusted upstream data never fails validation.
    """

    model_config = ConfigDict(extra="allow")

    linkedin_id: str | None = None
    name: str | None = None
    city: str | None = None
    country_code: str | None = None
    position: str | None = None
    current_company_name: str | None = None
    about: str | None = None
    email: str | None = None
    phone: str | None = None
    url: str | None = None
    experience: list[ExperienceEntry] = Field(default_factory=list)
    education: list[EducationEntry] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)

    @field_validator(
        "linkedin_id", "name", "city", "country_code", "position",
        "about", "email", "phone", "url",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        return _text_or_none(v)

    @field_validator("current_company_name", mode="before")
    @classmethod
    def coerce_company(cls, v: Any) -> str | None:
        # Some datasets send the current company as an object.
        if isinstance(v, dict):
            return _text_or_none(v.get("name"))
        return _text_or_none(v)

    @field_validator("experience", "education", mode="before")
    @classmethod
    def coerce_entries(cls, v: Any) -> list[dict[str, Any]]:
        return _only_dicts(v)

    @field_validator("skills", "languages", mode="before")
    @classmethod
    def coerce_names(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        names: list[str] = []
        for item in v:
            if isinstance(item, dict):
                item = item.get("name") or item.get("title")
            text = _text_or_none(item)
            if text:
                names.append(text)
        return names

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "ProfilePayload":
        """Build a payload, mapping the provider's alternate key names."""
        data = dict(raw)
        if not data.get("linkedin_id") and data.get("id"):
            data["linkedin_id"] = data["id"]
        if not data.get("current_company_name") and data.get("current_company"):
            data["current_company_name"] = data["current_company"]
        return cls.model_validate(data)

    def has_profile_content(self) -> bool:
        return bool(self.linkedin_id or self.name or self.experience)


class ProfileFetchResult(BaseModel):
    """Outcome of fetching one profile reference."""

    reference: str
    success: bool
    payload: ProfilePayload | None = None
    error: str | None = None
    retries: int = 0
    attempts: int = 0
    terminal: bool = False


# ---------------------------------------------------------------------------
# Candidates and jobs
# ---------------------------------------------------------------------------

class CareerEntry(BaseModel):
    company: str = UNKNOWN
    title: str = UNKNOWN
    start_date: str = ""
    end_date: str | None = None
    description: str | None = None
    location: str | None = None


class EducationRecord(BaseModel):
    institution: str = UNKNOWN
    degree: str | None = None
    major: str | None = None
    graduation_year: int | None = None


class Candidate(BaseModel):
    """A person in the candidate store, with sourcing provenance."""

    id: int | None = None
    first_name: str = UNKNOWN
    last_name: str = UNKNOWN
    display_name: str = UNKNOWN
    email: str | None = None
    phone: str | None = None
    location: str = UNKNOWN
    current_title: str = UNKNOWN
    current_company: str = UNKNOWN
    biography: str = ""
    cv_text: str = ""
    skills: list[str] = Field(default_factory=list)
    career_history: list[CareerEntry] = Field(default_factory=list)
    education: list[EducationRecord] = Field(default_factory=list)
    years_experience: int | None = None
    source_type: str = "linkedin_scrape"
    sourcing_run_id: int | None = None
    external_source_url: str = ""
    scraped_at: datetime = Field(default_factory=datetime.now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class NAPSummary(BaseModel):
    """Need / authority / pain narrative captured during job intake."""

    need: str = ""
    authority: str = ""
    pain: str = ""


class Job(BaseModel):
    """A job's requirement context used for fit scoring."""

    id: int | None = None
    title: str
    industry: str | None = None
    location: str | None = None
    skills: dict[str, float] = Field(default_factory=dict)
    years_experience: int | None = Field(default=None, ge=0)
    nap: NAPSummary = Field(default_factory=NAPSummary)
    urgency: str | None = None
    success_criteria: str | None = None
    team_dynamics: str | None = None

    @field_validator("title")
    @classmethod
    def title_not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "title must not be empty"
            raise ValueError(msg)
        return v.strip()

    @field_validator("skills", mode="before")
    @classmethod
    def skills_as_weights(cls, v: Any) -> Any:
        # A plain list means every skill carries equal weight.
        if isinstance(v, list):
            return {str(s): 1.0 for s in v}
        return v

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Job":
        """Load a job requirement context from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Job file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)


class FitAssessment(BaseModel):
    """Final fit score with the reasoning model's narrative."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    reasoning: str = ""
    strengths: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    rubric_score: float | None = Field(default=None, ge=0.0, le=10.0)
    llm_score: float | None = Field(default=None, ge=0.0, le=100.0)
    strategy: Literal["rubric", "reasoning"] = "reasoning"


class JobCandidateLink(BaseModel):
    """A candidate inside one job's review pipeline."""

    id: int
    job_id: int
    candidate_id: int
    status: str = "sourced"
    fit_score: int | None = None
    match_score: int | None = None
    fit_reasoning: str = ""
    fit_strengths: list[str] = Field(default_factory=list)
    fit_concerns: list[str] = Field(default_factory=list)
    rubric_score: float | None = None
    scoring_strategy: str | None = None
    sourcing_run_id: int | None = None
    added_at: datetime
    updated_at: datetime


class IngestionResult(BaseModel):
    """Outcome of ingesting one fetched profile."""

    reference: str
    candidate_id: int | None = None
    is_duplicate: bool = False
    duplicate_of: int | None = None
    matched_on: str | None = None
    candidate_name: str = ""
    error: str | None = None

    @property
    def created(self) -> bool:
        return self.candidate_id is not None and not self.is_duplicate


class LinkSummary(BaseModel):
    """Counts from linking and scoring a set of candidates for one job."""

    linked: int = 0
    scored: int = 0
    recommended: int = 0
    low_fit: int = 0
    failures: int = 0
