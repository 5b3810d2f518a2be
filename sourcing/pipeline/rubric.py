"""Deterministic fit rubric (0-10) for candidates against a job's weighted skills.

Components:
  title similarity   up to 3 — share of the job title's words in the candidate title
  skill weight       up to 4 — matched skill weight / total skill weight
  experience         up to 2 — full at or above target, 1 within two years
  location           1       — job and candidate location share a place name

Missing candidate attributes contribute zero; they never raise.
The rubric only applies when the job defines weighted skills.
"""

import logging
import re

from pydantic import BaseModel, ConfigDict, Field

from sourcing.core.schemas import UNKNOWN, Candidate, Job

logger = logging.getLogger(__name__)

TITLE_POINTS = 3.0
SKILL_POINTS = 4.0
EXPERIENCE_POINTS = 2.0
LOCATION_POINTS = 1.0
MAX_SCORE = 10.0

# Candidates this many years short of the target still earn partial credit.
EXPERIENCE_TOLERANCE_YEARS = 2

_STOPWORDS = frozenset({"of", "and", "the", "for", "a", "an", "in", "at", "to"})
_TOKEN_RE = re.compile(r"[a-z0-9+#]+")


class RubricScore(BaseModel):
    """Rubric total with a per-component breakdown for auditing."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=MAX_SCORE)
    breakdown: dict[str, float] = Field(default_factory=dict)


def _tokens(text: str | None) -> set[str]:
    if not text or text == UNKNOWN:
        return set()
    return {t for t in _TOKEN_RE.findall(text.lower()) if t not in _STOPWORDS}


def title_similarity(candidate_title: str | None, job_title: str | None) -> float:
    """Fraction (0-1) of the job title's words present in the candidate's title."""
    job_tokens = _tokens(job_title)
    if not job_tokens:
        return 0.0
    return len(job_tokens & _tokens(candidate_title)) / len(job_tokens)


def _profile_text(candidate: Candidate) -> str:
    parts = [
        candidate.current_title,
        candidate.biography,
        " ".join(candidate.skills),
        " ".join(entry.title for entry in candidate.career_history),
    ]
    return " ".join(p for p in parts if p and p != UNKNOWN).lower()


def _mentions(text: str, skill: str) -> bool:
    """Whole-word (or whole-phrase) match, so "go" does not hit "mongodb"."""
    phrase = skill.lower().strip()
    if not phrase:
        return False
    return re.search(rf"(?<![a-z0-9+#]){re.escape(phrase)}(?![a-z0-9+#])", text) is not None


def skill_share(candidate: Candidate, weighted_skills: dict[str, float]) -> float:
    """Matched skill weight over total weight (0-1)."""
    total = sum(w for w in weighted_skills.values() if w > 0)
    if total <= 0:
        return 0.0
    text = _profile_text(candidate)
    matched = sum(
        weight for skill, weight in weighted_skills.items()
        if weight > 0 and _mentions(text, skill)
    )
    return matched / total


def experience_points(years: int | None, target: int | None) -> float:
    if years is None or target is None:
        return 0.0
    if years >= target:
        return EXPERIENCE_POINTS
    if target - years <= EXPERIENCE_TOLERANCE_YEARS:
        return EXPERIENCE_POINTS / 2
    return 0.0


def location_points(candidate_location: str | None, job_location: str | None) -> float:
    job_tokens = _tokens(job_location)
    if not job_tokens:
        return 0.0
    return LOCATION_POINTS if job_tokens & _tokens(candidate_location) else 0.0


def compute_rubric(candidate: Candidate, job: Job) -> RubricScore | None:
    """Score a candidate on the 0-10 rubric, or None if the job has no weighted skills."""
    if not job.skills:
        return None

    breakdown = {
        "title": round(title_similarity(candidate.current_title, job.title) * TITLE_POINTS, 2),
        "skills": round(skill_share(candidate, job.skills) * SKILL_POINTS, 2),
        "experience": experience_points(candidate.years_experience, job.years_experience),
        "location": location_points(candidate.location, job.location),
    }
    score = min(MAX_SCORE, round(sum(breakdown.values()), 2))

    logger.debug("Rubric for %s: %.2f %s", candidate.full_name, score, breakdown)
    return RubricScore(score=score, breakdown=breakdown)
