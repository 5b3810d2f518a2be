"""Fit scoring engine: deterministic rubric plus reasoning-model assessment.

Strategy selection:
  - rubric computable (job has weighted skills) → final = round(rubric * 10)
  - otherwise                                   → final = model score
The model's reasoning, strengths and concerns are attached either way.
"""

import asyncio
import logging
import math

from sourcing.core.config import ScoringConfig
from sourcing.core.schemas import UNKNOWN, Candidate, FitAssessment, Job
from sourcing.llm import get_provider, parse_json_response
from sourcing.llm.base import LLMProvider
from sourcing.pipeline.rubric import compute_rubric

logger = logging.getLogger(__name__)

_SCORING_SYSTEM_PROMPT = (
    "You are a senior executive recruiter evaluating candidate-role fit.\n\n"
    "The hiring need is summarised as NEED (what the business needs), AUTHORITY "
    "(the level of ownership the role carries) and PAIN (the problem the hire "
    "must solve). Treat it as the authoritative context.\n\n"
    "Score the candidate on a 0-100 scale:\n"
    "  90-100: Exceptional fit, has solved this exact pain at this level\n"
    "  70-89:  Strong fit, minor gaps in 1-2 areas\n"
    "  50-69:  Moderate fit, relevant background with notable mismatches\n"
    "  30-49:  Weak fit, partial overlap only\n"
    "  0-29:   Poor fit, misaligned function, level or domain\n\n"
    'Return ONLY a JSON object (no markdown, no explanation):\n'
    '{"score": <integer 0-100>, "reasoning": "<2-3 sentences>", '
    '"strengths": ["<short phrase>", ...], "concerns": ["<short phrase>", ...]}'
)


class ScoringError(Exception):
    """The reasoning model call or its response failed."""


def _or(value: str | None, fallback: str) -> str:
    return value if value and value != UNKNOWN else fallback


def _build_user_prompt(candidate: Candidate, job: Job) -> str:
    """Assemble the user prompt from candidate attributes and job context."""
    years = (
        f"{candidate.years_experience} years"
        if candidate.years_experience is not None
        else "not specified"
    )
    skills = ", ".join(candidate.skills) if candidate.skills else "not specified"
    education = candidate.education[0].degree if candidate.education else None

    candidate_section = (
        "CANDIDATE\n"
        f"Name: {candidate.full_name}\n"
        f"Current title: {_or(candidate.current_title, 'not provided')}\n"
        f"Current company: {_or(candidate.current_company, 'not provided')}\n"
        f"Location: {_or(candidate.location, 'not provided')}\n"
        f"Experience: {years}\n"
        f"Skills: {skills}\n"
        f"Education: {education or 'not provided'}\n"
    )
    if candidate.career_history:
        history = "; ".join(f"{c.title} at {c.company}" for c in candidate.career_history[:5])
        candidate_section += f"Career history: {history}\n"

    weighted = (
        ", ".join(f"{name} (weight {weight:g})" for name, weight in job.skills.items())
        if job.skills
        else "not specified"
    )
    target = f"{job.years_experience}+ years" if job.years_experience is not None else "not specified"

    job_section = (
        "ROLE\n"
        f"Title: {job.title}\n"
        f"Industry: {job.industry or 'not specified'}\n"
        f"Location: {job.location or 'not specified'}\n"
        f"Required skills: {weighted}\n"
        f"Experience target: {target}\n"
        f"NEED: {job.nap.need or 'not specified'}\n"
        f"AUTHORITY: {job.nap.authority or 'not specified'}\n"
        f"PAIN: {job.nap.pain or 'not specified'}\n"
    )
    if job.urgency:
        job_section += f"Urgency: {job.urgency}\n"
    if job.success_criteria:
        job_section += f"Success criteria: {job.success_criteria}\n"
    if job.team_dynamics:
        job_section += f"Team dynamics: {job.team_dynamics}\n"

    return f"{candidate_section}\n{job_section}"


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _parse_fit_response(raw_text: str) -> tuple[float, str, list[str], list[str]]:
    """Parse the model's JSON into (score, reasoning, strengths, concerns).

    Clamps score to 0-100. Raises ValueError on malformed response.
    """
    data = parse_json_response(raw_text)

    if "score" not in data:
        msg = "LLM response missing 'score' field"
        raise ValueError(msg)

    try:
        raw_score = float(data["score"])
    except (TypeError, ValueError) as e:
        msg = f"LLM score is not a number: {data['score']!r}"
        raise ValueError(msg) from e
    if not math.isfinite(raw_score):
        msg = f"LLM score is not a finite number: {data['score']!r}"
        raise ValueError(msg)

    score = max(0.0, min(100.0, raw_score))
    reasoning = str(data.get("reasoning", ""))
    return score, reasoning, _string_list(data.get("strengths")), _string_list(data.get("concerns"))


class FitScoringEngine:
    """Scores candidates against a job with an explicitly configured provider."""

    def __init__(self, provider: LLMProvider, config: ScoringConfig) -> None:
        self._provider = provider
        self._config = config

    @classmethod
    def from_config(cls, config: ScoringConfig) -> "FitScoringEngine":
        """Build the engine and its provider; fails fast on a missing API key."""
        provider = get_provider(config.llm_provider, api_key=config.llm_api_key)
        return cls(provider, config)

    def assess(self, candidate: Candidate, job: Job) -> FitAssessment:
        """Compute the final fit assessment.

        Raises:
            ScoringError: If the reasoning model call fails or returns garbage.
        """
        rubric = compute_rubric(candidate, job)

        try:
            raw = self._provider.complete(
                _build_user_prompt(candidate, job),
                model=self._config.llm_model,
                system=_SCORING_SYSTEM_PROMPT,
            )
            llm_score, reasoning, strengths, concerns = _parse_fit_response(raw)
        except Exception as e:
            msg = f"Fit scoring failed for {candidate.full_name}: {e}"
            raise ScoringError(msg) from e

        if rubric is not None:
            score = round(rubric.score * 10)
            strategy = "rubric"
        else:
            score = round(llm_score)
            strategy = "reasoning"

        logger.debug(
            "Scored %s: %d (%s; rubric=%s, model=%.0f)",
            candidate.full_name, score, strategy,
            rubric.score if rubric else None, llm_score,
        )
        return FitAssessment(
            score=score,
            reasoning=reasoning,
            strengths=strengths,
            concerns=concerns,
            rubric_score=rubric.score if rubric else None,
            llm_score=llm_score,
            strategy=strategy,
        )

    async def assess_async(self, candidate: Candidate, job: Job) -> FitAssessment:
        """Run assess() in a worker thread; provider SDKs are blocking."""
        return await asyncio.to_thread(self.assess, candidate, job)
