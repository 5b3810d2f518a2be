"""Quality gate and job linker.

Every candidate is linked to the job as 'sourced' before scoring starts, so it
stays visible even if scoring fails or lags. A score at or above the threshold
promotes the link to 'recommended'. Links are unique per (job, candidate).
"""

import asyncio
import logging
import sqlite3

from sourcing.core.config import ScoringConfig
from sourcing.core.db import get_link, insert_link_if_absent, update_link_assessment
from sourcing.core.schemas import Candidate, FitAssessment, Job, LinkSummary
from sourcing.pipeline.fit_scorer import FitScoringEngine

logger = logging.getLogger(__name__)

# Statuses the gate may set; anything else was set by a recruiter and is kept.
GATE_STATUSES = frozenset({"sourced", "recommended"})


def gate_status(score: int, threshold: int) -> str:
    return "recommended" if score >= threshold else "sourced"


def ensure_link(
    conn: sqlite3.Connection,
    job_id: int,
    candidate_id: int,
    sourcing_run_id: int | None = None,
) -> bool:
    """Link a candidate to a job in 'sourced' status. Returns True if newly created."""
    origin = f"run #{sourcing_run_id}" if sourcing_run_id is not None else "manual"
    return insert_link_if_absent(
        conn,
        job_id,
        candidate_id,
        sourcing_run_id=sourcing_run_id,
        reasoning=f"Externally sourced ({origin}) | Awaiting fit analysis",
    )


def apply_assessment(
    conn: sqlite3.Connection,
    job_id: int,
    candidate_id: int,
    assessment: FitAssessment,
    config: ScoringConfig,
) -> str:
    """Write the score to the (job, candidate) link and gate its status.

    Creates the link first if it does not exist. Returns the resulting status.
    """
    link = get_link(conn, job_id, candidate_id)
    if link is None:
        ensure_link(conn, job_id, candidate_id)
        current = "sourced"
    else:
        current = link.status

    passed = assessment.score >= config.threshold
    status = gate_status(assessment.score, config.threshold) if current in GATE_STATUSES else current

    update_link_assessment(
        conn,
        job_id,
        candidate_id,
        status=status,
        fit_score=assessment.score,
        match_score=config.match_indicator if passed else None,
        reasoning=assessment.reasoning,
        strengths=assessment.strengths,
        concerns=assessment.concerns,
        rubric_score=assessment.rubric_score,
        strategy=assessment.strategy,
    )
    return status


async def link_and_score(
    conn: sqlite3.Connection,
    job: Job,
    candidates: list[Candidate],
    engine: FitScoringEngine,
    config: ScoringConfig,
    sourcing_run_id: int | None = None,
) -> LinkSummary:
    """Link all candidates to the job, then score them in small batches."""
    if job.id is None:
        msg = "job must be stored before linking candidates"
        raise ValueError(msg)

    summary = LinkSummary()

    for candidate in candidates:
        if candidate.id is None:
            continue
        try:
            if ensure_link(conn, job.id, candidate.id, sourcing_run_id):
                summary.linked += 1
        except sqlite3.Error:
            logger.warning(
                "Failed to link candidate #%d to job #%d", candidate.id, job.id, exc_info=True,
            )
    logger.info("Linked %d new candidates to job #%d", summary.linked, job.id)

    scorable = [c for c in candidates if c.id is not None]
    batch_size = config.batch_size

    for start in range(0, len(scorable), batch_size):
        batch = scorable[start:start + batch_size]
        outcomes = await asyncio.gather(
            *(engine.assess_async(candidate, job) for candidate in batch),
            return_exceptions=True,
        )

        for candidate, outcome in zip(batch, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                summary.failures += 1
                logger.warning("Scoring failed for %s: %s", candidate.full_name, outcome)
                continue
            try:
                status = apply_assessment(conn, job.id, candidate.id, outcome, config)  # type: ignore[arg-type]
            except sqlite3.Error:
                summary.failures += 1
                logger.warning(
                    "Failed to store score for candidate #%d", candidate.id, exc_info=True,
                )
                continue

            summary.scored += 1
            if outcome.score >= config.threshold:
                summary.recommended += 1
                logger.info("RECOMMENDED: %s | fit %d/100", candidate.full_name, outcome.score)
            else:
                summary.low_fit += 1
                logger.info(
                    "Low fit: %s | fit %d/100 (status %s)", candidate.full_name, outcome.score, status,
                )

        if start + batch_size < len(scorable):
            await asyncio.sleep(config.batch_delay_ms / 1000)

    logger.info(
        "Scoring summary for job #%d: %d scored, %d recommended, %d low fit, %d failures",
        job.id, summary.scored, summary.recommended, summary.low_fit, summary.failures,
    )
    return summary
