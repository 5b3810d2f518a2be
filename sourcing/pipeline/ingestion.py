"""Candidate ingestion and deduplication.

Dedup rules, first match wins:
  1. email               — exact, case-insensitive
  2. phone               — digits only
  3. name + company      — case/punctuation/whitespace-insensitive; skipped
                           when either side is unknown
  4. external source URL — same profile reference ingested before

Incomplete payloads are stored with "Unknown" sentinels rather than dropped.
"""

import logging
import re
import sqlite3
from datetime import date, datetime

from sourcing.core.db import find_candidate_id, insert_candidate
from sourcing.core.schemas import (
    UNKNOWN,
    Candidate,
    CareerEntry,
    EducationRecord,
    ExperienceEntry,
    IngestionResult,
    ProfileFetchResult,
    ProfilePayload,
)

logger = logging.getLogger(__name__)

_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m", "%Y/%m", "%b %Y", "%B %Y", "%m/%Y", "%Y")
_PRESENT_WORDS = frozenset({"present", "current", "now", "today"})
_MIN_PHONE_DIGITS = 7


# ---------------------------------------------------------------------------
# Identity keys
# ---------------------------------------------------------------------------

def normalize_text(value: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    value = re.sub(r"[^\w\s]", "", value.lower())
    return re.sub(r"\s+", " ", value).strip()


def email_key(email: str | None) -> str:
    if not email or "@" not in email:
        return ""
    return email.strip().lower()


def phone_key(phone: str | None) -> str:
    digits = re.sub(r"\D", "", phone or "")
    return digits if len(digits) >= _MIN_PHONE_DIGITS else ""


def name_company_key(full_name: str, company: str) -> str:
    name = normalize_text(full_name)
    org = normalize_text(company)
    unknown = normalize_text(UNKNOWN)
    if not name or not org or unknown in name.split() or org == unknown:
        return ""
    return f"{name}|{org}"


def identity_keys(candidate: Candidate) -> dict[str, str]:
    return {
        "email_key": email_key(candidate.email),
        "phone_key": phone_key(candidate.phone),
        "name_company_key": name_company_key(candidate.full_name, candidate.current_company),
        "external_source_url": candidate.external_source_url,
    }


# ---------------------------------------------------------------------------
# Profile parsing
# ---------------------------------------------------------------------------

def parse_date(value: str | None, today: date | None = None) -> date | None:
    """Parse the provider's loosely formatted dates. None if unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.lower() in _PRESENT_WORDS:
        return today or date.today()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def years_of_experience(experience: list[ExperienceEntry], today: date | None = None) -> int | None:
    """Sum whole months across positions; None when no range is computable."""
    today = today or date.today()
    total_months = 0
    counted = False

    for entry in experience:
        start = parse_date(entry.start_date, today)
        if start is None:
            continue
        end = parse_date(entry.end_date, today) if entry.end_date else today
        if end is None:
            continue
        total_months += max(0, (end.year - start.year) * 12 + (end.month - start.month))
        counted = True

    return total_months // 12 if counted else None


def _split_name(name: str | None) -> tuple[str, str]:
    parts = (name or "").split()
    first = parts[0] if parts else UNKNOWN
    last = " ".join(parts[1:]) if len(parts) > 1 else UNKNOWN
    return first, last


def _location(payload: ProfilePayload) -> str:
    parts = [p for p in (payload.city, payload.country_code) if p]
    return ", ".join(parts) if parts else UNKNOWN


def _graduation_year(end_date: str | None) -> int | None:
    match = re.search(r"\b(19|20)\d{2}\b", end_date or "")
    return int(match.group(0)) if match else None


def build_cv_text(payload: ProfilePayload) -> str:
    """Assemble searchable CV text from whatever the payload carries."""
    sections: list[str] = []
    if payload.name:
        sections.append(f"Name: {payload.name}")
    if payload.position:
        sections.append(f"Current Title: {payload.position}")
    if payload.current_company_name:
        sections.append(f"Current Company: {payload.current_company_name}")
    if payload.city or payload.country_code:
        sections.append(f"Location: {_location(payload)}")
    if payload.about:
        sections.append(f"\nAbout:\n{payload.about}")

    if payload.experience:
        sections.append("\nExperience:")
        for exp in payload.experience:
            period = f"{exp.start_date} - {exp.end_date}" if exp.start_date and exp.end_date else None
            fields = [exp.title, exp.company, exp.location, period, exp.description]
            sections.append(" | ".join(f for f in fields if f))

    if payload.education:
        sections.append("\nEducation:")
        for edu in payload.education:
            fields = [edu.school, edu.degree, edu.field_of_study]
            sections.append(" | ".join(f for f in fields if f))

    if payload.skills:
        sections.append(f"\nSkills: {', '.join(payload.skills)}")

    return "\n".join(sections)


def build_candidate(
    payload: ProfilePayload,
    reference: str,
    sourcing_run_id: int | None,
) -> Candidate:
    """Map a provider payload to a Candidate, filling gaps with sentinels."""
    first, last = _split_name(payload.name)
    current = payload.experience[0] if payload.experience else None

    title = (current.title if current else None) or payload.position
    company = (current.company if current else None) or payload.current_company_name

    missing = [label for label, value in (("name", payload.name), ("title", title),
                                          ("company", company)) if not value]
    if missing:
        logger.info("Profile %s missing %s; storing as %s", reference, ", ".join(missing), UNKNOWN)

    return Candidate(
        first_name=first,
        last_name=last,
        display_name=payload.name or UNKNOWN,
        email=payload.email,
        phone=payload.phone,
        location=_location(payload),
        current_title=title or UNKNOWN,
        current_company=company or UNKNOWN,
        biography=payload.about or "",
        cv_text=build_cv_text(payload),
        skills=payload.skills,
        career_history=[
            CareerEntry(
                company=exp.company or UNKNOWN,
                title=exp.title or UNKNOWN,
                start_date=exp.start_date or "",
                end_date=exp.end_date,
                description=exp.description,
                location=exp.location,
            )
            for exp in payload.experience
        ],
        education=[
            EducationRecord(
                institution=edu.school or UNKNOWN,
                degree=edu.degree,
                major=edu.field_of_study,
                graduation_year=_graduation_year(edu.end_date),
            )
            for edu in payload.education
        ],
        years_experience=years_of_experience(payload.experience),
        sourcing_run_id=sourcing_run_id,
        external_source_url=reference or payload.url or "",
    )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

def find_duplicate(conn: sqlite3.Connection, keys: dict[str, str]) -> tuple[int, str] | None:
    """Return (candidate_id, matched_rule) for the first rule that matches."""
    for column in ("email_key", "phone_key", "name_company_key", "external_source_url"):
        existing = find_candidate_id(conn, column, keys[column])
        if existing is not None:
            return existing, column
    return None


def ingest_profile(
    conn: sqlite3.Connection,
    payload: ProfilePayload,
    reference: str,
    sourcing_run_id: int | None = None,
) -> IngestionResult:
    """Create a candidate from payload, or report which existing one it duplicates."""
    candidate = build_candidate(payload, reference, sourcing_run_id)
    keys = identity_keys(candidate)

    try:
        duplicate = find_duplicate(conn, keys)
        if duplicate is None:
            try:
                candidate_id = insert_candidate(
                    conn,
                    candidate,
                    email_key=keys["email_key"],
                    phone_key=keys["phone_key"],
                    name_company_key=keys["name_company_key"],
                )
            except sqlite3.IntegrityError:
                # Another writer inserted the same person between lookup and insert.
                duplicate = find_duplicate(conn, keys)
                if duplicate is None:
                    raise
    except sqlite3.Error as e:
        logger.error("Failed to ingest %s: %s", reference, e)
        return IngestionResult(reference=reference, candidate_name=candidate.full_name, error=str(e))

    if duplicate is not None:
        existing_id, rule = duplicate
        logger.info(
            "Duplicate: %s matches candidate #%d on %s", candidate.full_name, existing_id, rule,
        )
        return IngestionResult(
            reference=reference,
            is_duplicate=True,
            duplicate_of=existing_id,
            matched_on=rule,
            candidate_name=candidate.full_name,
        )

    logger.info("Created candidate #%d: %s", candidate_id, candidate.full_name)
    return IngestionResult(
        reference=reference,
        candidate_id=candidate_id,
        candidate_name=candidate.full_name,
    )


def ingest_results(
    conn: sqlite3.Connection,
    results: list[ProfileFetchResult],
    sourcing_run_id: int | None = None,
) -> list[IngestionResult]:
    """Ingest every successful fetch result, one IngestionResult each."""
    ingested = [
        ingest_profile(conn, r.payload, r.reference, sourcing_run_id)
        for r in results
        if r.success and r.payload is not None
    ]

    created = sum(1 for r in ingested if r.created)
    duplicates = sum(1 for r in ingested if r.is_duplicate)
    errors = sum(1 for r in ingested if r.error)
    logger.info(
        "Ingestion complete: %d created, %d duplicates, %d errors", created, duplicates, errors,
    )
    return ingested
