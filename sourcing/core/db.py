"""SQLite database layer for jobs, candidates, job links and sourcing runs."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from sourcing.core.schemas import (
    Candidate,
    Job,
    JobCandidateLink,
    ProgressSnapshot,
    SourcingRun,
)

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    title       TEXT NOT NULL,
    data_json   TEXT NOT NULL,
    created_at  TEXT NOT NULL
);
"""

_SOURCING_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS sourcing_runs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id              INTEGER REFERENCES jobs(id),
    search_type         TEXT    NOT NULL,
    search_intent       TEXT    NOT NULL DEFAULT '',
    status              TEXT    NOT NULL DEFAULT 'queued',
    progress_json       TEXT    NOT NULL,
    profile_urls_json   TEXT    NOT NULL DEFAULT '[]',
    candidates_json     TEXT    NOT NULL DEFAULT '[]',
    fetch_calls         INTEGER NOT NULL DEFAULT 0,
    estimated_cost      REAL    NOT NULL DEFAULT 0.0,
    budget_ceiling      REAL,
    target_count        INTEGER,
    error_log_json      TEXT    NOT NULL DEFAULT '[]',
    cancel_requested    INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL,
    completed_at        TEXT
);
"""

_CANDIDATES_TABLE = """
CREATE TABLE IF NOT EXISTS candidates (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name          TEXT    NOT NULL,
    last_name           TEXT    NOT NULL,
    display_name        TEXT    NOT NULL,
    email               TEXT,
    phone               TEXT,
    email_key           TEXT    NOT NULL DEFAULT '',
    phone_key           TEXT    NOT NULL DEFAULT '',
    name_company_key    TEXT    NOT NULL DEFAULT '',
    location            TEXT    NOT NULL DEFAULT '',
    current_title       TEXT    NOT NULL DEFAULT '',
    current_company     TEXT    NOT NULL DEFAULT '',
    biography           TEXT    NOT NULL DEFAULT '',
    cv_text             TEXT    NOT NULL DEFAULT '',
    skills_json         TEXT    NOT NULL DEFAULT '[]',
    career_history_json TEXT    NOT NULL DEFAULT '[]',
    education_json      TEXT    NOT NULL DEFAULT '[]',
    years_experience    INTEGER,
    source_type         TEXT    NOT NULL,
    sourcing_run_id     INTEGER REFERENCES sourcing_runs(id),
    external_source_url TEXT    NOT NULL DEFAULT '',
    scraped_at          TEXT    NOT NULL
);
"""

# Partial unique indexes turn a lost check-then-insert race into an IntegrityError.
_CANDIDATE_INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_candidates_email "
    "ON candidates(email_key) WHERE email_key != ''",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_candidates_phone "
    "ON candidates(phone_key) WHERE phone_key != ''",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_candidates_name_company "
    "ON candidates(name_company_key) WHERE name_company_key != ''",
    "CREATE INDEX IF NOT EXISTS ix_candidates_source_url "
    "ON candidates(external_source_url)",
)

_JOB_CANDIDATES_TABLE = """
CREATE TABLE IF NOT EXISTS job_candidates (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id              INTEGER NOT NULL REFERENCES jobs(id),
    candidate_id        INTEGER NOT NULL REFERENCES candidates(id),
    status              TEXT    NOT NULL DEFAULT 'sourced',
    fit_score           INTEGER,
    match_score         INTEGER,
    fit_reasoning       TEXT    NOT NULL DEFAULT '',
    fit_strengths_json  TEXT    NOT NULL DEFAULT '[]',
    fit_concerns_json   TEXT    NOT NULL DEFAULT '[]',
    rubric_score        REAL,
    scoring_strategy    TEXT,
    sourcing_run_id     INTEGER REFERENCES sourcing_runs(id),
    added_at            TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL,
    UNIQUE(job_id, candidate_id)
);
"""

# Columns usable as dedup lookups; guards the f-string in find_candidate_id.
IDENTITY_COLUMNS = ("email_key", "phone_key", "name_company_key", "external_source_url")


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_JOBS_TABLE)
    conn.execute(_SOURCING_RUNS_TABLE)
    conn.execute(_CANDIDATES_TABLE)
    for statement in _CANDIDATE_INDEXES:
        conn.execute(statement)
    conn.execute(_JOB_CANDIDATES_TABLE)
    conn.commit()
    return conn


def _now() -> str:
    return datetime.now().isoformat()


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

def insert_job(conn: sqlite3.Connection, job: Job) -> int:
    """Store a job requirement context. Returns the row ID."""
    cursor = conn.execute(
        "INSERT INTO jobs (title, data_json, created_at) VALUES (?, ?, ?)",
        (job.title, job.model_dump_json(exclude={"id"}), _now()),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_job(conn: sqlite3.Connection, job_id: int) -> Job | None:
    row = conn.execute("SELECT id, data_json FROM jobs WHERE id = ?", (job_id,)).fetchone()
    if row is None:
        return None
    data: dict[str, Any] = json.loads(row["data_json"])
    data["id"] = row["id"]
    return Job.model_validate(data)


# ---------------------------------------------------------------------------
# Sourcing runs
# ---------------------------------------------------------------------------

def insert_sourcing_run(
    conn: sqlite3.Connection,
    *,
    job_id: int | None,
    search_intent: str,
    profile_urls: list[str],
    progress: ProgressSnapshot,
    search_type: str = "linkedin_profile_fetch",
    budget_ceiling: float | None = None,
    target_count: int | None = None,
) -> int:
    """Create a queued sourcing run. Returns the row ID."""
    now = _now()
    cursor = conn.execute(
        """
        INSERT INTO sourcing_runs
            (job_id, search_type, search_intent, status, progress_json,
             profile_urls_json, budget_ceiling, target_count, created_at, updated_at)
        VALUES (?, ?, ?, 'queued', ?, ?, ?, ?, ?, ?)
        """,
        (
            job_id,
            search_type,
            search_intent,
            progress.model_dump_json(),
            json.dumps(profile_urls),
            budget_ceiling,
            target_count,
            now,
            now,
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_sourcing_run(conn: sqlite3.Connection, run_id: int) -> SourcingRun | None:
    row = conn.execute("SELECT * FROM sourcing_runs WHERE id = ?", (run_id,)).fetchone()
    if row is None:
        return None
    return SourcingRun(
        id=row["id"],
        job_id=row["job_id"],
        search_type=row["search_type"],
        search_intent=row["search_intent"],
        status=row["status"],
        progress=ProgressSnapshot.model_validate_json(row["progress_json"]),
        profile_urls=json.loads(row["profile_urls_json"]),
        candidates_created=json.loads(row["candidates_json"]),
        fetch_calls=row["fetch_calls"],
        estimated_cost=row["estimated_cost"],
        budget_ceiling=row["budget_ceiling"],
        target_count=row["target_count"],
        error_log=json.loads(row["error_log_json"]),
        cancel_requested=bool(row["cancel_requested"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        completed_at=_parse_dt(row["completed_at"]),
    )


def write_progress(
    conn: sqlite3.Connection,
    run_id: int,
    snapshot: ProgressSnapshot,
    status: str,
    *,
    completed: bool = False,
) -> None:
    """Replace the run's whole progress snapshot and status."""
    now = _now()
    conn.execute(
        """
        UPDATE sourcing_runs
        SET progress_json = ?, status = ?, updated_at = ?,
            completed_at = CASE WHEN ? THEN ? ELSE completed_at END
        WHERE id = ?
        """,
        (snapshot.model_dump_json(), status, now, int(completed), now, run_id),
    )
    conn.commit()


def append_run_error(conn: sqlite3.Connection, run_id: int, message: str) -> None:
    row = conn.execute(
        "SELECT error_log_json FROM sourcing_runs WHERE id = ?", (run_id,)
    ).fetchone()
    if row is None:
        return
    errors: list[str] = json.loads(row["error_log_json"])
    errors.append(message)
    conn.execute(
        "UPDATE sourcing_runs SET error_log_json = ?, updated_at = ? WHERE id = ?",
        (json.dumps(errors), _now(), run_id),
    )
    conn.commit()


def record_fetch_calls(
    conn: sqlite3.Connection,
    run_id: int,
    calls: int,
    cost: float,
) -> None:
    """Increment the run's provider call counter and estimated cost."""
    conn.execute(
        """
        UPDATE sourcing_runs
        SET fetch_calls = fetch_calls + ?, estimated_cost = estimated_cost + ?
        WHERE id = ?
        """,
        (calls, cost, run_id),
    )
    conn.commit()


def set_run_candidates(conn: sqlite3.Connection, run_id: int, candidate_ids: list[int]) -> None:
    conn.execute(
        "UPDATE sourcing_runs SET candidates_json = ?, updated_at = ? WHERE id = ?",
        (json.dumps(candidate_ids), _now(), run_id),
    )
    conn.commit()


def request_cancel(conn: sqlite3.Connection, run_id: int) -> bool:
    """Flag a run for cooperative cancellation. Returns False if the run is unknown."""
    cursor = conn.execute(
        "UPDATE sourcing_runs SET cancel_requested = 1, updated_at = ? WHERE id = ?",
        (_now(), run_id),
    )
    conn.commit()
    return cursor.rowcount > 0


def is_cancel_requested(conn: sqlite3.Connection, run_id: int) -> bool:
    row = conn.execute(
        "SELECT cancel_requested FROM sourcing_runs WHERE id = ?", (run_id,)
    ).fetchone()
    return bool(row and row["cancel_requested"])


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

def find_candidate_id(conn: sqlite3.Connection, column: str, value: str) -> int | None:
    """Return the ID of the candidate whose identity column equals value."""
    if column not in IDENTITY_COLUMNS:
        msg = f"Not an identity column: {column}"
        raise ValueError(msg)
    if not value:
        return None
    row = conn.execute(
        f"SELECT id FROM candidates WHERE {column} = ? ORDER BY id LIMIT 1",  # noqa: S608
        (value,),
    ).fetchone()
    return row["id"] if row else None


def insert_candidate(
    conn: sqlite3.Connection,
    candidate: Candidate,
    *,
    email_key: str = "",
    phone_key: str = "",
    name_company_key: str = "",
) -> int:
    """Insert a candidate row. Returns the row ID.

    Raises sqlite3.IntegrityError when an identity key is already taken.
    """
    cursor = conn.execute(
        """
        INSERT INTO candidates
            (first_name, last_name, display_name, email, phone,
             email_key, phone_key, name_company_key,
             location, current_title, current_company, biography, cv_text,
             skills_json, career_history_json, education_json, years_experience,
             source_type, sourcing_run_id, external_source_url, scraped_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            candidate.first_name,
            candidate.last_name,
            candidate.display_name,
            candidate.email,
            candidate.phone,
            email_key,
            phone_key,
            name_company_key,
            candidate.location,
            candidate.current_title,
            candidate.current_company,
            candidate.biography,
            candidate.cv_text,
            json.dumps(candidate.skills),
            json.dumps([c.model_dump() for c in candidate.career_history]),
            json.dumps([e.model_dump() for e in candidate.education]),
            candidate.years_experience,
            candidate.source_type,
            candidate.sourcing_run_id,
            candidate.external_source_url,
            candidate.scraped_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def _row_to_candidate(row: sqlite3.Row) -> Candidate:
    return Candidate(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        display_name=row["display_name"],
        email=row["email"],
        phone=row["phone"],
        location=row["location"],
        current_title=row["current_title"],
        current_company=row["current_company"],
        biography=row["biography"],
        cv_text=row["cv_text"],
        skills=json.loads(row["skills_json"]),
        career_history=json.loads(row["career_history_json"]),
        education=json.loads(row["education_json"]),
        years_experience=row["years_experience"],
        source_type=row["source_type"],
        sourcing_run_id=row["sourcing_run_id"],
        external_source_url=row["external_source_url"],
        scraped_at=datetime.fromisoformat(row["scraped_at"]),
    )


def get_candidate(conn: sqlite3.Connection, candidate_id: int) -> Candidate | None:
    row = conn.execute("SELECT * FROM candidates WHERE id = ?", (candidate_id,)).fetchone()
    return _row_to_candidate(row) if row else None


def get_candidates(conn: sqlite3.Connection, candidate_ids: list[int]) -> list[Candidate]:
    """Load candidates by ID, preserving the order of candidate_ids."""
    if not candidate_ids:
        return []
    placeholders = ", ".join("?" for _ in candidate_ids)
    rows = conn.execute(
        f"SELECT * FROM candidates WHERE id IN ({placeholders})",  # noqa: S608
        candidate_ids,
    ).fetchall()
    by_id = {row["id"]: _row_to_candidate(row) for row in rows}
    return [by_id[cid] for cid in candidate_ids if cid in by_id]


def count_candidates(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM candidates").fetchone()[0]


# ---------------------------------------------------------------------------
# Job-candidate links
# ---------------------------------------------------------------------------

def insert_link_if_absent(
    conn: sqlite3.Connection,
    job_id: int,
    candidate_id: int,
    *,
    sourcing_run_id: int | None = None,
    reasoning: str = "",
) -> bool:
    """Create a 'sourced' link unless one exists for (job, candidate).

    Returns True if a new row was inserted.
    """
    now = _now()
    cursor = conn.execute(
        """
        INSERT INTO job_candidates
            (job_id, candidate_id, status, fit_reasoning, sourcing_run_id, added_at, updated_at)
        VALUES (?, ?, 'sourced', ?, ?, ?, ?)
        ON CONFLICT(job_id, candidate_id) DO NOTHING
        """,
        (job_id, candidate_id, reasoning, sourcing_run_id, now, now),
    )
    conn.commit()
    return cursor.rowcount == 1


def update_link_assessment(
    conn: sqlite3.Connection,
    job_id: int,
    candidate_id: int,
    *,
    status: str,
    fit_score: int,
    match_score: int | None,
    reasoning: str,
    strengths: list[str],
    concerns: list[str],
    rubric_score: float | None,
    strategy: str,
) -> None:
    conn.execute(
        """
        UPDATE job_candidates
        SET status = ?, fit_score = ?, match_score = ?, fit_reasoning = ?,
            fit_strengths_json = ?, fit_concerns_json = ?, rubric_score = ?,
            scoring_strategy = ?, updated_at = ?
        WHERE job_id = ? AND candidate_id = ?
        """,
        (
            status,
            fit_score,
            match_score,
            reasoning,
            json.dumps(strengths),
            json.dumps(concerns),
            rubric_score,
            strategy,
            _now(),
            job_id,
            candidate_id,
        ),
    )
    conn.commit()


def _row_to_link(row: sqlite3.Row) -> JobCandidateLink:
    return JobCandidateLink(
        id=row["id"],
        job_id=row["job_id"],
        candidate_id=row["candidate_id"],
        status=row["status"],
        fit_score=row["fit_score"],
        match_score=row["match_score"],
        fit_reasoning=row["fit_reasoning"],
        fit_strengths=json.loads(row["fit_strengths_json"]),
        fit_concerns=json.loads(row["fit_concerns_json"]),
        rubric_score=row["rubric_score"],
        scoring_strategy=row["scoring_strategy"],
        sourcing_run_id=row["sourcing_run_id"],
        added_at=datetime.fromisoformat(row["added_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def get_link(
    conn: sqlite3.Connection,
    job_id: int,
    candidate_id: int,
) -> JobCandidateLink | None:
    row = conn.execute(
        "SELECT * FROM job_candidates WHERE job_id = ? AND candidate_id = ?",
        (job_id, candidate_id),
    ).fetchone()
    return _row_to_link(row) if row else None


def list_links(conn: sqlite3.Connection, job_id: int) -> list[JobCandidateLink]:
    """Return all links for a job, best fit first (unscored last)."""
    rows = conn.execute(
        """
        SELECT * FROM job_candidates WHERE job_id = ?
        ORDER BY fit_score IS NULL, fit_score DESC, id
        """,
        (job_id,),
    ).fetchall()
    return [_row_to_link(row) for row in rows]
