"""Tests for candidate ingestion: identity keys, payload mapping, dedup."""

import sqlite3
from datetime import date
from unittest.mock import patch

import pytest

from sourcing.core.db import count_candidates, get_candidate, init_db, insert_candidate
from sourcing.core.schemas import UNKNOWN, Candidate, ExperienceEntry, ProfileFetchResult, ProfilePayload
from sourcing.pipeline.ingestion import (
    build_candidate,
    build_cv_text,
    email_key,
    identity_keys,
    ingest_profile,
    ingest_results,
    name_company_key,
    normalize_text,
    parse_date,
    phone_key,
    years_of_experience,
)

REF = "https://www.linkedin.com/in/jane-doe"


def _payload(**overrides: object) -> ProfilePayload:
    defaults: dict[str, object] = {
        "linkedin_id": "jane-doe",
        "name": "Jane Doe",
        "city": "London",
        "country_code": "GB",
        "position": "Chief Technology Officer",
        "current_company_name": "Acme",
        "about": "Builds payment platforms.",
        "email": "Jane.Doe@Acme.com",
        "experience": [
            {"title": "CTO", "company": "Acme", "start_date": "2019-01", "end_date": None},
            {"title": "VP Engineering", "company": "Globex", "start_date": "2014-01",
             "end_date": "2019-01"},
        ],
        "education": [{"school": "Imperial College", "degree": "MEng", "end_date": "2008"}],
        "skills": ["Python", "Payments"],
    }
    defaults.update(overrides)
    return ProfilePayload.model_validate(defaults)


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    return init_db(tmp_path / "test.db")


class TestIdentityKeys:
    def test_normalize_text(self) -> None:
        assert normalize_text("  Jane   O'Neil, Jr. ") == "jane oneil jr"

    def test_email_key(self) -> None:
        assert email_key(" Jane.Doe@Acme.COM ") == "jane.doe@acme.com"
        assert email_key("not-an-email") == ""
        assert email_key(None) == ""

    def test_phone_key(self) -> None:
        assert phone_key("+44 (20) 7946-0958") == "442079460958"
        assert phone_key("12-34") == ""
        assert phone_key(None) == ""

    def test_name_company_key(self) -> None:
        assert name_company_key("Jane  Doe", "Acme, Inc.") == "jane doe|acme inc"

    @pytest.mark.parametrize(("name", "company"), [
        ("Jane Unknown", "Acme"),
        ("Jane Doe", UNKNOWN),
        ("", "Acme"),
        ("Jane Doe", ""),
    ])
    def test_name_company_key_skips_unknowns(self, name: str, company: str) -> None:
        assert name_company_key(name, company) == ""

    def test_identity_keys(self) -> None:
        candidate = Candidate(
            first_name="Jane", last_name="Doe", current_company="Acme",
            email="JANE@acme.com", phone="555 123 4567", external_source_url=REF,
        )
        assert identity_keys(candidate) == {
            "email_key": "jane@acme.com",
            "phone_key": "5551234567",
            "name_company_key": "jane doe|acme",
            "external_source_url": REF,
        }


class TestParseDate:
    @pytest.mark.parametrize(("text", "expected"), [
        ("2020-03-15", date(2020, 3, 15)),
        ("2020-03", date(2020, 3, 1)),
        ("Mar 2020", date(2020, 3, 1)),
        ("March 2020", date(2020, 3, 1)),
        ("2020", date(2020, 1, 1)),
    ])
    def test_formats(self, text: str, expected: date) -> None:
        assert parse_date(text) == expected

    def test_present(self) -> None:
        today = date(2026, 1, 1)
        assert parse_date("Present", today) == today

    @pytest.mark.parametrize("text", ["", None, "sometime", "13/13/13"])
    def test_unparseable(self, text: str | None) -> None:
        assert parse_date(text) is None


class TestYearsOfExperience:
    def test_sums_positions(self) -> None:
        experience = [
            ExperienceEntry(start_date="2015-01", end_date="2020-01"),
            ExperienceEntry(start_date="2020-01", end_date=None),
        ]
        assert years_of_experience(experience, today=date(2023, 1, 1)) == 8

    def test_no_dates(self) -> None:
        assert years_of_experience([ExperienceEntry(title="CTO")]) is None

    def test_empty(self) -> None:
        assert years_of_experience([]) is None

    def test_inverted_range_counts_zero(self) -> None:
        experience = [ExperienceEntry(start_date="2020-01", end_date="2019-01")]
        assert years_of_experience(experience, today=date(2023, 1, 1)) == 0


class TestBuildCandidate:
    def test_full_payload(self) -> None:
        candidate = build_candidate(_payload(), REF, sourcing_run_id=7)
        assert candidate.first_name == "Jane"
        assert candidate.last_name == "Doe"
        assert candidate.current_title == "CTO"
        assert candidate.current_company == "Acme"
        assert candidate.location == "London, GB"
        assert candidate.email == "Jane.Doe@Acme.com"
        assert candidate.skills == ["Python", "Payments"]
        assert len(candidate.career_history) == 2
        assert candidate.education[0].institution == "Imperial College"
        assert candidate.education[0].graduation_year == 2008
        assert candidate.sourcing_run_id == 7
        assert candidate.external_source_url == REF
        assert candidate.source_type == "linkedin_scrape"

    def test_falls_back_to_position(self) -> None:
        candidate = build_candidate(_payload(experience=[]), REF, None)
        assert candidate.current_title == "Chief Technology Officer"
        assert candidate.current_company == "Acme"

    def test_sparse_payload_uses_sentinels(self) -> None:
        candidate = build_candidate(ProfilePayload(linkedin_id="x"), REF, None)
        assert candidate.first_name == UNKNOWN
        assert candidate.last_name == UNKNOWN
        assert candidate.current_title == UNKNOWN
        assert candidate.current_company == UNKNOWN
        assert candidate.location == UNKNOWN
        assert candidate.years_experience is None

    def test_single_word_name(self) -> None:
        candidate = build_candidate(ProfilePayload(name="Cher"), REF, None)
        assert candidate.first_name == "Cher"
        assert candidate.last_name == UNKNOWN

    def test_reference_url_falls_back_to_payload_url(self) -> None:
        candidate = build_candidate(ProfilePayload(name="Jane", url="https://x.test/jane"), "", None)
        assert candidate.external_source_url == "https://x.test/jane"

    def test_cv_text(self) -> None:
        text = build_cv_text(_payload())
        assert "Name: Jane Doe" in text
        assert "CTO | Acme" in text
        assert "Imperial College | MEng" in text
        assert "Skills: Python, Payments" in text


class TestIngestProfile:
    def test_creates_candidate(self, db) -> None:  # type: ignore[no-untyped-def]
        result = ingest_profile(db, _payload(), REF, None)
        assert result.created
        assert result.candidate_id is not None
        stored = get_candidate(db, result.candidate_id)
        assert stored is not None
        assert stored.full_name == "Jane Doe"

    def test_same_payload_twice_is_idempotent(self, db) -> None:  # type: ignore[no-untyped-def]
        first = ingest_profile(db, _payload(), REF, None)
        second = ingest_profile(db, _payload(), REF, None)

        assert first.created
        assert second.is_duplicate
        assert second.duplicate_of == first.candidate_id
        assert second.matched_on == "email_key"
        assert count_candidates(db) == 1

    def test_email_match_is_case_insensitive(self, db) -> None:  # type: ignore[no-untyped-def]
        first = ingest_profile(db, _payload(), REF, None)
        second = ingest_profile(db, _payload(email="jane.doe@acme.com", name="J. Doe"), REF + "-2", None)
        assert second.duplicate_of == first.candidate_id

    def test_phone_match(self, db) -> None:  # type: ignore[no-untyped-def]
        first = ingest_profile(db, _payload(email=None, phone="+1 555 123 4567"), REF, None)
        second = ingest_profile(
            db, _payload(email=None, name="Janet Roe", phone="15551234567"), REF + "-2", None,
        )
        assert second.is_duplicate
        assert second.duplicate_of == first.candidate_id
        assert second.matched_on == "phone_key"

    def test_name_company_match(self, db) -> None:  # type: ignore[no-untyped-def]
        first = ingest_profile(db, _payload(email="jane@home.example"), REF, None)
        second = ingest_profile(db, _payload(email="jane@work.example"), REF + "-2", None)
        assert second.is_duplicate
        assert second.duplicate_of == first.candidate_id
        assert second.matched_on == "name_company_key"

    def test_source_url_match(self, db) -> None:  # type: ignore[no-untyped-def]
        first = ingest_profile(db, ProfilePayload(linkedin_id="x"), REF, None)
        second = ingest_profile(db, ProfilePayload(linkedin_id="x"), REF, None)
        assert second.duplicate_of == first.candidate_id
        assert second.matched_on == "external_source_url"

    def test_sparse_profiles_not_merged(self, db) -> None:  # type: ignore[no-untyped-def]
        first = ingest_profile(db, ProfilePayload(linkedin_id="a"), REF + "-a", None)
        second = ingest_profile(db, ProfilePayload(linkedin_id="b"), REF + "-b", None)
        assert first.created
        assert second.created
        assert count_candidates(db) == 2

    def test_lost_insert_race_becomes_duplicate(self, db) -> None:  # type: ignore[no-untyped-def]
        existing = build_candidate(_payload(), REF, None)
        existing_id = insert_candidate(db, existing, email_key="jane.doe@acme.com")

        # First lookup misses (as if the other writer had not committed yet).
        with patch(
            "sourcing.pipeline.ingestion.find_duplicate",
            side_effect=[None, (existing_id, "email_key")],
        ):
            result = ingest_profile(db, _payload(), REF, None)

        assert result.is_duplicate
        assert result.duplicate_of == existing_id
        assert count_candidates(db) == 1

    def test_storage_error_reported(self, db) -> None:  # type: ignore[no-untyped-def]
        with patch(
            "sourcing.pipeline.ingestion.insert_candidate",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            result = ingest_profile(db, _payload(), REF, None)
        assert not result.created
        assert result.error == "disk I/O error"


class TestIngestResults:
    def test_skips_failures(self, db) -> None:  # type: ignore[no-untyped-def]
        results = [
            ProfileFetchResult(reference=REF, success=True, payload=_payload()),
            ProfileFetchResult(reference=REF + "-x", success=False, error="timeout"),
            ProfileFetchResult(
                reference=REF + "-2", success=True,
                payload=_payload(name="John Roe", email="john@globex.example", current_company_name="Globex",
                                 experience=[]),
            ),
        ]
        ingested = ingest_results(db, results, None)
        assert [r.reference for r in ingested] == [REF, REF + "-2"]
        assert all(r.created for r in ingested)
