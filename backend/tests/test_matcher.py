"""
Tests for vacancy/resume matching and the cover letter built from it.
"""
from datetime import date, datetime, timezone

import pytest

from autojob.schemas.job_board import ExperienceEntry, SalaryRange
from autojob.services.cover_letter import build_cover_letter
from autojob.services.matcher import (
    experience_score,
    location_score,
    match_skills,
    salary_score,
    score,
    total_experience_years,
)

from conftest import make_resume, make_vacancy

NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


def test_skills_match_is_case_insensitive_substring():
    matched = match_skills(["go", "sql", "kafka"], ["Golang", "PostgreSQL", "Python"])
    assert matched == ["go", "sql"]


def test_end_to_end_score_above_threshold():
    """
    go matches Go, sql has no counterpart: skills 0.5. Salary and location
    match exactly; 876 days against the 3-year tier gives 0.8.

    The resume leaves out PostgreSQL: a vacancy skill matches when it is a
    substring of a resume skill, so "sql" would match "PostgreSQL" and the
    skills component would be 1.0 instead of 0.5.
    """
    vacancy = make_vacancy(
        "v1",
        required_skills=["go", "sql"],
        salary=SalaryRange(salary_from=200000, salary_to=200000),
        experience="between3And6",
        location="Moscow",
    )
    resume = make_resume(
        skills=["Go", "Python", "Docker"],
        experience=[ExperienceEntry(start=date(2020, 1, 1), end=date(2022, 5, 26))],
        desired_salary=SalaryRange(salary_from=200000),
        location="Moscow",
    )

    result = score(vacancy, resume, now=NOW)

    assert result.skills_score == 0.5
    assert result.salary_score == 1.0
    assert result.experience_score == pytest.approx(0.8)
    assert result.location_score == 1.0
    assert result.score == pytest.approx(0.76)
    assert result.score >= 0.7
    assert result.matched_skills == ["go"]


def test_score_is_bounded():
    worst = score(
        make_vacancy(
            "v1",
            required_skills=["rust", "haskell"],
            salary=SalaryRange(salary_from=50000),
            experience="moreThan6",
            location="Novosibirsk",
        ),
        make_resume(experience=[], location="Moscow"),
        now=NOW,
    )
    best = score(make_vacancy("v2", remote=True), make_resume(), now=NOW)

    for result in (worst, best):
        assert 0.0 <= result.score <= 1.0
        for component in (
            result.skills_score,
            result.salary_score,
            result.experience_score,
            result.location_score,
        ):
            assert 0.0 <= component <= 1.0
    assert best.score == 1.0


def test_empty_requirements_score_full_skills():
    result = score(make_vacancy("v1", required_skills=[]), make_resume(skills=[]), now=NOW)
    assert result.skills_score == 1.0


@pytest.mark.parametrize(
    "resume_mid, expected",
    [
        (105000, 1.0),
        (118000, 0.8),
        (75000, 0.5),
        (150000, 0.2),
    ],
)
def test_salary_buckets(resume_mid, expected):
    vacancy_salary = SalaryRange(salary_from=90000, salary_to=110000)
    desired = SalaryRange(salary_from=resume_mid)
    assert salary_score(vacancy_salary, desired) == expected


def test_salary_unknown_is_neutral():
    assert salary_score(None, SalaryRange(salary_from=100000)) == 0.5
    assert salary_score(SalaryRange(salary_to=100000), None) == 0.5


def test_experience_ongoing_entry_runs_to_today():
    entries = [ExperienceEntry(start=date(2023, 3, 10), end=None)]
    years = total_experience_years(entries, date(2026, 3, 9))
    assert years == pytest.approx(1095 / 365)


def test_experience_negative_span_ignored():
    entries = [ExperienceEntry(start=date(2024, 1, 1), end=date(2023, 1, 1))]
    assert total_experience_years(entries, date(2026, 1, 1)) == 0


def test_experience_tiers():
    one_year = [ExperienceEntry(start=date(2025, 1, 1), end=date(2026, 1, 1))]
    today = date(2026, 3, 10)
    assert experience_score("noExperience", [], today) == 1.0
    assert experience_score("between1And3", one_year, today) == 1.0
    assert experience_score("moreThan6", one_year, today) == pytest.approx(1 / 6)
    assert experience_score(None, one_year, today) == 0.5


def test_location_remote_or_contained():
    assert location_score(make_vacancy("v1", remote=True, location="Kazan"), "Moscow") == 1.0
    assert location_score(make_vacancy("v2", location="Moscow, Tverskaya"), "moscow") == 1.0
    assert location_score(make_vacancy("v3", location="Kazan"), "Moscow") == 0.0


def test_location_empty_resume_location_matches_everything():
    # An empty string is contained in any location
    assert location_score(make_vacancy("v1", location="Moscow"), "") == 1.0
    assert location_score(make_vacancy("v2", location=""), "") == 1.0


def test_cover_letter_lists_matched_skills_and_contacts():
    vacancy = make_vacancy("v1", required_skills=["python", "go", "docker"])
    resume = make_resume()
    result = score(vacancy, resume, now=NOW)

    letter = build_cover_letter(vacancy, resume, result, now=NOW)

    assert "Dear Acme team," in letter
    assert '"Python developer v1"' in letter
    assert "Key skills: python, go, docker" in letter
    assert "Work experience: 3+ years" in letter
    assert "excellent fit" in letter
    assert letter.rstrip().endswith("ivan@example.com")
