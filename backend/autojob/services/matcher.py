"""
Vacancy/resume matching.

Scores how well a resume fits a vacancy on four weighted components. Pure
functions only: no I/O, no clock unless ``now`` is omitted.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from autojob.database_types import utcnow
from autojob.schemas.job_board import ExperienceEntry, ResumeProfile, SalaryRange, Vacancy


SKILLS_WEIGHT = 0.4
SALARY_WEIGHT = 0.3
EXPERIENCE_WEIGHT = 0.2
LOCATION_WEIGHT = 0.1

# Required years per job board experience tier
EXPERIENCE_TIERS = {
    "noExperience": 0,
    "between1And3": 1,
    "between3And6": 3,
    "moreThan6": 6,
}

# Neutral score when one side of a comparison is unknown
UNKNOWN_SCORE = 0.5


@dataclass
class MatchResult:
    score: float
    skills_score: float
    salary_score: float
    experience_score: float
    location_score: float
    matched_skills: list[str] = field(default_factory=list)


def match_skills(required: list[str], resume_skills: list[str]) -> list[str]:
    """Required skills found (case-insensitive substring) in any resume skill, in vacancy order."""
    lowered = [s.lower() for s in resume_skills]
    matched = []
    for skill in required:
        needle = skill.lower()
        if any(needle in candidate for candidate in lowered):
            matched.append(skill)
    return matched


def skills_score(required: list[str], matched: list[str]) -> float:
    if not required:
        return 1.0
    return len(matched) / len(required)


def salary_score(vacancy_salary: Optional[SalaryRange], desired: Optional[SalaryRange]) -> float:
    """
    Relative distance between range midpoints, bucketed.

    Within 10% -> 1.0, 20% -> 0.8, 30% -> 0.5, further -> 0.2.
    """
    vacancy_mid = vacancy_salary.midpoint() if vacancy_salary else None
    resume_mid = desired.midpoint() if desired else None
    if vacancy_mid is None or resume_mid is None:
        return UNKNOWN_SCORE
    if vacancy_mid == 0:
        return UNKNOWN_SCORE

    diff = abs(vacancy_mid - resume_mid) / vacancy_mid
    if diff <= 0.1:
        return 1.0
    if diff <= 0.2:
        return 0.8
    if diff <= 0.3:
        return 0.5
    return 0.2


def total_experience_years(entries: list[ExperienceEntry], today: date) -> float:
    """Sum of all entries in years; ongoing entries run to ``today``."""
    days = 0
    for entry in entries:
        end = entry.end or today
        span = (end - entry.start).days
        if span > 0:
            days += span
    return days / 365


def experience_score(tier: Optional[str], entries: list[ExperienceEntry], today: date) -> float:
    required = EXPERIENCE_TIERS.get(tier) if tier else None
    if required is None:
        return UNKNOWN_SCORE
    if required == 0:
        return 1.0
    return min(1.0, total_experience_years(entries, today) / required)


def location_score(vacancy: Vacancy, resume_location: str) -> float:
    if vacancy.remote:
        return 1.0
    if resume_location.lower() in (vacancy.location or "").lower():
        return 1.0
    return 0.0


def score(vacancy: Vacancy, resume: ResumeProfile, now: Optional[datetime] = None) -> MatchResult:
    """
    Weighted match of a vacancy against a resume.

    Args:
        vacancy: Vacancy from a search
        resume: Primary resume of the user
        now: Reference time for ongoing experience entries (defaults to now)

    Returns:
        MatchResult with the overall score and every component in [0, 1]
    """
    today = (now or utcnow()).date()

    matched = match_skills(vacancy.required_skills, resume.skills)
    skills = skills_score(vacancy.required_skills, matched)
    salary = salary_score(vacancy.salary, resume.desired_salary)
    experience = experience_score(vacancy.experience, resume.experience, today)
    location = location_score(vacancy, resume.location or "")

    overall = (
        SKILLS_WEIGHT * skills
        + SALARY_WEIGHT * salary
        + EXPERIENCE_WEIGHT * experience
        + LOCATION_WEIGHT * location
    )

    return MatchResult(
        score=round(min(1.0, max(0.0, overall)), 4),
        skills_score=skills,
        salary_score=salary,
        experience_score=experience,
        location_score=location,
        matched_skills=matched,
    )
