"""Cover letter sent along with each automated application."""
from datetime import datetime
from typing import Optional

from autojob.database_types import utcnow
from autojob.schemas.job_board import ResumeProfile, Vacancy
from autojob.services.matcher import MatchResult, total_experience_years

MAX_LISTED_SKILLS = 5


def match_description(result: MatchResult) -> str:
    if result.score >= 0.9:
        return "My experience is an excellent fit for the requirements of this role."
    if result.score >= 0.8:
        return "My profile fits your requirements well."
    if result.score >= 0.7:
        return "My experience covers a good part of the requirements of this role."
    return "My profile overlaps with several of your requirements."


def build_cover_letter(
    vacancy: Vacancy,
    resume: ResumeProfile,
    result: MatchResult,
    now: Optional[datetime] = None,
) -> str:
    today = (now or utcnow()).date()
    years = int(total_experience_years(resume.experience, today))
    skills = ", ".join(result.matched_skills[:MAX_LISTED_SKILLS])
    name = resume.full_name or "Candidate"
    team = vacancy.employer or "Hiring team"

    lines = [
        f"Dear {team} team,",
        "",
        f"My name is {name}, and I would like to apply for the \"{vacancy.title}\" position.",
        "",
        match_description(result),
    ]
    if years:
        lines.append(f"Work experience: {years}+ years")
    if skills:
        lines.append(f"Key skills: {skills}")
    lines += [
        "",
        "I would be glad to discuss how I can contribute to your team.",
        "",
        "Best regards,",
        name,
    ]
    if resume.email:
        lines.append(resume.email)
    return "\n".join(lines)
