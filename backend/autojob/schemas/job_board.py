"""
Job board payloads (vacancies, resumes) normalized into the shapes the
matcher and orchestrator work with.
"""
from datetime import date, datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


REMOTE_SCHEDULE_IDS = {"remote"}
REMOTE_MARKERS = ("remote", "удален")


class SalaryRange(BaseModel):
    """Salary bounds; either side may be missing."""
    salary_from: Optional[int] = None
    salary_to: Optional[int] = None
    currency: Optional[str] = None

    def midpoint(self) -> Optional[float]:
        """Midpoint of the range, or the single bound when only one is given."""
        low = self.salary_from or None
        high = self.salary_to or None
        if low and high:
            return (low + high) / 2
        return low or high

    @classmethod
    def from_api(cls, raw: Optional[dict]) -> Optional["SalaryRange"]:
        if not raw:
            return None
        salary = cls(
            salary_from=raw.get("from") or raw.get("amount"),
            salary_to=raw.get("to"),
            currency=raw.get("currency"),
        )
        if salary.midpoint() is None:
            return None
        return salary


class Vacancy(BaseModel):
    id: str
    title: str
    employer: str = ""
    salary: Optional[SalaryRange] = None
    required_skills: list[str] = Field(default_factory=list)
    experience: Optional[str] = None  # noExperience | between1And3 | between3And6 | moreThan6
    location: str = ""
    remote: bool = False
    url: Optional[str] = None

    @classmethod
    def from_api(cls, raw: dict) -> "Vacancy":
        """Build a Vacancy from a job board search item."""
        schedule_id = (raw.get("schedule") or {}).get("id")
        location = (raw.get("area") or {}).get("name") or ""
        remote = schedule_id in REMOTE_SCHEDULE_IDS or any(
            marker in location.lower() for marker in REMOTE_MARKERS
        )
        return cls(
            id=str(raw["id"]),
            title=raw.get("name") or "",
            employer=(raw.get("employer") or {}).get("name") or "",
            salary=SalaryRange.from_api(raw.get("salary")),
            required_skills=[s["name"] for s in raw.get("key_skills") or [] if s.get("name")],
            experience=(raw.get("experience") or {}).get("id"),
            location=location,
            remote=remote,
            url=raw.get("alternate_url") or raw.get("url"),
        )


class ExperienceEntry(BaseModel):
    start: date
    end: Optional[date] = None  # None = ongoing
    position: Optional[str] = None
    company: Optional[str] = None


def _parse_date(value: Any) -> Optional[date]:
    if not value or value == "present":
        return None
    if isinstance(value, date):
        return value
    text = str(value)
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        # Month precision, e.g. "2019-03"
        return datetime.strptime(text[:7], "%Y-%m").date()
    except ValueError:
        return None


class ResumeProfile(BaseModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    title: Optional[str] = None
    skills: list[str] = Field(default_factory=list)
    experience: list[ExperienceEntry] = Field(default_factory=list)
    desired_salary: Optional[SalaryRange] = None
    location: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_api(cls, raw: dict) -> "ResumeProfile":
        """Build a ResumeProfile from a job board resume document."""
        skills = list(raw.get("skill_set") or [])
        skills += [s["name"] for s in raw.get("skills") or [] if isinstance(s, dict) and s.get("name")]

        experience = []
        for item in raw.get("experience") or []:
            start = _parse_date(item.get("start"))
            if start is None:
                continue
            experience.append(ExperienceEntry(
                start=start,
                end=_parse_date(item.get("end")),
                position=item.get("position"),
                company=item.get("company"),
            ))

        contacts = raw.get("contacts") or {}
        email = contacts.get("email") if isinstance(contacts, dict) else None

        return cls(
            id=str(raw["id"]),
            first_name=raw.get("first_name") or "",
            last_name=raw.get("last_name") or "",
            email=email or raw.get("email"),
            title=raw.get("title"),
            skills=skills,
            experience=experience,
            desired_salary=SalaryRange.from_api(raw.get("salary")),
            location=(raw.get("area") or {}).get("name") or raw.get("location") or "",
        )
