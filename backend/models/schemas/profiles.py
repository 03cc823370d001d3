"""Candidate and job profiles as consumed by the matching pipeline.

Only the fields the feature extractor reads are modelled; the platform's
profile records carry more.
"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel


class Skill(BaseModel):
    name: str
    level: str = "intermediate"  # beginner, intermediate, advanced, expert
    years_experience: float = 0.0


class WorkExperience(BaseModel):
    title: str = ""
    company: str = ""
    industry: str = ""
    start_date: date | None = None
    end_date: date | None = None
    current: bool = False


class Education(BaseModel):
    degree: str
    field: str = ""
    institution: str = ""


class Location(BaseModel):
    city: str = ""
    state: str = ""
    country: str = ""
    remote: bool = False


class SalaryRange(BaseModel):
    min: float | None = None
    max: float | None = None
    currency: str = "USD"


class CandidateProfile(BaseModel):
    id: str
    user_id: str | None = None  # sticky A/B key; falls back to id
    headline: str = ""
    summary: str = ""
    skills: list[Skill] = []
    experience: list[WorkExperience] = []
    education: list[Education] = []
    location: Location | None = None
    salary_expectation: SalaryRange | None = None
    work_types: list[str] = []
    completion_score: float = 0.0  # 0-100
    verified: bool = False
    updated_at: datetime | None = None


class JobProfile(BaseModel):
    id: str
    title: str
    employer_id: str | None = None
    description: str = ""
    required_skills: list[str] = []
    preferred_skills: list[str] = []
    experience_required: float = 0.0  # years
    education_requirements: list[str] = []
    location: Location | None = None
    work_type: Literal["remote", "hybrid", "onsite"] = "onsite"
    salary_range: SalaryRange | None = None
    posted_at: datetime | None = None
