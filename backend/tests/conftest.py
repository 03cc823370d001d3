"""Shared test configuration, fixtures and pytest markers."""

from datetime import date, datetime, timezone

import pytest

from config import Settings
from models.schemas.features import TrainingData, TrainingSample
from models.schemas.profiles import (
    CandidateProfile,
    Education,
    JobProfile,
    Location,
    SalaryRange,
    Skill,
    WorkExperience,
)
from services.pipeline.orchestrator import MatchingPipeline

JOB_SKILLS = [
    ["python", "fastapi", "postgresql"],
    ["react", "typescript", "css"],
    ["java", "spring", "kafka"],
]

PROFILE_TIME = datetime(2024, 6, 1, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "training: fits real models on a synthetic dataset (a few seconds)"
    )
    config.addinivalue_line(
        "markers", "integration: exercises the façade end to end against SQLite"
    )


def make_job(idx: int = 0, **overrides) -> JobProfile:
    skills = JOB_SKILLS[idx % len(JOB_SKILLS)]
    data = dict(
        id=f"job-{idx}",
        title=f"{skills[0].title()} Engineer",
        employer_id="employer-1",
        description=f"We build products with {', '.join(skills)}.",
        required_skills=skills[:2],
        preferred_skills=skills[2:],
        experience_required=4,
        education_requirements=["Bachelor's degree"],
        location=Location(city="Austin", state="TX", country="US"),
        work_type="hybrid",
        salary_range=SalaryRange(min=100_000, max=140_000),
        posted_at=PROFILE_TIME,
    )
    data.update(overrides)
    return JobProfile(**data)


def make_candidate(idx: int = 0, skills: list[str] | None = None, years: int = 5, **overrides) -> CandidateProfile:
    skills = skills if skills is not None else JOB_SKILLS[idx % len(JOB_SKILLS)]
    data = dict(
        id=f"cand-{idx}",
        user_id=f"user-{idx}",
        headline=f"{skills[0].title()} developer" if skills else "",
        summary=f"Experienced with {', '.join(skills)}.",
        skills=[Skill(name=s, level="advanced", years_experience=years) for s in skills],
        experience=[
            WorkExperience(
                title="Engineer",
                company="Acme",
                start_date=date(2024 - years, 6, 1),
                current=True,
            )
        ] if years > 0 else [],
        education=[Education(degree="BSc Computer Science")],
        location=Location(city="Austin", state="TX", country="US"),
        salary_expectation=SalaryRange(min=110_000, max=130_000),
        completion_score=80,
        verified=True,
        updated_at=PROFILE_TIME,
    )
    data.update(overrides)
    return CandidateProfile(**data)


def make_training_data(n: int = 100) -> TrainingData:
    """Alternating labels so every contiguous slice holds both classes."""
    samples = []
    for i in range(n):
        job_idx = (i // 2) % len(JOB_SKILLS)
        job = make_job(job_idx)
        if i % 2 == 0:
            candidate = make_candidate(i, skills=JOB_SKILLS[job_idx], years=5 + i % 3)
            label = 1
        else:
            other = JOB_SKILLS[(job_idx + 1) % len(JOB_SKILLS)]
            candidate = make_candidate(
                i, skills=other, years=i % 2,
                location=Location(city="Berlin", country="DE"),
                salary_expectation=SalaryRange(min=200_000, max=250_000),
                education=[],
            )
            label = 0
        samples.append(TrainingSample(label=label, candidate=candidate, job=job))
    return TrainingData(samples=samples)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'registry.db'}",
        model_dir=str(tmp_path / "models"),
        embedding_dimension=8,
        hyperparameter_tuning=False,
        cross_validation_folds=2,
        ab_testing_enabled=False,
        min_sample_size=100,
        monitoring_enabled=False,
    )


@pytest.fixture
def pipeline(settings) -> MatchingPipeline:
    return MatchingPipeline(settings)


@pytest.fixture
def training_data() -> TrainingData:
    return make_training_data()


@pytest.fixture
def candidate() -> CandidateProfile:
    return make_candidate(0)


@pytest.fixture
def job() -> JobProfile:
    return make_job(0)
