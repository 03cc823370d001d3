"""Feature extraction for candidate/job pairs.

Vector layout (fixed order, length depends only on configuration):

    similarity   skill overlap, experience/education/location/salary fit   (7)
    numeric      candidate/job numeric signals, optionally min-max scaled  (5)
    categorical  one-hot work type, seniority, education level            (16, optional)
    text         cosine + distance of profile embeddings                   (2, optional)
    embedding    element-wise product of normalized embeddings             (embedding_dimension, optional)

Nothing time-dependent enters the vector: open-ended roles are measured up to
the candidate's ``updated_at`` (or their latest dated role), never "now".
"""

import logging
from datetime import date
from typing import Any

import numpy as np
from pydantic import BaseModel, ValidationError

from models.schemas.features import FeatureVector, TrainingSample
from models.schemas.profiles import CandidateProfile, JobProfile, Location, SalaryRange
from services.pipeline.embeddings import EmbeddingService, l2_normalize
from services.pipeline.errors import FeatureExtractionError

logger = logging.getLogger(__name__)

SIMILARITY_FEATURES = [
    "skill_jaccard",
    "required_skill_coverage",
    "preferred_skill_coverage",
    "experience_alignment",
    "education_match",
    "location_compatibility",
    "salary_alignment",
]

NUMERIC_FEATURES = [
    "candidate_years_experience",
    "job_years_required",
    "candidate_skill_count",
    "candidate_completion",
    "candidate_verified",
]

# (min, max) for min-max scaling; values are clamped into [0, 1]
NUMERIC_RANGES = {
    "candidate_years_experience": (0.0, 40.0),
    "job_years_required": (0.0, 40.0),
    "candidate_skill_count": (0.0, 50.0),
    "candidate_completion": (0.0, 100.0),
    "candidate_verified": (0.0, 1.0),
}

WORK_TYPES = ["remote", "hybrid", "onsite"]
SENIORITY_LEVELS = ["entry", "junior", "mid", "senior", "lead", "principal", "executive"]
EDUCATION_LEVELS = ["none", "high_school", "associate", "bachelor", "master", "phd"]

TEXT_FEATURES = ["text_cosine", "text_distance"]

_DEGREE_KEYWORDS = [
    ("phd", {"phd", "ph.d", "ph.d.", "doctorate", "doctoral"}),
    ("master", {"master", "masters", "master's", "mba", "ms", "msc", "m.s.", "ma"}),
    ("bachelor", {"bachelor", "bachelors", "bachelor's", "bs", "bsc", "b.s.", "ba", "btech", "b.tech"}),
    ("associate", {"associate", "associates", "associate's"}),
    ("high_school", {"high", "ged", "diploma"}),
]


def _coerce(profile: Any, schema: type[BaseModel], kind: str) -> Any:
    if isinstance(profile, schema):
        return profile
    if isinstance(profile, dict):
        try:
            return schema.model_validate(profile)
        except ValidationError as e:
            missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise FeatureExtractionError(
                f"Invalid {kind} profile, bad or missing fields: {', '.join(missing)}"
            ) from e
    raise FeatureExtractionError(f"Unsupported {kind} profile type: {type(profile).__name__}")


def coerce_profiles(candidate: Any, job: Any) -> tuple[CandidateProfile, JobProfile]:
    """Accept pydantic profiles or plain dicts for both sides of a pair."""
    return _coerce(candidate, CandidateProfile, "candidate"), _coerce(job, JobProfile, "job")


def normalize_value(value: float, lo: float, hi: float) -> float:
    if hi == lo:
        return 0.0
    return max(0.0, min(1.0, (value - lo) / (hi - lo)))


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def coverage(have: set[str], wanted: set[str]) -> float:
    if not wanted:
        return 1.0
    return len(have & wanted) / len(wanted)


def experience_alignment(candidate_years: float, job_years: float) -> float:
    if job_years <= 0:
        return 1.0
    ratio = candidate_years / job_years
    if 0.8 <= ratio <= 1.5:
        return 1.0
    if 0.5 <= ratio <= 2.0:
        return 0.7
    return max(0.0, 1.0 - abs(ratio - 1.0))


def education_level(degree: str) -> str:
    text = degree.lower()
    tokens = set(text.replace(",", " ").split())
    for level, keywords in _DEGREE_KEYWORDS:
        if tokens & keywords:
            return level
    if "high school" in text:
        return "high_school"
    return "none"


def highest_education(candidate: CandidateProfile) -> str:
    levels = [education_level(ed.degree) for ed in candidate.education]
    if not levels:
        return "none"
    return max(levels, key=EDUCATION_LEVELS.index)


def education_match(candidate_level: str, requirements: list[str]) -> float:
    """1.0 if the candidate meets every stated degree requirement, else 0.0."""
    have = EDUCATION_LEVELS.index(candidate_level)
    for requirement in requirements:
        needed = education_level(requirement)
        if needed != "none" and have < EDUCATION_LEVELS.index(needed):
            return 0.0
    return 1.0


def location_compatibility(
    candidate_loc: Location | None,
    job_loc: Location | None,
    work_type: str,
) -> float:
    if work_type == "remote":
        return 1.0
    if candidate_loc is None or job_loc is None:
        return 0.0
    same_country = candidate_loc.country.lower() == job_loc.country.lower()
    if same_country and candidate_loc.city.lower() == job_loc.city.lower():
        return 1.0
    if same_country:
        return 0.8
    if work_type == "hybrid" and candidate_loc.remote:
        return 0.5
    return 0.3


def salary_alignment(candidate_sal: SalaryRange | None, job_sal: SalaryRange | None) -> float:
    if candidate_sal is None or job_sal is None:
        return 0.0
    c_min = candidate_sal.min or 0.0
    c_max = candidate_sal.max or c_min
    j_min = job_sal.min or 0.0
    j_max = job_sal.max or j_min
    if c_max >= j_min and c_min <= j_max:
        return 1.0
    center_dist = abs((c_min + c_max) / 2 - (j_min + j_max) / 2)
    avg_range = ((c_max - c_min) + (j_max - j_min)) / 2
    if avg_range <= 0:
        return 0.0
    return max(0.0, 1.0 - center_dist / avg_range)


def total_experience_years(candidate: CandidateProfile) -> float:
    dated = [exp for exp in candidate.experience if exp.start_date is not None]
    if not dated:
        return float(max((s.years_experience for s in candidate.skills), default=0.0))

    if candidate.updated_at is not None:
        reference = candidate.updated_at.date()
    else:
        reference = max(exp.end_date or exp.start_date for exp in dated)

    days = 0
    for exp in dated:
        end: date = exp.end_date or reference
        days += max(0, (end - exp.start_date).days)
    return days / 365.0


def seniority_level(years: float) -> str:
    if years < 1:
        return "entry"
    if years < 3:
        return "junior"
    if years < 5:
        return "mid"
    if years < 8:
        return "senior"
    if years < 12:
        return "lead"
    if years < 15:
        return "principal"
    return "executive"


def _one_hot(value: str, vocabulary: list[str]) -> list[float]:
    return [1.0 if value == item else 0.0 for item in vocabulary]


class FeatureExtractor:
    """Turns (candidate, job) pairs into fixed-shape feature vectors."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        use_text_embeddings: bool = True,
        use_categorical_encoding: bool = True,
        use_numerical_normalization: bool = True,
        max_text_length: int = 5000,
    ) -> None:
        self.embeddings = embedding_service
        self.use_text_embeddings = use_text_embeddings
        self.use_categorical_encoding = use_categorical_encoding
        self.use_numerical_normalization = use_numerical_normalization
        self.max_text_length = max_text_length
        self._names = self._build_names()

    @classmethod
    def from_settings(cls, settings, embedding_service: EmbeddingService | None = None) -> "FeatureExtractor":
        service = embedding_service or EmbeddingService(
            model_name=settings.embedding_model,
            dimension=settings.embedding_dimension,
            timeout=settings.embedding_timeout,
        )
        return cls(
            embedding_service=service,
            use_text_embeddings=settings.use_text_embeddings,
            use_categorical_encoding=settings.use_categorical_encoding,
            use_numerical_normalization=settings.use_numerical_normalization,
            max_text_length=settings.max_text_length,
        )

    @property
    def embedding_dimension(self) -> int:
        return self.embeddings.dimension if self.use_text_embeddings else 0

    @property
    def feature_names(self) -> list[str]:
        return list(self._names)

    @property
    def dimension(self) -> int:
        return len(self._names)

    def _build_names(self) -> list[str]:
        names = SIMILARITY_FEATURES + NUMERIC_FEATURES
        if self.use_categorical_encoding:
            names = names + [f"work_type_{w}" for w in WORK_TYPES]
            names = names + [f"seniority_{s}" for s in SENIORITY_LEVELS]
            names = names + [f"education_{e}" for e in EDUCATION_LEVELS]
        if self.use_text_embeddings:
            names = names + TEXT_FEATURES
            names = names + [f"embedding_{i}" for i in range(self.embeddings.dimension)]
        return names

    async def extract_pair(self, candidate: Any, job: Any) -> FeatureVector:
        candidate, job = coerce_profiles(candidate, job)

        candidate_skills = {s.name.strip().lower() for s in candidate.skills if s.name.strip()}
        required = {s.strip().lower() for s in job.required_skills if s.strip()}
        preferred = {s.strip().lower() for s in job.preferred_skills if s.strip()}
        years = total_experience_years(candidate)
        edu_level = highest_education(candidate)

        values = [
            jaccard(candidate_skills, required | preferred),
            coverage(candidate_skills, required),
            coverage(candidate_skills, preferred),
            experience_alignment(years, job.experience_required),
            education_match(edu_level, job.education_requirements),
            location_compatibility(candidate.location, job.location, job.work_type),
            salary_alignment(candidate.salary_expectation, job.salary_range),
        ]

        raw_numeric = {
            "candidate_years_experience": years,
            "job_years_required": job.experience_required,
            "candidate_skill_count": float(len(candidate_skills)),
            "candidate_completion": candidate.completion_score,
            "candidate_verified": 1.0 if candidate.verified else 0.0,
        }
        for name in NUMERIC_FEATURES:
            value = float(raw_numeric[name])
            if self.use_numerical_normalization:
                value = normalize_value(value, *NUMERIC_RANGES[name])
            values.append(value)

        if self.use_categorical_encoding:
            values.extend(_one_hot(job.work_type, WORK_TYPES))
            values.extend(_one_hot(seniority_level(years), SENIORITY_LEVELS))
            values.extend(_one_hot(edu_level, EDUCATION_LEVELS))

        if self.use_text_embeddings:
            values.extend(await self._text_features(candidate, job))

        if len(values) != len(self._names):
            raise FeatureExtractionError(
                f"Extractor produced {len(values)} values for {len(self._names)} names"
            )

        logger.debug(
            "Pair features extracted candidate=%s job=%s dims=%d",
            candidate.id, job.id, len(values),
        )
        return FeatureVector(
            values=values,
            names=self.feature_names,
            embedding_dimension=self.embedding_dimension,
            candidate_id=candidate.id,
            job_id=job.id,
        )

    async def extract_sample(self, sample: TrainingSample | dict) -> FeatureVector:
        """Single-row form used for training and evaluation data."""
        if isinstance(sample, dict):
            try:
                sample = TrainingSample.model_validate(sample)
            except ValidationError as e:
                raise FeatureExtractionError(f"Invalid training sample: {e}") from e

        if sample.features is not None:
            if len(sample.features) != self.dimension:
                raise FeatureExtractionError(
                    f"Precomputed features have {len(sample.features)} dims, "
                    f"extractor produces {self.dimension}"
                )
            return FeatureVector(
                values=[float(v) for v in sample.features],
                names=self.feature_names,
                embedding_dimension=self.embedding_dimension,
            )
        return await self.extract_pair(sample.candidate, sample.job)

    async def _text_features(self, candidate: CandidateProfile, job: JobProfile) -> list[float]:
        cand_vec = l2_normalize(await self.embeddings.embed(self._candidate_text(candidate)))
        job_vec = l2_normalize(await self.embeddings.embed(self._job_text(job)))

        if not cand_vec.any() or not job_vec.any():
            cosine = 0.0
            distance = 1.0
        else:
            cosine = float(np.dot(cand_vec, job_vec))
            # unit vectors are at most 2 apart
            distance = normalize_value(float(np.linalg.norm(cand_vec - job_vec)), 0.0, 2.0)

        return [cosine, distance] + (cand_vec * job_vec).tolist()

    def _candidate_text(self, candidate: CandidateProfile) -> str:
        parts = [candidate.headline, candidate.summary]
        parts.extend(s.name for s in candidate.skills)
        parts.extend(exp.title for exp in candidate.experience)
        return " ".join(p for p in parts if p)[: self.max_text_length]

    def _job_text(self, job: JobProfile) -> str:
        parts = [job.title, job.description]
        parts.extend(job.required_skills)
        parts.extend(job.preferred_skills)
        return " ".join(p for p in parts if p)[: self.max_text_length]
