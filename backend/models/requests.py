from pydantic import BaseModel, Field

from models.schemas.profiles import CandidateProfile, JobProfile


class PredictRequest(BaseModel):
    candidate: CandidateProfile
    job: JobProfile
    model_id: str | None = Field(None, description="Serve with this model and skip A/B assignment")

    model_config = {"protected_namespaces": ()}
