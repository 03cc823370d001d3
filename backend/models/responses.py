from pydantic import BaseModel

from models.schemas.ml_model import MLModel


class HealthResponse(BaseModel):
    status: str = "ok"
    pipeline_health: str = "unhealthy"
    active_models: int = 0


class ActiveModelsResponse(BaseModel):
    models: list[MLModel] = []
    count: int = 0


class DeployResponse(BaseModel):
    model: MLModel
    deployed: bool = True

    model_config = {"protected_namespaces": ()}
