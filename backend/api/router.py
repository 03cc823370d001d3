from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import get_pipeline
from models.requests import PredictRequest
from models.responses import ActiveModelsResponse, DeployResponse, HealthResponse
from models.schemas.ml_model import ModelMetrics
from models.schemas.monitoring import MonitoringReport
from models.schemas.prediction import PredictionResult
from services.pipeline.errors import (
    FeatureExtractionError,
    ModelNotFoundError,
    NoActiveModelError,
    PipelineError,
    PredictionTimeoutError,
)
from services.pipeline.orchestrator import MatchingPipeline

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


def _to_http(e: PipelineError) -> HTTPException:
    if isinstance(e, FeatureExtractionError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (ModelNotFoundError, NoActiveModelError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PredictionTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@router.get("/health", response_model=HealthResponse)
async def health(pipeline: MatchingPipeline = Depends(get_pipeline)):
    status = pipeline.get_status()
    return HealthResponse(
        status="ok",
        pipeline_health=status["health"],
        active_models=status["active_models"],
    )


@router.get("/models/active", response_model=ActiveModelsResponse)
async def active_models(pipeline: MatchingPipeline = Depends(get_pipeline)):
    models = await pipeline.get_active_models()
    return ActiveModelsResponse(models=models, count=len(models))


@router.get("/models/{model_id}/metrics", response_model=ModelMetrics)
async def model_metrics(model_id: str, pipeline: MatchingPipeline = Depends(get_pipeline)):
    metrics = await pipeline.get_model_metrics(model_id)
    if metrics is None:
        raise HTTPException(status_code=404, detail=f"No metrics for model {model_id}")
    return metrics


@router.post("/models/{model_id}/deploy", response_model=DeployResponse)
@limiter.limit("10/minute")
async def deploy(request: Request, model_id: str, pipeline: MatchingPipeline = Depends(get_pipeline)):
    try:
        model = await pipeline.deploy_model(model_id)
    except PipelineError as e:
        raise _to_http(e) from e
    return DeployResponse(model=model)


@router.post("/predict", response_model=PredictionResult)
@limiter.limit("120/minute")
async def predict(request: Request, body: PredictRequest, pipeline: MatchingPipeline = Depends(get_pipeline)):
    try:
        return await pipeline.predict(body.candidate, body.job, model_id=body.model_id)
    except PipelineError as e:
        raise _to_http(e) from e


@router.post("/monitor/run", response_model=MonitoringReport)
@limiter.limit("10/minute")
async def run_monitoring(request: Request, pipeline: MatchingPipeline = Depends(get_pipeline)):
    return await pipeline.monitor_models()
