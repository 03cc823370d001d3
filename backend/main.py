import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from api.dependencies import get_pipeline
from api.router import limiter, router
from config import settings
from services.pipeline.monitoring import MonitoringScheduler

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pipeline = app.dependency_overrides.get(get_pipeline, get_pipeline)()
    await pipeline.initialize()
    scheduler = MonitoringScheduler(pipeline.monitor_models, interval=settings.monitoring_interval)
    if settings.monitoring_enabled:
        scheduler.start()
    yield
    await scheduler.stop()
    await pipeline.shutdown()


app = FastAPI(
    title="Matching Pipeline API",
    description="Candidate-job match scoring, model deployment and monitoring",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
