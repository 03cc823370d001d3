"""Model health states and monitoring cycle reports."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ModelHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RETRAINING_TRIGGERED = "retraining_triggered"


class ModelCheck(BaseModel):
    model_id: str
    state: ModelHealth
    accuracy: float
    age_days: float
    reason: str = ""

    model_config = {"protected_namespaces": ()}


class MonitoringReport(BaseModel):
    checked_at: datetime
    checks: list[ModelCheck] = []
    skipped: list[str] = []  # model ids with no metrics this cycle
    retrain: list[str] = []  # model ids whose retraining starts this cycle
    in_flight: list[str] = []  # model ids already retraining
