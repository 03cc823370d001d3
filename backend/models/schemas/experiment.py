"""A/B test definitions and statistical comparison results."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ABTestStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class ExperimentOutcome(str, Enum):
    INCONCLUSIVE = "inconclusive"  # not enough samples yet
    CONTROL = "control"  # control won, or arms are indistinguishable
    CHALLENGER = "challenger"


class ArmStats(BaseModel):
    model_id: str
    exposures: int = 0
    conversions: int = 0
    score_sum: float = 0.0

    model_config = {"protected_namespaces": ()}

    @property
    def conversion_rate(self) -> float:
        return self.conversions / self.exposures if self.exposures else 0.0

    @property
    def average_score(self) -> float:
        return self.score_sum / self.exposures if self.exposures else 0.0


class ABTest(BaseModel):
    id: str
    name: str
    model_type: str
    control: ArmStats
    challenger: ArmStats
    traffic_split: float
    status: ABTestStatus = ABTestStatus.CREATED
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    stop_reason: str | None = None


class ABTestResult(BaseModel):
    test_id: str
    status: ABTestStatus
    total_samples: int
    control_rate: float
    challenger_rate: float
    lift: float  # challenger_rate - control_rate
    control_average_score: float = 0.0
    challenger_average_score: float = 0.0
    p_value: float | None = None
    confidence_interval: tuple[float, float] | None = None
    significant: bool = False
    outcome: ExperimentOutcome = ExperimentOutcome.INCONCLUSIVE
    winner_model_id: str | None = None
    recommendation: str = ""
