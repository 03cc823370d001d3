"""Model health monitoring and the periodic monitoring loop.

State machine per model:

    HEALTHY ──degraded──▶ DEGRADED ──cycle──▶ RETRAINING_TRIGGERED
       ▲                                         │          │
       └───────────── mark_retrained ────────────┘          │
                       DEGRADED ◀──── mark_retrain_failed ──┘

A model in RETRAINING_TRIGGERED is skipped by later cycles, so one
degradation never starts two retraining jobs.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable

from models.schemas.ml_model import MLModel, ModelMetrics
from models.schemas.monitoring import ModelCheck, ModelHealth, MonitoringReport
from services.pipeline.errors import MonitoringError

logger = logging.getLogger(__name__)

ACCURACY_THRESHOLD = 0.80
RETENTION_DAYS = 30
STRICT_ACCURACY_THRESHOLD = 0.85


def age_in_days(model: MLModel, now: datetime) -> float:
    return (now - model.created_at).total_seconds() / 86400


def assess(model: MLModel, metrics: ModelMetrics, now: datetime) -> tuple[ModelHealth, str]:
    """Classify one model from its latest metrics."""
    age = age_in_days(model, now)
    if metrics.accuracy < ACCURACY_THRESHOLD:
        return ModelHealth.DEGRADED, f"accuracy {metrics.accuracy:.3f} < {ACCURACY_THRESHOLD}"
    if age > RETENTION_DAYS and metrics.accuracy < STRICT_ACCURACY_THRESHOLD:
        return ModelHealth.DEGRADED, (
            f"age {age:.0f}d > {RETENTION_DAYS}d and accuracy {metrics.accuracy:.3f} < {STRICT_ACCURACY_THRESHOLD}"
        )
    return ModelHealth.HEALTHY, ""


class ModelMonitor:
    def __init__(self) -> None:
        self._states: dict[str, ModelHealth] = {}

    def state(self, model_id: str) -> ModelHealth:
        return self._states.get(model_id, ModelHealth.HEALTHY)

    def evaluate(
        self,
        models: Iterable[MLModel],
        metrics_lookup: Callable[[str], "ModelMetrics | None"],
        now: datetime,
    ) -> MonitoringReport:
        """Run one monitoring cycle.

        Degraded models move to RETRAINING_TRIGGERED and are listed in
        ``report.retrain``; the caller starts those jobs. A lookup that
        raises MonitoringError or returns None puts the model in
        ``report.skipped``.
        """
        report = MonitoringReport(checked_at=now)
        for model in models:
            if self.state(model.id) == ModelHealth.RETRAINING_TRIGGERED:
                report.in_flight.append(model.id)
                continue

            try:
                metrics = metrics_lookup(model.id)
            except MonitoringError as e:
                logger.warning("Skipping model %s: %s", model.id, e)
                metrics = None
            if metrics is None:
                report.skipped.append(model.id)
                continue

            health, reason = assess(model, metrics, now)
            report.checks.append(ModelCheck(
                model_id=model.id,
                state=health,
                accuracy=metrics.accuracy,
                age_days=age_in_days(model, now),
                reason=reason,
            ))
            if health == ModelHealth.DEGRADED:
                logger.warning("Model %s degraded: %s", model.id, reason)
                self._states[model.id] = ModelHealth.RETRAINING_TRIGGERED
                report.retrain.append(model.id)
            else:
                self._states[model.id] = ModelHealth.HEALTHY
        return report

    def mark_retrained(self, model_id: str) -> None:
        self._states[model_id] = ModelHealth.HEALTHY

    def mark_retrain_failed(self, model_id: str) -> None:
        self._states[model_id] = ModelHealth.DEGRADED


class MonitoringScheduler:
    """Calls ``run_cycle`` every ``interval`` seconds until stopped."""

    def __init__(self, run_cycle: Callable[[], Awaitable[object]], interval: float = 3600) -> None:
        self._run_cycle = run_cycle
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Model monitoring scheduled every %ss", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._run_cycle()
            except Exception:
                logger.exception("Monitoring cycle failed")
