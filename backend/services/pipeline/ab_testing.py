"""A/B testing between a control and a challenger model of the same type.

Assignment is drawn per request with probability ``traffic_split`` for the
challenger, or from a stable hash of (test id, user) when sticky assignment
is on. Scoring is delegated to an injected callback so the framework never
talks to the model server itself.

Results use a two-proportion z-test on conversion rates.
"""

import hashlib
import logging
import math
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from scipy.stats import norm

from models.schemas.experiment import (
    ABTest,
    ABTestResult,
    ABTestStatus,
    ArmStats,
    ExperimentOutcome,
)
from models.schemas.ml_model import MLModel
from models.schemas.prediction import ABGroup, PredictionResult
from models.schemas.profiles import CandidateProfile, JobProfile
from services.pipeline.errors import PipelineError
from services.pipeline.events import AB_TEST_STOPPED, EventBus

logger = logging.getLogger(__name__)

# (model_id, candidate, job, ab_group, ab_test_id) -> PredictionResult
PredictFn = Callable[[str, CandidateProfile, JobProfile, ABGroup, "str | None"], Awaitable[PredictionResult]]


class ABTestError(PipelineError):
    """Invalid A/B test definition or lifecycle transition."""


class ABTestingFramework:
    def __init__(
        self,
        predict_fn: PredictFn,
        model_lookup: Callable[[str], Awaitable["MLModel | None"]],
        traffic_split: float = 0.1,
        min_sample_size: int = 1000,
        confidence_level: float = 0.95,
        sticky_assignment: bool = False,
        max_test_duration_days: int = 30,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._predict_fn = predict_fn
        self._model_lookup = model_lookup
        self.traffic_split = traffic_split
        self.min_sample_size = min_sample_size
        self.confidence_level = confidence_level
        self.sticky_assignment = sticky_assignment
        self.max_test_duration_days = max_test_duration_days
        self.event_bus = event_bus
        self._rng = rng or random.Random()
        self._tests: dict[str, ABTest] = {}

    @classmethod
    def from_settings(cls, settings, predict_fn, model_lookup, event_bus=None, rng=None) -> "ABTestingFramework":
        return cls(
            predict_fn,
            model_lookup,
            traffic_split=settings.traffic_split,
            min_sample_size=settings.min_sample_size,
            confidence_level=settings.confidence_level,
            sticky_assignment=settings.sticky_assignment,
            max_test_duration_days=settings.max_test_duration_days,
            event_bus=event_bus,
            rng=rng,
        )

    # -- lifecycle ---------------------------------------------------------

    def create_test(
        self,
        name: str,
        control_model: MLModel,
        challenger_model: MLModel,
        traffic_split: float | None = None,
    ) -> ABTest:
        if control_model.id == challenger_model.id:
            raise ABTestError("Control and challenger must be different models")
        if control_model.type != challenger_model.type:
            raise ABTestError(
                f"Models must share a type: {control_model.type} vs {challenger_model.type}"
            )
        split = self.traffic_split if traffic_split is None else traffic_split
        if not 0.0 <= split <= 1.0:
            raise ABTestError(f"traffic_split must be within [0, 1], got {split}")

        test = ABTest(
            id=uuid.uuid4().hex,
            name=name,
            model_type=control_model.type,
            control=ArmStats(model_id=control_model.id),
            challenger=ArmStats(model_id=challenger_model.id),
            traffic_split=split,
            created_at=datetime.now(timezone.utc),
        )
        self._tests[test.id] = test
        logger.info(
            "Created A/B test %s (%s): control=%s challenger=%s split=%.2f",
            test.id, name, control_model.id, challenger_model.id, split,
        )
        return test

    def start_test(self, test_id: str) -> ABTest:
        test = self._get(test_id)
        if test.status != ABTestStatus.CREATED:
            raise ABTestError(f"Test {test_id} is {test.status.value}, cannot start")
        running = self.get_active_test(test.model_type)
        if running is not None:
            raise ABTestError(f"Test {running.id} is already running for type {test.model_type}")
        test.status = ABTestStatus.RUNNING
        test.started_at = datetime.now(timezone.utc)
        logger.info("Started A/B test %s", test_id)
        return test

    async def stop_test(self, test_id: str, reason: str = "") -> ABTest:
        test = self._get(test_id)
        if test.status == ABTestStatus.STOPPED:
            return test
        test.status = ABTestStatus.STOPPED
        test.ended_at = datetime.now(timezone.utc)
        test.stop_reason = reason
        logger.info("Stopped A/B test %s: %s", test_id, reason or "manual")
        if self.event_bus is not None:
            await self.event_bus.publish(AB_TEST_STOPPED, {
                "test_id": test_id,
                "reason": reason,
                "result": self.get_test_results(test_id),
            })
        return test

    def get_test(self, test_id: str) -> ABTest | None:
        return self._tests.get(test_id)

    def get_active_test(self, model_type: str) -> ABTest | None:
        for test in self._tests.values():
            if test.status == ABTestStatus.RUNNING and test.model_type == model_type:
                return test
        return None

    def _get(self, test_id: str) -> ABTest:
        test = self._tests.get(test_id)
        if test is None:
            raise ABTestError(f"Test not found: {test_id}")
        return test

    # -- serving -----------------------------------------------------------

    def assign(self, test: ABTest, candidate: CandidateProfile) -> ABGroup:
        if self.sticky_assignment:
            subject = candidate.user_id or candidate.id
            digest = hashlib.md5(f"{test.id}:{subject}".encode("utf-8")).hexdigest()
            draw = int(digest[:8], 16) / 0x100000000
        else:
            draw = self._rng.random()
        return "challenger" if draw < test.traffic_split else "control"

    async def predict(
        self,
        candidate: CandidateProfile,
        job: JobProfile,
        reference_model_id: str,
    ) -> PredictionResult:
        reference = await self._model_lookup(reference_model_id)
        test = self.get_active_test(reference.type) if reference is not None else None
        if test is None:
            return await self._predict_fn(reference_model_id, candidate, job, "control", None)

        group = self.assign(test, candidate)
        arm = test.challenger if group == "challenger" else test.control
        result = await self._predict_fn(arm.model_id, candidate, job, group, test.id)
        arm.exposures += 1
        arm.score_sum += result.prediction
        logger.debug("A/B %s: %s -> %s", test.id, group, arm.model_id)
        return result

    def record_outcome(self, prediction: PredictionResult, converted: bool) -> None:
        test_id = prediction.metadata.ab_test_id
        test = self._tests.get(test_id) if test_id else None
        if test is None:
            logger.warning("Outcome for prediction outside any A/B test (test_id=%s)", test_id)
            return
        if not converted:
            return
        arm = test.challenger if prediction.metadata.ab_group == "challenger" else test.control
        arm.conversions += 1

    # -- analysis ----------------------------------------------------------

    def get_test_results(self, test_id: str) -> ABTestResult:
        test = self._get(test_id)
        c, t = test.control, test.challenger
        total = c.exposures + t.exposures
        result = ABTestResult(
            test_id=test.id,
            status=test.status,
            total_samples=total,
            control_rate=c.conversion_rate,
            challenger_rate=t.conversion_rate,
            lift=t.conversion_rate - c.conversion_rate,
            control_average_score=c.average_score,
            challenger_average_score=t.average_score,
        )

        if total < self.min_sample_size or c.exposures == 0 or t.exposures == 0:
            result.recommendation = (
                f"Collect more data: {total}/{self.min_sample_size} samples"
            )
            return result

        p_value, interval = two_proportion_test(
            c.conversions, c.exposures, t.conversions, t.exposures, self.confidence_level,
        )
        result.p_value = p_value
        result.confidence_interval = interval
        result.significant = p_value is not None and p_value < (1 - self.confidence_level)

        if result.significant and result.lift > 0:
            result.outcome = ExperimentOutcome.CHALLENGER
            result.winner_model_id = t.model_id
            result.recommendation = f"Deploy challenger {t.model_id} (lift {result.lift:+.4f})"
        else:
            result.outcome = ExperimentOutcome.CONTROL
            result.winner_model_id = c.model_id
            result.recommendation = (
                f"Keep control {c.model_id}"
                + ("" if result.significant else ": no significant difference")
            )
        return result

    async def evaluate_tests(self, now: datetime | None = None) -> list[ABTestResult]:
        """Stop running tests that reached significance or ran too long."""
        now = now or datetime.now(timezone.utc)
        max_age = timedelta(days=self.max_test_duration_days)
        stopped = []
        for test in [t for t in self._tests.values() if t.status == ABTestStatus.RUNNING]:
            result = self.get_test_results(test.id)
            if result.significant:
                await self.stop_test(test.id, f"significant result: {result.outcome.value}")
            elif test.started_at is not None and now - test.started_at > max_age:
                await self.stop_test(test.id, "max duration exceeded")
            else:
                continue
            stopped.append(self.get_test_results(test.id))
        return stopped


def two_proportion_test(
    control_conversions: int,
    control_n: int,
    challenger_conversions: int,
    challenger_n: int,
    confidence_level: float,
) -> tuple[float | None, tuple[float, float] | None]:
    """Two-sided p-value and confidence interval for the rate difference."""
    p1 = control_conversions / control_n
    p2 = challenger_conversions / challenger_n
    pooled = (control_conversions + challenger_conversions) / (control_n + challenger_n)
    se = math.sqrt(pooled * (1 - pooled) * (1 / control_n + 1 / challenger_n))
    if se == 0:
        return None, None
    z = (p2 - p1) / se
    p_value = float(2 * (1 - norm.cdf(abs(z))))
    margin = float(norm.ppf(1 - (1 - confidence_level) / 2)) * se
    diff = p2 - p1
    return p_value, (diff - margin, diff + margin)
