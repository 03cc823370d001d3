"""Tests for the A/B testing framework."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_candidate, make_job
from models.schemas.experiment import ABTestStatus, ExperimentOutcome
from models.schemas.features import FeatureVector
from models.schemas.ml_model import MLModel
from models.schemas.prediction import PredictionMetadata, PredictionResult
from services.pipeline.ab_testing import ABTestError, ABTestingFramework, two_proportion_test
from services.pipeline.events import AB_TEST_STOPPED, EventBus

CONTROL = MLModel(id="control", name="control", algorithm="logistic_regression", accuracy=0.9)
CHALLENGER = MLModel(id="challenger", name="challenger", algorithm="lightgbm", accuracy=0.9)
OTHER_TYPE = MLModel(id="other", name="other", type="job_recommendation", algorithm="lightgbm")
MODELS = {m.id: m for m in (CONTROL, CHALLENGER, OTHER_TYPE)}


async def _lookup(model_id):
    return MODELS.get(model_id)


async def _predict(model_id, candidate, job, ab_group, ab_test_id):
    return PredictionResult(
        model_id=model_id,
        model_name=model_id,
        model_version="1.0.0",
        prediction=0.7,
        confidence=0.7,
        features=FeatureVector(values=[0.0]),
        metadata=PredictionMetadata(ab_group=ab_group, ab_test_id=ab_test_id),
    )


def _framework(**kwargs) -> ABTestingFramework:
    kwargs.setdefault("rng", random.Random(7))
    return ABTestingFramework(_predict, _lookup, **kwargs)


class TestLifecycle:
    def test_create_and_start(self):
        ab = _framework()
        test = ab.create_test("lr-vs-lgbm", CONTROL, CHALLENGER, traffic_split=0.3)
        assert test.status == ABTestStatus.CREATED
        assert ab.get_active_test("candidate_job_match") is None
        ab.start_test(test.id)
        assert ab.get_active_test("candidate_job_match").id == test.id

    def test_rejects_mixed_types(self):
        with pytest.raises(ABTestError):
            _framework().create_test("bad", CONTROL, OTHER_TYPE)

    def test_rejects_same_model(self):
        with pytest.raises(ABTestError):
            _framework().create_test("bad", CONTROL, CONTROL)

    def test_one_running_test_per_type(self):
        ab = _framework()
        first = ab.create_test("a", CONTROL, CHALLENGER)
        second = ab.create_test("b", CONTROL, CHALLENGER)
        ab.start_test(first.id)
        with pytest.raises(ABTestError):
            ab.start_test(second.id)

    @pytest.mark.asyncio
    async def test_stop_publishes_event(self):
        bus = EventBus()
        received = []
        bus.subscribe(AB_TEST_STOPPED, received.append)
        ab = _framework(event_bus=bus)
        test = ab.create_test("a", CONTROL, CHALLENGER)
        ab.start_test(test.id)
        await ab.stop_test(test.id, "manual")
        assert ab.get_test(test.id).status == ABTestStatus.STOPPED
        assert received[0]["reason"] == "manual"


class TestAssignment:
    @pytest.mark.asyncio
    async def test_no_running_test_serves_reference_as_control(self):
        ab = _framework()
        result = await ab.predict(make_candidate(0), make_job(0), "control")
        assert result.model_id == "control"
        assert result.metadata.ab_group == "control"
        assert result.metadata.ab_test_id is None

    @pytest.mark.asyncio
    async def test_traffic_split_within_tolerance(self):
        ab = _framework()
        test = ab.create_test("split", CONTROL, CHALLENGER, traffic_split=0.2)
        ab.start_test(test.id)
        n = 2000
        for i in range(n):
            await ab.predict(make_candidate(i), make_job(0), "control")
        share = test.challenger.exposures / n
        # 4 standard deviations of a binomial proportion at p=0.2
        assert abs(share - 0.2) < 4 * (0.2 * 0.8 / n) ** 0.5
        assert test.control.exposures + test.challenger.exposures == n

    @pytest.mark.asyncio
    async def test_predictions_carry_arm(self):
        ab = _framework()
        test = ab.create_test("all-challenger", CONTROL, CHALLENGER, traffic_split=1.0)
        ab.start_test(test.id)
        result = await ab.predict(make_candidate(0), make_job(0), "control")
        assert result.model_id == "challenger"
        assert result.metadata.ab_group == "challenger"
        assert result.metadata.ab_test_id == test.id
        stats = ab.get_test_results(test.id)
        assert stats.challenger_average_score == pytest.approx(0.7)
        assert stats.control_average_score == 0.0

    def test_sticky_assignment_is_stable(self):
        ab = _framework(sticky_assignment=True)
        test = ab.create_test("sticky", CONTROL, CHALLENGER, traffic_split=0.5)
        candidate = make_candidate(3)
        groups = {ab.assign(test, candidate) for _ in range(20)}
        assert len(groups) == 1

    def test_sticky_uses_user_id(self):
        ab = _framework(sticky_assignment=True)
        test = ab.create_test("sticky", CONTROL, CHALLENGER, traffic_split=0.5)
        a = make_candidate(1, user_id="same-user")
        b = make_candidate(2, user_id="same-user")
        assert ab.assign(test, a) == ab.assign(test, b)


class TestResults:
    def _running(self, **kwargs):
        ab = _framework(**kwargs)
        test = ab.create_test("r", CONTROL, CHALLENGER, traffic_split=0.5)
        ab.start_test(test.id)
        return ab, test

    def test_inconclusive_below_min_samples(self):
        ab, test = self._running(min_sample_size=1000)
        test.control.exposures, test.control.conversions = 100, 10
        test.challenger.exposures, test.challenger.conversions = 100, 50
        result = ab.get_test_results(test.id)
        assert result.outcome == ExperimentOutcome.INCONCLUSIVE
        assert result.winner_model_id is None

    def test_significant_lift_picks_challenger(self):
        ab, test = self._running(min_sample_size=1000)
        test.control.exposures, test.control.conversions = 1000, 100
        test.challenger.exposures, test.challenger.conversions = 1000, 200
        result = ab.get_test_results(test.id)
        assert result.significant
        assert result.outcome == ExperimentOutcome.CHALLENGER
        assert result.winner_model_id == "challenger"
        low, high = result.confidence_interval
        assert low < result.lift < high

    def test_equal_rates_keep_control(self):
        ab, test = self._running(min_sample_size=1000)
        test.control.exposures, test.control.conversions = 1000, 150
        test.challenger.exposures, test.challenger.conversions = 1000, 150
        result = ab.get_test_results(test.id)
        assert not result.significant
        assert result.outcome == ExperimentOutcome.CONTROL
        assert result.winner_model_id == "control"

    def test_significant_drop_keeps_control(self):
        ab, test = self._running(min_sample_size=100)
        test.control.exposures, test.control.conversions = 1000, 300
        test.challenger.exposures, test.challenger.conversions = 1000, 150
        result = ab.get_test_results(test.id)
        assert result.significant
        assert result.outcome == ExperimentOutcome.CONTROL

    def test_record_outcome_counts_conversions(self):
        ab, test = self._running()
        prediction = PredictionResult(
            model_id="challenger", model_name="c", model_version="1.0.0",
            prediction=0.9, confidence=0.9, features=FeatureVector(values=[0.0]),
            metadata=PredictionMetadata(ab_group="challenger", ab_test_id=test.id),
        )
        ab.record_outcome(prediction, converted=True)
        ab.record_outcome(prediction, converted=False)
        assert test.challenger.conversions == 1
        assert test.control.conversions == 0

    @pytest.mark.asyncio
    async def test_evaluate_stops_expired(self):
        ab, test = self._running(max_test_duration_days=30)
        stopped = await ab.evaluate_tests(datetime.now(timezone.utc) + timedelta(days=31))
        assert [r.test_id for r in stopped] == [test.id]
        assert ab.get_test(test.id).stop_reason == "max duration exceeded"


def test_two_proportion_test_zero_variance():
    assert two_proportion_test(0, 100, 0, 100, 0.95) == (None, None)
