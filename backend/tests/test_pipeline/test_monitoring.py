"""Tests for model health assessment and the monitoring state machine."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from models.schemas.ml_model import MLModel, ModelMetrics
from models.schemas.monitoring import ModelHealth
from services.pipeline.errors import MonitoringError
from services.pipeline.monitoring import ModelMonitor, MonitoringScheduler, assess

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _model(model_id: str = "m1", age_days: float = 10) -> MLModel:
    return MLModel(
        id=model_id,
        name=model_id,
        algorithm="logistic_regression",
        created_at=NOW - timedelta(days=age_days),
        active=True,
    )


class TestAssess:
    @pytest.mark.parametrize(
        "accuracy, age_days, expected",
        [
            (0.75, 10, ModelHealth.DEGRADED),
            (0.82, 45, ModelHealth.DEGRADED),
            (0.82, 10, ModelHealth.HEALTHY),
            (0.90, 45, ModelHealth.HEALTHY),
            (0.80, 30, ModelHealth.HEALTHY),
        ],
    )
    def test_thresholds(self, accuracy, age_days, expected):
        health, _ = assess(_model(age_days=age_days), ModelMetrics(accuracy=accuracy), NOW)
        assert health == expected


class TestModelMonitor:
    def test_degraded_model_triggers_retraining_once(self):
        monitor = ModelMonitor()
        models = [_model("bad")]
        lookup = {"bad": ModelMetrics(accuracy=0.7)}.get

        first = monitor.evaluate(models, lookup, NOW)
        assert first.retrain == ["bad"]
        assert first.checks[0].state == ModelHealth.DEGRADED
        assert monitor.state("bad") == ModelHealth.RETRAINING_TRIGGERED

        second = monitor.evaluate(models, lookup, NOW)
        assert second.retrain == []
        assert second.in_flight == ["bad"]

    def test_retrain_success_and_failure_transitions(self):
        monitor = ModelMonitor()
        lookup = {"a": ModelMetrics(accuracy=0.7), "b": ModelMetrics(accuracy=0.7)}.get
        monitor.evaluate([_model("a"), _model("b")], lookup, NOW)

        monitor.mark_retrained("a")
        monitor.mark_retrain_failed("b")
        assert monitor.state("a") == ModelHealth.HEALTHY
        assert monitor.state("b") == ModelHealth.DEGRADED

        # a failed retrain is retried on the next cycle
        report = monitor.evaluate([_model("b")], lookup, NOW)
        assert report.retrain == ["b"]

    def test_missing_metrics_are_skipped(self):
        def lookup(model_id):
            if model_id == "broken":
                raise MonitoringError("metrics store unavailable")
            return None if model_id == "new" else ModelMetrics(accuracy=0.95)

        report = ModelMonitor().evaluate([_model("broken"), _model("new"), _model("ok")], lookup, NOW)
        assert sorted(report.skipped) == ["broken", "new"]
        assert [c.model_id for c in report.checks] == ["ok"]
        assert report.checks[0].state == ModelHealth.HEALTHY

    def test_pure_in_now(self):
        lookup = {"m1": ModelMetrics(accuracy=0.82)}.get
        young = ModelMonitor().evaluate([_model(age_days=0)], lookup, NOW)
        old = ModelMonitor().evaluate([_model(age_days=0)], lookup, NOW + timedelta(days=40))
        assert young.retrain == []
        assert old.retrain == ["m1"]


class TestMonitoringScheduler:
    @pytest.mark.asyncio
    async def test_runs_on_interval_and_survives_errors(self):
        calls = []

        async def cycle():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first cycle fails")

        scheduler = MonitoringScheduler(cycle, interval=0.01)
        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        assert len(calls) >= 2
        assert not scheduler.running
