"""In-process publish/subscribe for pipeline lifecycle events."""

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

MODEL_TRAINED = "model_trained"
MODEL_DEPLOYED = "model_deployed"
MODEL_DEGRADED = "model_degraded"
RETRAINING_TRIGGERED = "retraining_triggered"
RETRAINING_FAILED = "retraining_failed"
AB_TEST_STOPPED = "ab_test_stopped"

EVENTS = (
    MODEL_TRAINED,
    MODEL_DEPLOYED,
    MODEL_DEGRADED,
    RETRAINING_TRIGGERED,
    RETRAINING_FAILED,
    AB_TEST_STOPPED,
)

Callback = Callable[[dict[str, Any]], Any]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callback]] = defaultdict(list)

    def subscribe(self, event: str, callback: Callback) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._subscribers[event].append(callback)

    def unsubscribe(self, event: str, callback: Callback) -> None:
        if callback in self._subscribers.get(event, []):
            self._subscribers[event].remove(callback)

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver ``payload`` to every subscriber. Sync and async callbacks both work."""
        for callback in list(self._subscribers.get(event, [])):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber %r failed handling %s", callback, event)
