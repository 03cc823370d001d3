"""Process-local caches owned by the pipeline façade.

Both are rebuildable from the registry and never hold the source of truth.
"""

import time
from collections import OrderedDict

from models.schemas.ml_model import MLModel, ModelMetrics
from models.schemas.prediction import PredictionResult


class PipelineCache:
    """Active models by id and the last known metrics per model."""

    def __init__(self) -> None:
        self.active_models: dict[str, MLModel] = {}
        self.model_metrics: dict[str, ModelMetrics] = {}

    def set_active(self, model: MLModel) -> None:
        """Deactivate same-type siblings, then activate ``model``."""
        for model_id in [m.id for m in self.active_models.values() if m.type == model.type]:
            del self.active_models[model_id]
        self.active_models[model.id] = model

    def active_for_type(self, model_type: str) -> list[MLModel]:
        return [m for m in self.active_models.values() if m.type == model_type]

    def clear(self) -> None:
        self.active_models.clear()
        self.model_metrics.clear()


class _Entry:
    __slots__ = ("value", "tags", "expires_at")

    def __init__(self, value: PredictionResult, tags: frozenset[str], expires_at: float) -> None:
        self.value = value
        self.tags = tags
        self.expires_at = expires_at


class PredictionCache:
    """TTL cache of prediction results with tag-based invalidation.

    Entries are tagged with the serving model id and its type so a
    deployment can drop everything scored for that type at once.
    """

    def __init__(self, ttl_seconds: float = 300, max_entries: int = 10_000) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    @staticmethod
    def key(model_id: str, feature_hash: str) -> str:
        return f"{model_id}:{feature_hash}"

    def get(self, key: str) -> PredictionResult | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if time.monotonic() > entry.expires_at:
            del self._entries[key]
            self._misses += 1
            return None
        self._hits += 1
        self._entries.move_to_end(key)
        return entry.value

    def put(self, key: str, value: PredictionResult, tags: list[str] | tuple[str, ...] = ()) -> None:
        if not self.enabled:
            return
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1
        self._entries[key] = _Entry(value, frozenset(tags), time.monotonic() + self._ttl)

    def invalidate_tag(self, tag: str) -> int:
        stale = [k for k, e in self._entries.items() if tag in e.tags]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, float]:
        total = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": self._hits / total if total else 0.0,
        }
