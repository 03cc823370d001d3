"""Durable model registry and append-only prediction log.

The registry is the only writer of persisted ``active`` flags. Activation
deactivates same-type siblings and activates the target in one transaction,
serialized across threads by a registry-wide lock.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update

from models.schemas.ml_model import MLModel, ModelMetadata
from services.pipeline.db import MLModelRow, PredictionLogRow, create_db_engine, create_session_factory
from services.pipeline.errors import ModelNotFoundError

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_model(row: MLModelRow) -> MLModel:
    return MLModel(
        id=row.id,
        name=row.name,
        version=row.version,
        type=row.type,
        algorithm=row.algorithm,
        accuracy=row.accuracy or 0.0,
        parameters=row.parameters or {},
        active=bool(row.active),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        deployed_at=_as_utc(row.deployed_at),
        metadata=ModelMetadata.model_validate(row.metadata_ or {}),
    )


class ModelRegistry:
    def __init__(self, database_url: str) -> None:
        self.engine = create_db_engine(database_url)
        self._session_factory = create_session_factory(self.engine)
        self._activation_lock = threading.Lock()

    def save(self, model: MLModel) -> MLModel:
        """Insert or replace a model record."""
        with self._session_factory.begin() as session:
            row = session.get(MLModelRow, model.id) or MLModelRow(id=model.id)
            row.name = model.name
            row.version = model.version
            row.type = model.type
            row.algorithm = model.algorithm
            row.accuracy = model.accuracy
            row.parameters = model.parameters
            row.active = model.active
            row.metadata_ = model.metadata.model_dump(mode="json")
            row.created_at = model.created_at
            row.updated_at = model.updated_at
            row.deployed_at = model.deployed_at
            session.add(row)
        logger.info("Registered model %s (%s v%s, type=%s)", model.id, model.name, model.version, model.type)
        return model

    def get(self, model_id: str) -> MLModel | None:
        with self._session_factory() as session:
            row = session.get(MLModelRow, model_id)
            return _to_model(row) if row is not None else None

    def list_models(self, model_type: str | None = None, active_only: bool = False) -> list[MLModel]:
        stmt = select(MLModelRow).order_by(MLModelRow.created_at)
        if model_type is not None:
            stmt = stmt.where(MLModelRow.type == model_type)
        if active_only:
            stmt = stmt.where(MLModelRow.active.is_(True))
        with self._session_factory() as session:
            return [_to_model(row) for row in session.scalars(stmt)]

    def activate(self, model_id: str, now: datetime | None = None) -> MLModel:
        """Make ``model_id`` the only active model of its type.

        Raises ModelNotFoundError (with no state change) for an unknown id.
        """
        now = now or datetime.now(timezone.utc)
        with self._activation_lock:
            with self._session_factory.begin() as session:
                row = session.get(MLModelRow, model_id)
                if row is None:
                    raise ModelNotFoundError(model_id)
                session.execute(
                    update(MLModelRow)
                    .where(MLModelRow.type == row.type, MLModelRow.id != model_id, MLModelRow.active.is_(True))
                    .values(active=False, updated_at=now)
                )
                row.active = True
                row.deployed_at = now
                row.updated_at = now
                session.flush()
                model = _to_model(row)
        logger.info("Activated model %s for type %s", model_id, model.type)
        return model

    def update_accuracy(self, model_id: str, accuracy: float, metadata: ModelMetadata | None = None) -> None:
        with self._session_factory.begin() as session:
            row = session.get(MLModelRow, model_id)
            if row is None:
                raise ModelNotFoundError(model_id)
            row.accuracy = accuracy
            row.updated_at = datetime.now(timezone.utc)
            if metadata is not None:
                row.metadata_ = metadata.model_dump(mode="json")

    def log_prediction(self, entry: dict[str, Any]) -> None:
        """Append one prediction to the log."""
        with self._session_factory.begin() as session:
            session.add(PredictionLogRow(
                model_id=entry["model_id"],
                candidate_id=entry.get("candidate_id"),
                job_id=entry.get("job_id"),
                prediction=entry.get("prediction"),
                confidence=entry.get("confidence"),
                timestamp=entry.get("timestamp") or datetime.now(timezone.utc),
                metadata_=entry.get("metadata") or {},
            ))

    def count_predictions(self, model_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(PredictionLogRow)
        if model_id is not None:
            stmt = stmt.where(PredictionLogRow.model_id == model_id)
        with self._session_factory() as session:
            return session.scalar(stmt)

    def close(self) -> None:
        self.engine.dispose()
