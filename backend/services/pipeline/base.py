"""Abstract base class for trained model artifacts."""

from abc import ABC, abstractmethod
from typing import Any

import numpy as np


class BaseScorer(ABC):
    """A fitted scoring function, as stored by the artifact store and held by
    the model server.

    Subclasses must implement:
        - algorithm: tag matching ``MLModel.algorithm``
        - n_features: input width the artifact was fitted on
        - score(matrix): match probabilities in [0, 1], one per row
    """

    algorithm: str = ""

    def __init__(self, estimator: Any, n_features: int) -> None:
        self.estimator = estimator
        self.n_features = n_features

    @abstractmethod
    def score(self, matrix: np.ndarray) -> np.ndarray:
        """Return P(match) for each row of a (n_rows, n_features) matrix."""
