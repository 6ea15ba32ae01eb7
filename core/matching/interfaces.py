"""
Matching Interfaces Module

This module defines the result type and the abstract interface for the
matching policy that turns a live/stored embedding pair into an accept or
reject decision.

A policy is a pure function: no I/O, no state between calls. Concrete
policies live next to this module (see embedding_matcher.py).

Usage:
    from core.matching.interfaces import MatchOutcome, MatchPolicy

    result = policy.compare(live_embedding, stored_embedding)
    if result.outcome is MatchOutcome.ACCEPT:
        ...
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np


class MatchOutcome(str, enum.Enum):
    """Decision produced by a MatchPolicy."""

    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class MatchResult:
    """
    Result of a matching operation.

    Attributes:
        outcome: ACCEPT or REJECT.
        distance: Distance between the two embeddings.
                  0.0 = identical vectors, larger = less similar.
        threshold: Threshold the decision was made against.
        details: Algorithm-specific details, useful for logging and debugging.
                 Example: {"method": "euclidean", "embedding_dim": 512}
    """

    outcome: MatchOutcome
    distance: float
    threshold: float
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_match(self) -> bool:
        """True when the outcome is ACCEPT."""
        return self.outcome is MatchOutcome.ACCEPT


class MatchPolicy(ABC):
    """
    Abstract base class for embedding match policies.

    Implementations must be monotone: for d1 < d2, decide(d1) is never a
    worse outcome than decide(d2).
    """

    @abstractmethod
    def distance(self, live_embedding: np.ndarray, stored_embedding: np.ndarray) -> float:
        """
        Compute the distance between two embeddings.

        Raises:
            ValueError: If the embeddings have different dimensionality.
        """

    @abstractmethod
    def decide(self, distance: float) -> MatchOutcome:
        """Map a distance to an accept/reject decision."""

    def compare(
        self, live_embedding: np.ndarray, stored_embedding: np.ndarray
    ) -> MatchResult:
        """
        Compare a live embedding against a stored one.

        Args:
            live_embedding: (D,) embedding from the current capture.
            stored_embedding: (D,) embedding from the enrollment store.

        Returns:
            MatchResult with the decision and the computed distance.
        """
        distance = self.distance(live_embedding, stored_embedding)
        return MatchResult(
            outcome=self.decide(distance),
            distance=distance,
            threshold=self.threshold,
            details=self.describe(live_embedding),
        )

    @property
    @abstractmethod
    def threshold(self) -> float:
        """Decision threshold used by decide()."""

    def describe(self, live_embedding: np.ndarray) -> Dict[str, Any]:
        """Details attached to every MatchResult."""
        return {"embedding_dim": int(np.asarray(live_embedding).size)}
