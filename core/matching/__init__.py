"""
Matching Module for Face Login

This package contains the matching policy that compares a live face
embedding against the enrolled one.

Components:
    - interfaces: MatchResult, MatchOutcome and the MatchPolicy base class
    - embedding_matcher: Euclidean distance policy with a hard threshold

Usage:
    from core.matching import EuclideanMatchPolicy
    policy = EuclideanMatchPolicy({"threshold": 0.55})
    result = policy.compare(live, stored)
"""

from core.matching.interfaces import (
    MatchOutcome,
    MatchResult,
    MatchPolicy,
)
from core.matching.embedding_matcher import (
    DEFAULT_THRESHOLD,
    EuclideanMatchPolicy,
    euclidean_distance,
    threshold_for_model,
)

__all__ = [
    # Data classes
    "MatchOutcome",
    "MatchResult",
    # Abstract interface
    "MatchPolicy",
    # Implementation
    "DEFAULT_THRESHOLD",
    "EuclideanMatchPolicy",
    "euclidean_distance",
    "threshold_for_model",
]
