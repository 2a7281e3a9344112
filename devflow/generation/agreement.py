"""Inter-backend agreement.

Agreement is a structural measure: each artifact kind maps to one count
(implementation steps, acceptance criteria, objectives or files to patch),
and the population variance of those counts across candidates is mapped
onto [0, 1]. Identical structure gives 1.0; wildly different structure
tends to 0.0.
"""

from __future__ import annotations

from collections.abc import Sequence

from devflow.enums import AgreementBand
from devflow.models.artifacts import FailureAnalysis, Refinement, Specification, TechnicalPlan, UserStory
from devflow.models.generation import Candidate

DEFAULT_NORMALIZER = 100.0
HIGH_AGREEMENT = 0.8
MEDIUM_AGREEMENT = 0.6


def structural_metric(artifact: object) -> int:
    """The count compared across candidates for an artifact's kind."""
    if isinstance(artifact, (Specification, TechnicalPlan)):
        return len(artifact.implementation_steps)
    if isinstance(artifact, UserStory):
        return len(artifact.acceptance_criteria)
    if isinstance(artifact, Refinement):
        return len(artifact.objectives)
    if isinstance(artifact, FailureAnalysis):
        return len(artifact.files_to_patch())
    return 0


def population_variance(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


class AgreementEvaluator:
    """Measure how structurally similar a set of candidates is."""

    def __init__(self, normalizer: float = DEFAULT_NORMALIZER) -> None:
        if normalizer <= 0:
            raise ValueError("normalizer must be positive")
        self.normalizer = normalizer

    def agreement(self, candidates: Sequence[Candidate]) -> float:
        """Agreement score in [0, 1].

        Sentinel candidates are ignored. With fewer than two usable
        candidates there is nothing to disagree with and the score is 1.0.
        """
        metrics = [structural_metric(c.artifact) for c in candidates if c.artifact is not None]
        if len(metrics) < 2:
            return 1.0
        variance = population_variance(metrics)
        return max(0.0, 1.0 - variance / self.normalizer)

    @staticmethod
    def band(score: float) -> AgreementBand:
        if score > HIGH_AGREEMENT:
            return AgreementBand.HIGH
        if score > MEDIUM_AGREEMENT:
            return AgreementBand.MEDIUM
        return AgreementBand.LOW
