"""Pick a single winner from scored candidates and explain the choice.

Synthesis applies per-backend weights to rubric scores, selects the best
usable candidate, measures agreement, and writes an explanation meant for
the ticket: how far each candidate trailed the winner, which criteria the
rubric rewards, and how much the backends agreed.

Selection:
    - Sentinel candidates never win.
    - weighted = clamp(score * weight), weight defaults to 1.0.
    - The highest weighted score wins.
    - Ties go to the backend listed first in the priority order; backends
      missing from the list rank after it, in candidate order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import structlog

from devflow.enums import AgreementBand, ArtifactKind
from devflow.exceptions import AllBackendsFailed
from devflow.generation.agreement import AgreementEvaluator
from devflow.generation.scoring import RUBRIC_CRITERIA, clamp
from devflow.models.generation import Candidate, SynthesisResult

log = structlog.get_logger(__name__)

AGREEMENT_STATEMENTS = {
    AgreementBand.HIGH: "Strong agreement between backends ({score:.0%}): high confidence in this result.",
    AgreementBand.MEDIUM: "Moderate agreement between backends ({score:.0%}): some divergence in approach.",
    AgreementBand.LOW: "Low agreement between backends ({score:.0%}): human review recommended.",
}


class Synthesizer:
    """Select the best candidate with weights and a priority tie-break.

    Example:
        >>> synthesizer = Synthesizer(weights={"gpt-4o": 0.9}, priority=["claude", "gpt-4o"])
        >>> result = synthesizer.synthesize(candidates, ArtifactKind.SPECIFICATION)
        >>> result.winner.backend_id
        'claude'
    """

    def __init__(
        self,
        weights: Mapping[str, float] | None = None,
        priority: Sequence[str] | None = None,
        evaluator: AgreementEvaluator | None = None,
    ) -> None:
        self.weights = dict(weights or {})
        self.priority = list(priority or [])
        self.evaluator = evaluator or AgreementEvaluator()

    def weighted_score(self, candidate: Candidate) -> float:
        return clamp(candidate.score * self.weights.get(candidate.backend_id, 1.0))

    def _rank(self, backend_id: str) -> int:
        try:
            return self.priority.index(backend_id)
        except ValueError:
            return len(self.priority)

    def synthesize(self, candidates: Sequence[Candidate], kind: ArtifactKind) -> SynthesisResult:
        """Choose a winner among ``candidates``.

        Args:
            candidates: Candidates from one generation request
            kind: Artifact kind they were generated for

        Returns:
            SynthesisResult whose winner is an element of ``candidates``.

        Raises:
            AllBackendsFailed: If no candidate carries an artifact
        """
        usable = [c for c in candidates if not c.failed]
        if not usable:
            reasons = {c.backend_id: c.reasoning for c in candidates}
            raise AllBackendsFailed(f"No usable candidate to synthesize for {kind}", reasons)

        weighted = {c.backend_id: self.weighted_score(c) for c in candidates}

        # max() keeps the first of equal keys, so order by priority first.
        ordered = sorted(enumerate(usable), key=lambda pair: (self._rank(pair[1].backend_id), pair[0]))
        winner = max((c for _, c in ordered), key=lambda c: weighted[c.backend_id])

        agreement = self.evaluator.agreement(candidates)
        band = self.evaluator.band(agreement)
        comparison = self._comparison_points(usable, winner, weighted)

        log.info(
            "synthesis_completed",
            kind=str(kind),
            winner=winner.backend_id,
            score=weighted[winner.backend_id],
            agreement=round(agreement, 3),
        )

        return SynthesisResult(
            kind=kind,
            winner=winner,
            candidates=list(candidates),
            weighted_scores=weighted,
            agreement_score=agreement,
            agreement_band=band,
            comparison_points=comparison,
            explanation=self._explain(kind, winner, weighted, comparison, agreement, band),
        )

    def _comparison_points(
        self,
        usable: Sequence[Candidate],
        winner: Candidate,
        weighted: Mapping[str, float],
    ) -> list[str]:
        best = weighted[winner.backend_id]
        points = []
        ranked = sorted(usable, key=lambda c: (-weighted[c.backend_id], self._rank(c.backend_id)))
        for candidate in ranked:
            score = weighted[candidate.backend_id]
            if candidate is winner:
                points.append(f"{candidate.backend_id} (score {score:.0f}/100): chosen as best")
            else:
                points.append(f"{candidate.backend_id} (score {score:.0f}/100): {best - score:.0f} points fewer")
        return points

    def _explain(
        self,
        kind: ArtifactKind,
        winner: Candidate,
        weighted: Mapping[str, float],
        comparison: Sequence[str],
        agreement: float,
        band: AgreementBand,
    ) -> str:
        lines = [
            f"Selected {kind} from {winner.backend_id} with score {weighted[winner.backend_id]:.0f}/100.",
            "",
            "Comparison:",
            *(f"- {point}" for point in comparison),
            "",
            "Selection criteria:",
            *(f"- {criterion}" for criterion in RUBRIC_CRITERIA[kind]),
            "",
            AGREEMENT_STATEMENTS[band].format(score=agreement),
        ]
        if winner.summary:
            lines += ["", "Summary:", winner.summary]
        return "\n".join(lines)
