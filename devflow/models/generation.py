"""Models for candidate generation and synthesis."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from devflow.enums import AgreementBand, ArtifactKind
from devflow.models.artifacts import Artifact


class ScoringContext(BaseModel):
    """Project facts used for relevance bonuses."""

    language: str | None = None
    framework: str | None = None
    known_paths: list[str] = Field(default_factory=list)


class GenerationRequest(BaseModel):
    """One fan-out request to a set of generator backends."""

    kind: ArtifactKind
    prompt: str
    context: dict[str, Any] = Field(default_factory=dict)
    backend_ids: list[str]


class Candidate(BaseModel):
    """One backend's answer to a generation request.

    A backend that failed is represented by a sentinel: ``artifact`` is None,
    ``score`` is 0 and ``reasoning`` holds the failure text.
    """

    backend_id: str
    artifact: Artifact | None = None
    score: float = Field(default=0.0, ge=0.0, le=100.0)
    reasoning: str = ""
    summary: str = ""
    model_id: str | None = None

    @property
    def failed(self) -> bool:
        return self.artifact is None

    @classmethod
    def sentinel(cls, backend_id: str, reason: str) -> Candidate:
        return cls(backend_id=backend_id, artifact=None, score=0.0, reasoning=f"Failed: {reason}")


class SynthesisResult(BaseModel):
    """Winning candidate plus the evidence used to pick it."""

    kind: ArtifactKind
    winner: Candidate
    candidates: list[Candidate]
    weighted_scores: dict[str, float] = Field(default_factory=dict)
    agreement_score: float = Field(ge=0.0, le=1.0)
    agreement_band: AgreementBand
    comparison_points: list[str] = Field(default_factory=list)
    explanation: str = ""

    def model_post_init(self, __context: Any) -> None:
        # Validation copies nested models; re-point the winner at its list entry.
        for candidate in self.candidates:
            if candidate.backend_id == self.winner.backend_id:
                object.__setattr__(self, "winner", candidate)
                break
