"""Multi-backend candidate generation.

A generation request fans out to every listed backend at once. Each
backend's answer is parsed into the requested artifact kind, scored, and
summarized. A backend that fails (error, timeout, unparseable output,
unknown id) produces a sentinel candidate instead of aborting the
others. Only when every backend fails does the request fail, with
``AllBackendsFailed``.

Example:
    >>> generator = CandidateGenerator(backends, Scorer(), timeout=120.0)
    >>> candidates = await generator.generate(request, ScoringContext(language="python"))
    >>> [c.score for c in candidates]
    [60.0, 75.0, 90.0]
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import structlog

from devflow.exceptions import AllBackendsFailed
from devflow.generation.parsing import parse_artifact, summarize
from devflow.generation.scoring import Scorer
from devflow.models.generation import Candidate, GenerationRequest, ScoringContext
from devflow.providers.base import GeneratorBackend

log = structlog.get_logger(__name__)


class CandidateGenerator:
    """Fan a generation request out to several backends.

    Attributes:
        backends: Backends by id
        scorer: Rubric scorer applied to every parsed artifact
        timeout: Per-backend time limit in seconds
    """

    def __init__(
        self,
        backends: Mapping[str, GeneratorBackend],
        scorer: Scorer | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.backends = dict(backends)
        self.scorer = scorer or Scorer()
        self.timeout = timeout

    async def generate(self, request: GenerationRequest, context: ScoringContext | None = None) -> list[Candidate]:
        """Invoke every listed backend concurrently.

        Args:
            request: Kind, prompt and backend ids
            context: Project facts for relevance scoring

        Returns:
            One candidate per backend id, in request order.

        Raises:
            AllBackendsFailed: If every candidate is a sentinel
        """
        log.info("candidate_generation_started", kind=str(request.kind), backends=request.backend_ids)

        candidates = await asyncio.gather(
            *(self._generate_one(backend_id, request, context) for backend_id in request.backend_ids)
        )

        if all(c.failed for c in candidates):
            reasons = {c.backend_id: c.reasoning for c in candidates}
            log.error("all_backends_failed", kind=str(request.kind), reasons=reasons)
            raise AllBackendsFailed(f"All {len(candidates)} backends failed to generate {request.kind}", reasons)

        log.info(
            "candidate_generation_completed",
            kind=str(request.kind),
            scores={c.backend_id: c.score for c in candidates},
        )
        return list(candidates)

    async def _generate_one(
        self,
        backend_id: str,
        request: GenerationRequest,
        context: ScoringContext | None,
    ) -> Candidate:
        backend = self.backends.get(backend_id)
        if backend is None:
            log.warning("unknown_backend", backend_id=backend_id)
            return Candidate.sentinel(backend_id, "unknown backend")

        try:
            generated = await asyncio.wait_for(backend.generate(request.prompt, request.context), self.timeout)
            artifact = parse_artifact(request.kind, generated.content)
        except asyncio.TimeoutError:
            log.warning("backend_timeout", backend_id=backend_id, timeout=self.timeout)
            return Candidate.sentinel(backend_id, f"timed out after {self.timeout}s")
        except Exception as e:
            log.warning("backend_failed", backend_id=backend_id, error=str(e))
            return Candidate.sentinel(backend_id, str(e) or type(e).__name__)

        score = self.scorer.score(artifact, context)
        return Candidate(
            backend_id=backend_id,
            artifact=artifact,
            score=score,
            reasoning=f"Rubric score {score:.0f}/100",
            summary=summarize(artifact),
            model_id=generated.model_id,
        )
