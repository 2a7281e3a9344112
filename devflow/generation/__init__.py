"""Multi-backend generation: fan-out, scoring, agreement and synthesis.

Key Components:
    - CandidateGenerator: concurrent fan-out with per-backend timeouts
    - Scorer: deterministic rubric scoring per artifact kind
    - AgreementEvaluator: structural agreement across candidates
    - Synthesizer: weighted winner selection with an explanation
    - PromptRenderer: Jinja2 prompt templates
"""

from devflow.generation.agreement import AgreementEvaluator
from devflow.generation.candidates import CandidateGenerator
from devflow.generation.prompts import PromptRenderer
from devflow.generation.scoring import Scorer
from devflow.generation.synthesizer import Synthesizer

__all__ = ["AgreementEvaluator", "CandidateGenerator", "PromptRenderer", "Scorer", "Synthesizer"]
