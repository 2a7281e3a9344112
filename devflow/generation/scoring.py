"""Rubric scoring for generated artifacts.

The Scorer awards additive point buckets for structural features of an
artifact and, for plan-like artifacts, a relevance bonus when the artifact
text mentions the project's language, framework or known file paths.
Scores are clamped to [0, 100]. The functions are pure: the same artifact
and context always produce the same score.

The point values below are tuned constants. Changing any of them changes
which backend wins a synthesis, so they are kept in module-level tables.

Rubrics:
    specification / technical plan:
        architecture +10, implementation steps +10, testing strategy +10,
        risks +10, language mention +10, framework mention +10,
        known path mention +10, steps >= 3 +10, steps >= 5 +10,
        estimated time +10
    user story:
        actor +20, goal +20, benefit +20, acceptance criteria 20/15/10,
        definition of done 10/7/5, business value 10/5
    refinement:
        business context 30/15, objectives 20/15/10,
        preliminary criteria 20/15/10, complexity +15, questions +10,
        suggested split +5
    failure analysis:
        files to patch 25/15, reasons on every file +15,
        analysis text 20/10, confidence 20/10/5, known path touched +20
"""

from __future__ import annotations

import json
from typing import Any

from devflow.enums import ArtifactKind, Confidence
from devflow.models.artifacts import FailureAnalysis, Refinement, Specification, TechnicalPlan, UserStory
from devflow.models.generation import ScoringContext

MIN_SCORE = 0.0
MAX_SCORE = 100.0

# Tiered buckets: (minimum count, points), first match wins.
PLAN_POINTS = {
    "architecture": 10,
    "implementation_steps": 10,
    "testing_strategy": 10,
    "risks": 10,
    "language": 10,
    "framework": 10,
    "known_path": 10,
    "estimated_time": 10,
}
PLAN_STEP_BUCKETS = ((5, 20), (3, 10))

USER_STORY_POINTS = {"actor": 20, "goal": 20, "benefit": 20}
USER_STORY_MIN_LENGTHS = {"actor": 3, "goal": 10, "benefit": 10}
USER_STORY_CRITERIA_BUCKETS = ((4, 20), (3, 15), (2, 10))
USER_STORY_DONE_BUCKETS = ((3, 10), (2, 7), (1, 5))
USER_STORY_VALUE_BUCKETS = ((21, 10), (1, 5))

REFINEMENT_CONTEXT_BUCKETS = ((51, 30), (1, 15))
REFINEMENT_OBJECTIVE_BUCKETS = ((3, 20), (2, 15), (1, 10))
REFINEMENT_CRITERIA_BUCKETS = ((3, 20), (2, 15), (1, 10))
REFINEMENT_POINTS = {"complexity_estimate": 15, "questions_for_po": 10, "suggested_split": 5}

FAILURE_FILE_BUCKETS = ((2, 25), (1, 15))
FAILURE_REASON_POINTS = 15
FAILURE_ANALYSIS_BUCKETS = ((51, 20), (1, 10))
FAILURE_CONFIDENCE_POINTS = {Confidence.HIGH: 20, Confidence.MEDIUM: 10, Confidence.LOW: 5}
FAILURE_KNOWN_PATH_POINTS = 20

# Human-readable criteria per kind, used in synthesis explanations.
RUBRIC_CRITERIA: dict[ArtifactKind, tuple[str, ...]] = {
    ArtifactKind.SPECIFICATION: (
        "Completeness (architecture, steps, testing, risks)",
        "References to the project's language, framework and files",
        "Quality and number of implementation steps",
        "Realistic time estimate",
    ),
    ArtifactKind.TECHNICAL_PLAN: (
        "Completeness (architecture, steps, testing, risks)",
        "References to the project's language, framework and files",
        "Quality and number of implementation steps",
        "Realistic time estimate",
    ),
    ArtifactKind.USER_STORY: (
        "Clear actor, goal and benefit",
        "Testable acceptance criteria",
        "Definition of done",
        "Stated business value",
    ),
    ArtifactKind.REFINEMENT: (
        "Business context",
        "Objectives and preliminary acceptance criteria",
        "Complexity estimate",
        "Open questions and split suggestions",
    ),
    ArtifactKind.FAILURE_ANALYSIS: (
        "Concrete files to patch with reasons",
        "Depth of the diagnosis",
        "Stated confidence",
        "Patches that touch the failing code",
    ),
}


def tier(count: int, buckets: tuple[tuple[int, int], ...]) -> int:
    """Points of the first bucket whose threshold ``count`` reaches."""
    for threshold, points in buckets:
        if count >= threshold:
            return points
    return 0


def clamp(score: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, score))


class Scorer:
    """Deterministic rubric scorer.

    Example:
        >>> scorer = Scorer()
        >>> scorer.score(spec, ScoringContext(language="python"))
        80.0
    """

    def score(self, artifact: Any, context: ScoringContext | None = None) -> float:
        """Score an artifact against the rubric of its kind.

        Args:
            artifact: Any artifact model
            context: Project facts for relevance bonuses

        Returns:
            Score in [0, 100].
        """
        context = context or ScoringContext()
        if isinstance(artifact, (Specification, TechnicalPlan)):
            raw = self._score_plan(artifact, context)
        elif isinstance(artifact, UserStory):
            raw = self._score_user_story(artifact)
        elif isinstance(artifact, Refinement):
            raw = self._score_refinement(artifact)
        elif isinstance(artifact, FailureAnalysis):
            raw = self._score_failure_analysis(artifact, context)
        else:
            raw = 0
        return clamp(float(raw))

    def _score_plan(self, plan: Specification | TechnicalPlan, context: ScoringContext) -> int:
        score = 0
        if plan.architecture:
            score += PLAN_POINTS["architecture"]
        if plan.implementation_steps:
            score += PLAN_POINTS["implementation_steps"]
        if plan.testing_strategy:
            score += PLAN_POINTS["testing_strategy"]
        if plan.risks:
            score += PLAN_POINTS["risks"]

        text = json.dumps(plan.model_dump(mode="json")).lower()
        if context.language and context.language.lower() in text:
            score += PLAN_POINTS["language"]
        if context.framework and context.framework.lower() in text:
            score += PLAN_POINTS["framework"]
        if any(path.lower() in text for path in context.known_paths):
            score += PLAN_POINTS["known_path"]

        score += tier(len(plan.implementation_steps), PLAN_STEP_BUCKETS)
        if plan.estimated_time:
            score += PLAN_POINTS["estimated_time"]
        return score

    def _score_user_story(self, story: UserStory) -> int:
        score = 0
        for field_name, points in USER_STORY_POINTS.items():
            if len(getattr(story, field_name)) > USER_STORY_MIN_LENGTHS[field_name]:
                score += points
        score += tier(len(story.acceptance_criteria), USER_STORY_CRITERIA_BUCKETS)
        score += tier(len(story.definition_of_done), USER_STORY_DONE_BUCKETS)
        score += tier(len(story.business_value), USER_STORY_VALUE_BUCKETS)
        return score

    def _score_refinement(self, refinement: Refinement) -> int:
        score = tier(len(refinement.business_context), REFINEMENT_CONTEXT_BUCKETS)
        score += tier(len(refinement.objectives), REFINEMENT_OBJECTIVE_BUCKETS)
        score += tier(len(refinement.preliminary_acceptance_criteria), REFINEMENT_CRITERIA_BUCKETS)
        if refinement.complexity_estimate:
            score += REFINEMENT_POINTS["complexity_estimate"]
        if refinement.questions_for_po:
            score += REFINEMENT_POINTS["questions_for_po"]
        if refinement.suggested_split:
            score += REFINEMENT_POINTS["suggested_split"]
        return score

    def _score_failure_analysis(self, analysis: FailureAnalysis, context: ScoringContext) -> int:
        files = analysis.files_to_patch()
        score = tier(len(files), FAILURE_FILE_BUCKETS)
        if files and all(f.reason.strip() for f in files):
            score += FAILURE_REASON_POINTS
        score += tier(len(analysis.analysis), FAILURE_ANALYSIS_BUCKETS)
        score += FAILURE_CONFIDENCE_POINTS.get(analysis.confidence, 0)

        known = {path.lower() for path in context.known_paths}
        if any(f.path.lower() in known for f in files):
            score += FAILURE_KNOWN_PATH_POINTS
        return score
