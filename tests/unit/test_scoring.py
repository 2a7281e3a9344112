"""Tests for devflow.generation.scoring."""

import json

import pytest

from devflow.enums import ArtifactKind, Confidence
from devflow.generation.parsing import parse_artifact
from devflow.generation.scoring import RUBRIC_CRITERIA, Scorer, clamp, tier
from devflow.models.artifacts import (
    FailureAnalysis,
    FixBoth,
    FixImplementation,
    FixTests,
    Refinement,
    Specification,
    TechnicalPlan,
    UserStory,
)
from devflow.models.domain import FileChange
from devflow.models.generation import ScoringContext


@pytest.fixture
def scorer() -> Scorer:
    return Scorer()


def full_plan(**overrides) -> Specification:
    data = {
        "architecture": ["FastAPI router in app/routes.py"],
        "implementation_steps": [f"Step {n} in python" for n in range(5)],
        "testing_strategy": "pytest",
        "risks": ["Migration downtime"],
        "estimated_time": 120,
    }
    data.update(overrides)
    return Specification(**data)


class TestTier:
    """Tests for bucket lookup."""

    def test_first_matching_bucket_wins(self):
        assert tier(7, ((5, 20), (3, 10))) == 20
        assert tier(4, ((5, 20), (3, 10))) == 10

    def test_below_all_thresholds(self):
        assert tier(2, ((5, 20), (3, 10))) == 0

    def test_clamp(self):
        assert clamp(-5) == 0.0
        assert clamp(140) == 100.0
        assert clamp(42.5) == 42.5


class TestPlanRubric:
    """Tests for specification and technical plan scoring."""

    def test_complete_plan_with_all_relevance_bonuses(self, scorer):
        context = ScoringContext(language="python", framework="fastapi", known_paths=["app/routes.py"])

        assert scorer.score(full_plan(), context) == 100.0

    def test_empty_plan_scores_zero(self, scorer):
        assert scorer.score(Specification(), ScoringContext(language="python")) == 0.0

    def test_step_buckets(self, scorer):
        context = ScoringContext()
        base = 10 + 10 + 10 + 10  # architecture, testing, risks, estimate

        assert scorer.score(full_plan(implementation_steps=["a", "b"]), context) == base + 10
        assert scorer.score(full_plan(implementation_steps=["a", "b", "c"]), context) == base + 10 + 10
        assert scorer.score(full_plan(implementation_steps=list("abcde")), context) == base + 10 + 20

    def test_relevance_is_case_insensitive(self, scorer):
        plan = full_plan(architecture=["Uses PYTHON and App/Routes.py"], implementation_steps=list("abcde"))
        context = ScoringContext(language="Python", known_paths=["app/routes.py"])

        assert scorer.score(plan, context) == 90.0

    def test_missing_context_gives_no_relevance_bonus(self, scorer):
        assert scorer.score(full_plan()) == 70.0

    def test_technical_plan_uses_same_rubric(self, scorer):
        plan = TechnicalPlan(**full_plan().model_dump(exclude={"kind"}))

        assert scorer.score(plan) == scorer.score(full_plan())

    def test_technical_plan_default_estimate_counts(self, scorer):
        assert scorer.score(TechnicalPlan()) == 10.0

    def test_blank_testing_strategy_and_zero_estimate_score_nothing(self, scorer):
        assert scorer.score(Specification(testing_strategy="", estimated_time=0)) == 0.0
        assert scorer.score(full_plan(testing_strategy="")) == 60.0
        assert scorer.score(full_plan(estimated_time=0)) == 60.0

    def test_parsed_plan_with_bare_string_sections(self, scorer):
        content = json.dumps(
            {"architecture": "Single service", "risks": "none", "testingStrategy": "", "estimatedTime": True}
        )

        assert scorer.score(parse_artifact(ArtifactKind.SPECIFICATION, content)) == 0.0


class TestUserStoryRubric:
    """Tests for user story scoring."""

    def test_complete_story(self, scorer):
        story = UserStory(
            actor="shopper",
            goal="save items for later",
            benefit="I can buy them next week",
            acceptance_criteria=["a", "b", "c", "d"],
            definition_of_done=["x", "y", "z"],
            business_value="Increases returning customer conversion",
        )

        assert scorer.score(story) == 100.0

    def test_short_fields_do_not_count(self, scorer):
        story = UserStory(actor="PO", goal="do thing", benefit="profit")

        assert scorer.score(story) == 0.0

    @pytest.mark.parametrize(("count", "points"), [(1, 0), (2, 10), (3, 15), (4, 20), (9, 20)])
    def test_acceptance_criteria_buckets(self, scorer, count, points):
        story = UserStory(acceptance_criteria=["c"] * count)

        assert scorer.score(story) == points

    @pytest.mark.parametrize(("count", "points"), [(0, 0), (1, 5), (2, 7), (3, 10)])
    def test_definition_of_done_buckets(self, scorer, count, points):
        assert scorer.score(UserStory(definition_of_done=["d"] * count)) == points

    def test_business_value_buckets(self, scorer):
        assert scorer.score(UserStory(business_value="short")) == 5
        assert scorer.score(UserStory(business_value="x" * 21)) == 10


class TestRefinementRubric:
    """Tests for refinement scoring."""

    def test_complete_refinement(self, scorer):
        refinement = Refinement(
            business_context="x" * 60,
            objectives=["a", "b", "c"],
            preliminary_acceptance_criteria=["a", "b", "c"],
            complexity_estimate="M",
            questions_for_po=["Which browsers?"],
            suggested_split=["Backend", "Frontend"],
        )

        assert scorer.score(refinement) == 100.0

    def test_partial_refinement(self, scorer):
        refinement = Refinement(business_context="short", objectives=["a"], preliminary_acceptance_criteria=["a", "b"])

        assert scorer.score(refinement) == 15 + 10 + 15


class TestFailureAnalysisRubric:
    """Tests for failure analysis scoring."""

    def test_strong_analysis(self, scorer):
        analysis = FailureAnalysis(
            plan=FixBoth(
                implementation_fixes=[FileChange(path="app/auth.py", content="x", reason="off by one")],
                test_fixes=[FileChange(path="tests/test_auth.py", content="y", reason="stale fixture")],
            ),
            analysis="x" * 60,
            confidence=Confidence.HIGH,
        )
        context = ScoringContext(known_paths=["app/auth.py"])

        assert scorer.score(analysis, context) == 100.0

    def test_missing_reason_and_unknown_path(self, scorer):
        analysis = FailureAnalysis(
            plan=FixImplementation(implementation_fixes=[FileChange(path="lib/x.py", content="x")]),
            analysis="short",
            confidence=Confidence.LOW,
        )

        assert scorer.score(analysis, ScoringContext(known_paths=["app/auth.py"])) == 15 + 10 + 5

    def test_no_files(self, scorer):
        analysis = FailureAnalysis(plan=FixTests(), analysis="", confidence=Confidence.MEDIUM)

        assert scorer.score(analysis) == 10.0


class TestScorerProperties:
    """Determinism and bounds."""

    def test_same_input_same_score(self, scorer):
        context = ScoringContext(language="python", known_paths=["app/routes.py"])

        assert scorer.score(full_plan(), context) == scorer.score(full_plan(), context)

    def test_unknown_artifact_scores_zero(self, scorer):
        assert scorer.score(object()) == 0.0

    def test_every_kind_has_criteria(self):
        assert set(RUBRIC_CRITERIA) == set(ArtifactKind)
