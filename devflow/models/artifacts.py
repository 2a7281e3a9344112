"""Artifacts produced by multi-backend generation.

Each artifact carries a literal ``kind`` field so a list of mixed artifacts
(for example the candidates stored in a run's journal) can be validated
back into the right class through the ``Artifact`` discriminated union.

The failure analysis artifact embeds a ``FixPlan``: a second discriminated
union, on ``strategy``, whose variants carry exactly the files that the
strategy patches.

Example:
    >>> plan = FixBoth(
    ...     implementation_fixes=[FileChange(path="app/auth.py", content="...")],
    ...     test_fixes=[FileChange(path="tests/test_auth.py", content="...")],
    ... )
    >>> [f.path for f in plan.files_to_patch()]
    ['app/auth.py', 'tests/test_auth.py']
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from devflow.enums import Confidence
from devflow.models.domain import FileChange


class Refinement(BaseModel):
    """Backlog refinement: context and open questions before a story exists."""

    kind: Literal["refinement"] = "refinement"
    business_context: str = ""
    objectives: list[str] = Field(default_factory=list)
    preliminary_acceptance_criteria: list[str] = Field(default_factory=list)
    complexity_estimate: str | None = None
    questions_for_po: list[str] = Field(default_factory=list)
    suggested_split: list[str] | None = None


class UserStory(BaseModel):
    """Formal user story with acceptance criteria."""

    kind: Literal["user_story"] = "user_story"
    title: str = ""
    actor: str = ""
    goal: str = ""
    benefit: str = ""
    acceptance_criteria: list[str] = Field(default_factory=list)
    definition_of_done: list[str] = Field(default_factory=list)
    business_value: str = ""
    story_points: int | None = None


class Specification(BaseModel):
    """Architecture and step-by-step implementation plan."""

    kind: Literal["specification"] = "specification"
    architecture: list[str] = Field(default_factory=list)
    implementation_steps: list[str] = Field(default_factory=list)
    testing_strategy: str | None = None
    risks: list[str] = Field(default_factory=list)
    estimated_time: int | None = None


class TechnicalPlan(BaseModel):
    """Specification extended with decisions, dependencies and touched files."""

    kind: Literal["technical_plan"] = "technical_plan"
    architecture: list[str] = Field(default_factory=list)
    implementation_steps: list[str] = Field(default_factory=list)
    testing_strategy: str | None = None
    risks: list[str] = Field(default_factory=list)
    estimated_time: int | None = 180
    dependencies: list[str] = Field(default_factory=list)
    technical_decisions: list[str] = Field(default_factory=list)
    files_affected: list[str] = Field(default_factory=list)


class FixImplementation(BaseModel):
    strategy: Literal["fix_implementation"] = "fix_implementation"
    implementation_fixes: list[FileChange] = Field(default_factory=list)

    def files_to_patch(self) -> list[FileChange]:
        return list(self.implementation_fixes)


class FixTests(BaseModel):
    strategy: Literal["fix_tests"] = "fix_tests"
    test_fixes: list[FileChange] = Field(default_factory=list)

    def files_to_patch(self) -> list[FileChange]:
        return list(self.test_fixes)


class FixBoth(BaseModel):
    strategy: Literal["both"] = "both"
    implementation_fixes: list[FileChange] = Field(default_factory=list)
    test_fixes: list[FileChange] = Field(default_factory=list)

    def files_to_patch(self) -> list[FileChange]:
        return [*self.implementation_fixes, *self.test_fixes]


FixPlan = Annotated[Union[FixImplementation, FixTests, FixBoth], Field(discriminator="strategy")]


class FailureAnalysis(BaseModel):
    """Diagnosis of failing tests and the patch that should fix them."""

    kind: Literal["failure_analysis"] = "failure_analysis"
    plan: FixPlan
    analysis: str = ""
    confidence: Confidence = Confidence.MEDIUM

    def files_to_patch(self) -> list[FileChange]:
        return self.plan.files_to_patch()


Artifact = Annotated[
    Union[Refinement, UserStory, Specification, TechnicalPlan, FailureAnalysis],
    Field(discriminator="kind"),
]
