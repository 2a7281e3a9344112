"""Turn raw generator output into typed artifacts.

Backends are asked to answer with a JSON object, optionally wrapped in a
```json fence, using camelCase keys. Parsing extracts the object,
normalizes keys to snake_case, coerces the loosely typed fields models
tend to get wrong, and validates the result into an artifact model. Any
failure raises ``ValidationError`` so the caller can turn that backend's
answer into a sentinel candidate.
"""

from __future__ import annotations

import json
import re
from typing import Any

import pydantic

from devflow.enums import ArtifactKind
from devflow.exceptions import ValidationError
from devflow.models.artifacts import (
    FailureAnalysis,
    Refinement,
    Specification,
    TechnicalPlan,
    UserStory,
)
from devflow.models.domain import CodeChange

_JSON_FENCE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")

_MODELS: dict[ArtifactKind, type[pydantic.BaseModel]] = {
    ArtifactKind.REFINEMENT: Refinement,
    ArtifactKind.USER_STORY: UserStory,
    ArtifactKind.SPECIFICATION: Specification,
    ArtifactKind.TECHNICAL_PLAN: TechnicalPlan,
    ArtifactKind.FAILURE_ANALYSIS: FailureAnalysis,
}

_LIST_FIELDS = {
    "architecture",
    "implementation_steps",
    "risks",
    "dependencies",
    "technical_decisions",
    "files_affected",
    "acceptance_criteria",
    "definition_of_done",
    "objectives",
    "preliminary_acceptance_criteria",
    "questions_for_po",
}

# Plan sections only count when the generator returned an actual array.
_STRICT_LIST_FIELDS = {"architecture", "implementation_steps", "risks"}


def extract_json(content: str) -> dict[str, Any]:
    """Extract the first JSON object from generator output.

    Raises:
        ValidationError: If no JSON object can be decoded
    """
    match = _JSON_FENCE.search(content)
    text = (match.group(1) if match else content).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValidationError("No JSON object found in generator output") from None
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON in generator output: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError("Generator output must be a JSON object")
    return data


def to_snake_case(key: str) -> str:
    """Convert a camelCase key to snake_case.

    >>> to_snake_case("questionsForPO")
    'questions_for_po'
    """
    key = _ACRONYM_BOUNDARY.sub(r"\1_\2", key)
    return _WORD_BOUNDARY.sub(r"\1_\2", key).lower()


def _normalize_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_snake_case(str(k)): _normalize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize_keys(v) for v in value]
    return value


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [item if isinstance(item, str) else json.dumps(item) for item in value]
    return [str(value)]


def _coerce_fields(data: dict[str, Any]) -> dict[str, Any]:
    for name in _LIST_FIELDS & data.keys():
        if name in _STRICT_LIST_FIELDS and not isinstance(data[name], list):
            data[name] = []
        else:
            data[name] = _as_list(data[name])

    estimate = data.get("estimated_time")
    if "estimated_time" in data and (isinstance(estimate, bool) or not isinstance(estimate, (int, float))):
        data["estimated_time"] = None
    elif isinstance(data.get("estimated_time"), float):
        data["estimated_time"] = int(data["estimated_time"])

    if "testing_strategy" in data and not isinstance(data["testing_strategy"], str):
        data["testing_strategy"] = None

    if "suggested_split" in data and data["suggested_split"] is not None:
        data["suggested_split"] = _as_list(data["suggested_split"])

    if "complexity_estimate" in data and data["complexity_estimate"] is not None:
        data["complexity_estimate"] = str(data["complexity_estimate"])
    return data


def _fix_plan(data: dict[str, Any]) -> dict[str, Any]:
    strategy = data.pop("fix_strategy", None) or data.pop("strategy", None)
    plan = {
        "strategy": strategy,
        "implementation_fixes": data.pop("implementation_fixes", None) or [],
        "test_fixes": data.pop("test_fixes", None) or [],
    }
    data["plan"] = plan
    if isinstance(data.get("confidence"), str):
        data["confidence"] = data["confidence"].lower()
    return data


def parse_artifact(kind: ArtifactKind, content: str) -> Any:
    """Parse generator output into the artifact model for ``kind``.

    Args:
        kind: Expected artifact kind
        content: Raw generator output

    Returns:
        A validated artifact instance.

    Raises:
        ValidationError: If the output cannot be parsed or validated
    """
    data = _normalize_keys(extract_json(content))
    data.pop("kind", None)

    if kind == ArtifactKind.FAILURE_ANALYSIS:
        data = _fix_plan(data)
    else:
        data = _coerce_fields(data)

    try:
        return _MODELS[kind].model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Generator output does not match {kind} schema: {e.error_count()} errors") from e


def parse_code_change(content: str, branch_name: str) -> CodeChange:
    """Parse generated code into a CodeChange.

    The expected shape is ``{"files": [...], "tests": [...], "commitMessage",
    "prTitle", "prDescription"}``; ``branchName`` is optional and falls back
    to ``branch_name``.
    """
    data = _normalize_keys(extract_json(content))
    data.setdefault("branch_name", branch_name)
    data.setdefault("tests", [])
    data.setdefault("commit_message", f"feat: implement {branch_name}")
    data.setdefault("pr_title", data["commit_message"])

    try:
        change = CodeChange.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Generated code does not match schema: {e.error_count()} errors") from e

    if not change.files:
        raise ValidationError("Generated code contains no files")
    return change


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def summarize(artifact: Any) -> str:
    """Short human-readable summary of an artifact, used in explanations."""
    if isinstance(artifact, (Specification, TechnicalPlan)):
        lines = []
        if artifact.architecture:
            lines.append(f"Architecture: {', '.join(artifact.architecture[:2])}")
        if artifact.implementation_steps:
            lines.append(f"Implementation ({len(artifact.implementation_steps)} steps):")
            for index, step in enumerate(artifact.implementation_steps[:3], start=1):
                lines.append(f"  {index}. {_truncate(step, 100)}")
        if artifact.testing_strategy:
            lines.append(f"Testing: {_truncate(artifact.testing_strategy, 80)}")
        if artifact.estimated_time is not None:
            lines.append(f"Estimated time: {artifact.estimated_time} minutes")
        return "\n".join(lines)

    if isinstance(artifact, UserStory):
        return (
            f"As {artifact.actor or '?'}, I want {artifact.goal or '?'}, so that {artifact.benefit or '?'} "
            f"({len(artifact.acceptance_criteria)} acceptance criteria)"
        )

    if isinstance(artifact, Refinement):
        complexity = artifact.complexity_estimate or "unestimated"
        return (
            f"{len(artifact.objectives)} objectives, {len(artifact.questions_for_po)} open questions, "
            f"complexity {complexity}"
        )

    if isinstance(artifact, FailureAnalysis):
        paths = ", ".join(f.path for f in artifact.files_to_patch()) or "no files"
        return f"{artifact.plan.strategy} ({artifact.confidence} confidence): {paths}"

    return ""
