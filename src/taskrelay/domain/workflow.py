"""
Workflow templates and template references.

Implements:
- StepDefinition / WorkflowTemplate: the tagged step graph of a command
- compute_template_ref: content-addressed hash of a template, stored on each
  task record and verified on resume
- TemplateCatalog and the built-in command set (implement, fix, test)
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from taskrelay.domain.exceptions import UnknownCommand
from taskrelay.domain.models import Step, StepKind, WorkerSpec
from taskrelay.domain.selection import AnyOf, CoverageCheck, TermPredicate

# =============================================================================
# STEP GRAPH
# =============================================================================


@dataclass(frozen=True)
class StepDefinition:
    """Template for one step.

    A SEQUENTIAL step invokes a single worker of ``role``. A PARALLEL_GROUP
    step fans out to ``workers`` and joins on all of them.
    """

    name: str
    kind: StepKind
    summary: str  # Shown as checkpoint.next_step_summary before this step runs
    role: str = ""
    instructions_ref: str = ""
    workers: tuple[WorkerSpec, ...] = ()
    remediate_from: str | None = None  # Earlier step re-entered on retry
    coverage_checks: tuple[CoverageCheck, ...] = ()

    def __post_init__(self) -> None:
        if self.kind == StepKind.SEQUENTIAL and not self.role:
            raise ValueError(f"Sequential step '{self.name}' needs a role")
        if self.kind == StepKind.PARALLEL_GROUP and not self.workers:
            raise ValueError(f"Parallel step '{self.name}' needs workers")
        names = [w.name for w in self.workers]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate worker names in step '{self.name}'")

    @property
    def roles(self) -> tuple[str, ...]:
        if self.kind == StepKind.PARALLEL_GROUP:
            return tuple(dict.fromkeys(w.role for w in self.workers))
        return (self.role,)

    def describe(self) -> str:
        return f"{self.name}: {self.summary}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "summary": self.summary,
            "role": self.role,
            "instructions_ref": self.instructions_ref,
            "workers": [
                {"name": w.name, "role": w.role, "instructions_ref": w.instructions_ref}
                for w in self.workers
            ],
            "remediate_from": self.remediate_from,
            "coverage_checks": [c.tag for c in self.coverage_checks],
        }


@dataclass(frozen=True)
class WorkflowTemplate:
    """Ordered step graph for one command. The last step is terminal."""

    command: str
    description: str
    steps: tuple[StepDefinition, ...]

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Template '{self.command}' has no steps")
        seen: list[str] = []
        for step in self.steps:
            if step.name in seen:
                raise ValueError(
                    f"Duplicate step '{step.name}' in template '{self.command}'"
                )
            if step.remediate_from is not None and step.remediate_from not in seen:
                raise ValueError(
                    f"Step '{step.name}' remediates from '{step.remediate_from}', "
                    "which is not an earlier step"
                )
            seen.append(step.name)

    def __len__(self) -> int:
        return len(self.steps)

    def step(self, index: int) -> StepDefinition:
        return self.steps[index]

    def index_of(self, name: str) -> int:
        for i, step in enumerate(self.steps):
            if step.name == name:
                return i
        raise KeyError(f"Step not found: {name}")

    def remediated_by(self, name: str) -> tuple[str, ...]:
        """Steps that re-enter at ``name`` when they are retried."""
        return tuple(s.name for s in self.steps if s.remediate_from == name)

    def next_step_summary(self, index: int) -> str:
        """Summary of the step at ``index``; empty past the end."""
        if 0 <= index < len(self.steps):
            return self.steps[index].describe()
        return ""

    def initial_steps(self) -> tuple[Step, ...]:
        return tuple(Step(name=s.name, kind=s.kind) for s in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "steps": [s.to_dict() for s in self.steps],
        }


# =============================================================================
# TEMPLATE REFERENCE
# =============================================================================


def compute_template_ref(template: WorkflowTemplate) -> str:
    """Compute content-addressed hash of a template.

    Produces a deterministic hash by:
    1. Canonical JSON serialization (sorted keys, no whitespace)
    2. SHA-256 hash of the canonical form

    Args:
        template: The workflow template.

    Returns:
        Hex-encoded SHA-256 hash string.
    """
    canonical = json.dumps(template.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# =============================================================================
# TEMPLATE CATALOG
# =============================================================================


class TemplateCatalog:
    """Named set of workflow templates (the command surface)."""

    def __init__(self, templates: Iterable[WorkflowTemplate] = ()) -> None:
        self._templates: dict[str, WorkflowTemplate] = {}
        for template in templates:
            self.register(template)

    def register(self, template: WorkflowTemplate) -> None:
        self._templates[template.command] = template

    def get(self, command: str) -> WorkflowTemplate:
        """Retrieve a template by command name.

        Raises:
            UnknownCommand: If no template is registered for ``command``
        """
        if command not in self._templates:
            available = ", ".join(sorted(self._templates)) or "(none)"
            raise UnknownCommand(
                f"Unknown command '{command}'. Available commands: {available}"
            )
        return self._templates[command]

    def commands(self) -> list[str]:
        return sorted(self._templates)

    def __contains__(self, command: object) -> bool:
        return command in self._templates


# =============================================================================
# BUILT-IN COMMANDS
# =============================================================================

SECURITY_COVERAGE = CoverageCheck(
    tag="security",
    trigger=AnyOf(
        TermPredicate("auth"),
        TermPredicate("authentication"),
        TermPredicate("authorization"),
        TermPredicate("login"),
        TermPredicate("password"),
        TermPredicate("token"),
        TermPredicate("session"),
        TermPredicate("permission"),
        TermPredicate("permissions"),
    ),
    description="Auth-related change reviewed without security guidance upstream",
)

VALIDATION_WORKERS = (
    WorkerSpec("functional", "tester", "validate/functional"),
    WorkerSpec("policy", "security", "validate/policy"),
    WorkerSpec("quality", "reviewer", "validate/quality"),
)


def _implement_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        command="implement",
        description="Implement a change from a free-text requirement",
        steps=(
            StepDefinition(
                "analyze",
                StepKind.SEQUENTIAL,
                "analyze the requirement and design the change",
                role="architect",
                instructions_ref="implement/analyze",
            ),
            StepDefinition(
                "implement",
                StepKind.SEQUENTIAL,
                "implement the designed change",
                role="developer",
                instructions_ref="implement/implement",
            ),
            StepDefinition(
                "validate",
                StepKind.PARALLEL_GROUP,
                "run functional, policy and quality checks",
                workers=VALIDATION_WORKERS,
                remediate_from="implement",
            ),
            StepDefinition(
                "review",
                StepKind.SEQUENTIAL,
                "review the change against the requirement",
                role="reviewer",
                instructions_ref="implement/review",
                remediate_from="implement",
                coverage_checks=(SECURITY_COVERAGE,),
            ),
            StepDefinition(
                "report",
                StepKind.SEQUENTIAL,
                "summarize the change",
                role="documenter",
                instructions_ref="implement/report",
            ),
        ),
    )


def _fix_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        command="fix",
        description="Fix a defect described in free text",
        steps=(
            StepDefinition(
                "reproduce",
                StepKind.SEQUENTIAL,
                "reproduce the defect with a failing test",
                role="tester",
                instructions_ref="fix/reproduce",
            ),
            StepDefinition(
                "diagnose",
                StepKind.SEQUENTIAL,
                "locate the root cause",
                role="architect",
                instructions_ref="fix/diagnose",
            ),
            StepDefinition(
                "fix",
                StepKind.SEQUENTIAL,
                "apply the fix",
                role="developer",
                instructions_ref="fix/fix",
            ),
            StepDefinition(
                "validate",
                StepKind.PARALLEL_GROUP,
                "run functional, policy and quality checks",
                workers=VALIDATION_WORKERS,
                remediate_from="fix",
            ),
            StepDefinition(
                "report",
                StepKind.SEQUENTIAL,
                "summarize the fix",
                role="documenter",
                instructions_ref="fix/report",
                coverage_checks=(SECURITY_COVERAGE,),
            ),
        ),
    )


def _test_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        command="test",
        description="Add tests for a described behaviour",
        steps=(
            StepDefinition(
                "plan",
                StepKind.SEQUENTIAL,
                "plan test cases",
                role="tester",
                instructions_ref="test/plan",
            ),
            StepDefinition(
                "write",
                StepKind.SEQUENTIAL,
                "write the tests",
                role="developer",
                instructions_ref="test/write",
            ),
            StepDefinition(
                "verify",
                StepKind.PARALLEL_GROUP,
                "run unit and integration suites",
                workers=(
                    WorkerSpec("unit", "tester", "test/unit"),
                    WorkerSpec("integration", "tester", "test/integration"),
                ),
                remediate_from="write",
            ),
            StepDefinition(
                "report",
                StepKind.SEQUENTIAL,
                "summarize coverage",
                role="documenter",
                instructions_ref="test/report",
            ),
        ),
    )


def default_catalog() -> TemplateCatalog:
    """Catalog with the built-in implement, fix and test commands."""
    return TemplateCatalog([_implement_template(), _fix_template(), _test_template()])
