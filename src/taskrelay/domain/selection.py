"""
Protocol selection.

Implements:
- Applicability predicates (Φ: task description → {⊤, ⊥}) with compound forms
- ProtocolRegistry: static catalog with a bounded, role-scoped select()
- Coverage checks: downstream detection of protocol classes missed upstream

Matching is deterministic: whole-word, case-insensitive term containment.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from taskrelay.domain.exceptions import ConfigurationError
from taskrelay.domain.models import Finding, FindingKind, RegistryEntry

DEFAULT_MAX_K = 3


# =============================================================================
# PREDICATE BASE CLASS
# =============================================================================


class ApplicabilityPredicate(ABC):
    """
    Abstract base class for applicability predicates.

    A predicate decides whether a registry entry applies to a free-text task
    description, and reports which terms justified the decision so that
    selection can rank entries.
    """

    @abstractmethod
    def matched_terms(self, text: str) -> tuple[str, ...]:
        """Terms of this predicate found in ``text`` (empty if none)."""

    @abstractmethod
    def matches(self, text: str) -> bool:
        """Evaluate predicate on a task description."""

    def __call__(self, text: str) -> bool:
        return self.matches(text)


# =============================================================================
# CONCRETE PREDICATES
# =============================================================================


class TermPredicate(ApplicabilityPredicate):
    """Matches when a word or phrase occurs in the text.

    Word boundaries are honoured, so "event" does not match "prevent".
    """

    def __init__(self, term: str) -> None:
        if not term.strip():
            raise ValueError("TermPredicate requires a non-empty term")
        self.term = term.strip().lower()
        self._pattern = re.compile(rf"(?<!\w){re.escape(self.term)}(?!\w)")

    def matched_terms(self, text: str) -> tuple[str, ...]:
        return (self.term,) if self._pattern.search(text.lower()) else ()

    def matches(self, text: str) -> bool:
        return bool(self.matched_terms(text))

    def __repr__(self) -> str:
        return f"TermPredicate({self.term!r})"


class Always(ApplicabilityPredicate):
    """Matches every description (for baseline entries of a role)."""

    def matched_terms(self, text: str) -> tuple[str, ...]:
        return ()

    def matches(self, text: str) -> bool:
        return True

    def __repr__(self) -> str:
        return "Always()"


# =============================================================================
# COMPOUND PREDICATES
# =============================================================================


class AnyOf(ApplicabilityPredicate):
    """Logical OR (Φ₁ ∨ … ∨ Φₙ)."""

    def __init__(self, *predicates: ApplicabilityPredicate) -> None:
        self.predicates = predicates

    def matched_terms(self, text: str) -> tuple[str, ...]:
        terms: list[str] = []
        for p in self.predicates:
            if p.matches(text):
                terms.extend(p.matched_terms(text))
        return tuple(terms)

    def matches(self, text: str) -> bool:
        return any(p.matches(text) for p in self.predicates)

    def __repr__(self) -> str:
        return f"AnyOf{self.predicates!r}"


class AllOf(ApplicabilityPredicate):
    """Logical AND (Φ₁ ∧ … ∧ Φₙ)."""

    def __init__(self, *predicates: ApplicabilityPredicate) -> None:
        self.predicates = predicates

    def matched_terms(self, text: str) -> tuple[str, ...]:
        if not self.matches(text):
            return ()
        terms: list[str] = []
        for p in self.predicates:
            terms.extend(p.matched_terms(text))
        return tuple(terms)

    def matches(self, text: str) -> bool:
        return all(p.matches(text) for p in self.predicates)

    def __repr__(self) -> str:
        return f"AllOf{self.predicates!r}"


class NotPredicate(ApplicabilityPredicate):
    """Logical NOT (¬Φ). Contributes no terms to ranking."""

    def __init__(self, predicate: ApplicabilityPredicate) -> None:
        self.predicate = predicate

    def matched_terms(self, text: str) -> tuple[str, ...]:
        return ()

    def matches(self, text: str) -> bool:
        return not self.predicate.matches(text)

    def __repr__(self) -> str:
        return f"NotPredicate({self.predicate!r})"


def predicate_from_dict(data: Any) -> ApplicabilityPredicate:
    """Build a predicate from its JSON form.

    Accepted forms:
        "term"                      -> TermPredicate
        {"any": [<form>, ...]}      -> AnyOf
        {"all": [<form>, ...]}      -> AllOf
        {"not": <form>}             -> NotPredicate
        {"always": true}            -> Always

    Raises:
        ConfigurationError: If the form is not recognised
    """
    if isinstance(data, str):
        return TermPredicate(data)
    if isinstance(data, Mapping) and len(data) == 1:
        (key, value), *_ = data.items()
        if key in ("any", "all") and isinstance(value, list) and value:
            children = tuple(predicate_from_dict(v) for v in value)
            return AnyOf(*children) if key == "any" else AllOf(*children)
        if key == "not":
            return NotPredicate(predicate_from_dict(value))
        if key == "always" and value is True:
            return Always()
    raise ConfigurationError(f"Invalid applicability predicate: {data!r}")


# =============================================================================
# REGISTRY AND SELECTOR
# =============================================================================


class ProtocolRegistry:
    """
    Static catalog of protocol entries.

    Loaded once at process start and never mutated. Selection is scoped to
    the requesting role and bounded by ``max_k``.
    """

    def __init__(self, entries: Iterable[RegistryEntry]) -> None:
        self._entries: tuple[RegistryEntry, ...] = tuple(entries)
        names = [e.name for e in self._entries]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate registry entries: {', '.join(duplicates)}"
            )
        self._by_name = {e.name: e for e in self._entries}

    @property
    def entries(self) -> tuple[RegistryEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> RegistryEntry:
        """Look up an entry by name.

        Raises:
            KeyError: If no entry has that name
        """
        if name not in self._by_name:
            raise KeyError(f"Registry entry not found: {name}")
        return self._by_name[name]

    def for_role(self, role: str) -> tuple[RegistryEntry, ...]:
        return tuple(e for e in self._entries if e.owning_role == role)

    def select(
        self, role: str, task_description: str, max_k: int = DEFAULT_MAX_K
    ) -> list[RegistryEntry]:
        """Select at most ``max_k`` entries of ``role`` applicable to the task.

        Entries are ranked by the number of matched terms (most first), then
        by name, so the result is deterministic for a given input.

        Args:
            role: Role currently executing; only its entries are eligible
            task_description: Free-text task argument
            max_k: Upper bound on the number of entries returned

        Returns:
            Selected entries, best match first
        """
        if max_k <= 0:
            return []
        candidates = [
            (len(e.predicate.matched_terms(task_description)), e)
            for e in self.for_role(role)
            if e.predicate.matches(task_description)
        ]
        candidates.sort(key=lambda pair: (-pair[0], pair[1].name))
        return [entry for _, entry in candidates[:max_k]]


# =============================================================================
# DOWNSTREAM COVERAGE CHECK
# =============================================================================


@dataclass(frozen=True)
class CoverageCheck:
    """Expectation that a protocol class was used when the task calls for it.

    Example: an auth-touching change must have been given a ``security``
    tagged entry somewhere upstream.
    """

    tag: str
    trigger: ApplicabilityPredicate
    description: str = ""


def find_protocol_gaps(
    argument: str,
    protocols_used: Mapping[str, tuple[str, ...]],
    registry: ProtocolRegistry,
    checks: Iterable[CoverageCheck],
    step_name: str,
) -> list[Finding]:
    """Report expected protocol classes that no upstream step received.

    Args:
        argument: The task description
        protocols_used: Step name -> entry names handed to that step
        registry: Catalog used to resolve entry tags
        checks: Coverage expectations of the reviewing step
        step_name: The reviewing step (recorded on each finding)

    Returns:
        One PROTOCOL_GAP finding per unmet expectation
    """
    used_tags: set[str] = set()
    for names in protocols_used.values():
        for name in names:
            try:
                used_tags.update(registry.get(name).tags)
            except KeyError:
                continue
    findings = []
    for check in checks:
        if check.trigger.matches(argument) and check.tag not in used_tags:
            detail = check.description or (
                f"Task calls for '{check.tag}' guidance but no upstream step used it"
            )
            findings.append(
                Finding(
                    kind=FindingKind.PROTOCOL_GAP,
                    step_name=step_name,
                    detail=detail,
                    tag=check.tag,
                )
            )
    return findings
