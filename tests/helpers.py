"""Builders shared by the test modules."""

from taskrelay.domain.models import RegistryEntry, WorkerResult, WorkerStatus
from taskrelay.domain.selection import Always, AnyOf, TermPredicate


def passed(name: str = "worker", detail: str = "ok", files: tuple[str, ...] = ()) -> WorkerResult:
    return WorkerResult(name, WorkerStatus.PASS, detail, files_touched=files)


def failed(name: str = "worker", detail: str = "failed", recoverable: bool = True) -> WorkerResult:
    return WorkerResult(name, WorkerStatus.FAIL, detail, recoverable=recoverable)


def blocked(name: str = "worker", detail: str = "needs a human") -> WorkerResult:
    return WorkerResult(name, WorkerStatus.FAIL, detail, recoverable=False)


def make_entry(
    name: str,
    role: str,
    *terms: str,
    tags: tuple[str, ...] = (),
) -> RegistryEntry:
    """Registry entry matching any of ``terms`` (or everything if none)."""
    predicate = AnyOf(*(TermPredicate(t) for t in terms)) if terms else Always()
    return RegistryEntry(
        name=name,
        owning_role=role,
        applicability_description=f"{name} guidance",
        content_ref=f"protocols/{role}/{name}.md",
        predicate=predicate,
        tags=tags,
    )
