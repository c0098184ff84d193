"""
Shared data types for the coordination engine.

This module contains the result and warning types returned across
modules, kept here to avoid circular imports.

Operation results are values, not exceptions: a caller that races another
actor gets a ClaimConflict back and decides for itself whether to re-select.
Only Ok is truthy, so `if result:` reads as "did it work".
"""

from dataclasses import dataclass, field
from typing import Any


class ParseError(Exception):
    """Malformed embedded data. Fatal to the current operation."""

    def __init__(self, message: str, line: int | None = None, block: str | None = None):
        self.line = line
        self.block = block
        location = ""
        if line is not None:
            location = f" (line {line}"
            location += f", {block})" if block else ")"
        elif block:
            location = f" ({block})"
        super().__init__(f"{message}{location}")


@dataclass(frozen=True)
class ValidationWarning:
    """A non-fatal anomaly surfaced in reports."""
    code: str  # "invalid_priority", "status_drift", "orphan_task", ...
    message: str
    subject: str | None = None  # Epoch, task or story id
    line: int | None = None


@dataclass(frozen=True)
class Ok:
    value: Any = None

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class ClaimConflict:
    """Another actor holds a fresh claim, or the task stopped being claimable.

    The caller must re-run selection rather than retry the same task.
    """
    task_id: str
    reason: str  # "claimed", "complete", "blocked", "not_claimed", "document_changed"
    holder: str | None = None
    claimed_at: str | None = None

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class NotFound:
    kind: str  # "epoch", "task", "story"
    identifier: str

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class NotArchivable:
    epoch_id: str
    reason: str  # "no_tasks", "incomplete_tasks", "status_not_complete", "already_archived"
    incomplete: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class AlreadyLinked:
    story_id: str
    epoch_id: str
    existing: str  # The conflicting reference already in place

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class NoEligibleEpochs:
    """Nothing to start or resume. Not an error."""
    message: str = "No eligible epochs found. All epochs may be complete or blocked."
    warnings: tuple[ValidationWarning, ...] = ()

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class NoActionableTask:
    """An epoch was selected but none of its tasks can be worked right now."""
    epoch_id: str
    message: str = "All tasks in the epoch are blocked, complete or claimed."
    warnings: tuple[ValidationWarning, ...] = ()

    def __bool__(self) -> bool:
        return False


@dataclass
class WarningSink:
    """Collects warnings while a document is parsed or analysed."""
    items: list[ValidationWarning] = field(default_factory=list)

    def add(self, code: str, message: str, subject: str | None = None, line: int | None = None) -> None:
        self.items.append(ValidationWarning(code=code, message=message, subject=subject, line=line))

    def extend(self, warnings) -> None:
        """Add warnings that are not already collected."""
        for warning in warnings:
            if warning not in self.items:
                self.items.append(warning)
