"""Status derivation for epochs and tasks.

A task's stored status is advisory. Its effective status is recomputed
from the document every time:

    complete     -> complete
    in_progress  -> in_progress
    otherwise    -> blocked if any blocked_by id is unresolved, else pending

An epoch's derived status follows from its tasks' effective statuses:

    all complete (at least one task)  -> complete
    any in_progress                   -> in_progress
    any blocked                       -> blocked
    otherwise                         -> pending

An explicit epoch status wins for eligibility, but the derived value is
kept beside it so reports can flag the two disagreeing.
"""

import logging
from dataclasses import dataclass, field

from stigmergy.lib.constants import (
    STATUS_BLOCKED,
    STATUS_COMPLETE,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from stigmergy.lib.epochparse import Epoch, Task, TodoDocument
from stigmergy.lib.types import ValidationWarning, WarningSink

logger = logging.getLogger(__name__)


class DependencyIndex:
    """Resolves blocked_by ids against a document and the archive."""

    def __init__(self, doc: TodoDocument, archived_task_ids: set[str] | None = None,
                 archived_epoch_ids: set[str] | None = None):
        archived_task_ids = set(archived_task_ids or ())
        tasks = doc.all_tasks()
        self.known_ids = {t.id for t in tasks} | archived_task_ids
        self.complete_ids = {t.id for t in tasks if t.status == STATUS_COMPLETE} | archived_task_ids
        self.archived_epoch_ids = set(archived_epoch_ids or ())

    def unresolved(self, task: Task, sink: WarningSink | None = None) -> list[str]:
        """blocked_by ids of task that are not complete, in declared order."""
        missing = []
        for dep in task.blocked_by:
            if dep in self.complete_ids:
                continue
            if dep not in self.known_ids and sink is not None:
                sink.add("unknown_dependency", f"{task.id} is blocked by unknown task {dep}",
                         subject=task.id, line=task.line)
            missing.append(dep)
        return missing

    def is_satisfied(self, task: Task) -> bool:
        return not self.unresolved(task)


def task_effective_status(task: Task, deps: DependencyIndex, sink: WarningSink | None = None) -> str:
    if task.status in (STATUS_COMPLETE, STATUS_IN_PROGRESS):
        return task.status
    if deps.unresolved(task, sink):
        return STATUS_BLOCKED
    if task.status == STATUS_BLOCKED and sink is not None:
        sink.add("blocked_drift", f"{task.id} is marked blocked but all its dependencies are complete",
                 subject=task.id, line=task.line)
    return STATUS_PENDING


def derive_status(statuses: list[str]) -> str:
    """Derive an epoch status from its tasks' effective statuses."""
    if statuses and all(s == STATUS_COMPLETE for s in statuses):
        return STATUS_COMPLETE
    if STATUS_IN_PROGRESS in statuses:
        return STATUS_IN_PROGRESS
    if STATUS_BLOCKED in statuses:
        return STATUS_BLOCKED
    return STATUS_PENDING


@dataclass
class EpochMetrics:
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    blocked: int = 0
    complete: int = 0

    @property
    def percent_complete(self) -> int:
        return (self.complete * 100) // self.total if self.total else 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "in_progress": self.in_progress,
            "blocked": self.blocked,
            "complete": self.complete,
            "percent_complete": self.percent_complete,
        }


@dataclass
class DerivedEpoch:
    epoch: Epoch
    derived_status: str
    task_status: dict[str, str] = field(default_factory=dict)
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def epoch_id(self) -> str:
        return self.epoch.epoch_id

    @property
    def stored_status(self) -> str | None:
        return self.epoch.status

    @property
    def effective_status(self) -> str:
        return self.epoch.status or self.derived_status

    @property
    def has_drift(self) -> bool:
        return self.epoch.status is not None and self.epoch.status != self.derived_status

    @property
    def metrics(self) -> EpochMetrics:
        metrics = EpochMetrics(total=len(self.task_status))
        for status in self.task_status.values():
            setattr(metrics, status, getattr(metrics, status) + 1)
        return metrics


def derive_epoch(epoch: Epoch, deps: DependencyIndex, parse_warnings=()) -> DerivedEpoch:
    """Derive one epoch. parse_warnings are the parser's warnings about this
    epoch and its tasks, carried on the result for callers that select it.
    """
    sink = WarningSink(list(parse_warnings))
    task_status = {t.id: task_effective_status(t, deps, sink) for t in epoch.tasks}
    derived = DerivedEpoch(
        epoch=epoch,
        derived_status=derive_status(list(task_status.values())),
        task_status=task_status,
    )

    if derived.has_drift:
        message = (f"{epoch.epoch_id} is marked {epoch.status} "
                   f"but its tasks derive {derived.derived_status}")
        logger.debug(message)
        sink.add("status_drift", message, subject=epoch.epoch_id, line=epoch.line)
    if not epoch.tasks and not epoch.flat:
        sink.add("empty_epoch", f"{epoch.epoch_id} has no tasks", subject=epoch.epoch_id, line=epoch.line)

    derived.warnings = sink.items
    return derived


def derive_all(doc: TodoDocument, archived_task_ids: set[str] | None = None,
               archived_epoch_ids: set[str] | None = None) -> list[DerivedEpoch]:
    """Derive every epoch of a document, in document order."""
    deps = DependencyIndex(doc, archived_task_ids, archived_epoch_ids)
    derived = []
    for epoch in doc.epochs:
        subjects = {epoch.epoch_id} | {t.id for t in epoch.tasks}
        own = [w for w in doc.warnings if w.subject in subjects]
        derived.append(derive_epoch(epoch, deps, own))
    return derived
