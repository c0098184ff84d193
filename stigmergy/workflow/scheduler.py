"""Eligibility and priority scheduling.

Pure functions over a derived snapshot of the task document; nothing here
reads or writes the store.

Epoch order: in_progress before pending, then priority (p0 first), then
the numeric part of the epoch id. Within an epoch an actor is offered:

    1. its own in_progress tasks
    2. pending tasks whose blocked_by ids are all complete, unclaimed or
       held by a stale claim
    3. other actors' stale in_progress claims (abandoned work)

each tier ordered by the numeric suffix of the task id, then document order.
"""

import logging
import re
from datetime import datetime, timedelta, timezone

from stigmergy.lib.constants import (
    DEFAULT_STALE_CLAIM_HOURS,
    PRIORITY_ORDER,
    STATUS_COMPLETE,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    UNNUMBERED_SORT_KEY,
)
from stigmergy.lib.epochparse import Task, epoch_number
from stigmergy.lib.types import NoActionableTask, NoEligibleEpochs, WarningSink
from stigmergy.workflow.derive import DependencyIndex, DerivedEpoch

logger = logging.getLogger(__name__)

TASK_NUMBER_RE = re.compile(r'(\d+)$')


def is_stale_claim(task: Task, now: datetime | None = None,
                   stale_hours: int = DEFAULT_STALE_CLAIM_HOURS) -> bool:
    """A claim is stale once claimed_at is older than the window.

    A claim without claimed_at can't be dated and counts as stale.
    """
    if not task.claimed_by:
        return False
    if task.claimed_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now - task.claimed_at > timedelta(hours=stale_hours)


def task_number(task_id: str) -> int:
    match = TASK_NUMBER_RE.search(task_id)
    return int(match.group(1)) if match else UNNUMBERED_SORT_KEY


def epoch_sort_key(derived: DerivedEpoch) -> tuple[int, int, int]:
    resume = 0 if derived.effective_status == STATUS_IN_PROGRESS else 1
    return (resume, PRIORITY_ORDER[derived.epoch.priority], epoch_number(derived.epoch_id))


def _epoch_deps_met(derived: DerivedEpoch, by_id: dict[str, DerivedEpoch],
                    archived_epoch_ids: set[str], sink: WarningSink | None) -> bool:
    for dep in derived.epoch.blocked_by:
        if dep in archived_epoch_ids:
            continue
        other = by_id.get(dep)
        if other is None:
            if sink is not None:
                sink.add("unknown_dependency", f"{derived.epoch_id} is blocked by unknown epoch {dep}",
                         subject=derived.epoch_id, line=derived.epoch.line)
            return False
        if other.effective_status != STATUS_COMPLETE:
            return False
    return True


def eligible_epochs(derived: list[DerivedEpoch], archived_epoch_ids: set[str] | None = None,
                    sink: WarningSink | None = None) -> list[DerivedEpoch]:
    """Epochs that can be started or resumed, best first."""
    archived_epoch_ids = set(archived_epoch_ids or ())
    by_id = {d.epoch_id: d for d in derived}
    eligible = [
        d for d in derived
        if d.effective_status in (STATUS_PENDING, STATUS_IN_PROGRESS)
        and d.epoch.tasks
        and _epoch_deps_met(d, by_id, archived_epoch_ids, sink)
    ]
    return sorted(eligible, key=epoch_sort_key)


def next_epoch(derived: list[DerivedEpoch], archived_epoch_ids: set[str] | None = None,
               sink: WarningSink | None = None) -> DerivedEpoch | NoEligibleEpochs:
    candidates = eligible_epochs(derived, archived_epoch_ids, sink)
    if not candidates:
        return NoEligibleEpochs(warnings=tuple(sink.items) if sink else ())
    return candidates[0]


def actionable_tasks(derived: DerivedEpoch, actor: str, deps: DependencyIndex,
                     now: datetime | None = None,
                     stale_hours: int = DEFAULT_STALE_CLAIM_HOURS) -> list[Task]:
    """Tasks the actor may work on in this epoch, in preference order."""
    now = now or datetime.now(timezone.utc)
    own, ready, abandoned = [], [], []

    for index, task in enumerate(derived.epoch.tasks):
        status = derived.task_status[task.id]
        key = (task_number(task.id), index)
        if status == STATUS_IN_PROGRESS:
            if task.claimed_by == actor:
                own.append((key, task))
            elif is_stale_claim(task, now, stale_hours):
                abandoned.append((key, task))
        elif status == STATUS_PENDING and deps.is_satisfied(task):
            if not task.claimed_by or task.claimed_by == actor or is_stale_claim(task, now, stale_hours):
                ready.append((key, task))

    ordered = []
    for tier in (own, ready, abandoned):
        ordered.extend(task for _, task in sorted(tier, key=lambda item: item[0]))
    return ordered


def next_task(derived: DerivedEpoch, actor: str, deps: DependencyIndex,
              now: datetime | None = None,
              stale_hours: int = DEFAULT_STALE_CLAIM_HOURS) -> Task | NoActionableTask:
    tasks = actionable_tasks(derived, actor, deps, now, stale_hours)
    if not tasks:
        return NoActionableTask(epoch_id=derived.epoch_id, warnings=tuple(derived.warnings))
    return tasks[0]


def next_work(derived: list[DerivedEpoch], actor: str, deps: DependencyIndex,
              archived_epoch_ids: set[str] | None = None, now: datetime | None = None,
              stale_hours: int = DEFAULT_STALE_CLAIM_HOURS):
    """Pick an epoch and a task, falling through to the next epoch when
    the best one has nothing actionable for this actor.

    Returns (DerivedEpoch, Task), NoEligibleEpochs or NoActionableTask
    (for the head epoch, when no eligible epoch has an actionable task).
    """
    sink = WarningSink()
    candidates = eligible_epochs(derived, archived_epoch_ids, sink)
    if not candidates:
        return NoEligibleEpochs(warnings=tuple(sink.items))

    for candidate in candidates:
        task = next_task(candidate, actor, deps, now, stale_hours)
        if task:
            logger.debug(f"Selected {task.id} in {candidate.epoch_id} for {actor}")
            return candidate, task
        logger.debug(f"{candidate.epoch_id} has no actionable task for {actor}, trying next epoch")

    head = candidates[0]
    return NoActionableTask(
        epoch_id=head.epoch_id,
        message="No eligible epoch has an actionable task; all are blocked, complete or claimed.",
        warnings=tuple(sink.items) + tuple(head.warnings),
    )
