"""Claim/lease manager.

Every operation is one read-verify-write cycle against the task store:
re-read and re-parse the live document under the store lock, verify the
task is still in a state that allows the operation, rewrite only the
changed field lines of that task, and replace the document atomically.

Results are typed values. A ClaimConflict means "re-run selection", never
"retry the same task". ParseError propagates before anything is written.
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from stigmergy.lib.constants import (
    DEFAULT_STALE_CLAIM_HOURS,
    STATUS_BLOCKED,
    STATUS_COMPLETE,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from stigmergy.lib.epochparse import Task, format_timestamp, parse_document, set_task_fields
from stigmergy.lib.store import DocumentStore, Snapshot, WriteConflict
from stigmergy.lib.types import ClaimConflict, NotFound, Ok
from stigmergy.workflow.derive import DependencyIndex, task_effective_status
from stigmergy.workflow.fsm import TaskClaimFSM
from stigmergy.workflow.scheduler import is_stale_claim

logger = logging.getLogger(__name__)

EVENT_CLAIMED = "claimed"
EVENT_RELEASED = "released"
EVENT_COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClaimManager:
    """Claim, release and complete tasks in one task document."""

    def __init__(self, store: DocumentStore,
                 archived_task_ids: Callable[[], set[str]] | None = None,
                 stale_hours: int = DEFAULT_STALE_CLAIM_HOURS,
                 clock: Callable[[], datetime] | None = None,
                 on_event: Callable[[str, str, str | None], None] | None = None):
        """
        Args:
            store: Task document store
            archived_task_ids: Returns ids already moved to the archive, which
                count as complete when resolving blocked_by
            stale_hours: Age after which a claim may be taken over
            clock: Returns the current time (UTC-aware)
            on_event: Optional callback(event, task_id, actor) after a write
        """
        self.store = store
        self.archived_task_ids = archived_task_ids or set
        self.stale_hours = stale_hours
        self.clock = clock or _utcnow
        self.on_event = on_event

    def _transact(self, task_id: str, verify):
        """Run verify(task, fsm, now) inside one locked read-verify-write cycle.

        verify returns (updates, result); updates of None means no write.
        Returns (result, written).
        """
        now = self.clock()

        def step(snapshot: Snapshot):
            doc = parse_document(snapshot.text)
            task = doc.find_task(task_id)
            if task is None:
                return None, (NotFound("task", task_id), False)

            deps = DependencyIndex(doc, self.archived_task_ids())
            fsm = TaskClaimFSM(task_id, task_effective_status(task, deps))
            updates, result = verify(task, fsm, now)
            if updates is None:
                return None, (result, False)

            new_doc = set_task_fields(doc, task_id, updates)
            return new_doc.render(), (Ok(new_doc.find_task(task_id)), True)

        return self.store.atomically(step)

    def _emit(self, event: str, task_id: str, actor: str | None) -> None:
        if self.on_event:
            self.on_event(event, task_id, actor)

    def claim(self, task_id: str, actor: str):
        """Claim a pending task, refresh an own claim, or take over a stale one.

        Returns:
            Ok(task) with the updated task, ClaimConflict, or NotFound
        """
        def verify(task: Task, fsm: TaskClaimFSM, now: datetime):
            if fsm.state == STATUS_COMPLETE:
                return None, ClaimConflict(task_id, "complete")
            if fsm.state == STATUS_BLOCKED:
                return None, ClaimConflict(task_id, "blocked")

            held_by_other = task.claimed_by and task.claimed_by != actor
            if held_by_other and not is_stale_claim(task, now, self.stale_hours):
                claimed_at = format_timestamp(task.claimed_at) if task.claimed_at else None
                return None, ClaimConflict(task_id, "claimed", holder=task.claimed_by, claimed_at=claimed_at)

            if fsm.state == STATUS_IN_PROGRESS:
                if task.claimed_by == actor:
                    fsm.resume()
                else:
                    logger.info(f"[CLAIM] {task_id}: taking over stale claim of {task.claimed_by or 'nobody'}")
                    fsm.reclaim()
            else:
                if held_by_other:
                    logger.info(f"[CLAIM] {task_id}: taking over stale claim of {task.claimed_by}")
                fsm.claim()

            updates = {
                "status": STATUS_IN_PROGRESS,
                "claimed_by": actor,
                "claimed_at": format_timestamp(now),
            }
            return updates, None

        try:
            result, written = self._transact(task_id, verify)
        except WriteConflict:
            return ClaimConflict(task_id, "document_changed")

        if written:
            logger.info(f"[CLAIM] {task_id} claimed by {actor}")
            self._emit(EVENT_CLAIMED, task_id, actor)
        else:
            logger.debug(f"[CLAIM] {task_id} not claimed by {actor}: {result}")
        return result

    def release(self, task_id: str, actor: str):
        """Hand an in_progress task back to pending.

        Only the holder may release, unless the claim is stale.
        """
        def verify(task: Task, fsm: TaskClaimFSM, now: datetime):
            if not fsm.can("release"):
                return None, ClaimConflict(task_id, "not_claimed")
            if task.claimed_by and task.claimed_by != actor and not is_stale_claim(task, now, self.stale_hours):
                return None, ClaimConflict(task_id, "claimed", holder=task.claimed_by)
            fsm.release()
            return {"status": STATUS_PENDING, "claimed_by": None, "claimed_at": None}, None

        result, written = self._transact(task_id, verify)
        if written:
            logger.info(f"[CLAIM] {task_id} released by {actor}")
            self._emit(EVENT_RELEASED, task_id, actor)
        return result

    def complete(self, task_id: str, actor: str | None = None):
        """Mark a task complete, stamping completed_date and clearing the claim.

        With an actor given, a fresh claim held by someone else is a conflict.
        Completing an already complete task is a no-op.
        """
        def verify(task: Task, fsm: TaskClaimFSM, now: datetime):
            if fsm.state == STATUS_COMPLETE:
                return None, Ok(task)
            if fsm.state == STATUS_BLOCKED:
                return None, ClaimConflict(task_id, "blocked")
            if actor and task.claimed_by and task.claimed_by != actor \
                    and not is_stale_claim(task, now, self.stale_hours):
                return None, ClaimConflict(task_id, "claimed", holder=task.claimed_by)
            fsm.complete()
            updates = {
                "status": STATUS_COMPLETE,
                "completed_date": now.astimezone(timezone.utc).date().isoformat(),
                "claimed_by": None,
                "claimed_at": None,
            }
            return updates, None

        result, written = self._transact(task_id, verify)
        if written:
            logger.info(f"[CLAIM] {task_id} completed" + (f" by {actor}" if actor else ""))
            self._emit(EVENT_COMPLETED, task_id, actor)
        return result
