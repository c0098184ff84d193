"""
Board: the coordination operations for one workspace.

Wires the configured document stores to the engine. Reads take a fresh
snapshot per call; writes go through the read-verify-write cycles in
claims, hygiene and linker.

Usage:
    from stigmergy.board import Board

    board = Board.from_root(Path("."))
    work = board.next_work("my-session/worker-1")
    if work:
        epoch, task = work
        board.claim(task.id, "my-session/worker-1")
"""

import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable

from stigmergy import notifications
from stigmergy.lib.config import CoordConfig, load_config
from stigmergy.lib.epochparse import TodoDocument, parse_document
from stigmergy.lib.identity import ActorIdentity, parse_identity
from stigmergy.lib.store import DocumentStore, FileStore
from stigmergy.lib.storyparse import StoryDocument, next_story_id, parse_stories
from stigmergy.lib.types import NotFound, ValidationWarning, WarningSink
from stigmergy.workflow import hygiene, linker, scheduler
from stigmergy.workflow.claims import ClaimManager
from stigmergy.workflow.derive import DependencyIndex, DerivedEpoch, EpochMetrics, derive_all

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _actor_value(actor: str | ActorIdentity) -> str:
    if isinstance(actor, ActorIdentity):
        return actor.value
    return parse_identity(actor).value


class Board:
    """Consumer-facing operations over a task, archive and story document."""

    def __init__(self, config: CoordConfig,
                 todos: DocumentStore | None = None,
                 completed: DocumentStore | None = None,
                 stories: DocumentStore | None = None,
                 clock: Callable[[], datetime] | None = None):
        self.config = config
        self.todos = todos or FileStore(config.todos_path, config.lock_timeout)
        self.completed = completed or FileStore(config.completed_path, config.lock_timeout)
        self.stories = stories or FileStore(config.stories_path, config.lock_timeout)
        self.clock = clock or _utcnow
        self.claims = ClaimManager(
            self.todos,
            archived_task_ids=lambda: self._archive().task_ids,
            stale_hours=config.stale_claim_hours,
            clock=self.clock,
            on_event=self._on_task_event,
        )

    @classmethod
    def from_root(cls, root: Path) -> "Board":
        return cls(load_config(root))

    # --- Snapshots ---

    def _document(self) -> TodoDocument:
        return parse_document(self.todos.load().text)

    def _archive(self) -> hygiene.ArchiveIndex:
        return hygiene.archive_index(self.completed.load().text)

    def _stories(self) -> StoryDocument:
        return parse_stories(self.stories.load().text)

    def _derived(self) -> tuple[TodoDocument, hygiene.ArchiveIndex, list[DerivedEpoch]]:
        doc = self._document()
        archive = self._archive()
        return doc, archive, derive_all(doc, archive.task_ids, archive.epoch_ids)

    def _on_task_event(self, event: str, task_id: str, actor: str | None) -> None:
        if self.config.notify:
            notifications.dispatch_task_event(event, task_id, actor)

    # --- Selection ---

    def derive_all(self) -> list[DerivedEpoch]:
        return self._derived()[2]

    def next_epoch(self):
        """Best epoch to start or resume, or NoEligibleEpochs."""
        doc, archive, derived = self._derived()
        return scheduler.next_epoch(derived, archive.epoch_ids, WarningSink(list(doc.warnings)))

    def next_task(self, epoch_id: str, actor: str):
        """Best task for actor within one epoch, NoActionableTask, or NotFound."""
        actor = _actor_value(actor)
        doc, archive, derived = self._derived()
        target = next((d for d in derived if d.epoch_id == epoch_id), None)
        if target is None:
            return NotFound("epoch", epoch_id)
        deps = DependencyIndex(doc, archive.task_ids, archive.epoch_ids)
        return scheduler.next_task(target, actor, deps, self.clock(), self.config.stale_claim_hours)

    def next_work(self, actor: str):
        """(DerivedEpoch, Task) across epochs, or NoEligibleEpochs / NoActionableTask."""
        actor = _actor_value(actor)
        doc, archive, derived = self._derived()
        deps = DependencyIndex(doc, archive.task_ids, archive.epoch_ids)
        return scheduler.next_work(derived, actor, deps, archive.epoch_ids, self.clock(),
                                   self.config.stale_claim_hours)

    # --- Claims ---

    def claim(self, task_id: str, actor: str):
        return self.claims.claim(task_id, _actor_value(actor))

    def release(self, task_id: str, actor: str):
        return self.claims.release(task_id, _actor_value(actor))

    def complete(self, task_id: str, actor: str | None = None):
        return self.claims.complete(task_id, _actor_value(actor) if actor else None)

    # --- Reporting ---

    def list_epochs(self) -> list[dict]:
        rows = []
        for d in self.derive_all():
            rows.append({
                "epoch_id": d.epoch_id,
                "title": d.epoch.title,
                "priority": d.epoch.priority,
                "status": d.effective_status,
                "derived_status": d.derived_status,
                "user_story": d.epoch.user_story,
                **d.metrics.to_dict(),
            })
        return rows

    def epoch_metrics(self, epoch_id: str) -> EpochMetrics | NotFound:
        for d in self.derive_all():
            if d.epoch_id == epoch_id:
                return d.metrics
        return NotFound("epoch", epoch_id)

    def validate(self) -> list[ValidationWarning]:
        """Structural warnings for the task document. Never writes."""
        doc, archive, derived = self._derived()
        sink = WarningSink(list(doc.warnings))
        deps = DependencyIndex(doc, archive.task_ids, archive.epoch_ids)
        for task in doc.all_tasks():
            deps.unresolved(task, sink)
        for d in derived:
            sink.extend(w for w in d.warnings if w.code != "unknown_dependency")
        for task in doc.orphan_tasks:
            sink.add("orphan_task", f"{task.id} is not referenced by any epoch", subject=task.id, line=task.line)
        sink.items.extend(hygiene.yaml_warnings(doc))
        return sink.items

    def hygiene_report(self) -> hygiene.HygieneReport:
        return hygiene.build_report(self._document(), self._archive(), self.config.work_logs_dir)

    def archive(self, epoch_id: str):
        result = hygiene.archive_epoch(self.todos, self.completed, epoch_id, self.today())
        if result and self.config.notify:
            notifications.notify_archived(epoch_id, len(self._archived_epoch_tasks(epoch_id)))
        return result

    def _archived_epoch_tasks(self, epoch_id: str) -> list:
        doc = parse_document(self.completed.load().text, strict=False)
        epoch = doc.get_epoch(epoch_id)
        return epoch.tasks if epoch else []

    def apply_work_log_dispositions(self, dispositions: dict[str, str]) -> list[hygiene.DispositionResult]:
        """Apply delete/archive/keep to work logs, re-checking candidacy first."""
        report = self.hygiene_report()
        return hygiene.apply_dispositions(report, dispositions, self.config.work_log_archive_dir)

    # --- Stories ---

    def link(self, story_id: str, epoch_id: str):
        return linker.link(self.stories, self.todos, story_id, epoch_id)

    def sync_report(self) -> linker.SyncReport:
        return linker.sync_report(self._stories(), self._document(), self._archive().epoch_ids)

    def next_story_id(self) -> str:
        return next_story_id(self._stories())

    def story_links(self) -> list[dict]:
        return linker.story_links(self._stories())

    def today(self) -> date:
        return self.clock().astimezone(timezone.utc).date()
