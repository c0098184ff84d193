"""Hygiene and archival.

Propose, then apply. `build_report` only reads; nothing moves until a
caller archives an epoch or hands back an explicit disposition for each
work log.

Archiving an epoch is all-or-nothing: it needs at least one task and every
task complete. The epoch record and the standalone task records it
references are appended to the completed store first, then removed from
the active store. If the second write fails the epoch sits in both stores,
and archiving it again only finishes the removal, provided the archived
records still match the active ones.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from stigmergy.lib.constants import STATUS_COMPLETE
from stigmergy.lib.epochparse import (
    EpochBlock,
    Prose,
    TaskBlock,
    TodoDocument,
    parse_document,
    remove_epoch,
    stamp_epoch_text,
)
from stigmergy.lib.store import DocumentStore, hold
from stigmergy.lib.types import NotArchivable, NotFound, Ok, ValidationWarning, WarningSink
from stigmergy.lib.worklogs import WorkLog, list_work_logs, stale_reason
from stigmergy.workflow.derive import DerivedEpoch, derive_all

logger = logging.getLogger(__name__)

COMPLETED_HEADER = "# Completed Tasks\n"

DISPOSITION_DELETE = "delete"
DISPOSITION_ARCHIVE = "archive"
DISPOSITION_KEEP = "keep"
DISPOSITIONS = (DISPOSITION_DELETE, DISPOSITION_ARCHIVE, DISPOSITION_KEEP)


@dataclass
class ArchiveIndex:
    """Identifiers already moved to the completed store."""
    task_ids: set[str] = field(default_factory=set)
    epoch_ids: set[str] = field(default_factory=set)


def archive_index(completed_text: str) -> ArchiveIndex:
    if not completed_text.strip():
        return ArchiveIndex()
    doc = parse_document(completed_text, strict=False)
    return ArchiveIndex(
        task_ids={t.id for t in doc.all_tasks()},
        epoch_ids={e.epoch_id for e in doc.epochs if not e.flat},
    )


@dataclass
class StaleWorkLog:
    path: Path
    reason: str
    task_id: str | None = None
    status: str | None = None
    handoff_status: str | None = None

    @property
    def filename(self) -> str:
        return self.path.name

    def to_dict(self) -> dict:
        return {
            "file": self.filename,
            "reason": self.reason,
            "task_id": self.task_id,
            "status": self.status,
            "handoff_status": self.handoff_status,
        }


@dataclass
class HygieneReport:
    archivable_epochs: list[str] = field(default_factory=list)
    stale_work_logs: list[StaleWorkLog] = field(default_factory=list)
    orphan_tasks: list[str] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "archivable_epochs": list(self.archivable_epochs),
            "stale_work_logs": [w.to_dict() for w in self.stale_work_logs],
            "orphan_tasks": list(self.orphan_tasks),
            "warnings": [w.message for w in self.warnings],
        }


def is_archivable(derived: DerivedEpoch) -> bool:
    if derived.epoch.flat or not derived.epoch.tasks:
        return False
    if derived.effective_status != STATUS_COMPLETE:
        return False
    return all(status == STATUS_COMPLETE for status in derived.task_status.values())


def yaml_warnings(doc: TodoDocument) -> list[ValidationWarning]:
    """Tab characters inside YAML blocks (valid markdown, broken YAML indentation)."""
    sink = WarningSink()
    for node in doc.nodes:
        in_yaml = isinstance(node, (EpochBlock, TaskBlock)) or (isinstance(node, Prose) and node.kind == "yaml")
        if not in_yaml:
            continue
        for offset, line in enumerate(node.text.splitlines()):
            if "\t" in line:
                sink.add("yaml_tab", f"Tab character in YAML block at line {node.line + offset}",
                         line=node.line + offset)
    return sink.items


def find_stale_work_logs(logs: list[WorkLog], complete_task_ids: set[str],
                         complete_epoch_ids: set[str]) -> list[StaleWorkLog]:
    stale = []
    for log in logs:
        reason = stale_reason(log, complete_task_ids, complete_epoch_ids)
        if reason:
            stale.append(StaleWorkLog(path=log.path, reason=reason, task_id=log.task_id,
                                      status=log.status, handoff_status=log.handoff_status))
    return stale


def build_report(doc: TodoDocument, archive: ArchiveIndex, work_logs_dir: Path) -> HygieneReport:
    derived = derive_all(doc, archive.task_ids, archive.epoch_ids)
    archivable = [d for d in derived if is_archivable(d)]

    complete_task_ids = set(archive.task_ids)
    complete_epoch_ids = set(archive.epoch_ids)
    for d in archivable:
        complete_epoch_ids.add(d.epoch_id)
        complete_task_ids.update(t.id for t in d.epoch.tasks)

    sink = WarningSink(list(doc.warnings))
    logs = list_work_logs(work_logs_dir, sink)

    for task in doc.orphan_tasks:
        sink.add("orphan_task", f"{task.id} is not referenced by any epoch", subject=task.id, line=task.line)
    for d in derived:
        sink.extend(d.warnings)
    sink.items.extend(yaml_warnings(doc))

    return HygieneReport(
        archivable_epochs=[d.epoch_id for d in archivable],
        stale_work_logs=find_stale_work_logs(logs, complete_task_ids, complete_epoch_ids),
        orphan_tasks=[t.id for t in doc.orphan_tasks],
        warnings=sink.items,
    )


def _with_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


def render_archive_section(epoch_id: str, title: str, epoch_text: str, task_texts: list[str]) -> str:
    parts = [f"\n## {epoch_id}: {title}\n\n" if title else f"\n## {epoch_id}\n\n", "```yaml\n",
             _with_newline(epoch_text)]
    for text in task_texts:
        parts.append("---\n")
        parts.append(_with_newline(text))
    parts.append("```\n")
    return "".join(parts)


def _epoch_records(doc: TodoDocument, epoch_id: str) -> tuple[dict, dict[str, dict]]:
    """Epoch record (without completed_date) and its standalone task records by id."""
    epoch = doc.get_epoch(epoch_id)
    task_ids = {t.id for t in epoch.tasks} if epoch else set()
    epoch_record: dict = {}
    task_records: dict[str, dict] = {}
    for node in doc.nodes:
        if isinstance(node, EpochBlock) and node.epoch_id == epoch_id and not epoch_record:
            epoch_record = {k: v for k, v in node.record.items() if k != "completed_date"}
        elif isinstance(node, TaskBlock) and node.task_id in task_ids:
            task_records[node.task_id] = node.record
    return epoch_record, task_records


def archive_epoch(active: DocumentStore, completed: DocumentStore, epoch_id: str,
                  today: date | None = None):
    """Move a fully complete epoch from the active store to the completed store.

    Returns:
        Ok(epoch_id), NotArchivable or NotFound

    Raises:
        ParseError: if either document is malformed (nothing written)
        StoreError: on lock or write failure
    """
    today = today or date.today()

    with hold(active, completed):
        snapshot = active.load()
        doc = parse_document(snapshot.text)
        epoch = doc.get_epoch(epoch_id)
        if epoch is None or epoch.flat:
            return NotFound("epoch", epoch_id)

        completed_snapshot = completed.load()
        archive = archive_index(completed_snapshot.text)
        derived = next(d for d in derive_all(doc, archive.task_ids, archive.epoch_ids) if d.epoch_id == epoch_id)

        if not epoch.tasks:
            return NotArchivable(epoch_id, "no_tasks")
        incomplete = tuple(tid for tid, status in derived.task_status.items() if status != STATUS_COMPLETE)
        if incomplete:
            return NotArchivable(epoch_id, "incomplete_tasks", incomplete)
        if derived.effective_status != STATUS_COMPLETE:
            return NotArchivable(epoch_id, "status_not_complete")

        new_doc, removed = remove_epoch(doc, epoch_id)

        if epoch_id in archive.epoch_ids:
            archived_doc = parse_document(completed_snapshot.text, strict=False)
            if _epoch_records(archived_doc, epoch_id) != _epoch_records(doc, epoch_id):
                logger.warning(f"[ARCHIVE] {epoch_id} in {completed.name} holds different records, refusing")
                return NotArchivable(epoch_id, "already_archived")
            logger.warning(f"[ARCHIVE] {epoch_id} already in {completed.name}, finishing removal only")
        else:
            stamped = stamp_epoch_text(removed.epoch_text, {"completed_date": today.isoformat()})
            base = completed_snapshot.text or COMPLETED_HEADER
            section = render_archive_section(epoch_id, epoch.title, stamped, removed.task_texts)
            completed.commit(completed_snapshot, _with_newline(base) + section)

        active.commit(snapshot, new_doc.render())

    logger.info(f"[ARCHIVE] {epoch_id} archived with {len(epoch.tasks)} tasks")
    return Ok(epoch_id)


@dataclass
class DispositionResult:
    filename: str
    action: str
    applied: bool
    detail: str = ""


def apply_dispositions(report: HygieneReport, dispositions: dict[str, str],
                       archive_dir: Path) -> list[DispositionResult]:
    """Apply an explicit disposition to each proposed work log.

    Only work logs listed as candidates in report are touched; anything
    else is refused.

    Raises:
        ValueError: on an unknown disposition (before anything is applied)
    """
    for filename, action in dispositions.items():
        if action not in DISPOSITIONS:
            raise ValueError(f"Unknown disposition '{action}' for {filename} (expected one of {DISPOSITIONS})")

    candidates = {w.filename: w for w in report.stale_work_logs}
    results = []
    for filename, action in dispositions.items():
        candidate = candidates.get(filename)
        if candidate is None:
            logger.warning(f"[HYGIENE] Refusing {action} for {filename}: not a hygiene candidate")
            results.append(DispositionResult(filename, action, False, "not a candidate"))
            continue

        if action == DISPOSITION_KEEP:
            results.append(DispositionResult(filename, action, True))
            continue

        if not candidate.path.exists():
            results.append(DispositionResult(filename, action, False, "file no longer exists"))
            continue

        if action == DISPOSITION_DELETE:
            candidate.path.unlink()
            detail = ""
        else:
            archive_dir.mkdir(parents=True, exist_ok=True)
            target = archive_dir / filename
            shutil.move(str(candidate.path), str(target))
            detail = str(target)

        logger.info(f"[HYGIENE] {action} {filename} ({candidate.reason})")
        results.append(DispositionResult(filename, action, True, detail))

    return results
