"""
Work-log records.

One markdown file per task session under the work-logs directory, with
optional YAML front matter:

    ---
    task_id: T-014
    status: complete
    handoff_status: ready
    ---

Work logs belong to the actors that write them. Reading one never fails:
malformed front matter becomes a warning and the log is treated as
having no header.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from stigmergy.lib.constants import (
    EPOCH_ID_IN_TEXT,
    REASON_EPOCH_COMPLETED,
    REASON_STATUS_COMPLETE,
    REASON_TASK_COMPLETED,
    WORK_LOG_DONE_STATUSES,
)
from stigmergy.lib.epochparse import PlainLoader
from stigmergy.lib.types import WarningSink
from stigmergy.lib.validate import collect_errors

logger = logging.getLogger(__name__)


@dataclass
class WorkLog:
    path: Path
    task_id: str | None = None
    status: str | None = None
    handoff_status: str | None = None

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def epoch_id(self) -> str | None:
        """Epoch id embedded in the filename, e.g. task-EPOCH-007-T3.md"""
        match = EPOCH_ID_IN_TEXT.search(self.path.name)
        return match.group(0) if match else None


def _front_matter(text: str) -> str | None:
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return None
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            return "\n".join(lines[1:i])
    return None


def _scalar(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip().strip('"')
    return text or None


def read_work_log(path: Path, sink: WarningSink | None = None) -> WorkLog:
    """Read a work log's header fields."""
    sink = sink if sink is not None else WarningSink()
    log = WorkLog(path=Path(path))

    try:
        header = _front_matter(log.path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        sink.add("unreadable_work_log", f"Cannot read {log.filename}: {e}", subject=log.filename)
        return log
    if header is None:
        return log

    try:
        data = yaml.load(header, Loader=PlainLoader)
    except yaml.YAMLError as e:
        sink.add("malformed_work_log", f"Invalid front matter in {log.filename}: {e}", subject=log.filename)
        return log
    if not isinstance(data, dict):
        return log

    for error in collect_errors(data, "worklog"):
        sink.add("malformed_work_log", f"{log.filename}: {error}", subject=log.filename)

    log.task_id = _scalar(data.get("task_id"))
    log.status = _scalar(data.get("status"))
    log.handoff_status = _scalar(data.get("handoff_status"))
    return log


def list_work_logs(directory: Path, sink: WarningSink | None = None) -> list[WorkLog]:
    """All *.md work logs directly inside directory, sorted by filename."""
    directory = Path(directory)
    if not directory.is_dir():
        logger.debug(f"No work-logs directory at {directory}")
        return []
    return [read_work_log(p, sink) for p in sorted(directory.glob("*.md")) if p.is_file()]


def stale_reason(log: WorkLog, complete_task_ids: set[str], complete_epoch_ids: set[str]) -> str | None:
    """Why a work log is a hygiene candidate, or None if it isn't.

    Checked in order: the log's task is complete, the epoch named in its
    filename is complete, the log marks itself complete.
    """
    if log.task_id and log.task_id in complete_task_ids:
        return REASON_TASK_COMPLETED
    if log.epoch_id and log.epoch_id in complete_epoch_ids:
        return REASON_EPOCH_COMPLETED
    if log.status and log.status.lower() in WORK_LOG_DONE_STATUSES:
        return REASON_STATUS_COMPLETE
    return None
