"""
ToDos.md parser.

Extracts epochs and tasks from the ```yaml fenced blocks of a task
document and keeps every byte of the source, so a document that is
parsed and rendered again comes back identical. Writers never re-emit a
record from its parsed form: they rewrite the individual field lines they
change inside the record's own source text and re-parse the result.

A document is a flat list of nodes:

    Prose       free text, fence delimiters, `---` separators, and YAML
                segments that are not epoch or task records
    EpochBlock  one YAML segment holding an epoch (and its inline tasks)
    TaskBlock   one YAML segment holding a standalone task record

Epochs list their tasks either inline:

    epoch_id: EPOCH-003
    tasks:
      - id: T-001
        title: Write parser
        status: pending

or by reference to standalone task records elsewhere in the document:

    id: EPOCH-003
    tasks:
      - T-001 (parser)
"""

import json
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone

import yaml

from stigmergy.lib.constants import (
    DEFAULT_PRIORITY,
    EPOCH_ID_PATTERN,
    FLAT_EPOCH_ID,
    PRIORITY_ORDER,
    STATUS_PENDING,
    TEMPLATE_ID_PATTERN,
    UNNUMBERED_SORT_KEY,
    VALID_STATUSES,
)
from stigmergy.lib.types import ParseError, ValidationWarning, WarningSink
from stigmergy.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)

FENCE_OPEN_RE = re.compile(r'^```ya?ml\s*$')
FENCE_CLOSE_RE = re.compile(r'^```\s*$')
SEPARATOR_RE = re.compile(r'^---\s*$')
TASKS_KEY_RE = re.compile(r'^tasks:\s*(#.*)?$')
ITEM_RE = re.compile(r'^(\s*)-(\s+|$)')
TASK_REF_RE = re.compile(r'^\s*([A-Za-z][A-Za-z0-9_.-]*)')
HEADING_RE = re.compile(r'^#{1,6}\s')


class PlainLoader(yaml.SafeLoader):
    """SafeLoader that leaves timestamps and dates as strings."""


PlainLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != 'tag:yaml.org,2002:timestamp']
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass
class Task:
    id: str
    title: str
    status: str                        # Normalised stored status (advisory)
    claimed_by: str = ""
    claimed_at: datetime | None = None
    blocked_by: tuple[str, ...] = ()
    completed_date: str | None = None
    description: str | None = None
    epoch_id: str | None = None        # Enclosing epoch, None for orphans
    line: int = 0                      # 1-based line of the record


@dataclass
class Epoch:
    epoch_id: str
    title: str
    status: str | None                 # Explicit status, None when derived
    priority: str
    user_story: str | None = None
    blocked_by: tuple[str, ...] = ()
    completed_date: str | None = None
    tasks: list[Task] = field(default_factory=list)
    line: int = 0
    flat: bool = False                 # Synthetic epoch wrapping flat tasks


@dataclass
class Prose:
    text: str
    line: int
    kind: str = "text"                 # text, fence_open, fence_close, separator, yaml
    fence: int | None = None


@dataclass
class EpochBlock:
    text: str
    line: int
    epoch_id: str
    record: dict
    # task id -> (start, end, field column), line offsets inside text
    spans: dict[str, tuple[int, int, int]] = field(default_factory=dict)
    fence: int | None = None


@dataclass
class TaskBlock:
    text: str
    line: int
    task_id: str
    record: dict
    fence: int | None = None


Node = Prose | EpochBlock | TaskBlock


@dataclass
class TodoDocument:
    nodes: list[Node]
    epochs: list[Epoch]
    orphan_tasks: list[Task]
    warnings: list[ValidationWarning]

    def render(self) -> str:
        return "".join(node.text for node in self.nodes)

    def get_epoch(self, epoch_id: str) -> Epoch | None:
        for epoch in self.epochs:
            if epoch.epoch_id == epoch_id:
                return epoch
        return None

    def all_tasks(self) -> list[Task]:
        tasks = [t for e in self.epochs for t in e.tasks]
        return tasks + list(self.orphan_tasks)

    def find_task(self, task_id: str) -> Task | None:
        for task in self.all_tasks():
            if task.id == task_id:
                return task
        return None


# --- Scalars ---


def parse_timestamp(value) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC.

    Raises:
        ValueError: if value is not a timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_scalar(value) -> str:
    """Render a value as a YAML scalar, quoting only when needed."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    text = str(value)
    if text == "":
        return '""'
    try:
        loaded = yaml.load(text, Loader=PlainLoader)
    except yaml.YAMLError:
        loaded = None
    if loaded == text and " #" not in text and ": " not in text:
        return text
    return json.dumps(text)


def _id_list(value) -> tuple[str, ...]:
    """blocked_by may be a YAML list or a comma-separated string."""
    if value is None:
        return ()
    if isinstance(value, list):
        items = [str(v) for v in value]
    else:
        items = str(value).strip().strip("[]").split(",")
    cleaned = [item.strip().strip('"').strip("'") for item in items]
    return tuple(item for item in cleaned if item)


def normalize_priority(raw, subject: str, sink: WarningSink, line: int | None = None) -> str:
    """Map a priority field to p0..p3, falling back to p2 with a warning."""
    if raw is None or raw == "":
        return DEFAULT_PRIORITY
    text = str(raw).strip().lower() if isinstance(raw, str) else None
    if text in PRIORITY_ORDER:
        return text
    message = f"Invalid priority '{raw}' on {subject}, treating as {DEFAULT_PRIORITY}"
    logger.warning(message)
    sink.add("invalid_priority", message, subject=subject, line=line)
    return DEFAULT_PRIORITY


def _normalize_status(raw, subject: str, sink: WarningSink, line: int,
                      fallback: str | None = STATUS_PENDING) -> str | None:
    if raw is None or raw == "":
        return None
    text = str(raw).strip().lower()
    if text in VALID_STATUSES:
        return text
    message = f"Unknown status '{raw}' on {subject}, treating as {fallback or 'derived'}"
    logger.warning(message)
    sink.add("unknown_status", message, subject=subject, line=line)
    return fallback


# --- Records ---


def _task_from_record(record: dict, line: int, sink: WarningSink, epoch_id: str | None) -> Task:
    task_id = str(record.get("id", "")).strip()
    if not task_id:
        raise ParseError("Task record without id", line=line, block=epoch_id)

    claimed_by = record.get("claimed_by")
    claimed_by = str(claimed_by).strip() if claimed_by is not None else ""

    claimed_at = None
    raw_claimed_at = record.get("claimed_at")
    if raw_claimed_at not in (None, ""):
        try:
            claimed_at = parse_timestamp(raw_claimed_at)
        except ValueError:
            raise ParseError(f"Unparseable claimed_at '{raw_claimed_at}' on {task_id}", line=line, block=epoch_id) from None

    if claimed_by and claimed_at is None:
        sink.add("claim_without_timestamp", f"{task_id} is claimed by {claimed_by} without claimed_at",
                 subject=task_id, line=line)

    completed = record.get("completed_date")
    description = record.get("description")

    return Task(
        id=task_id,
        title=str(record.get("title") or ""),
        status=_normalize_status(record.get("status"), task_id, sink, line) or STATUS_PENDING,
        claimed_by=claimed_by,
        claimed_at=claimed_at,
        blocked_by=_id_list(record.get("blocked_by")),
        completed_date=str(completed) if completed not in (None, "") else None,
        description=str(description).strip() if description else None,
        epoch_id=epoch_id,
        line=line,
    )


def _epoch_id_of(record: dict) -> str | None:
    """Epochs are written as `epoch_id: EPOCH-NNN` or `id: EPOCH-NNN`."""
    for key in ("epoch_id", "id"):
        value = record.get(key)
        if isinstance(value, str) and value.strip().startswith("EPOCH-"):
            return value.strip()
    return None


def _is_template(identifier: str) -> bool:
    return bool(TEMPLATE_ID_PATTERN.search(identifier))


def _locate_items(lines: list[str]) -> list[tuple[int, int, int]]:
    """Find the list items under the top-level `tasks:` key.

    Returns (start, end, field column) per item, as offsets into lines.
    """
    start = None
    for i, line in enumerate(lines):
        if TASKS_KEY_RE.match(line.rstrip("\r\n")):
            start = i + 1
            break
    if start is None:
        return []

    items = []
    item_indent = None
    current = None
    end = len(lines)

    for i in range(start, len(lines)):
        line = lines[i].rstrip("\r\n")
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        indent = len(line) - len(line.lstrip())
        match = ITEM_RE.match(line)

        if item_indent is None:
            if not match:
                end = i
                break
            item_indent = indent

        if indent < item_indent or (indent == item_indent and not match):
            end = i
            break

        if match and indent == item_indent:
            if current is not None:
                items.append((current[0], i, current[1]))
            current = (i, len(match.group(0)))

    if current is not None:
        items.append((current[0], end, current[1]))
    return items


def _load_yaml(body: str, line: int):
    try:
        return yaml.load(body, Loader=PlainLoader)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        problem = getattr(e, "problem", None) or str(e)
        at = line + mark.line if mark is not None else line
        raise ParseError(f"Invalid YAML: {problem}", line=at) from None


def _classify_segment(text: str, line: int, fence: int) -> Node:
    if not text.strip():
        return Prose(text=text, line=line, kind="yaml", fence=fence)

    record = _load_yaml(text, line)
    if not isinstance(record, dict):
        return Prose(text=text, line=line, kind="yaml", fence=fence)

    epoch_id = _epoch_id_of(record)
    if epoch_id:
        if _is_template(epoch_id):
            return Prose(text=text, line=line, kind="yaml", fence=fence)
        try:
            validate(record, "epoch")
        except ValidationError as e:
            raise ParseError(f"Invalid epoch record: {e}", line=line, block=epoch_id) from None
        return EpochBlock(text=text, line=line, epoch_id=epoch_id, record=record, fence=fence)

    if "id" in record and "title" in record:
        task_id = str(record["id"]).strip()
        if _is_template(task_id):
            return Prose(text=text, line=line, kind="yaml", fence=fence)
        try:
            validate(record, "task")
        except ValidationError as e:
            raise ParseError(f"Invalid task record: {e}", line=line, block=task_id) from None
        return TaskBlock(text=text, line=line, task_id=task_id, record=record, fence=fence)

    return Prose(text=text, line=line, kind="yaml", fence=fence)


def _split_nodes(text: str) -> list[Node]:
    """Split source text into nodes. Pure segmentation, no interpretation."""
    lines = text.splitlines(keepends=True)
    nodes: list[Node] = []
    prose: list[str] = []
    prose_line = 1
    in_comment = False
    fence_count = 0
    i = 0

    def flush_prose(next_line: int):
        nonlocal prose, prose_line
        if prose:
            nodes.append(Prose(text="".join(prose), line=prose_line))
        prose = []
        prose_line = next_line

    while i < len(lines):
        raw = lines[i]
        line = raw.rstrip("\r\n")

        # Fences inside HTML comments are commented-out examples
        if in_comment:
            if "-->" in line:
                in_comment = False
            prose.append(raw)
            i += 1
            continue
        if "<!--" in line and "-->" not in line.split("<!--", 1)[1]:
            in_comment = True
            prose.append(raw)
            i += 1
            continue

        if not FENCE_OPEN_RE.match(line):
            prose.append(raw)
            i += 1
            continue

        open_line = i + 1
        flush_prose(open_line)
        fence = fence_count
        fence_count += 1
        nodes.append(Prose(text=raw, line=open_line, kind="fence_open", fence=fence))

        segment: list[str] = []
        segment_line = open_line + 1
        i += 1
        closed = False
        while i < len(lines):
            raw = lines[i]
            line = raw.rstrip("\r\n")
            if FENCE_CLOSE_RE.match(line):
                if segment:
                    nodes.append(_classify_segment("".join(segment), segment_line, fence))
                nodes.append(Prose(text=raw, line=i + 1, kind="fence_close", fence=fence))
                closed = True
                i += 1
                break
            if SEPARATOR_RE.match(line):
                if segment:
                    nodes.append(_classify_segment("".join(segment), segment_line, fence))
                nodes.append(Prose(text=raw, line=i + 1, kind="separator", fence=fence))
                segment = []
                segment_line = i + 2
            else:
                segment.append(raw)
            i += 1

        if not closed:
            raise ParseError("Unterminated yaml block", line=open_line)
        prose_line = i + 1

    flush_prose(len(lines) + 1)
    return nodes


def _record_line(base: int, span: tuple[int, int, int] | None) -> int:
    return base + span[0] if span else base


def parse_document(text: str, strict: bool = True) -> TodoDocument:
    """Parse a task document into nodes and a resolved epoch/task graph.

    Args:
        text: Full document text
        strict: Raise on duplicate identifiers (False downgrades them to
            warnings, used for the archive which legitimately accumulates)

    Raises:
        ParseError: on unterminated blocks, invalid YAML, schema violations,
            unparseable scalars, or duplicate identifiers (strict mode)
    """
    sink = WarningSink()
    nodes = _split_nodes(text)

    def duplicate(message: str, line: int, block: str | None = None):
        if strict:
            raise ParseError(message, line=line, block=block)
        sink.add("duplicate_id", message, subject=block, line=line)

    # Standalone task records first, epochs may reference them
    standalone: dict[str, Task] = {}
    for node in nodes:
        if isinstance(node, TaskBlock):
            if node.task_id in standalone:
                duplicate(f"Duplicate task id {node.task_id}", node.line, node.task_id)
                continue
            standalone[node.task_id] = _task_from_record(node.record, node.line, sink, None)

    epochs: list[Epoch] = []
    seen_epochs: set[str] = set()
    seen_tasks: set[str] = set()
    referenced: dict[str, str] = {}

    for node in nodes:
        if not isinstance(node, EpochBlock):
            continue
        record = node.record
        if node.epoch_id in seen_epochs:
            duplicate(f"Duplicate epoch id {node.epoch_id}", node.line, node.epoch_id)
            continue
        seen_epochs.add(node.epoch_id)

        raw_tasks = record.get("tasks") or []
        lines = node.text.splitlines(keepends=True)
        items = _locate_items(lines)
        inline_count = sum(1 for t in raw_tasks if isinstance(t, dict))
        if len(items) != len(raw_tasks):
            # Flow-style lists can be read but not edited in place
            items = []

        tasks: list[Task] = []
        node.spans = {}
        for index, raw_task in enumerate(raw_tasks):
            span = items[index] if items else None
            if isinstance(raw_task, dict):
                try:
                    validate(raw_task, "task")
                except ValidationError as e:
                    raise ParseError(f"Invalid task record: {e}", line=_record_line(node.line, span),
                                     block=node.epoch_id) from None
                task = _task_from_record(raw_task, _record_line(node.line, span), sink, node.epoch_id)
                if task.id in seen_tasks or task.id in standalone:
                    duplicate(f"Duplicate task id {task.id} in {node.epoch_id}", task.line, node.epoch_id)
                    continue
                seen_tasks.add(task.id)
                if span:
                    node.spans[task.id] = span
                tasks.append(task)
                continue

            ref = TASK_REF_RE.match(str(raw_task))
            if not ref:
                continue
            ref_id = ref.group(1)
            if ref_id in referenced:
                duplicate(f"Task {ref_id} referenced by both {referenced[ref_id]} and {node.epoch_id}",
                          _record_line(node.line, span), node.epoch_id)
                continue
            if ref_id not in standalone:
                sink.add("unresolved_task_ref", f"{node.epoch_id} references unknown task {ref_id}",
                         subject=node.epoch_id, line=_record_line(node.line, span))
                continue
            referenced[ref_id] = node.epoch_id
            tasks.append(replace(standalone[ref_id], epoch_id=node.epoch_id))

        if inline_count and not node.spans:
            logger.debug(f"{node.epoch_id}: inline tasks not editable in place (non-block list layout)")

        completed = record.get("completed_date")
        user_story = record.get("user_story")
        epochs.append(Epoch(
            epoch_id=node.epoch_id,
            title=str(record.get("title") or ""),
            status=_normalize_status(record.get("status"), node.epoch_id, sink, node.line, fallback=None),
            priority=normalize_priority(record.get("priority"), node.epoch_id, sink, node.line),
            user_story=str(user_story).strip() if user_story else None,
            blocked_by=_id_list(record.get("blocked_by")),
            completed_date=str(completed) if completed else None,
            tasks=tasks,
            line=node.line,
        ))

    unreferenced = [t for tid, t in standalone.items() if tid not in referenced]
    orphans: list[Task] = []
    if unreferenced and not epochs:
        epochs.append(Epoch(
            epoch_id=FLAT_EPOCH_ID,
            title="Tasks",
            status=None,
            priority=DEFAULT_PRIORITY,
            tasks=[replace(t, epoch_id=FLAT_EPOCH_ID) for t in unreferenced],
            line=unreferenced[0].line,
            flat=True,
        ))
    else:
        orphans = unreferenced

    return TodoDocument(nodes=nodes, epochs=epochs, orphan_tasks=orphans, warnings=sink.items)


def epoch_number(epoch_id: str) -> int:
    """Numeric suffix used as the stable tie-break between epochs."""
    match = EPOCH_ID_PATTERN.match(epoch_id)
    return int(match.group(1)) if match else UNNUMBERED_SORT_KEY


# --- Surgical edits ---


def _field_re(name: str, column: int, first: bool) -> re.Pattern:
    if first:
        return re.compile(rf'^(\s*-\s+){re.escape(name)}:(.*)$')
    return re.compile(rf'^( {{{column}}}){re.escape(name)}:(.*)$')


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    return "\n" if line.endswith("\n") else ""


def _edit_fields(lines: list[str], start: int, end: int, column: int,
                 updates: dict, dashed: bool, insert_before: str | None = None) -> list[str]:
    """Rewrite scalar field lines of one record in place.

    A value of None removes the field. Missing fields are inserted after
    the last field written in this edit, else after `status:`, else after
    the first line of the record (or before `insert_before` when given).
    """
    lines = list(lines)
    while end > start + 1 and not lines[end - 1].strip():
        end -= 1

    anchor = None
    for name, value in updates.items():
        found = None
        for i in range(start, end):
            stripped = lines[i].rstrip("\r\n")
            pattern = _field_re(name, column, first=dashed and i == start)
            match = pattern.match(stripped)
            if match:
                found = (i, match.group(1))
                break

        if found is not None:
            i, prefix = found
            ending = _line_ending(lines[i])
            if value is None and not (dashed and i == start):
                del lines[i]
                end -= 1
                if anchor is not None and anchor > i:
                    anchor -= 1
                continue
            rendered = '""' if value is None else format_scalar(value)
            lines[i] = f"{prefix}{name}: {rendered}{ending}"
            anchor = i
            continue

        if value is None:
            continue

        if anchor is None:
            anchor = _insert_anchor(lines, start, end, column, dashed, insert_before)
        if anchor >= start and not lines[anchor].endswith("\n"):
            lines[anchor] += "\n"
        new_line = f"{' ' * column}{name}: {format_scalar(value)}\n"
        if anchor < start:
            lines.insert(start, new_line)
            anchor = start
        else:
            lines.insert(anchor + 1, new_line)
            anchor += 1
        end += 1

    return lines


def _insert_anchor(lines: list[str], start: int, end: int, column: int,
                   dashed: bool, insert_before: str | None) -> int:
    status_re = _field_re("status", column, first=False)
    for i in range(start, end):
        if status_re.match(lines[i].rstrip("\r\n")) or \
                (dashed and i == start and _field_re("status", column, True).match(lines[i].rstrip("\r\n"))):
            return i
    if insert_before:
        before_re = re.compile(rf'^{re.escape(insert_before)}:')
        for i in range(start, end):
            if before_re.match(lines[i]):
                return i - 1
    return start if dashed else end - 1


def _replace_node(doc: TodoDocument, index: int, new_text: str, strict: bool = True) -> TodoDocument:
    texts = [node.text for node in doc.nodes]
    texts[index] = new_text
    return parse_document("".join(texts), strict=strict)


def set_task_fields(doc: TodoDocument, task_id: str, updates: dict) -> TodoDocument:
    """Return a new document with the given scalar fields of one task rewritten.

    Raises:
        KeyError: if the task is not in the document
        ParseError: if the task's layout can't be edited in place, or the
            result no longer parses
    """
    for index, node in enumerate(doc.nodes):
        if isinstance(node, TaskBlock) and node.task_id == task_id:
            lines = node.text.splitlines(keepends=True)
            new_lines = _edit_fields(lines, 0, len(lines), 0, updates, dashed=False)
            return _replace_node(doc, index, "".join(new_lines))
        if isinstance(node, EpochBlock) and task_id in {
                str(t.get("id", "")).strip() for t in (node.record.get("tasks") or []) if isinstance(t, dict)}:
            span = node.spans.get(task_id)
            if span is None:
                raise ParseError(f"Cannot edit {task_id} in place: tasks must be a block list",
                                 line=node.line, block=node.epoch_id)
            start, end, column = span
            lines = node.text.splitlines(keepends=True)
            new_lines = _edit_fields(lines, start, end, column, updates, dashed=True)
            return _replace_node(doc, index, "".join(new_lines))
    raise KeyError(task_id)


def stamp_epoch_text(text: str, updates: dict) -> str:
    """Rewrite top-level scalar fields of an epoch block's source text."""
    lines = text.splitlines(keepends=True)
    return "".join(_edit_fields(lines, 0, len(lines), 0, updates, dashed=False, insert_before="tasks"))


def set_epoch_fields(doc: TodoDocument, epoch_id: str, updates: dict) -> TodoDocument:
    """Return a new document with top-level fields of one epoch rewritten.

    Raises:
        KeyError: if the epoch is not in the document
    """
    for index, node in enumerate(doc.nodes):
        if isinstance(node, EpochBlock) and node.epoch_id == epoch_id:
            return _replace_node(doc, index, stamp_epoch_text(node.text, updates))
    raise KeyError(epoch_id)


# --- Removal ---


@dataclass
class RemovedEpoch:
    epoch_text: str
    task_texts: list[str]


def _trim_heading(text: str, epoch_id: str) -> str:
    """Drop a trailing markdown heading that names the removed epoch."""
    lines = text.splitlines(keepends=True)
    last = len(lines) - 1
    while last >= 0 and not lines[last].strip():
        last -= 1
    if last >= 0 and HEADING_RE.match(lines[last]) and epoch_id in lines[last]:
        return "".join(lines[:last])
    return text


def remove_epoch(doc: TodoDocument, epoch_id: str) -> tuple[TodoDocument, RemovedEpoch]:
    """Remove an epoch record and the standalone task records it references.

    Fences left without any record are removed whole, together with a
    heading directly above them that names the epoch.

    Raises:
        KeyError: if the epoch is not in the document
    """
    epoch = doc.get_epoch(epoch_id)
    target = next((i for i, n in enumerate(doc.nodes)
                   if isinstance(n, EpochBlock) and n.epoch_id == epoch_id), None)
    if epoch is None or target is None:
        raise KeyError(epoch_id)

    inline_ids = set(doc.nodes[target].spans) | {
        str(t.get("id", "")).strip() for t in (doc.nodes[target].record.get("tasks") or []) if isinstance(t, dict)}
    ref_ids = {t.id for t in epoch.tasks} - inline_ids
    removed = {target} | {i for i, n in enumerate(doc.nodes)
                          if isinstance(n, TaskBlock) and n.task_id in ref_ids}

    nodes = doc.nodes
    drop = set(removed)
    for fence in {nodes[i].fence for i in removed}:
        members = [i for i, n in enumerate(nodes) if n.fence == fence]
        body = [i for i in members if not (isinstance(nodes[i], Prose)
                                           and nodes[i].kind in ("fence_open", "fence_close", "separator"))]
        remaining = [i for i in body if i not in removed and nodes[i].text.strip()]
        if not remaining:
            drop.update(members)
            continue
        # Keep the fence, drop one separator per removed record
        for i in sorted(removed):
            if nodes[i].fence != fence:
                continue
            for j in (i - 1, i + 1):
                if 0 <= j < len(nodes) and isinstance(nodes[j], Prose) and nodes[j].kind == "separator" \
                        and nodes[j].fence == fence and j not in drop:
                    drop.add(j)
                    break

    texts = []
    for i, node in enumerate(nodes):
        if i in drop:
            continue
        if isinstance(node, Prose) and node.kind == "text" and (i + 1) in drop \
                and isinstance(nodes[i + 1], Prose) and nodes[i + 1].kind == "fence_open":
            texts.append(_trim_heading(node.text, epoch_id))
            continue
        texts.append(node.text)

    removed_epoch = RemovedEpoch(
        epoch_text=nodes[target].text,
        task_texts=[nodes[i].text for i in sorted(removed) if i != target],
    )
    return parse_document("".join(texts)), removed_epoch
