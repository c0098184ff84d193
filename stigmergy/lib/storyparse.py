"""
UserStories.md parser.

Stories are heading-delimited markdown sections:

    #### US-001: Claim a task

    > As a **worker agent**, I want **to claim a task** so that **no one else duplicates it**.

    **Implemented in:** EPOCH-003

    **Status:** In Progress

    **Acceptance Criteria:**
    - [x] Claims are written back into ToDos.md
    - [ ] Stale claims can be reclaimed

A story runs from its header to the next heading of level 4 or higher.
Everything outside story sections is preserved untouched, and edits only
rewrite the `**Implemented in:**` and `**Status:**` lines.
"""

import logging
import re
from dataclasses import dataclass, field

from stigmergy.lib.constants import (
    EPOCH_ID_IN_TEXT,
    STORY_COMPLETED,
    STORY_ID_PATTERN,
    STORY_IN_PROGRESS,
    STORY_PLANNED,
)
from stigmergy.lib.epochparse import Prose
from stigmergy.lib.types import ParseError, WarningSink, ValidationWarning

logger = logging.getLogger(__name__)

STORY_HEADER_RE = re.compile(r'^####\s+(US-\d+):\s*(.*?)\s*$')
SECTION_END_RE = re.compile(r'^#{1,4}\s')
STATEMENT_RE = re.compile(
    r'^>\s*As\s+an?\s+\*\*([^*]+)\*\*.*?want\s+\*\*([^*]+)\*\*.*?that\s+\*\*([^*]+)\*\*')
IMPLEMENTED_RE = re.compile(r'^\*\*Implemented\s+in:\*\*\s*(.*?)\s*$')
STATUS_RE = re.compile(r'^\*\*Status:\*\*\s*(.*?)\s*$')
COMPLETED_RE = re.compile(r'^\*\*Completed:\*\*\s*(\d{4}-\d{2}-\d{2})')
CRITERIA_RE = re.compile(r'^\*\*Acceptance\s+Criteria:\*\*')
CRITERION_RE = re.compile(r'^-\s+\[([ xX])\]\s+(.*?)\s*$')

STORY_STATUSES = (STORY_PLANNED, STORY_IN_PROGRESS, STORY_COMPLETED)

# "Implemented in" values that mean no epoch yet
UNLINKED_VALUES = ("", "planned", "none", "tbd", "-")


@dataclass
class Criterion:
    text: str
    complete: bool


@dataclass
class Story:
    id: str
    title: str
    status: str | None
    implemented_in: str | None
    persona: str = ""
    capability: str = ""
    benefit: str = ""
    acceptance_criteria: list[Criterion] = field(default_factory=list)
    completed_date: str | None = None
    line: int = 0

    @property
    def number(self) -> int:
        match = STORY_ID_PATTERN.match(self.id)
        return int(match.group(1)) if match else 0


@dataclass
class StoryBlock:
    text: str
    line: int
    story_id: str
    story: Story


@dataclass
class StoryDocument:
    nodes: list[Prose | StoryBlock]
    stories: list[Story]
    warnings: list[ValidationWarning]

    def render(self) -> str:
        return "".join(node.text for node in self.nodes)

    def get_story(self, story_id: str) -> Story | None:
        for story in self.stories:
            if story.id == story_id:
                return story
        return None


def _normalize_story_status(raw: str, story_id: str, sink: WarningSink, line: int) -> str | None:
    if not raw:
        return None
    for status in STORY_STATUSES:
        if raw.lower() == status.lower():
            return status
    message = f"Unknown status '{raw}' on {story_id}"
    logger.warning(message)
    sink.add("unknown_story_status", message, subject=story_id, line=line)
    return raw


def _implemented_in(raw: str) -> str | None:
    match = EPOCH_ID_IN_TEXT.search(raw)
    if match:
        return match.group(0)
    if raw.strip().lower() in UNLINKED_VALUES:
        return None
    return raw.strip()


def _parse_story(lines: list[str], line: int, sink: WarningSink) -> Story:
    header = STORY_HEADER_RE.match(lines[0].rstrip("\r\n"))
    story = Story(id=header.group(1), title=header.group(2), status=None, implemented_in=None, line=line)
    in_criteria = False

    for offset, raw in enumerate(lines[1:], 1):
        text = raw.rstrip("\r\n")

        match = STATEMENT_RE.match(text)
        if match:
            story.persona = match.group(1).strip()
            story.capability = match.group(2).strip()
            story.benefit = match.group(3).strip().rstrip(".")
            continue

        match = IMPLEMENTED_RE.match(text)
        if match:
            story.implemented_in = _implemented_in(match.group(1))
            continue

        match = STATUS_RE.match(text)
        if match:
            story.status = _normalize_story_status(match.group(1), story.id, sink, line + offset)
            continue

        match = COMPLETED_RE.match(text)
        if match:
            story.completed_date = match.group(1)
            story.status = STORY_COMPLETED
            continue

        if CRITERIA_RE.match(text):
            in_criteria = True
            continue

        if in_criteria:
            match = CRITERION_RE.match(text)
            if match:
                story.acceptance_criteria.append(
                    Criterion(text=match.group(2), complete=match.group(1) in "xX"))
            elif text.strip() and not text.startswith("  "):
                in_criteria = False

    return story


def parse_stories(text: str) -> StoryDocument:
    """Parse a story document.

    Raises:
        ParseError: on duplicate story ids
    """
    sink = WarningSink()
    lines = text.splitlines(keepends=True)
    nodes: list[Prose | StoryBlock] = []
    stories: list[Story] = []
    seen: set[str] = set()

    i = 0
    prose: list[str] = []
    prose_line = 1
    while i < len(lines):
        if not STORY_HEADER_RE.match(lines[i].rstrip("\r\n")):
            prose.append(lines[i])
            i += 1
            continue

        if prose:
            nodes.append(Prose(text="".join(prose), line=prose_line))
            prose = []

        start = i
        i += 1
        while i < len(lines) and not SECTION_END_RE.match(lines[i]):
            i += 1

        story = _parse_story(lines[start:i], start + 1, sink)
        if story.id in seen:
            raise ParseError(f"Duplicate story id {story.id}", line=start + 1, block=story.id)
        seen.add(story.id)
        stories.append(story)
        nodes.append(StoryBlock(text="".join(lines[start:i]), line=start + 1, story_id=story.id, story=story))
        prose_line = i + 1

    if prose:
        nodes.append(Prose(text="".join(prose), line=prose_line))

    return StoryDocument(nodes=nodes, stories=stories, warnings=sink.items)


def set_story_link(doc: StoryDocument, story_id: str, epoch_id: str) -> StoryDocument:
    """Point a story at an epoch, promoting Planned to In Progress.

    A story without an Implemented in line gets one after its statement
    (or after its header when it has no statement).

    Raises:
        KeyError: if the story is not in the document
    """
    for index, node in enumerate(doc.nodes):
        if not (isinstance(node, StoryBlock) and node.story_id == story_id):
            continue

        lines = node.text.splitlines(keepends=True)
        written = False
        for i, raw in enumerate(lines):
            text = raw.rstrip("\r\n")
            ending = raw[len(text):]
            if IMPLEMENTED_RE.match(text):
                lines[i] = f"**Implemented in:** {epoch_id}{ending}"
                written = True
            elif STATUS_RE.match(text) and STATUS_RE.match(text).group(1).lower() == STORY_PLANNED.lower():
                lines[i] = f"**Status:** {STORY_IN_PROGRESS}{ending}"

        if not written:
            anchor = next((i for i, raw in enumerate(lines) if STATEMENT_RE.match(raw)), 0)
            if not lines[anchor].endswith("\n"):
                lines[anchor] += "\n"
            lines[anchor + 1:anchor + 1] = ["\n", f"**Implemented in:** {epoch_id}\n"]

        texts = [n.text for n in doc.nodes]
        texts[index] = "".join(lines)
        return parse_stories("".join(texts))

    raise KeyError(story_id)


def next_story_id(doc: StoryDocument) -> str:
    highest = max((story.number for story in doc.stories), default=0)
    return f"US-{highest + 1:03d}"


def story_drift(story: Story) -> list[tuple[str, str]]:
    """Check the status invariants of a story.

    Returns (code, message) pairs; an empty list means consistent.
    """
    problems = []
    status = story.status
    linked = story.implemented_in is not None
    criteria = story.acceptance_criteria
    all_checked = bool(criteria) and all(c.complete for c in criteria)

    if status == STORY_PLANNED and linked:
        problems.append(("story_status_drift",
                         f"{story.id} is Planned but implemented in {story.implemented_in}"))
    if not linked and status in (STORY_IN_PROGRESS, STORY_COMPLETED):
        problems.append(("story_status_drift", f"{story.id} is {status} but not linked to an epoch"))
    if status == STORY_COMPLETED and not all_checked and criteria:
        open_count = sum(1 for c in criteria if not c.complete)
        problems.append(("story_criteria_drift",
                         f"{story.id} is Completed with {open_count} unchecked acceptance criteria"))
    if all_checked and status != STORY_COMPLETED:
        problems.append(("story_criteria_drift",
                         f"{story.id} has every acceptance criterion checked but status {status or 'unset'}"))
    return problems
