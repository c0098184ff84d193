"""Story/epoch cross-references.

A link is a paired write: the story's **Implemented in:** line and the
epoch's `user_story` field change together, under both store locks, or
not at all.
"""

import logging
from dataclasses import dataclass, field

from stigmergy.lib.epochparse import TodoDocument, parse_document, set_epoch_fields
from stigmergy.lib.store import DocumentStore, StoreError, WriteConflict, hold
from stigmergy.lib.storyparse import StoryDocument, parse_stories, set_story_link, story_drift
from stigmergy.lib.types import AlreadyLinked, NotFound, Ok, ValidationWarning, WarningSink

logger = logging.getLogger(__name__)


def link(stories: DocumentStore, todos: DocumentStore, story_id: str, epoch_id: str):
    """Link a story to an epoch in both documents.

    Returns:
        Ok((story_id, epoch_id)), NotFound or AlreadyLinked. Linking a pair
        that is already linked to each other is Ok and writes nothing.

    Raises:
        StoreError: if a write fails. When the task document cannot be
            written after the story document was, the story document is
            restored first.
    """
    with hold(stories, todos):
        story_snapshot = stories.load()
        todo_snapshot = todos.load()
        story_doc = parse_stories(story_snapshot.text)
        todo_doc = parse_document(todo_snapshot.text)

        story = story_doc.get_story(story_id)
        if story is None:
            return NotFound("story", story_id)
        epoch = todo_doc.get_epoch(epoch_id)
        if epoch is None or epoch.flat:
            return NotFound("epoch", epoch_id)

        if story.implemented_in == epoch_id and epoch.user_story == story_id:
            logger.debug(f"[LINK] {story_id} and {epoch_id} already linked")
            return Ok((story_id, epoch_id))
        if story.implemented_in and story.implemented_in != epoch_id:
            return AlreadyLinked(story_id, epoch_id, existing=story.implemented_in)
        if epoch.user_story and epoch.user_story != story_id:
            return AlreadyLinked(story_id, epoch_id, existing=epoch.user_story)

        story_text = story_snapshot.text
        if story.implemented_in != epoch_id:
            story_text = set_story_link(story_doc, story_id, epoch_id).render()
        todo_text = todo_snapshot.text
        if epoch.user_story != story_id:
            todo_text = set_epoch_fields(todo_doc, epoch_id, {"user_story": story_id}).render()

        if todos.load() != todo_snapshot:
            raise WriteConflict(todos.name)
        written = stories.commit(story_snapshot, story_text) if story_text != story_snapshot.text else None
        try:
            if todo_text != todo_snapshot.text:
                todos.commit(todo_snapshot, todo_text)
        except StoreError:
            if written is not None:
                logger.warning(f"[LINK] {todos.name} write failed, restoring {stories.name}")
                stories.commit(written, story_snapshot.text)
            raise

    logger.info(f"[LINK] {story_id} <-> {epoch_id}")
    return Ok((story_id, epoch_id))


@dataclass
class SyncReport:
    orphan_stories: list[str] = field(default_factory=list)
    orphan_epochs: list[str] = field(default_factory=list)
    linked_stories: int = 0
    linked_epochs: int = 0
    warnings: list[ValidationWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "orphan_stories": list(self.orphan_stories),
            "orphan_epochs": list(self.orphan_epochs),
            "linked_stories": self.linked_stories,
            "linked_epochs": self.linked_epochs,
            "warnings": [w.message for w in self.warnings],
        }


def sync_report(story_doc: StoryDocument, todo_doc: TodoDocument,
                archived_epoch_ids: set[str] | None = None) -> SyncReport:
    """Stories without a resolvable epoch and epochs without a story."""
    archived_epoch_ids = set(archived_epoch_ids or ())
    epochs = {e.epoch_id: e for e in todo_doc.epochs if not e.flat}
    sink = WarningSink(list(story_doc.warnings))
    report = SyncReport()

    for story in story_doc.stories:
        target = story.implemented_in
        if target is None or (target not in epochs and target not in archived_epoch_ids):
            report.orphan_stories.append(story.id)
        else:
            report.linked_stories += 1
            epoch = epochs.get(target)
            if epoch is not None and epoch.user_story and epoch.user_story != story.id:
                sink.add("link_mismatch",
                         f"{story.id} is implemented in {target} but {target} points at {epoch.user_story}",
                         subject=story.id, line=story.line)
        for code, message in story_drift(story):
            sink.add(code, message, subject=story.id, line=story.line)

    for epoch in epochs.values():
        if epoch.user_story:
            report.linked_epochs += 1
        else:
            report.orphan_epochs.append(epoch.epoch_id)

    report.warnings = sink.items
    return report


def story_links(story_doc: StoryDocument) -> list[dict]:
    return [
        {"story_id": s.id, "title": s.title, "status": s.status, "implemented_in": s.implemented_in}
        for s in story_doc.stories
    ]
