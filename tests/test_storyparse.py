"""Tests for stigmergy.lib.storyparse module."""

import pytest

from stigmergy.lib.storyparse import (
    Criterion,
    Story,
    next_story_id,
    parse_stories,
    set_story_link,
    story_drift,
)
from stigmergy.lib.types import ParseError


STORIES = """\
# User Stories

Intro text.

## Coordination

#### US-001: Claim a task

> As a **worker agent**, I want **to claim a task** so that **no one else duplicates it**.

**Implemented in:** EPOCH-003

**Status:** In Progress

**Acceptance Criteria:**
- [x] Claims are written back
- [ ] Stale claims can be reclaimed

#### US-002: Archive epochs

> As a **maintainer**, I want **old epochs archived** so that **the plan stays short**.

**Implemented in:** Planned

**Status:** Planned

#### US-010: Sync

**Status:** Completed
"""


class TestParseStories:
    """Test parse_stories function."""

    def test_round_trip(self):
        assert parse_stories(STORIES).render() == STORIES

    def test_fields(self):
        doc = parse_stories(STORIES)
        assert [s.id for s in doc.stories] == ["US-001", "US-002", "US-010"]
        story = doc.get_story("US-001")
        assert story.title == "Claim a task"
        assert story.persona == "worker agent"
        assert story.capability == "to claim a task"
        assert story.benefit == "no one else duplicates it"
        assert story.implemented_in == "EPOCH-003"
        assert story.status == "In Progress"
        assert story.acceptance_criteria == [
            Criterion(text="Claims are written back", complete=True),
            Criterion(text="Stale claims can be reclaimed", complete=False),
        ]
        assert story.line == 7

    def test_planned_means_unlinked(self):
        story = parse_stories(STORIES).get_story("US-002")
        assert story.implemented_in is None
        assert story.status == "Planned"

    def test_completed_line_sets_status(self):
        doc = parse_stories("#### US-004: Done\n\n**Completed:** 2026-10-01\n")
        story = doc.get_story("US-004")
        assert story.status == "Completed"
        assert story.completed_date == "2026-10-01"

    def test_unknown_status_warns(self):
        doc = parse_stories("#### US-005: Odd\n\n**Status:** Someday\n")
        assert doc.get_story("US-005").status == "Someday"
        assert [w.code for w in doc.warnings] == ["unknown_story_status"]

    def test_duplicate_story(self):
        with pytest.raises(ParseError, match="Duplicate story id US-001"):
            parse_stories(STORIES + "\n#### US-001: Again\n")

    def test_missing_story(self):
        assert parse_stories(STORIES).get_story("US-999") is None


class TestSetStoryLink:
    """Test set_story_link function."""

    def test_rewrites_link_and_promotes_planned(self):
        doc = set_story_link(parse_stories(STORIES), "US-002", "EPOCH-004")
        expected = STORIES.replace(
            "**Implemented in:** Planned\n\n**Status:** Planned\n",
            "**Implemented in:** EPOCH-004\n\n**Status:** In Progress\n",
        )
        assert doc.render() == expected
        assert doc.get_story("US-002").implemented_in == "EPOCH-004"

    def test_inserts_missing_line(self):
        doc = set_story_link(parse_stories(STORIES), "US-010", "EPOCH-009")
        assert "#### US-010: Sync\n\n**Implemented in:** EPOCH-009\n\n**Status:** Completed\n" in doc.render()
        assert doc.get_story("US-010").implemented_in == "EPOCH-009"

    def test_missing_story(self):
        with pytest.raises(KeyError):
            set_story_link(parse_stories(STORIES), "US-404", "EPOCH-001")


class TestNextStoryId:
    """Test next_story_id function."""

    def test_after_highest(self):
        assert next_story_id(parse_stories(STORIES)) == "US-011"

    def test_empty_document(self):
        assert next_story_id(parse_stories("# User Stories\n")) == "US-001"


class TestStoryDrift:
    """Test story_drift function."""

    def test_consistent(self):
        doc = parse_stories(STORIES)
        assert story_drift(doc.get_story("US-001")) == []
        assert story_drift(doc.get_story("US-002")) == []

    def test_completed_without_link(self):
        codes = [code for code, _ in story_drift(parse_stories(STORIES).get_story("US-010"))]
        assert codes == ["story_status_drift"]

    def test_planned_with_link(self):
        story = Story(id="US-003", title="x", status="Planned", implemented_in="EPOCH-001")
        assert [code for code, _ in story_drift(story)] == ["story_status_drift"]

    def test_completed_with_open_criteria(self):
        story = Story(id="US-003", title="x", status="Completed", implemented_in="EPOCH-001",
                      acceptance_criteria=[Criterion("a", True), Criterion("b", False)])
        problems = story_drift(story)
        assert [code for code, _ in problems] == ["story_criteria_drift"]
        assert "1 unchecked" in problems[0][1]

    def test_all_checked_but_not_completed(self):
        story = Story(id="US-003", title="x", status="In Progress", implemented_in="EPOCH-001",
                      acceptance_criteria=[Criterion("a", True)])
        assert [code for code, _ in story_drift(story)] == ["story_criteria_drift"]
