"""Shared constants for the coordination engine."""

import re

# Task and epoch status vocabulary
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_BLOCKED = "blocked"
STATUS_COMPLETE = "complete"
VALID_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_BLOCKED, STATUS_COMPLETE)

# Priority ranks, lower is more urgent
PRIORITY_ORDER = {"p0": 0, "p1": 1, "p2": 2, "p3": 3}
DEFAULT_PRIORITY = "p2"

# Identifiers
EPOCH_ID_PATTERN = re.compile(r'^EPOCH-(\d+)$')
EPOCH_ID_IN_TEXT = re.compile(r'EPOCH-\d+')
TEMPLATE_ID_PATTERN = re.compile(r'(XXX|NNN|YYY)')
STORY_ID_PATTERN = re.compile(r'^US-(\d{3,})$')
FLAT_EPOCH_ID = "FLAT-TASKS"

# Sort key for identifiers without a numeric suffix
UNNUMBERED_SORT_KEY = 9999

# Claims older than this are treated as abandoned
DEFAULT_STALE_CLAIM_HOURS = 24

# Story statuses
STORY_PLANNED = "Planned"
STORY_IN_PROGRESS = "In Progress"
STORY_COMPLETED = "Completed"

# Work log statuses that mark a finished session
WORK_LOG_DONE_STATUSES = ("complete", "completed", "done")

# Hygiene reason codes
REASON_TASK_COMPLETED = "task_completed"
REASON_EPOCH_COMPLETED = "epoch_completed"
REASON_STATUS_COMPLETE = "status_complete"
