"""Task claim state machine using the transitions library.

    pending --claim--> in_progress --complete--> complete
    in_progress --release--> pending
    in_progress --resume/reclaim--> in_progress   (own refresh / stale takeover)

`blocked` is a state with no way out: it is derived from blocked_by, and
no actor trigger is legal on a blocked task. The machine is built from a
task's effective status on every operation and only answers whether a
trigger is legal there; the document is the state.

Usage:
    from stigmergy.workflow.fsm import TaskClaimFSM

    fsm = TaskClaimFSM("T-004", "pending")
    if fsm.can("claim"):
        fsm.claim()
"""

import logging

from transitions import Machine

from stigmergy.lib.constants import VALID_STATUSES

logger = logging.getLogger(__name__)


STATES = list(VALID_STATUSES)

# Each trigger becomes a method on the FSM
TRANSITIONS = [
    {"trigger": "claim", "source": "pending", "dest": "in_progress"},
    {"trigger": "resume", "source": "in_progress", "dest": "in_progress"},
    {"trigger": "reclaim", "source": "in_progress", "dest": "in_progress"},
    {"trigger": "release", "source": "in_progress", "dest": "pending"},

    {"trigger": "complete", "source": "in_progress", "dest": "complete"},
    {"trigger": "complete", "source": "pending", "dest": "complete"},
]


class TaskClaimFSM:
    """Claim lifecycle of a single task."""

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id

        if status not in STATES:
            logger.warning(f"[FSM] {task_id}: Unknown state '{status}', defaulting to 'pending'")
            status = "pending"

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=status,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        logger.debug(f"[FSM] {self.task_id}: {event.transition.source} -> {event.transition.dest} "
                     f"({event.event.name})")

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
