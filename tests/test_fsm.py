"""Tests for stigmergy.workflow.fsm module."""

import logging

import pytest
from transitions import MachineError

from stigmergy.workflow.fsm import (
    TaskClaimFSM,
    STATES,
    TRANSITIONS,
)


class TestFSMStates:
    """Tests for FSM state definitions."""

    def test_all_states_defined(self):
        """States are the task status vocabulary."""
        assert set(STATES) == {"pending", "in_progress", "blocked", "complete"}

    def test_complete_and_blocked_have_no_exit(self):
        """Nothing leaves complete or blocked through a trigger."""
        assert not [t for t in TRANSITIONS if t["source"] in ("complete", "blocked")]


class TestFSMBasic:
    """Basic FSM functionality tests."""

    def test_claim_then_complete(self, caplog):
        caplog.set_level(logging.DEBUG, logger="stigmergy.workflow.fsm")
        fsm = TaskClaimFSM("T1", "pending")
        fsm.claim()
        assert fsm.state == "in_progress"
        fsm.complete()
        assert fsm.state == "complete"
        assert "T1: pending -> in_progress (claim)" in caplog.text
        assert "T1: in_progress -> complete (complete)" in caplog.text

    def test_release_returns_to_pending(self):
        fsm = TaskClaimFSM("T1", "in_progress")
        fsm.release()
        assert fsm.state == "pending"

    def test_resume_and_reclaim_stay_in_progress(self):
        fsm = TaskClaimFSM("T1", "in_progress")
        fsm.resume()
        fsm.reclaim()
        assert fsm.state == "in_progress"

    def test_complete_directly_from_pending(self):
        fsm = TaskClaimFSM("T1", "pending")
        fsm.complete()
        assert fsm.state == "complete"

    def test_unknown_state_defaults_to_pending(self, caplog):
        fsm = TaskClaimFSM("T1", "someday")
        assert fsm.state == "pending"
        assert "Unknown state 'someday'" in caplog.text


class TestFSMGuards:
    """Illegal triggers are refused."""

    @pytest.mark.parametrize("state,trigger", [
        ("complete", "claim"),
        ("complete", "release"),
        ("blocked", "claim"),
        ("blocked", "complete"),
        ("blocked", "release"),
        ("pending", "release"),
        ("pending", "resume"),
    ])
    def test_cannot(self, state, trigger):
        fsm = TaskClaimFSM("T1", state)
        assert fsm.can(trigger) is False
        with pytest.raises(MachineError):
            getattr(fsm, trigger)()

    @pytest.mark.parametrize("trigger", ["resume", "reclaim", "release", "complete"])
    def test_in_progress_triggers(self, trigger):
        assert TaskClaimFSM("T1", "in_progress").can(trigger) is True
