"""
Actor identities.

An identity is an opaque string; the claim protocol only ever compares
two identities for equality. The known shapes are recognised so reports
can label them, and anything else is accepted with a warning.
"""

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

KIND_TEAM_ROLE = "team_role"        # agent-team/worker-2, my-session/orchestrator
KIND_HUMAN = "human"                # human:alice, @alice, alice@example.com
KIND_TOOL_SESSION = "tool_session"  # claude-session, codex-7f3a9
KIND_UNKNOWN = "unknown"

TEAM_ROLE_RE = re.compile(r'^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$')
HUMAN_RE = re.compile(r'^(human:\S+|@[A-Za-z0-9_.-]+|[^@\s]+@[^@\s]+\.[^@\s]+)$')
TOOL_SESSION_RE = re.compile(r'^[a-z][a-z0-9_]*(-[A-Za-z0-9_]+)+$')


@dataclass(frozen=True)
class ActorIdentity:
    value: str
    kind: str

    def __str__(self) -> str:
        return self.value


def classify(value: str) -> str:
    """Return the identity shape for value."""
    if TEAM_ROLE_RE.match(value):
        return KIND_TEAM_ROLE
    if HUMAN_RE.match(value):
        return KIND_HUMAN
    if TOOL_SESSION_RE.match(value):
        return KIND_TOOL_SESSION
    return KIND_UNKNOWN


def parse_identity(raw: str) -> ActorIdentity:
    """Normalise an actor identity.

    Raises:
        ValueError: if the identity is empty (an empty claimed_by means unclaimed)
    """
    value = (raw or "").strip()
    if not value:
        raise ValueError("Actor identity must not be empty")

    kind = classify(value)
    if kind == KIND_UNKNOWN:
        logger.warning(f"Unrecognised actor identity shape '{value}', proceeding anyway")
    return ActorIdentity(value=value, kind=kind)
