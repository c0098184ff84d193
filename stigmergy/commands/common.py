"""
Shared helpers for stig commands: exit codes and output.
"""

import json

from stigmergy.lib.identity import classify
from stigmergy.lib.types import (
    AlreadyLinked,
    ClaimConflict,
    NoActionableTask,
    NoEligibleEpochs,
    NotArchivable,
    NotFound,
    Ok,
    ValidationWarning,
)

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_NO_WORK = 2
EXIT_INVALID = 3       # Bad arguments or malformed document
EXIT_CONFLICT = 4
EXIT_ALREADY_LINKED = 5
EXIT_NOT_ARCHIVABLE = 6
EXIT_STORE_ERROR = 7   # Lock timeout or I/O failure

_EXIT_CODES = {
    Ok: EXIT_OK,
    NotFound: EXIT_NOT_FOUND,
    NoEligibleEpochs: EXIT_NO_WORK,
    NoActionableTask: EXIT_NO_WORK,
    ClaimConflict: EXIT_CONFLICT,
    AlreadyLinked: EXIT_ALREADY_LINKED,
    NotArchivable: EXIT_NOT_ARCHIVABLE,
}


def exit_code_for(result) -> int:
    return _EXIT_CODES.get(type(result), EXIT_OK if result else EXIT_INVALID)


def describe(result) -> str:
    """One-line explanation of a non-Ok result."""
    if isinstance(result, NotFound):
        return f"{result.kind.capitalize()} not found: {result.identifier}"
    if isinstance(result, ClaimConflict):
        if result.reason == "claimed":
            since = f" since {result.claimed_at}" if result.claimed_at else ""
            return f"{result.task_id} is claimed by {result.holder} ({classify(result.holder)}){since}"
        if result.reason == "document_changed":
            return f"Task document changed while claiming {result.task_id}; select again"
        return f"{result.task_id} cannot be claimed: {result.reason.replace('_', ' ')}"
    if isinstance(result, NotArchivable):
        if result.incomplete:
            return f"{result.epoch_id} has incomplete tasks: {', '.join(result.incomplete)}"
        return f"{result.epoch_id} is not archivable: {result.reason.replace('_', ' ')}"
    if isinstance(result, AlreadyLinked):
        return f"Cannot link {result.story_id} to {result.epoch_id}: already linked to {result.existing}"
    if isinstance(result, (NoEligibleEpochs, NoActionableTask)):
        return result.message
    return str(result)


def print_warnings(warnings: list[ValidationWarning] | tuple) -> None:
    for warning in warnings:
        location = f" (line {warning.line})" if warning.line else ""
        print(f"  WARNING [{warning.code}] {warning.message}{location}")


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))
