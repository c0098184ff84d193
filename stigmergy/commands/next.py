"""
stig next / list / validate - Work selection and epoch overview.
"""

import logging

from stigmergy.board import Board
from stigmergy.commands.common import (
    EXIT_OK,
    describe,
    exit_code_for,
    print_json,
    print_warnings,
)
from stigmergy.lib.identity import classify

logger = logging.getLogger(__name__)


def _task_dict(task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "status": task.status,
        "claimed_by": task.claimed_by or None,
        "claimed_by_kind": classify(task.claimed_by) if task.claimed_by else None,
        "blocked_by": list(task.blocked_by),
        "epoch_id": task.epoch_id,
    }


def cmd_next(args, board: Board) -> int:
    """Show the next task for an actor (optionally within one epoch)."""
    warnings = ()
    if args.epoch:
        result = board.next_task(args.epoch, args.actor)
        epoch_id = args.epoch
    else:
        result = board.next_work(args.actor)
        if result:
            derived, result = result
            epoch_id = derived.epoch_id
            warnings = derived.warnings

    if not result:
        if args.json:
            print_json({"task": None, "reason": describe(result)})
        else:
            print(describe(result))
            print_warnings(getattr(result, "warnings", ()))
        return exit_code_for(result)

    if args.json:
        print_json({"epoch_id": epoch_id, "task": _task_dict(result),
                    "warnings": [w.message for w in warnings]})
        return EXIT_OK

    print(f"{epoch_id} / {result.id}: {result.title}")
    if result.claimed_by:
        print(f"  claimed by {result.claimed_by} ({classify(result.claimed_by)})")
    print_warnings(warnings)
    if args.claim:
        claimed = board.claim(result.id, args.actor)
        if not claimed:
            print(describe(claimed))
            return exit_code_for(claimed)
        print(f"  claimed by {args.actor}")
    return EXIT_OK


def cmd_next_epoch(args, board: Board) -> int:
    result = board.next_epoch()
    if not result:
        print(describe(result))
        print_warnings(result.warnings)
        return exit_code_for(result)
    epoch = result.epoch
    print(f"{epoch.epoch_id}: {epoch.title} [{epoch.priority}, {result.effective_status}]")
    print_warnings(result.warnings)
    return EXIT_OK


def cmd_list(args, board: Board) -> int:
    """List epochs with task counts."""
    rows = board.list_epochs()
    if args.json:
        print_json(rows)
        return EXIT_OK

    if not rows:
        print("No epochs")
        return EXIT_OK

    print(f"{'EPOCH':<14} {'PRI':<4} {'STATUS':<12} {'DONE':>9}  TITLE")
    for row in rows:
        done = f"{row['complete']}/{row['total']}"
        status = row["status"]
        if row["status"] != row["derived_status"]:
            status += "*"
        print(f"{row['epoch_id']:<14} {row['priority']:<4} {status:<12} {done:>9}  {row['title']}")
    if any(r["status"] != r["derived_status"] for r in rows):
        print()
        print("* explicit status differs from task-derived status")
    return EXIT_OK


def cmd_validate(args, board: Board) -> int:
    """Report structural warnings. Exit 0 even with warnings."""
    warnings = board.validate()
    if args.json:
        print_json([{"code": w.code, "message": w.message, "subject": w.subject, "line": w.line}
                    for w in warnings])
        return EXIT_OK
    if not warnings:
        print("No problems found")
        return EXIT_OK
    print(f"{len(warnings)} warning(s):")
    print_warnings(warnings)
    return EXIT_OK
