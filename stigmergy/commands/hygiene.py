"""
stig hygiene / archive / logs - Propose-then-apply cleanup.
"""

import logging

from stigmergy.board import Board
from stigmergy.commands.common import (
    EXIT_INVALID,
    EXIT_NOT_ARCHIVABLE,
    EXIT_OK,
    describe,
    exit_code_for,
    print_json,
    print_warnings,
)

logger = logging.getLogger(__name__)


def cmd_hygiene(args, board: Board) -> int:
    """Show what could be archived. Never changes anything."""
    report = board.hygiene_report()
    if args.json:
        print_json(report.to_dict())
        return EXIT_OK

    print("Epochs ready to archive:")
    if report.archivable_epochs:
        for epoch_id in report.archivable_epochs:
            print(f"  {epoch_id}")
    else:
        print("  (none)")

    print()
    print("Work logs for completed work:")
    if report.stale_work_logs:
        for log in report.stale_work_logs:
            print(f"  {log.filename:<40} {log.reason}")
    else:
        print("  (none)")

    if report.orphan_tasks:
        print()
        print("Tasks outside any epoch:")
        for task_id in report.orphan_tasks:
            print(f"  {task_id}")

    if report.warnings:
        print()
        print_warnings(report.warnings)

    if report.archivable_epochs or report.stale_work_logs:
        print()
        print("Next steps:")
        if report.archivable_epochs:
            print("  stig archive <EPOCH-ID>          move a completed epoch to the archive")
        if report.stale_work_logs:
            print("  stig logs apply <file>=<delete|archive|keep> ...")
    return EXIT_OK


def cmd_archive(args, board: Board) -> int:
    epoch_ids = args.epochs
    if args.all:
        epoch_ids = board.hygiene_report().archivable_epochs
        if not epoch_ids:
            print("Nothing to archive")
            return EXIT_OK
    if not epoch_ids:
        print("ERROR: give one or more epoch ids, or --all")
        return EXIT_INVALID

    exit_code = EXIT_OK
    for epoch_id in epoch_ids:
        result = board.archive(epoch_id)
        if result:
            print(f"Archived {epoch_id}")
        else:
            print(describe(result))
            if exit_code == EXIT_OK:
                exit_code = exit_code_for(result)
    return exit_code


def _parse_dispositions(items: list[str]) -> dict[str, str]:
    dispositions = {}
    for item in items:
        filename, sep, action = item.rpartition("=")
        if not sep or not filename:
            raise ValueError(f"Expected <file>=<action>, got '{item}'")
        dispositions[filename] = action
    return dispositions


def cmd_logs_apply(args, board: Board) -> int:
    try:
        dispositions = _parse_dispositions(args.dispositions)
        results = board.apply_work_log_dispositions(dispositions)
    except ValueError as e:
        print(f"ERROR: {e}")
        return EXIT_INVALID

    refused = 0
    for result in results:
        if result.applied:
            print(f"  {result.action:<8} {result.filename}" + (f" -> {result.detail}" if result.detail else ""))
        else:
            refused += 1
            print(f"  skipped  {result.filename}: {result.detail}")
    return EXIT_OK if refused == 0 else EXIT_NOT_ARCHIVABLE
