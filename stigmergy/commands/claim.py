"""
stig claim / release / complete - Task claim lifecycle.
"""

from stigmergy.board import Board
from stigmergy.commands.common import EXIT_OK, describe, exit_code_for
from stigmergy.lib.identity import parse_identity


def cmd_claim(args, board: Board) -> int:
    identity = parse_identity(args.actor)
    result = board.claim(args.task, identity)
    if not result:
        print(describe(result))
        return exit_code_for(result)
    print(f"Claimed {args.task} as {identity} ({identity.kind})")
    return EXIT_OK


def cmd_release(args, board: Board) -> int:
    result = board.release(args.task, args.actor)
    if not result:
        print(describe(result))
        return exit_code_for(result)
    print(f"Released {args.task}")
    return EXIT_OK


def cmd_complete(args, board: Board) -> int:
    result = board.complete(args.task, args.actor)
    if not result:
        print(describe(result))
        return exit_code_for(result)
    print(f"Completed {args.task} ({result.value.completed_date})")
    return EXIT_OK
