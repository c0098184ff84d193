#!/usr/bin/env python3
"""stig CLI entrypoint."""

import argparse
import logging
import os
import sys
from pathlib import Path

from stigmergy.board import Board
from stigmergy.commands import claim as cmd_claim_module
from stigmergy.commands import hygiene as cmd_hygiene_module
from stigmergy.commands import next as cmd_next_module
from stigmergy.commands import story as cmd_story_module
from stigmergy.commands.common import EXIT_INVALID, EXIT_STORE_ERROR
from stigmergy.lib.locking import StoreError
from stigmergy.lib.types import ParseError

logger = logging.getLogger(__name__)

ACTOR_ENV = "STIG_ACTOR"


def get_board(args) -> Board:
    """Board for --root, or the current directory."""
    return Board.from_root(Path(args.root or ".").resolve())


def _actor_required(parser, args) -> None:
    if hasattr(args, "actor") and args.actor is None and getattr(args, "needs_actor", False):
        parser.error(f"--actor is required (or set {ACTOR_ENV})")


def main(argv=None):
    parser = argparse.ArgumentParser(prog='stig', description='Stigmergic task coordination')
    parser.add_argument('--root', '-r', help='Workspace root (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    default_actor = os.environ.get(ACTOR_ENV)

    # stig next
    p_next = subparsers.add_parser('next', help='Show the next task to work on')
    p_next.add_argument('--actor', '-a', default=default_actor, help=f'Actor identity (default: ${ACTOR_ENV})')
    p_next.add_argument('--epoch', '-e', help='Only look inside this epoch')
    p_next.add_argument('--claim', action='store_true', help='Claim the selected task')
    p_next.add_argument('--json', action='store_true', help='JSON output')
    p_next.set_defaults(func=cmd_next_module.cmd_next, needs_actor=True)

    # stig next-epoch
    p_next_epoch = subparsers.add_parser('next-epoch', help='Show the epoch to start or resume')
    p_next_epoch.set_defaults(func=cmd_next_module.cmd_next_epoch)

    # stig list
    p_list = subparsers.add_parser('list', help='List epochs with task counts')
    p_list.add_argument('--json', action='store_true', help='JSON output')
    p_list.set_defaults(func=cmd_next_module.cmd_list)

    # stig validate
    p_validate = subparsers.add_parser('validate', help='Check the task document for problems')
    p_validate.add_argument('--json', action='store_true', help='JSON output')
    p_validate.set_defaults(func=cmd_next_module.cmd_validate)

    # stig claim / release / complete
    for name, func, help_text in (
        ('claim', cmd_claim_module.cmd_claim, 'Claim a task'),
        ('release', cmd_claim_module.cmd_release, 'Release a claimed task back to pending'),
        ('complete', cmd_claim_module.cmd_complete, 'Mark a task complete'),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument('task', help='Task ID')
        p.add_argument('--actor', '-a', default=default_actor, help=f'Actor identity (default: ${ACTOR_ENV})')
        p.set_defaults(func=func, needs_actor=name != 'complete')

    # stig hygiene
    p_hygiene = subparsers.add_parser('hygiene', help='Report archivable epochs and stale work logs')
    p_hygiene.add_argument('--json', action='store_true', help='JSON output')
    p_hygiene.set_defaults(func=cmd_hygiene_module.cmd_hygiene)

    # stig archive
    p_archive = subparsers.add_parser('archive', help='Move completed epochs to the archive')
    p_archive.add_argument('epochs', nargs='*', help='Epoch IDs')
    p_archive.add_argument('--all', action='store_true', help='Archive every archivable epoch')
    p_archive.set_defaults(func=cmd_hygiene_module.cmd_archive)

    # stig logs apply
    p_logs = subparsers.add_parser('logs', help='Work log dispositions')
    logs_sub = p_logs.add_subparsers(dest='logs_cmd', required=True)
    p_logs_apply = logs_sub.add_parser('apply', help='Apply delete/archive/keep to proposed work logs')
    p_logs_apply.add_argument('dispositions', nargs='+', metavar='FILE=ACTION')
    p_logs_apply.set_defaults(func=cmd_hygiene_module.cmd_logs_apply)

    # stig story
    p_story = subparsers.add_parser('story', help='Story/epoch links')
    story_sub = p_story.add_subparsers(dest='story_cmd', required=True)

    p_story_link = story_sub.add_parser('link', help='Link a story to an epoch')
    p_story_link.add_argument('story', help='Story ID (US-NNN)')
    p_story_link.add_argument('epoch', help='Epoch ID')
    p_story_link.set_defaults(func=cmd_story_module.cmd_story_link)

    p_story_sync = story_sub.add_parser('sync', help='Report unlinked stories and epochs')
    p_story_sync.add_argument('--json', action='store_true', help='JSON output')
    p_story_sync.set_defaults(func=cmd_story_module.cmd_story_sync)

    p_story_list = story_sub.add_parser('list', help='List stories and their epochs')
    p_story_list.add_argument('--json', action='store_true', help='JSON output')
    p_story_list.set_defaults(func=cmd_story_module.cmd_story_list)

    p_story_next = story_sub.add_parser('next-id', help='Print the next free story ID')
    p_story_next.set_defaults(func=cmd_story_module.cmd_story_next_id)

    args = parser.parse_args(argv)
    _actor_required(parser, args)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        board = get_board(args)
        return args.func(args, board)
    except ParseError as e:
        print(f"ERROR: {e}")
        return EXIT_INVALID
    except StoreError as e:
        print(f"ERROR: {e}")
        return EXIT_STORE_ERROR
    except ValueError as e:
        # Bad config file or actor identity
        print(f"ERROR: {e}")
        return EXIT_INVALID


if __name__ == '__main__':
    sys.exit(main())
