"""
stig story - Story/epoch cross-references.
"""

from stigmergy.board import Board
from stigmergy.commands.common import EXIT_OK, describe, exit_code_for, print_json, print_warnings


def cmd_story_link(args, board: Board) -> int:
    result = board.link(args.story, args.epoch)
    if not result:
        print(describe(result))
        return exit_code_for(result)
    print(f"Linked {args.story} <-> {args.epoch}")
    return EXIT_OK


def cmd_story_sync(args, board: Board) -> int:
    report = board.sync_report()
    if args.json:
        print_json(report.to_dict())
        return EXIT_OK

    print(f"Linked stories: {report.linked_stories}    Linked epochs: {report.linked_epochs}")
    print()
    print("Stories without an epoch:")
    for story_id in report.orphan_stories or ["(none)"]:
        print(f"  {story_id}")
    print()
    print("Epochs without a story:")
    for epoch_id in report.orphan_epochs or ["(none)"]:
        print(f"  {epoch_id}")
    if report.warnings:
        print()
        print_warnings(report.warnings)
    return EXIT_OK


def cmd_story_list(args, board: Board) -> int:
    rows = board.story_links()
    if args.json:
        print_json(rows)
        return EXIT_OK
    if not rows:
        print("No stories")
        return EXIT_OK
    print(f"{'STORY':<8} {'STATUS':<12} {'EPOCH':<12} TITLE")
    for row in rows:
        print(f"{row['story_id']:<8} {row['status'] or '-':<12} {row['implemented_in'] or '-':<12} {row['title']}")
    return EXIT_OK


def cmd_story_next_id(args, board: Board) -> int:
    print(board.next_story_id())
    return EXIT_OK
