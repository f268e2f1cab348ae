#!/usr/bin/env python3
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


def check_outlines(outline_ids=None):
    """Return {outline_id: [problem, ...]} for every inconsistent live outline."""
    from backend.outline_tree import chain_problems
    from models import Note, NoteContext, OUTLINE_TYPE

    query = NoteContext.query.filter(
        NoteContext.type == OUTLINE_TYPE,
        NoteContext.deleted_at.is_(None),
    )
    if outline_ids:
        query = query.filter(NoteContext.id.in_(outline_ids))

    report = {}
    for outline in query.order_by(NoteContext.created_at.asc()).all():
        notes = Note.query.filter(
            Note.context_id == outline.id,
            Note.deleted_at.is_(None),
        ).order_by(Note.created_at.asc(), Note.id.asc()).all()
        problems = chain_problems([n.to_dict() for n in notes])
        if problems:
            report[outline.id] = problems
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check outline note chains for broken links.")
    parser.add_argument(
        "outline_ids",
        nargs="*",
        help="Only check these outline ids (default: all live outlines).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only print the summary line.",
    )
    args = parser.parse_args(argv)

    from app import app

    with app.app_context():
        report = check_outlines(args.outline_ids)

    if not args.quiet:
        for outline_id, problems in report.items():
            print(f"Outline {outline_id}:")
            for problem in problems:
                print(f"  {problem}")
    if report:
        print(f"{len(report)} outline(s) with problems")
        return 1
    print("All outlines consistent")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
