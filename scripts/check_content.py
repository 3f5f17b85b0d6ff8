#!/usr/bin/env python3
"""Validate a lesson content file and print a per-dialect summary.

Runs the strict loader, so any malformed quiz question fails the check.
Also reports lessons that cannot produce a quiz at all.

    python scripts/check_content.py [path/to/content.json]
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import DEFAULT_CONTENT_PATH
from core.content import ContentLibrary
from core.errors import ContentError
from core.quiz import candidate_questions


def summarize(library: ContentLibrary) -> list[str]:
    """One line per dialect, plus warnings for lessons without a possible quiz."""
    lines = []
    for dialect in library.get_dialects():
        lessons = library.get_lessons_for_dialect(dialect.id)
        authored = sum(len(lesson.quiz_questions) for lesson in lessons)
        words = sum(len(lesson.vocabulary) for lesson in lessons)
        lines.append(
            f"{dialect.id}: {len(lessons)}/{dialect.total_lessons} lessons, "
            f"{words} vocabulary items, {authored} authored questions"
        )
        for lesson in lessons:
            if not candidate_questions(lesson):
                lines.append(f"  WARNING {lesson.id}: no quiz questions can be built")
    return lines


def main():
    parser = argparse.ArgumentParser(description='Check diyalekto lesson content')
    parser.add_argument(
        'path',
        nargs='?',
        default=str(DEFAULT_CONTENT_PATH),
        help=f'Content JSON file (default: {DEFAULT_CONTENT_PATH})'
    )
    args = parser.parse_args()

    try:
        library = ContentLibrary.from_file(args.path, strict=True)
    except ContentError as e:
        print(f"Invalid content: {e}")
        sys.exit(1)

    for line in summarize(library):
        print(line)
    print('Content OK')


if __name__ == '__main__':
    main()
