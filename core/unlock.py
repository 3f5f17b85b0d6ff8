"""Sequential lesson unlocking.

Lesson 1 of a dialect is always open. Lesson n opens once lesson n-1 of the
same dialect is completed. If lesson n-1 cannot be found the lesson stays
locked.
"""

from .content import Lesson
from .errors import LessonLocked


def _predecessor(lesson: Lesson, dialect_lessons: list[Lesson]) -> Lesson | None:
    for candidate in dialect_lessons:
        if (candidate.dialect_id == lesson.dialect_id
                and candidate.lesson_number == lesson.lesson_number - 1):
            return candidate
    return None


def is_lesson_locked(lesson: Lesson, dialect_lessons: list[Lesson], completed_ids) -> bool:
    if lesson.lesson_number == 1:
        return False
    previous = _predecessor(lesson, dialect_lessons)
    if previous is None:
        return True
    return previous.id not in completed_ids


def check_lesson_access(lesson: Lesson, dialect_lessons: list[Lesson], completed_ids) -> None:
    """Raise LessonLocked with a learner-facing message if the lesson is locked."""
    if not is_lesson_locked(lesson, dialect_lessons, completed_ids):
        return
    previous = _predecessor(lesson, dialect_lessons)
    if previous is None:
        raise LessonLocked(f"Lesson {lesson.lesson_number} is not available yet.")
    raise LessonLocked(
        f"Complete Lesson {previous.lesson_number}: {previous.title} "
        f"to unlock Lesson {lesson.lesson_number}."
    )


def lesson_states(dialect_lessons: list[Lesson], completed_ids) -> list[dict]:
    """Per-lesson {lesson, locked, completed} rows for a dialect overview."""
    return [
        {
            'lesson': lesson,
            'locked': is_lesson_locked(lesson, dialect_lessons, completed_ids),
            'completed': lesson.id in completed_ids
        }
        for lesson in dialect_lessons
    ]


def next_lesson(dialect_lessons: list[Lesson], completed_ids) -> Lesson | None:
    """First unlocked lesson not yet completed, or None if the dialect is done."""
    for lesson in sorted(dialect_lessons, key=lambda l: l.lesson_number):
        if lesson.id in completed_ids:
            continue
        if not is_lesson_locked(lesson, dialect_lessons, completed_ids):
            return lesson
    return None
