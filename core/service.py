"""Lesson service: connects content, unlock rules, lesson flow and the progress store."""

import logging
import random
import threading
import time
from datetime import datetime

from .achievements import (
    AchievementEvaluator, calculate_level,
    get_points_for_next_level, get_progress_to_next_level
)
from .config import RECENT_SCORE_WINDOW
from .errors import InvalidTransition, PersistenceError
from .interfaces import ContentRepository, ProgressStore
from .lesson_flow import LessonStateMachine
from .models import LearnerSnapshot
from .unlock import check_lesson_access, lesson_states, next_lesson
from .utils import overall_progress

logger = logging.getLogger(__name__)


class CompletionReceipt:
    """What happened when a finished lesson was handed to the store."""

    def __init__(self, lesson_id: str, score: int, total_possible_points: int,
                 saved: bool, progress=None, awarded: list[str] = None,
                 new_achievements: list[str] = None, notice: str = None):
        self.lesson_id = lesson_id
        self.score = score
        self.total_possible_points = total_possible_points
        self.saved = saved
        self.progress = progress
        self.awarded = awarded or []
        self.new_achievements = new_achievements or []
        self.notice = notice

    def to_dict(self) -> dict:
        return {
            'lesson_id': self.lesson_id,
            'score': self.score,
            'total_possible_points': self.total_possible_points,
            'saved': self.saved,
            'progress': self.progress.to_dict() if self.progress else None,
            'awarded': self.awarded,
            'new_achievements': self.new_achievements,
            'notice': self.notice
        }


class _CompletionJob:
    """Everything needed to persist one completion, detached from the lesson handle.

    Steps already written are remembered, so a retry only redoes what failed.
    """

    def __init__(self, handle: LessonStateMachine):
        self.user_id = handle.user_id
        self.dialect_id = handle.lesson.dialect_id
        self.lesson_id = handle.lesson.id
        self.total_lessons = handle.dialect_total_lessons
        self.percentage = handle.outcome.percentage
        self.potential_achievements = list(handle.potential_achievements)
        self.completed_at = handle.completed_at
        self.progress = None
        self.awarded = []
        self.done = set()  # 'progress', 'score', 'activity', 'achievement:<id>'
        self.receipt = None


class LessonService:
    """Host-side operations on lessons for one content library and one store."""

    def __init__(self, store: ProgressStore, content: ContentRepository,
                 evaluator: AchievementEvaluator = None,
                 rng=random, clock=time.time, now=datetime.now):
        self.store = store
        self.content = content
        self.evaluator = evaluator or AchievementEvaluator()
        self.rng = rng
        self.clock = clock
        self.now = now
        self.pending: list[_CompletionJob] = []
        self._pending_lock = threading.Lock()
        self._receipts = {}  # (handle id, attempt) -> CompletionReceipt

    def take_snapshot(self, user_id: str) -> LearnerSnapshot:
        completed = {
            p.dialect_id: set(p.completed_lesson_ids)
            for p in self.store.get_all_progress(user_id)
        }
        activity = self.store.get_activity(user_id)
        return LearnerSnapshot(
            completed_by_dialect=completed,
            earned_achievement_ids=self.store.get_earned_achievement_ids(user_id),
            recent_scores=self.store.get_recent_scores(user_id, RECENT_SCORE_WINDOW),
            streak=activity.get('streak', 0),
            last_active_date=activity.get('last_active_date')
        )

    def dialect_overview(self, user_id: str) -> list[dict]:
        progress_by_dialect = {p.dialect_id: p for p in self.store.get_all_progress(user_id)}
        rows = []
        for dialect in self.content.get_dialects():
            progress = progress_by_dialect.get(dialect.id)
            rows.append({
                **dialect.model_dump(),
                'lessons_completed': progress.lessons_completed if progress else 0,
                'progress': progress.progress if progress else 0
            })
        return rows

    def lesson_overview(self, user_id: str, dialect_id: str) -> dict:
        dialect = self.content.get_dialect(dialect_id)
        lessons = self.content.get_lessons_for_dialect(dialect_id)
        completed = self.store.get_completed_lesson_ids(user_id, dialect_id)
        upcoming = next_lesson(lessons, completed)
        return {
            'dialect': dialect,
            'lessons': lesson_states(lessons, completed),
            'next_lesson_number': upcoming.lesson_number if upcoming else None
        }

    def start_lesson(self, user_id: str, dialect_id: str, lesson_number: int) -> LessonStateMachine:
        """Open a lesson for a learner.

        Raises LessonNotFound for unknown dialects/lessons, LessonLocked when the
        previous lesson is not completed, ContentError when no quiz can be built.
        """
        dialect = self.content.get_dialect(dialect_id)
        lesson = self.content.get_lesson(dialect_id, lesson_number)
        dialect_lessons = self.content.get_lessons_for_dialect(dialect_id)
        completed = self.store.get_completed_lesson_ids(user_id, dialect_id)
        check_lesson_access(lesson, dialect_lessons, completed)

        handle = LessonStateMachine(
            lesson, user_id=user_id,
            dialect_total_lessons=dialect.total_lessons,
            snapshot=self.take_snapshot(user_id),
            evaluator=self.evaluator,
            rng=self.rng, clock=self.clock, now=self.now
        )
        logger.info(f"User {user_id} started lesson {lesson.id} (session {handle.id})")
        return handle

    def complete_lesson(self, handle: LessonStateMachine) -> CompletionReceipt:
        """Persist a graded lesson.

        A store failure does not raise: the completion is queued for
        `retry_pending` and the receipt reports `saved=False` with the score intact.
        Completing the same attempt again returns the same receipt until the
        handle is forgotten.
        """
        if handle.step != 'results' or handle.outcome is None:
            raise InvalidTransition("Finish the quiz before completing the lesson.")
        key = (handle.id, handle.attempts)
        if key in self._receipts:
            return self._receipts[key]

        job = _CompletionJob(handle)
        job.receipt = CompletionReceipt(
            job.lesson_id, handle.outcome.score, handle.outcome.total_possible_points,
            saved=False, new_achievements=list(handle.new_achievements)
        )
        try:
            self._persist(job)
        except PersistenceError as e:
            logger.error(f"Could not save lesson {job.lesson_id} for {job.user_id}: {e}")
            with self._pending_lock:
                self.pending.append(job)
            job.receipt.notice = "Your score was not saved yet. We will retry in the background."
        self._receipts[key] = job.receipt
        return job.receipt

    def forget(self, handle: LessonStateMachine) -> None:
        """Drop cached receipts once the host has closed the handle."""
        for key in [k for k in self._receipts if k[0] == handle.id]:
            del self._receipts[key]

    def _persist(self, job: _CompletionJob) -> None:
        if 'progress' not in job.done:
            job.progress = self.store.mark_lesson_completed(
                job.user_id, job.dialect_id, job.lesson_id, job.total_lessons, job.completed_at
            )
            job.done.add('progress')
        for achievement_id in job.potential_achievements:
            step = f'achievement:{achievement_id}'
            if step in job.done:
                continue
            definition = self.evaluator.get_definition(achievement_id)
            if definition is None:
                logger.warning(f"Unknown achievement {achievement_id}, not awarding")
            elif self.store.award_achievement(job.user_id, achievement_id,
                                              definition.metadata(), job.completed_at):
                job.awarded.append(achievement_id)
                logger.info(f"Awarded {achievement_id} to {job.user_id}")
            job.done.add(step)
        if 'score' not in job.done:
            self.store.record_quiz_score(job.user_id, job.lesson_id, job.percentage)
            job.done.add('score')
        if 'activity' not in job.done:
            self.store.record_activity(job.user_id, job.completed_at)
            job.done.add('activity')

        receipt = job.receipt
        receipt.saved = True
        receipt.progress = job.progress
        receipt.awarded = list(job.awarded)
        receipt.notice = None
        logger.info(
            f"Saved lesson {job.lesson_id} for {job.user_id}: "
            f"{job.progress.lessons_completed}/{job.progress.total_lessons} "
            f"({job.progress.progress}%)"
        )

    def retry_pending(self) -> int:
        """Replay queued completions. Returns how many were saved."""
        with self._pending_lock:
            queued, self.pending = self.pending, []
        saved = 0
        for job in queued:
            try:
                self._persist(job)
                saved += 1
            except PersistenceError as e:
                logger.warning(f"Retry for lesson {job.lesson_id} of {job.user_id} failed: {e}")
                with self._pending_lock:
                    self.pending.append(job)
        return saved

    def get_summary(self, user_id: str) -> dict:
        dialects = self.content.get_dialects()
        progress_by_dialect = {p.dialect_id: p for p in self.store.get_all_progress(user_id)}
        achievements = self.store.get_achievements(user_id)
        activity = self.store.get_activity(user_id)
        points = sum(a.points for a in achievements)

        rows = []
        for dialect in dialects:
            progress = progress_by_dialect.get(dialect.id)
            rows.append({
                'dialect_id': dialect.id,
                'name': dialect.name,
                'lessons_completed': progress.lessons_completed if progress else 0,
                'total_lessons': dialect.total_lessons,
                'progress': progress.progress if progress else 0,
                'last_studied_at': (progress.last_studied_at.isoformat()
                                    if progress and progress.last_studied_at else None)
            })

        last_active = activity.get('last_active_date')
        return {
            'user_id': user_id,
            'overall_progress': overall_progress([r['progress'] for r in rows], len(dialects)),
            'total_lessons_completed': sum(r['lessons_completed'] for r in rows),
            'dialects': rows,
            'achievement_count': len(achievements),
            'total_points': points,
            'level': calculate_level(points),
            'points_for_next_level': get_points_for_next_level(points),
            'progress_to_next_level': round(get_progress_to_next_level(points), 1),
            'streak': activity.get('streak', 0),
            'last_active_date': str(last_active) if last_active else None,
            'pending_saves': sum(1 for job in self.pending if job.user_id == user_id)
        }

    def reset_user(self, user_id: str) -> None:
        self.store.reset_user(user_id)
        with self._pending_lock:
            self.pending = [job for job in self.pending if job.user_id != user_id]
        logger.info(f"Reset progress for {user_id}")
