"""Lesson progression: objectives -> vocabulary -> content -> quiz -> results.

The machine only computes. Nothing is persisted here; once the lesson is in
`results` the host reads `result()` and decides what to store.
"""

import logging
import random
import time
import uuid
from datetime import datetime

from .achievements import AchievementEvaluator, CompletionContext
from .config import MAX_QUIZ_ATTEMPTS, QUIZ_SESSION_SIZE
from .content import Lesson
from .errors import AttemptLimitReached, InvalidTransition
from .models import LearnerSnapshot
from .quiz import build_session, ensure_quizzable, submit
from .utils import now_ms

logger = logging.getLogger(__name__)

STEPS = ['objectives', 'vocabulary', 'content', 'quiz', 'results']


class LessonStateMachine:
    """One learner's visit to one lesson."""

    def __init__(self, lesson: Lesson, user_id: str = "default",
                 dialect_total_lessons: int = 0,
                 snapshot: LearnerSnapshot = None,
                 evaluator: AchievementEvaluator = None,
                 rng=random, clock=time.time, now=datetime.now,
                 session_size: int = QUIZ_SESSION_SIZE,
                 max_attempts: int = MAX_QUIZ_ATTEMPTS):
        ensure_quizzable(lesson)
        self.id = str(uuid.uuid4())[:8]
        self.lesson = lesson
        self.user_id = user_id
        self.dialect_total_lessons = dialect_total_lessons
        self.snapshot = snapshot or LearnerSnapshot()
        self.evaluator = evaluator or AchievementEvaluator()
        self.rng = rng
        self.clock = clock
        self.now = now
        self.session_size = session_size
        self.max_attempts = max_attempts

        self.step = 'objectives'
        self.attempts = 0
        self.attempt_percentages = []
        self.session = None
        self.current_question_index = 0
        self.selected_answer = None
        self.submitted = False
        self.outcome = None
        self.completed_at = None
        self.potential_achievements = []
        self.new_achievements = []

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    @property
    def can_retake(self) -> bool:
        return self.step == 'results' and self.attempts < self.max_attempts

    @property
    def current_question(self):
        if self.session is None or not self.session.questions:
            return None
        return self.session.questions[self.current_question_index]

    def advance(self) -> str:
        """Move to the next step. Leaving the quiz submits it; results is terminal."""
        if self.step == 'results':
            return self.step
        if self.step == 'quiz':
            self.submit_quiz()
            return self.step
        following = STEPS[STEPS.index(self.step) + 1]
        if following == 'quiz':
            self._enter_quiz()
        else:
            self.step = following
        return self.step

    def retake(self) -> None:
        """Start a fresh attempt from the results screen."""
        if self.step != 'results':
            raise InvalidTransition("You can only retake the quiz from the results screen.")
        if self.attempts >= self.max_attempts:
            raise AttemptLimitReached(
                f"You have used all {self.max_attempts} quiz attempts for this lesson."
            )
        self._enter_quiz()

    def _enter_quiz(self) -> None:
        # Build first so a failure leaves the machine where it was
        session = build_session(self.lesson, rng=self.rng, clock=self.clock,
                                session_size=self.session_size)
        self.attempts += 1
        self.session = session
        self.current_question_index = 0
        self.selected_answer = None
        self.submitted = False
        self.outcome = None
        self.potential_achievements = []
        self.new_achievements = []
        self.step = 'quiz'
        logger.info(f"Lesson {self.lesson.id} attempt {self.attempts} started for {self.user_id}")

    def _require_quiz(self, action: str) -> None:
        if self.step != 'quiz':
            raise InvalidTransition(f"You can only {action} while the quiz is open.")

    def select_answer(self, question_id: str, option_index: int) -> None:
        self._require_quiz("answer questions")
        self.session.select_answer(question_id, option_index, now_ms(self.clock))
        current = self.current_question
        if current is not None and current.id == question_id:
            self.selected_answer = option_index

    def next_question(self) -> bool:
        """Move the question pointer forward. Returns False on the last question."""
        self._require_quiz("move between questions")
        if self.current_question_index >= len(self.session.questions) - 1:
            return False
        self.current_question_index += 1
        self.selected_answer = self.session.answers.get(self.current_question.id)
        return True

    def previous_question(self) -> bool:
        self._require_quiz("move between questions")
        if self.current_question_index == 0:
            return False
        self.current_question_index -= 1
        self.selected_answer = self.session.answers.get(self.current_question.id)
        return True

    def submit_quiz(self) -> dict:
        """Grade the open quiz, evaluate achievements and enter results."""
        self._require_quiz("submit")
        outcome = submit(self.session, clock=self.clock)
        completed_at = self.now()
        context = CompletionContext(
            lesson_id=self.lesson.id,
            dialect_id=self.lesson.dialect_id,
            lesson_number=self.lesson.lesson_number,
            dialect_total_lessons=self.dialect_total_lessons,
            outcome=outcome,
            completed_at=completed_at,
            previous_attempt_percentages=self.attempt_percentages
        )
        potential = self.evaluator.evaluate(context, self.snapshot)

        self.outcome = outcome
        self.completed_at = completed_at
        self.attempt_percentages.append(outcome.percentage)
        self.potential_achievements = potential
        self.new_achievements = AchievementEvaluator.split_new(
            potential, self.snapshot.earned_achievement_ids
        )
        self.submitted = True
        self.step = 'results'
        logger.info(
            f"Lesson {self.lesson.id} attempt {self.attempts} graded for {self.user_id}: "
            f"{outcome.score}/{outcome.total_possible_points}, "
            f"new achievements {self.new_achievements}"
        )
        return self.result()

    def result(self) -> dict:
        """Score and achievements of the latest graded attempt."""
        if self.outcome is None:
            raise InvalidTransition("The quiz has not been submitted yet.")
        return {
            'score': self.outcome.score,
            'total_possible_points': self.outcome.total_possible_points,
            'percentage': self.outcome.percentage,
            'results': [r.to_dict() for r in self.outcome.results],
            'potential_achievements': list(self.potential_achievements),
            'new_achievements': list(self.new_achievements)
        }

    def to_dict(self) -> dict:
        lesson = self.lesson
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'step': self.step,
            'lesson': {
                'id': lesson.id,
                'dialect_id': lesson.dialect_id,
                'lesson_number': lesson.lesson_number,
                'title': lesson.title,
                'description': lesson.description,
                'total_lessons': self.dialect_total_lessons
            },
            'attempts': self.attempts,
            'max_attempts': self.max_attempts,
            'remaining_attempts': self.remaining_attempts,
            'can_retake': self.can_retake,
            'current_question_index': self.current_question_index,
            'selected_answer': self.selected_answer,
            'submitted': self.submitted,
            'quiz': self.session.to_dict(reveal=self.submitted) if self.session else None,
            'result': self.result() if self.outcome is not None else None
        }
        if self.step == 'objectives':
            data['objectives'] = list(lesson.objectives)
        elif self.step == 'vocabulary':
            data['vocabulary'] = [v.model_dump() for v in lesson.vocabulary]
        elif self.step == 'content':
            data['content'] = lesson.content
            data['cultural_note'] = lesson.cultural_note
        return data


def start_lesson(lesson: Lesson, **options) -> LessonStateMachine:
    """Open a lesson at its objectives step. Raises ContentError if it has no quiz."""
    return LessonStateMachine(lesson, **options)


def advance(handle: LessonStateMachine) -> str:
    return handle.advance()


def retake(handle: LessonStateMachine) -> None:
    handle.retake()


def select_answer(handle: LessonStateMachine, question_id: str, option_index: int) -> None:
    handle.select_answer(question_id, option_index)


def submit_quiz(handle: LessonStateMachine) -> dict:
    return handle.submit_quiz()
