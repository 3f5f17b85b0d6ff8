from .models import (
    QuizResult, QuizOutcome, QuizSession, UserProgress, AchievementRecord, LearnerSnapshot
)
from .content import VocabularyItem, QuizQuestion, Lesson, Dialect, ContentLibrary
from .interfaces import ContentRepository, ProgressStore
from .errors import (
    DiyalektoError, ContentError, LessonNotFound, PolicyViolation,
    LessonLocked, AttemptLimitReached, InvalidTransition, InvalidAnswer,
    PersistenceError
)
from .quiz import build_session, grade, submit
from .lesson_flow import LessonStateMachine, STEPS
from .achievements import (
    ACHIEVEMENTS, AchievementDefinition, AchievementEvaluator, CompletionContext,
    get_achievement_by_id, calculate_level
)
from .unlock import is_lesson_locked, check_lesson_access, next_lesson
from .events import ProgressFeed, Subscription
from .service import LessonService, CompletionReceipt
from .config import QUIZ_SESSION_SIZE, MAX_QUIZ_ATTEMPTS, POINTS_PER_LEVEL

__all__ = [
    'QuizResult', 'QuizOutcome', 'QuizSession', 'UserProgress', 'AchievementRecord',
    'LearnerSnapshot',
    'VocabularyItem', 'QuizQuestion', 'Lesson', 'Dialect', 'ContentLibrary',
    'ContentRepository', 'ProgressStore',
    'DiyalektoError', 'ContentError', 'LessonNotFound', 'PolicyViolation',
    'LessonLocked', 'AttemptLimitReached', 'InvalidTransition', 'InvalidAnswer',
    'PersistenceError',
    'build_session', 'grade', 'submit',
    'LessonStateMachine', 'STEPS',
    'ACHIEVEMENTS', 'AchievementDefinition', 'AchievementEvaluator', 'CompletionContext',
    'get_achievement_by_id', 'calculate_level',
    'is_lesson_locked', 'check_lesson_access', 'next_lesson',
    'ProgressFeed', 'Subscription',
    'LessonService', 'CompletionReceipt',
    'QUIZ_SESSION_SIZE', 'MAX_QUIZ_ATTEMPTS', 'POINTS_PER_LEVEL'
]
