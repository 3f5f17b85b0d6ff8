"""Achievement definitions and evaluation.

Every definition carries a structured condition. When a lesson reaches its
results, the evaluator projects the learner snapshot taken at lesson start
forward by this completion and checks each condition. The result is the set
of achievements the completion qualifies for ("potential"); the ones the
learner already holds are removed for display ("new"). The store still
refuses duplicates on its own when the potential set is persisted.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from .config import (
    SPEED_DEMON_MS, EARLY_BIRD_HOUR, NIGHT_OWL_HOUR,
    POLYGLOT_DIALECT_COUNT, DIALECT_EXPLORER_COUNT,
    QUIZ_MASTER_THRESHOLD, QUIZ_MASTER_REQUIRED,
    PERFECTIONIST_RUN, COMEBACK_FROM_SCORE, CONSISTENT_STREAK_DAYS,
    POINTS_PER_LEVEL
)
from .models import LearnerSnapshot, QuizOutcome
from .utils import next_streak

ConditionType = Literal[
    'lesson_complete', 'total_lessons', 'time_limit', 'quiz_score',
    'quiz_score_count', 'perfect_streak', 'comeback', 'dialect_complete',
    'dialects_started', 'streak_days', 'before_hour', 'after_hour', 'weekend'
]


class AchievementCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ConditionType
    value: Optional[int] = None
    min_score: Optional[int] = None   # quiz_score_count only
    dialect_id: Optional[str] = None  # limits the condition to one dialect


class AchievementDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    icon: str
    points: int
    type: Literal['lesson', 'quiz', 'streak', 'milestone', 'special']
    category: Literal['beginner', 'intermediate', 'advanced', 'master']
    condition: Optional[AchievementCondition] = None

    def metadata(self) -> dict:
        """Fields copied onto the stored achievement record."""
        return {
            'title': self.title,
            'description': self.description,
            'icon': self.icon,
            'points': self.points,
            'category': self.category,
            'type': self.type
        }


def _define(id, title, description, icon, points, kind, category, condition_type, **condition):
    return AchievementDefinition(
        id=id, title=title, description=description, icon=icon, points=points,
        type=kind, category=category,
        condition=AchievementCondition(type=condition_type, **condition)
    )


ACHIEVEMENTS: list[AchievementDefinition] = [
    # Beginner
    _define('first_steps', 'First Steps', 'Completed your first dialect lesson',
            'star', 50, 'lesson', 'beginner', 'lesson_complete', value=1),
    _define('first_lesson_complete', 'First Lesson Complete!', 'Completed your first lesson',
            'trophy', 100, 'lesson', 'beginner', 'total_lessons', value=1),
    _define('speed_demon', 'Speed Demon', 'Completed a lesson quiz in under 5 minutes',
            'zap', 75, 'quiz', 'beginner', 'time_limit', value=SPEED_DEMON_MS),
    _define('perfect_scholar', 'Perfect Scholar', 'Scored 100% on a lesson quiz',
            'target', 100, 'quiz', 'beginner', 'quiz_score', value=100),
    _define('early_bird', 'Early Bird', 'Completed a lesson before 8 AM',
            'sun', 50, 'special', 'beginner', 'before_hour', value=EARLY_BIRD_HOUR),
    _define('night_owl', 'Night Owl', 'Completed a lesson after 10 PM',
            'moon', 50, 'special', 'beginner', 'after_hour', value=NIGHT_OWL_HOUR),
    # Intermediate
    _define('learning_streak', 'Learning Streak!', 'Completed 5 lessons',
            'flame', 250, 'milestone', 'intermediate', 'total_lessons', value=5),
    _define('dedicated_learner', 'Dedicated Learner!', 'Completed 10 lessons',
            'book-open', 500, 'milestone', 'intermediate', 'total_lessons', value=10),
    _define('quiz_master', 'Quiz Master', 'Scored 90% or higher on 5 quizzes',
            'medal', 300, 'quiz', 'intermediate', 'quiz_score_count',
            value=QUIZ_MASTER_REQUIRED, min_score=QUIZ_MASTER_THRESHOLD),
    _define('perfectionist', 'Perfectionist', 'Scored 100% on 3 consecutive quizzes',
            'target', 300, 'quiz', 'intermediate', 'perfect_streak', value=PERFECTIONIST_RUN),
    _define('comeback_kid', 'Comeback Kid', 'Improved from 60% or less to 100% on a retake',
            'trophy', 150, 'quiz', 'intermediate', 'comeback', value=COMEBACK_FROM_SCORE),
    _define('weekend_warrior', 'Weekend Warrior', 'Completed a lesson on the weekend',
            'calendar', 200, 'special', 'intermediate', 'weekend'),
    # Advanced
    _define('dialect_explorer', 'Dialect Explorer', 'Started learning 3 different dialects',
            'globe', 400, 'milestone', 'advanced', 'dialects_started',
            value=DIALECT_EXPLORER_COUNT),
    _define('consistent_learner', 'Consistent Learner', 'Maintained a 7-day learning streak',
            'flame', 350, 'streak', 'advanced', 'streak_days', value=CONSISTENT_STREAK_DAYS),
    _define('dialect_master', 'Dialect Master', 'Completed all lessons in a dialect',
            'crown', 1000, 'milestone', 'advanced', 'dialect_complete'),
    # Master
    _define('polyglot', 'Polyglot', 'Completed lessons in all 4 dialects',
            'globe', 2000, 'special', 'master', 'dialects_started',
            value=POLYGLOT_DIALECT_COUNT),
]


def get_achievement_by_id(achievement_id: str) -> AchievementDefinition | None:
    for achievement in ACHIEVEMENTS:
        if achievement.id == achievement_id:
            return achievement
    return None


def get_achievements_by_category(category: str) -> list[AchievementDefinition]:
    return [a for a in ACHIEVEMENTS if a.category == category]


def get_achievements_by_type(type: str) -> list[AchievementDefinition]:
    return [a for a in ACHIEVEMENTS if a.type == type]


class CompletionContext:
    """Facts about the lesson attempt being completed."""

    def __init__(self, lesson_id: str, dialect_id: str, lesson_number: int,
                 dialect_total_lessons: int, outcome: QuizOutcome, completed_at: datetime,
                 previous_attempt_percentages: list[int] = None):
        self.lesson_id = lesson_id
        self.dialect_id = dialect_id
        self.lesson_number = lesson_number
        self.dialect_total_lessons = dialect_total_lessons
        self.outcome = outcome
        self.completed_at = completed_at
        self.previous_attempt_percentages = list(previous_attempt_percentages or [])


class _Projection:
    """Learner snapshot as it will look once the current lesson is recorded."""

    def __init__(self, context: CompletionContext, snapshot: LearnerSnapshot):
        self.completed_by_dialect = {
            d: set(ids) for d, ids in snapshot.completed_by_dialect.items()
        }
        self.completed_by_dialect.setdefault(context.dialect_id, set()).add(context.lesson_id)
        self.total_completed = sum(len(ids) for ids in self.completed_by_dialect.values())
        self.dialects_started = sum(1 for ids in self.completed_by_dialect.values() if ids)
        self.scores = snapshot.recent_scores + [context.outcome.percentage]
        self.streak = next_streak(snapshot.streak, snapshot.last_active_date,
                                  context.completed_at.date())


def _lesson_complete(cond, ctx, proj):
    return ctx.lesson_number == (cond.value or 1)


def _total_lessons(cond, ctx, proj):
    if cond.dialect_id:
        count = len(proj.completed_by_dialect.get(cond.dialect_id, ()))
    else:
        count = proj.total_completed
    return count >= (cond.value or 0)


def _time_limit(cond, ctx, proj):
    return ctx.outcome.elapsed_ms < cond.value


def _quiz_score(cond, ctx, proj):
    outcome = ctx.outcome
    if outcome.total_possible_points <= 0:
        return False
    return outcome.score * 100 >= cond.value * outcome.total_possible_points


def _quiz_score_count(cond, ctx, proj):
    return sum(1 for s in proj.scores if s >= cond.min_score) >= cond.value


def _perfect_streak(cond, ctx, proj):
    run = proj.scores[-cond.value:]
    return len(run) == cond.value and all(s == 100 for s in run)


def _comeback(cond, ctx, proj):
    if not ctx.outcome.is_perfect:
        return False
    return any(p <= cond.value for p in ctx.previous_attempt_percentages)


def _dialect_complete(cond, ctx, proj):
    completed = len(proj.completed_by_dialect.get(ctx.dialect_id, ()))
    return ctx.dialect_total_lessons > 0 and completed >= ctx.dialect_total_lessons


def _dialects_started(cond, ctx, proj):
    return proj.dialects_started >= cond.value


def _streak_days(cond, ctx, proj):
    return proj.streak >= cond.value


def _before_hour(cond, ctx, proj):
    return ctx.completed_at.hour < cond.value


def _after_hour(cond, ctx, proj):
    return ctx.completed_at.hour >= cond.value


def _weekend(cond, ctx, proj):
    return ctx.completed_at.weekday() >= 5


_CHECKS = {
    'lesson_complete': _lesson_complete,
    'total_lessons': _total_lessons,
    'time_limit': _time_limit,
    'quiz_score': _quiz_score,
    'quiz_score_count': _quiz_score_count,
    'perfect_streak': _perfect_streak,
    'comeback': _comeback,
    'dialect_complete': _dialect_complete,
    'dialects_started': _dialects_started,
    'streak_days': _streak_days,
    'before_hour': _before_hour,
    'after_hour': _after_hour,
    'weekend': _weekend,
}

# Conditions judged on a single dialect's lesson. A dialect-scoped definition
# of one of these only applies while completing a lesson of that dialect.
_LESSON_SCOPED = {'lesson_complete', 'dialect_complete'}


class AchievementEvaluator:
    """Decides which achievements a lesson completion qualifies for."""

    def __init__(self, definitions: list[AchievementDefinition] = None):
        self.definitions = list(ACHIEVEMENTS if definitions is None else definitions)
        ids = [d.id for d in self.definitions]
        if len(ids) != len(set(ids)):
            raise ValueError("Achievement definitions must have unique ids")

    def get_definition(self, achievement_id: str) -> AchievementDefinition | None:
        for definition in self.definitions:
            if definition.id == achievement_id:
                return definition
        return None

    def evaluate(self, context: CompletionContext, snapshot: LearnerSnapshot) -> list[str]:
        """Ids of every achievement this completion satisfies, in definition order."""
        projection = _Projection(context, snapshot)
        satisfied = []
        for definition in self.definitions:
            condition = definition.condition
            if condition is None:
                continue
            if (condition.type in _LESSON_SCOPED and condition.dialect_id
                    and condition.dialect_id != context.dialect_id):
                continue
            if _CHECKS[condition.type](condition, context, projection):
                satisfied.append(definition.id)
        return satisfied

    @staticmethod
    def split_new(potential: list[str], earned_ids: set) -> list[str]:
        """Drop achievements the learner already holds."""
        return [a for a in potential if a not in earned_ids]


def calculate_level(total_points: int) -> int:
    return total_points // POINTS_PER_LEVEL + 1


def get_points_for_next_level(total_points: int) -> int:
    return calculate_level(total_points) * POINTS_PER_LEVEL - total_points


def get_progress_to_next_level(total_points: int) -> float:
    """Percent of the way through the current level."""
    points_in_level = total_points - (calculate_level(total_points) - 1) * POINTS_PER_LEVEL
    return points_in_level / POINTS_PER_LEVEL * 100
