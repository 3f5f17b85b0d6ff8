"""Domain models for diyalekto application."""

import uuid
from datetime import date, datetime

from .errors import InvalidAnswer
from .utils import compute_progress, parse_date


def _parse_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class QuizResult:
    """Grading of a single question."""

    def __init__(self, question_id: str, is_correct: bool, selected_answer: int | None,
                 correct_answer: int, points: int, time_spent: int):
        self.question_id = question_id
        self.is_correct = is_correct
        self.selected_answer = selected_answer
        self.correct_answer = correct_answer
        self.points = points
        self.time_spent = time_spent

    def to_dict(self) -> dict:
        return {
            'question_id': self.question_id,
            'is_correct': self.is_correct,
            'selected_answer': self.selected_answer,
            'correct_answer': self.correct_answer,
            'points': self.points,
            'time_spent': self.time_spent
        }


class QuizOutcome:
    """Aggregate result of grading a quiz session."""

    def __init__(self, score: int, total_possible_points: int, results: list[QuizResult],
                 elapsed_ms: int):
        self.score = score
        self.total_possible_points = total_possible_points
        self.results = results
        self.elapsed_ms = elapsed_ms

    @property
    def percentage(self) -> int:
        if self.total_possible_points <= 0:
            return 0
        # Floored, so only a perfect score reads as 100
        return self.score * 100 // self.total_possible_points

    @property
    def is_perfect(self) -> bool:
        return self.total_possible_points > 0 and self.score == self.total_possible_points

    @property
    def correct_count(self) -> int:
        return sum(1 for r in self.results if r.is_correct)

    def to_dict(self) -> dict:
        return {
            'score': self.score,
            'total_possible_points': self.total_possible_points,
            'percentage': self.percentage,
            'correct_count': self.correct_count,
            'question_count': len(self.results),
            'elapsed_ms': self.elapsed_ms,
            'results': [r.to_dict() for r in self.results]
        }


class QuizSession:
    """One attempt at a lesson quiz: the drawn questions and the learner's answers."""

    def __init__(self, lesson_id: str, questions: list, started_at_ms: int):
        self.id = str(uuid.uuid4())[:8]
        self.lesson_id = lesson_id
        self.questions = list(questions)
        self.started_at_ms = started_at_ms
        self.answers = {}       # question_id -> selected option index
        self.answer_times = {}  # question_id -> ms since session start
        self.submitted_at_ms = None

    @property
    def total_possible_points(self) -> int:
        return sum(q.points for q in self.questions)

    @property
    def submitted(self) -> bool:
        return self.submitted_at_ms is not None

    @property
    def elapsed_ms(self) -> int | None:
        if self.submitted_at_ms is None:
            return None
        return self.submitted_at_ms - self.started_at_ms

    def get_question(self, question_id: str):
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def select_answer(self, question_id: str, option_index: int, at_ms: int) -> None:
        """Record an answer. A later answer to the same question replaces the earlier one."""
        if self.submitted:
            raise InvalidAnswer("This quiz has already been submitted.")
        question = self.get_question(question_id)
        if question is None:
            raise InvalidAnswer(f"Question '{question_id}' is not part of this quiz.")
        if isinstance(option_index, bool) or not 0 <= option_index < len(question.options):
            raise InvalidAnswer(
                f"Option {option_index} does not exist for question '{question_id}'."
            )
        self.answers[question_id] = option_index
        self.answer_times[question_id] = max(0, at_ms - self.started_at_ms)

    def to_dict(self, reveal: bool = False) -> dict:
        """Learner-facing view. Correct answers are only included when `reveal` is set."""
        questions = []
        for q in self.questions:
            item = {
                'id': q.id,
                'question': q.question,
                'options': list(q.options),
                'points': q.points,
                'difficulty': q.difficulty,
                'type': q.type,
                'selected_answer': self.answers.get(q.id)
            }
            if reveal:
                item['correct_answer'] = q.correct_answer
                item['explanation'] = q.explanation
            questions.append(item)
        return {
            'id': self.id,
            'lesson_id': self.lesson_id,
            'questions': questions,
            'total_possible_points': self.total_possible_points,
            'answered_count': len(self.answers),
            'started_at_ms': self.started_at_ms,
            'submitted': self.submitted
        }


class UserProgress:
    """Completion state of one user in one dialect."""

    def __init__(self, user_id: str, dialect_id: str, total_lessons: int,
                 completed_lesson_ids: list[str] = None, last_studied_at: datetime = None):
        self.user_id = user_id
        self.dialect_id = dialect_id
        self.total_lessons = total_lessons
        self.completed_lesson_ids = []
        for lesson_id in completed_lesson_ids or []:
            if lesson_id not in self.completed_lesson_ids:
                self.completed_lesson_ids.append(lesson_id)
        self.last_studied_at = last_studied_at

    @property
    def lessons_completed(self) -> int:
        return len(self.completed_lesson_ids)

    @property
    def progress(self) -> int:
        return compute_progress(self.lessons_completed, self.total_lessons)

    def mark_completed(self, lesson_id: str, when: datetime = None) -> bool:
        """Add a lesson to the completed set. Returns True if it was not there yet."""
        self.last_studied_at = when or datetime.now()
        if lesson_id in self.completed_lesson_ids:
            return False
        self.completed_lesson_ids.append(lesson_id)
        return True

    def to_dict(self) -> dict:
        return {
            'user_id': self.user_id,
            'dialect_id': self.dialect_id,
            'total_lessons': self.total_lessons,
            'lessons_completed': self.lessons_completed,
            'completed_lesson_ids': list(self.completed_lesson_ids),
            'progress': self.progress,
            'last_studied_at': self.last_studied_at.isoformat() if self.last_studied_at else None
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'UserProgress':
        # lessons_completed and progress are derived; stored copies are ignored
        return cls(
            data['user_id'],
            data['dialect_id'],
            data.get('total_lessons', 0),
            data.get('completed_lesson_ids', []),
            _parse_datetime(data.get('last_studied_at'))
        )


class AchievementRecord:
    """An achievement held by a user."""

    def __init__(self, user_id: str, achievement_id: str, title: str, description: str,
                 icon: str, points: int, category: str, type: str, earned_at: datetime = None):
        self.user_id = user_id
        self.achievement_id = achievement_id
        self.title = title
        self.description = description
        self.icon = icon
        self.points = points
        self.category = category
        self.type = type
        self.earned_at = earned_at

    @classmethod
    def from_metadata(cls, user_id: str, achievement_id: str, metadata: dict,
                      earned_at: datetime) -> 'AchievementRecord':
        return cls(
            user_id, achievement_id,
            metadata.get('title', achievement_id),
            metadata.get('description', ''),
            metadata.get('icon', ''),
            int(metadata.get('points', 0)),
            metadata.get('category', ''),
            metadata.get('type', ''),
            earned_at
        )

    def to_dict(self) -> dict:
        return {
            'user_id': self.user_id,
            'achievement_id': self.achievement_id,
            'title': self.title,
            'description': self.description,
            'icon': self.icon,
            'points': self.points,
            'category': self.category,
            'type': self.type,
            'earned_at': self.earned_at.isoformat() if self.earned_at else None
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AchievementRecord':
        return cls(
            data['user_id'], data['achievement_id'],
            data.get('title', ''), data.get('description', ''), data.get('icon', ''),
            data.get('points', 0), data.get('category', ''), data.get('type', ''),
            _parse_datetime(data.get('earned_at'))
        )


class LearnerSnapshot:
    """What the stores knew about a learner when a lesson was opened.

    Achievement evaluation projects this forward by the lesson being completed,
    so no store access is needed while the lesson runs.
    """

    def __init__(self, completed_by_dialect: dict[str, set] = None,
                 earned_achievement_ids: set = None, recent_scores: list[int] = None,
                 streak: int = 0, last_active_date: date = None):
        self.completed_by_dialect = {
            dialect_id: set(ids) for dialect_id, ids in (completed_by_dialect or {}).items()
        }
        self.earned_achievement_ids = set(earned_achievement_ids or ())
        self.recent_scores = list(recent_scores or [])
        self.streak = streak
        self.last_active_date = parse_date(last_active_date)

    @property
    def total_completed(self) -> int:
        return sum(len(ids) for ids in self.completed_by_dialect.values())

    @property
    def dialects_started(self) -> int:
        return sum(1 for ids in self.completed_by_dialect.values() if ids)

    def to_dict(self) -> dict:
        return {
            'completed_by_dialect': {
                d: sorted(ids) for d, ids in self.completed_by_dialect.items()
            },
            'earned_achievement_ids': sorted(self.earned_achievement_ids),
            'recent_scores': self.recent_scores,
            'streak': self.streak,
            'last_active_date': self.last_active_date.isoformat() if self.last_active_date else None
        }
