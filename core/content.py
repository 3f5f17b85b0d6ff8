"""Lesson content schemas and the in-memory content library.

Content is authored outside the application (see data/content.json) and is
validated once at load time:

- every lesson belongs to a known dialect
- lesson ids are unique
- lesson numbers are unique per dialect and dense from 1
- a dialect never holds more lessons than its declared total
- every quiz question's correct answer points inside its options

Malformed quiz questions either fail the load (strict mode, used in
development) or are logged and dropped (lenient mode).
"""

import json
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ContentError, LessonNotFound
from .interfaces import ContentRepository

logger = logging.getLogger(__name__)

Difficulty = Literal['easy', 'medium', 'hard']
QuestionType = Literal['multiple-choice', 'translation', 'listening']


class VocabularyItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    word: str = Field(..., min_length=1)
    translation: str = Field(..., min_length=1)
    pronunciation: Optional[str] = None
    category: Optional[str] = None


class QuizQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    question: str
    options: list[str] = Field(..., min_length=2)
    correct_answer: int = Field(..., ge=0)
    points: int = Field(10, gt=0)
    explanation: Optional[str] = None
    difficulty: Difficulty = 'medium'
    type: QuestionType = 'multiple-choice'

    @model_validator(mode='after')
    def _correct_answer_in_options(self) -> 'QuizQuestion':
        if self.correct_answer >= len(self.options):
            raise ValueError(
                f"correct_answer {self.correct_answer} is out of range "
                f"for {len(self.options)} options"
            )
        return self

    @property
    def correct_text(self) -> str:
        return self.options[self.correct_answer]


class Lesson(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    dialect_id: str
    lesson_number: int = Field(..., ge=1)
    title: str
    description: str = ''
    content: str = ''
    vocabulary: list[VocabularyItem] = []
    quiz_questions: list[QuizQuestion] = []
    cultural_note: Optional[str] = None
    objectives: list[str] = []

    @model_validator(mode='after')
    def _unique_question_ids(self) -> 'Lesson':
        seen = set()
        for q in self.quiz_questions:
            if q.id in seen:
                raise ValueError(f"duplicate quiz question id '{q.id}'")
            seen.add(q.id)
        return self


class Dialect(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    description: str = ''
    region: str = ''
    color: str = ''
    total_lessons: int = Field(..., ge=1)


def _parse_questions(lesson_id: str, raw_questions: list, strict: bool) -> list[dict]:
    """Validate authored questions one by one so a bad one can be skipped."""
    kept = []
    seen = set()
    for index, raw in enumerate(raw_questions):
        try:
            question = QuizQuestion.model_validate(raw)
            if question.id in seen:
                raise ValueError(f"duplicate quiz question id '{question.id}'")
        except (ValidationError, ValueError) as e:
            message = f"Lesson '{lesson_id}' question #{index}: {e}"
            if strict:
                raise ContentError(message) from e
            logger.warning(f"Skipping malformed question. {message}")
            continue
        seen.add(question.id)
        kept.append(raw)
    return kept


class ContentLibrary(ContentRepository):
    """Validated, read-only dialect and lesson content held in memory."""

    def __init__(self, dialects: list[Dialect], lessons: list[Lesson]):
        self._dialects: dict[str, Dialect] = {}
        for dialect in dialects:
            if dialect.id in self._dialects:
                raise ContentError(f"Duplicate dialect id '{dialect.id}'")
            self._dialects[dialect.id] = dialect

        self._lessons_by_id: dict[str, Lesson] = {}
        self._lessons_by_dialect: dict[str, list[Lesson]] = {d: [] for d in self._dialects}
        for lesson in lessons:
            if lesson.dialect_id not in self._dialects:
                raise ContentError(
                    f"Lesson '{lesson.id}' refers to unknown dialect '{lesson.dialect_id}'"
                )
            if lesson.id in self._lessons_by_id:
                raise ContentError(f"Duplicate lesson id '{lesson.id}'")
            self._lessons_by_id[lesson.id] = lesson
            self._lessons_by_dialect[lesson.dialect_id].append(lesson)

        for dialect_id, dialect_lessons in self._lessons_by_dialect.items():
            dialect_lessons.sort(key=lambda lesson: lesson.lesson_number)
            numbers = [lesson.lesson_number for lesson in dialect_lessons]
            if numbers != list(range(1, len(numbers) + 1)):
                raise ContentError(
                    f"Lesson numbers for dialect '{dialect_id}' must be 1..n "
                    f"without gaps or repeats, got {numbers}"
                )
            total = self._dialects[dialect_id].total_lessons
            if len(numbers) > total:
                raise ContentError(
                    f"Dialect '{dialect_id}' declares {total} lessons "
                    f"but has {len(numbers)}"
                )

    @classmethod
    def from_dict(cls, data: dict, strict: bool = False) -> 'ContentLibrary':
        """Build from {dialects: [...], lessons: [...]}."""
        try:
            dialects = [Dialect.model_validate(d) for d in data.get('dialects', [])]
        except ValidationError as e:
            raise ContentError(f"Invalid dialect record: {e}") from e

        lessons = []
        for raw in data.get('lessons', []):
            lesson_id = raw.get('id', '?') if isinstance(raw, dict) else '?'
            try:
                fields = dict(raw)
                fields['quiz_questions'] = _parse_questions(
                    lesson_id, fields.get('quiz_questions', []), strict
                )
                lessons.append(Lesson.model_validate(fields))
            except (TypeError, ValueError) as e:
                # ValidationError is a ValueError
                raise ContentError(f"Invalid lesson '{lesson_id}': {e}") from e

        return cls(dialects, lessons)

    @classmethod
    def from_file(cls, path, strict: bool = False) -> 'ContentLibrary':
        path = Path(path)
        if not path.exists():
            raise ContentError(f"Content file not found at {path}")
        with open(path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ContentError(f"Content file {path} is not valid JSON: {e}") from e
        library = cls.from_dict(data, strict=strict)
        logger.info(
            f"Loaded content from {path}: {len(library._dialects)} dialects, "
            f"{len(library._lessons_by_id)} lessons"
        )
        return library

    def get_dialects(self) -> list[Dialect]:
        return list(self._dialects.values())

    def get_dialect(self, dialect_id: str) -> Dialect:
        dialect = self._dialects.get(dialect_id)
        if dialect is None:
            raise LessonNotFound(f"Dialect '{dialect_id}' not found")
        return dialect

    def get_lesson(self, dialect_id: str, lesson_number: int) -> Lesson:
        for lesson in self.get_lessons_for_dialect(dialect_id):
            if lesson.lesson_number == lesson_number:
                return lesson
        raise LessonNotFound(f"Lesson {lesson_number} not found in dialect '{dialect_id}'")

    def get_lesson_by_id(self, lesson_id: str) -> Lesson:
        lesson = self._lessons_by_id.get(lesson_id)
        if lesson is None:
            raise LessonNotFound(f"Lesson '{lesson_id}' not found")
        return lesson

    def get_lessons_for_dialect(self, dialect_id: str) -> list[Lesson]:
        self.get_dialect(dialect_id)
        return list(self._lessons_by_dialect[dialect_id])
