"""Quiz session construction and grading."""

import logging
import random
import time

from .config import (
    QUIZ_SESSION_SIZE, MIN_QUESTION_BANK,
    VOCAB_QUESTION_LIMIT, VOCAB_DISTRACTOR_COUNT, VOCAB_QUESTION_POINTS
)
from .content import Lesson, QuizQuestion
from .errors import ContentError
from .models import QuizOutcome, QuizResult, QuizSession
from .utils import now_ms

logger = logging.getLogger(__name__)


def shuffle(items, rng=random) -> list:
    """Return a uniformly shuffled copy of `items` (Fisher-Yates via rng.shuffle)."""
    result = list(items)
    rng.shuffle(result)
    return result


def shuffle_options(question: QuizQuestion, rng=random) -> QuizQuestion:
    """Return a copy of `question` with its options reordered.

    The correct answer index follows the correct option to its new position.
    Positions are tracked by index, so repeated option texts are handled.
    """
    order = shuffle(range(len(question.options)), rng)
    options = [question.options[i] for i in order]
    return question.model_copy(update={
        'options': options,
        'correct_answer': order.index(question.correct_answer)
    })


def _distractors_for(item, vocabulary, count: int) -> list[str]:
    """First `count` distinct translations that differ from the item's own."""
    found = []
    for other in vocabulary:
        if other.translation != item.translation and other.translation not in found:
            found.append(other.translation)
            if len(found) == count:
                break
    return found


def build_vocabulary_questions(lesson: Lesson, rng=random,
                               limit: int = VOCAB_QUESTION_LIMIT,
                               distractor_count: int = VOCAB_DISTRACTOR_COUNT) -> list[QuizQuestion]:
    """Turn up to `limit` vocabulary items into "what does X mean" questions.

    Items without any distinct translation to use as a wrong option are skipped
    rather than turned into a one-option question: every question needs at
    least two options to choose from.
    Items with fewer than `distractor_count` distractors get fewer options.
    """
    questions = []
    for index, item in enumerate(lesson.vocabulary[:limit]):
        distractors = _distractors_for(item, lesson.vocabulary, distractor_count)
        if not distractors:
            logger.info(f"No distractors for '{item.word}' in lesson {lesson.id}, skipping")
            continue
        question = QuizQuestion(
            id=f"{lesson.id}_vocab_{index}",
            question=f'What does "{item.word}" mean in English?',
            options=[item.translation] + distractors,
            correct_answer=0,
            points=VOCAB_QUESTION_POINTS,
            explanation=f'"{item.word}" means "{item.translation}" in English.',
            difficulty='easy',
            type='multiple-choice'
        )
        questions.append(shuffle_options(question, rng))
    return questions


def candidate_questions(lesson: Lesson, rng=random, min_bank: int = MIN_QUESTION_BANK,
                        shuffle_authored_options: bool = False) -> list[QuizQuestion]:
    """Authored questions, topped up with vocabulary questions when the bank is thin."""
    authored = list(lesson.quiz_questions)
    if shuffle_authored_options:
        authored = [shuffle_options(q, rng) for q in authored]
    if len(authored) >= min_bank:
        return authored
    return authored + build_vocabulary_questions(lesson, rng)


def ensure_quizzable(lesson: Lesson) -> None:
    """Raise ContentError if no quiz could ever be built for the lesson."""
    if lesson.quiz_questions:
        return
    vocabulary = lesson.vocabulary[:VOCAB_QUESTION_LIMIT]
    if any(_distractors_for(item, lesson.vocabulary, 1) for item in vocabulary):
        return
    raise ContentError(
        f"Lesson '{lesson.id}' has no quiz questions and not enough "
        f"vocabulary to generate any"
    )


def build_session(lesson: Lesson, rng=random, clock=time.time,
                  session_size: int = QUIZ_SESSION_SIZE,
                  min_bank: int = MIN_QUESTION_BANK,
                  shuffle_authored_options: bool = False) -> QuizSession:
    """Draw a shuffled, size-capped quiz session for one attempt."""
    pool = candidate_questions(lesson, rng, min_bank, shuffle_authored_options)
    if not pool:
        raise ContentError(f"Lesson '{lesson.id}' has no quiz questions")
    selected = shuffle(pool, rng)[:session_size]
    session = QuizSession(lesson.id, selected, now_ms(clock))
    logger.info(
        f"Quiz session {session.id} for lesson {lesson.id}: {len(selected)} of "
        f"{len(pool)} questions, {session.total_possible_points} points"
    )
    return session


def grade(session: QuizSession) -> QuizOutcome:
    """Grade a session. Pure: the session is not modified."""
    results = []
    for question in session.questions:
        selected = session.answers.get(question.id)
        is_correct = selected is not None and selected == question.correct_answer
        results.append(QuizResult(
            question_id=question.id,
            is_correct=is_correct,
            selected_answer=selected,
            correct_answer=question.correct_answer,
            points=question.points if is_correct else 0,
            time_spent=session.answer_times.get(question.id, 0)
        ))
    score = sum(r.points for r in results)
    return QuizOutcome(score, session.total_possible_points, results, session.elapsed_ms or 0)


def submit(session: QuizSession, clock=time.time) -> QuizOutcome:
    """Close the session for answers (first call only) and grade it."""
    if not session.submitted:
        session.submitted_at_ms = now_ms(clock)
    return grade(session)
