"""Unit tests for diyalekto core module."""

import random
import unittest
from datetime import date, datetime

from core.achievements import (
    ACHIEVEMENTS, AchievementEvaluator, calculate_level,
    get_achievement_by_id, get_points_for_next_level, get_progress_to_next_level
)
from core.config import DEFAULT_CONTENT_PATH, MAX_QUIZ_ATTEMPTS
from core.content import ContentLibrary, Lesson, QuizQuestion
from core.errors import (
    AttemptLimitReached, ContentError, InvalidAnswer, InvalidTransition,
    LessonLocked, LessonNotFound
)
from core.events import ProgressFeed
from core.lesson_flow import LessonStateMachine
from core.models import LearnerSnapshot, QuizOutcome, UserProgress
from core.quiz import (
    build_session, build_vocabulary_questions, candidate_questions,
    ensure_quizzable, grade, shuffle_options, submit
)
from core.unlock import check_lesson_access, is_lesson_locked, lesson_states, next_lesson
from core.utils import compute_progress, next_streak, overall_progress


# ============================================================================
# Fixtures
# ============================================================================

VOCABULARY = [
    {'word': 'Kamusta', 'translation': 'Hello'},
    {'word': 'Maayong aga', 'translation': 'Good morning'},
    {'word': 'Maayong kulop', 'translation': 'Good afternoon'},
    {'word': 'Maayong gab-i', 'translation': 'Good evening'},
    {'word': 'Salamat', 'translation': 'Thank you'},
    {'word': 'Paalam', 'translation': 'Goodbye'},
    {'word': 'Pasaylo', 'translation': 'Sorry'},
    {'word': 'Maayo man', 'translation': "I'm fine"},
]

AUTHORED = [
    {
        'id': 'q1',
        'question': "Which greeting means 'Good morning'?",
        'options': ['Maayong gab-i', 'Maayong aga', 'Maayong kulop', 'Kamusta'],
        'correct_answer': 1,
        'points': 10
    },
    {
        'id': 'q2',
        'question': "How do you say 'Thank you'?",
        'options': ['Paalam', 'Pasaylo', 'Salamat', 'Kamusta'],
        'correct_answer': 2,
        'points': 15
    },
]

# Tuesday mid-morning: no time-of-day or weekend achievements
TUESDAY_10AM = datetime(2024, 1, 9, 10, 0)


def make_lesson(number: int = 1, dialect_id: str = 'hiligaynon', questions=None,
                vocabulary=None) -> Lesson:
    return Lesson(
        id=f'{dialect_id}-{number}',
        dialect_id=dialect_id,
        lesson_number=number,
        title=f'Lesson {number}',
        vocabulary=VOCABULARY if vocabulary is None else vocabulary,
        quiz_questions=AUTHORED if questions is None else questions,
        objectives=['Greet people']
    )


def make_questions(count: int, points: int = 10) -> list[dict]:
    return [
        {
            'id': f'auth{i}',
            'question': f'Question {i}?',
            'options': ['a', 'b', 'c'],
            'correct_answer': i % 3,
            'points': points
        }
        for i in range(count)
    ]


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, t: float = 1_700_000_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


def answer_all(handle: LessonStateMachine, correct: bool = True) -> None:
    for q in handle.session.questions:
        index = q.correct_answer if correct else (q.correct_answer + 1) % len(q.options)
        handle.select_answer(q.id, index)


def run_to_quiz(handle: LessonStateMachine) -> None:
    while handle.step != 'quiz':
        handle.advance()


def new_machine(lesson: Lesson = None, snapshot: LearnerSnapshot = None, now=TUESDAY_10AM,
                clock: FakeClock = None, dialect_total_lessons: int = 10,
                seed: int = 1) -> LessonStateMachine:
    return LessonStateMachine(
        lesson or make_lesson(),
        user_id='maria',
        dialect_total_lessons=dialect_total_lessons,
        snapshot=snapshot,
        rng=random.Random(seed),
        clock=clock or FakeClock(),
        now=lambda: now
    )


def complete_quiz(handle: LessonStateMachine, clock: FakeClock, seconds: float = 240,
                  correct: bool = True) -> dict:
    run_to_quiz(handle)
    answer_all(handle, correct)
    clock.advance(seconds)
    return handle.submit_quiz()


# ============================================================================
# Content
# ============================================================================

def content_data() -> dict:
    return {
        'dialects': [
            {'id': 'hiligaynon', 'name': 'Hiligaynon', 'total_lessons': 2},
            {'id': 'waray', 'name': 'Waray', 'total_lessons': 1},
        ],
        'lessons': [
            {'id': 'hiligaynon-1', 'dialect_id': 'hiligaynon', 'lesson_number': 1,
             'title': 'Greetings', 'vocabulary': VOCABULARY, 'quiz_questions': AUTHORED},
            {'id': 'hiligaynon-2', 'dialect_id': 'hiligaynon', 'lesson_number': 2,
             'title': 'Phrases', 'vocabulary': VOCABULARY, 'quiz_questions': []},
            {'id': 'waray-1', 'dialect_id': 'waray', 'lesson_number': 1,
             'title': 'Greetings', 'vocabulary': VOCABULARY, 'quiz_questions': AUTHORED},
        ]
    }


class TestQuizQuestionModel(unittest.TestCase):
    """Test authored question validation."""

    def test_correct_answer_out_of_range(self):
        with self.assertRaises(ValueError):
            QuizQuestion(id='x', question='?', options=['a', 'b'], correct_answer=2)

    def test_needs_two_options(self):
        with self.assertRaises(ValueError):
            QuizQuestion(id='x', question='?', options=['a'], correct_answer=0)

    def test_points_must_be_positive(self):
        with self.assertRaises(ValueError):
            QuizQuestion(id='x', question='?', options=['a', 'b'], correct_answer=0, points=0)

    def test_defaults(self):
        q = QuizQuestion(id='x', question='?', options=['a', 'b'], correct_answer=1)
        self.assertEqual(q.points, 10)
        self.assertEqual(q.difficulty, 'medium')
        self.assertEqual(q.type, 'multiple-choice')
        self.assertEqual(q.correct_text, 'b')


class TestContentLibrary(unittest.TestCase):
    """Test content loading and lookups."""

    def test_lookups(self):
        library = ContentLibrary.from_dict(content_data())
        self.assertEqual([d.id for d in library.get_dialects()], ['hiligaynon', 'waray'])
        lesson = library.get_lesson('hiligaynon', 2)
        self.assertEqual(lesson.id, 'hiligaynon-2')
        self.assertEqual(library.get_lesson_by_id('waray-1').dialect_id, 'waray')
        self.assertEqual(
            [l.lesson_number for l in library.get_lessons_for_dialect('hiligaynon')], [1, 2]
        )

    def test_unknown_lookups_raise_not_found(self):
        library = ContentLibrary.from_dict(content_data())
        with self.assertRaises(LessonNotFound):
            library.get_dialect('tagalog')
        with self.assertRaises(LessonNotFound):
            library.get_lesson('hiligaynon', 3)
        with self.assertRaises(LessonNotFound):
            library.get_lesson_by_id('nope')

    def test_lenient_mode_skips_bad_question(self):
        data = content_data()
        bad = dict(AUTHORED[0], id='bad', correct_answer=9)
        data['lessons'][0]['quiz_questions'] = AUTHORED + [bad]
        with self.assertLogs('core.content', level='WARNING'):
            library = ContentLibrary.from_dict(data)
        ids = [q.id for q in library.get_lesson('hiligaynon', 1).quiz_questions]
        self.assertEqual(ids, ['q1', 'q2'])

    def test_strict_mode_rejects_bad_question(self):
        data = content_data()
        bad = dict(AUTHORED[0], id='bad', correct_answer=9)
        data['lessons'][0]['quiz_questions'] = AUTHORED + [bad]
        with self.assertRaises(ContentError):
            ContentLibrary.from_dict(data, strict=True)

    def test_duplicate_question_id_rejected_in_strict_mode(self):
        data = content_data()
        data['lessons'][0]['quiz_questions'] = AUTHORED + [AUTHORED[0]]
        with self.assertRaises(ContentError):
            ContentLibrary.from_dict(data, strict=True)

    def test_unknown_dialect(self):
        data = content_data()
        data['lessons'][2]['dialect_id'] = 'tagalog'
        with self.assertRaises(ContentError):
            ContentLibrary.from_dict(data)

    def test_duplicate_lesson_id(self):
        data = content_data()
        data['lessons'][1]['id'] = 'hiligaynon-1'
        with self.assertRaises(ContentError):
            ContentLibrary.from_dict(data)

    def test_lesson_numbers_must_be_dense(self):
        data = content_data()
        data['lessons'][1]['lesson_number'] = 3
        with self.assertRaises(ContentError):
            ContentLibrary.from_dict(data)

    def test_more_lessons_than_declared(self):
        data = content_data()
        data['dialects'][1]['total_lessons'] = 1
        data['lessons'].append({'id': 'waray-2', 'dialect_id': 'waray', 'lesson_number': 2,
                                'title': 'More', 'vocabulary': VOCABULARY})
        with self.assertRaises(ContentError):
            ContentLibrary.from_dict(data)

    def test_missing_file(self):
        with self.assertRaises(ContentError):
            ContentLibrary.from_file('/nonexistent/content.json')

    def test_bundled_content_is_valid(self):
        library = ContentLibrary.from_file(DEFAULT_CONTENT_PATH, strict=True)
        self.assertEqual(len(library.get_dialects()), 4)
        for dialect in library.get_dialects():
            lessons = library.get_lessons_for_dialect(dialect.id)
            self.assertEqual(len(lessons), dialect.total_lessons)
            for lesson in lessons:
                ensure_quizzable(lesson)


# ============================================================================
# Quiz
# ============================================================================

class TestQuizBuilding(unittest.TestCase):
    """Test quiz session construction."""

    def test_vocabulary_questions_point_at_translation(self):
        lesson = make_lesson()
        questions = build_vocabulary_questions(lesson, random.Random(3))
        self.assertEqual(len(questions), 8)
        for index, q in enumerate(questions):
            item = lesson.vocabulary[index]
            self.assertEqual(q.id, f'{lesson.id}_vocab_{index}')
            self.assertEqual(q.question, f'What does "{item.word}" mean in English?')
            self.assertEqual(len(q.options), 4)
            self.assertEqual(len(set(q.options)), 4)
            self.assertEqual(q.options[q.correct_answer], item.translation)

    def test_shuffle_options_keeps_correct_text(self):
        question = QuizQuestion.model_validate(AUTHORED[1])
        for seed in range(20):
            shuffled = shuffle_options(question, random.Random(seed))
            self.assertEqual(shuffled.correct_text, 'Salamat')
            self.assertEqual(sorted(shuffled.options), sorted(question.options))

    def test_thin_bank_is_topped_up_and_capped(self):
        session = build_session(make_lesson(), rng=random.Random(5), clock=FakeClock())
        self.assertEqual(len(session.questions), 6)
        ids = [q.id for q in session.questions]
        self.assertEqual(len(set(ids)), 6)
        allowed = {'q1', 'q2'} | {f'hiligaynon-1_vocab_{i}' for i in range(8)}
        self.assertTrue(set(ids) <= allowed)

    def test_only_first_eight_vocabulary_items_used(self):
        vocabulary = VOCABULARY + [{'word': 'Isa', 'translation': 'One'},
                                   {'word': 'Duha', 'translation': 'Two'}]
        pool = candidate_questions(make_lesson(vocabulary=vocabulary), random.Random(1))
        self.assertEqual(len(pool), 10)

    def test_full_bank_uses_authored_only(self):
        lesson = make_lesson(questions=make_questions(5))
        session = build_session(lesson, rng=random.Random(2), clock=FakeClock())
        self.assertEqual(len(session.questions), 5)
        self.assertTrue(all(q.id.startswith('auth') for q in session.questions))

    def test_large_bank_capped_at_six(self):
        lesson = make_lesson(questions=make_questions(12))
        session = build_session(lesson, rng=random.Random(2), clock=FakeClock())
        self.assertEqual(len(session.questions), 6)

    def test_item_without_distractor_is_skipped(self):
        vocabulary = [{'word': 'Salamat', 'translation': 'Thank you'},
                      {'word': 'Salamat gid', 'translation': 'Thank you'}]
        lesson = make_lesson(questions=[], vocabulary=vocabulary)
        self.assertEqual(build_vocabulary_questions(lesson, random.Random(1)), [])
        with self.assertRaises(ContentError):
            ensure_quizzable(lesson)

    def test_few_distractors_give_fewer_options(self):
        vocabulary = VOCABULARY[:2]
        questions = build_vocabulary_questions(make_lesson(vocabulary=vocabulary),
                                               random.Random(1))
        self.assertEqual([len(q.options) for q in questions], [2, 2])

    def test_empty_lesson_cannot_build(self):
        lesson = make_lesson(questions=[], vocabulary=[])
        with self.assertRaises(ContentError):
            build_session(lesson, rng=random.Random(1))


class TestQuizGrading(unittest.TestCase):
    """Test answering and grading."""

    def setUp(self):
        self.clock = FakeClock()
        self.session = build_session(make_lesson(), rng=random.Random(9), clock=self.clock)

    def test_all_correct(self):
        for q in self.session.questions:
            self.session.select_answer(q.id, q.correct_answer, 0)
        outcome = grade(self.session)
        self.assertEqual(outcome.score, self.session.total_possible_points)
        self.assertEqual(outcome.percentage, 100)
        self.assertTrue(outcome.is_perfect)

    def test_unanswered_questions_score_zero(self):
        outcome = grade(self.session)
        self.assertEqual(outcome.score, 0)
        self.assertEqual(outcome.correct_count, 0)
        self.assertTrue(all(r.selected_answer is None for r in outcome.results))

    def test_score_never_exceeds_total(self):
        rng = random.Random(4)
        for q in self.session.questions:
            self.session.select_answer(q.id, rng.randrange(len(q.options)), 0)
        outcome = grade(self.session)
        self.assertLessEqual(outcome.score, outcome.total_possible_points)
        self.assertEqual(outcome.score, sum(r.points for r in outcome.results))

    def test_later_answer_replaces_earlier(self):
        q = self.session.questions[0]
        wrong = (q.correct_answer + 1) % len(q.options)
        self.session.select_answer(q.id, wrong, 0)
        self.session.select_answer(q.id, q.correct_answer, 0)
        self.assertTrue(grade(self.session).results[0].is_correct)

    def test_invalid_answers(self):
        q = self.session.questions[0]
        with self.assertRaises(InvalidAnswer):
            self.session.select_answer('missing', 0, 0)
        with self.assertRaises(InvalidAnswer):
            self.session.select_answer(q.id, len(q.options), 0)
        with self.assertRaises(InvalidAnswer):
            self.session.select_answer(q.id, -1, 0)

    def test_no_answers_after_submit(self):
        self.clock.advance(30)
        outcome = submit(self.session, clock=self.clock)
        self.assertEqual(outcome.elapsed_ms, 30_000)
        with self.assertRaises(InvalidAnswer):
            self.session.select_answer(self.session.questions[0].id, 0, 0)

    def test_submit_twice_grades_the_same(self):
        for q in self.session.questions:
            self.session.select_answer(q.id, q.correct_answer, 0)
        self.clock.advance(30)
        first = submit(self.session, clock=self.clock)
        submitted_at = self.session.submitted_at_ms
        self.clock.advance(600)
        second = submit(self.session, clock=self.clock)

        self.assertEqual(self.session.submitted_at_ms, submitted_at)
        self.assertEqual(second.to_dict(), first.to_dict())
        self.assertEqual(second.elapsed_ms, 30_000)

    def test_answers_hidden_until_revealed(self):
        hidden = self.session.to_dict()
        self.assertNotIn('correct_answer', hidden['questions'][0])
        shown = self.session.to_dict(reveal=True)
        self.assertIn('correct_answer', shown['questions'][0])

    def test_percentage_is_floored(self):
        self.assertEqual(QuizOutcome(249, 250, [], 0).percentage, 99)
        self.assertEqual(QuizOutcome(0, 0, [], 0).percentage, 0)


# ============================================================================
# Lesson state machine
# ============================================================================

class TestLessonStateMachine(unittest.TestCase):
    """Test step progression, navigation and retakes."""

    def test_step_order(self):
        handle = new_machine()
        self.assertEqual(handle.step, 'objectives')
        self.assertEqual(handle.advance(), 'vocabulary')
        self.assertEqual(handle.advance(), 'content')
        self.assertIsNone(handle.session)
        self.assertEqual(handle.advance(), 'quiz')
        self.assertIsNotNone(handle.session)
        self.assertEqual(handle.attempts, 1)
        self.assertEqual(handle.advance(), 'results')
        self.assertTrue(handle.submitted)
        self.assertEqual(handle.advance(), 'results')

    def test_lesson_without_quiz_cannot_start(self):
        with self.assertRaises(ContentError):
            new_machine(make_lesson(questions=[], vocabulary=[]))

    def test_answers_only_during_quiz(self):
        handle = new_machine()
        with self.assertRaises(InvalidTransition):
            handle.select_answer('q1', 0)
        with self.assertRaises(InvalidTransition):
            handle.submit_quiz()
        with self.assertRaises(InvalidTransition):
            handle.result()

    def test_question_navigation(self):
        handle = new_machine()
        run_to_quiz(handle)
        self.assertFalse(handle.previous_question())
        first = handle.current_question
        handle.select_answer(first.id, 0)
        self.assertEqual(handle.selected_answer, 0)
        self.assertTrue(handle.next_question())
        self.assertIsNone(handle.selected_answer)
        self.assertTrue(handle.previous_question())
        self.assertEqual(handle.selected_answer, 0)
        while handle.next_question():
            pass
        self.assertEqual(handle.current_question_index, len(handle.session.questions) - 1)

    def test_retake_up_to_limit(self):
        clock = FakeClock()
        handle = new_machine(clock=clock)
        complete_quiz(handle, clock)
        for attempt in range(2, MAX_QUIZ_ATTEMPTS + 1):
            previous = handle.session
            handle.retake()
            self.assertEqual(handle.step, 'quiz')
            self.assertEqual(handle.attempts, attempt)
            self.assertIsNone(handle.outcome)
            self.assertIsNot(handle.session, previous)
            self.assertNotEqual(handle.session.id, previous.id)
            self.assertIsNone(handle.session.submitted_at_ms)
            self.assertEqual(handle.session.answers, {})
            handle.advance()
        self.assertFalse(handle.can_retake)
        with self.assertRaises(AttemptLimitReached):
            handle.retake()
        self.assertEqual(handle.attempts, MAX_QUIZ_ATTEMPTS)
        self.assertEqual(handle.step, 'results')

    def test_retake_only_from_results(self):
        handle = new_machine()
        run_to_quiz(handle)
        with self.assertRaises(InvalidTransition):
            handle.retake()

    def test_result_shape(self):
        clock = FakeClock()
        handle = new_machine(clock=clock)
        result = complete_quiz(handle, clock)
        self.assertEqual(result['score'], result['total_possible_points'])
        self.assertEqual(result['percentage'], 100)
        self.assertEqual(len(result['results']), len(handle.session.questions))
        state = handle.to_dict()
        self.assertEqual(state['step'], 'results')
        self.assertIn('correct_answer', state['quiz']['questions'][0])

    def test_to_dict_step_content(self):
        handle = new_machine()
        self.assertEqual(handle.to_dict()['objectives'], ['Greet people'])
        handle.advance()
        self.assertEqual(len(handle.to_dict()['vocabulary']), 8)


# ============================================================================
# Achievements
# ============================================================================

class TestAchievementEvaluation(unittest.TestCase):
    """Test which achievements a completion qualifies for."""

    def test_fast_perfect_first_lesson(self):
        clock = FakeClock()
        handle = new_machine(clock=clock)
        result = complete_quiz(handle, clock, seconds=240)
        self.assertEqual(result['potential_achievements'],
                         ['first_steps', 'first_lesson_complete', 'speed_demon',
                          'perfect_scholar'])
        self.assertEqual(result['new_achievements'], result['potential_achievements'])

    def test_already_earned_are_not_new(self):
        clock = FakeClock()
        snapshot = LearnerSnapshot(earned_achievement_ids={'first_steps'})
        handle = new_machine(clock=clock, snapshot=snapshot)
        result = complete_quiz(handle, clock)
        self.assertIn('first_steps', result['potential_achievements'])
        self.assertNotIn('first_steps', result['new_achievements'])
        self.assertIn('perfect_scholar', result['new_achievements'])

    def test_slow_imperfect_quiz(self):
        clock = FakeClock()
        handle = new_machine(clock=clock)
        result = complete_quiz(handle, clock, seconds=360, correct=False)
        self.assertNotIn('speed_demon', result['potential_achievements'])
        self.assertNotIn('perfect_scholar', result['potential_achievements'])
        self.assertIn('first_steps', result['potential_achievements'])

    def test_first_steps_needs_lesson_one(self):
        clock = FakeClock()
        snapshot = LearnerSnapshot(completed_by_dialect={'hiligaynon': {'hiligaynon-1'}})
        handle = new_machine(make_lesson(2), clock=clock, snapshot=snapshot)
        result = complete_quiz(handle, clock)
        self.assertNotIn('first_steps', result['potential_achievements'])

    def test_dialect_master_on_last_lesson(self):
        done = {f'hiligaynon-{n}' for n in range(1, 10)}
        clock = FakeClock()
        handle = new_machine(make_lesson(10), clock=clock,
                             snapshot=LearnerSnapshot(completed_by_dialect={'hiligaynon': done}))
        result = complete_quiz(handle, clock)
        self.assertIn('dialect_master', result['potential_achievements'])
        self.assertIn('dedicated_learner', result['potential_achievements'])

    def test_no_dialect_master_before_last_lesson(self):
        done = {f'hiligaynon-{n}' for n in range(1, 9)}
        clock = FakeClock()
        handle = new_machine(make_lesson(9), clock=clock,
                             snapshot=LearnerSnapshot(completed_by_dialect={'hiligaynon': done}))
        result = complete_quiz(handle, clock)
        self.assertNotIn('dialect_master', result['potential_achievements'])

    def test_repeat_completion_does_not_double_count(self):
        done = {f'hiligaynon-{n}' for n in range(1, 5)}
        clock = FakeClock()
        handle = new_machine(make_lesson(4), clock=clock,
                             snapshot=LearnerSnapshot(completed_by_dialect={'hiligaynon': done}))
        result = complete_quiz(handle, clock)
        self.assertNotIn('learning_streak', result['potential_achievements'])

    def test_comeback_after_retake(self):
        clock = FakeClock()
        handle = new_machine(clock=clock)
        first = complete_quiz(handle, clock, correct=False)
        self.assertEqual(first['percentage'], 0)
        handle.retake()
        answer_all(handle)
        result = handle.submit_quiz()
        self.assertIn('comeback_kid', result['potential_achievements'])

    def test_time_of_day_and_weekend(self):
        cases = [
            (datetime(2024, 1, 9, 7, 30), 'early_bird'),
            (datetime(2024, 1, 9, 23, 0), 'night_owl'),
            (datetime(2024, 1, 13, 12, 0), 'weekend_warrior'),
        ]
        for when, expected in cases:
            clock = FakeClock()
            handle = new_machine(clock=clock, now=when)
            result = complete_quiz(handle, clock)
            self.assertIn(expected, result['potential_achievements'])

    def test_polyglot_and_explorer(self):
        snapshot = LearnerSnapshot(completed_by_dialect={
            'waray': {'waray-1'}, 'bikol': {'bikol-1'}, 'ilocano': {'ilocano-1'}
        })
        clock = FakeClock()
        result = complete_quiz(new_machine(clock=clock, snapshot=snapshot), clock)
        self.assertIn('dialect_explorer', result['potential_achievements'])
        self.assertIn('polyglot', result['potential_achievements'])

    def test_consistent_learner_streak(self):
        snapshot = LearnerSnapshot(streak=6, last_active_date=date(2024, 1, 8))
        clock = FakeClock()
        result = complete_quiz(new_machine(clock=clock, snapshot=snapshot), clock)
        self.assertIn('consistent_learner', result['potential_achievements'])

    def test_quiz_master_and_perfectionist(self):
        snapshot = LearnerSnapshot(recent_scores=[90, 95, 92, 100, 100])
        clock = FakeClock()
        result = complete_quiz(new_machine(clock=clock, snapshot=snapshot), clock)
        self.assertIn('quiz_master', result['potential_achievements'])
        self.assertIn('perfectionist', result['potential_achievements'])

    def test_definitions(self):
        ids = [a.id for a in ACHIEVEMENTS]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(get_achievement_by_id('polyglot').points, 2000)
        self.assertIsNone(get_achievement_by_id('missing'))
        with self.assertRaises(ValueError):
            AchievementEvaluator(ACHIEVEMENTS + [ACHIEVEMENTS[0]])

    def test_levels(self):
        self.assertEqual(calculate_level(0), 1)
        self.assertEqual(calculate_level(499), 1)
        self.assertEqual(calculate_level(500), 2)
        self.assertEqual(get_points_for_next_level(120), 380)
        self.assertAlmostEqual(get_progress_to_next_level(620), 24.0)


# ============================================================================
# Unlocking
# ============================================================================

class TestUnlock(unittest.TestCase):
    """Test sequential lesson unlocking."""

    def setUp(self):
        self.lessons = [make_lesson(n) for n in (1, 2, 3)]

    def test_first_lesson_always_open(self):
        self.assertFalse(is_lesson_locked(self.lessons[0], self.lessons, set()))

    def test_needs_previous_lesson(self):
        self.assertTrue(is_lesson_locked(self.lessons[1], self.lessons, set()))
        self.assertFalse(is_lesson_locked(self.lessons[1], self.lessons, {'hiligaynon-1'}))
        # Lesson 3 only depends on lesson 2
        self.assertFalse(is_lesson_locked(self.lessons[2], self.lessons, {'hiligaynon-2'}))

    def test_missing_predecessor_stays_locked(self):
        lessons = [self.lessons[0], self.lessons[2]]
        self.assertTrue(is_lesson_locked(self.lessons[2], lessons, {'hiligaynon-1'}))

    def test_completion_in_other_dialect_does_not_unlock(self):
        self.assertTrue(is_lesson_locked(self.lessons[1], self.lessons, {'waray-1'}))

    def test_access_message(self):
        with self.assertRaises(LessonLocked) as ctx:
            check_lesson_access(self.lessons[1], self.lessons, set())
        self.assertEqual(str(ctx.exception),
                         'Complete Lesson 1: Lesson 1 to unlock Lesson 2.')

    def test_states_and_next_lesson(self):
        states = lesson_states(self.lessons, {'hiligaynon-1'})
        self.assertEqual([(s['locked'], s['completed']) for s in states],
                         [(False, True), (False, False), (True, False)])
        self.assertEqual(next_lesson(self.lessons, {'hiligaynon-1'}).lesson_number, 2)
        done = {'hiligaynon-1', 'hiligaynon-2', 'hiligaynon-3'}
        self.assertIsNone(next_lesson(self.lessons, done))


# ============================================================================
# Progress, utilities and events
# ============================================================================

class TestProgress(unittest.TestCase):
    """Test progress arithmetic."""

    def test_compute_progress(self):
        self.assertEqual(compute_progress(0, 10), 0)
        self.assertEqual(compute_progress(1, 3), 33)
        self.assertEqual(compute_progress(2, 3), 67)
        self.assertEqual(compute_progress(12, 10), 100)
        self.assertEqual(compute_progress(3, 0), 0)

    def test_overall_progress(self):
        self.assertEqual(overall_progress([100, 50], 4), 38)
        self.assertEqual(overall_progress([], 0), 0)

    def test_user_progress_deduplicates(self):
        progress = UserProgress('maria', 'hiligaynon', 10, ['a', 'b', 'a'])
        self.assertEqual(progress.lessons_completed, 2)
        self.assertFalse(progress.mark_completed('a', TUESDAY_10AM))
        self.assertTrue(progress.mark_completed('c', TUESDAY_10AM))
        self.assertEqual(progress.progress, 30)
        restored = UserProgress.from_dict(progress.to_dict())
        self.assertEqual(restored.completed_lesson_ids, ['a', 'b', 'c'])
        self.assertEqual(restored.last_studied_at, TUESDAY_10AM)

    def test_next_streak(self):
        today = date(2024, 1, 9)
        self.assertEqual(next_streak(0, None, today), 1)
        self.assertEqual(next_streak(3, date(2024, 1, 9), today), 3)
        self.assertEqual(next_streak(3, date(2024, 1, 8), today), 4)
        self.assertEqual(next_streak(3, date(2024, 1, 6), today), 1)


class TestProgressFeed(unittest.TestCase):
    """Test change subscriptions."""

    def test_user_filter_and_unsubscribe(self):
        feed = ProgressFeed()
        seen = []
        everyone = []
        sub = feed.subscribe('maria', lambda event, user, data: seen.append((event, user)))
        feed.subscribe(None, lambda event, user, data: everyone.append(user))
        feed.publish('progress.updated', 'maria', lesson_id='x')
        feed.publish('progress.updated', 'juan')
        self.assertEqual(seen, [('progress.updated', 'maria')])
        self.assertEqual(everyone, ['maria', 'juan'])
        sub.unsubscribe()
        feed.publish('progress.updated', 'maria')
        self.assertEqual(len(seen), 1)
        self.assertEqual(len(feed), 1)

    def test_listener_failure_is_contained(self):
        feed = ProgressFeed()
        received = []

        def broken(event, user, data):
            raise RuntimeError('boom')

        feed.subscribe(None, broken)
        feed.subscribe(None, lambda event, user, data: received.append(data))
        with self.assertLogs('core.events', level='ERROR'):
            feed.publish('achievement.awarded', 'maria', achievement_id='polyglot')
        self.assertEqual(received, [{'achievement_id': 'polyglot'}])


if __name__ == '__main__':
    unittest.main()
