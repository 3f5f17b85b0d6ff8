"""Console UI for diyalekto application."""

import requests

from cli.api_client import DiyalektoAPIClient


def error_detail(e: requests.RequestException) -> str:
    """Server-provided message for a failed request, if any."""
    response = getattr(e, 'response', None)
    if response is not None:
        try:
            return response.json().get('detail', str(e))
        except ValueError:
            pass
    return str(e)


class ConsoleUI:
    """Console user interface for diyalekto application."""

    def __init__(self, client: DiyalektoAPIClient):
        self.client = client

    def print_dialects(self, dialects: list[dict]):
        print('\n' + '=' * 60)
        print('DIALECTS')
        print('=' * 60)
        for i, dialect in enumerate(dialects, 1):
            print(f"  {i}. {dialect['name']} ({dialect['region']}) - "
                  f"{dialect['lessons_completed']}/{dialect['total_lessons']} lessons, "
                  f"{dialect['progress']}%")
        print('=' * 60)

    def print_lessons(self, overview: dict):
        dialect = overview['dialect']
        print('\n' + '-' * 60)
        print(f"{dialect['name'].upper()}: {dialect['description']}")
        print('-' * 60)
        for lesson in overview['lessons']:
            if lesson['completed']:
                mark = '[done]  '
            elif lesson['locked']:
                mark = '[locked]'
            else:
                mark = '[open]  '
            print(f"  {mark} {lesson['lesson_number']}. {lesson['title']}")
        print('-' * 60)

    def print_step(self, state: dict):
        """Print the content of the current lesson step."""
        lesson = state['lesson']
        step = state['step']
        print(f"\n=== Lesson {lesson['lesson_number']}: {lesson['title']} [{step}] ===")
        if step == 'objectives':
            print('In this lesson you will:')
            for objective in state.get('objectives', []):
                print(f'  - {objective}')
        elif step == 'vocabulary':
            for item in state.get('vocabulary', []):
                pronunciation = f" /{item['pronunciation']}/" if item.get('pronunciation') else ''
                print(f"  {item['word']}{pronunciation} = {item['translation']}")
        elif step == 'content':
            print(state.get('content', ''))
            if state.get('cultural_note'):
                print(f"\nCultural note: {state['cultural_note']}")

    def print_question(self, state: dict):
        quiz = state['quiz']
        index = state['current_question_index']
        question = quiz['questions'][index]
        print(f"\nQuestion {index + 1}/{len(quiz['questions'])} ({question['points']} pts)")
        print(f"  {question['question']}")
        for i, option in enumerate(question['options'], 1):
            chosen = ' <' if question['selected_answer'] == i - 1 else ''
            print(f'    {i}. {option}{chosen}')

    def print_result(self, state: dict):
        result = state['result']
        print('\n' + '=' * 50)
        print(f"Score: {result['score']}/{result['total_possible_points']} "
              f"({result['percentage']}%)")
        questions = {q['id']: q for q in state['quiz']['questions']}
        for r in result['results']:
            question = questions[r['question_id']]
            mark = 'OK ' if r['is_correct'] else 'X  '
            print(f"  {mark}{question['question']} -> {question['options'][r['correct_answer']]}")
            if not r['is_correct'] and question.get('explanation'):
                print(f"     {question['explanation']}")
        if result['new_achievements']:
            print(f"\n*** New achievements: {', '.join(result['new_achievements'])} ***")
        print(f"Attempts left: {state['remaining_attempts']}")
        print('=' * 50)

    def print_progress(self, progress: dict):
        """Print the progress summary."""
        print('\n' + '=' * 50)
        print('PROGRESS SUMMARY')
        print('=' * 50)
        print(f"Overall progress: {progress['overall_progress']}%")
        print(f"Lessons completed: {progress['total_lessons_completed']}")
        for row in progress['dialects']:
            print(f"  {row['name']}: {row['lessons_completed']}/{row['total_lessons']} "
                  f"({row['progress']}%)")
        print(f"\nLevel {progress['level']} - {progress['total_points']} points "
              f"({progress['points_for_next_level']} to next level)")
        print(f"Day streak: {progress['streak']}")
        if progress['pending_saves']:
            print(f"Unsaved completions waiting for retry: {progress['pending_saves']}")
        print('=' * 50 + '\n')

    def print_achievements(self, data: dict):
        earned = {a['achievement_id'] for a in data['earned']}
        print('\n' + '=' * 50)
        print(f"ACHIEVEMENTS ({len(earned)}/{len(data['definitions'])})")
        print('=' * 50)
        for definition in data['definitions']:
            mark = '[x]' if definition['id'] in earned else '[ ]'
            print(f"  {mark} {definition['title']} ({definition['points']} pts): "
                  f"{definition['description']}")
        print('=' * 50 + '\n')

    def run_quiz(self, state: dict) -> dict:
        """Answer questions until the quiz is submitted."""
        session_id = state['id']
        print('\nQuiz! Enter an option number, "b" for back, "s" to submit.')
        while state['step'] == 'quiz':
            self.print_question(state)
            user_input = input('==> ').strip().lower()
            try:
                if user_input == 'b':
                    state = self.client.previous_question(session_id)
                elif user_input == 's':
                    state = self.client.advance(session_id)
                elif user_input.isdigit():
                    question = state['quiz']['questions'][state['current_question_index']]
                    state = self.client.answer(session_id, question['id'], int(user_input) - 1)
                    state = self.client.next_question(session_id)
                    if not state['moved']:
                        confirm = input('Last question. Submit now? [y/N] ').strip().lower()
                        if confirm == 'y':
                            state = self.client.advance(session_id)
                else:
                    print('Enter an option number, "b" or "s".')
            except requests.RequestException as e:
                print(f"Error: {error_detail(e)}")
        return state

    def run_lesson(self, dialect_id: str, lesson_number: int):
        """Walk one lesson from objectives to completion."""
        try:
            state = self.client.start_lesson(dialect_id, lesson_number)
        except requests.RequestException as e:
            print(f"Cannot start lesson: {error_detail(e)}")
            return
        session_id = state['id']

        while state['step'] in ('objectives', 'vocabulary', 'content'):
            self.print_step(state)
            input('\n(press Enter to continue)')
            state = self.client.advance(session_id)

        while True:
            if state['step'] == 'quiz':
                state = self.run_quiz(state)
            self.print_result(state)
            if state['can_retake']:
                choice = input('"r" to retake the quiz, Enter to finish: ').strip().lower()
                if choice == 'r':
                    try:
                        state = self.client.retake(session_id)
                        continue
                    except requests.RequestException as e:
                        print(f"Error: {error_detail(e)}")
            break

        try:
            receipt = self.client.complete_lesson(session_id)
        except requests.RequestException as e:
            print(f"Error saving lesson: {error_detail(e)}")
            return
        if receipt['saved']:
            progress = receipt['progress']
            print(f"Saved! {progress['lessons_completed']}/{progress['total_lessons']} "
                  f"lessons ({progress['progress']}%)")
        else:
            print(receipt['notice'])
        if receipt['awarded']:
            print(f"Achievements earned: {', '.join(receipt['awarded'])}")

    def choose_lesson(self, dialect: dict):
        try:
            overview = self.client.get_lessons(dialect['id'])
        except requests.RequestException as e:
            print(f"Error getting lessons: {error_detail(e)}")
            return
        self.print_lessons(overview)
        default = overview['next_lesson_number']
        prompt = f'Lesson number [{default}]: ' if default else 'Lesson number: '
        user_input = input(prompt).strip()
        if user_input == '' and default:
            self.run_lesson(dialect['id'], default)
        elif user_input.isdigit():
            self.run_lesson(dialect['id'], int(user_input))

    def run(self):
        """Run the main application loop."""
        # Check server connection
        try:
            health = self.client.health_check()
            print(f"Connected to diyalekto server ({health['dialects']} dialects)")
        except requests.RequestException:
            print(f"Error: Cannot connect to server at {self.client.base_url}")
            print("Make sure the server is running: python run_server.py")
            return

        print('Commands: dialect number, "p" progress, "a" achievements, '
              '"reset" to start over, "exit" to quit\n')

        while True:
            try:
                dialects = self.client.get_dialects()['dialects']
            except requests.RequestException as e:
                print(f"Error getting dialects: {error_detail(e)}")
                return
            self.print_dialects(dialects)

            user_input = input('==> ').strip().lower()
            try:
                if user_input == 'exit':
                    print('Paalam! Goodbye!')
                    return
                elif user_input == 'p':
                    self.print_progress(self.client.get_progress())
                elif user_input == 'a':
                    self.print_achievements(self.client.get_achievements())
                elif user_input == 'reset':
                    confirm = input('Delete all your progress? [y/N] ').strip().lower()
                    if confirm == 'y':
                        self.client.reset()
                        print('Progress reset.')
                elif user_input.isdigit() and 1 <= int(user_input) <= len(dialects):
                    self.choose_lesson(dialects[int(user_input) - 1])
            except requests.RequestException as e:
                print(f"Error: {error_detail(e)}")
