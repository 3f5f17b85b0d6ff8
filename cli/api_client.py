"""REST API client for diyalekto server."""

import requests


class DiyalektoAPIClient:
    """Client for communicating with the diyalekto REST API."""

    def __init__(self, base_url: str = "http://localhost:8000", user_id: str = "default"):
        self.base_url = base_url.rstrip('/')
        self.user_id = user_id
        self.session = requests.Session()

    def _get(self, endpoint: str, params: dict = None) -> dict:
        """Make a GET request."""
        if params is None:
            params = {}
        params['user_id'] = self.user_id
        response = self.session.get(f"{self.base_url}{endpoint}", params=params)
        response.raise_for_status()
        return response.json()

    def _post(self, endpoint: str, data: dict = None) -> dict:
        """Make a POST request."""
        if data is None:
            data = {}
        data['user_id'] = self.user_id
        response = self.session.post(f"{self.base_url}{endpoint}", json=data)
        response.raise_for_status()
        return response.json()

    def health_check(self) -> dict:
        """Check if the server is running."""
        response = self.session.get(f"{self.base_url}/")
        response.raise_for_status()
        return response.json()

    def get_dialects(self) -> dict:
        """Get dialects with this user's progress."""
        return self._get("/api/dialects")

    def get_lessons(self, dialect_id: str) -> dict:
        """Get a dialect's lessons with locked/completed flags."""
        return self._get(f"/api/dialects/{dialect_id}/lessons")

    def start_lesson(self, dialect_id: str, lesson_number: int) -> dict:
        return self._post("/api/lessons/start", {
            'dialect_id': dialect_id,
            'lesson_number': lesson_number
        })

    def get_session(self, session_id: str) -> dict:
        return self._get(f"/api/sessions/{session_id}")

    def advance(self, session_id: str) -> dict:
        return self._post(f"/api/sessions/{session_id}/advance")

    def answer(self, session_id: str, question_id: str, option_index: int) -> dict:
        return self._post(f"/api/sessions/{session_id}/answer", {
            'question_id': question_id,
            'option_index': option_index
        })

    def next_question(self, session_id: str) -> dict:
        return self._post(f"/api/sessions/{session_id}/next-question")

    def previous_question(self, session_id: str) -> dict:
        return self._post(f"/api/sessions/{session_id}/previous-question")

    def submit_quiz(self, session_id: str) -> dict:
        """Grade the quiz. Returns score, results and achievements."""
        return self._post(f"/api/sessions/{session_id}/submit")

    def retake(self, session_id: str) -> dict:
        return self._post(f"/api/sessions/{session_id}/retake")

    def complete_lesson(self, session_id: str) -> dict:
        """Save the graded lesson. Returns the completion receipt."""
        return self._post(f"/api/sessions/{session_id}/complete")

    def get_progress(self) -> dict:
        """Get overall and per-dialect progress."""
        return self._get("/api/progress")

    def get_achievements(self) -> dict:
        """Get earned achievements and all definitions."""
        return self._get("/api/achievements")

    def reset(self) -> dict:
        """Delete all of this user's progress."""
        return self._post(f"/api/users/{self.user_id}/reset")
