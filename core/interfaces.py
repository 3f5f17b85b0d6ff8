"""Abstract base classes for dependency injection."""

from abc import ABC, abstractmethod
from datetime import datetime


class ContentRepository(ABC):
    """Read-only access to dialect and lesson content."""

    @abstractmethod
    def get_dialects(self) -> list:
        """All dialects, in display order."""
        pass

    @abstractmethod
    def get_dialect(self, dialect_id: str):
        """Get a dialect. Raises LessonNotFound if unknown."""
        pass

    @abstractmethod
    def get_lesson(self, dialect_id: str, lesson_number: int):
        """Get a lesson by its ordinal. Raises LessonNotFound if missing."""
        pass

    @abstractmethod
    def get_lesson_by_id(self, lesson_id: str):
        """Get a lesson by id. Raises LessonNotFound if missing."""
        pass

    @abstractmethod
    def get_lessons_for_dialect(self, dialect_id: str) -> list:
        """Lessons of a dialect ordered by lesson number."""
        pass


class ProgressStore(ABC):
    """Persistence for per-user progress, achievements and quiz history.

    Implementations must make `mark_lesson_completed` an atomic
    read-modify-write and must never create a second achievement record
    for the same (user, achievement) pair.
    """

    @abstractmethod
    def get_progress(self, user_id: str, dialect_id: str):
        """Get UserProgress for a dialect, or None if never studied."""
        pass

    @abstractmethod
    def get_all_progress(self, user_id: str) -> list:
        """Get UserProgress records for every dialect the user studied."""
        pass

    @abstractmethod
    def get_completed_lesson_ids(self, user_id: str, dialect_id: str) -> set[str]:
        """Get ids of completed lessons in a dialect."""
        pass

    @abstractmethod
    def mark_lesson_completed(self, user_id: str, dialect_id: str, lesson_id: str,
                              total_lessons: int, when: datetime | None = None):
        """Add a lesson to the completed set. Idempotent. Returns the UserProgress."""
        pass

    @abstractmethod
    def get_earned_achievement_ids(self, user_id: str) -> set[str]:
        """Get ids of achievements the user already holds."""
        pass

    @abstractmethod
    def get_achievements(self, user_id: str) -> list:
        """Get AchievementRecords for a user, oldest first."""
        pass

    @abstractmethod
    def award_achievement(self, user_id: str, achievement_id: str, metadata: dict,
                          when: datetime | None = None) -> bool:
        """Store an achievement. Returns False (and writes nothing) if already held."""
        pass

    @abstractmethod
    def record_quiz_score(self, user_id: str, lesson_id: str, percentage: int) -> None:
        """Append a graded quiz percentage to the user's history."""
        pass

    @abstractmethod
    def get_recent_scores(self, user_id: str, limit: int) -> list[int]:
        """Most recent quiz percentages, oldest first."""
        pass

    @abstractmethod
    def record_activity(self, user_id: str, when: datetime) -> int:
        """Register study activity on a day. Returns the updated day streak."""
        pass

    @abstractmethod
    def get_activity(self, user_id: str) -> dict:
        """Returns {streak, last_active_date}."""
        pass

    @abstractmethod
    def reset_user(self, user_id: str) -> None:
        """Delete all progress, achievements, scores and activity of a user."""
        pass
