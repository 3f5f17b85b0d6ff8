"""File-based storage implementation."""

import json
import logging
import os
import re
import threading
from datetime import datetime

from core.config import PROJECT_ROOT
from core.errors import PersistenceError
from core.events import ACHIEVEMENT_AWARDED, PROGRESS_RESET, PROGRESS_UPDATED, ProgressFeed
from core.interfaces import ProgressStore
from core.models import AchievementRecord, UserProgress
from core.utils import next_streak, parse_date

logger = logging.getLogger(__name__)

MAX_STORED_SCORES = 200


def _empty_state() -> dict:
    return {
        'progress': {},
        'achievements': [],
        'scores': [],
        'activity': {'streak': 0, 'last_active_date': None}
    }


class FileStorage(ProgressStore):
    """One JSON document per user under `state_dir`."""

    def __init__(self, state_dir: str = None, feed: ProgressFeed = None):
        self.state_dir = state_dir or os.environ.get(
            'DIYALEKTO_STATE_DIR', str(PROJECT_ROOT / 'state')
        )
        self.feed = feed
        # Every mutation is a read-modify-write of a whole document
        self._lock = threading.RLock()

    def _get_state_file(self, user_id: str) -> str:
        """Get state file path for a user."""
        safe_id = re.sub(r'[^A-Za-z0-9_.-]', '_', user_id)
        return os.path.join(self.state_dir, f'diyalekto_state_{safe_id}.json')

    def _load(self, user_id: str) -> dict:
        state_file = self._get_state_file(user_id)
        if not os.path.exists(state_file):
            return _empty_state()
        try:
            with open(state_file, 'r') as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Corrupt or unreadable state file {state_file}: {e}")
            raise PersistenceError(f"Could not read {state_file}: {e}") from e
        for key, value in _empty_state().items():
            state.setdefault(key, value)
        return state

    def _save(self, user_id: str, state: dict) -> None:
        state_file = self._get_state_file(user_id)
        tmp_file = state_file + '.tmp'
        try:
            os.makedirs(self.state_dir, exist_ok=True)
            with open(tmp_file, 'w') as f:
                json.dump(state, f, indent=2)
            os.replace(tmp_file, state_file)
        except OSError as e:
            raise PersistenceError(f"Could not write {state_file}: {e}") from e

    def _publish(self, event: str, user_id: str, **data) -> None:
        if self.feed is not None:
            self.feed.publish(event, user_id, **data)

    def get_progress(self, user_id: str, dialect_id: str) -> UserProgress | None:
        with self._lock:
            data = self._load(user_id)['progress'].get(dialect_id)
        return UserProgress.from_dict(data) if data else None

    def get_all_progress(self, user_id: str) -> list[UserProgress]:
        with self._lock:
            progress = self._load(user_id)['progress']
        return [UserProgress.from_dict(p) for p in progress.values()]

    def get_completed_lesson_ids(self, user_id: str, dialect_id: str) -> set[str]:
        progress = self.get_progress(user_id, dialect_id)
        return set(progress.completed_lesson_ids) if progress else set()

    def mark_lesson_completed(self, user_id: str, dialect_id: str, lesson_id: str,
                              total_lessons: int, when: datetime = None) -> UserProgress:
        with self._lock:
            state = self._load(user_id)
            data = state['progress'].get(dialect_id)
            if data:
                progress = UserProgress.from_dict(data)
                progress.total_lessons = total_lessons
            else:
                progress = UserProgress(user_id, dialect_id, total_lessons)
            added = progress.mark_completed(lesson_id, when)
            state['progress'][dialect_id] = progress.to_dict()
            self._save(user_id, state)
        self._publish(PROGRESS_UPDATED, user_id, dialect_id=dialect_id, lesson_id=lesson_id,
                      added=added, progress=progress.progress)
        return progress

    def get_earned_achievement_ids(self, user_id: str) -> set[str]:
        with self._lock:
            achievements = self._load(user_id)['achievements']
        return {a['achievement_id'] for a in achievements}

    def get_achievements(self, user_id: str) -> list[AchievementRecord]:
        with self._lock:
            achievements = self._load(user_id)['achievements']
        return [AchievementRecord.from_dict(a) for a in achievements]

    def award_achievement(self, user_id: str, achievement_id: str, metadata: dict,
                          when: datetime = None) -> bool:
        with self._lock:
            state = self._load(user_id)
            if any(a['achievement_id'] == achievement_id for a in state['achievements']):
                return False
            record = AchievementRecord.from_metadata(
                user_id, achievement_id, metadata, when or datetime.now()
            )
            state['achievements'].append(record.to_dict())
            self._save(user_id, state)
        self._publish(ACHIEVEMENT_AWARDED, user_id, achievement_id=achievement_id,
                      points=record.points)
        return True

    def record_quiz_score(self, user_id: str, lesson_id: str, percentage: int) -> None:
        with self._lock:
            state = self._load(user_id)
            state['scores'].append({
                'lesson_id': lesson_id,
                'percentage': percentage,
                'recorded_at': datetime.now().isoformat()
            })
            state['scores'] = state['scores'][-MAX_STORED_SCORES:]
            self._save(user_id, state)

    def get_recent_scores(self, user_id: str, limit: int) -> list[int]:
        with self._lock:
            scores = self._load(user_id)['scores']
        if limit <= 0:
            return []
        return [s['percentage'] for s in scores[-limit:]]

    def record_activity(self, user_id: str, when: datetime) -> int:
        with self._lock:
            state = self._load(user_id)
            activity = state['activity']
            today = when.date()
            last_active = parse_date(activity.get('last_active_date'))
            streak = next_streak(activity.get('streak', 0), last_active, today)
            if last_active is None or today >= last_active:
                state['activity'] = {'streak': streak, 'last_active_date': today.isoformat()}
                self._save(user_id, state)
            else:
                # Late write for an earlier day; keep the newer record
                streak = activity.get('streak', 0)
        return streak

    def get_activity(self, user_id: str) -> dict:
        with self._lock:
            activity = self._load(user_id)['activity']
        return {
            'streak': activity.get('streak', 0),
            'last_active_date': parse_date(activity.get('last_active_date'))
        }

    def reset_user(self, user_id: str) -> None:
        with self._lock:
            state_file = self._get_state_file(user_id)
            try:
                if os.path.exists(state_file):
                    os.remove(state_file)
            except OSError as e:
                raise PersistenceError(f"Could not delete {state_file}: {e}") from e
        self._publish(PROGRESS_RESET, user_id)
