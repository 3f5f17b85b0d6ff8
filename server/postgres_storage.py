"""PostgreSQL storage implementation."""

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from core.errors import PersistenceError
from core.events import ACHIEVEMENT_AWARDED, PROGRESS_RESET, PROGRESS_UPDATED, ProgressFeed
from core.interfaces import ProgressStore
from core.models import AchievementRecord, UserProgress
from core.utils import next_streak

logger = logging.getLogger(__name__)

MAX_CONNECTIONS = 10


class PostgresStorage(ProgressStore):
    """PostgreSQL-based storage implementation.

    Every operation borrows its own pooled connection and runs in its own
    transaction, so calls from executor threads never share a transaction.
    """

    def __init__(self, db_url: str = None, feed: ProgressFeed = None,
                 max_connections: int = MAX_CONNECTIONS):
        self.db_url = db_url or os.environ.get(
            'DATABASE_URL',
            'postgresql://localhost:5432/diyalekto'
        )
        self.feed = feed
        self.max_connections = max_connections
        self._pool = None
        self._pool_lock = threading.Lock()
        # getconn() fails instead of waiting when the pool is exhausted
        self._slots = threading.BoundedSemaphore(max_connections)

    @property
    def pool(self) -> ThreadedConnectionPool:
        """Lazy pool initialization."""
        with self._pool_lock:
            if self._pool is None or self._pool.closed:
                try:
                    pool = ThreadedConnectionPool(1, self.max_connections, self.db_url)
                except psycopg2.Error as e:
                    raise PersistenceError(f"Could not connect to database: {e}") from e
                self._init_db(pool)
                self._pool = pool
        return self._pool

    def _init_db(self, pool: ThreadedConnectionPool):
        """Create tables if they don't exist."""
        conn = pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS user_progress (
                        user_id VARCHAR(255) NOT NULL,
                        dialect_id VARCHAR(100) NOT NULL,
                        total_lessons INTEGER NOT NULL DEFAULT 0,
                        completed_lesson_ids JSONB NOT NULL DEFAULT '[]',
                        last_studied_at TIMESTAMP,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (user_id, dialect_id)
                    )
                """)
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS user_achievements (
                        user_id VARCHAR(255) NOT NULL,
                        achievement_id VARCHAR(100) NOT NULL,
                        title VARCHAR(255) NOT NULL,
                        description TEXT,
                        icon VARCHAR(50),
                        points INTEGER NOT NULL DEFAULT 0,
                        category VARCHAR(50),
                        type VARCHAR(50),
                        earned_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (user_id, achievement_id)
                    )
                """)
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS quiz_scores (
                        id SERIAL PRIMARY KEY,
                        user_id VARCHAR(255) NOT NULL,
                        lesson_id VARCHAR(100) NOT NULL,
                        percentage INTEGER NOT NULL,
                        recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_quiz_scores_user ON quiz_scores(user_id)
                """)
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS user_activity (
                        user_id VARCHAR(255) PRIMARY KEY,
                        streak INTEGER NOT NULL DEFAULT 0,
                        last_active_date DATE
                    )
                """)
                # Events log table
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS events (
                        id SERIAL PRIMARY KEY,
                        timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        event VARCHAR(50) NOT NULL,
                        user_id VARCHAR(255) NOT NULL,
                        data JSONB
                    )
                """)
                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_events_user_id ON events(user_id)
                """)
                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp)
                """)
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            pool.closeall()
            raise PersistenceError(f"Could not create tables: {e}") from e
        finally:
            if not pool.closed:
                pool.putconn(conn)

    @contextmanager
    def _transaction(self, action: str):
        """Borrow a connection for one transaction: commit on success, roll back on error."""
        pool = self.pool
        with self._slots:
            try:
                conn = pool.getconn()
            except psycopg2.Error as e:
                raise PersistenceError(f"Error {action}: {e}") from e
            try:
                yield conn
                conn.commit()
            except psycopg2.Error as e:
                if not conn.closed:
                    conn.rollback()
                raise PersistenceError(f"Error {action}: {e}") from e
            finally:
                pool.putconn(conn, close=bool(conn.closed))

    def close(self):
        """Close every pooled connection."""
        with self._pool_lock:
            if self._pool is not None and not self._pool.closed:
                self._pool.closeall()

    def _publish(self, event: str, user_id: str, **data) -> None:
        if self.feed is not None:
            self.feed.publish(event, user_id, **data)

    @staticmethod
    def _progress_from_row(row: dict) -> UserProgress:
        return UserProgress(
            row['user_id'], row['dialect_id'], row['total_lessons'],
            row['completed_lesson_ids'], row['last_studied_at']
        )

    def get_progress(self, user_id: str, dialect_id: str) -> UserProgress | None:
        with self._transaction("loading progress") as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT * FROM user_progress WHERE user_id = %s AND dialect_id = %s",
                    (user_id, dialect_id)
                )
                row = cur.fetchone()
        return self._progress_from_row(row) if row else None

    def get_all_progress(self, user_id: str) -> list[UserProgress]:
        with self._transaction("loading progress") as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT * FROM user_progress WHERE user_id = %s ORDER BY dialect_id",
                    (user_id,)
                )
                rows = cur.fetchall()
        return [self._progress_from_row(row) for row in rows]

    def get_completed_lesson_ids(self, user_id: str, dialect_id: str) -> set[str]:
        progress = self.get_progress(user_id, dialect_id)
        return set(progress.completed_lesson_ids) if progress else set()

    def mark_lesson_completed(self, user_id: str, dialect_id: str, lesson_id: str,
                              total_lessons: int, when: datetime = None) -> UserProgress:
        with self._transaction("saving progress") as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                # Make sure the row exists so FOR UPDATE has something to lock
                cur.execute("""
                    INSERT INTO user_progress (user_id, dialect_id, total_lessons)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (user_id, dialect_id) DO NOTHING
                """, (user_id, dialect_id, total_lessons))
                cur.execute("""
                    SELECT * FROM user_progress
                    WHERE user_id = %s AND dialect_id = %s
                    FOR UPDATE
                """, (user_id, dialect_id))
                progress = self._progress_from_row(cur.fetchone())
                progress.total_lessons = total_lessons
                added = progress.mark_completed(lesson_id, when)
                cur.execute("""
                    UPDATE user_progress
                    SET completed_lesson_ids = %s, total_lessons = %s, last_studied_at = %s
                    WHERE user_id = %s AND dialect_id = %s
                """, (json.dumps(progress.completed_lesson_ids), total_lessons,
                      progress.last_studied_at, user_id, dialect_id))
        self._publish(PROGRESS_UPDATED, user_id, dialect_id=dialect_id, lesson_id=lesson_id,
                      added=added, progress=progress.progress)
        return progress

    def get_earned_achievement_ids(self, user_id: str) -> set[str]:
        with self._transaction("loading achievements") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT achievement_id FROM user_achievements WHERE user_id = %s",
                    (user_id,)
                )
                return {row[0] for row in cur.fetchall()}

    def get_achievements(self, user_id: str) -> list[AchievementRecord]:
        with self._transaction("loading achievements") as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT * FROM user_achievements
                    WHERE user_id = %s ORDER BY earned_at, achievement_id
                """, (user_id,))
                rows = cur.fetchall()
        return [AchievementRecord(**dict(row)) for row in rows]

    def award_achievement(self, user_id: str, achievement_id: str, metadata: dict,
                          when: datetime = None) -> bool:
        record = AchievementRecord.from_metadata(
            user_id, achievement_id, metadata, when or datetime.now()
        )
        with self._transaction("saving achievement") as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO user_achievements
                        (user_id, achievement_id, title, description, icon, points,
                         category, type, earned_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (user_id, achievement_id) DO NOTHING
                """, (user_id, achievement_id, record.title, record.description, record.icon,
                      record.points, record.category, record.type, record.earned_at))
                inserted = cur.rowcount > 0
        if inserted:
            self._publish(ACHIEVEMENT_AWARDED, user_id, achievement_id=achievement_id,
                          points=record.points)
        return inserted

    def record_quiz_score(self, user_id: str, lesson_id: str, percentage: int) -> None:
        with self._transaction("saving quiz score") as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO quiz_scores (user_id, lesson_id, percentage)
                    VALUES (%s, %s, %s)
                """, (user_id, lesson_id, percentage))

    def get_recent_scores(self, user_id: str, limit: int) -> list[int]:
        if limit <= 0:
            return []
        with self._transaction("loading quiz scores") as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT percentage FROM quiz_scores
                    WHERE user_id = %s ORDER BY id DESC LIMIT %s
                """, (user_id, limit))
                rows = cur.fetchall()
        return [row[0] for row in reversed(rows)]

    def record_activity(self, user_id: str, when: datetime) -> int:
        today = when.date()
        with self._transaction("saving activity") as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    INSERT INTO user_activity (user_id) VALUES (%s)
                    ON CONFLICT (user_id) DO NOTHING
                """, (user_id,))
                cur.execute(
                    "SELECT streak, last_active_date FROM user_activity "
                    "WHERE user_id = %s FOR UPDATE",
                    (user_id,)
                )
                row = cur.fetchone()
                last_active = row['last_active_date']
                if last_active is not None and today < last_active:
                    streak = row['streak']
                else:
                    streak = next_streak(row['streak'], last_active, today)
                    cur.execute("""
                        UPDATE user_activity SET streak = %s, last_active_date = %s
                        WHERE user_id = %s
                    """, (streak, today, user_id))
        return streak

    def get_activity(self, user_id: str) -> dict:
        with self._transaction("loading activity") as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT streak, last_active_date FROM user_activity WHERE user_id = %s",
                    (user_id,)
                )
                row = cur.fetchone()
        if not row:
            return {'streak': 0, 'last_active_date': None}
        return {'streak': row['streak'], 'last_active_date': row['last_active_date']}

    def reset_user(self, user_id: str) -> None:
        with self._transaction("resetting user") as conn:
            with conn.cursor() as cur:
                for table in ('user_progress', 'user_achievements', 'quiz_scores',
                              'user_activity'):
                    cur.execute(f"DELETE FROM {table} WHERE user_id = %s", (user_id,))
        self._publish(PROGRESS_RESET, user_id)

    # Event logging methods
    def log_event(self, event: str, user_id: str, **data) -> None:
        """Log an event to the database."""
        try:
            with self._transaction("logging event") as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        INSERT INTO events (event, user_id, data)
                        VALUES (%s, %s, %s)
                    """, (event, user_id, json.dumps(data, default=str) if data else None))
        except PersistenceError as e:
            logger.error(str(e))

    def get_user_events(self, user_id: str, event_type: str = None,
                        limit: int = 100) -> list[dict]:
        """Get recent events for a user."""
        try:
            with self._transaction("getting user events") as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    if event_type:
                        cur.execute("""
                            SELECT * FROM events
                            WHERE user_id = %s AND event = %s
                            ORDER BY timestamp DESC LIMIT %s
                        """, (user_id, event_type, limit))
                    else:
                        cur.execute("""
                            SELECT * FROM events
                            WHERE user_id = %s
                            ORDER BY timestamp DESC LIMIT %s
                        """, (user_id, limit))
                    return [dict(row) for row in cur.fetchall()]
        except PersistenceError as e:
            logger.error(str(e))
            return []
