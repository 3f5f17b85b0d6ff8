"""FastAPI server for diyalekto application."""

import asyncio
import logging
import os
import time
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from typing import Optional

logger = logging.getLogger(__name__)

from core.config import DEFAULT_CONTENT_PATH, SESSION_IDLE_SECONDS
from core.content import ContentLibrary
from core.errors import ContentError, DiyalektoError, LessonLocked, LessonNotFound, PolicyViolation
from core.events import ProgressFeed
from core.interfaces import ContentRepository, ProgressStore
from core.lesson_flow import LessonStateMachine
from core.service import LessonService

from server.file_storage import FileStorage
from server.postgres_storage import PostgresStorage


# Pydantic models for API
class StartLessonRequest(BaseModel):
    user_id: str = "default"
    dialect_id: str
    lesson_number: int = Field(..., ge=1)


class AnswerRequest(BaseModel):
    question_id: str
    option_index: int


class ReceiptResponse(BaseModel):
    lesson_id: str
    score: int
    total_possible_points: int
    saved: bool
    progress: Optional[dict]
    awarded: list[str]
    new_achievements: list[str]
    notice: Optional[str]


class ProgressResponse(BaseModel):
    user_id: str
    overall_progress: int
    total_lessons_completed: int
    dialects: list[dict]
    achievement_count: int
    total_points: int
    level: int
    points_for_next_level: int
    progress_to_next_level: float
    streak: int
    last_active_date: Optional[str]
    pending_saves: int


# Global state (in production, use proper DI)
storage: ProgressStore = None
content: ContentRepository = None
service: LessonService = None
feed: ProgressFeed = None
lesson_sessions: dict[str, LessonStateMachine] = {}  # session_id -> lesson handle
session_last_seen: dict[str, float] = {}  # session_id -> time of last request
completion_locks: dict[tuple[str, str], list] = {}  # (user_id, dialect_id) -> [lock, users]


def log_event(event: str, user_id: str, **data) -> None:
    """Log an event to the database."""
    if storage and hasattr(storage, 'log_event'):
        storage.log_event(event, user_id, **data)


def _on_store_change(event: str, user_id: str, data: dict) -> None:
    logger.info(f"{event} for {user_id}: {data}")
    log_event(event, user_id, **data)


def configure(new_storage: ProgressStore = None, new_content: ContentRepository = None) -> None:
    """Wire storage, content and the lesson service together."""
    global storage, content, service, feed

    feed = ProgressFeed()
    feed.subscribe(None, _on_store_change)

    if new_storage is None:
        # File storage by default, set DIYALEKTO_STORAGE=postgres to use PostgreSQL
        storage_type = os.environ.get('DIYALEKTO_STORAGE', 'file')
        if storage_type == 'postgres':
            new_storage = PostgresStorage(feed=feed)
            print("Using PostgreSQL storage")
        else:
            new_storage = FileStorage(feed=feed)
            print(f"Using file storage in {new_storage.state_dir}")
    elif getattr(new_storage, 'feed', False) is None:
        new_storage.feed = feed

    if new_content is None:
        path = os.environ.get('DIYALEKTO_CONTENT', str(DEFAULT_CONTENT_PATH))
        strict = os.environ.get('DIYALEKTO_ENV') == 'development'
        new_content = ContentLibrary.from_file(path, strict=strict)
        print(f"Content loaded: {len(new_content.get_dialects())} dialects "
              f"({'strict' if strict else 'lenient'} validation)")

    storage = new_storage
    content = new_content
    service = LessonService(storage, content)
    lesson_sessions.clear()
    session_last_seen.clear()
    completion_locks.clear()


def to_http_error(e: DiyalektoError) -> HTTPException:
    """Translate a core error into the HTTP status the client sees."""
    if isinstance(e, LessonNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ContentError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, LessonLocked):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, PolicyViolation):
        return HTTPException(status_code=409, detail=str(e))
    logger.error(f"Unhandled {type(e).__name__}: {e}")
    return HTTPException(status_code=500, detail=f"Internal error: {type(e).__name__}: {str(e)}")


def get_handle(session_id: str) -> LessonStateMachine:
    handle = lesson_sessions.get(session_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Unknown lesson session '{session_id}'")
    session_last_seen[session_id] = time.time()
    return handle


def close_session(session_id: str) -> None:
    handle = lesson_sessions.pop(session_id, None)
    session_last_seen.pop(session_id, None)
    if handle is not None and service is not None:
        service.forget(handle)


def expire_idle_sessions(now: float = None) -> int:
    """Drop sessions nobody has touched for SESSION_IDLE_SECONDS."""
    cutoff = (now or time.time()) - SESSION_IDLE_SECONDS
    stale = [s for s, seen in session_last_seen.items() if seen < cutoff]
    for session_id in stale:
        close_session(session_id)
    if stale:
        logger.info(f"Expired {len(stale)} idle lesson sessions")
    return len(stale)


@asynccontextmanager
async def completion_lock(key: tuple[str, str]):
    """Serialize completions per (user, dialect). Idle locks are dropped."""
    entry = completion_locks.get(key)
    if entry is None:
        entry = completion_locks[key] = [asyncio.Lock(), 0]
    entry[1] += 1
    try:
        async with entry[0]:
            yield
    finally:
        entry[1] -= 1
        if entry[1] == 0:
            completion_locks.pop(key, None)


app = FastAPI(title="Diyalekto API", description="Filipino dialect lessons and quizzes API")


@app.on_event("startup")
async def startup():
    """Initialize storage and content on startup."""
    if service is None:
        configure()


@app.get("/")
async def root():
    """Health check."""
    return {
        "status": "ok",
        "dialects": len(content.get_dialects()) if content else 0,
        "active_sessions": len(lesson_sessions)
    }


@app.get("/api/dialects")
async def list_dialects(user_id: str = "default"):
    """List dialects with the learner's progress."""
    return {"dialects": service.dialect_overview(user_id)}


@app.get("/api/dialects/{dialect_id}/lessons")
async def list_lessons(dialect_id: str, user_id: str = "default"):
    """List a dialect's lessons with locked/completed flags."""
    try:
        overview = service.lesson_overview(user_id, dialect_id)
    except DiyalektoError as e:
        raise to_http_error(e) from e
    return {
        "dialect": overview['dialect'].model_dump(),
        "next_lesson_number": overview['next_lesson_number'],
        "lessons": [
            {
                "id": row['lesson'].id,
                "lesson_number": row['lesson'].lesson_number,
                "title": row['lesson'].title,
                "description": row['lesson'].description,
                "locked": row['locked'],
                "completed": row['completed']
            }
            for row in overview['lessons']
        ]
    }


@app.post("/api/lessons/start")
async def start_lesson(request: StartLessonRequest):
    """Open a lesson at its objectives step."""
    try:
        handle = service.start_lesson(request.user_id, request.dialect_id, request.lesson_number)
    except DiyalektoError as e:
        raise to_http_error(e) from e
    expire_idle_sessions()
    lesson_sessions[handle.id] = handle
    session_last_seen[handle.id] = time.time()
    log_event('lesson.start', request.user_id, session_id=handle.id, lesson_id=handle.lesson.id)
    return handle.to_dict()


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    return get_handle(session_id).to_dict()


@app.post("/api/sessions/{session_id}/advance")
async def advance(session_id: str):
    """Move to the next step. Advancing out of the quiz submits it."""
    handle = get_handle(session_id)
    was_quiz = handle.step == 'quiz'
    try:
        handle.advance()
    except DiyalektoError as e:
        raise to_http_error(e) from e
    if was_quiz:
        log_event('quiz.submit', handle.user_id, session_id=session_id,
                  lesson_id=handle.lesson.id, percentage=handle.outcome.percentage)
    return handle.to_dict()


@app.post("/api/sessions/{session_id}/answer")
async def answer(session_id: str, request: AnswerRequest):
    handle = get_handle(session_id)
    try:
        handle.select_answer(request.question_id, request.option_index)
    except DiyalektoError as e:
        raise to_http_error(e) from e
    return handle.to_dict()


@app.post("/api/sessions/{session_id}/next-question")
async def next_question(session_id: str):
    handle = get_handle(session_id)
    try:
        moved = handle.next_question()
    except DiyalektoError as e:
        raise to_http_error(e) from e
    return {**handle.to_dict(), "moved": moved}


@app.post("/api/sessions/{session_id}/previous-question")
async def previous_question(session_id: str):
    handle = get_handle(session_id)
    try:
        moved = handle.previous_question()
    except DiyalektoError as e:
        raise to_http_error(e) from e
    return {**handle.to_dict(), "moved": moved}


@app.post("/api/sessions/{session_id}/submit")
async def submit_quiz(session_id: str):
    """Grade the quiz and report score and achievements."""
    handle = get_handle(session_id)
    try:
        result = handle.submit_quiz()
    except DiyalektoError as e:
        raise to_http_error(e) from e
    log_event('quiz.submit', handle.user_id, session_id=session_id,
              lesson_id=handle.lesson.id, percentage=result['percentage'])
    return result


@app.post("/api/sessions/{session_id}/retake")
async def retake(session_id: str):
    handle = get_handle(session_id)
    try:
        handle.retake()
    except DiyalektoError as e:
        raise to_http_error(e) from e
    return handle.to_dict()


@app.post("/api/sessions/{session_id}/complete", response_model=ReceiptResponse)
async def complete_lesson(session_id: str):
    """Persist the graded lesson and close the session."""
    handle = get_handle(session_id)
    key = (handle.user_id, handle.lesson.dialect_id)

    async with completion_lock(key):
        try:
            loop = asyncio.get_event_loop()
            receipt = await loop.run_in_executor(None, service.complete_lesson, handle)
        except DiyalektoError as e:
            raise to_http_error(e) from e
        except Exception as e:
            logger.error(f"Error in complete_lesson: {type(e).__name__}: {e}")
            logger.error(traceback.format_exc())
            raise HTTPException(status_code=500,
                                detail=f"Internal error: {type(e).__name__}: {str(e)}")

    close_session(session_id)
    log_event('lesson.complete', handle.user_id, session_id=session_id,
              lesson_id=handle.lesson.id, saved=receipt.saved, awarded=receipt.awarded)
    return receipt.to_dict()


@app.get("/api/progress", response_model=ProgressResponse)
async def get_progress(user_id: str = "default"):
    """Overall and per-dialect progress, points and level."""
    try:
        if service.pending:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, service.retry_pending)
        return service.get_summary(user_id)
    except DiyalektoError as e:
        raise to_http_error(e) from e


@app.get("/api/achievements")
async def get_achievements(user_id: str = "default"):
    """Earned achievement records plus every definition."""
    try:
        earned = storage.get_achievements(user_id)
    except DiyalektoError as e:
        raise to_http_error(e) from e
    return {
        "earned": [a.to_dict() for a in earned],
        "definitions": [a.model_dump() for a in service.evaluator.definitions]
    }


@app.post("/api/users/{user_id}/reset")
async def reset_user(user_id: str):
    """Delete all progress and achievements of a user."""
    try:
        service.reset_user(user_id)
    except DiyalektoError as e:
        raise to_http_error(e) from e
    for session_id in [s for s, h in lesson_sessions.items() if h.user_id == user_id]:
        close_session(session_id)
    return {"success": True, "user_id": user_id}


@app.get("/api/events/recent")
async def get_recent_events(user_id: str, event_type: str = None, limit: int = 50):
    """Get recent events for a user."""
    if not hasattr(storage, 'get_user_events'):
        return {"error": "Event logging not available with current storage"}

    events = storage.get_user_events(user_id, event_type, limit)
    # Convert datetime objects to strings for JSON serialization
    for event in events:
        if 'timestamp' in event and hasattr(event['timestamp'], 'isoformat'):
            event['timestamp'] = event['timestamp'].isoformat()
    return {"events": events}


def create_app(new_storage: ProgressStore = None, new_content: ContentRepository = None):
    """Factory function for creating the app (useful for testing)."""
    if new_storage is not None or new_content is not None:
        configure(new_storage, new_content)
    return app
