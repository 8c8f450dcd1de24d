"""Session CRUD, turns, previews, context, scene, character and thread endpoints."""

import time

from fastapi import APIRouter, HTTPException

from backend import storage
from backend.llm import LLMError
from backend.pipeline import SessionNotFound, preview_turn, run_turn, session_lock
from backend.prompts import PromptError
from pacing_engine.models import Character
from pacing_engine.session import (
    abandon_thread,
    add_character,
    build_context_bundle,
    change_scene,
    connect_threads,
    plant_thread,
    resolve_thread,
    serialize_session,
)
from pacing_engine.threads import Thread

from .models import ConnectThreadsBody, CreateSession, ResolveThreadBody, SceneBody, TurnBody

router = APIRouter()


def _require(session_id: str):
    session = storage.get_session(session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


@router.get("/sessions")
async def list_sessions():
    """List stored sessions, most recently played first."""
    return storage.list_sessions()


@router.post("/sessions")
async def create_session(body: CreateSession):
    """Start a new story session."""
    session = storage.create_session(
        body.title,
        genre=body.genre,
        characters=body.characters,
        reader=body.reader,
        seed=body.seed,
    )
    return {"id": session.id, "title": session.title, "genre": session.genre, "seed": session.seed}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Get a session's full serialized state."""
    session = _require(session_id)
    return serialize_session(session)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Delete a session and its transcript."""
    if not storage.delete_session(session_id):
        raise HTTPException(404, "Session not found")
    return {"ok": True}


@router.get("/sessions/{session_id}/messages")
async def get_messages(session_id: str):
    """Get the turn transcript for a session."""
    _require(session_id)
    return storage.get_messages(session_id)


@router.post("/sessions/{session_id}/turns")
async def take_turn(session_id: str, body: TurnBody):
    """Run one reader turn through the engine and the narrator."""
    try:
        return await run_turn(session_id, body.message, body.interpretation)
    except SessionNotFound:
        raise HTTPException(404, "Session not found")
    except PromptError as e:
        raise HTTPException(400, str(e))
    except LLMError as e:
        raise HTTPException(502, str(e))


@router.post("/sessions/{session_id}/preview")
async def preview(session_id: str, body: TurnBody):
    """Show what the engine would recommend for a turn, without generating or saving."""
    try:
        return preview_turn(session_id, body.message, body.interpretation)
    except SessionNotFound:
        raise HTTPException(404, "Session not found")
    except PromptError as e:
        raise HTTPException(400, str(e))


@router.get("/sessions/{session_id}/context")
async def get_context(session_id: str):
    """Current context bundle and orchestrator status."""
    session = _require(session_id)
    return {
        "context": build_context_bundle(session),
        "orchestrator": session.orchestrator.status(session.turn),
    }


@router.post("/sessions/{session_id}/scene")
async def new_scene(session_id: str, body: SceneBody):
    """Advance to a new scene (optionally a new chapter)."""
    async with session_lock(session_id):
        session = _require(session_id)
        fields = body.model_dump(exclude_none=True, exclude={"new_chapter"})
        updated = change_scene(session, new_chapter=body.new_chapter, **fields)
        updated.updated_at = time.time()
        storage.save_session(updated)
    return updated.state.context_window()


@router.post("/sessions/{session_id}/characters")
async def add_session_character(session_id: str, body: Character):
    """Bring a character into the current scene."""
    async with session_lock(session_id):
        session = _require(session_id)
        add_character(session, body)
        storage.save_session(session)
    return [c.model_dump() for c in session.state.present_characters]


@router.delete("/sessions/{session_id}/characters/{character_id}")
async def remove_session_character(session_id: str, character_id: str):
    """Send a character out of the current scene."""
    async with session_lock(session_id):
        session = _require(session_id)
        if not session.state.remove_character(character_id, session.turn):
            raise HTTPException(404, "Character not found")
        storage.save_session(session)
    return [c.model_dump() for c in session.state.present_characters]


# ── Threads ──────────────────────────────────────────────


def _require_thread(session, thread_id: str) -> None:
    if session.threads.get(thread_id) is None:
        raise HTTPException(404, "Thread not found")


@router.get("/sessions/{session_id}/threads")
async def list_threads(session_id: str):
    """Every thread the session tracks, open or closed."""
    session = _require(session_id)
    return [t.model_dump() for t in session.threads.threads.values()]


@router.post("/sessions/{session_id}/threads")
async def add_thread(session_id: str, body: Thread):
    """Plant an authored thread."""
    async with session_lock(session_id):
        session = _require(session_id)
        thread = plant_thread(session, body)
        storage.save_session(session)
    return thread.model_dump()


@router.post("/sessions/{session_id}/threads/{thread_id}/resolve")
async def resolve_session_thread(session_id: str, thread_id: str, body: ResolveThreadBody):
    """Close a thread with a resolution."""
    async with session_lock(session_id):
        session = _require(session_id)
        _require_thread(session, thread_id)
        updated = resolve_thread(session, thread_id, body.resolution)
        if updated is None:
            raise HTTPException(409, "Thread is already closed")
        storage.save_session(updated)
    return updated.threads.get(thread_id).model_dump()


@router.post("/sessions/{session_id}/threads/{thread_id}/abandon")
async def abandon_session_thread(session_id: str, thread_id: str):
    """Drop a thread the story no longer needs."""
    async with session_lock(session_id):
        session = _require(session_id)
        _require_thread(session, thread_id)
        updated = abandon_thread(session, thread_id)
        if updated is None:
            raise HTTPException(409, "Thread is already closed")
        storage.save_session(updated)
    return updated.threads.get(thread_id).model_dump()


@router.post("/sessions/{session_id}/threads/{thread_id}/connect")
async def connect_session_threads(session_id: str, thread_id: str, body: ConnectThreadsBody):
    """Link two threads; both count as significantly touched."""
    async with session_lock(session_id):
        session = _require(session_id)
        _require_thread(session, thread_id)
        _require_thread(session, body.other)
        updated = connect_threads(session, thread_id, body.other, body.kind)
        if updated is None:
            raise HTTPException(409, "A thread cannot be connected to itself")
        storage.save_session(updated)
    return [updated.threads.get(tid).model_dump() for tid in (thread_id, body.other)]
