"""Story session CRUD.

Each session is one JSON file holding the serialize_session() blob. Loading
goes through restore_session(), so a damaged tracker inside an otherwise
readable file costs only that tracker.
"""

import json
import logging
import shutil
import time
from typing import Any

from pacing_engine.models import Character, ReaderProfileSummary
from pacing_engine.session import SessionContext, new_session, restore_session, serialize_session

from .config import engine_tunables, get_config
from .core import sessions_dir, slugify

logger = logging.getLogger(__name__)


def _session_path(session_id: str):
    return sessions_dir() / f"{session_id}.json"


def _summary(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": data.get("id", ""),
        "title": data.get("title", ""),
        "genre": data.get("genre", ""),
        "turn": data.get("turn", 0),
        "created_at": data.get("created_at", 0.0),
        "updated_at": data.get("updated_at", 0.0),
    }


def list_sessions() -> list[dict[str, Any]]:
    """Summaries of every stored session, most recently played first."""
    results = []
    for path in sessions_dir().glob("*.json"):
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError:
            logger.warning("Skipping unreadable session file %s", path.name)
            continue
        results.append(_summary(data))
    results.sort(key=lambda s: s["updated_at"], reverse=True)
    return results


def get_session(session_id: str) -> SessionContext | None:
    path = _session_path(session_id)
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError:
        logger.warning("Session %s file is not valid JSON, restoring defaults", session_id)
        data = {"id": session_id}
    return restore_session(data)


def save_session(session: SessionContext) -> None:
    _session_path(session.id).write_text(json.dumps(serialize_session(session), indent=2))


def create_session(
    title: str,
    genre: str = "",
    characters: list[Character] | None = None,
    reader: ReaderProfileSummary | None = None,
    seed: int | None = None,
    now: float | None = None,
) -> SessionContext:
    """Create and persist a new session; the id is the slugified title, made unique."""
    base_slug = slugify(title)
    session_id = base_slug
    counter = 2
    while _session_path(session_id).exists():
        session_id = f"{base_slug}-{counter}"
        counter += 1

    now = time.time() if now is None else now
    session = new_session(
        session_id,
        genre=genre or get_config()["default_genre"],
        characters=characters,
        reader=reader,
        tunables=engine_tunables(),
        seed=int(now) if seed is None else seed,
        title=title,
        now=now,
    )
    (sessions_dir() / session_id).mkdir(exist_ok=True)
    save_session(session)
    return session


def delete_session(session_id: str) -> bool:
    path = _session_path(session_id)
    if not path.is_file():
        return False
    path.unlink()
    child_dir = sessions_dir() / session_id
    if child_dir.is_dir():
        shutil.rmtree(child_dir)
    return True
