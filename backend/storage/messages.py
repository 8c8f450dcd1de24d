"""Turn transcript storage (append-only log per session)."""

import json
from typing import Any

from .core import sessions_dir


def get_messages(session_id: str) -> list[dict[str, Any]]:
    """Load the transcript for a session. Returns [] if none exist."""
    path = sessions_dir() / session_id / "messages.json"
    if not path.is_file():
        return []
    return json.loads(path.read_text())


def append_messages(session_id: str, messages: list[dict[str, Any]]) -> None:
    """Append messages to a session's transcript."""
    directory = sessions_dir() / session_id
    directory.mkdir(exist_ok=True)
    existing = get_messages(session_id)
    existing.extend(messages)
    (directory / "messages.json").write_text(json.dumps(existing, indent=2))
