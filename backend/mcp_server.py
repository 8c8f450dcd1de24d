"""FastMCP server exposing the pacing engine's view of stored sessions.

Tools:
  - list_sessions()                      — stored session summaries
  - get_recommendation(session_id, text) — what the engine would do with a reader turn
  - get_context(session_id)              — current context bundle

All tools are read-only: get_recommendation runs the turn on a copy and
never saves it.

Usage:
    uv run python -m backend.mcp_server
"""

import os
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from backend import storage
from backend.pipeline import SessionNotFound, preview_turn
from pacing_engine.session import build_context_bundle

mcp = FastMCP("pacing-engine")


@mcp.tool()
def list_sessions() -> list[dict]:
    """List stored story sessions, most recently played first."""
    return storage.list_sessions()


@mcp.tool()
def get_recommendation(session_id: str, reader_input: str) -> dict:
    """Run the engine for a reader turn without saving and return its recommendation."""
    try:
        result = preview_turn(session_id, reader_input)
    except SessionNotFound:
        return {"error": f"Unknown session {session_id}"}
    return {
        "recommendation": result["recommendation"],
        "alternatives": result["alternatives"],
        "interpretation": result["interpretation"],
    }


@mcp.tool()
def get_context(session_id: str) -> dict:
    """Return the current context bundle for a session."""
    session = storage.get_session(session_id)
    if session is None:
        return {"error": f"Unknown session {session_id}"}
    return build_context_bundle(session)


if __name__ == "__main__":
    default = Path(__file__).parent.parent / "data"
    storage.init_storage(Path(os.getenv("DATA_DIR", str(default))))
    mcp.run()
