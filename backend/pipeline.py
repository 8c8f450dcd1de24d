"""Turn pipeline: pacing engine + narrator collaborator, one reader turn at a time.

    load session → process_turn → render narrator prompt → llm.generate
      → split prose / interpretation tag → record_generation → save

Nothing is written until generation succeeds. An LLMError or PromptError
propagates to the caller with the stored session still holding the pre-turn
snapshot, so the reader can simply retry.

Turns and edits on the same session are serialized with a per-session
asyncio.Lock held across the whole load → save span.
"""

import asyncio
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any

from backend import llm, storage
from backend.prompts import build_context, render_prompt
from pacing_engine.models import Interpretation
from pacing_engine.session import SessionContext, TurnResult, process_turn, record_generation

logger = logging.getLogger(__name__)

# Trailing ```json {...} ``` block the narrator appends to its prose
TAG_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```\s*$", re.S | re.I)


class SessionNotFound(LookupError):
    """Raised when a turn targets a session id that does not exist."""


_locks: dict[str, asyncio.Lock] = {}


def session_lock(session_id: str) -> asyncio.Lock:
    lock = _locks.get(session_id)
    if lock is None:
        lock = asyncio.Lock()
        _locks[session_id] = lock
    return lock


def split_generation(text: str) -> tuple[str, str | None]:
    """Separate narrator prose from the trailing interpretation tag, if any."""
    match = TAG_RE.search(text)
    if match is None:
        return text.strip(), None
    return text[:match.start()].strip(), match.group(1)


def _load(session_id: str) -> SessionContext:
    session = storage.get_session(session_id)
    if session is None:
        raise SessionNotFound(session_id)
    return session


def _turn_payload(result: TurnResult) -> dict[str, Any]:
    return {
        "turn": result.session.turn,
        "recommendation": result.recommendation.model_dump(mode="json"),
        "alternatives": [r.model_dump(mode="json") for r in result.recommendations[1:4]],
        "interpretation": result.interpretation.model_dump(mode="json"),
        "context": result.context_bundle,
    }


def preview_turn(
    session_id: str,
    reader_input: str,
    interpretation: Interpretation | None = None,
    now: float | None = None,
) -> dict[str, Any]:
    """Run the engine for a turn and render the prompt, without generating or saving."""
    session = _load(session_id)
    now = time.time() if now is None else now
    result = process_turn(session, reader_input, now=now, interpretation=interpretation)
    config = storage.get_config()
    payload = _turn_payload(result)
    payload["prompt"] = render_prompt(
        config["narrator_prompt"], build_context(result.context_bundle, reader_input)
    )
    return payload


async def run_turn(
    session_id: str,
    reader_input: str,
    interpretation: Interpretation | None = None,
    now: float | None = None,
) -> dict[str, Any]:
    """Execute one full reader turn and persist the result.

    Returns the recommendation, the generated narration and the context
    bundle the narrator was given.
    """
    async with session_lock(session_id):
        session = _load(session_id)
        now = time.time() if now is None else now
        config = storage.get_config()

        result = process_turn(session, reader_input, now=now, interpretation=interpretation)
        prompt = render_prompt(
            config["narrator_prompt"], build_context(result.context_bundle, reader_input)
        )

        raw = await llm.generate(config["llm"], prompt)
        narration, tag = split_generation(raw)
        if tag is None:
            logger.debug("session=%s turn=%d: narrator returned no interpretation tag",
                         session_id, result.session.turn)

        updated = record_generation(result.session, narration, tag, now=now)
        storage.save_session(updated)

        ts = datetime.now(timezone.utc).isoformat()
        action = result.recommendation.action.value
        storage.append_messages(session_id, [
            {"role": "reader", "text": reader_input, "turn": updated.turn, "ts": ts},
            {"role": "narrator", "text": narration, "turn": updated.turn, "action": action, "ts": ts},
        ])
    logger.info("session=%s turn=%d action=%s", session_id, updated.turn, action)

    payload = _turn_payload(result)
    payload["narration"] = narration
    payload["tag_parsed"] = updated.pending_tag is not None
    return payload
