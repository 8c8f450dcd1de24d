"""Session context and the per-turn pipeline.

A SessionContext owns every tracker for one story session. Nothing in the
engine is module-level mutable state, so any number of sessions can live
side by side as long as the caller keys them by id.

Turn flow (process_turn):

  1. work on a deep copy, advance the turn counter
  2. ingest the collaborator tag left by record_generation, if any
  3. interpret the reader input, recall the memories it brings back for each
     present character, and fold it into state and trackers
  4. touch threads mentioned and pace their buildups, ripen and retire
     threads, decay memories
  5. recompute emergent conditions and breath / cross-talk needs
  6. hand the summaries to the orchestrator, take the top recommendation
  7. commit that action's bookkeeping (cooldown, breath, cross-talk, ...)
  8. build the flat context bundle for the generation collaborator

The caller persists the returned session only once generation succeeds; the
stored pre-turn snapshot is never touched here.
"""

from __future__ import annotations

import logging
import random
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from pacing_engine.breath import BreathScheduler
from pacing_engine.config import Tunables, load_tunables
from pacing_engine.crosstalk import CrossTalkScheduler
from pacing_engine.emergent import EmergentMatcher, MomentType, conditions_from_signals
from pacing_engine.evolution import GROWTH_DIMENSIONS, CharacterEvolution
from pacing_engine.interpret import (
    detect_catalyst,
    interpret_input,
    parse_interpretation_tag,
    resonance_tone_for,
    tension_event_for,
)
from pacing_engine.memory import Memory, MemoryStore
from pacing_engine.models import Character, Interpretation, ReaderProfileSummary
from pacing_engine.orchestrator import (
    BACKGROUND,
    Action,
    Orchestrator,
    Recommendation,
    TrackerSummaries,
)
from pacing_engine.resonance import EmotionalResonance
from pacing_engine.state import AdventureState
from pacing_engine.tension import MODERATE, TENSE, TensionManager, tension_label
from pacing_engine.threads import OPEN_STATES, Thread, ThreadTracker

logger = logging.getLogger(__name__)

DEFAULT_GENRE = "fantasy"

BOND_THRESHOLD = 70
BOND_NEAR = 5

# Recipes a reader who avoids romance should not be steered toward
ROMANCE_MOMENTS = frozenset({
    MomentType.ACCIDENTAL_INTIMACY.value,
    MomentType.SHARED_VULNERABILITY.value,
})

TONE_VALENCE = {
    "warm": "warm",
    "playful": "warm",
    "excited": "joyful",
    "determined": "warm",
    "sad": "painful",
    "angry": "painful",
    "fearful": "painful",
    "defiant": "painful",
    "vulnerable": "bittersweet",
}

# tone → relationship deltas toward the reader
TONE_RELATIONSHIP: dict[str, dict[str, int]] = {
    "warm": {"trust": 3, "affection": 3},
    "playful": {"affection": 2},
    "vulnerable": {"affection": 2, "trust": 1},
    "angry": {"tension": 5, "trust": -2},
    "defiant": {"tension": 4},
    "cold": {"affection": -2},
}

# thread type → tone of the payoff its buildup aims at
THREAD_PAYOFF_TONES = {
    "mystery": "wonder",
    "secret": "catharsis",
    "foreshadowing": "dread",
    "chekhov": "tension",
    "irony": "bittersweetness",
    "relationship": "longing",
    "growth": "pride",
}

SERIALIZED_TRACKERS = ("state", "tension", "resonance", "memory", "threads",
                       "emergent", "breath", "crosstalk", "orchestrator")


class SessionContext(BaseModel):
    id: str
    title: str = ""
    genre: str = DEFAULT_GENRE
    seed: int = 0
    turn: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0
    reader: ReaderProfileSummary | None = None
    tunables: Tunables = Field(default_factory=Tunables)
    state: AdventureState = Field(default_factory=AdventureState)
    tension: TensionManager = Field(default_factory=TensionManager)
    resonance: EmotionalResonance = Field(default_factory=EmotionalResonance)
    memory: MemoryStore = Field(default_factory=MemoryStore)
    threads: ThreadTracker = Field(default_factory=ThreadTracker)
    emergent: EmergentMatcher = Field(default_factory=EmergentMatcher)
    evolution: dict[str, CharacterEvolution] = Field(default_factory=dict)
    breath: BreathScheduler = Field(default_factory=BreathScheduler)
    crosstalk: CrossTalkScheduler = Field(default_factory=CrossTalkScheduler)
    orchestrator: Orchestrator = Field(default_factory=Orchestrator)
    pending_tag: Interpretation | None = None
    last_recommendation: Recommendation | None = None
    silent_turns: int = 0

    def rng(self) -> random.Random:
        """Deterministic per-turn randomness, replayable from seed and turn."""
        return random.Random(f"{self.seed}:{self.turn}")


class TurnResult(BaseModel):
    session: SessionContext
    recommendation: Recommendation
    recommendations: list[Recommendation]
    context_bundle: dict[str, Any]
    interpretation: Interpretation


# ----------------------------------------------------------------------
# Construction
# ----------------------------------------------------------------------

def _configure(session: SessionContext) -> None:
    """Push the session's tunables into every tracker."""
    t = session.tunables
    session.threads.revelation_threshold = t.revelation_threshold
    session.threads.unused_element_max_age = t.unused_element_max_age
    session.threads.dormant_abandon_after = t.dormant_abandon_after
    session.memory.store_limit = t.memory_store_limit
    session.emergent.global_cooldown = t.emergent_global_cooldown
    session.emergent.trigger_priority = t.emergent_trigger_priority
    session.breath.configure(
        min_exchanges=t.breath_min_exchanges,
        max_exchanges=t.breath_max_exchanges,
        recovery_threshold=t.breath_recovery_threshold,
    )
    session.crosstalk.min_exchanges = t.crosstalk_min_exchanges
    session.orchestrator.tunables = t


def add_character(session: SessionContext, character: Character) -> None:
    session.state.add_character(character, session.turn)
    if character.id not in session.evolution:
        session.evolution[character.id] = CharacterEvolution.for_character(character)


def new_session(
    session_id: str,
    *,
    genre: str = DEFAULT_GENRE,
    characters: list[Character] | None = None,
    reader: ReaderProfileSummary | None = None,
    tunables: Tunables | None = None,
    seed: int = 0,
    title: str = "",
    now: float = 0.0,
    initial_tension: int = 30,
) -> SessionContext:
    session = SessionContext(
        id=session_id,
        title=title,
        genre=genre,
        seed=seed,
        reader=reader,
        created_at=now,
        updated_at=now,
        tunables=tunables or Tunables(),
        state=AdventureState(session_id=session_id, tension=initial_tension),
        tension=TensionManager.for_genre(genre, initial_tension),
    )
    session.tension.adapt_to_reader(reader)
    _configure(session)
    for character in characters or []:
        add_character(session, character)
    return session


# ----------------------------------------------------------------------
# Turn processing
# ----------------------------------------------------------------------

def _valence(tone: str) -> str:
    return TONE_VALENCE.get(tone, "neutral")


def _apply_interpretation(
    session: SessionContext, interp: Interpretation, text: str, now: float
) -> None:
    turn = session.turn
    state = session.state

    event = tension_event_for(interp)
    applied = session.tension.apply_event(event, turn)
    state.update_tension(applied["delta"], event, turn)
    session.resonance.record_moment(resonance_tone_for(interp), interp.intensity,
                                    summary=text[:120], turn=turn)
    session.breath.record_intensity(session.tension.current)
    session.crosstalk.increment_exchanges()

    target = interp.target_character or state.speaking_character
    if target and target in state.relationships:
        deltas = dict(TONE_RELATIONSHIP.get(interp.tone, {}))
        deltas["familiarity"] = deltas.get("familiarity", 0) + 1
        state.update_relationship(target, interp.tone, turn, **deltas)

        catalyst = detect_catalyst(interp)
        evolution = session.evolution.get(target)
        if catalyst and evolution is not None:
            dimension, magnitude, kind = catalyst
            evolution.record_growth(dimension, magnitude, kind, turn,
                                    session.tunables.arc_confidence_threshold)

    present = [c.id for c in state.present_characters]
    if text and present and (interp.intensity >= 4 or interp.revelation):
        memory = Memory(
            type="emotional_peak" if interp.intensity >= 4 else "event",
            content=text[:200],
            valence=_valence(interp.tone),
            salience=interp.intensity,
            participants=["reader", *([target] if target else [])],
            topics=_keywords(text, limit=6),
            location=state.scene.location or None,
        )
        if len(present) > 1:
            session.memory.store_shared(memory, present, now)
        else:
            session.memory.store(present[0], memory, now)
        if interp.revelation:
            session.memory.store_reader_memory(memory, now)


def _touch_mentioned_threads(
    session: SessionContext, text: str, interp: Interpretation
) -> list[str]:
    if not text:
        return []
    lower = text.lower()
    significant = interp.revelation or interp.intensity >= 4
    touched = []
    for thread in list(session.threads.threads.values()):
        if thread.state not in OPEN_STATES:
            continue
        keys = [e.lower() for e in thread.elements] or _keywords(thread.content)
        if any(k in lower for k in keys):
            session.threads.touch(thread.id, session.turn, significant)
            touched.append(thread.id)
    return touched


def _keywords(content: str, limit: int = 3) -> list[str]:
    words = [w.strip(".,!?;:\"'").lower() for w in content.split()]
    return list(dict.fromkeys(w for w in words if len(w) > 5))[:limit]


def _pace_buildups(session: SessionContext, touched: list[str]) -> None:
    """Open a buildup once a thread starts building; every later touch advances it."""
    for thread in session.threads.threads.values():
        if thread.state not in ("building", "ripe"):
            continue
        if thread.buildup_id is None:
            tone = THREAD_PAYOFF_TONES.get(thread.type, "anticipation")
            thread.buildup_id = session.resonance.start_buildup(tone, turn=session.turn).id
        elif thread.id in touched:
            session.resonance.advance_buildup(thread.buildup_id)


def _close_buildup(
    session: SessionContext, thread: Thread, turn: int, payoff: bool = False
) -> str | None:
    """Pay off or drop the thread's buildup. Returns the payoff tone, if any."""
    buildup_id, thread.buildup_id = thread.buildup_id, None
    if buildup_id is None:
        return None
    if payoff:
        moment = session.resonance.trigger_payoff(buildup_id, summary=thread.content, turn=turn)
        if moment is not None:
            return moment.tone
    session.resonance.cancel_buildup(buildup_id)
    return None


def _retire_thread(session: SessionContext, thread: Thread, turn: int) -> None:
    session.state.discard_pending_thread(thread.id)
    _close_buildup(session, thread, turn)


def _recall(session: SessionContext, text: str, now: float) -> dict[str, list[str]]:
    """Memories the reader's words bring back, per present character."""
    if not text.strip():
        return {}
    state = session.state
    lower = text.lower()
    context = {
        "people": [c.id for c in state.present_characters if c.name.lower() in lower],
        "topics": _keywords(text, limit=6),
        "location": state.scene.location or None,
    }
    recalled = {}
    for character in state.present_characters:
        memories = session.memory.get_relevant(character.id, context, now)
        if memories:
            recalled[character.id] = [m.content for m in memories]
    return recalled


def _bonds_near_threshold(session: SessionContext) -> list[dict]:
    near = []
    for character in session.state.present_characters:
        rel = session.state.relationships.get(character.id)
        if rel is None:
            continue
        for dim in ("trust", "affection"):
            value = getattr(rel, dim)
            if BOND_THRESHOLD - BOND_NEAR <= value < BOND_THRESHOLD:
                near.append({"character_id": character.id, "dimension": dim, "value": value})
    return near


def _growth_near(session: SessionContext) -> list[dict]:
    near = []
    for character in session.state.present_characters:
        evolution = session.evolution.get(character.id)
        if evolution is None:
            continue
        for dim in GROWTH_DIMENSIONS:
            if evolution.is_breakthrough_near(dim):
                near.append({"character_id": character.id, "dimension": dim})
    return near


def _pending_milestones(session: SessionContext) -> list[dict]:
    pending = []
    for character in session.state.present_characters:
        evolution = session.evolution.get(character.id)
        if evolution is not None:
            pending.extend(evolution.pending_milestones)
    return pending


def _callback(session: SessionContext, now: float) -> dict[str, Any] | None:
    state = session.state
    candidates = [state.speaking_character] if state.speaking_character else []
    candidates += [c.id for c in state.present_characters if c.id not in candidates]
    for character_id in candidates:
        memory = session.memory.get_callback_opportunity(
            character_id, {"location": state.scene.location}, now
        )
        if memory is not None:
            return {"memory_id": memory.id, "character_id": character_id, "content": memory.content}
    return None


def _recently_arrived(state: AdventureState, turn: int) -> bool:
    return any(e.kind == "character_arrival" and e.turn >= turn - 1 for e in state.recent_events)


def _emergent_opportunity(session: SessionContext) -> dict[str, Any] | None:
    reader = session.reader
    avoids_romance = reader is not None and "romance" in reader.avoids
    for candidate in session.emergent.check_for_moments(session.turn):
        if avoids_romance and candidate.moment_type in ROMANCE_MOMENTS:
            continue
        if candidate.priority >= session.emergent.trigger_priority:
            return candidate.model_dump()
        return None
    return None


def _max_urgency(a: str | None, b: str | None) -> str:
    rank = {"none": 0, "low": 1, "medium": 2, "high": 3}
    a, b = a or "none", b or "none"
    return a if rank[a] >= rank[b] else b


def _timing_context(session: SessionContext) -> dict[str, bool]:
    return {
        "high_tension": session.tension.current >= TENSE,
        "emotional_peak": session.resonance.current_intensity >= 4,
        "in_breath": session.breath.in_breath,
    }


def _summaries(
    session: SessionContext, interp: Interpretation, previous_tension: int, now: float
) -> TrackerSummaries:
    turn = session.turn
    state = session.state
    tension = session.tension.current
    present = state.present_characters
    bonds = _bonds_near_threshold(session)
    callback = _callback(session, now)
    ripe = [t.id for t in session.threads.get_ripe_threads()]
    timing = _timing_context(session)
    revealable = [
        tid for tid in ripe if session.threads.revelation_timing(tid, timing, turn)["ready"]
    ]

    session.emergent.set_conditions(conditions_from_signals(
        tension=tension,
        previous_tension=previous_tension,
        emotional_intensity=session.resonance.current_intensity,
        catharsis_debt=session.resonance.catharsis_debt,
        present_characters=len(present),
        vulnerability_present=interp.tone == "vulnerable",
        new_character_present=_recently_arrived(state, turn),
        antagonist_present=any(c.antagonist for c in present),
        bond_threshold=bool(bonds),
        callback_available=callback is not None,
        thread_ripe=bool(ripe),
        chekhov_ready=bool(session.threads.foreshadowing_opportunities(turn)),
        reader_surprised=interp.revelation or interp.new_information,
        reader_choice_unusual=interp.input_type == "decision" and interp.tone == "defiant",
    ))

    tension_breath = session.tension.needs_breath()
    scheduler_breath = session.breath.needs_breath({
        "just_had_revelation": interp.revelation,
        "emotional_peak": interp.intensity >= 5,
        "characters_alone": len(present) == 1,
        "tension_low": tension <= MODERATE,
        "action_needed": interp.input_type == "action",
    })
    reasons = list(tension_breath["reasons"])
    if scheduler_breath["needed"]:
        reasons += scheduler_breath["reasons"]
        scheduler_urgency = scheduler_breath["urgency"]
    else:
        scheduler_urgency = None

    cross_talk = session.crosstalk.should_cross_talk({
        "reader_silent": interp.reader_silent,
        "silent_exchanges": session.silent_turns,
        "natural_pause": session.tension.mode == "breath" or session.tension.is_in_lull(),
        "tension_just_dropped": previous_tension - tension >= 10,
        "new_information": interp.new_information,
        "character_arrived": _recently_arrived(state, turn),
        "reader_observing": interp.reader_observing,
        "characters": [c.id for c in present],
    }, session.rng())

    return TrackerSummaries(
        tension=tension,
        target_tension=session.tension.profile.target,
        breath_urgency=_max_urgency(tension_breath["urgency"], scheduler_urgency),
        breath_reasons=reasons,
        exchanges_since_breath=session.breath.exchanges_since_breath,
        emotional_intensity=session.resonance.current_intensity,
        catharsis_debt=session.resonance.catharsis_debt,
        exchanges_since_cross_talk=session.crosstalk.exchanges_since if len(present) >= 2 else 0,
        cross_talk=cross_talk if cross_talk["should"] else None,
        ripe_threads=revealable,
        emergent=_emergent_opportunity(session),
        pending_milestones=_pending_milestones(session),
        callback=callback,
        bonds_near_threshold=bonds,
        growth_near=_growth_near(session),
        characters_alone=len(present) == 1,
        reader=session.reader,
    )


def _fallback(session: SessionContext) -> Recommendation:
    state = session.state
    if state.present_characters:
        speaker = state.speaking_character or state.present_characters[0].id
        return Recommendation(action=Action.CHARACTER_SPEAKS, tier=BACKGROUND, urgency="when_appropriate",
                              source="character", reason="Keep the conversation going",
                              payload={"character_id": speaker})
    return Recommendation(action=Action.NARRATOR_DESCRIBES, tier=BACKGROUND, urgency="when_appropriate",
                          source="narrative", reason="Nobody is present, describe the scene")


def _commit(session: SessionContext, rec: Recommendation, now: float) -> Recommendation:
    """Apply the chosen action's bookkeeping and attach any guidance to its payload."""
    turn = session.turn
    payload = dict(rec.payload)
    action = rec.action

    if action == Action.BREATH_MOMENT:
        wanted = session.breath.needs_breath().get("suggested_type") or "sensory"
        moment = session.breath.create_moment(
            wanted, session.rng(),
            characters=[c.id for c in session.state.present_characters], turn=turn,
        )
        session.breath.record_moment(moment, turn)
        released = session.tension.record_breath(turn)
        session.state.update_tension(released["delta"], "breath_moment", turn)
        session.state.set_beat("breath")
        payload["breath"] = moment.model_dump(mode="json")
    elif action == Action.CROSS_TALK:
        ids = [c.id for c in session.state.present_characters]
        participants = session.crosstalk.select_participants(ids)
        if participants is not None:
            talk_type = payload.get("suggested_type") or "banter"
            payload["guidance"] = session.crosstalk.guidance(participants, talk_type)
            a, b = participants["characters"]
            session.crosstalk.record_cross_talk(a, b, talk_type, turn=turn)
    elif action == Action.REVEAL_THREAD:
        thread_id = payload.get("thread_id", "")
        timing = session.threads.revelation_timing(thread_id, _timing_context(session), turn)
        thread = None
        if timing["ready"]:
            thread = session.threads.reveal(thread_id, timing["style"], turn)
        else:
            logger.debug("thread %s held back, timing score %s", thread_id, timing["score"])
            payload["deferred"] = True
        if thread is not None:
            payload["content"] = thread.content
            payload["style"] = thread.revelation_style
            session.state.record_event("thread_revealed", thread.content, turn, thread_id=thread.id)
            session.state.discard_pending_thread(thread.id)
            payoff = _close_buildup(session, thread, turn, payoff=True)
            if payoff:
                payload["payoff_tone"] = payoff
    elif action == Action.TRIGGER_EMERGENCE:
        session.emergent.trigger(payload.get("moment_type", ""), turn)
    elif action == Action.CALLBACK_MOMENT:
        session.memory.use_callback(payload.get("memory_id", ""), now)
    elif action == Action.MILESTONE_SCENE:
        evolution = session.evolution.get(payload.get("character_id", ""))
        if evolution is not None:
            for milestone in evolution.acknowledge_milestones():
                session.state.record_milestone(milestone["milestone"], milestone["dimension"], turn,
                                               character_id=evolution.character_id)

    if rec.tier > BACKGROUND:
        session.orchestrator.record_action(action, turn)
    return rec.model_copy(update={"payload": payload})


def process_turn(
    session: SessionContext,
    reader_input: str,
    *,
    now: float,
    interpretation: Interpretation | None = None,
) -> TurnResult:
    """Advance the story by one reader turn. The input session is left untouched."""
    s = session.model_copy(deep=True)
    s.turn += 1
    s.updated_at = now
    previous_tension = s.tension.current

    if s.pending_tag is not None:
        _apply_interpretation(s, s.pending_tag, "", now)
        s.pending_tag = None

    interp = interpretation or interpret_input(reader_input, s.state.present_characters)
    s.silent_turns = s.silent_turns + 1 if interp.reader_silent else 0
    if reader_input.strip() and not interp.reader_silent:
        s.state.add_exchange("reader", reader_input.strip(), s.turn)
    recalled = _recall(s, reader_input, now)
    _apply_interpretation(s, interp, reader_input.strip(), now)
    if interp.target_character and s.state.get_character(interp.target_character):
        s.state.set_speaker(interp.target_character)

    touched = _touch_mentioned_threads(s, reader_input, interp)
    s.threads.update_ripeness(s.turn)
    _pace_buildups(s, touched)
    for thread_id in s.threads.cleanup(s.turn):
        _retire_thread(s, s.threads.threads[thread_id], s.turn)
    for character_id in list(s.memory.memories):
        s.memory.decay(character_id, now)
    for entry in s.breath.pop_pending():
        s.breath.record_moment(entry, s.turn)

    s.orchestrator.update_states(_summaries(s, interp, previous_tension, now))
    recommendations = s.orchestrator.generate_recommendations(s.turn)
    top = recommendations[0] if recommendations else _fallback(s)
    top = _commit(s, top, now)
    if recommendations:
        recommendations[0] = top

    s.last_recommendation = top
    s.state.set_awaiting_response(True)
    logger.debug("turn %d session=%s action=%s reason=%s", s.turn, s.id, top.action.value, top.reason)
    return TurnResult(
        session=s,
        recommendation=top,
        recommendations=recommendations,
        context_bundle=build_context_bundle(s, recalled),
        interpretation=interp,
    )


# ----------------------------------------------------------------------
# Thread lifecycle
# ----------------------------------------------------------------------

def resolve_thread(
    session: SessionContext, thread_id: str, resolution: str = ""
) -> SessionContext | None:
    """Close a thread for good. None when it is unknown or already closed."""
    s = session.model_copy(deep=True)
    thread = s.threads.resolve(thread_id, resolution, s.turn)
    if thread is None:
        return None
    s.state.resolve_pending_thread(thread.id, resolution, s.turn)
    _close_buildup(s, thread, s.turn)
    return s


def abandon_thread(session: SessionContext, thread_id: str) -> SessionContext | None:
    s = session.model_copy(deep=True)
    thread = s.threads.abandon(thread_id, s.turn)
    if thread is None:
        return None
    _retire_thread(s, thread, s.turn)
    return s


def connect_threads(
    session: SessionContext, thread_a: str, thread_b: str, kind: str = "related"
) -> SessionContext | None:
    """Link two threads; the link counts as a significant touch on both."""
    s = session.model_copy(deep=True)
    if not s.threads.connect(thread_a, thread_b, kind, s.turn):
        return None
    _pace_buildups(s, [thread_a, thread_b])
    return s


# ----------------------------------------------------------------------
# Collaborator boundary
# ----------------------------------------------------------------------

def build_context_bundle(
    session: SessionContext, recalled: dict[str, list[str]] | None = None
) -> dict[str, Any]:
    """Flat, JSON-safe digest of the session for the generation prompt.

    recalled maps character id → memories the reader's last words brought back.
    """
    recalled = recalled or {}
    turn = session.turn
    now = session.updated_at
    tension = session.tension
    resonance = session.resonance.context()
    rec = session.last_recommendation

    characters = []
    for character in session.state.present_characters:
        rel = session.state.relationships.get(character.id)
        evolution = session.evolution.get(character.id)
        characters.append({
            "id": character.id,
            "name": character.name,
            "description": character.description,
            "bond": rel.model_dump(exclude={"history"}) if rel else None,
            "evolution": evolution.context() if evolution else None,
            "memories": session.memory.memory_context(character.id, now),
            "recalled": recalled.get(character.id, []),
        })

    return {
        "session_id": session.id,
        "turn": turn,
        "genre": session.genre,
        "scene": session.state.context_window(),
        "tension_value": tension.current,
        "tension_label": tension_label(tension.current),
        "tension_mode": tension.mode,
        "tension_target": tension.profile.target,
        "emotional_tone": resonance["tone"],
        "emotional_intensity": resonance["intensity"],
        "catharsis_debt": resonance["catharsis_debt"],
        "emotional_suggestions": resonance["suggestions"],
        "breath": session.breath.context(),
        "threads": session.threads.summary(turn),
        "emergent": session.emergent.summary(turn),
        "characters": characters,
        "pacing": tension.recommend_pacing(),
        "recommended_action": rec.action.value if rec else None,
        "recommended_reason": rec.reason if rec else None,
        "recommended_urgency": rec.urgency if rec else None,
        "recommendation_payload": rec.payload if rec else {},
    }


def plant_thread(session: SessionContext, thread: Thread) -> Thread:
    """Track a new thread and list it among the scene's pending threads."""
    added = session.threads.add(thread, session.turn)
    session.state.add_pending_thread(added.id, added.content, session.turn)
    return added


def record_generation(
    session: SessionContext,
    text: str,
    tag: str | dict | Interpretation | None = None,
    *,
    now: float | None = None,
) -> SessionContext:
    """Fold the collaborator's output back into a copy of the session.

    The tag is stored and ingested at the start of the next process_turn.
    """
    s = session.model_copy(deep=True)
    turn = s.turn
    if now is not None:
        s.updated_at = now

    parsed = tag if isinstance(tag, Interpretation) else parse_interpretation_tag(tag)
    speaker = s.state.speaking_character or "narrator"
    if parsed is not None and parsed.target_character and s.state.get_character(parsed.target_character):
        speaker = parsed.target_character
    if text.strip():
        s.state.add_exchange(speaker, text.strip(), turn)

    lower = text.lower()
    for element in s.threads.get_unused_elements():
        if element.introduced_turn < turn and element.name.lower() in lower:
            s.threads.mark_element_used(element.name, turn)

    known = {t.content for t in s.threads.threads.values()}
    for found in s.threads.detect_potential_threads(text):
        if found["content"] in known:
            continue
        thread = plant_thread(s, Thread(**found))
        known.add(thread.content)

    s.pending_tag = parsed
    s.state.set_awaiting_response(False)
    return s


def change_scene(
    session: SessionContext, *, new_chapter: bool = False, **scene_fields: Any
) -> SessionContext:
    """Move to a new scene (and optionally chapter), easing every tracker."""
    s = session.model_copy(deep=True)
    if new_chapter:
        s.state.advance_chapter(s.turn)
    s.state.advance_scene(s.turn, **scene_fields)
    s.tension.reset_for_new_scene()
    s.state.tension = s.tension.current
    s.resonance.reset_for_new_scene()
    s.breath.reset_for_new_scene()
    s.orchestrator.reset_for_new_scene()
    return s


# ----------------------------------------------------------------------
# Persistence
# ----------------------------------------------------------------------

def serialize_session(session: SessionContext) -> dict[str, Any]:
    data = session.model_dump(
        mode="json",
        include={"id", "title", "genre", "seed", "turn", "created_at", "updated_at",
                 "reader", "tunables", "pending_tag", "last_recommendation", "silent_turns"},
    )
    for name in SERIALIZED_TRACKERS:
        data[name] = getattr(session, name).serialize()
    data["evolution"] = {cid: evo.serialize() for cid, evo in session.evolution.items()}
    return data


def restore_session(data: Any) -> SessionContext:
    """Rebuild a session from serialize_session output.

    Each tracker is restored on its own; a missing or corrupt blob is
    replaced with defaults for the session's genre and the loss is logged.
    """
    if not isinstance(data, dict):
        logger.warning("Session blob is not an object, starting from defaults")
        data = {}
    session_id = str(data.get("id", ""))
    genre = data.get("genre") or DEFAULT_GENRE
    reader = None
    if data.get("reader"):
        try:
            reader = ReaderProfileSummary.model_validate(data["reader"])
        except ValidationError:
            logger.warning("Session %s: reader profile unreadable, ignoring it", session_id)

    session = new_session(
        session_id,
        genre=genre,
        reader=reader,
        tunables=load_tunables(data.get("tunables")),
        seed=int(data.get("seed") or 0),
        title=data.get("title", ""),
        now=float(data.get("created_at") or 0.0),
    )
    session.turn = int(data.get("turn") or 0)
    session.updated_at = float(data.get("updated_at") or session.created_at)
    session.silent_turns = int(data.get("silent_turns") or 0)

    defaults = {
        "state": AdventureState,
        "tension": TensionManager,
        "resonance": EmotionalResonance,
        "memory": MemoryStore,
        "threads": ThreadTracker,
        "emergent": EmergentMatcher,
        "breath": BreathScheduler,
        "crosstalk": CrossTalkScheduler,
        "orchestrator": Orchestrator,
    }
    for name, tracker_cls in defaults.items():
        blob = data.get(name)
        restored = tracker_cls.deserialize(blob) if blob is not None else None
        if restored is None:
            logger.warning("Session %s: %s blob missing or corrupt, using defaults", session_id, name)
            continue
        setattr(session, name, restored)
    if not session.state.session_id:
        session.state.session_id = session_id

    for cid, blob in (data.get("evolution") or {}).items():
        restored = CharacterEvolution.deserialize(blob)
        if restored is None:
            logger.warning("Session %s: evolution for %s corrupt, reseeding", session_id, cid)
            continue
        session.evolution[cid] = restored
    for character in session.state.present_characters:
        if character.id not in session.evolution:
            session.evolution[character.id] = CharacterEvolution.for_character(character)

    pending = data.get("pending_tag")
    session.pending_tag = parse_interpretation_tag(pending) if pending else None
    if data.get("last_recommendation"):
        try:
            session.last_recommendation = Recommendation.model_validate(data["last_recommendation"])
        except ValidationError:
            logger.warning("Session %s: last recommendation unreadable, dropping it", session_id)
    _configure(session)
    return session


