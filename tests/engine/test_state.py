"""Tests for pacing_engine.state: the adventure snapshot."""

from pacing_engine.models import Character
from pacing_engine.state import AdventureState

MARA = Character(id="mara", name="Mara")


def test_add_character_seeds_relationship_once():
    state = AdventureState()
    state.add_character(MARA, turn=2)
    state.add_character(MARA, turn=3)
    assert len(state.present_characters) == 1
    assert state.relationships["mara"].trust == 50
    assert state.recent_events[-1].kind == "character_arrival"
    assert state.recent_events[-1].turn == 2


def test_remove_character_clears_speaker():
    state = AdventureState()
    state.add_character(MARA)
    state.set_speaker("mara")
    assert state.remove_character("mara", turn=4)
    assert state.speaking_character is None
    assert not state.remove_character("mara")


def test_update_tension_clamps_and_logs():
    state = AdventureState(tension=90)
    assert state.update_tension(30, "betrayal", turn=1) == 100
    event = state.recent_events[-1]
    assert event.kind == "tension_change"
    assert event.data == {"previous": 90, "new": 100, "delta": 10}


def test_bounded_buffers():
    state = AdventureState()
    for turn in range(25):
        state.add_exchange("reader", f"line {turn}", turn)
        state.record_event("beat", turn=turn)
    assert len(state.conversation_history) == 20
    assert len(state.recent_events) == 10
    assert state.total_exchanges == 25
    assert state.conversation_history[0].content == "line 5"


def test_update_relationship_ignores_unknown_dimensions():
    state = AdventureState()
    state.add_character(MARA)
    rel = state.update_relationship("mara", "gift", 1, trust=60, charm=5)
    assert rel.trust == 100
    assert rel.history == [{"turn": 1, "reason": "gift", "changes": {"trust": 60}}]


def test_pending_threads_and_secrets():
    state = AdventureState()
    state.add_pending_thread("thread-1", "The locked room", turn=1)
    state.add_pending_thread("thread-1", "duplicate", turn=2)
    assert len(state.pending_threads) == 1
    assert state.resolve_pending_thread("thread-1", "It was a studio", turn=5)
    assert not state.resolve_pending_thread("thread-1")
    assert state.unlock_secret("paint", "She paints at night", turn=6)
    assert not state.unlock_secret("paint", "again")


def test_pending_threads_capped_and_discarded_quietly():
    state = AdventureState()
    for i in range(15):
        state.add_pending_thread(f"thread-{i}", f"setup {i}", turn=i)
    assert len(state.pending_threads) == 10
    assert state.pending_threads[0]["id"] == "thread-5"

    events_before = len(state.recent_events)
    assert state.discard_pending_thread("thread-9")
    assert not state.discard_pending_thread("thread-9")
    assert "setup 9" not in state.context_window()["pending_threads"]
    assert len(state.recent_events) == events_before


def test_foreshadowing_pays_off_once():
    state = AdventureState()
    entry = state.plant_foreshadowing("A crack in the lens", "The lens shatters", turn=1)
    assert state.trigger_foreshadowing(entry["id"], turn=9)["triggered_turn"] == 9
    assert state.trigger_foreshadowing(entry["id"], turn=10) is None


def test_context_window():
    state = AdventureState()
    state.add_character(MARA)
    state.update_relationship("mara", "", 0, trust=25)
    for turn in range(8):
        state.add_exchange("reader", f"line {turn}", turn)
    window = state.context_window()
    assert window["present_characters"] == ["Mara"]
    assert len(window["recent_exchanges"]) == 6
    assert window["relationships"] == ["Mara: trusts deeply the reader"]


def test_deserialize_garbage_returns_none():
    assert AdventureState.deserialize({"tension": "high"}) is None
