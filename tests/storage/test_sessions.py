"""Tests for session storage: create, list, load, save and delete."""

from backend import storage
from pacing_engine.models import Character, ReaderProfileSummary


MARA = Character(id="mara", name="Mara", description="Lighthouse keeper")


def test_create_session_slugifies_title():
    session = storage.create_session("The Lighthouse at Grey Point", seed=5, now=100.0)
    assert session.id == "the-lighthouse-at-grey-point"
    assert session.title == "The Lighthouse at Grey Point"
    assert session.seed == 5
    assert (storage.sessions_dir() / f"{session.id}.json").is_file()
    assert (storage.sessions_dir() / session.id).is_dir()


def test_create_session_collision_appends_counter():
    first = storage.create_session("Grey Point")
    second = storage.create_session("Grey Point")
    third = storage.create_session("Grey Point")
    assert first.id == "grey-point"
    assert second.id == "grey-point-2"
    assert third.id == "grey-point-3"


def test_create_session_uses_default_genre():
    storage.update_config({"default_genre": "horror"})
    assert storage.create_session("Cellar").genre == "horror"
    assert storage.create_session("Garden", genre="romance").genre == "romance"


def test_create_session_seed_defaults_to_creation_time():
    session = storage.create_session("Grey Point", now=1234.9)
    assert session.seed == 1234


def test_create_session_uses_engine_overrides():
    storage.update_config({"engine": {"tension_drift": 7}})
    session = storage.create_session("Grey Point")
    assert session.tunables.tension_drift == 7


def test_get_session_roundtrip():
    created = storage.create_session(
        "Grey Point",
        genre="mystery",
        characters=[MARA],
        reader=ReaderProfileSummary(avoids=["gore"]),
        seed=9,
    )
    loaded = storage.get_session(created.id)
    assert loaded is not None
    assert loaded.genre == "mystery"
    assert loaded.seed == 9
    assert [c.id for c in loaded.state.present_characters] == ["mara"]
    assert loaded.reader.avoids == ["gore"]


def test_get_session_missing():
    assert storage.get_session("nope") is None


def test_get_session_corrupt_json_restores_defaults():
    (storage.sessions_dir() / "broken.json").write_text("{oops")
    session = storage.get_session("broken")
    assert session is not None
    assert session.id == "broken"
    assert session.turn == 0


def test_save_session_persists_changes():
    session = storage.create_session("Grey Point")
    session.turn = 4
    session.updated_at = 500.0
    storage.save_session(session)
    assert storage.get_session("grey-point").turn == 4


def test_list_sessions_sorted_by_last_played():
    storage.create_session("Old", now=100.0)
    storage.create_session("New", now=300.0)
    storage.create_session("Middle", now=200.0)
    ids = [s["id"] for s in storage.list_sessions()]
    assert ids == ["new", "middle", "old"]


def test_list_sessions_skips_unreadable_files():
    storage.create_session("Grey Point", now=1.0)
    (storage.sessions_dir() / "junk.json").write_text("not json")
    summaries = storage.list_sessions()
    assert [s["id"] for s in summaries] == ["grey-point"]
    assert summaries[0]["turn"] == 0


def test_delete_session_removes_file_and_transcript():
    session = storage.create_session("Grey Point")
    storage.append_messages(session.id, [{"role": "reader", "text": "hi"}])
    assert storage.delete_session(session.id) is True
    assert storage.get_session(session.id) is None
    assert not (storage.sessions_dir() / session.id).exists()


def test_delete_missing_session():
    assert storage.delete_session("nope") is False
