"""Create demo sessions for development/testing."""

import shutil

from backend import storage
from pacing_engine.models import Character, ReaderProfileSummary
from pacing_engine.session import add_character, change_scene, plant_thread
from pacing_engine.threads import Thread

DEMO_CHARACTERS = [
    Character(
        id="mara",
        name="Mara",
        description="Lighthouse keeper, sharp-tongued, hasn't left the island in nine years.",
        wound="abandonment",
        attachment_style="avoidant",
    ),
    Character(
        id="tobin",
        name="Tobin",
        description="Her apprentice, earnest and far too curious about the locked tower room.",
        attachment_style="secure",
    ),
]


def create_demo_data() -> None:
    """Wipe existing sessions and create fresh demo data."""
    if storage.sessions_dir().exists():
        shutil.rmtree(storage.sessions_dir())
    storage.sessions_dir().mkdir(parents=True, exist_ok=True)

    session = storage.create_session(
        "The Lighthouse at Grey Point",
        genre="mystery",
        characters=DEMO_CHARACTERS[:1],
        reader=ReaderProfileSummary(enjoys=["mystery", "slow-burn"], avoids=["gore"]),
        seed=7,
    )
    session = change_scene(
        session,
        location="the lamp room",
        time_of_day="dusk",
        weather="rising storm",
        ambiance="the lens turning, wind against glass",
    )
    add_character(session, DEMO_CHARACTERS[1])
    plant_thread(session, Thread(
        type="mystery",
        content="Who keeps the tower room locked, and why does it smell of fresh paint?",
        elements=["tower room", "paint"],
        significance=80,
    ))
    plant_thread(session, Thread(
        type="chekhov",
        content="An old flare gun hangs above the door",
        elements=["flare gun"],
    ))
    storage.save_session(session)

    storage.create_session(
        "Ashes of the Summer Court",
        genre="romance",
        characters=[
            Character(id="lysander", name="Lysander", description="Exiled prince with a secret."),
        ],
        reader=ReaderProfileSummary(tension_preference="low-tension"),
        seed=11,
    )
