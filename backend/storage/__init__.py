"""File-based JSON storage for story sessions.

Data layout:
  data/
    sessions/
      <id>.json          serialize_session() blob: every tracker, the turn
                         counter, seed, tunables, reader profile summary
      <id>/
        messages.json    Turn transcript (reader input, narration, action)
    config.json          App settings (LLM connection, default genre,
                         engine tunable overrides, narrator prompt)

Session ids are slugified titles; a collision appends -2, -3, ...

Writes happen only after a turn fully succeeds. A failed generation call
leaves <id>.json holding the pre-turn snapshot.

Config: get_config() returns defaults merged with stored values.
update_config() applies partial updates: llm and engine are merged key-by-key,
scalars overwritten.
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    init_storage,
    sessions_dir,
    slugify,
)

from .sessions import (  # noqa: F401
    create_session,
    delete_session,
    get_session,
    list_sessions,
    save_session,
)

from .messages import (  # noqa: F401
    append_messages,
    get_messages,
)

from .config import (  # noqa: F401
    engine_tunables,
    get_config,
    update_config,
)
