"""Salience-weighted memory store with decay and callback selection.

Layout:
  memories        character id → list[Memory]   (personal stores)
  shared          list[Memory]                  (one record per shared event,
                                                 mirrored into each witness store)
  reader          list[Memory]                  (what the reader has lived through)
  callback_queue  list[CallbackEntry]           (salience >= 4, best first)
  trigger_index   "person:<name>" / "topic:<t>" / "location:<l>" / trigger → ids

Salience is ordinal 1-5 (forgettable → unforgettable). current_salience is
the decayed value and never rises above salience unless the memory has been
reinforced by a callback.

Decay (explicit `now`, seconds):
  older than 24h and untouched for 12h → current_salience -1 (floor 1)
  unless reinforced or salience 5. A decay step counts as a touch, so an
  idle memory loses at most one step per 12h however often decay runs.
Eviction, only when a store holds more than memory_store_limit entries:
  current_salience 1 and older than 1h, never salience 5 or reinforced
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

MemoryType = Literal[
    "conversation",
    "promise",
    "secret",
    "joke",
    "confession",
    "event",
    "choice",
    "help",
    "hurt",
    "rescue",
    "emotional_peak",
    "first",
    "turning_point",
    "place",
    "object",
    "sensory",
]

Valence = Literal["painful", "bittersweet", "neutral", "warm", "joyful"]

FORGETTABLE = 1
MINOR = 2
NOTABLE = 3
SIGNIFICANT = 4
UNFORGETTABLE = 5

MINUTE = 60.0
HOUR = 60 * MINUTE

DECAY_AGE = 24 * HOUR
DECAY_IDLE = 12 * HOUR
EVICT_AGE = 1 * HOUR
CALLBACK_MIN_AGE = 5 * MINUTE
CALLBACK_MAX_AGE = 60 * MINUTE

MAX_CALLBACK_QUEUE = 30
TRIM_CALLBACK_QUEUE = 25
MAX_READER_MEMORIES = 50
TRIM_READER_MEMORIES = 40
MAX_RELEVANT = 5

CHARGED_VALENCES = frozenset({"painful", "joyful"})
WEIGHTY_TYPES = frozenset({"promise", "secret", "confession", "first", "turning_point"})

# (min current salience, phrase) for memory_context
RECALL_LABELS = [
    (5, "vividly remembers"),
    (4, "clearly remembers"),
    (3, "remembers"),
    (2, "vaguely recalls"),
    (1, "half-remembers"),
]


def _clamp_salience(value: int) -> int:
    return max(FORGETTABLE, min(UNFORGETTABLE, value))


class Memory(BaseModel):
    id: str = ""
    type: MemoryType = "conversation"
    content: str
    valence: Valence = "neutral"
    salience: int = Field(default=NOTABLE, ge=1, le=5)
    current_salience: int = 0  # 0 → initialised from salience on store
    participants: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    location: str | None = None
    trigger: str | None = None
    created_at: float = 0.0
    last_accessed: float = 0.0
    last_decayed: float = 0.0
    access_count: int = 0
    reinforcement_count: int = 0
    shared_id: str | None = None
    witnesses: list[str] = Field(default_factory=list)
    fulfilled: bool | None = None  # promises only

    @property
    def reinforced(self) -> bool:
        return self.reinforcement_count > 0


class CallbackEntry(BaseModel):
    memory_id: str
    character_id: str
    priority: int


def callback_priority(memory: Memory) -> int:
    priority = memory.salience * 10
    if memory.valence in CHARGED_VALENCES:
        priority += 20
    if memory.type in WEIGHTY_TYPES:
        priority += 15
    return priority


def _recall_label(salience: int) -> str:
    for floor, label in RECALL_LABELS:
        if salience >= floor:
            return label
    return "half-remembers"


class MemoryStore(BaseModel):
    memories: dict[str, list[Memory]] = Field(default_factory=dict)
    shared: list[Memory] = Field(default_factory=list)
    reader: list[Memory] = Field(default_factory=list)
    callback_queue: list[CallbackEntry] = Field(default_factory=list)
    trigger_index: dict[str, list[str]] = Field(default_factory=dict)
    next_id: int = 1
    store_limit: int = 100

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _new_id(self) -> str:
        memory_id = f"mem-{self.next_id}"
        self.next_id += 1
        return memory_id

    def _find(self, memory_id: str) -> tuple[str, Memory] | None:
        for character_id, memories in self.memories.items():
            for memory in memories:
                if memory.id == memory_id:
                    return character_id, memory
        return None

    def get(self, memory_id: str) -> Memory | None:
        found = self._find(memory_id)
        return found[1] if found else None

    def _index(self, memory: Memory) -> None:
        keys = [f"person:{p.lower()}" for p in memory.participants]
        keys.extend(f"topic:{t.lower()}" for t in memory.topics)
        if memory.location:
            keys.append(f"location:{memory.location.lower()}")
        if memory.trigger:
            keys.append(memory.trigger.lower())
        for key in keys:
            ids = self.trigger_index.setdefault(key, [])
            if memory.id not in ids:
                ids.append(memory.id)

    def _unindex(self, memory_id: str) -> None:
        for key in list(self.trigger_index):
            ids = self.trigger_index[key]
            if memory_id in ids:
                ids.remove(memory_id)
            if not ids:
                del self.trigger_index[key]

    # ------------------------------------------------------------------
    # Storing
    # ------------------------------------------------------------------

    def store(self, character_id: str, memory: Memory, now: float) -> Memory:
        """Add a memory to a character's store and return the stored copy."""
        stored = memory.model_copy(deep=True)
        if not stored.id:
            stored.id = self._new_id()
        stored.created_at = stored.created_at or now
        stored.last_accessed = stored.last_accessed or now
        if stored.current_salience <= 0:
            stored.current_salience = stored.salience

        self.memories.setdefault(character_id, []).append(stored)
        self._index(stored)

        if stored.salience >= SIGNIFICANT:
            self._enqueue_callback(character_id, stored)

        if len(self.memories[character_id]) > self.store_limit:
            self.decay(character_id, now)
        return stored

    def _enqueue_callback(self, character_id: str, memory: Memory) -> None:
        self.callback_queue.append(CallbackEntry(
            memory_id=memory.id,
            character_id=character_id,
            priority=callback_priority(memory),
        ))
        self.callback_queue.sort(key=lambda e: -e.priority)
        if len(self.callback_queue) > MAX_CALLBACK_QUEUE:
            self.callback_queue = self.callback_queue[:TRIM_CALLBACK_QUEUE]

    def store_shared(self, memory: Memory, witnesses: list[str], now: float) -> Memory:
        """Record one shared memory and mirror it into every witness's store."""
        shared = memory.model_copy(deep=True)
        shared.id = shared.id or self._new_id()
        shared.witnesses = list(witnesses)
        shared.created_at = shared.created_at or now
        shared.last_accessed = shared.last_accessed or now
        if shared.current_salience <= 0:
            shared.current_salience = shared.salience
        self.shared.append(shared)

        for witness in witnesses:
            mirror = shared.model_copy(deep=True)
            mirror.id = ""
            mirror.shared_id = shared.id
            self.store(witness, mirror, now)
        return shared

    def store_reader_memory(self, memory: Memory, now: float) -> Memory:
        stored = memory.model_copy(deep=True)
        stored.id = stored.id or self._new_id()
        stored.created_at = stored.created_at or now
        stored.last_accessed = stored.last_accessed or now
        if stored.current_salience <= 0:
            stored.current_salience = stored.salience
        self.reader.append(stored)
        if len(self.reader) > MAX_READER_MEMORIES:
            ranked = sorted(self.reader, key=lambda m: (-m.current_salience, -m.created_at))
            keep = {m.id for m in ranked[:TRIM_READER_MEMORIES]}
            self.reader = [m for m in self.reader if m.id in keep]
        return stored

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get_relevant(self, character_id: str, context: dict[str, Any], now: float) -> list[Memory]:
        """Memories this character would plausibly bring up right now.

        context keys: people (names), topics, location.
        """
        memories = self.memories.get(character_id, [])
        if not memories:
            return []
        by_id = {m.id: m for m in memories}

        keys = [f"person:{p.lower()}" for p in context.get("people", [])]
        keys.extend(f"topic:{t.lower()}" for t in context.get("topics", []))
        if context.get("location"):
            keys.append(f"location:{context['location'].lower()}")

        found: dict[str, Memory] = {}
        for key in keys:
            for memory_id in self.trigger_index.get(key, []):
                if memory_id in by_id:
                    found[memory_id] = by_id[memory_id]

        recent_significant = [m for m in memories if m.current_salience >= SIGNIFICANT][-5:]
        for memory in recent_significant:
            found.setdefault(memory.id, memory)

        ranked = sorted(found.values(), key=lambda m: (-m.current_salience, -m.created_at))
        result = ranked[:MAX_RELEVANT]
        for memory in result:
            memory.last_accessed = now
            memory.access_count += 1
        return result

    def get_callback_opportunity(
        self, character_id: str, context: dict[str, Any], now: float
    ) -> Memory | None:
        """Pick the queued callback that fits the moment best.

        A contextual match (same location, same valence, or aged 5-60
        minutes) wins over raw priority.
        """
        candidates: list[tuple[CallbackEntry, Memory]] = []
        for entry in self.callback_queue:
            if entry.character_id != character_id:
                continue
            memory = self.get(entry.memory_id)
            if memory is not None:
                candidates.append((entry, memory))
        if not candidates:
            return None

        location = (context.get("location") or "").lower()
        wanted_valence = context.get("valence")
        for _, memory in candidates:
            age = now - memory.created_at
            if location and memory.location and memory.location.lower() == location:
                return memory
            if wanted_valence and memory.valence == wanted_valence:
                return memory
            if CALLBACK_MIN_AGE <= age <= CALLBACK_MAX_AGE:
                return memory
        return candidates[0][1]

    def has_callback(self, character_id: str | None = None) -> bool:
        if character_id is None:
            return bool(self.callback_queue)
        return any(e.character_id == character_id for e in self.callback_queue)

    def use_callback(self, memory_id: str, now: float) -> Memory | None:
        memory = self.get(memory_id)
        if memory is None:
            logger.debug("use_callback: unknown memory %r", memory_id)
            return None
        memory.reinforcement_count += 1
        memory.current_salience = _clamp_salience(memory.current_salience + 1)
        memory.last_accessed = now
        memory.access_count += 1
        self.callback_queue = [e for e in self.callback_queue if e.memory_id != memory_id]
        return memory

    # ------------------------------------------------------------------
    # Decay
    # ------------------------------------------------------------------

    def decay(self, character_id: str, now: float) -> dict[str, int]:
        """Fade idle memories, then evict the faded ones if the store is full."""
        memories = self.memories.get(character_id, [])
        decayed = 0
        for memory in memories:
            if memory.reinforced or memory.salience >= UNFORGETTABLE:
                continue
            age = now - memory.created_at
            idle = now - max(memory.last_accessed, memory.last_decayed)
            if age > DECAY_AGE and idle > DECAY_IDLE and memory.current_salience > FORGETTABLE:
                memory.current_salience -= 1
                memory.last_decayed = now
                decayed += 1

        evicted = 0
        if len(memories) > self.store_limit:
            kept = []
            for memory in memories:
                evictable = (
                    memory.current_salience <= FORGETTABLE
                    and now - memory.created_at > EVICT_AGE
                    and not memory.reinforced
                    and memory.salience < UNFORGETTABLE
                )
                if evictable:
                    self._unindex(memory.id)
                    self.callback_queue = [e for e in self.callback_queue if e.memory_id != memory.id]
                    evicted += 1
                else:
                    kept.append(memory)
            self.memories[character_id] = kept

        if decayed or evicted:
            logger.debug("memory decay character=%s decayed=%d evicted=%d",
                         character_id, decayed, evicted)
        return {"decayed": decayed, "evicted": evicted}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def shared_between(self, character_a: str, character_b: str) -> list[Memory]:
        return [m for m in self.shared if character_a in m.witnesses and character_b in m.witnesses]

    def remembers(self, character_id: str, keyword: str) -> bool:
        needle = keyword.lower()
        return any(needle in m.content.lower() for m in self.memories.get(character_id, []))

    def memory_context(self, character_id: str, now: float, limit: int = 3) -> list[str]:
        """Short lines like "vividly remembers: the bridge collapsing"."""
        memories = self.memories.get(character_id, [])
        ranked = sorted(memories, key=lambda m: (-m.current_salience, now - m.created_at))
        return [f"{_recall_label(m.current_salience)}: {m.content}" for m in ranked[:limit]]

    # ------------------------------------------------------------------
    # Typed shortcuts
    # ------------------------------------------------------------------

    def record_promise(
        self, character_id: str, content: str, now: float, participants: list[str] | None = None
    ) -> Memory:
        return self.store(character_id, Memory(
            type="promise", content=content, salience=SIGNIFICANT,
            participants=participants or [], fulfilled=False,
        ), now)

    def fulfill_promise(self, memory_id: str, now: float) -> Memory | None:
        memory = self.get(memory_id)
        if memory is None or memory.type != "promise":
            return None
        memory.fulfilled = True
        memory.last_accessed = now
        return memory

    def unfulfilled_promises(self, character_id: str) -> list[Memory]:
        return [
            m for m in self.memories.get(character_id, [])
            if m.type == "promise" and m.fulfilled is False
        ]

    def record_secret(
        self, character_id: str, content: str, now: float, participants: list[str] | None = None
    ) -> Memory:
        return self.store(character_id, Memory(
            type="secret", content=content, salience=SIGNIFICANT,
            valence="bittersweet", participants=participants or [],
        ), now)

    def record_first(
        self, character_id: str, content: str, now: float, participants: list[str] | None = None
    ) -> Memory:
        return self.store(character_id, Memory(
            type="first", content=content, salience=UNFORGETTABLE,
            valence="warm", participants=participants or [],
        ), now)

    def get_firsts(self, character_id: str) -> list[Memory]:
        return [m for m in self.memories.get(character_id, []) if m.type == "first"]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def deserialize(cls, data: Any) -> MemoryStore | None:
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None
