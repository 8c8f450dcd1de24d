"""Handlebars prompt rendering for the narrator collaborator."""

from collections.abc import Callable
from typing import Any

import pybars


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


DEFAULT_NARRATOR_PROMPT = """\
You are the narrator of an interactive {{genre}} story. The reader speaks \
and acts for themselves; you voice the world and every other character.

## Scene
{{#if location}}Location: {{location}}
{{/if}}Chapter {{scene.chapter}}, scene {{scene.scene_number}}. Mood: {{scene.emotional_beat}}.

{{#if characters}}
## Characters Present
{{#each characters}}
- {{name}}{{#if description}}: {{description}}{{/if}}
{{#each memories}}
  - remembers {{this}}
{{/each}}
{{#each recalled}}
  - is reminded of: {{this}}
{{/each}}
{{/each}}

{{/if}}
{{#if scene.relationships}}
## How They Feel About the Reader
{{#each scene.relationships}}
- {{this}}
{{/each}}

{{/if}}
{{#if scene.recent_exchanges}}
## Recent Exchanges
{{#last scene.recent_exchanges 6}}
{{speaker}}: {{content}}
{{/last}}

{{/if}}
## Pacing
Tension is {{tension_label}} ({{tension_value}}, aiming for {{tension_target}}).
Emotional tone: {{emotional_tone}}, intensity {{emotional_intensity}} of 5.
{{#each emotional_suggestions}}
- {{reason}}
{{/each}}

## Next Beat
{{recommended_action}} ({{recommended_urgency}}): {{recommended_reason}}
{{#each direction}}
- {{this}}
{{/each}}

## The Reader
> {{reader_input}}

Continue the story in a few short paragraphs, following the next beat. Then, \
on its own, add a fenced json block describing what you wrote:
```json
{"input_type": "dialogue", "tone": "neutral", "intensity": 3, \
"target_character": null, "revelation": false}
```\
"""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}} — iterate over the first N items."""
    result = []
    for item in list(items or [])[:int(count)]:
        result.extend(options["fn"](item))
    return result


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} — iterate over the last N items."""
    result = []
    for item in list(items or [])[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context, helpers=_HELPERS)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def _direction(action: str, payload: dict[str, Any]) -> list[str]:
    """Turn a recommendation payload into short bullet points for the prompt."""
    notes: list[str] = []
    breath = payload.get("breath")
    if breath:
        notes.append(f"Breath: {breath['type']}, {breath['duration']}, {breath['channel']} focus")
        notes.extend((breath.get("guidance") or {}).get("suggestions", []))
    guidance = payload.get("guidance")
    if guidance:
        speakers = " and ".join(guidance.get("speakers", []))
        notes.append(f"Let {speakers} talk between themselves ({guidance.get('type', 'banter')})")
        notes.extend(guidance.get("suggestions", []))
    if action == "reveal_thread" and payload.get("content"):
        style = payload.get("style") or "gradual"
        notes.append(f"Reveal ({style}): {payload['content']}")
        if payload.get("payoff_tone"):
            notes.append(f"Let the reveal land with {payload['payoff_tone']}")
    if payload.get("moment_type"):
        notes.append(f"Let a {payload['moment_type'].replace('_', ' ')} moment emerge")
    if action == "callback_moment" and payload.get("content"):
        notes.append(f"Call back to an earlier memory: {payload['content']}")
    if payload.get("milestone"):
        notes.append(f"Show the {payload['milestone']} milestone in {payload.get('dimension', 'growth')}")
    return notes


def build_context(bundle: dict[str, Any], reader_input: str) -> dict[str, Any]:
    """Assemble template variables from a context bundle.

    The bundle keys are passed through unchanged; a few short aliases are
    added so templates don't need long paths, and None becomes "" so missing
    values render as nothing.
    """
    ctx = {key: ("" if value is None else value) for key, value in bundle.items()}
    scene = bundle.get("scene") or {}
    ctx["location"] = (scene.get("scene") or {}).get("location", "")
    ctx["reader_input"] = reader_input
    ctx["direction"] = _direction(
        bundle.get("recommended_action") or "", bundle.get("recommendation_payload") or {}
    )
    return ctx
