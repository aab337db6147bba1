"""Handlebars context templates for each collaborator stage.

Every stage renders its collaborator prompt from a template here through
`render_prompt`. Wording is deliberately short; the structured contract
(the JSON shape each stage expects back) is the part that matters.
Values that may contain quotes or markup use triple-stash so they are not
HTML-escaped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

_compiler = pybars.Compiler()
_compiled: dict[str, Callable] = {}


class PromptError(Exception):
    """A stage template did not compile, or failed while rendering."""


def _tail(this, options, items, count):
    # {{#last results 5}}...{{/last}}
    out = []
    for item in list(items or [])[-int(count):]:
        out.extend(options["fn"](item))
    return out


HELPERS: dict[str, Callable] = {"last": _tail}


def _template(source: str) -> Callable:
    template = _compiled.get(source)
    if template is None:
        template = _compiled[source] = _compiler.compile(source)
    return template


def render_prompt(source: str, context: dict[str, Any]) -> str:
    """Render `source` against `context`; compiled templates are memoized per source."""
    try:
        return str(_template(source)(context, helpers=HELPERS))
    except Exception as e:
        raise PromptError(f"cannot render prompt: {e}") from e


# ── Stage templates ──────────────────────────────────────


CLASSIFIER = """You route player input for a Call of Cthulhu Keeper.

Current state:
{{{state}}}

Player input:
{{{utterance}}}

Available agents:
- memory: look up rules and background relevant to the input
- action: resolve something a character attempts to do
- character: decide how the NPCs present react

Return only JSON, for example:
{"agents": ["memory", "action"], "rationale": "<why>", "intent": "<short summary>", "is_action": true, "action": {"character": "<actor>", "action": "<attempt>", "action_type": "exploration", "target_name": null } }
"""

MEMORY = """You are the Keeper's rulebook and archive.

Location: {{{location}}}
Player input: {{{utterance}}}
{{#if analysis}}Action under consideration: {{{analysis}}}
{{/if}}
List the rules and background facts that apply. Return only JSON:
{"rules": ["<rule>", "..."], "context": "<short background>" }
"""

RESOLVER = """You resolve one action in a Call of Cthulhu scene.

Pre-rolled dice (use these numbers, in order, when a roll is needed):
{{{dice}}}

Scene:
{{{scenario}}}

Reachable scenes: {{#each scenes}}{{{this}}}; {{/each}}
{{#if narrative}}
Most recent narration:
{{{narrative}}}
{{/if}}
{{#if rules}}
Rules in effect:
{{#each rules}}- {{{this}}}
{{/each}}{{/if}}
Acting character:
{{{actor}}}
{{#if target}}
Target character:
{{{target}}}
{{/if}}
{{#if npc_response}}
This is an NPC reaction ({{{npc_response.response_type}}}, order {{npc_response.execution_order}}): {{{npc_response.response_description}}}
{{/if}}
Attempted action: {{{action}}}

Return only JSON with this shape. Status, attribute and skill values are
changes (deltas), not new totals:
{"result": "<what happens>", "time_consumption": "instant|short|scene", "dice_used": ["1d100: 42"],
 "updates": [
  {"kind": "status", "character": "<name>", "status": {"hp": -2, "sanity": 0 }, "add_conditions": [], "remove_conditions": [] },
  {"kind": "inventory", "character": "<name>", "op": "add|remove|replace", "items": [{"name": "<item>", "quantity": 1 }] },
  {"kind": "scenario", "conditions": [], "events": [], "exits": [], "permanent_changes": [] },
  {"kind": "scene_change", "target_scene": "<exact scene name>", "reason": "<why>" }
 ] }
"""

CHARACTER = """You decide how the NPCs in a Call of Cthulhu scene react.

Location: {{{location}}}
Player input: {{{utterance}}}

What has happened this turn:
{{#each results}}- {{{this}}}
{{/each}}
NPCs present:
{{#each npcs}}- {{{name}}}: {{{personality}}} Goals: {{{goals}}}
{{/each}}
Return only a JSON array with one entry per NPC:
[{"npc_name": "<name>", "will_respond": true, "response_type": "social", "response_description": "<what they do>", "execution_order": 1, "target_character": "<name or null>" }]
Use "response_type": "none" for NPCs who do nothing.
"""

DIRECTOR = """You pace a Call of Cthulhu investigation.

Current scene:
{{{scenario}}}

Time: {{{time}}}
Short actions used this scene: {{{short_actions}}} of {{{cap}}}

Recent actions:
{{#last results 5}}- {{{character}}}: {{{result}}}
{{/last}}
Unvisited connected scenes:
{{#each candidates}}- {{{id}}}: {{{name}}} ({{{location}}})
{{/each}}
Decide whether the story should move on. Return only JSON:
{"should_progress": false, "target_snapshot_id": null, "estimated_short_actions": null, "increase_short_action_cap_by": 2, "reasoning": "<why>" }
"""

SYNTHESIZER = """You are the Keeper. Narrate the outcome of this turn to the player.

State:
{{{state}}}

Player input: {{{utterance}}}

Agent findings:
{{#each results}}[{{{agent_id}}}] {{{content}}}
{{/each}}
Write two or three paragraphs of second-person narration. If the player
uncovered clues, end with one JSON line:
{"clue_revelations": ["<clue id or text>"] }
"""
