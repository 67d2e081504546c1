"""Prompt templates and the JSON prompt-configuration loader.

Built-in templates cover every generation step. A deployment can override any
template, or attach generation parameters to it, through the JSON file named
by ``PROMPT_CONFIG_PATH``.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from flask import current_app

from ..errors import GenerationError

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"

PART_CHUNK_KEY = "part_chunk"
PART_SUMMARY_KEY = "part_summary"
CHARACTER_ROSTER_KEY = "character_roster"

PART_CHUNK_TEMPLATE = """\
Generate a detailed and fully fleshed-out story part for a commercial fiction series in Malayalam.
The overall story part {part_number} is based on the following summary: "{summary}"
{writing_style_line}
Key Requirements:

   - Language & Tone: Use informal, natural, and conversational Malayalam. Avoid overly formal or classic literary language. Aim for a style accessible to a general audience who enjoy commercial fiction.
   - Narrative Style:
      - Emotional Depth: Include rich emotional narration, allowing the reader to deeply connect with the characters' feelings, thoughts, and internal conflicts.
      - Character Interaction: Prioritize high use of dialogue that feels authentic and natural. Show character relationships and development through their conversations.
      - Pacing: Maintain a good pace, balancing descriptive passages with action and dialogue.
      - Climax/Cliffhanger: The part must end on a cliffhanger to entice the reader for the next installment.
      - No Summarizing: Do not summarize events; describe them as they happen.

   - Content:
      - Beginning & End: Must begin and end with dialogue.
      - Originality: Do not plagiarize.
      - Context: Ensure the story flows logically from previous parts.

Current story so far:
"{story_so_far}"

Continue the story. Generate approximately {chunk_word_count} words."""

PART_SUMMARY_TEMPLATE = """\
Generate a concise summary (maximum 200 words) of part {part_number} from a commercial fiction series in Malayalam.

Story Context:
- Premise: {premise}
- Genres: {genres}
- Setting: {setting}
- Theme: {theme}
- Point of View: {pov}
- Dialogue Style: {dialogue_style}

Instructions:
Language & Tone: Use informal, natural, and conversational Malayalam. Maintain the same accessible and engaging tone as the story parts themselves.
Conciseness: Be direct and to the point. Focus on the most crucial plot developments, character actions, key events and significant emotional shifts.
Clarity: Ensure the summary is easy to understand, even for someone who hasn't read the full part. Avoid ambiguity.
Conflict: The summary should contain a key conflict which drives the part towards the end.
Key Information: Include:
  - Main events that occurred.
  - Major character decisions or revelations.
  - The outcome or cliffhanger at the end of the part.
No Spoilers for Future Parts: Only summarize what happened within the specified part.
No Dialogue: The summary should be purely narrative, without direct dialogue quotes.
No Personal Opinions: Stick to objective summarization of the plot.
Only return the summary, no explanations or formatting."""

CHARACTER_ROSTER_TEMPLATE = """\
Given the following Malayalam story prompt, list {character_count} characters with name, nickname, role, and who they are connected to. \
Output ONLY a JSON array of objects. Each object must have the following keys: 'name', 'nickname', 'role', and 'connections' (as an array of strings). \
Output must be valid JSON. No explanation or formatting.

Prompt: "{premise}\""""

DEFAULT_PROMPTS: Dict[str, Dict[str, Any]] = {
    PART_CHUNK_KEY: {"prompt_template": PART_CHUNK_TEMPLATE},
    PART_SUMMARY_KEY: {"prompt_template": PART_SUMMARY_TEMPLATE},
    CHARACTER_ROSTER_KEY: {"prompt_template": CHARACTER_ROSTER_TEMPLATE},
}

_NOT_SPECIFIED = "Not specified"

_GENERATION_PARAMETER_KEYS = {
    "temperature",
    "top_p",
    "top_k",
    "max_output_tokens",
}


def build_chunk_prompt(
    summary: str,
    *,
    part_index: int,
    story_so_far: str,
    chunk_word_count: int,
    writing_style: Optional[str] = None,
    template: Optional[str] = None,
) -> str:
    style = (writing_style or "").strip()
    writing_style_line = f"Writing Style: Make it {style}.\n" if style else ""
    return (template or PART_CHUNK_TEMPLATE).format(
        part_number=part_index + 1,
        summary=summary,
        writing_style_line=writing_style_line,
        story_so_far=story_so_far,
        chunk_word_count=chunk_word_count,
    )


def build_summary_prompt(book: Any, *, part_index: int, template: Optional[str] = None) -> str:
    """Render the single-call summary prompt for ``part_index`` from ``book`` metadata."""

    genres: Iterable[str] = getattr(book, "genre_list", None) or []
    return (template or PART_SUMMARY_TEMPLATE).format(
        part_number=part_index + 1,
        premise=_value_or_default(getattr(book, "premise", None)),
        genres=", ".join(genres) or _NOT_SPECIFIED,
        setting=_value_or_default(getattr(book, "setting", None)),
        theme=_value_or_default(getattr(book, "theme", None)),
        pov=_value_or_default(getattr(book, "pov", None)),
        dialogue_style=_value_or_default(getattr(book, "dialogue_style", None)),
    )


def build_character_prompt(premise: str, *, character_count: int = 3, template: Optional[str] = None) -> str:
    return (template or CHARACTER_ROSTER_TEMPLATE).format(
        premise=premise,
        character_count=character_count,
    )


def _value_or_default(value: Optional[str]) -> str:
    cleaned = (value or "").strip()
    return cleaned or _NOT_SPECIFIED


def load_prompt_entry(key: str) -> Dict[str, Any]:
    """Return the prompt entry for ``key``, with file overrides applied over the defaults."""

    if key not in DEFAULT_PROMPTS:
        raise GenerationError(f"Unknown prompt entry '{key}'.")

    entry: Dict[str, Any] = dict(DEFAULT_PROMPTS[key])
    override = _load_prompt_config().get(key)
    if override is None:
        return entry
    if not isinstance(override, dict):
        raise GenerationError(f"Prompt configuration entry '{key}' must be a dictionary.")

    entry.update(override)
    if not entry.get("prompt_template"):
        raise GenerationError(f"Prompt configuration entry '{key}' is missing the template text.")
    return entry


def extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to overrides supported by the text clients."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    data: Dict[str, Any] = {}
    config_path = app.config.get("PROMPT_CONFIG_PATH")
    path = Path(config_path) if config_path else None
    if path is not None and path.exists():
        with path.open("r", encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as exc:
                raise GenerationError(f"Unable to parse prompt configuration: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise GenerationError("Prompt configuration must be a JSON object.")
    elif path is not None:
        app.logger.info("Prompt configuration not found at %s; using built-in prompts.", path)

    app.config[PROMPT_CACHE_KEY] = data
    return data
