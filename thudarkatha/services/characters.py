from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import GenerationError, StorageError
from ..extensions import db
from ..models import Book, Character
from .prompts import (
    CHARACTER_ROSTER_KEY,
    build_character_prompt,
    extract_generation_parameters,
    load_prompt_entry,
)
from .text_client import get_text_client

_JSON_ARRAY_PATTERN = re.compile(r"\[\s*{.*}\s*\]", re.DOTALL)


@dataclass
class CharacterRosterResult:
    characters: List[Character]
    prompt: str


def generate_character_roster(book: Book, *, character_count: int = 3) -> CharacterRosterResult:
    """Ask the text client for a cast built from the premise and replace the roster with it."""

    premise = (book.premise or "").strip()
    if not premise:
        raise GenerationError("Add a story premise before generating characters.")

    entry = load_prompt_entry(CHARACTER_ROSTER_KEY)
    prompt = build_character_prompt(premise, character_count=character_count, template=entry["prompt_template"])
    client = get_text_client()
    response_text = client.generate(prompt, **extract_generation_parameters(entry.get("parameters")))

    payload = parse_character_payload(response_text)
    if not payload:
        raise GenerationError("The character generator did not return a usable JSON list.")

    try:
        Character.query.filter_by(book_id=book.id).delete(synchronize_session=False)
        created: List[Character] = []
        for data in payload:
            character = Character(
                book_id=book.id,
                name=data["name"],
                nickname=data.get("nickname"),
                role=data.get("role"),
            )
            character.connections_list = data.get("connections") or []
            db.session.add(character)
            created.append(character)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Failed to store generated characters for book %s: %s", book.id, exc)
        raise StorageError("Generated characters could not be saved.") from exc

    current_app.logger.info("Generated %s characters for book %s.", len(created), book.id)
    return CharacterRosterResult(characters=created, prompt=prompt)


def parse_character_payload(raw_text: Optional[str]) -> List[Dict[str, Any]]:
    text = (raw_text or "").strip()
    if not text:
        return []

    fence_match = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fence_match:
        text = fence_match.group(1).strip()

    array_match = _JSON_ARRAY_PATTERN.search(text)
    if array_match:
        text = array_match.group(0)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        current_app.logger.warning("Unable to parse character roster output as JSON: %s", text)
        return []

    if isinstance(parsed, dict):
        parsed = parsed.get("characters")
    if not isinstance(parsed, list):
        return []

    characters: List[Dict[str, Any]] = []
    for entry in parsed:
        if not isinstance(entry, dict):
            continue
        name = _clean_field(entry.get("name"))
        if not name:
            continue
        connections = entry.get("connections") or []
        if isinstance(connections, str):
            connections = [connections]
        characters.append(
            {
                "name": name,
                "nickname": _clean_field(entry.get("nickname")),
                "role": _clean_field(entry.get("role")),
                "connections": [str(item).strip() for item in connections if str(item).strip()],
            }
        )
    return characters


def _clean_field(value: Any) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None
