from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ClientError, GenerationError, StorageError
from ..extensions import db
from ..models import WRITING_STYLE_CHOICES, Book, StoryPart
from .narrative import (
    GenerationRequest,
    GenerationResult,
    count_words,
    develop_part,
    pacing_delay,
)
from .prompts import (
    PART_CHUNK_KEY,
    PART_SUMMARY_KEY,
    build_summary_prompt,
    extract_generation_parameters,
    load_prompt_entry,
)
from .text_client import get_text_client
from .tracker import PartGenerationTracker, get_tracker

_UNSET = object()


@dataclass
class SummaryGenerationResult:
    generated: List[StoryPart] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    unsaved: Dict[int, str] = field(default_factory=dict)
    failed_part: Optional[int] = None
    error: Optional[str] = None


@dataclass
class PartDevelopmentOutcome:
    part: Optional[StoryPart]
    result: Optional[GenerationResult]
    error: Optional[str] = None


def save_part(
    book: Book,
    part_number: int,
    *,
    summary=_UNSET,
    content=_UNSET,
    title=_UNSET,
    writing_style=_UNSET,
    commit: bool = True,
) -> StoryPart:
    """Insert or update the part keyed by ``(book.id, part_number)``.

    Only the fields that are passed are written, so a summary save never
    clears previously developed content and vice versa.
    """

    if part_number < 1:
        raise StorageError("Part numbers start at 1.")
    if writing_style is not _UNSET and writing_style and writing_style not in WRITING_STYLE_CHOICES:
        raise StorageError(f"Unknown writing style '{writing_style}'.")

    try:
        part = StoryPart.query.filter_by(book_id=book.id, part_number=part_number).first()
        if part is None:
            part = StoryPart(book=book, part_number=part_number)
            db.session.add(part)

        if summary is not _UNSET:
            part.summary = (summary or "").strip() or None
        if content is not _UNSET:
            part.content = content or None
            part.word_count = count_words(content or "")
        if title is not _UNSET:
            part.title = (title or "").strip() or None
        if writing_style is not _UNSET:
            part.writing_style = writing_style or None

        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Failed to save part %s of book %s: %s", part_number, book.id, exc)
        raise StorageError(f"Part {part_number} could not be saved.") from exc
    return part


def reset_story_arc(book: Book, total_parts: int) -> List[StoryPart]:
    """Replace every part of ``book`` with ``total_parts`` empty parts."""

    if total_parts < 1:
        raise StorageError("A story arc needs at least one part.")
    try:
        StoryPart.query.filter_by(book_id=book.id).delete(synchronize_session=False)
        parts = [StoryPart(book_id=book.id, part_number=number) for number in range(1, total_parts + 1)]
        db.session.add_all(parts)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageError("The story arc could not be saved.") from exc
    db.session.expire(book, ["parts"])
    get_tracker().reset(book.id)
    return parts


def clear_summaries(book: Book) -> int:
    try:
        cleared = StoryPart.query.filter_by(book_id=book.id).update({"summary": None}, synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageError("Summaries could not be cleared.") from exc
    db.session.expire_all()
    return cleared


def generate_part_summaries(book: Book, *, start: int = 0, end: Optional[int] = None) -> SummaryGenerationResult:
    """Draft summaries for parts ``start + 1`` to ``end`` that do not have one yet.

    One generation call per missing summary, each persisted immediately. The
    first failed call or failed save stops the batch; summaries already saved
    are kept, and a summary that could not be saved is returned in
    ``unsaved``.
    """

    batch_size = int(current_app.config.get("SUMMARY_BATCH_SIZE", 5))
    if end is None:
        end = start + batch_size
    if start < 0 or end <= start:
        raise GenerationError("Choose a valid range of parts to summarise.")

    existing: Dict[int, StoryPart] = {part.part_number: part for part in book.parts}
    entry = load_prompt_entry(PART_SUMMARY_KEY)
    parameters = extract_generation_parameters(entry.get("parameters"))
    client = get_text_client()
    outcome = SummaryGenerationResult()

    for index in range(start, end):
        part_number = index + 1
        current = existing.get(part_number)
        if current is not None and (current.summary or "").strip():
            outcome.skipped.append(part_number)
            continue

        prompt = build_summary_prompt(book, part_index=index, template=entry["prompt_template"])
        try:
            summary = client.generate(prompt, **parameters)
        except ClientError as exc:
            current_app.logger.error("Summary generation failed for part %s of book %s: %s", part_number, book.id, exc)
            outcome.failed_part = part_number
            outcome.error = str(exc)
            break

        try:
            outcome.generated.append(save_part(book, part_number, summary=summary))
        except StorageError as exc:
            outcome.unsaved[part_number] = summary
            outcome.failed_part = part_number
            outcome.error = str(exc)
            break

    return outcome


def _request_for(part: StoryPart, config) -> GenerationRequest:
    return GenerationRequest(
        summary=part.summary or "",
        part_index=part.part_number - 1,
        target_word_count=int(config.get("PART_TARGET_WORDS", 1100)),
        chunk_word_count=int(config.get("PART_CHUNK_WORDS", 400)),
        writing_style=part.writing_style,
    )


def _run_generation(
    tracker: PartGenerationTracker,
    book_id: int,
    part_number: int,
    request: GenerationRequest,
    cancel_event: threading.Event,
    run_options: dict,
) -> GenerationResult:
    result = develop_part(
        request,
        run_options["client"],
        tracker.progress_callback(book_id, part_number),
        delay=run_options["delay"],
        cancel_event=cancel_event,
        prompt_template=run_options["prompt_template"],
        max_attempts=run_options["max_attempts"],
        **run_options["parameters"],
    )
    tracker.finish(book_id, part_number, result)
    return result


def _run_options() -> dict:
    config = current_app.config
    entry = load_prompt_entry(PART_CHUNK_KEY)
    return {
        "client": get_text_client(),
        "delay": pacing_delay(float(config.get("GENERATION_PACING_SECONDS", 0.5))),
        "prompt_template": entry["prompt_template"],
        "parameters": extract_generation_parameters(entry.get("parameters")),
        "max_attempts": max(1, int(config.get("GENERATION_CHUNK_ATTEMPTS", 1))),
    }


def develop_story_part(book: Book, part_number: int) -> PartDevelopmentOutcome:
    """Develop one part into full text and persist whatever was generated."""

    part = StoryPart.query.filter_by(book_id=book.id, part_number=part_number).first()
    if part is None:
        raise GenerationError(f"Part {part_number} does not exist yet.")

    request = _request_for(part, current_app.config)
    run_options = _run_options()
    tracker = get_tracker()
    try:
        cancel_event = tracker.start(book.id, part_number)
    except RuntimeError as exc:
        raise GenerationError(str(exc)) from exc

    try:
        result = _run_generation(tracker, book.id, part_number, request, cancel_event, run_options)
    except Exception as exc:
        tracker.fail(book.id, part_number, str(exc))
        raise

    return _persist_result(book, part_number, result)


def develop_story_parts(book: Book, part_numbers: Iterable[int]) -> Dict[int, PartDevelopmentOutcome]:
    """Develop several parts as independent concurrent runs.

    Workers only talk to the text client and the tracker; results are
    persisted on the calling thread once every run has finished.
    """

    tracker = get_tracker()
    wanted = sorted(set(int(number) for number in part_numbers))
    parts = {
        part.part_number: part
        for part in StoryPart.query.filter(
            StoryPart.book_id == book.id, StoryPart.part_number.in_(wanted)
        ).all()
    }
    missing = [number for number in wanted if number not in parts]
    if missing:
        raise GenerationError(f"Unknown parts: {', '.join(str(n) for n in missing)}.")

    run_options = _run_options()
    outcomes: Dict[int, PartDevelopmentOutcome] = {}
    requests_by_part: Dict[int, GenerationRequest] = {}
    selected = tracker.select(book.id, wanted)
    for number in wanted:
        if number not in selected:
            outcomes[number] = PartDevelopmentOutcome(
                part=parts[number], result=None, error=f"Part {number} is already generating."
            )
            continue
        try:
            requests_by_part[number] = _request_for(parts[number], current_app.config)
        except GenerationError as exc:
            tracker.fail(book.id, number, str(exc))
            outcomes[number] = PartDevelopmentOutcome(part=parts[number], result=None, error=str(exc))

    if not requests_by_part:
        return outcomes

    max_workers = max(1, int(current_app.config.get("GENERATION_MAX_WORKERS", 3)))
    futures = {}
    with ThreadPoolExecutor(max_workers=min(max_workers, len(requests_by_part))) as executor:
        for number, request in requests_by_part.items():
            try:
                cancel_event = tracker.start(book.id, number)
            except RuntimeError as exc:
                outcomes[number] = PartDevelopmentOutcome(part=parts[number], result=None, error=str(exc))
                continue
            futures[number] = executor.submit(
                _run_generation, tracker, book.id, number, request, cancel_event, run_options
            )

    for number, future in futures.items():
        try:
            result = future.result()
        except Exception as exc:
            current_app.logger.exception("Generation run for part %s of book %s crashed", number, book.id)
            tracker.fail(book.id, number, str(exc))
            outcomes[number] = PartDevelopmentOutcome(part=parts[number], result=None, error=str(exc))
            continue
        outcomes[number] = _persist_result(book, number, result)

    return outcomes


def _persist_result(book: Book, part_number: int, result: GenerationResult) -> PartDevelopmentOutcome:
    if not result.text:
        return PartDevelopmentOutcome(part=None, result=result, error=result.error)
    try:
        part = save_part(book, part_number, content=result.text)
    except StorageError as exc:
        return PartDevelopmentOutcome(part=None, result=result, error=str(exc))
    return PartDevelopmentOutcome(part=part, result=result, error=result.error)
