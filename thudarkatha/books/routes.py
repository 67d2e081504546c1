from __future__ import annotations

import io

from flask import abort, current_app, jsonify, request, send_file
from flask_login import current_user, login_required

from ..errors import ClientError, ConfigurationError, GenerationError, StorageError
from ..extensions import db
from ..models import Book, Character, StoryPart
from ..services.characters import generate_character_roster
from ..services.exporter import ExportError, export_book_to_docx, render_book_text
from ..services.parts import (
    clear_summaries,
    develop_story_part,
    develop_story_parts,
    generate_part_summaries,
    reset_story_arc,
    save_part,
)
from ..services.tracker import get_tracker
from . import bp
from .forms import (
    BookMetadataForm,
    CharacterForm,
    CharacterRosterForm,
    CharacterUpdateForm,
    PartSelectionForm,
    StoryArcForm,
    StoryPartForm,
    SummaryRangeForm,
)

_METADATA_FIELDS = ("name", "premise", "setting", "theme", "tone", "pov", "dialogue_style", "cover_url")
_PART_FIELDS = ("title", "summary", "content", "writing_style")


@bp.errorhandler(403)
def _forbidden(_error):
    return jsonify({"error": "You do not have access to this book."}), 403


@bp.errorhandler(404)
def _not_found(_error):
    return jsonify({"error": "We couldn't find what you were looking for."}), 404


@bp.errorhandler(ConfigurationError)
def _misconfigured(error):
    current_app.logger.error("Text generation is not configured: %s", error)
    return jsonify({"error": str(error)}), 503


@bp.errorhandler(GenerationError)
def _generation_failed(error):
    return jsonify({"error": str(error)}), 400


@bp.errorhandler(ClientError)
def _client_failed(error):
    current_app.logger.warning("Text generation call failed: %s", error)
    return jsonify({"error": "The story assistant is unavailable right now. Please try again."}), 502


@bp.errorhandler(StorageError)
def _storage_failed(error):
    return jsonify({"error": str(error)}), 500


def _get_owned_book(book_id: int) -> Book:
    book = Book.query.get_or_404(book_id)
    if book.owner != current_user:
        abort(403)
    return book


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _book_detail(book: Book) -> dict:
    data = book.to_dict()
    data["characters"] = [character.to_dict() for character in book.characters]
    data["parts"] = [part.to_dict() for part in book.parts]
    return data


@bp.route("/<int:book_id>", methods=["GET"])
@login_required
def detail(book_id: int):
    book = _get_owned_book(book_id)
    return jsonify({"book": _book_detail(book)})


@bp.route("/<int:book_id>", methods=["PATCH"])
@login_required
def update(book_id: int):
    book = _get_owned_book(book_id)
    payload = _payload()
    form = BookMetadataForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Check the highlighted fields.", "fields": form.errors}), 400

    for field_name in _METADATA_FIELDS:
        if field_name in payload:
            value = (getattr(form, field_name).data or "").strip() or None
            if field_name == "name" and not value:
                return jsonify({"error": "A book needs a name."}), 400
            setattr(book, field_name, value)
    if "genres" in payload:
        book.genre_list = form.genres.data

    db.session.commit()
    return jsonify({"book": book.to_dict()})


@bp.route("/<int:book_id>", methods=["DELETE"])
@login_required
def delete(book_id: int):
    book = _get_owned_book(book_id)
    get_tracker().reset(book.id)
    db.session.delete(book)
    db.session.commit()
    return jsonify({"deleted": book_id})


@bp.route("/<int:book_id>/characters", methods=["GET", "POST"])
@login_required
def characters(book_id: int):
    book = _get_owned_book(book_id)
    if request.method == "GET":
        return jsonify({"characters": [character.to_dict() for character in book.characters]})

    form = CharacterForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Add a character name before saving.", "fields": form.errors}), 400

    character = Character(
        book_id=book.id,
        name=form.name.data.strip(),
        nickname=(form.nickname.data or "").strip() or None,
        role=(form.role.data or "").strip() or None,
    )
    character.connections_list = form.connections.data
    db.session.add(character)
    db.session.commit()
    return jsonify({"character": character.to_dict()}), 201


@bp.route("/<int:book_id>/characters/<int:character_id>", methods=["PATCH", "DELETE"])
@login_required
def character_detail(book_id: int, character_id: int):
    book = _get_owned_book(book_id)
    character = Character.query.filter_by(id=character_id, book_id=book.id).first_or_404()

    if request.method == "DELETE":
        db.session.delete(character)
        db.session.commit()
        return jsonify({"deleted": character_id})

    payload = _payload()
    form = CharacterUpdateForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Check the highlighted fields.", "fields": form.errors}), 400

    for field_name in ("name", "nickname", "role"):
        if field_name in payload:
            value = (getattr(form, field_name).data or "").strip() or None
            if field_name == "name" and not value:
                return jsonify({"error": "A character needs a name."}), 400
            setattr(character, field_name, value)
    if "connections" in payload:
        character.connections_list = form.connections.data
    db.session.commit()
    return jsonify({"character": character.to_dict()})


@bp.route("/<int:book_id>/characters/generate", methods=["POST"])
@login_required
def generate_characters(book_id: int):
    book = _get_owned_book(book_id)
    form = CharacterRosterForm()
    if form.is_submitted() and not form.validate():
        return jsonify({"error": "Choose between 1 and 10 characters.", "fields": form.errors}), 400

    result = generate_character_roster(book, character_count=form.count.data or 3)
    return jsonify({"characters": [character.to_dict() for character in result.characters]})


@bp.route("/<int:book_id>/arc", methods=["POST"])
@login_required
def story_arc(book_id: int):
    book = _get_owned_book(book_id)
    form = StoryArcForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Choose how many parts the story has.", "fields": form.errors}), 400

    parts = reset_story_arc(book, form.total_parts.data)
    return jsonify({"parts": [part.to_dict() for part in parts]})


@bp.route("/<int:book_id>/parts", methods=["GET"])
@login_required
def parts(book_id: int):
    book = _get_owned_book(book_id)
    statuses = get_tracker().statuses_for_book(book.id)
    entries = []
    for part in book.parts:
        data = part.to_dict()
        status = statuses.get(part.part_number)
        data["status"] = status.to_dict() if status else {"state": "idle"}
        entries.append(data)
    return jsonify({"parts": entries})


@bp.route("/<int:book_id>/parts/<int:part_number>", methods=["PUT"])
@login_required
def save_story_part(book_id: int, part_number: int):
    book = _get_owned_book(book_id)
    if part_number < 1:
        abort(404)
    payload = _payload()
    form = StoryPartForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Check the highlighted fields.", "fields": form.errors}), 400

    changes = {field_name: getattr(form, field_name).data or "" for field_name in _PART_FIELDS if field_name in payload}
    part = save_part(book, part_number, **changes)
    return jsonify({"part": part.to_dict()})


@bp.route("/<int:book_id>/parts/summaries", methods=["POST"])
@login_required
def generate_summaries(book_id: int):
    book = _get_owned_book(book_id)
    form = SummaryRangeForm()
    if form.is_submitted() and not form.validate():
        return jsonify({"error": "Choose a valid range of parts.", "fields": form.errors}), 400

    start = form.start.data or 0
    outcome = generate_part_summaries(book, start=start, end=form.end.data)
    response = {
        "generated": [part.to_dict() for part in outcome.generated],
        "skipped": outcome.skipped,
        "unsaved": {str(number): text for number, text in outcome.unsaved.items()},
        "failed_part": outcome.failed_part,
        "error": outcome.error,
    }
    nothing_produced = not outcome.generated and not outcome.unsaved
    return jsonify(response), (502 if outcome.failed_part and nothing_produced else 200)


@bp.route("/<int:book_id>/parts/summaries", methods=["DELETE"])
@login_required
def reset_summaries(book_id: int):
    book = _get_owned_book(book_id)
    cleared = clear_summaries(book)
    return jsonify({"cleared": cleared})


@bp.route("/<int:book_id>/parts/<int:part_number>/develop", methods=["POST"])
@login_required
def develop(book_id: int, part_number: int):
    book = _get_owned_book(book_id)
    outcome = develop_story_part(book, part_number)
    result = outcome.result
    part = outcome.part or StoryPart.query.filter_by(book_id=book.id, part_number=part_number).first()
    return jsonify(
        {
            "part": part.to_dict() if part else None,
            "generation": result.to_dict() if result else None,
            "text": result.text if result else "",
            "error": outcome.error,
        }
    )


@bp.route("/<int:book_id>/parts/develop", methods=["POST"])
@login_required
def develop_selected(book_id: int):
    book = _get_owned_book(book_id)
    form = PartSelectionForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Select at least one part to generate.", "fields": form.errors}), 400

    outcomes = develop_story_parts(book, form.part_numbers.data)
    return jsonify(
        {
            "results": {
                str(number): {
                    "generation": outcome.result.to_dict() if outcome.result else None,
                    "part": outcome.part.to_dict() if outcome.part else None,
                    "error": outcome.error,
                }
                for number, outcome in sorted(outcomes.items())
            }
        }
    )


@bp.route("/<int:book_id>/parts/status", methods=["GET"])
@login_required
def generation_status(book_id: int):
    book = _get_owned_book(book_id)
    statuses = get_tracker().statuses_for_book(book.id)
    return jsonify({"statuses": {str(number): status.to_dict() for number, status in sorted(statuses.items())}})


@bp.route("/<int:book_id>/parts/<int:part_number>/cancel", methods=["POST"])
@login_required
def cancel_generation(book_id: int, part_number: int):
    book = _get_owned_book(book_id)
    cancelled = get_tracker().cancel(book.id, part_number)
    return jsonify({"cancelled": cancelled}), (200 if cancelled else 409)


@bp.route("/<int:book_id>/export", methods=["GET"])
@login_required
def export(book_id: int):
    book = _get_owned_book(book_id)
    export_format = (request.args.get("format") or "docx").lower()
    filename_stem = (book.name or "story").strip() or "story"

    if export_format == "txt":
        return send_file(
            io.BytesIO(render_book_text(book).encode("utf-8")),
            mimetype="text/plain; charset=utf-8",
            as_attachment=True,
            download_name=f"{filename_stem}.txt",
        )
    if export_format != "docx":
        return jsonify({"error": "Export format must be 'docx' or 'txt'."}), 400

    try:
        buffer = export_book_to_docx(book)
    except ExportError as exc:
        current_app.logger.exception("DOCX export failed for book %s", book.id)
        return jsonify({"error": str(exc)}), 500
    return send_file(
        buffer,
        mimetype="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        as_attachment=True,
        download_name=f"{filename_stem}.docx",
    )
