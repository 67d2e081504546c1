"""Helpers for exporting a book and its parts to plain text or DOCX."""
from __future__ import annotations

import io
from pathlib import Path
from typing import IO, Optional, Union

import docx

from ..errors import ThudarkathaError

MISSING_CONTENT = "(No content available.)"


class ExportError(ThudarkathaError):
    """Raised when exporting a book fails."""


def _clean(value: Optional[str]) -> str:
    """Return ``value`` stripped of leading/trailing whitespace."""

    if not value:
        return ""
    return str(value).strip()


def _book_title(book: object) -> str:
    return _clean(getattr(book, "name", "")) or "Untitled Story"


def render_book_text(book: object) -> str:
    """Return the full book as UTF-8 friendly plain text."""

    lines: list[str] = [_book_title(book)]
    theme = _clean(getattr(book, "theme", ""))
    genres = ", ".join(getattr(book, "genre_list", None) or [])
    if theme:
        lines.append(f"Theme: {theme}")
    if genres:
        lines.append(f"Genres: {genres}")

    for part in getattr(book, "parts", []) or []:
        lines.append("")
        lines.append(f"Part {getattr(part, 'part_number', '?')}")

        summary = _clean(getattr(part, "summary", ""))
        if summary:
            lines.append(f"Summary: {summary}")

        content = _clean(getattr(part, "content", ""))
        lines.extend(["", content or MISSING_CONTENT])

    return "\n".join(lines).rstrip() + "\n"


def export_book_to_txt(book: object, *, output_path: Optional[Path] = None) -> Path:
    """Write ``book`` to a UTF-8 encoded text file."""

    resolved_path = Path(output_path) if output_path else Path(f"{_book_title(book)}.txt")
    try:
        resolved_path.write_text(render_book_text(book), encoding="utf-8")
    except OSError as exc:  # pragma: no cover - IO failure
        raise ExportError(f"Unable to export TXT file: {exc}") from exc
    return resolved_path


def build_book_docx(book: object) -> "docx.document.Document":
    document = docx.Document()
    document.add_heading(_book_title(book), level=1)

    theme = _clean(getattr(book, "theme", ""))
    genres = ", ".join(getattr(book, "genre_list", None) or [])
    document.add_paragraph(f"Theme: {theme}")
    document.add_paragraph(f"Genres: {genres}")

    for part in getattr(book, "parts", []) or []:
        document.add_heading(f"Part {getattr(part, 'part_number', '?')}", level=2)
        document.add_paragraph(f"Summary: {_clean(getattr(part, 'summary', ''))}")
        content = _clean(getattr(part, "content", ""))
        for paragraph in (content.split("\n\n") if content else [MISSING_CONTENT]):
            document.add_paragraph(paragraph.strip())

    return document


def export_book_to_docx(book: object, *, output: Optional[Union[Path, IO[bytes]]] = None) -> Union[Path, IO[bytes]]:
    """Save ``book`` as DOCX to ``output`` (a path or binary stream); defaults to an in-memory buffer."""

    target = output if output is not None else io.BytesIO()
    try:
        build_book_docx(book).save(target)
    except OSError as exc:  # pragma: no cover - IO failure
        raise ExportError(f"Unable to export DOCX file: {exc}") from exc
    if hasattr(target, "seek"):
        target.seek(0)
    return target


__all__ = [
    "ExportError",
    "build_book_docx",
    "export_book_to_docx",
    "export_book_to_txt",
    "render_book_text",
]
