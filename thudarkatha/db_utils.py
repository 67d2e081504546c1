"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Iterable, Set

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def ensure_database_schema() -> None:
    """Ensure that essential schema updates are applied.

    Runs on every application start. Missing tables are created, and the
    ``story_parts`` table gains the ``writing_style`` and ``word_count``
    columns when an older database predates them.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        if "books" not in table_names:
            db.create_all()
            inspector = inspect(db.engine)
            table_names = inspector.get_table_names()

        # Import locally to avoid circular import issues during application setup.
        from .models import Character, StoryPart

        required_tables = {
            "characters": Character.__table__,
            "story_parts": StoryPart.__table__,
        }

        for table_name, table in required_tables.items():
            if table_name not in table_names:
                table.create(bind=db.engine)

        if "story_parts" in table_names:
            part_columns = _get_column_names("story_parts")
            alter_statements = []

            if "writing_style" not in part_columns:
                alter_statements.append("ALTER TABLE story_parts ADD COLUMN writing_style VARCHAR(60)")

            if "word_count" not in part_columns:
                alter_statements.append(
                    "ALTER TABLE story_parts ADD COLUMN word_count INTEGER NOT NULL DEFAULT 0"
                )

            for statement in alter_statements:
                with db.engine.begin() as connection:
                    connection.execute(text(statement))
    except SQLAlchemyError:
        # Re-raise so the application does not continue in a partially configured state.
        raise
