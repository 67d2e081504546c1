from __future__ import annotations

import json
from datetime import datetime
from typing import List, Optional

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db, login_manager

GENRE_CHOICES = ("Romance", "Thriller", "Sci-Fi", "Fantasy", "Mystery", "Family", "Horror", "Drama")
POV_CHOICES = ("First Person", "Third Person Limited", "Omniscient")
WRITING_STYLE_CHOICES = ("poetic", "sarcastic", "descriptive", "fast-paced", "philosophical")


def _dump_list(values: Optional[List[str]]) -> Optional[str]:
    cleaned = [str(value).strip() for value in (values or []) if str(value).strip()]
    return json.dumps(cleaned, ensure_ascii=False) if cleaned else None


def _load_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return [item.strip() for item in raw.split(",") if item.strip()]
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed]


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    books = db.relationship("Book", backref="owner", lazy=True, cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<User {self.email}>"


@login_manager.user_loader
def load_user(user_id: str) -> Optional["User"]:
    return db.session.get(User, int(user_id))


class Book(db.Model):
    __tablename__ = "books"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    premise = db.Column(db.Text, nullable=True)
    genres = db.Column(db.Text, nullable=True)
    setting = db.Column(db.Text, nullable=True)
    theme = db.Column(db.Text, nullable=True)
    tone = db.Column(db.String(120), nullable=True)
    pov = db.Column(db.String(60), nullable=True)
    dialogue_style = db.Column(db.Text, nullable=True)
    cover_url = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    characters = db.relationship(
        "Character",
        backref="book",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Character.id",
    )
    parts = db.relationship(
        "StoryPart",
        backref="book",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="StoryPart.part_number",
    )

    @property
    def genre_list(self) -> List[str]:
        return _load_list(self.genres)

    @genre_list.setter
    def genre_list(self, values: Optional[List[str]]) -> None:
        self.genres = _dump_list(values)

    @property
    def last_updated(self) -> datetime:
        stamps = [self.updated_at] + [part.updated_at for part in self.parts]
        return max((stamp for stamp in stamps if stamp is not None), default=self.created_at or datetime.utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "premise": self.premise or "",
            "genres": self.genre_list,
            "setting": self.setting or "",
            "theme": self.theme or "",
            "tone": self.tone or "",
            "pov": self.pov or "",
            "dialogue_style": self.dialogue_style or "",
            "cover_url": self.cover_url or "",
            "part_count": len(self.parts),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_updated": self.last_updated.isoformat(),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Book {self.name}>"


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    nickname = db.Column(db.String(120), nullable=True)
    role = db.Column(db.String(120), nullable=True)
    connections = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def connections_list(self) -> List[str]:
        return _load_list(self.connections)

    @connections_list.setter
    def connections_list(self, values: Optional[List[str]]) -> None:
        self.connections = _dump_list(values)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "nickname": self.nickname or "",
            "role": self.role or "",
            "connections": self.connections_list,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Character {self.name}>"


class StoryPart(db.Model):
    __tablename__ = "story_parts"
    __table_args__ = (db.UniqueConstraint("book_id", "part_number", name="uq_story_parts_book_part"),)

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    part_number = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(150), nullable=True)
    summary = db.Column(db.Text, nullable=True)
    content = db.Column(db.Text, nullable=True)
    writing_style = db.Column(db.String(60), nullable=True)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "part_number": self.part_number,
            "title": self.title or "",
            "summary": self.summary or "",
            "content": self.content or "",
            "writing_style": self.writing_style or "",
            "word_count": self.word_count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<StoryPart {self.book_id}:{self.part_number}>"
