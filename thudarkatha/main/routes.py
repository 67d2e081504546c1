from flask import jsonify, url_for
from flask_login import current_user, login_required

from ..extensions import db
from ..models import Book
from ..books.forms import BookForm
from . import bp


@bp.route("/")
def index():
    payload = {"service": "thudarkatha", "authenticated": current_user.is_authenticated}
    if current_user.is_authenticated:
        payload["dashboard"] = url_for("main.dashboard")
    return jsonify(payload)


@bp.route("/dashboard", methods=["GET", "POST"])
@login_required
def dashboard():
    form = BookForm()
    if form.is_submitted():
        if not form.validate():
            return jsonify({"error": "Give the book a name before creating it.", "fields": form.errors}), 400
        book = Book(
            name=form.name.data.strip(),
            premise=(form.premise.data or "").strip() or None,
            cover_url=(form.cover_url.data or "").strip() or None,
            owner=current_user,
        )
        book.genre_list = form.genres.data
        db.session.add(book)
        db.session.commit()
        return jsonify({"book": book.to_dict()}), 201

    books = Book.query.filter_by(owner_id=current_user.id).order_by(Book.created_at.desc(), Book.id.desc()).all()
    return jsonify({"books": [book.to_dict() for book in books]})
