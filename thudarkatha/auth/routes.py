from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from ..extensions import db
from ..models import User
from . import bp
from .forms import LoginForm, RegistrationForm


def _user_payload(user: User) -> dict:
    return {"id": user.id, "email": user.email, "display_name": user.display_name}


@bp.route("/register", methods=["POST"])
def register():
    if current_user.is_authenticated:
        return jsonify({"user": _user_payload(current_user)})

    form = RegistrationForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Registration failed.", "fields": form.errors}), 400

    user = User(email=form.email.data, display_name=form.display_name.data)
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()
    return jsonify({"message": "Account created successfully. Please sign in.", "user": _user_payload(user)}), 201


@bp.route("/login", methods=["POST"])
def login():
    if current_user.is_authenticated:
        return jsonify({"user": _user_payload(current_user)})

    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Enter your email and password.", "fields": form.errors}), 400

    user = User.query.filter_by(email=form.email.data).first()
    if user is None or not user.check_password(form.password.data):
        return jsonify({"error": "Invalid email or password."}), 401

    login_user(user, remember=form.remember.data)
    return jsonify(
        {
            "message": f"Welcome back, {user.display_name}!",
            "user": _user_payload(user),
            "next": request.args.get("next"),
        }
    )


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "You have been signed out."})
