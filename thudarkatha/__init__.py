from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from .config import Config  # noqa: E402
from .db_utils import ensure_database_schema  # noqa: E402
from .extensions import csrf, db, login_manager, migrate  # noqa: E402
from .services.tracker import EXTENSION_KEY, PartGenerationTracker  # noqa: E402


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))

    configure_logging(app)
    register_extensions(app)
    register_blueprints(app)

    with app.app_context():
        ensure_database_schema()

    return app


def configure_logging(app: Flask) -> None:
    level_name = os.environ.get("LOG_LEVEL", "DEBUG" if app.debug else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("thudarkatha").setLevel(level)


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    app.extensions[EXTENSION_KEY] = PartGenerationTracker()

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"error": "Sign in to continue."}), 401


def register_blueprints(app: Flask) -> None:
    from .auth import bp as auth_bp
    from .books import bp as books_bp
    from .main import bp as main_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)
    app.register_blueprint(books_bp)
