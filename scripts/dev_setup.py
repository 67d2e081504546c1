"""Configure development environment variables and initialise the database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the settings required for local development "
            "and initialise the SQLite database."
        )
    )
    parser.add_argument("--flask-app", default="wsgi.py", help="Entry point used by Flask (default: wsgi.py)")
    parser.add_argument("--secret-key", help="Secret key for Flask sessions. Existing values are preserved when omitted.")
    parser.add_argument("--llm-backend", choices=("gemini", "openai"), help="Text-generation backend to use.")
    parser.add_argument("--gemini-api-key", help="API key for the Gemini backend.")
    parser.add_argument("--gemini-model", help="Gemini model name (default in config: gemini-1.5-pro).")
    parser.add_argument("--openai-api-key", help="API key for the OpenAI backend.")
    parser.add_argument("--database-url", help="Override DATABASE_URL (optional).")
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument("--skip-db", action="store_true", help="Only update the .env file without touching the database.")
    return parser.parse_args(argv)


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def collect_env_updates(args: argparse.Namespace) -> Dict[str, str]:
    updates = {"FLASK_APP": args.flask_app}
    optional_values = {
        "SECRET_KEY": args.secret_key,
        "LLM_BACKEND": args.llm_backend,
        "GEMINI_API_KEY": args.gemini_api_key,
        "GEMINI_MODEL": args.gemini_model,
        "OPENAI_API_KEY": args.openai_api_key,
        "DATABASE_URL": args.database_url,
    }
    updates.update({key: value for key, value in optional_values.items() if value})
    return updates


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_data.update(collect_env_updates(args))
    write_env(args.env_path, env_data)
    return env_data


def initialize_database() -> None:
    from thudarkatha import create_app
    from thudarkatha.extensions import db

    app = create_app()
    with app.app_context():
        db.create_all()
    print("Database initialised (instance/thudarkatha.db).")


def main(argv: Optional[list] = None) -> None:
    args = parse_args(argv)
    env_values = update_env_file(args)

    if not args.skip_db:
        initialize_database()
    else:
        print("Database initialisation skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key]
        if key.endswith("_KEY") and value:
            value = value[:4] + "…"
        print(f"  {key}={value}")


if __name__ == "__main__":
    main()
