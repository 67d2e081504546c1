import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'thudarkatha.db'}"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_TIME_LIMIT = None

    PROMPT_CONFIG_PATH = os.environ.get("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))

    # Text-generation backend
    LLM_BACKEND = os.environ.get("LLM_BACKEND", "gemini")
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-1.5-pro")
    GEMINI_API_BASE = os.environ.get("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    GENERATION_TEMPERATURE = _env_float("GENERATION_TEMPERATURE", 0.7)
    GENERATION_TOP_P = _env_float("GENERATION_TOP_P", 0.9)
    GENERATION_TOP_K = _env_int("GENERATION_TOP_K", 40)
    GENERATION_MAX_OUTPUT_TOKENS = _env_int("GENERATION_MAX_OUTPUT_TOKENS", 8192)
    GENERATION_TIMEOUT = _env_float("GENERATION_TIMEOUT", 120.0)

    # Part development loop
    PART_TARGET_WORDS = _env_int("PART_TARGET_WORDS", 1100)
    PART_CHUNK_WORDS = _env_int("PART_CHUNK_WORDS", 400)
    GENERATION_PACING_SECONDS = _env_float("GENERATION_PACING_SECONDS", 0.5)
    GENERATION_CHUNK_ATTEMPTS = _env_int("GENERATION_CHUNK_ATTEMPTS", 1)
    GENERATION_MAX_WORKERS = _env_int("GENERATION_MAX_WORKERS", 3)

    DEFAULT_TOTAL_PARTS = _env_int("DEFAULT_TOTAL_PARTS", 50)
    SUMMARY_BATCH_SIZE = _env_int("SUMMARY_BATCH_SIZE", 5)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    GEMINI_API_KEY = "test-key"
    GENERATION_PACING_SECONDS = 0.0
