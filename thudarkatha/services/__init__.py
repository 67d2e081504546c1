"""Service layer helpers for AI-assisted story writing."""

from __future__ import annotations

from .narrative import (  # noqa: F401
    GenerationRequest,
    GenerationResult,
    GenerationState,
    ProgressSnapshot,
    develop_part,
)
from .text_client import ClientError, TextGenerationClient  # noqa: F401

__all__ = [
    "ClientError",
    "GenerationRequest",
    "GenerationResult",
    "GenerationState",
    "ProgressSnapshot",
    "TextGenerationClient",
    "develop_part",
]
