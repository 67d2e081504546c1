"""Incremental long-form narrative generation.

A story part is developed from its short summary by asking the text client for
fixed-size continuations, each conditioned on everything written so far, until
the accumulated text reaches the target word count. The loop is strictly
sequential because every prompt embeds the full story so far.

The module is framework free: callers inject the text client, a progress
callback, the pacing delay between chunks and an optional cancellation event.
Persistence is left to the caller.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..errors import ClientError, GenerationError
from .prompts import build_chunk_prompt
from .text_client import TextGenerationClient

LOGGER = logging.getLogger(__name__)

DEFAULT_TARGET_WORD_COUNT = 1100
DEFAULT_CHUNK_WORD_COUNT = 400
DEFAULT_PACING_SECONDS = 0.5
SEGMENT_SEPARATOR = "\n\n"

STOP_TARGET_REACHED = "target_reached"
STOP_CLIENT_ERROR = "client_error"
STOP_EMPTY_RESPONSE = "empty_response"
STOP_CANCELLED = "cancelled"


def count_words(text: str) -> int:
    """Number of whitespace-delimited tokens in ``text``."""

    return len(text.split())


@dataclass(frozen=True)
class GenerationRequest:
    summary: str
    part_index: int = 0
    target_word_count: int = DEFAULT_TARGET_WORD_COUNT
    chunk_word_count: int = DEFAULT_CHUNK_WORD_COUNT
    writing_style: Optional[str] = None

    def __post_init__(self) -> None:
        if self.part_index < 0:
            raise GenerationError("part_index must not be negative.")
        if self.chunk_word_count <= 0:
            raise GenerationError("chunk_word_count must be a positive integer.")
        if self.target_word_count > 0 and not (self.summary or "").strip():
            raise GenerationError("Add a summary for this part before developing it.")


@dataclass(frozen=True)
class ProgressSnapshot:
    done: int
    total: int

    @property
    def percent(self) -> int:
        # ``total`` is an estimate, so the ratio can leave [0, 100].
        if self.total <= 0:
            return 100
        return max(0, min(100, round(self.done * 100 / self.total)))

    def to_dict(self) -> dict:
        return {"done": self.done, "total": self.total, "percent": self.percent}


@dataclass
class GenerationState:
    chunks_planned: int
    accumulated_text: str = ""
    chunks_completed: int = 0

    @classmethod
    def for_request(cls, request: GenerationRequest) -> "GenerationState":
        planned = max(0, math.ceil(request.target_word_count / request.chunk_word_count))
        return cls(chunks_planned=planned)

    @property
    def word_count(self) -> int:
        return count_words(self.accumulated_text)

    def append(self, segment: str) -> None:
        if self.accumulated_text:
            self.accumulated_text += SEGMENT_SEPARATOR + segment
        else:
            self.accumulated_text = segment
        self.chunks_completed += 1

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(done=self.chunks_completed, total=self.chunks_planned)


@dataclass(frozen=True)
class GenerationResult:
    text: str
    reached_target: bool
    chunks_completed: int
    word_count: int
    stop_reason: str
    error: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "reached_target": self.reached_target,
            "chunks_completed": self.chunks_completed,
            "word_count": self.word_count,
            "stop_reason": self.stop_reason,
            "error": self.error,
        }


ProgressCallback = Callable[[ProgressSnapshot], None]
DelayStrategy = Callable[[], None]


def pacing_delay(seconds: float) -> DelayStrategy:
    """Return a delay strategy that sleeps ``seconds`` between chunks."""

    if seconds <= 0:
        return no_delay

    def _sleep() -> None:
        time.sleep(seconds)

    return _sleep


def no_delay() -> None:
    return None


def develop_part(
    request: GenerationRequest,
    client: TextGenerationClient,
    on_progress: Optional[ProgressCallback] = None,
    *,
    delay: Optional[DelayStrategy] = None,
    cancel_event: Optional[threading.Event] = None,
    prompt_template: Optional[str] = None,
    max_attempts: int = 1,
    **generation_parameters,
) -> GenerationResult:
    """Grow ``request.summary`` into a narrative of at least ``target_word_count`` words.

    Parameters
    ----------
    request:
        The immutable description of this run.
    client:
        Any object exposing ``generate(prompt) -> str``.
    on_progress:
        Invoked synchronously with a :class:`ProgressSnapshot` once before the
        first chunk and after every successful chunk.
    delay:
        Pacing strategy called between chunks. Defaults to a half second sleep.
    cancel_event:
        Checked before every chunk request; once set the run stops and returns
        what has been written so far.
    max_attempts:
        Attempts per chunk. A chunk that still fails stops the run and the
        partial text is returned rather than discarded.
    """

    if max_attempts < 1:
        raise GenerationError("max_attempts must be at least 1.")
    pause = delay if delay is not None else pacing_delay(DEFAULT_PACING_SECONDS)
    state = GenerationState.for_request(request)
    _notify(on_progress, state.snapshot())

    stop_reason = STOP_TARGET_REACHED
    error: Optional[str] = None

    while state.word_count < request.target_word_count:
        if cancel_event is not None and cancel_event.is_set():
            LOGGER.info("Generation for part %s cancelled after %s chunks.", request.part_index + 1, state.chunks_completed)
            stop_reason = STOP_CANCELLED
            break

        prompt = build_chunk_prompt(
            request.summary,
            part_index=request.part_index,
            story_so_far=state.accumulated_text,
            chunk_word_count=request.chunk_word_count,
            writing_style=request.writing_style,
            template=prompt_template,
        )

        segment, stop_reason, error = _request_chunk(
            client, prompt, request, state, max_attempts, pause, generation_parameters
        )
        if segment is None:
            break

        state.append(segment)
        _notify(on_progress, state.snapshot())

        if state.word_count < request.target_word_count:
            pause()

    word_count = state.word_count
    reached = word_count >= request.target_word_count
    if not reached:
        LOGGER.warning(
            "Part %s stopped early (%s) at %s/%s words after %s chunks.",
            request.part_index + 1,
            stop_reason,
            word_count,
            request.target_word_count,
            state.chunks_completed,
        )
    return GenerationResult(
        text=state.accumulated_text,
        reached_target=reached,
        chunks_completed=state.chunks_completed,
        word_count=word_count,
        stop_reason=STOP_TARGET_REACHED if reached else stop_reason,
        error=error,
    )


def _request_chunk(client, prompt, request, state, max_attempts, pause, generation_parameters):
    stop_reason = STOP_CLIENT_ERROR
    error: Optional[str] = None
    for attempt in range(1, max_attempts + 1):
        try:
            segment = client.generate(prompt, **generation_parameters)
        except ClientError as exc:
            stop_reason, error = STOP_CLIENT_ERROR, str(exc)
        else:
            if isinstance(segment, str) and segment.strip():
                return segment, STOP_TARGET_REACHED, None
            stop_reason, error = STOP_EMPTY_RESPONSE, "The text client returned an empty response."

        LOGGER.warning(
            "Chunk %s of part %s failed (attempt %s/%s): %s",
            state.chunks_completed + 1,
            request.part_index + 1,
            attempt,
            max_attempts,
            error,
        )
        if attempt < max_attempts:
            pause()
    return None, stop_reason, error


def _notify(on_progress: Optional[ProgressCallback], snapshot: ProgressSnapshot) -> None:
    if on_progress is not None:
        on_progress(snapshot)
