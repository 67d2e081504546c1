"""Per-part generation status shared between requests.

Each ``(book_id, part_number)`` pair moves through a small state machine::

    idle -> selected -> generating -> done | failed

The tracker is the only state shared by concurrent generation runs, so every
access goes through a single lock. Status values are immutable snapshots.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

from flask import current_app

from .narrative import GenerationResult, ProgressSnapshot

IDLE = "idle"
SELECTED = "selected"
GENERATING = "generating"
DONE = "done"
FAILED = "failed"

EXTENSION_KEY = "thudarkatha_tracker"

PartKey = Tuple[int, int]


@dataclass(frozen=True)
class PartStatus:
    state: str = IDLE
    progress: Optional[ProgressSnapshot] = None
    error: Optional[str] = None
    reached_target: Optional[bool] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "progress": self.progress.to_dict() if self.progress else None,
            "error": self.error,
            "reached_target": self.reached_target,
        }


class PartGenerationTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._statuses: Dict[PartKey, PartStatus] = {}
        self._cancel_events: Dict[PartKey, threading.Event] = {}

    def status(self, book_id: int, part_number: int) -> PartStatus:
        with self._lock:
            return self._statuses.get((book_id, part_number), PartStatus())

    def statuses_for_book(self, book_id: int) -> Dict[int, PartStatus]:
        with self._lock:
            return {
                part_number: status
                for (owner_id, part_number), status in self._statuses.items()
                if owner_id == book_id
            }

    def select(self, book_id: int, part_numbers: Iterable[int]) -> List[int]:
        """Mark parts as selected for a batch run, skipping any already generating."""

        accepted: List[int] = []
        with self._lock:
            for part_number in part_numbers:
                key = (book_id, part_number)
                if self._statuses.get(key, PartStatus()).state == GENERATING:
                    continue
                self._statuses[key] = PartStatus(state=SELECTED)
                accepted.append(part_number)
        return accepted

    def start(self, book_id: int, part_number: int) -> threading.Event:
        """Move a part to ``generating`` and return the event that cancels its run."""

        key = (book_id, part_number)
        with self._lock:
            current = self._statuses.get(key, PartStatus())
            if current.state == GENERATING:
                raise RuntimeError(f"Part {part_number} of book {book_id} is already generating.")
            event = threading.Event()
            self._cancel_events[key] = event
            self._statuses[key] = PartStatus(state=GENERATING, progress=ProgressSnapshot(0, 0))
            return event

    def progress_callback(self, book_id: int, part_number: int):
        key = (book_id, part_number)

        def _on_progress(snapshot: ProgressSnapshot) -> None:
            with self._lock:
                current = self._statuses.get(key, PartStatus(state=GENERATING))
                self._statuses[key] = replace(current, progress=snapshot)

        return _on_progress

    def finish(self, book_id: int, part_number: int, result: GenerationResult) -> PartStatus:
        key = (book_id, part_number)
        with self._lock:
            current = self._statuses.get(key, PartStatus())
            status = PartStatus(
                state=DONE if result.reached_target else FAILED,
                progress=current.progress,
                error=result.error,
                reached_target=result.reached_target,
            )
            self._statuses[key] = status
            self._cancel_events.pop(key, None)
            return status

    def fail(self, book_id: int, part_number: int, message: str) -> PartStatus:
        key = (book_id, part_number)
        with self._lock:
            current = self._statuses.get(key, PartStatus())
            status = PartStatus(state=FAILED, progress=current.progress, error=message, reached_target=False)
            self._statuses[key] = status
            self._cancel_events.pop(key, None)
            return status

    def cancel(self, book_id: int, part_number: int) -> bool:
        with self._lock:
            event = self._cancel_events.get((book_id, part_number))
        if event is None:
            return False
        event.set()
        return True

    def reset(self, book_id: int, part_number: Optional[int] = None) -> None:
        with self._lock:
            for key in list(self._statuses):
                if key[0] == book_id and (part_number is None or key[1] == part_number):
                    if self._statuses[key].state != GENERATING:
                        del self._statuses[key]


def get_tracker() -> PartGenerationTracker:
    return current_app.extensions[EXTENSION_KEY]
