import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from thudarkatha.services import tracker as tracker_module
from thudarkatha.services.narrative import GenerationResult, ProgressSnapshot
from thudarkatha.services.tracker import PartGenerationTracker


def _result(reached=True, error=None):
    return GenerationResult(
        text="text",
        reached_target=reached,
        chunks_completed=1,
        word_count=1,
        stop_reason="target_reached" if reached else "client_error",
        error=error,
    )


def test_part_moves_through_generation_states():
    tracker = PartGenerationTracker()
    assert tracker.status(1, 1).state == tracker_module.IDLE

    assert tracker.select(1, [1, 2]) == [1, 2]
    assert tracker.status(1, 2).state == tracker_module.SELECTED

    tracker.start(1, 1)
    tracker.progress_callback(1, 1)(ProgressSnapshot(2, 3))
    status = tracker.status(1, 1)
    assert status.state == tracker_module.GENERATING
    assert status.progress == ProgressSnapshot(2, 3)

    finished = tracker.finish(1, 1, _result())
    assert finished.state == tracker_module.DONE
    assert finished.progress == ProgressSnapshot(2, 3)
    assert finished.to_dict()["progress"]["percent"] == 67


def test_early_stop_is_recorded_as_failure():
    tracker = PartGenerationTracker()
    tracker.start(3, 1)

    status = tracker.finish(3, 1, _result(reached=False, error="quota"))

    assert status.state == tracker_module.FAILED
    assert status.error == "quota"
    assert status.reached_target is False


def test_select_skips_parts_already_generating():
    tracker = PartGenerationTracker()
    tracker.start(1, 1)

    assert tracker.select(1, [1, 2]) == [2]
    with pytest.raises(RuntimeError):
        tracker.start(1, 1)


def test_cancel_sets_event_for_running_part():
    tracker = PartGenerationTracker()
    event = tracker.start(1, 4)

    assert tracker.cancel(1, 4)
    assert event.is_set()
    assert not tracker.cancel(1, 5)


def test_statuses_are_scoped_per_book_and_reset_keeps_running_parts():
    tracker = PartGenerationTracker()
    tracker.select(1, [1])
    tracker.select(2, [1])
    tracker.start(1, 2)

    assert set(tracker.statuses_for_book(1)) == {1, 2}
    tracker.reset(1)
    assert set(tracker.statuses_for_book(1)) == {2}
    assert set(tracker.statuses_for_book(2)) == {1}
