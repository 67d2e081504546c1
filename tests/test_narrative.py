import math
import sys
import threading
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from thudarkatha.errors import ClientError, GenerationError
from thudarkatha.services import narrative
from thudarkatha.services.narrative import (
    GenerationRequest,
    GenerationState,
    ProgressSnapshot,
    count_words,
    develop_part,
    no_delay,
)

FOUR_WORDS = "one two three four"


class StubClient:
    def __init__(self, reply=FOUR_WORDS, *, fail_on=(), empty_on=()):
        self.reply = reply
        self.fail_on = set(fail_on)
        self.empty_on = set(empty_on)
        self.prompts = []

    def generate(self, prompt, **_):
        self.prompts.append(prompt)
        call_number = len(self.prompts)
        if call_number in self.fail_on:
            raise ClientError("backend unavailable")
        if call_number in self.empty_on:
            return "   "
        return self.reply

    @property
    def calls(self):
        return len(self.prompts)


def _request(target=10, chunk=4, **kwargs):
    return GenerationRequest(
        summary="A hero confronts a rival.",
        part_index=kwargs.pop("part_index", 0),
        target_word_count=target,
        chunk_word_count=chunk,
        **kwargs,
    )


def test_develop_part_stops_once_target_reached():
    client = StubClient()
    snapshots = []

    result = develop_part(_request(), client, snapshots.append, delay=no_delay)

    assert client.calls == 3
    assert result.text == "one two three four\n\none two three four\n\none two three four"
    assert result.word_count == 12
    assert result.reached_target
    assert result.chunks_completed == 3
    assert result.stop_reason == narrative.STOP_TARGET_REACHED
    assert snapshots == [ProgressSnapshot(0, 3), ProgressSnapshot(1, 3), ProgressSnapshot(2, 3), ProgressSnapshot(3, 3)]


def test_failed_chunk_returns_partial_text_and_stops():
    client = StubClient(fail_on={2})
    snapshots = []

    result = develop_part(_request(), client, snapshots.append, delay=no_delay)

    assert client.calls == 2
    assert result.text == FOUR_WORDS
    assert not result.reached_target
    assert result.chunks_completed == 1
    assert result.stop_reason == narrative.STOP_CLIENT_ERROR
    assert "backend unavailable" in result.error
    assert snapshots[-1] == ProgressSnapshot(1, 3)


def test_segments_are_appended_as_returned():
    client = StubClient(reply="one two three four\n", fail_on={3})

    result = develop_part(_request(), client, delay=no_delay)

    assert result.text == "one two three four\n\n\none two three four\n"
    assert result.word_count == 8
    assert result.chunks_completed == 2


def test_zero_target_makes_no_calls():
    client = StubClient()

    result = develop_part(GenerationRequest(summary="", target_word_count=0, chunk_word_count=4), client, delay=no_delay)

    assert client.calls == 0
    assert result.text == ""
    assert result.reached_target
    assert result.chunks_completed == 0


def test_empty_response_is_treated_as_failure():
    client = StubClient(empty_on={1})

    result = develop_part(_request(), client, delay=no_delay)

    assert client.calls == 1
    assert result.text == ""
    assert result.stop_reason == narrative.STOP_EMPTY_RESPONSE
    assert not result.reached_target


@pytest.mark.parametrize("target,chunk", [(1, 1), (10, 4), (12, 4), (1100, 400), (7, 10), (400, 400)])
def test_call_count_matches_planned_chunks(target, chunk):
    client = StubClient(reply=" ".join(["word"] * chunk))

    result = develop_part(_request(target=target, chunk=chunk), client, delay=no_delay)

    assert client.calls == math.ceil(target / chunk)
    assert target <= result.word_count < target + chunk


def test_prompt_carries_summary_story_so_far_and_chunk_size():
    client = StubClient()

    develop_part(_request(part_index=4, writing_style="poetic"), client, delay=no_delay)

    first, second = client.prompts[0], client.prompts[1]
    assert "A hero confronts a rival." in first
    assert "story part 5" in first
    assert "Generate approximately 4 words." in first
    assert "Make it poetic" in first
    assert 'Current story so far:\n""' in first
    assert f'"{FOUR_WORDS}"' in second


def test_custom_prompt_template_is_used():
    client = StubClient()
    template = "{summary}|{part_number}|{chunk_word_count}|{writing_style_line}|{story_so_far}"

    develop_part(_request(target=4), client, delay=no_delay, prompt_template=template)

    assert client.prompts == ["A hero confronts a rival.|1|4||"]


def test_delay_runs_between_chunks_only():
    client = StubClient()
    pauses = []

    develop_part(_request(), client, delay=lambda: pauses.append(client.calls))

    assert pauses == [1, 2]


def test_cancel_before_start_makes_no_calls():
    client = StubClient()
    cancel = threading.Event()
    cancel.set()

    result = develop_part(_request(), client, delay=no_delay, cancel_event=cancel)

    assert client.calls == 0
    assert result.stop_reason == narrative.STOP_CANCELLED
    assert not result.reached_target


def test_cancel_is_checked_before_each_chunk():
    client = StubClient()
    cancel = threading.Event()

    def on_progress(snapshot):
        if snapshot.done == 1:
            cancel.set()

    result = develop_part(_request(), client, on_progress, delay=no_delay, cancel_event=cancel)

    assert client.calls == 1
    assert result.text == FOUR_WORDS
    assert result.stop_reason == narrative.STOP_CANCELLED


def test_retry_recovers_a_failed_chunk():
    client = StubClient(fail_on={2})

    result = develop_part(_request(), client, delay=no_delay, max_attempts=2)

    assert client.calls == 4
    assert result.reached_target
    assert result.chunks_completed == 3


def test_retry_budget_is_bounded():
    client = StubClient(empty_on={1, 2, 3})

    result = develop_part(_request(), client, delay=no_delay, max_attempts=3)

    assert client.calls == 3
    assert result.text == ""
    assert result.stop_reason == narrative.STOP_EMPTY_RESPONSE


def test_progress_can_overshoot_plan_but_percent_is_clamped():
    client = StubClient(reply="short reply")
    snapshots = []

    result = develop_part(_request(target=10, chunk=4), client, snapshots.append, delay=no_delay)

    assert result.chunks_completed == 5
    dones = [snapshot.done for snapshot in snapshots]
    assert dones == sorted(dones)
    assert snapshots[-1].done > snapshots[-1].total
    assert snapshots[-1].percent == 100


def test_generation_parameters_are_forwarded():
    seen = []

    class RecordingClient:
        def generate(self, prompt, **overrides):
            seen.append(overrides)
            return FOUR_WORDS

    develop_part(_request(target=4), RecordingClient(), delay=no_delay, temperature=0.2)

    assert seen == [{"temperature": 0.2}]


def test_request_requires_summary_when_text_is_wanted():
    with pytest.raises(GenerationError):
        GenerationRequest(summary="  ", target_word_count=10)
    with pytest.raises(GenerationError):
        GenerationRequest(summary="x", chunk_word_count=0)
    with pytest.raises(GenerationError):
        GenerationRequest(summary="x", part_index=-1)


def test_state_word_count_is_derived_from_text():
    state = GenerationState(chunks_planned=2)
    state.append("ഒന്ന് രണ്ട്")
    state.append("മൂന്ന്\nനാല്")

    assert state.accumulated_text == "ഒന്ന് രണ്ട്\n\nമൂന്ന്\nനാല്"
    assert state.word_count == 4
    assert count_words(state.accumulated_text) == count_words(state.accumulated_text)
    assert state.snapshot() == ProgressSnapshot(2, 2)


def test_pacing_delay_of_zero_is_a_no_op():
    assert narrative.pacing_delay(0) is no_delay
