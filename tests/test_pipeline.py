import json
from unittest.mock import MagicMock

import pytest

from subtrans.conversation import ConversationWindow
from subtrans.errors import MalformedResponseError, ServiceError, TransportError
from subtrans.models import Role, RetryState, RunStatus
from subtrans.pipeline import BatchIterator, RetryPolicy, State, build_units


class ScriptedClient:
    """Replays queued replies; exceptions in the script are raised."""

    def __init__(self, script=None, default=None):
        self.script = list(script or [])
        self.default = default
        self.calls = []

    def complete(self, turns):
        self.calls.append(tuple(turns))
        if self.script:
            outcome = self.script.pop(0)
        elif self.default is not None:
            outcome = self.default(turns)
        else:
            raise AssertionError("unexpected request")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def echo(turns):
    return f"T:{turns[-1].content}"


def make_iterator(texts, client, **kwargs):
    max_turns = kwargs.pop("max_turns", 16)
    checkpoint = MagicMock()
    checkpoint.persist.return_value = "checkpoint.json"
    sleeps = []
    iterator = BatchIterator(
        texts,
        client,
        ConversationWindow("sys", max_turns=max_turns),
        checkpoint,
        sleep=sleeps.append,
        **kwargs,
    )
    return iterator, checkpoint, sleeps


def test_build_units_single_and_batch():
    texts = [f"line {i}" for i in range(5)]
    single = build_units(texts, batch_mode=False)
    assert [(u.start, u.end, u.text) for u in single][:2] == [(0, 1, "line 0"), (1, 2, "line 1")]

    batches = build_units(texts, batch_mode=True, batch_size=2)
    assert [(u.start, u.end) for u in batches] == [(0, 2), (2, 4), (4, 5)]
    assert json.loads(batches[2].text) == ["line 4"]


def test_batch_text_escapes_quotes_and_newlines():
    (unit,) = build_units(['say "hi"\nnow'], batch_mode=True)
    assert json.loads(unit.text) == ['say "hi"\nnow']


def test_retry_policy_transitions():
    policy = RetryPolicy(threshold=5)
    state = RetryState(unit_index=3, attempt_count=3)

    nxt, bumped = policy.after_failure(state, TransportError("boom"))
    assert nxt is State.FETCHING
    assert bumped == RetryState(3, 4)

    nxt, bumped = policy.after_failure(bumped, ServiceError("500"))
    assert nxt is State.ABORTED
    assert bumped.attempt_count == 5

    nxt, same = policy.after_failure(state, MalformedResponseError("bad", expected=2))
    assert nxt is State.ABORTED
    assert same == state

    assert policy.after_success(bumped) == RetryState(4, 0)


def test_single_mode_run_translates_every_cue_in_order():
    texts = [f"cue {i}" for i in range(10)]
    client = ScriptedClient(default=echo)
    iterator, checkpoint, sleeps = make_iterator(texts, client)

    report = iterator.run()

    assert report.status is RunStatus.DONE
    assert report.translations == [f"T:cue {i}" for i in range(10)]
    checkpoint.persist.assert_called_once_with(report.translations, 0, 9)
    assert sleeps == [0.2] * 10
    assert len(client.calls) == 10


def test_four_failures_then_success_resets_attempts():
    failures = [TransportError("timeout"), ServiceError("503", 503)] * 2
    client = ScriptedClient(script=["T:a"] + failures + ["T:b"], default=echo)
    iterator, checkpoint, _ = make_iterator(["a", "b", "c"], client)

    report = iterator.run()

    assert report.status is RunStatus.DONE
    assert report.translations == ["T:a", "T:b", "T:c"]
    assert iterator.retry == RetryState(unit_index=3, attempt_count=0)
    checkpoint.persist.assert_called_once_with(["T:a", "T:b", "T:c"], 0, 2)
    # the failing unit is resent unchanged
    assert [call[-1].content for call in client.calls[1:6]] == ["b"] * 5


def test_five_failures_abort_with_single_checkpoint():
    texts = [f"cue {i}" for i in range(6)]
    batch_one = json.dumps(["x", "y"])
    batch_two = json.dumps(["z", "w"])
    client = ScriptedClient(script=[batch_one, batch_two] + [TransportError("down")] * 5)
    iterator, checkpoint, sleeps = make_iterator(texts, client, batch_mode=True, batch_size=2)

    report = iterator.run()

    assert report.status is RunStatus.ABORTED
    assert report.failed_unit.start == 4
    assert isinstance(report.error, TransportError)
    checkpoint.persist.assert_called_once_with(["x", "y", "z", "w"], 2, 3)
    assert report.translations == ["x", "y", "z", "w"]
    assert sleeps == []


def test_malformed_batch_reply_aborts_without_retrying():
    client = ScriptedClient(script=['["a", "b"]', "sorry, I cannot do that"])
    iterator, checkpoint, _ = make_iterator(["1", "2", "3", "4"], client, batch_mode=True, batch_size=2)

    report = iterator.run()

    assert report.status is RunStatus.ABORTED
    assert isinstance(report.error, MalformedResponseError)
    assert len(client.calls) == 2
    checkpoint.persist.assert_called_once_with(["a", "b"], 0, 1)
    # the malformed exchange never reaches the window
    assert [t.content for t in iterator.window.snapshot()] == ["sys", '["1", "2"]', '["a", "b"]']


def test_failed_attempts_do_not_touch_conversation():
    client = ScriptedClient(script=[ServiceError("429", 429), "T:a"])
    iterator, _, _ = make_iterator(["a"], client)

    iterator.run()

    roles = [t.role for t in iterator.window.snapshot()]
    assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
    for call in client.calls:
        assert [t.role for t in call] == [Role.SYSTEM, Role.USER]


def test_requests_carry_context_and_stay_bounded():
    client = ScriptedClient(default=echo)
    iterator, _, _ = make_iterator([f"c{i}" for i in range(6)], client, max_turns=4)

    iterator.run()

    last = client.calls[-1]
    assert last[0].role is Role.SYSTEM
    assert [t.content for t in last[1:]] == ["c4", "T:c4", "c5"]
    assert len(iterator.window) == 5


def test_empty_input_finishes_immediately():
    client = ScriptedClient()
    iterator, checkpoint, _ = make_iterator([], client)

    report = iterator.run()

    assert report.status is RunStatus.DONE
    assert report.translations == []
    checkpoint.persist.assert_called_once_with([], 0, 0)


def test_retry_threshold_must_be_positive():
    with pytest.raises(ValueError):
        RetryPolicy(threshold=0)


def test_short_trailing_batch_abort_names_previous_batch():
    texts = [f"cue {i}" for i in range(20)]
    first_batch = json.dumps([f"t{i}" for i in range(15)])
    client = ScriptedClient(script=[first_batch] + [ServiceError("502", 502)] * 5)
    iterator, checkpoint, _ = make_iterator(texts, client, batch_mode=True, batch_size=15)

    report = iterator.run()

    assert report.status is RunStatus.ABORTED
    assert (report.failed_unit.start, report.failed_unit.end) == (15, 20)
    checkpoint.persist.assert_called_once_with([f"t{i}" for i in range(15)], 0, 14)


def test_first_unit_abort_uses_empty_range():
    client = ScriptedClient(script=[TransportError("down")] * 5)
    iterator, checkpoint, _ = make_iterator(["a", "b"], client)

    report = iterator.run()

    assert report.status is RunStatus.ABORTED
    assert report.translations == []
    checkpoint.persist.assert_called_once_with([], 0, 0)
