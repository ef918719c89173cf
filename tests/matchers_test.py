from datetime import datetime, timezone
from uuid import UUID

import pytest
from pydantic import BaseModel

from broadcast_matchers import (
    BroadcastAssertionError,
    ConfigurationError,
    UsageError,
    a_hash_including,
    an_instance_of,
    anything,
    broadcast,
    expect,
    have_broadcasted,
    have_broadcasted_to,
)
from broadcast_matchers.config import Config
from broadcast_matchers.matcher_context import MatcherContext, matcher_context
from broadcast_matchers.matchers import MatchState
from broadcast_matchers.pubsub import Broadcast, TestBackend
from broadcast_matchers.recorder import BroadcastRecorder

MESSAGE_ID = UUID("12345678-1234-5678-1234-567812345678")


class ChatMessage(BaseModel):
    id: UUID
    text: str


def test_raises_usage_error_when_no_action_passed(broadcast_server):
    with pytest.raises(UsageError):
        expect(True).to(have_broadcasted("stream"))


def test_passes_with_default_messages_count(make_broadcast):
    expect(lambda: make_broadcast("stream", "hello")).to(have_broadcasted("stream"))


def test_passes_when_using_alias(make_broadcast):
    expect(lambda: make_broadcast("stream", "hello")).to(broadcast("stream"))


def test_counts_only_messages_sent_in_block(make_broadcast):
    make_broadcast("stream", "one")
    expect(lambda: make_broadcast("stream", "two")).to(have_broadcasted("stream").exactly(1))


def test_passes_when_negated(broadcast_server):
    expect(lambda: None).not_to(have_broadcasted("stream"))


def test_fails_when_message_is_not_sent(broadcast_server):
    with pytest.raises(
        BroadcastAssertionError, match=r"expected to broadcast exactly 1 messages to stream, but broadcast 0"
    ):
        expect(lambda: None).to(have_broadcasted("stream"))


def test_fails_when_too_many_messages_broadcast(make_broadcast):
    def action():
        make_broadcast("stream", "one")
        make_broadcast("stream", "two")

    with pytest.raises(
        BroadcastAssertionError, match=r"expected to broadcast exactly 1 messages to stream, but broadcast 2"
    ):
        expect(action).to(have_broadcasted("stream").exactly(1))


def test_reports_correct_number_in_fail_error_message(make_broadcast):
    make_broadcast("stream", "one")
    with pytest.raises(
        BroadcastAssertionError, match=r"expected to broadcast exactly 1 messages to stream, but broadcast 0"
    ):
        expect(lambda: None).to(have_broadcasted("stream").exactly(1))


def test_fails_when_negated_and_message_is_sent(make_broadcast):
    with pytest.raises(
        BroadcastAssertionError, match=r"expected not to broadcast exactly 1 messages to stream, but broadcast 1"
    ):
        expect(lambda: make_broadcast("stream", "one")).not_to(have_broadcasted("stream"))


def test_to_not_is_the_same_as_not_to(make_broadcast):
    expect(lambda: make_broadcast("other", "one")).to_not(have_broadcasted("stream"))
    with pytest.raises(BroadcastAssertionError, match=r"expected not to broadcast"):
        expect(lambda: make_broadcast("stream", "one")).to_not(have_broadcasted("stream"))


def test_passes_with_multiple_streams(make_broadcast):
    calls = []

    def action():
        calls.append(1)
        make_broadcast("stream_a", "A")
        make_broadcast("stream_b", "B")
        make_broadcast("stream_c", "C")

    expect(action).to(have_broadcasted("stream_a").and_(have_broadcasted("stream_b")))
    assert calls == [1]


def test_compound_failure_reports_each_failing_matcher(make_broadcast):
    matcher = have_broadcasted("stream_a") & have_broadcasted("stream_b") & have_broadcasted("stream_c").twice()

    with pytest.raises(BroadcastAssertionError) as excinfo:
        expect(lambda: make_broadcast("stream_a", "A")).to(matcher)

    message = str(excinfo.value)
    assert "expected to broadcast exactly 1 messages to stream_a" not in message
    assert "expected to broadcast exactly 1 messages to stream_b, but broadcast 0" in message
    assert "expected to broadcast exactly 2 messages to stream_c, but broadcast 0" in message


def test_compound_matchers_cannot_be_negated(broadcast_server):
    with pytest.raises(UsageError):
        expect(lambda: None).not_to(have_broadcasted("a").and_(have_broadcasted("b")))


def test_compound_matchers_need_a_single_server(broadcast_server):
    other = MatcherContext(Broadcast(TestBackend()))

    with pytest.raises(UsageError):
        expect(lambda: None).to(have_broadcasted("a") & have_broadcasted("b", context=other))


@pytest.mark.parametrize("count, messages", [("once", 1), ("twice", 2), ("thrice", 3)])
def test_passes_with_symbolic_count(make_broadcast, count, messages):
    def action():
        for i in range(messages):
            make_broadcast("stream", i)

    expect(action).to(have_broadcasted("stream").exactly(count))


def test_passes_with_count_shorthands(make_broadcast):
    expect(lambda: make_broadcast("stream", 1)).to(have_broadcasted("stream").once())

    def twice():
        make_broadcast("stream", 1)
        make_broadcast("stream", 2)

    expect(twice).to(have_broadcasted("stream").twice())


def test_passes_with_at_least_count_when_sent_messages_are_over_limit(make_broadcast):
    def action():
        make_broadcast("stream", "one")
        make_broadcast("stream", "two")

    expect(action).to(have_broadcasted("stream").at_least("once"))


def test_passes_with_at_most_count_when_sent_messages_are_under_limit(make_broadcast):
    expect(lambda: make_broadcast("stream", "hello")).to(have_broadcasted("stream").at_most("once"))


def test_generates_failure_message_with_at_least_hint(broadcast_server):
    with pytest.raises(
        BroadcastAssertionError, match=r"expected to broadcast at least 1 messages to stream, but broadcast 0"
    ):
        expect(lambda: None).to(have_broadcasted("stream").at_least("once"))


def test_generates_failure_message_with_at_most_hint(make_broadcast):
    def action():
        make_broadcast("stream", "hello")
        make_broadcast("stream", "hello")

    with pytest.raises(
        BroadcastAssertionError, match=r"expected to broadcast at most 1 messages to stream, but broadcast 2"
    ):
        expect(action).to(have_broadcasted("stream").at_most("once"))


@pytest.mark.parametrize("k", [0, 1, 2, 3])
def test_exact_count_matches_published_count(make_broadcast, k):
    def action():
        for i in range(k):
            make_broadcast("stream", i)

    expect(action).to(have_broadcasted("stream").exactly(k))
    with pytest.raises(BroadcastAssertionError, match=rf"but broadcast {k}$|but broadcast {k}\n"):
        expect(action).to(have_broadcasted("stream").exactly(k + 1))


def test_other_channels_do_not_count(make_broadcast):
    def action():
        make_broadcast("other", 1)
        make_broadcast("stream_b", 2)

    expect(action).to(have_broadcasted("stream").exactly(0))


def test_negation_inverts_the_same_evaluation(broadcast_server):
    plain = have_broadcasted("stream").exactly(0).evaluate(lambda: None)
    negated = have_broadcasted("stream").exactly(0).evaluate(lambda: None, negated=True)

    assert plain.success
    assert not negated.success
    assert negated.actual_count == plain.actual_count == 0
    assert negated.description == plain.description.replace("expected to", "expected not to")


def test_passes_with_provided_data(make_broadcast):
    expect(lambda: make_broadcast("stream", {"id": 42, "name": "David"})).to(
        have_broadcasted("stream").with_(id=42, name="David")
    )
    expect(lambda: make_broadcast("stream", {"id": 42, "name": "David"})).to(
        have_broadcasted("stream").with_({"id": 42, "name": "David"})
    )


def test_full_equality_rejects_extra_fields(make_broadcast):
    with pytest.raises(BroadcastAssertionError) as excinfo:
        expect(lambda: make_broadcast("stream", {"id": 42, "name": "David", "message_id": 123})).to(
            have_broadcasted("stream").with_(id=42, name="David")
        )

    assert "'message_id': unexpected key with value 123" in str(excinfo.value)


def test_passes_with_provided_data_matchers(make_broadcast):
    expect(lambda: make_broadcast("stream", {"id": 42, "name": "David", "message_id": 123})).to(
        have_broadcasted("stream").with_(a_hash_including(name="David", id=42))
    )


def test_generates_failure_message_when_data_not_match(make_broadcast):
    with pytest.raises(
        BroadcastAssertionError,
        match=r"expected to broadcast exactly 1 messages to stream with a hash including",
    ) as excinfo:
        expect(lambda: make_broadcast("stream", {"id": 42, "name": "David", "message_id": 123})).to(
            have_broadcasted("stream").with_(a_hash_including(name="John", id=42))
        )

    message = str(excinfo.value)
    assert "'name': expected 'John', got 'David'" in message
    assert "-{'id': 42, 'name': 'John'}" in message
    assert "+{'id': 42, 'name': 'David'}" in message


def test_data_checked_for_every_message_with_multi_count(make_broadcast):
    def action():
        make_broadcast("stream", {"id": 1, "kind": "update"})
        make_broadcast("stream", {"id": 2, "kind": "delete"})

    with pytest.raises(BroadcastAssertionError) as excinfo:
        expect(action).to(have_broadcasted("stream").twice().with_(a_hash_including(kind="update")))

    message = str(excinfo.value)
    assert message.startswith(
        "expected to broadcast exactly 2 messages to stream with a hash including {'kind': 'update'}, but broadcast 2"
    )
    assert "Message 2 didn't match" in message


def test_negated_data_match(make_broadcast):
    expect(lambda: make_broadcast("stream", {"id": 1})).not_to(have_broadcasted("stream").with_(id=2))


def test_throws_descriptive_error_when_no_test_adapter_set(live_server):
    calls = []

    def action():
        calls.append(1)
        live_server.publish("stream", "hello")

    with pytest.raises(ConfigurationError) as excinfo:
        expect(action).to(have_broadcasted("stream"))

    assert str(excinfo.value) == "To use the broadcast matchers, the test-mode pub/sub backend must be active"
    assert calls == []


def test_fails_with_predicate_with_incorrect_data(make_broadcast):
    def check(data):
        expected = "zxcv"
        if data != expected:
            raise AssertionError(f"\nexpected: {expected}\n     got: {data}\n")

    with pytest.raises(AssertionError) as excinfo:
        expect(lambda: make_broadcast("stream", "asdf")).to(have_broadcasted("stream").with_(check))

    assert not isinstance(excinfo.value, BroadcastAssertionError)
    assert "expected: zxcv" in str(excinfo.value)
    assert "got: asdf" in str(excinfo.value)


def test_passes_with_predicate(make_broadcast):
    seen = []
    expect(lambda: make_broadcast("stream", "asdf")).to(have_broadcasted("stream").with_(seen.append))
    assert seen == ["asdf"]


def test_predicate_returning_false_fails(make_broadcast):
    def is_zxcv(data):
        return data == "zxcv"

    with pytest.raises(
        BroadcastAssertionError,
        match=r"expected to broadcast exactly 1 messages to stream with data satisfying is_zxcv, but broadcast 1",
    ):
        expect(lambda: make_broadcast("stream", "asdf")).to(have_broadcasted("stream").with_(is_zxcv))


def test_action_errors_propagate_and_recording_stops(make_broadcast, mocker):
    end_recording = mocker.spy(BroadcastRecorder, "end_recording")

    def action():
        make_broadcast("stream", "one")
        raise ValueError("action failed")

    with pytest.raises(ValueError, match="action failed"):
        expect(action).to(have_broadcasted("stream"))

    assert end_recording.call_count == 1


def test_matcher_cannot_be_reused(make_broadcast):
    matcher = have_broadcasted("stream")
    expect(lambda: make_broadcast("stream", "one")).to(matcher)

    assert matcher.state is MatchState.DONE
    assert matcher.result.success
    with pytest.raises(UsageError):
        expect(lambda: make_broadcast("stream", "two")).to(matcher)
    with pytest.raises(UsageError):
        matcher.exactly(2)


def test_matcher_is_aborted_when_recording_cannot_start(live_server):
    matcher = have_broadcasted("stream")

    with pytest.raises(ConfigurationError):
        expect(lambda: None).to(matcher)

    assert matcher.state is MatchState.ABORTED
    with pytest.raises(UsageError):
        expect(lambda: None).to(matcher)


def test_matcher_is_aborted_when_action_raises(broadcast_server):
    def action():
        raise ValueError("action failed")

    matcher = have_broadcasted("stream")
    with pytest.raises(ValueError):
        expect(action).to(matcher)

    assert matcher.state is MatchState.ABORTED
    assert matcher.result is None


def test_compound_aborts_started_matchers(make_broadcast):
    used = have_broadcasted("b")
    expect(lambda: make_broadcast("b", 1)).to(used)
    fresh = have_broadcasted("a")

    with pytest.raises(UsageError):
        expect(lambda: make_broadcast("a", 1)).to(fresh & used)

    assert fresh.state is MatchState.ABORTED
    assert used.state is MatchState.DONE


@pytest.mark.parametrize(
    "payload",
    [
        {"id": MESSAGE_ID},
        {"sent_at": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)},
        {1: "a", 2: "b"},
        ChatMessage(id=MESSAGE_ID, text="hi"),
    ],
)
def test_data_equal_to_the_published_payload_matches(make_broadcast, payload):
    expect(lambda: make_broadcast("stream", payload)).to(have_broadcasted("stream").with_(payload))


def test_keyword_fields_compare_with_the_published_payload(make_broadcast):
    sent_at = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    expect(lambda: make_broadcast("stream", {"id": MESSAGE_ID, "sent_at": sent_at})).to(
        have_broadcasted("stream").with_(id=MESSAGE_ID, sent_at=sent_at)
    )
    with pytest.raises(BroadcastAssertionError, match=r"'id': expected '00000000-0000-0000-0000-000000000000'"):
        expect(lambda: make_broadcast("stream", {"id": MESSAGE_ID})).to(
            have_broadcasted("stream").with_(id=UUID(int=0))
        )


def test_nested_patterns_see_the_recorded_data(make_broadcast):
    payload = {"id": MESSAGE_ID, "message": ChatMessage(id=MESSAGE_ID, text="hi"), "tags": ("a", "b")}

    expect(lambda: make_broadcast("stream", payload)).to(
        have_broadcasted("stream").with_(
            {"id": MESSAGE_ID, "message": a_hash_including(id=MESSAGE_ID), "tags": [anything(), "b"]}
        )
    )


def test_context_config_controls_payload_normalization():
    server = Broadcast(TestBackend())
    raw = MatcherContext(server, Config(normalize_payloads=False))
    normalized = MatcherContext(server, Config())

    expect(lambda: server.publish("stream", {"id": MESSAGE_ID})).to(
        have_broadcasted("stream", context=raw).with_(id=an_instance_of(UUID))
    )
    expect(lambda: server.publish("stream", {"id": MESSAGE_ID})).to(
        have_broadcasted("stream", context=normalized).with_(id=an_instance_of(str))
    )


def test_with_requires_an_argument(broadcast_server):
    with pytest.raises(UsageError):
        have_broadcasted("stream").with_()
    with pytest.raises(UsageError):
        have_broadcasted("stream").with_({"id": 1}, name="x")


def test_matches_protocol(make_broadcast):
    matcher = have_broadcasted("stream")

    assert not matcher.matches(lambda: None)
    assert matcher.failure_message == "expected to broadcast exactly 1 messages to stream, but broadcast 0"

    negated = have_broadcasted("stream")
    assert not negated.does_not_match(lambda: make_broadcast("stream", "hello"))
    assert negated.failure_message_when_negated.startswith(
        "expected not to broadcast exactly 1 messages to stream, but broadcast 1"
    )


def test_broadcasts_to_object(broadcast_server, user):
    expect(lambda: broadcast_server.broadcast_to(user, {"text": "hi"}, channel_name="chat")).to(
        have_broadcasted_to(user).from_channel("chat").with_(text="hi")
    )
    expect(lambda: broadcast_server.broadcast_to(user, "hello")).to(have_broadcasted_to(user))


def test_failure_lists_broadcast_messages(make_broadcast):
    def action():
        make_broadcast("stream", "one")
        make_broadcast("stream", "two")

    with pytest.raises(BroadcastAssertionError) as excinfo:
        expect(action).to(have_broadcasted("stream"))

    assert str(excinfo.value) == "\n".join(
        [
            "expected to broadcast exactly 1 messages to stream, but broadcast 2",
            "Broadcasted messages to stream:",
            "   'one'",
            "   'two'",
        ]
    )


def test_explicit_context_and_config():
    server = Broadcast(TestBackend())
    context = MatcherContext(server, Config(default_count=2, max_listed_messages=1))

    def action():
        for i in range(3):
            server.publish("stream", i)

    with pytest.raises(BroadcastAssertionError) as excinfo:
        expect(action).to(have_broadcasted("stream", context=context))

    assert str(excinfo.value) == "\n".join(
        [
            "expected to broadcast exactly 2 messages to stream, but broadcast 3",
            "Broadcasted messages to stream:",
            "   0",
            "   ...and 2 more",
        ]
    )


def test_context_var_is_used_when_no_context_passed():
    server = Broadcast(TestBackend())

    with matcher_context(server):
        expect(lambda: server.publish("stream", "hello")).to(have_broadcasted("stream"))


def test_missing_context_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="No broadcast server available"):
        expect(lambda: None).to(have_broadcasted("stream"))


def test_nested_expectations_record_independently(make_broadcast):
    def inner():
        expect(lambda: make_broadcast("inner", 1)).to(have_broadcasted("inner"))
        make_broadcast("outer", 2)

    expect(inner).to(have_broadcasted("inner").and_(have_broadcasted("outer")))


def test_reentrant_broadcasts_are_counted(broadcast_server):
    broadcast_server.add_listener("orders", lambda message: broadcast_server.publish("audit", message))

    expect(lambda: broadcast_server.publish("orders", {"id": 1})).to(
        have_broadcasted("orders") & have_broadcasted("audit").with_(id=1)
    )
