import pytest

from infoflow.follow_up import FollowUpTracker
from infoflow.model import AtOptions, ContentNode, MentionIds, SendResult
from infoflow.outbound import (
    MentionPlan,
    ReplyDispatcher,
    build_mention_plan,
    chunk_text,
    format_prefix,
    mention_nodes,
)
from tests.infoflow_fakes import FakeSender, FakeStatusSink

KNOWN = MentionIds(user_ids=("alice01",), agent_ids=(1282,))


class TestChunkText:
    def test_short_text_is_single_chunk(self) -> None:
        assert chunk_text("hello", 4000) == ["hello"]

    def test_empty_text(self) -> None:
        assert chunk_text("", 10) == [""]

    def test_prefers_newline(self) -> None:
        text = "a" * 3000 + "\n" + "b" * 3000
        assert chunk_text(text, 4000) == ["a" * 3000 + "\n", "b" * 3000]

    def test_falls_back_to_whitespace(self) -> None:
        text = "alpha beta gamma"
        chunks = chunk_text(text, 12)
        assert chunks == ["alpha beta ", "gamma"]

    def test_hard_cut_without_break_points(self) -> None:
        chunks = chunk_text("x" * 9000, 4000)
        assert [len(chunk) for chunk in chunks] == [4000, 4000, 1000]

    @pytest.mark.parametrize("limit", [7, 50, 4000])
    def test_chunks_concatenate_to_original(self, limit: int) -> None:
        text = "line one\nline two is longer\n" * 40 + "tail" * 30
        chunks = chunk_text(text, limit)
        assert "".join(chunks) == text
        assert all(0 < len(chunk) <= limit for chunk in chunks)

    @pytest.mark.parametrize("limit", [0, -1])
    def test_rejects_non_positive_limit(self, limit: int) -> None:
        with pytest.raises(ValueError):
            chunk_text("hello", limit)


class TestBuildMentionPlan:
    def test_resolves_known_tokens(self) -> None:
        plan = build_mention_plan(
            at_all=False,
            explicit_user_ids=(),
            text="Thanks @alice01, @1282 will handle it",
            known_ids=KNOWN,
        )
        assert plan == MentionPlan(at_user_ids=("alice01",), at_agent_ids=(1282,))

    def test_token_ends_at_non_ascii_text(self) -> None:
        plan = build_mention_plan(
            at_all=False,
            explicit_user_ids=(),
            text="@alice01请看一下, @1282帮忙",
            known_ids=KNOWN,
        )
        assert plan.at_user_ids == ("alice01",)
        assert plan.at_agent_ids == (1282,)

    def test_unknown_tokens_ignored(self) -> None:
        plan = build_mention_plan(
            at_all=False,
            explicit_user_ids=(),
            text="ping @mallory and @9999",
            known_ids=KNOWN,
        )
        assert plan == MentionPlan()

    def test_token_case_insensitive_dedup_with_explicit(self) -> None:
        plan = build_mention_plan(
            at_all=False,
            explicit_user_ids=("Alice01",),
            text="@alice01 @ALICE01",
            known_ids=KNOWN,
        )
        assert plan.at_user_ids == ("Alice01",)
        assert plan.explicit_user_ids == ("Alice01",)

    def test_direct_target_skips_scan(self) -> None:
        plan = build_mention_plan(
            at_all=False,
            explicit_user_ids=(),
            text="@alice01",
            known_ids=KNOWN,
            is_group=False,
        )
        assert plan.at_user_ids == ()

    def test_at_all_drops_explicit_users(self) -> None:
        plan = build_mention_plan(
            at_all=True, explicit_user_ids=("bob",), text="hi", known_ids=None
        )
        assert plan.mention_all
        assert plan.explicit_user_ids == ()
        assert format_prefix(plan) == "@all "
        assert mention_nodes(plan) == [ContentNode(type="at", content="all")]


def test_format_prefix_lists_explicit_users() -> None:
    plan = MentionPlan(at_user_ids=("a", "b"), explicit_user_ids=("a", "b"))
    assert format_prefix(plan) == "@a @b "
    assert format_prefix(MentionPlan(at_user_ids=("a",))) == ""


@pytest.mark.anyio
async def test_group_reply_resolves_mentions(fake_sender: FakeSender) -> None:
    dispatcher = ReplyDispatcher(
        send=fake_sender, to="group:12345", account_id="default", mention_ids=KNOWN
    )
    text = "Thanks @alice01, @1282 will handle it"

    await dispatcher.deliver(text)

    assert fake_sender.calls == [
        (
            "group:12345",
            [
                ContentNode(type="at", content="alice01"),
                ContentNode(type="at-agent", content="1282"),
                ContentNode(type="markdown", content=text),
            ],
        )
    ]


@pytest.mark.anyio
async def test_group_reply_with_at_options_is_prefixed(
    fake_sender: FakeSender,
) -> None:
    dispatcher = ReplyDispatcher(
        send=fake_sender,
        to="group:12345",
        account_id="default",
        at_options=AtOptions(at_user_ids=("bob",)),
    )

    await dispatcher.deliver("done")

    _, contents = fake_sender.calls[0]
    assert contents == [
        ContentNode(type="at", content="bob"),
        ContentNode(type="markdown", content="@bob done"),
    ]


@pytest.mark.anyio
async def test_direct_reply_has_no_mentions(fake_sender: FakeSender) -> None:
    dispatcher = ReplyDispatcher(
        send=fake_sender,
        to="alice01",
        account_id="default",
        at_options=AtOptions(at_all=True),
        mention_ids=KNOWN,
    )

    await dispatcher.deliver("hi @alice01")

    assert fake_sender.calls == [
        ("alice01", [ContentNode(type="markdown", content="hi @alice01")])
    ]


@pytest.mark.anyio
async def test_mention_nodes_only_on_first_chunk(fake_sender: FakeSender) -> None:
    dispatcher = ReplyDispatcher(
        send=fake_sender,
        to="group:1",
        account_id="default",
        at_options=AtOptions(at_all=True),
        chunk_limit=10,
    )

    await dispatcher.deliver("0123456789abcdefghij")

    assert len(fake_sender.calls) == 3
    first = fake_sender.calls[0][1]
    assert first[0] == ContentNode(type="at", content="all")
    for _, contents in fake_sender.calls[1:]:
        assert [node.type for node in contents] == ["markdown"]
    sent = "".join(contents[-1].content for _, contents in fake_sender.calls)
    assert sent == "@all 0123456789abcdefghij"


@pytest.mark.anyio
@pytest.mark.parametrize("text", ["", "   \n", "NO_REPLY", "  NO_REPLY\n"])
async def test_blank_and_silent_replies_are_dropped(
    fake_sender: FakeSender, text: str
) -> None:
    dispatcher = ReplyDispatcher(send=fake_sender, to="group:1", account_id="default")
    await dispatcher.deliver(text)
    assert fake_sender.calls == []


@pytest.mark.anyio
async def test_failed_chunk_does_not_stop_the_rest(
    status_sink: FakeStatusSink, tracker: FollowUpTracker
) -> None:
    sender = FakeSender(
        [
            SendResult(ok=False, error="rate limited"),
            RuntimeError("connection reset"),
            SendResult(ok=True, message_id="m-3"),
        ]
    )
    dispatcher = ReplyDispatcher(
        send=sender,
        to="group:77",
        account_id="default",
        status_sink=status_sink,
        follow_up=tracker,
        chunk_limit=4,
    )

    await dispatcher.deliver("aaaabbbbcccc")

    assert [contents[-1].content for _, contents in sender.calls] == [
        "aaaa",
        "bbbb",
        "cccc",
    ]
    assert len(status_sink.outbound) == 1
    assert tracker.is_within_window(77, 300)


@pytest.mark.anyio
async def test_no_success_records_nothing(
    status_sink: FakeStatusSink, tracker: FollowUpTracker
) -> None:
    sender = FakeSender([SendResult(ok=False, error="nope")])
    dispatcher = ReplyDispatcher(
        send=sender,
        to="group:77",
        account_id="default",
        status_sink=status_sink,
        follow_up=tracker,
    )

    await dispatcher.deliver("hello")

    assert status_sink.patches == []
    assert tracker.last_reply_at(77) is None


@pytest.mark.anyio
async def test_direct_success_does_not_touch_tracker(
    fake_sender: FakeSender, tracker: FollowUpTracker, status_sink: FakeStatusSink
) -> None:
    dispatcher = ReplyDispatcher(
        send=fake_sender,
        to="alice01",
        account_id="default",
        status_sink=status_sink,
        follow_up=tracker,
    )

    await dispatcher.deliver("hello")

    assert len(status_sink.outbound) == 1
    assert len(tracker) == 0


def test_on_error_does_not_raise(fake_sender: FakeSender) -> None:
    dispatcher = ReplyDispatcher(send=fake_sender, to="group:1", account_id="default")
    dispatcher.on_error(RuntimeError("agent crashed"))
