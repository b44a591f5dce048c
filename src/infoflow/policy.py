"""Per-group reply policy: configuration merging and the reply decision."""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass
from typing import TypeAlias, assert_never

from .follow_up import FollowUpTracker
from .logging import get_logger
from .mentions import match_watch_list
from .model import BodyItem, ReplyMode
from .prompts import (
    build_follow_up_prompt,
    build_proactive_prompt,
    build_watch_mention_prompt,
    join_prompts,
)
from .settings import AccountSettings, GroupSettings

logger = get_logger(__name__)

DEFAULT_FOLLOW_UP = True
DEFAULT_FOLLOW_UP_WINDOW_S = 300


@dataclass(frozen=True, slots=True)
class GroupPolicy:
    reply_mode: ReplyMode
    follow_up_enabled: bool = DEFAULT_FOLLOW_UP
    follow_up_window_s: int = DEFAULT_FOLLOW_UP_WINDOW_S
    watch_list: tuple[str, ...] = ()
    extra_system_prompt: str | None = None


@dataclass(frozen=True, slots=True)
class Skip:
    """Drop the message: no session write, no reply."""


@dataclass(frozen=True, slots=True)
class RecordOnly:
    """Keep the message as context without running the agent."""


@dataclass(frozen=True, slots=True)
class Reply:
    system_prompt: str | None = None


Decision: TypeAlias = Skip | RecordOnly | Reply


def legacy_reply_mode(account: AccountSettings) -> ReplyMode:
    if account.require_mention is False:
        return "proactive"
    if account.watch_mentions:
        return "mention-and-watch"
    return "mention-only"


def resolve_group_policy(
    account: AccountSettings, group: GroupSettings | None = None
) -> GroupPolicy:
    """Resolve each field from the group override, then the account, then defaults."""
    reply_mode = (
        (group.reply_mode if group else None)
        or account.reply_mode
        or legacy_reply_mode(account)
    )
    follow_up = group.follow_up if group and group.follow_up is not None else None
    if follow_up is None:
        follow_up = account.follow_up
    if follow_up is None:
        follow_up = DEFAULT_FOLLOW_UP
    window = (
        group.follow_up_window
        if group and group.follow_up_window is not None
        else None
    )
    if window is None:
        window = account.follow_up_window
    if window is None:
        window = DEFAULT_FOLLOW_UP_WINDOW_S
    watch_list = (
        group.watch_mentions
        if group and group.watch_mentions is not None
        else account.watch_mentions
    )
    return GroupPolicy(
        reply_mode=reply_mode,
        follow_up_enabled=follow_up,
        follow_up_window_s=window,
        watch_list=tuple(watch_list),
        extra_system_prompt=(group.system_prompt if group else None) or None,
    )


class ReplyPolicyResolver:
    def __init__(self, tracker: FollowUpTracker) -> None:
        self.tracker = tracker

    def decide(
        self,
        policy: GroupPolicy,
        *,
        was_mentioned: bool,
        body: Sequence[BodyItem],
        conversation_id: Hashable,
    ) -> Decision:
        decision = self._decide_mode(
            policy,
            was_mentioned=was_mentioned,
            body=body,
            conversation_id=conversation_id,
        )
        if isinstance(decision, Reply) and policy.extra_system_prompt:
            return Reply(
                join_prompts(decision.system_prompt, policy.extra_system_prompt)
            )
        return decision

    def _decide_mode(
        self,
        policy: GroupPolicy,
        *,
        was_mentioned: bool,
        body: Sequence[BodyItem],
        conversation_id: Hashable,
    ) -> Decision:
        mode = policy.reply_mode
        if mode == "ignore":
            return Skip()
        if mode == "record":
            return RecordOnly()
        if was_mentioned:
            return Reply()
        if mode == "mention-only":
            if self._follow_up_active(policy, conversation_id):
                return Reply(build_follow_up_prompt())
            return Skip()
        if mode == "mention-and-watch":
            matched = self._watch_match(policy, body)
            if matched is not None:
                return Reply(build_watch_mention_prompt(matched))
            if self._follow_up_active(policy, conversation_id):
                return Reply(build_follow_up_prompt())
            return Skip()
        if mode == "proactive":
            matched = self._watch_match(policy, body)
            if matched is not None:
                return Reply(build_watch_mention_prompt(matched))
            return Reply(build_proactive_prompt())
        assert_never(mode)

    def _watch_match(self, policy: GroupPolicy, body: Sequence[BodyItem]) -> str | None:
        if not policy.watch_list or not body:
            return None
        matched = match_watch_list(body, policy.watch_list)
        if matched is not None:
            logger.debug("infoflow.policy.watch_match", matched=matched)
        return matched

    def _follow_up_active(
        self, policy: GroupPolicy, conversation_id: Hashable
    ) -> bool:
        if not policy.follow_up_enabled:
            return False
        return self.tracker.is_within_window(
            conversation_id, policy.follow_up_window_s
        )
