from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

from .follow_up import DEFAULT_MAX_AGE_S, FollowUpTracker
from .inbound import format_mention_hint, normalize_group, normalize_private
from .logging import get_logger
from .model import AtOptions, InboundEvent, StatusPatch
from .outbound import ReplyDispatcher
from .policy import (
    Decision,
    RecordOnly,
    Reply,
    ReplyPolicyResolver,
    Skip,
    resolve_group_policy,
)
from .runtime import ChannelRuntime, InboundContext, SendFn, StatusSink
from .settings import InfoflowSettings, ResolvedAccount, resolve_account
from .targets import group_target

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def follow_up_max_age(settings: InfoflowSettings) -> float:
    windows = [settings.max_follow_up_window()] + [
        account.max_follow_up_window() for account in settings.accounts.values()
    ]
    known = [window for window in windows if window is not None]
    return max([DEFAULT_MAX_AGE_S, *known])


def build_inbound_context(
    event: InboundEvent,
    *,
    account: ResolvedAccount,
    session_key: str,
) -> InboundContext:
    if event.is_group:
        label = f"group:{event.group_id}"
        from_address = f"infoflow:group:{event.group_id}"
        to_address = f"infoflow:{event.group_id}"
    else:
        label = event.sender_name or event.from_user
        from_address = f"infoflow:{event.from_user}"
        to_address = f"infoflow:{account.account_id}"
    body = event.text
    hint = format_mention_hint(event.mention_ids) if event.is_group else None
    if hint:
        body = f"{body}\n\n{hint}"
    timestamp = event.timestamp if event.timestamp is not None else _now_ms()
    return InboundContext(
        body=body,
        raw_body=event.raw_text or event.text,
        command_body=event.text,
        from_address=from_address,
        to_address=to_address,
        session_key=session_key,
        account_id=account.account_id,
        chat_type=event.chat_type,
        conversation_label=label,
        sender_name=event.sender_name or event.from_user,
        sender_id=event.from_user,
        message_sid=event.message_id or str(_now_ms()),
        timestamp=timestamp,
        group_subject=label if event.is_group else None,
        was_mentioned=event.was_mentioned if event.is_group else None,
        mention_ids=event.mention_ids,
    )


class InfoflowBot:
    """Gates inbound Infoflow messages and dispatches the agent's replies."""

    def __init__(
        self,
        *,
        settings: InfoflowSettings,
        runtime: ChannelRuntime,
        send: SendFn,
        tracker: FollowUpTracker | None = None,
        status_sink: StatusSink | None = None,
    ) -> None:
        self.settings = settings
        self.runtime = runtime
        self._send = send
        self.tracker = tracker or FollowUpTracker(max_age_s=follow_up_max_age(settings))
        self.resolver = ReplyPolicyResolver(self.tracker)
        self._status_sink = status_sink

    async def handle_private_chat(
        self, msg_data: Mapping[str, Any], *, account_id: str | None = None
    ) -> None:
        event = normalize_private(msg_data)
        if event is None:
            return
        await self.handle_message(event, account_id=account_id)

    async def handle_group_chat(
        self, msg_data: Mapping[str, Any], *, account_id: str | None = None
    ) -> None:
        account = resolve_account(self.settings, account_id)
        event = normalize_group(msg_data, bot_name=account.config.robot_name)
        if event is None:
            return
        await self.handle_message(event, account_id=account.account_id)

    def decide(self, event: InboundEvent, account: ResolvedAccount) -> Decision:
        if not event.is_group:
            return Reply()
        policy = resolve_group_policy(account.config, account.config.group(event.group_id))
        conversation_id = (
            event.group_id if event.group_id is not None else event.from_user
        )
        return self.resolver.decide(
            policy,
            was_mentioned=event.was_mentioned,
            body=event.body_items,
            conversation_id=conversation_id,
        )

    async def handle_message(
        self, event: InboundEvent, *, account_id: str | None = None
    ) -> None:
        account = resolve_account(self.settings, account_id)
        logger.debug(
            "infoflow.message",
            account_id=account.account_id,
            chat_type=event.chat_type,
            from_user=event.from_user,
            group_id=event.group_id,
        )
        if self._status_sink is not None:
            self._status_sink(StatusPatch(last_inbound_at=_now_ms()))

        decision = self.decide(event, account)
        if isinstance(decision, Skip):
            logger.debug(
                "infoflow.group.skipped",
                from_user=event.from_user,
                group_id=event.group_id,
            )
            return

        peer_id = (
            str(event.group_id)
            if event.is_group and event.group_id is not None
            else event.from_user
        )
        route = self.runtime.resolve_route(
            account_id=account.account_id,
            peer_kind=event.chat_type,
            peer_id=peer_id,
        )
        ctx = build_inbound_context(
            event, account=account, session_key=route.session_key
        )
        if isinstance(decision, Reply):
            ctx.group_system_prompt = decision.system_prompt

        await self.runtime.record_inbound(route, ctx)
        if isinstance(decision, RecordOnly):
            logger.debug(
                "infoflow.group.recorded",
                from_user=event.from_user,
                group_id=event.group_id,
            )
            return

        to = (
            group_target(event.group_id)
            if event.is_group and event.group_id is not None
            else event.from_user
        )
        dispatcher = ReplyDispatcher(
            send=self._send,
            to=to,
            account_id=account.account_id,
            # echo the sender back when the bot was addressed directly
            at_options=AtOptions(at_user_ids=(event.from_user,))
            if event.is_group and event.was_mentioned
            else None,
            mention_ids=event.mention_ids if event.is_group else None,
            status_sink=self._status_sink,
            follow_up=self.tracker,
        )
        await self.runtime.dispatch_reply(
            route, ctx, deliver=dispatcher.deliver, on_error=dispatcher.on_error
        )
        logger.debug(
            "infoflow.dispatch.complete",
            chat_type=event.chat_type,
            from_user=event.from_user,
            agent_id=route.agent_id,
        )
