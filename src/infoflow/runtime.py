"""Protocols for the collaborators surrounding the mention gate.

The channel runtime owns routing, session storage and the agent itself; the
send primitive owns transport and auth. Both are supplied by the host.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, TypeAlias

from .model import ChatType, ContentNode, MentionIds, SendResult, StatusPatch

SendFn: TypeAlias = Callable[[str, Sequence[ContentNode]], Awaitable[SendResult]]
StatusSink: TypeAlias = Callable[[StatusPatch], None]
DeliverFn: TypeAlias = Callable[[str], Awaitable[None]]
ErrorFn: TypeAlias = Callable[[BaseException], None]


@dataclass(frozen=True, slots=True)
class AgentRoute:
    agent_id: str
    session_key: str
    account_id: str


@dataclass(slots=True)
class InboundContext:
    body: str
    raw_body: str
    command_body: str
    from_address: str
    to_address: str
    session_key: str
    account_id: str
    chat_type: ChatType
    conversation_label: str
    sender_name: str
    sender_id: str
    message_sid: str
    timestamp: int
    provider: str = "infoflow"
    group_subject: str | None = None
    was_mentioned: bool | None = None
    group_system_prompt: str | None = None
    mention_ids: MentionIds = field(default_factory=MentionIds)


class ChannelRuntime(Protocol):
    def resolve_route(
        self, *, account_id: str, peer_kind: ChatType, peer_id: str
    ) -> AgentRoute: ...

    async def record_inbound(self, route: AgentRoute, ctx: InboundContext) -> None: ...

    async def dispatch_reply(
        self,
        route: AgentRoute,
        ctx: InboundContext,
        *,
        deliver: DeliverFn,
        on_error: ErrorFn,
    ) -> None: ...
