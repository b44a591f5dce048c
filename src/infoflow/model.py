"""Infoflow domain model types (body items, mention ids, content nodes, results)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, TypeAlias

ChatType: TypeAlias = Literal["direct", "group"]

ReplyMode: TypeAlias = Literal[
    "ignore",
    "record",
    "mention-only",
    "mention-and-watch",
    "proactive",
]

ContentType: TypeAlias = Literal["text", "markdown", "at", "at-agent", "link"]

AT_ALL = "all"


@dataclass(frozen=True, slots=True)
class TextItem:
    content: str = ""


@dataclass(frozen=True, slots=True)
class LinkItem:
    label: str | None = None


@dataclass(frozen=True, slots=True)
class AtItem:
    """An @mention fragment.

    ``human_id`` (a user name) and ``agent_id`` (a robot id) are mutually
    exclusive; ``display_name`` may come with either.
    """

    display_name: str | None = None
    human_id: str | None = None
    agent_id: int | None = None

    def __post_init__(self) -> None:
        if self.human_id is not None and self.agent_id is not None:
            raise ValueError("AtItem cannot carry both human_id and agent_id")


BodyItem: TypeAlias = TextItem | LinkItem | AtItem


@dataclass(frozen=True, slots=True)
class MentionIds:
    user_ids: tuple[str, ...] = ()
    agent_ids: tuple[int, ...] = ()

    def is_empty(self) -> bool:
        return not self.user_ids and not self.agent_ids


@dataclass(frozen=True, slots=True)
class AtOptions:
    at_all: bool = False
    at_user_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContentNode:
    type: ContentType
    content: str


@dataclass(frozen=True, slots=True)
class SendResult:
    ok: bool
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class StatusPatch:
    last_inbound_at: int | None = None
    last_outbound_at: int | None = None


@dataclass(frozen=True, slots=True)
class InboundEvent:
    from_user: str
    text: str
    chat_type: ChatType
    group_id: int | None = None
    sender_name: str | None = None
    was_mentioned: bool = False
    message_id: str | None = None
    timestamp: int | None = None
    raw_text: str | None = None
    body_items: tuple[BodyItem, ...] = ()
    mention_ids: MentionIds = field(default_factory=MentionIds)

    @property
    def is_group(self) -> bool:
        return self.chat_type == "group"
