"""Outbound replies: @mention resolution, prefixing and chunked sending."""

from __future__ import annotations

import re
import time
from collections.abc import Sequence
from dataclasses import dataclass

import anyio

from .follow_up import FollowUpTracker
from .logging import format_error, get_logger
from .model import AT_ALL, AtOptions, ContentNode, MentionIds, StatusPatch
from .prompts import is_no_reply
from .runtime import SendFn, StatusSink
from .targets import is_group_target, parse_group_id

logger = get_logger(__name__)

TEXT_CHUNK_LIMIT = 4000

MENTION_TOKEN_RE = re.compile(r"@([\w.]+)", re.ASCII)


@dataclass(frozen=True, slots=True)
class MentionPlan:
    at_user_ids: tuple[str, ...] = ()
    at_agent_ids: tuple[int, ...] = ()
    mention_all: bool = False
    explicit_user_ids: tuple[str, ...] = ()


def _mention_lookup(known_ids: MentionIds) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for user_id in known_ids.user_ids:
        lookup[user_id.lower()] = "user"
    for agent_id in known_ids.agent_ids:
        lookup[str(agent_id).lower()] = "agent"
    return lookup


def build_mention_plan(
    *,
    at_all: bool,
    explicit_user_ids: Sequence[str],
    text: str,
    known_ids: MentionIds | None,
    is_group: bool = True,
) -> MentionPlan:
    """Merge caller-requested mentions with ``@id`` tokens found in ``text``.

    Tokens are only resolved for group targets and only against ids seen in
    the inbound message, so ``@id`` in free text never notifies strangers.
    """
    explicit = () if at_all else tuple(explicit_user_ids)
    user_ids = list(explicit)
    agent_ids: list[int] = []
    lookup = _mention_lookup(known_ids) if known_ids is not None else {}
    if is_group and lookup:
        for match in MENTION_TOKEN_RE.finditer(text):
            token = match.group(1)
            kind = lookup.get(token.lower())
            if kind == "user":
                lowered = token.lower()
                if not any(existing.lower() == lowered for existing in user_ids):
                    user_ids.append(token)
            elif kind == "agent":
                try:
                    agent_id = int(token)
                except ValueError:
                    continue
                if agent_id not in agent_ids:
                    agent_ids.append(agent_id)
    return MentionPlan(
        at_user_ids=tuple(user_ids),
        at_agent_ids=tuple(agent_ids),
        mention_all=at_all,
        explicit_user_ids=explicit,
    )


def format_prefix(plan: MentionPlan) -> str:
    if plan.mention_all:
        return "@all "
    if plan.explicit_user_ids:
        return " ".join(f"@{user_id}" for user_id in plan.explicit_user_ids) + " "
    return ""


def _break_point(window: str) -> int | None:
    newline = window.rfind("\n")
    if newline > 0:
        return newline + 1
    for idx in range(len(window) - 1, 0, -1):
        if window[idx].isspace():
            return idx + 1
    return None


def chunk_text(text: str, limit: int) -> list[str]:
    """Split ``text`` into contiguous pieces of at most ``limit`` characters.

    Breaks after the last newline in each window, else after the last
    whitespace, else mid-word. Joining the chunks gives back ``text``.
    """
    if limit <= 0:
        raise ValueError("chunk limit must be positive")
    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    start = 0
    while len(text) - start > limit:
        window = text[start : start + limit]
        cut = _break_point(window) or limit
        chunks.append(text[start : start + cut])
        start += cut
    if start < len(text):
        chunks.append(text[start:])
    return chunks


def mention_nodes(plan: MentionPlan) -> list[ContentNode]:
    nodes: list[ContentNode] = []
    if plan.mention_all:
        nodes.append(ContentNode(type="at", content=AT_ALL))
    elif plan.at_user_ids:
        nodes.append(ContentNode(type="at", content=",".join(plan.at_user_ids)))
    if plan.at_agent_ids:
        nodes.append(
            ContentNode(
                type="at-agent",
                content=",".join(str(agent_id) for agent_id in plan.at_agent_ids),
            )
        )
    return nodes


def _now_ms() -> int:
    return int(time.time() * 1000)


class ReplyDispatcher:
    """Delivers agent replies to one target, one send call per chunk."""

    def __init__(
        self,
        *,
        send: SendFn,
        to: str,
        account_id: str,
        at_options: AtOptions | None = None,
        mention_ids: MentionIds | None = None,
        status_sink: StatusSink | None = None,
        follow_up: FollowUpTracker | None = None,
        chunk_limit: int = TEXT_CHUNK_LIMIT,
    ) -> None:
        self._send = send
        self.to = to
        self.account_id = account_id
        self.at_options = at_options
        self.mention_ids = mention_ids
        self._status_sink = status_sink
        self._follow_up = follow_up
        self._chunk_limit = chunk_limit
        self.is_group = is_group_target(to)
        self._group_id = parse_group_id(to)
        self._lock = anyio.Lock()

    def plan(self, text: str) -> MentionPlan:
        at_options = self.at_options or AtOptions()
        return build_mention_plan(
            at_all=at_options.at_all,
            explicit_user_ids=at_options.at_user_ids,
            text=text,
            known_ids=self.mention_ids,
            is_group=self.is_group,
        )

    def build_messages(self, text: str) -> list[list[ContentNode]]:
        plan = self.plan(text)
        message_text = text
        if self.is_group and self.at_options is not None:
            message_text = format_prefix(plan) + text
        messages: list[list[ContentNode]] = []
        for index, chunk in enumerate(chunk_text(message_text, self._chunk_limit)):
            contents: list[ContentNode] = []
            if index == 0 and self.is_group:
                contents.extend(mention_nodes(plan))
            contents.append(ContentNode(type="markdown", content=chunk))
            messages.append(contents)
        return messages

    async def deliver(self, text: str) -> None:
        logger.debug("infoflow.deliver", to=self.to, length=len(text))
        if not text.strip():
            return
        if is_no_reply(text):
            logger.debug("infoflow.deliver.no_reply", to=self.to)
            return
        messages = self.build_messages(text)
        # chunks of one reply go out back to back
        async with self._lock:
            await self._send_all(messages)

    async def _send_all(self, messages: list[list[ContentNode]]) -> None:
        for index, contents in enumerate(messages):
            try:
                result = await self._send(self.to, contents)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "infoflow.send.error",
                    to=self.to,
                    account_id=self.account_id,
                    chunk=index,
                    error=format_error(exc),
                    error_type=exc.__class__.__name__,
                )
                continue
            if result.ok:
                self._on_sent()
            else:
                logger.error(
                    "infoflow.send.failed",
                    to=self.to,
                    account_id=self.account_id,
                    chunk=index,
                    error=result.error,
                )

    def on_error(self, err: BaseException) -> None:
        logger.error(
            "infoflow.reply.error",
            to=self.to,
            account_id=self.account_id,
            error=format_error(err),
        )

    def _on_sent(self) -> None:
        if self._status_sink is not None:
            self._status_sink(StatusPatch(last_outbound_at=_now_ms()))
        if self._follow_up is not None and self._group_id is not None:
            self._follow_up.record_reply(self._group_id)
