"""Normalization of decrypted webhook payloads into :class:`InboundEvent`.

Infoflow payloads spell the same field several ways depending on message
kind and API version. Each field below is read through an ordered chain of
``(source, key)`` attempts; the first non-null value wins. Group payloads
have three sources: the top-level ``root``, the nested ``message`` object and
its ``header``.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from typing import Any

import msgspec

from .logging import get_logger
from .mentions import extract_mention_ids, was_bot_mentioned
from .model import AtItem, BodyItem, InboundEvent, LinkItem, MentionIds, TextItem

logger = get_logger(__name__)

FieldChain = tuple[tuple[str, str], ...]

PRIVATE_FROM_USER: FieldChain = (
    ("root", "FromUserId"),
    ("root", "fromuserid"),
    ("root", "from"),
)
PRIVATE_CONTENT: FieldChain = (
    ("root", "Content"),
    ("root", "content"),
    ("root", "text"),
    ("root", "mes"),
)
PRIVATE_SENDER_NAME: FieldChain = (("root", "FromUserName"), ("root", "username"))
PRIVATE_MESSAGE_ID: FieldChain = (
    ("root", "MsgId"),
    ("root", "msgid"),
    ("root", "messageid"),
)
# seconds
PRIVATE_CREATE_TIME: FieldChain = (("root", "CreateTime"), ("root", "createtime"))

GROUP_FROM_USER: FieldChain = (
    ("header", "fromuserid"),
    ("root", "fromuserid"),
    ("root", "from"),
)
GROUP_MESSAGE_ID: FieldChain = (
    ("header", "messageid"),
    ("header", "msgid"),
    ("root", "MsgId"),
)
GROUP_ID: FieldChain = (("root", "groupid"), ("header", "groupid"))
# milliseconds
GROUP_TIME: FieldChain = (("root", "time"), ("header", "servertime"))
GROUP_SENDER_NAME: FieldChain = (
    ("header", "username"),
    ("header", "nickname"),
    ("root", "username"),
)
GROUP_BODY: FieldChain = (("message", "body"), ("root", "body"))
GROUP_FALLBACK_TEXT: FieldChain = (("root", "content"), ("root", "text"))


class _RawBodyItem(msgspec.Struct, forbid_unknown_fields=False):
    type: str | None = None
    content: str | None = None
    label: str | None = None
    # ids arrive as strings or numbers depending on the client
    name: str | int | None = None
    userid: str | int | None = None
    robotid: int | str | None = None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def pick(sources: Mapping[str, Mapping[str, Any]], chain: FieldChain) -> Any:
    for source, key in chain:
        value = sources.get(source, {}).get(key)
        if value is not None:
            return value
    return None


def _to_str(value: str | int | None) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    return str(value) or None


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number)


def _now_ms() -> int:
    return int(time.time() * 1000)


def decode_body_item(raw: Any) -> BodyItem | None:
    try:
        item = msgspec.convert(raw, type=_RawBodyItem, strict=False)
    except msgspec.ValidationError as exc:
        logger.debug("infoflow.inbound.bad_body_item", error=str(exc))
        return None
    kind = (item.type or "").upper()
    if kind == "TEXT":
        return TextItem(content=item.content or "")
    if kind == "LINK":
        return LinkItem(label=item.label)
    if kind == "AT":
        display_name = _to_str(item.name)
        agent_id = _to_int(item.robotid)
        if agent_id is not None:
            return AtItem(display_name=display_name, agent_id=agent_id)
        return AtItem(display_name=display_name, human_id=_to_str(item.userid))
    return None


def decode_body(raw: Any) -> tuple[BodyItem, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return ()
    items: list[BodyItem] = []
    for entry in raw:
        item = decode_body_item(entry)
        if item is not None:
            items.append(item)
    return tuple(items)


def plain_text(body: Sequence[BodyItem]) -> str:
    """Message text without @mentions, used as the command body."""
    parts: list[str] = []
    for item in body:
        if isinstance(item, TextItem):
            parts.append(item.content)
        elif isinstance(item, LinkItem):
            if item.label:
                parts.append(f" {item.label} ")
    return "".join(parts).strip()


def raw_text(body: Sequence[BodyItem]) -> str:
    """Message text with @mentions rendered as ``@name``."""
    parts: list[str] = []
    for item in body:
        if isinstance(item, TextItem):
            parts.append(item.content)
        elif isinstance(item, LinkItem):
            if item.label:
                parts.append(f" {item.label} ")
        elif isinstance(item, AtItem):
            if item.display_name:
                parts.append(f"@{item.display_name} ")
    return "".join(parts).strip()


def format_mention_hint(mention_ids: MentionIds) -> str | None:
    if mention_ids.is_empty():
        return None
    lines = ["[Mentioned in this message; write @id in your reply to notify them]"]
    if mention_ids.user_ids:
        lines.append(f"users: {', '.join(mention_ids.user_ids)}")
    if mention_ids.agent_ids:
        lines.append(
            f"bots: {', '.join(str(agent_id) for agent_id in mention_ids.agent_ids)}"
        )
    return "\n".join(lines)


def normalize_private(msg_data: Mapping[str, Any]) -> InboundEvent | None:
    sources = {"root": msg_data}
    from_user = str(pick(sources, PRIVATE_FROM_USER) or "")
    text = str(pick(sources, PRIVATE_CONTENT) or "")
    sender_name = str(pick(sources, PRIVATE_SENDER_NAME) or from_user)
    message_id = pick(sources, PRIVATE_MESSAGE_ID)
    create_time = _to_int(pick(sources, PRIVATE_CREATE_TIME))
    if not from_user or not text.strip():
        logger.debug("infoflow.private.dropped", from_user=from_user)
        return None
    return InboundEvent(
        from_user=from_user,
        text=text,
        chat_type="direct",
        sender_name=sender_name,
        message_id=str(message_id) if message_id is not None else None,
        timestamp=create_time * 1000 if create_time is not None else _now_ms(),
    )


def normalize_group(
    msg_data: Mapping[str, Any], *, bot_name: str | None
) -> InboundEvent | None:
    message = _as_mapping(msg_data.get("message"))
    sources = {
        "root": msg_data,
        "message": message,
        "header": _as_mapping(message.get("header")),
    }
    from_user = str(pick(sources, GROUP_FROM_USER) or "")
    message_id = pick(sources, GROUP_MESSAGE_ID)
    group_id = _to_int(pick(sources, GROUP_ID))
    sent_at = _to_int(pick(sources, GROUP_TIME))
    if not from_user:
        logger.debug("infoflow.group.dropped", reason="no_sender", group_id=group_id)
        return None

    body = decode_body(pick(sources, GROUP_BODY))
    text = plain_text(body) or str(pick(sources, GROUP_FALLBACK_TEXT) or "")
    if not text:
        logger.debug(
            "infoflow.group.dropped",
            reason="empty_text",
            from_user=from_user,
            group_id=group_id,
        )
        return None

    return InboundEvent(
        from_user=from_user,
        text=text,
        raw_text=raw_text(body) or text,
        chat_type="group",
        group_id=group_id,
        sender_name=str(pick(sources, GROUP_SENDER_NAME) or from_user),
        was_mentioned=was_bot_mentioned(body, bot_name),
        message_id=str(message_id) if message_id is not None else None,
        timestamp=sent_at if sent_at is not None else _now_ms(),
        body_items=body,
        mention_ids=extract_mention_ids(body, bot_name),
    )
