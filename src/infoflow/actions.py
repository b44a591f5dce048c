"""The agent's ``send`` message action, with @all / @user support in groups."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .config import ConfigError
from .logging import get_logger
from .model import ContentNode
from .outbound import build_mention_plan, format_prefix, mention_nodes
from .runtime import SendFn
from .settings import InfoflowSettings, resolve_account
from .targets import is_group_target, normalize_target

logger = get_logger(__name__)

SUPPORTED_ACTIONS = ("send",)


def _read_str(params: Mapping[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return value


def _read_flag(params: Mapping[str, Any], key: str) -> bool:
    value = params.get(key)
    return value is True or value == "true"


def _split_ids(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def build_send_contents(
    *,
    to: str,
    message: str,
    at_all: bool = False,
    mention_user_ids: tuple[str, ...] = (),
    media_url: str | None = None,
) -> list[ContentNode]:
    contents: list[ContentNode] = []
    text = message
    if is_group_target(to):
        plan = build_mention_plan(
            at_all=at_all,
            explicit_user_ids=mention_user_ids,
            text=message,
            known_ids=None,
        )
        contents.extend(mention_nodes(plan))
        text = format_prefix(plan) + message
    if text.strip():
        contents.append(ContentNode(type="markdown", content=text))
    if media_url:
        contents.append(ContentNode(type="link", content=media_url))
    return contents


async def handle_send_action(
    action: str,
    params: Mapping[str, Any],
    *,
    settings: InfoflowSettings,
    send: SendFn,
    account_id: str | None = None,
) -> dict[str, Any]:
    if action not in SUPPORTED_ACTIONS:
        raise ValueError(f"Action {action!r} is not supported for Infoflow.")

    account = resolve_account(settings, account_id)
    if not account.configured:
        raise ConfigError("Infoflow app_key/app_secret not configured.")

    raw_to = _read_str(params, "to")
    to = normalize_target(raw_to) if raw_to else None
    if not to:
        raise ValueError("send requires a target (to).")

    at_all = _read_flag(params, "at_all")
    mention_user_ids = _split_ids(_read_str(params, "mention_user_ids"))
    contents = build_send_contents(
        to=to,
        message=_read_str(params, "message") or "",
        at_all=at_all,
        mention_user_ids=mention_user_ids,
        media_url=_read_str(params, "media"),
    )
    if not contents:
        raise ValueError("send requires text or media")

    logger.debug(
        "infoflow.action.send",
        to=to,
        at_all=at_all,
        mention_user_ids=list(mention_user_ids),
    )
    result = await send(to, contents)

    payload: dict[str, Any] = {
        "ok": result.ok,
        "channel": "infoflow",
        "to": to,
        "message_id": result.message_id or ("sent" if result.ok else "failed"),
    }
    if result.error:
        payload["error"] = result.error
    return payload
