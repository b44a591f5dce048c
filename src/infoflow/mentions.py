"""@mention detection over inbound group message bodies."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

from .model import AtItem, BodyItem, MentionIds


def _at_items(body: Iterable[BodyItem]) -> Iterator[AtItem]:
    for item in body:
        if isinstance(item, AtItem):
            yield item


def _parse_int(value: str) -> int | None:
    # plain ASCII digits only; int() would also take "+5" and "4_105"
    digits = value.strip()
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(digits)


def was_bot_mentioned(body: Sequence[BodyItem], bot_name: str | None) -> bool:
    """Return True if an @mention's display name matches ``bot_name``.

    Matching is exact after case folding; partial names never count. Without a
    configured bot name the bot is never considered mentioned.
    """
    if not bot_name:
        return False
    normalized = bot_name.lower()
    for item in _at_items(body):
        if item.display_name and item.display_name.lower() == normalized:
            return True
    return False


def match_watch_list(
    body: Sequence[BodyItem], watch_names: Sequence[str]
) -> str | None:
    """Return the first watch-list entry @mentioned in ``body``.

    Each @mention is tested by user id, then robot id, then display name.
    The first mention in body order wins and the watch entry is returned as
    configured, not as it appeared in the message.
    """
    if not watch_names:
        return None
    by_lower = [(name.lower(), name) for name in watch_names]
    by_number = [(_parse_int(name), name) for name in watch_names]
    for item in _at_items(body):
        if item.human_id:
            human = item.human_id.lower()
            for lowered, name in by_lower:
                if lowered == human:
                    return name
        if item.agent_id is not None:
            for number, name in by_number:
                if number is not None and number == item.agent_id:
                    return name
        if item.display_name:
            display = item.display_name.lower()
            for lowered, name in by_lower:
                if lowered == display:
                    return name
    return None


def extract_mention_ids(
    body: Sequence[BodyItem], bot_name: str | None = None
) -> MentionIds:
    """Collect the user and robot ids @mentioned in ``body``, minus the bot."""
    normalized_bot = bot_name.lower() if bot_name else None
    user_ids: list[str] = []
    seen_users: set[str] = set()
    agent_ids: list[int] = []
    seen_agents: set[int] = set()
    for item in _at_items(body):
        if item.agent_id is not None:
            if (
                normalized_bot is not None
                and item.display_name
                and item.display_name.lower() == normalized_bot
            ):
                continue
            if item.agent_id not in seen_agents:
                seen_agents.add(item.agent_id)
                agent_ids.append(item.agent_id)
        elif item.human_id:
            key = item.human_id.lower()
            if key not in seen_users:
                seen_users.add(key)
                user_ids.append(item.human_id)
    return MentionIds(user_ids=tuple(user_ids), agent_ids=tuple(agent_ids))
