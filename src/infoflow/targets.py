from __future__ import annotations

import re

GROUP_TARGET_RE = re.compile(r"^group:(\d+)$", re.IGNORECASE)
_CHANNEL_PREFIX_RE = re.compile(r"^infoflow:", re.IGNORECASE)


def group_target(group_id: int | str) -> str:
    return f"group:{group_id}"


def is_group_target(to: str) -> bool:
    return GROUP_TARGET_RE.match(to) is not None


def parse_group_id(to: str) -> int | None:
    match = GROUP_TARGET_RE.match(to)
    if match is None:
        return None
    return int(match.group(1))


def normalize_target(raw: str) -> str | None:
    """Normalize ``infoflow:group:123``, ``GROUP:123`` or ``user`` to a send target."""
    value = _CHANNEL_PREFIX_RE.sub("", raw.strip(), count=1).strip()
    if not value:
        return None
    group_id = parse_group_id(value)
    if group_id is not None:
        return group_target(group_id)
    return value
