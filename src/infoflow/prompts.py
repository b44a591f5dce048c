"""Group system prompts handed to the agent alongside a gated message.

Every prompt that lets the agent stay quiet names the ``NO_REPLY`` sentinel;
the reply pipeline drops a reply consisting of just that text.
"""

from __future__ import annotations

NO_REPLY = "NO_REPLY"

PROMPT_SEPARATOR = "\n\n"

_SILENCE_RULE = (
    "If the message is ambiguous, you lack context, or you are not confident, "
    f'reply with exactly "{NO_REPLY}" (nothing else).'
)


def build_watch_mention_prompt(mentioned: str) -> str:
    return " ".join(
        [
            f"Someone in this group mentioned @{mentioned}.",
            "You were not directly addressed, but you may be able to help.",
            "Evaluate the message carefully:",
            "- If you clearly understand the question and can give a useful, "
            "accurate answer, reply helpfully.",
            f"- {_SILENCE_RULE}",
            "Err on the side of staying silent; only reply when you can "
            "genuinely add value.",
        ]
    )


def build_follow_up_prompt() -> str:
    return " ".join(
        [
            "You replied in this group a moment ago and this message was not "
            "addressed to you.",
            "If it continues the topic you were discussing or asks you "
            "something, reply.",
            "If it is unrelated chatter between other members, "
            f'reply with exactly "{NO_REPLY}" (nothing else).',
        ]
    )


def build_proactive_prompt() -> str:
    return " ".join(
        [
            "You are watching this group and were not mentioned.",
            "Reply only if the message asks a question you can answer well "
            "or raises something you can meaningfully help with.",
            f"Otherwise reply with exactly \"{NO_REPLY}\" (nothing else).",
        ]
    )


def join_prompts(*parts: str | None) -> str | None:
    kept = [part.strip() for part in parts if part and part.strip()]
    if not kept:
        return None
    return PROMPT_SEPARATOR.join(kept)


def is_no_reply(text: str | None) -> bool:
    return (text or "").strip() == NO_REPLY
