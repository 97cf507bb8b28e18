"""
llm/prompt_builder.py — Message list assembly for the chat model.

Order is fixed:
  1. SYSTEM  — the rolling summary if there is one, else the default persona
  2. HISTORY — the session's turns, oldest first
  3. USER    — the new message, stripped and truncated

The summary replaces the persona rather than extending it: once a
session has been compacted, the summary is the context that matters.
"""
from relay.models import SessionRecord

SUMMARY_HEADER = "Conversation summary:\n"


def clean_message(message: str, max_chars: int) -> str:
    """Strip surrounding whitespace, then cut to max_chars."""
    return str(message).strip()[:max_chars]


def build_messages(record: SessionRecord, user_message: str, default_system_prompt: str) -> list[dict]:
    """
    Returns:
        [{"role": "system", ...}, *history, {"role": "user", "content": user_message}]

    user_message must already be cleaned (see clean_message).
    """
    if record.summary:
        system = {"role": "system", "content": f"{SUMMARY_HEADER}{record.summary}"}
    else:
        system = {"role": "system", "content": default_system_prompt}

    messages: list[dict] = [system]
    messages.extend(turn.as_message() for turn in record.history)
    messages.append({"role": "user", "content": user_message})
    return messages
