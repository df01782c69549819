"""
Chat message helpers.

Clients send messages in several shapes:
    {"role": "user", "content": "text"}
    {"role": "user", "content": [{"type": "text", "text": "..."}]}
    {"role": "user", "parts": [{"type": "text", "text": "..."}]}

These helpers extract plain text from any of them without raising.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

MODEL_ROLES = ("system", "user", "assistant")


def message_text(message: Any) -> str:
    """Return the plain text of one message, or "" if it has none."""
    if not isinstance(message, dict):
        return ""

    parts = message.get("parts")
    if isinstance(parts, list):
        return " ".join(
            str(p["text"])
            for p in parts
            if isinstance(p, dict) and p.get("type") == "text" and p.get("text")
        )

    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            str(p["text"]) for p in content if isinstance(p, dict) and p.get("text")
        )
    return ""


def latest_user_query(messages: Any) -> str:
    """Text of the most recent user-authored message, stripped; "" if none."""
    if not isinstance(messages, list):
        return ""

    for message in reversed(messages):
        if isinstance(message, dict) and message.get("role") == "user":
            return message_text(message).strip()
    return ""


def to_model_messages(messages: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Convert client messages into `{"role", "content"}` dicts for the model."""
    converted = []
    for message in messages:
        role = message.get("role")
        text = message_text(message)
        if role in MODEL_ROLES and text:
            converted.append({"role": role, "content": text})
    return converted
