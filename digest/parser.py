from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
from pathlib import Path
import re
from typing import Any

from digest.models import ChatMessage

logger = logging.getLogger(__name__)

# Telegram Desktop writes sender ids as "user123456" or "channel123456".
FROM_ID_RE = re.compile(r"^(?:user|channel|chat)?(?P<id>-?\d+)$")


@dataclass(slots=True)
class ExportedChat:
    chat_id: int
    name: str
    messages: list[ChatMessage] = field(default_factory=list)
    skipped: int = 0


def _flatten_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        parts: list[str] = []
        for entity in raw:
            if isinstance(entity, str):
                parts.append(entity)
            elif isinstance(entity, dict):
                parts.append(str(entity.get("text", "")))
        return "".join(parts)
    return ""


def _parse_user_id(raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    match = FROM_ID_RE.match(str(raw or "").strip())
    return int(match.group("id")) if match else 0


def parse_export_file(path: str | Path, chat_id: int | None = None) -> ExportedChat:
    file_path = Path(path)
    with file_path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)

    if not isinstance(payload, dict) or not isinstance(payload.get("messages"), list):
        raise ValueError(f"Not a Telegram export: {file_path}")

    chat = ExportedChat(
        chat_id=chat_id if chat_id is not None else int(payload.get("id", 0)),
        name=str(payload.get("name") or file_path.parent.name),
    )

    for raw in payload["messages"]:
        message = _parse_message(chat.chat_id, raw)
        if message is None:
            chat.skipped += 1
            continue
        chat.messages.append(message)

    chat.messages.sort(key=lambda msg: msg.timestamp)
    logger.info(
        "Parsed %d messages from %s (%d skipped)", len(chat.messages), file_path.name, chat.skipped
    )
    return chat


def _parse_message(chat_id: int, raw: Any) -> ChatMessage | None:
    if not isinstance(raw, dict) or raw.get("type") != "message":
        return None

    text = _flatten_text(raw.get("text")).strip()
    if not text:
        return None

    try:
        timestamp = datetime.fromisoformat(str(raw["date"]))
    except (KeyError, ValueError):
        logger.debug("Skipping message without a valid date: %s", raw.get("id"))
        return None

    message_id = raw.get("id")
    return ChatMessage(
        chat_id=chat_id,
        user_id=_parse_user_id(raw.get("from_id")),
        username=str(raw.get("from") or "Unknown"),
        text=text,
        timestamp=timestamp,
        message_id=int(message_id) if isinstance(message_id, int) else None,
    )
