from __future__ import annotations

import json
from typing import Any, Mapping

from notiload.config import NotificationConfig


def ws_message(index: int, message_type: str = "test") -> str:
    return json.dumps({"type": message_type, "content": f"Message {index}"})


def ws_messages(count: int, message_type: str = "test") -> list[str]:
    return [ws_message(i, message_type) for i in range(count)]


def notification_body(notification: NotificationConfig) -> Mapping[str, Any]:
    return {
        "type": notification.type,
        "recipient": notification.recipient,
        "subject": notification.subject,
        "content": notification.content,
    }
