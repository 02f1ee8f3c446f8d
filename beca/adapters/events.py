"""Typed envelopes carried by the UI message bus.

Each wire message is a JSON object ``{"type": ..., ...payload}`` with
camelCase keys. Here every envelope is a dataclass with snake_case
fields; ``message_to_dict``/``dict_to_message`` convert at the edge.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any


@dataclass
class UIMessage:
    """Base envelope for both directions."""
    type: str = ""


# ── Host -> UI ──


@dataclass
class MessageAdded(UIMessage):
    type: str = "messageAdded"
    message: dict = field(default_factory=dict)


@dataclass
class TaskCreated(UIMessage):
    type: str = "taskCreated"
    task: dict = field(default_factory=dict)


@dataclass
class TaskUpdated(UIMessage):
    type: str = "taskUpdated"
    task: dict = field(default_factory=dict)


@dataclass
class Thinking(UIMessage):
    type: str = "thinking"
    value: bool = False


@dataclass
class FullUpdate(UIMessage):
    """Complete state snapshot; lets a (re)attached surface resynchronize."""
    type: str = "fullUpdate"
    state: dict = field(default_factory=dict)


@dataclass
class DiagnosticsUpdated(UIMessage):
    type: str = "diagnosticsUpdated"
    uri: str = ""
    diagnostics: list = field(default_factory=list)


@dataclass
class ReviewInsights(UIMessage):
    type: str = "reviewInsights"
    file_path: str = ""
    insights: list = field(default_factory=list)


@dataclass
class Notification(UIMessage):
    type: str = "notification"
    level: str = "info"  # "info", "warning", "error"
    text: str = ""


@dataclass
class ConfirmRequest(UIMessage):
    type: str = "confirmRequest"
    request_id: str = ""
    prompt: str = ""


@dataclass
class ConnectionStatus(UIMessage):
    type: str = "connectionStatus"
    connected: bool = False
    detail: str = ""


@dataclass
class ExploredFilesUpdated(UIMessage):
    type: str = "exploredFilesUpdated"
    files: list = field(default_factory=list)


# ── UI -> Host ──


@dataclass
class SendMessage(UIMessage):
    type: str = "sendMessage"
    text: str = ""


@dataclass
class NewTask(UIMessage):
    type: str = "newTask"


@dataclass
class ApproveEdit(UIMessage):
    type: str = "approveEdit"
    file_path: str = ""
    content: str = ""


@dataclass
class RejectEdit(UIMessage):
    type: str = "rejectEdit"
    file_path: str = ""


@dataclass
class ConfirmResponse(UIMessage):
    type: str = "confirmResponse"
    request_id: str = ""
    accepted: bool = False


# Map of wire type strings to dataclass constructors
_MESSAGE_MAP: dict[str, type[UIMessage]] = {
    "messageAdded": MessageAdded,
    "taskCreated": TaskCreated,
    "taskUpdated": TaskUpdated,
    "thinking": Thinking,
    "fullUpdate": FullUpdate,
    "diagnosticsUpdated": DiagnosticsUpdated,
    "reviewInsights": ReviewInsights,
    "notification": Notification,
    "confirmRequest": ConfirmRequest,
    "connectionStatus": ConnectionStatus,
    "exploredFilesUpdated": ExploredFilesUpdated,
    "sendMessage": SendMessage,
    "newTask": NewTask,
    "approveEdit": ApproveEdit,
    "rejectEdit": RejectEdit,
    "confirmResponse": ConfirmResponse,
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def message_to_dict(message: UIMessage) -> dict[str, Any]:
    """Convert a typed envelope to a plain camelCase dict for JSON."""
    d: dict[str, Any] = {}
    for f in message.__dataclass_fields__:
        val = getattr(message, f)
        if val is not None:
            d[_to_camel(f)] = val
    return d


def dict_to_message(data: dict[str, Any]) -> UIMessage:
    """Convert a wire dict to its typed envelope.

    Unknown types yield a bare ``UIMessage`` carrying just the type, so
    callers can log and ignore them.
    """
    message_type = str(data.get("type", ""))
    cls = _MESSAGE_MAP.get(message_type, UIMessage)
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered: dict[str, Any] = {}
    for key, value in data.items():
        name = _to_snake(key)
        if name in valid_fields:
            filtered[name] = value
    filtered["type"] = message_type
    return cls(**filtered)
