"""Core data models for the coordination engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports. ``to_dict`` methods produce the camelCase
shapes the rendering surface consumes.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class RequestKind(str, Enum):
    """Trigger class of a unit of backend work.

    Debounce timers and rate limits are shared per kind.
    """
    DIAGNOSTICS = "diagnostics"
    HOVER = "hover"
    COMPLETION = "completion"
    REVIEW = "review"


class Severity(str, Enum):
    ERROR = "Error"
    WARNING = "Warning"
    INFORMATION = "Information"
    HINT = "Hint"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class EntryRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


def _make_id() -> str:
    return str(uuid.uuid4())[:8]


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RequestKey:
    """Identity used to dedupe, cache and debounce backend work."""
    document: str
    kind: RequestKind
    # Only set for hover lookups.
    symbol: str | None = None

    def __str__(self) -> str:
        if self.symbol is not None:
            return f"{self.kind.value}:{self.document}:{self.symbol}"
        return f"{self.kind.value}:{self.document}"


@dataclass
class CacheEntry:
    key: RequestKey
    value: Any
    created_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.created_at < ttl


@dataclass
class Diagnostic:
    """An assistant finding anchored to a zero-based line."""
    line: int
    message: str
    severity: Severity = Severity.WARNING
    source: str = "assistant"

    def to_dict(self) -> dict[str, Any]:
        return {
            "line": self.line,
            "message": self.message,
            "severity": self.severity.value,
            "source": self.source,
        }


@dataclass
class CompletionCandidate:
    label: str
    insert_text: str
    documentation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "insertText": self.insert_text,
            "documentation": self.documentation,
        }


@dataclass
class CodeBlock:
    language: str
    code: str

    def to_dict(self) -> dict[str, Any]:
        return {"language": self.language, "code": self.code}


# Fixed phases every task walks through, in order.
TASK_STEP_TITLES: tuple[str, ...] = (
    "Analyze requirements",
    "Explore codebase",
    "Make necessary changes",
    "Test changes",
    "Summarize and provide next steps",
)


@dataclass
class TaskStep:
    ordinal: int
    title: str
    status: StepStatus = StepStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.ordinal, "title": self.title, "status": self.status.value}


@dataclass
class Task:
    """A tracked multi-phase unit of conversation progress."""
    title: str
    steps: list[TaskStep] = field(default_factory=lambda: [
        TaskStep(ordinal=i, title=title)
        for i, title in enumerate(TASK_STEP_TITLES, start=1)
    ])
    status: TaskStatus = TaskStatus.ACTIVE
    id: str = field(default_factory=_make_id)
    created_at: str = field(default_factory=_utcnow_iso)

    def step(self, ordinal: int) -> TaskStep:
        return self.steps[ordinal - 1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "steps": [s.to_dict() for s in self.steps],
            "createdAt": self.created_at,
            "status": self.status.value,
        }


@dataclass
class ConversationEntry:
    role: EntryRole
    content: str
    id: str = field(default_factory=_make_id)
    timestamp: str = field(default_factory=_utcnow_iso)
    code_blocks: list[CodeBlock] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.code_blocks:
            d["codeBlocks"] = [b.to_dict() for b in self.code_blocks]
        return d
