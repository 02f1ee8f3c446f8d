"""Tracks the single current task of a conversation.

A task walks five fixed phases. Progress is inferred from keywords in
each assistant reply; it is a UX signal only and never gates backend
calls. Every ``advance`` that changes at least one step status emits
exactly one ``taskUpdated`` snapshot through the event callback.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import EventCallback, fire_event
from .models import StepStatus, Task, TaskStatus

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100


@dataclass(frozen=True)
class AdvanceRule:
    """Keywords that mark ``completes`` done and start the step after it."""
    completes: int
    keywords: tuple[str, ...]


# Ordered; several rules may fire on one reply.
ADVANCE_RULES: tuple[AdvanceRule, ...] = (
    AdvanceRule(1, ("analyzing", "understanding")),
    AdvanceRule(2, ("exploring", "found")),
    AdvanceRule(3, ("creating", "modifying", "editing")),
    AdvanceRule(4, ("testing", "verified")),
    AdvanceRule(5, ("summary", "next steps", "completed")),
)

_STATUS_RANK = {
    StepStatus.PENDING: 0,
    StepStatus.IN_PROGRESS: 1,
    StepStatus.COMPLETED: 2,
}


class TaskStateMachine:
    """Sole owner of the "current task" state.

    States: no task -> active -> completed, and back to no task on a
    confirmed reset. Step statuses only move forward
    (pending -> in-progress -> completed); a rule that completes step N
    first completes any earlier step still open, so a later phase is
    never done while an earlier one is not.
    """

    def __init__(self, event_callback: EventCallback | None = None) -> None:
        self._event_callback = event_callback
        self._task: Task | None = None

    @property
    def current_task(self) -> Task | None:
        return self._task

    def ensure_task(self, user_request: str) -> tuple[Task, bool]:
        """Create the current task if there is none.

        Returns ``(task, created)``. Idempotent while a task exists.
        """
        if self._task is not None:
            return self._task, False

        task = Task(title=(user_request or "")[:MAX_TITLE_LENGTH])
        task.step(1).status = StepStatus.IN_PROGRESS
        self._task = task
        logger.info("Task created id=%s title=%r", task.id, task.title[:40])
        self._emit("taskCreated")
        return task, True

    def advance(self, response_text: str) -> bool:
        """Apply keyword rules to a reply. Returns True if anything changed."""
        task = self._task
        if task is None or not isinstance(response_text, str):
            return False

        content = response_text.lower()
        changed = False
        for rule in ADVANCE_RULES:
            if not any(keyword in content for keyword in rule.keywords):
                continue
            for ordinal in range(1, rule.completes + 1):
                changed |= self._move(task, ordinal, StepStatus.COMPLETED)
            if rule.completes < len(task.steps):
                changed |= self._move(task, rule.completes + 1, StepStatus.IN_PROGRESS)

        if all(step.status is StepStatus.COMPLETED for step in task.steps):
            if task.status is not TaskStatus.COMPLETED:
                task.status = TaskStatus.COMPLETED
                changed = True
                logger.info("Task completed id=%s", task.id)

        if changed:
            self._emit("taskUpdated")
        return changed

    def reset(self) -> None:
        """Discard the current task. Callers must have confirmed with the user."""
        if self._task is not None:
            logger.info("Task discarded id=%s", self._task.id)
        self._task = None

    def _move(self, task: Task, ordinal: int, target: StepStatus) -> bool:
        step = task.step(ordinal)
        if step.status is StepStatus.FAILED:
            return False
        if _STATUS_RANK[step.status] >= _STATUS_RANK[target]:
            return False
        logger.debug(
            "Task step id=%s step=%d %s -> %s",
            task.id, ordinal, step.status.value, target.value,
        )
        step.status = target
        return True

    def _emit(self, message_type: str) -> None:
        if self._task is None:
            return
        fire_event(
            self._event_callback,
            {"type": message_type, "task": self._task.to_dict()},
        )
