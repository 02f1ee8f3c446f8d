"""Interaction coordinator, the composition root of the host.

Wires editor events and UI actions to the scheduler, the backend client,
the extractors and the task state machine, and publishes every visible
state change on the UI message bus. One coordinator instance owns all
session state (conversation, current task, diagnostics, caches); nothing
here is module-global.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from beca.adapters.editor import DocumentSnapshot, EditorSurface, HostWindow
from beca.adapters.event_bus import UIMessageBus
from beca.adapters.events import (
    ApproveEdit,
    ConnectionStatus,
    DiagnosticsUpdated,
    ExploredFilesUpdated,
    MessageAdded,
    NewTask,
    RejectEdit,
    ReviewInsights,
    SendMessage,
    Thinking,
    UIMessage,
)
from beca.engine.client import BackendContext, BackendResponse, BecaClient
from beca.engine.config import BecaConfig
from beca.engine.errors import BackendError, EditApplicationError
from beca.engine.extractor import (
    extract_code_blocks,
    extract_completions,
    extract_diagnostics,
    extract_key_points,
)
from beca.engine.models import (
    CompletionCandidate,
    ConversationEntry,
    Diagnostic,
    EntryRole,
    RequestKey,
    RequestKind,
)
from beca.engine.scheduler import RequestScheduler
from beca.engine.task_tracker import TaskStateMachine

logger = logging.getLogger(__name__)

NEW_TASK_PROMPT = "Start a new task? This will clear the current conversation."
HOVER_HEADER = "### BECA Insights\n\n"

# Context windows sent with per-position lookups, in lines around the cursor.
COMPLETION_LINES_BEFORE = 10
COMPLETION_LINES_AFTER = 5
HOVER_CONTEXT_LINES = 5


def _require_success(operation: str, result: BackendResponse) -> str:
    if not result.success or not result.response:
        raise BackendError(operation, result.error or "empty response")
    return result.response


class InteractionCoordinator:
    """Single point wiring editor events and UI actions to backend work."""

    def __init__(
        self,
        config: BecaConfig,
        client: BecaClient,
        editor: EditorSurface,
        host: HostWindow,
        bus: UIMessageBus,
        scheduler: RequestScheduler | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._editor = editor
        self._host = host
        self._bus = bus
        self._scheduler = scheduler or RequestScheduler()
        self._tasks = TaskStateMachine(event_callback=bus.make_callback())
        self._history: list[ConversationEntry] = []
        self._explored_files: list[str] = []
        self._diagnostics: dict[str, list[Diagnostic]] = {}
        self._connected: bool | None = None
        # Trigger classes whose last backend call failed; reported once per outage.
        self._failing: set[RequestKind] = set()
        self._background: set[asyncio.Task[Any]] = set()
        bus.set_snapshot_provider(self.snapshot)

    @property
    def scheduler(self) -> RequestScheduler:
        return self._scheduler

    @property
    def tasks(self) -> TaskStateMachine:
        return self._tasks

    @property
    def conversation_history(self) -> list[ConversationEntry]:
        return list(self._history)

    @property
    def explored_files(self) -> list[str]:
        return list(self._explored_files)

    def snapshot(self) -> dict[str, Any]:
        """Full state, answerable at any time regardless of what was sent."""
        task = self._tasks.current_task
        return {
            "conversationHistory": [e.to_dict() for e in self._history],
            "currentTask": task.to_dict() if task else None,
            "exploredFiles": list(self._explored_files),
        }

    # ── UI actions ──

    async def run(self) -> None:
        """Consume UI messages in arrival order until the bus closes."""
        async for message in self._bus.inbound():
            try:
                await self.handle_ui_message(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("UI message handling failed type=%s", message.type)

    async def handle_ui_message(self, message: UIMessage) -> None:
        if isinstance(message, SendMessage):
            await self.handle_user_message(message.text)
        elif isinstance(message, NewTask):
            await self.start_new_task()
        elif isinstance(message, ApproveEdit):
            await self.apply_edit(message.file_path, message.content)
        elif isinstance(message, RejectEdit):
            self.reject_edit(message.file_path)
        else:
            logger.warning("Ignoring unsupported UI message type=%r", message.type)

    async def handle_user_message(self, text: str) -> None:
        if not text or not text.strip():
            return

        self._add_entry(ConversationEntry(role=EntryRole.USER, content=text))
        self._bus.post(Thinking(value=True))
        try:
            task, _ = self._tasks.ensure_task(text)
            context = BackendContext(metadata={
                "workspacePath": self._config.workspace_root,
                "workspaceName": self._config.workspace_name,
                "taskContext": task.to_dict(),
            })
            result = await self._client.send_message(text, context)
        finally:
            self._bus.post(Thinking(value=False))

        if result.success:
            content = result.response or "No response from BECA"
            self._add_entry(ConversationEntry(
                role=EntryRole.ASSISTANT,
                content=content,
                code_blocks=extract_code_blocks(content),
            ))
            self._tasks.advance(result.response)
        else:
            self._add_entry(ConversationEntry(
                role=EntryRole.ERROR,
                content=f"Error: {result.error or 'Unknown error occurred'}",
            ))

    async def apply_edit(self, file_path: str, content: str) -> bool:
        try:
            self._editor.write_file(file_path, content)
        except EditApplicationError as exc:
            self._host.notify("error", f"Failed to write {file_path}: {exc.reason}")
            self._add_entry(ConversationEntry(
                role=EntryRole.ERROR,
                content=f"Failed to apply changes to {file_path}: {exc.reason}",
            ))
            return False

        self._host.notify("info", f"Successfully wrote {file_path}")
        self._add_entry(ConversationEntry(
            role=EntryRole.SYSTEM,
            content=f"Applied changes to {file_path}",
        ))
        return True

    def reject_edit(self, file_path: str) -> None:
        logger.info("Edit rejected path=%s", file_path)
        self._host.notify("info", "Edit rejected")

    async def start_new_task(self) -> bool:
        """Discard the task and conversation, asking first if there is history."""
        if self._history and not await self._host.confirm(NEW_TASK_PROMPT):
            logger.info("New task declined")
            return False

        self._tasks.reset()
        self._history.clear()
        self._explored_files.clear()
        self._bus.broadcast_full_update()
        self._host.notify("info", "Started new task")
        return True

    def _add_entry(self, entry: ConversationEntry) -> None:
        self._history.append(entry)
        self._bus.post(MessageAdded(message=entry.to_dict()))

    def _note_explored(self, file_path: str) -> None:
        if file_path in self._explored_files:
            return
        self._explored_files.append(file_path)
        self._bus.post(ExploredFilesUpdated(files=list(self._explored_files)))

    def _report_failure(self, kind: RequestKind, reason: str) -> None:
        if kind in self._failing:
            return
        self._failing.add(kind)
        self._host.notify("warning", f"BECA {kind.value} unavailable: {reason}")

    def _report_success(self, kind: RequestKind) -> None:
        self._failing.discard(kind)

    # ── Editor events ──

    def on_document_opened(self, uri: str) -> None:
        self.schedule_diagnostics(uri)

    def on_document_changed(self, uri: str) -> None:
        if not self._config.auto_review:
            return
        self._scheduler.invalidate(RequestKey(uri, RequestKind.DIAGNOSTICS))
        self.schedule_diagnostics(uri)

    def on_document_saved(self, uri: str) -> asyncio.Task[list[str]] | None:
        """Re-analyze a saved document and start a save review when enabled."""
        self._scheduler.invalidate(RequestKey(uri, RequestKind.DIAGNOSTICS))
        self.schedule_diagnostics(uri)
        document = self._editor.get_document(uri)
        if document is None or not self._should_review(document):
            return None
        task = asyncio.get_running_loop().create_task(self.review_document(uri))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def on_document_closed(self, uri: str) -> None:
        if self._diagnostics.pop(uri, None) is not None:
            self._bus.post(DiagnosticsUpdated(uri=uri, diagnostics=[]))

    # ── Diagnostics ──

    def diagnostics_for(self, uri: str) -> list[Diagnostic]:
        return list(self._diagnostics.get(uri, []))

    def schedule_diagnostics(self, uri: str) -> bool:
        document = self._editor.get_document(uri)
        if document is None or document.scheme != "file" or document.is_dirty:
            return False
        key = RequestKey(uri, RequestKind.DIAGNOSTICS)
        self._scheduler.schedule_debounced(
            key,
            lambda: self._analyze_document(key),
            self._config.diagnostics_debounce_seconds,
        )
        return True

    async def _analyze_document(self, key: RequestKey) -> None:
        # Snapshot at dispatch time; later edits are not accounted for.
        document = self._editor.get_document(key.document)
        if document is None:
            logger.debug("Document closed before analysis uri=%s", key.document)
            return

        async def _fetch() -> str:
            self._note_explored(document.file_path)
            result = await self._client.get_diagnostics(
                document.text, document.language_id, document.file_path,
            )
            return _require_success("diagnostics", result)

        try:
            response = await self._scheduler.get_or_fetch(
                key, self._config.diagnostics_cache_ttl_seconds, _fetch,
            )
        except BackendError as exc:
            logger.warning("Diagnostics unavailable uri=%s: %s", key.document, exc.reason)
            self._report_failure(RequestKind.DIAGNOSTICS, exc.reason)
            return
        self._report_success(RequestKind.DIAGNOSTICS)

        if self._editor.get_document(key.document) is None:
            logger.debug("Document closed during analysis uri=%s", key.document)
            return

        diagnostics = extract_diagnostics(response, document.line_count)
        self._diagnostics[key.document] = diagnostics
        self._bus.post(DiagnosticsUpdated(
            uri=key.document,
            diagnostics=[d.to_dict() for d in diagnostics],
        ))
        logger.info(
            "Diagnostics updated uri=%s count=%d lines=%d",
            key.document, len(diagnostics), document.line_count,
        )

    # ── Completions ──

    async def provide_completions(
        self, uri: str, line: int, character: int,
    ) -> list[CompletionCandidate]:
        key = RequestKey(uri, RequestKind.COMPLETION)
        if not self._scheduler.admit_rate_limited(
            key, self._config.completion_min_interval_seconds,
        ):
            return []

        document = self._editor.get_document(uri)
        if document is None:
            return []
        prefix = document.line_at(line)[:character]
        if len(prefix.strip()) < self._config.completion_min_prefix_length:
            return []

        code = document.text_between(
            line - COMPLETION_LINES_BEFORE, line + COMPLETION_LINES_AFTER,
        )
        result = await self._client.get_suggestions(code, document.language_id, character)
        if not result.success or not result.response:
            logger.warning("Completions unavailable uri=%s: %s", uri, result.error)
            self._report_failure(RequestKind.COMPLETION, result.error or "empty response")
            return []
        self._report_success(RequestKind.COMPLETION)
        return extract_completions(result.response, self._config.max_suggestions)

    # ── Hover ──

    async def provide_hover(self, uri: str, line: int, character: int) -> str | None:
        document = self._editor.get_document(uri)
        if document is None:
            return None
        word = document.word_at(line, character)
        if not word or len(word) < self._config.hover_min_word_length:
            return None

        key = RequestKey(uri, RequestKind.HOVER, symbol=word)
        context = document.text_between(
            line - HOVER_CONTEXT_LINES, line + HOVER_CONTEXT_LINES,
        )

        async def _fetch() -> str:
            result = await self._client.get_hover_info(context, word, document.language_id)
            return _require_success("hover", result)

        try:
            response = await self._scheduler.get_or_fetch(
                key, self._config.hover_cache_ttl_seconds, _fetch,
            )
        except BackendError as exc:
            logger.warning("Hover unavailable uri=%s symbol=%s: %s", uri, word, exc.reason)
            self._report_failure(RequestKind.HOVER, exc.reason)
            return None
        self._report_success(RequestKind.HOVER)
        return HOVER_HEADER + response

    # ── Save review ──

    def _should_review(self, document: DocumentSnapshot) -> bool:
        return (
            self._config.auto_review
            and document.scheme == "file"
            and document.language_id in self._config.code_languages
        )

    async def review_document(self, uri: str) -> list[str]:
        document = self._editor.get_document(uri)
        if document is None:
            return []
        key = RequestKey(uri, RequestKind.REVIEW)

        async def _fetch() -> str:
            self._note_explored(document.file_path)
            result = await self._client.review_file(
                document.file_path, document.text, document.language_id,
            )
            return _require_success("review", result)

        try:
            # No caching: only dedupes reviews already in flight.
            response = await self._scheduler.get_or_fetch(key, 0.0, _fetch)
        except BackendError as exc:
            logger.warning("Save review unavailable uri=%s: %s", uri, exc.reason)
            self._report_failure(RequestKind.REVIEW, exc.reason)
            return []
        self._report_success(RequestKind.REVIEW)

        insights = extract_key_points(response, self._config.review_max_insights)
        if insights:
            self._bus.post(ReviewInsights(file_path=document.file_path, insights=insights))
            self._host.notify(
                "info",
                f"BECA found {len(insights)} suggestion(s) for {Path(document.file_path).name}",
            )
        return insights

    # ── Connection ──

    async def check_connection(self) -> bool:
        connected = await self._client.test_connection()
        previous = self._connected
        self._connected = connected
        if connected != previous:
            detail = "ready" if connected else f"cannot reach {self._client.api_url}"
            self._bus.post(ConnectionStatus(connected=connected, detail=detail))
            if connected and previous is False:
                self._host.notify("info", "BECA connection restored!")
        return connected

    async def monitor_connection(self) -> None:
        interval = self._config.connection_check_interval_seconds
        if interval <= 0:
            return
        while True:
            await self.check_connection()
            await asyncio.sleep(interval)

    async def close(self) -> None:
        self._scheduler.close()
        self._bus.close()
        await self._client.close()
