from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from beca.adapters.coordinator import HOVER_HEADER, NEW_TASK_PROMPT, InteractionCoordinator
from beca.adapters.editor import DocumentSnapshot, DocumentStore
from beca.adapters.event_bus import UIMessageBus
from beca.adapters.events import ApproveEdit, NewTask, RejectEdit, SendMessage, UIMessage
from beca.engine.client import BackendContext, BackendResponse
from beca.engine.config import BecaConfig
from beca.engine.models import EntryRole, RequestKey, RequestKind, Severity, StepStatus
from beca.engine.scheduler import RequestScheduler

URI = "file:///ws/pkg/a.py"
SOURCE = "import os\nunused = 1\nprint(os.name)"


class FakeClient:
    """Records calls and answers from canned replies."""

    def __init__(self) -> None:
        self.api_url = "http://backend.test"
        self.chat_reply = BackendResponse(success=True, response="Okay.")
        self.diagnostics_reply = BackendResponse(success=True, response="Line 2: unused variable")
        self.hover_reply = BackendResponse(success=True, response="Totals the cart.")
        self.suggestion_reply = BackendResponse(
            success=True, response="```python\nresult = compute()\n```",
        )
        self.review_reply = BackendResponse(
            success=True, response="Review:\n- add docstrings\n- remove unused import\n",
        )
        self.connected = True
        self.diagnostics_gate: asyncio.Event | None = None
        self.calls: list[tuple[str, tuple]] = []
        self.closed = False

    async def send_message(self, message: str, context: BackendContext | None = None) -> BackendResponse:
        self.calls.append(("send_message", (message, context)))
        return self.chat_reply

    async def get_diagnostics(self, code: str, language: str, file_path: str) -> BackendResponse:
        self.calls.append(("get_diagnostics", (code, language, file_path)))
        if self.diagnostics_gate is not None:
            await self.diagnostics_gate.wait()
        return self.diagnostics_reply

    async def get_hover_info(self, code: str, symbol: str, language: str) -> BackendResponse:
        self.calls.append(("get_hover_info", (code, symbol, language)))
        return self.hover_reply

    async def get_suggestions(self, code: str, language: str, cursor_position: int) -> BackendResponse:
        self.calls.append(("get_suggestions", (code, language, cursor_position)))
        return self.suggestion_reply

    async def review_file(self, file_path: str, content: str, language: str) -> BackendResponse:
        self.calls.append(("review_file", (file_path, content, language)))
        return self.review_reply

    async def test_connection(self) -> bool:
        return self.connected

    async def close(self) -> None:
        self.closed = True

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class FakeHost:
    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.notifications: list[tuple[str, str]] = []
        self.prompts: list[str] = []

    def notify(self, level: str, text: str) -> None:
        self.notifications.append((level, text))

    async def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answer


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def store(tmp_path: Path) -> DocumentStore:
    store = DocumentStore(tmp_path)
    store.update(DocumentSnapshot(uri=URI, text=SOURCE, language_id="python"))
    return store


@pytest.fixture
def bus() -> UIMessageBus:
    return UIMessageBus()


@pytest.fixture
def coordinator(tmp_path, clock, client, host, store, bus) -> InteractionCoordinator:
    config = BecaConfig(workspace_root=str(tmp_path))
    return InteractionCoordinator(
        config=config,
        client=client,
        editor=store,
        host=host,
        bus=bus,
        scheduler=RequestScheduler(clock),
    )


def _drain(queue: asyncio.Queue) -> list[UIMessage]:
    messages = []
    while not queue.empty():
        messages.append(queue.get_nowait())
    return messages


# ── Conversation ──


@pytest.mark.asyncio
async def test_user_message_round_trip_updates_history_and_task(coordinator, client, bus, tmp_path) -> None:
    client.chat_reply = BackendResponse(
        success=True,
        response="I found the login handler.\n```python\nlogin()\n```",
    )
    queue = bus.attach()
    _drain(queue)

    await coordinator.handle_user_message("Fix the login bug")

    history = coordinator.conversation_history
    assert [e.role for e in history] == [EntryRole.USER, EntryRole.ASSISTANT]
    assert history[1].code_blocks[0].code == "login()"

    task = coordinator.tasks.current_task
    assert task is not None and task.title == "Fix the login bug"
    assert task.step(2).status is StepStatus.COMPLETED
    assert task.step(3).status is StepStatus.IN_PROGRESS

    _, (message, context) = client.calls[0]
    assert message == "Fix the login bug"
    assert context.metadata["taskContext"]["id"] == task.id
    assert context.metadata["workspaceName"] == tmp_path.name

    types = [m.type for m in _drain(queue)]
    assert types == [
        "messageAdded", "thinking", "taskCreated", "thinking", "messageAdded", "taskUpdated",
    ]


@pytest.mark.asyncio
async def test_backend_failure_becomes_error_entry(coordinator, client, bus) -> None:
    client.chat_reply = BackendResponse(success=False, error="connection refused")
    queue = bus.attach()
    _drain(queue)

    await coordinator.handle_user_message("hello")

    entry = coordinator.conversation_history[-1]
    assert entry.role is EntryRole.ERROR
    assert entry.content == "Error: connection refused"
    thinking = [m.value for m in _drain(queue) if m.type == "thinking"]
    assert thinking == [True, False]


@pytest.mark.asyncio
async def test_blank_message_is_ignored(coordinator, client) -> None:
    await coordinator.handle_user_message("   ")
    assert coordinator.conversation_history == []
    assert client.calls == []


@pytest.mark.asyncio
async def test_ui_messages_dispatch_to_handlers(coordinator, client, host, tmp_path) -> None:
    await coordinator.handle_ui_message(SendMessage(text="hi"))
    await coordinator.handle_ui_message(ApproveEdit(file_path="out.txt", content="data"))
    await coordinator.handle_ui_message(RejectEdit(file_path="out.txt"))
    await coordinator.handle_ui_message(UIMessage(type="mystery"))

    assert client.count("send_message") == 1
    assert (tmp_path / "out.txt").read_text() == "data"
    assert ("info", "Edit rejected") in host.notifications


@pytest.mark.asyncio
async def test_run_consumes_inbound_until_closed(coordinator, client, bus) -> None:
    await bus.receive({"type": "sendMessage", "text": "first"})
    await bus.receive({"type": "sendMessage", "text": "second"})
    runner = asyncio.create_task(coordinator.run())

    for _ in range(100):
        if client.count("send_message") == 2:
            break
        await asyncio.sleep(0.01)
    bus.close()
    await asyncio.wait_for(runner, timeout=5)

    assert [args[0] for name, args in client.calls] == ["first", "second"]


# ── Edits ──


@pytest.mark.asyncio
async def test_apply_edit_writes_file_and_records_system_entry(coordinator, host, tmp_path) -> None:
    assert await coordinator.apply_edit("src/util.py", "x = 1\n") is True

    assert (tmp_path / "src" / "util.py").read_text() == "x = 1\n"
    assert host.notifications == [("info", "Successfully wrote src/util.py")]
    entry = coordinator.conversation_history[-1]
    assert entry.role is EntryRole.SYSTEM
    assert entry.content == "Applied changes to src/util.py"


@pytest.mark.asyncio
async def test_apply_edit_outside_workspace_fails(coordinator, host, tmp_path) -> None:
    assert await coordinator.apply_edit("../escape.py", "boom") is False

    assert not (tmp_path.parent / "escape.py").exists()
    level, text = host.notifications[-1]
    assert level == "error"
    assert "outside the workspace" in text
    assert coordinator.conversation_history[-1].role is EntryRole.ERROR


@pytest.mark.asyncio
async def test_apply_edit_with_non_text_content_is_reported(coordinator, host, tmp_path) -> None:
    assert await coordinator.apply_edit("src/util.py", {"not": "text"}) is False

    assert not (tmp_path / "src" / "util.py").exists()
    assert host.notifications == [
        ("error", "Failed to write src/util.py: content must be text"),
    ]
    assert coordinator.conversation_history[-1].role is EntryRole.ERROR


# ── New task ──


@pytest.mark.asyncio
async def test_new_task_without_history_skips_confirmation(coordinator, host) -> None:
    assert await coordinator.start_new_task() is True
    assert host.prompts == []
    assert ("info", "Started new task") in host.notifications


@pytest.mark.asyncio
async def test_new_task_declined_keeps_state(coordinator, host) -> None:
    await coordinator.handle_user_message("keep me")
    host.answer = False

    assert await coordinator.start_new_task() is False

    assert host.prompts == [NEW_TASK_PROMPT]
    assert len(coordinator.conversation_history) == 2
    assert coordinator.tasks.current_task is not None


@pytest.mark.asyncio
async def test_new_task_confirmed_clears_and_broadcasts(coordinator, host, bus) -> None:
    await coordinator.handle_user_message("old work")
    queue = bus.attach()
    _drain(queue)

    await coordinator.handle_ui_message(NewTask())

    assert coordinator.conversation_history == []
    assert coordinator.tasks.current_task is None
    assert coordinator.explored_files == []
    update = _drain(queue)[0]
    assert update.type == "fullUpdate"
    assert update.state == {"conversationHistory": [], "currentTask": None, "exploredFiles": []}


# ── Diagnostics ──


@pytest.mark.asyncio
async def test_open_document_publishes_diagnostics_after_debounce(coordinator, client, clock, bus) -> None:
    queue = bus.attach()
    _drain(queue)

    assert coordinator.schedule_diagnostics(URI) is True
    coordinator.on_document_opened(URI)
    clock.advance(2.5)
    await coordinator.scheduler.wait_idle()
    assert client.count("get_diagnostics") == 0

    clock.advance(0.5)
    await coordinator.scheduler.wait_idle()

    assert client.count("get_diagnostics") == 1
    [diag] = coordinator.diagnostics_for(URI)
    assert (diag.line, diag.message, diag.severity) == (1, "unused variable", Severity.WARNING)
    assert coordinator.explored_files == ["/ws/pkg/a.py"]

    published = [m for m in _drain(queue) if m.type == "diagnosticsUpdated"]
    assert published[-1].uri == URI
    assert published[-1].diagnostics == [diag.to_dict()]


@pytest.mark.asyncio
async def test_dirty_or_non_file_documents_are_skipped(coordinator, store) -> None:
    store.update(DocumentSnapshot(uri=URI, text=SOURCE, language_id="python", is_dirty=True))
    assert coordinator.schedule_diagnostics(URI) is False

    store.update(DocumentSnapshot(uri="untitled:1", text=SOURCE, scheme="untitled"))
    assert coordinator.schedule_diagnostics("untitled:1") is False
    assert coordinator.schedule_diagnostics("file:///missing.py") is False


@pytest.mark.asyncio
async def test_diagnostics_are_cached_until_document_changes(coordinator, client, clock) -> None:
    for _ in range(2):
        coordinator.on_document_opened(URI)
        clock.advance(3.0)
        await coordinator.scheduler.wait_idle()
    assert client.count("get_diagnostics") == 1

    coordinator.on_document_changed(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()
    assert client.count("get_diagnostics") == 2


@pytest.mark.asyncio
async def test_changes_ignored_when_auto_review_off(coordinator, client, clock) -> None:
    coordinator._config.auto_review = False
    coordinator.on_document_changed(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()
    assert client.count("get_diagnostics") == 0


@pytest.mark.asyncio
async def test_backend_failure_leaves_diagnostics_untouched(coordinator, client, clock) -> None:
    client.diagnostics_reply = BackendResponse(success=False, error="timeout")
    coordinator.on_document_opened(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()

    assert coordinator.diagnostics_for(URI) == []
    assert coordinator.scheduler.peek(RequestKey(URI, RequestKind.DIAGNOSTICS), 60.0) is None


@pytest.mark.asyncio
async def test_repeated_backend_failures_notify_once_per_outage(coordinator, client, clock, host) -> None:
    client.diagnostics_reply = BackendResponse(success=False, error="HTTP 500")
    for _ in range(2):
        coordinator.on_document_changed(URI)
        clock.advance(3.0)
        await coordinator.scheduler.wait_idle()

    assert client.count("get_diagnostics") == 2
    assert host.notifications == [("warning", "BECA diagnostics unavailable: HTTP 500")]

    client.diagnostics_reply = BackendResponse(success=True, response="line 1: fine")
    coordinator.on_document_changed(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()
    client.diagnostics_reply = BackendResponse(success=False, error="HTTP 502")
    coordinator.on_document_changed(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()

    assert host.notifications[-1] == ("warning", "BECA diagnostics unavailable: HTTP 502")
    assert len(host.notifications) == 2


@pytest.mark.asyncio
async def test_completion_and_hover_failures_are_notified(coordinator, client, clock, host, store) -> None:
    store.update(DocumentSnapshot(uri=URI, text="result = comp", language_id="python"))
    client.suggestion_reply = BackendResponse(success=False, error="timeout")
    client.hover_reply = BackendResponse(success=False, error="timeout")

    assert await coordinator.provide_completions(URI, 0, 13) == []
    assert await coordinator.provide_hover(URI, 0, 2) is None

    assert host.notifications == [
        ("warning", "BECA completion unavailable: timeout"),
        ("warning", "BECA hover unavailable: timeout"),
    ]


@pytest.mark.asyncio
async def test_document_closed_mid_analysis_is_not_republished(coordinator, client, clock, store, bus) -> None:
    client.diagnostics_gate = asyncio.Event()
    coordinator.on_document_opened(URI)
    clock.advance(3.0)
    for _ in range(20):
        if client.count("get_diagnostics"):
            break
        await asyncio.sleep(0)
    assert client.count("get_diagnostics") == 1

    queue = bus.attach()
    _drain(queue)
    store.remove(URI)
    coordinator.on_document_closed(URI)
    client.diagnostics_gate.set()
    await coordinator.scheduler.wait_idle()

    assert coordinator.diagnostics_for(URI) == []
    assert [m for m in _drain(queue) if m.type == "diagnosticsUpdated"] == []


@pytest.mark.asyncio
async def test_newly_explored_files_are_published(coordinator, clock, bus) -> None:
    queue = bus.attach()
    _drain(queue)

    coordinator.on_document_opened(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()
    coordinator.on_document_changed(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()

    updates = [m for m in _drain(queue) if m.type == "exploredFilesUpdated"]
    assert [u.files for u in updates] == [["/ws/pkg/a.py"]]


@pytest.mark.asyncio
async def test_closing_document_clears_its_diagnostics(coordinator, clock, bus) -> None:
    coordinator.on_document_opened(URI)
    clock.advance(3.0)
    await coordinator.scheduler.wait_idle()
    queue = bus.attach()
    _drain(queue)

    coordinator.on_document_closed(URI)

    assert coordinator.diagnostics_for(URI) == []
    [cleared] = _drain(queue)
    assert cleared.type == "diagnosticsUpdated"
    assert cleared.diagnostics == []


# ── Completions ──


@pytest.mark.asyncio
async def test_completions_are_rate_limited(coordinator, client, clock, store) -> None:
    store.update(DocumentSnapshot(uri=URI, text="result = comp", language_id="python"))

    first = await coordinator.provide_completions(URI, 0, 13)
    second = await coordinator.provide_completions(URI, 0, 13)

    assert [c.insert_text for c in first] == ["result = compute()"]
    assert second == []
    assert client.count("get_suggestions") == 1

    clock.advance(2.0)
    assert await coordinator.provide_completions(URI, 0, 13)
    assert client.count("get_suggestions") == 2


@pytest.mark.asyncio
async def test_completions_need_a_prefix(coordinator, client, store) -> None:
    store.update(DocumentSnapshot(uri=URI, text="  ab", language_id="python"))
    assert await coordinator.provide_completions(URI, 0, 4) == []
    assert client.count("get_suggestions") == 0


# ── Hover ──


@pytest.mark.asyncio
async def test_hover_is_cached_per_symbol(coordinator, client, store) -> None:
    store.update(DocumentSnapshot(
        uri=URI, text="def compute_total(cart):\n    return sum(cart)", language_id="python",
    ))

    first = await coordinator.provide_hover(URI, 0, 6)
    second = await coordinator.provide_hover(URI, 0, 10)

    assert first == HOVER_HEADER + "Totals the cart."
    assert second == first
    assert client.count("get_hover_info") == 1
    _, (_, symbol, language) = client.calls[0]
    assert (symbol, language) == ("compute_total", "python")


@pytest.mark.asyncio
async def test_hover_skips_short_words_and_failures(coordinator, client, store) -> None:
    store.update(DocumentSnapshot(uri=URI, text="x = value", language_id="python"))
    assert await coordinator.provide_hover(URI, 0, 0) is None
    assert client.count("get_hover_info") == 0

    client.hover_reply = BackendResponse(success=False, error="down")
    assert await coordinator.provide_hover(URI, 0, 5) is None
    client.hover_reply = BackendResponse(success=True, response="A value.")
    assert await coordinator.provide_hover(URI, 0, 5) == HOVER_HEADER + "A value."


# ── Save review ──


@pytest.mark.asyncio
async def test_save_review_posts_insights(coordinator, host, bus) -> None:
    queue = bus.attach()
    _drain(queue)

    review = coordinator.on_document_saved(URI)
    assert review is not None
    insights = await review

    assert insights == ["add docstrings", "remove unused import"]
    [posted] = [m for m in _drain(queue) if m.type == "reviewInsights"]
    assert posted.file_path == "/ws/pkg/a.py"
    assert ("info", "BECA found 2 suggestion(s) for a.py") in host.notifications
    assert coordinator.scheduler.is_pending(RequestKey(URI, RequestKind.DIAGNOSTICS))


@pytest.mark.asyncio
async def test_save_review_skips_non_code_documents(coordinator, client, store) -> None:
    notes = "file:///ws/notes.txt"
    store.update(DocumentSnapshot(uri=notes, text="todo", language_id="plaintext"))

    assert coordinator.on_document_saved(notes) is None
    assert client.count("review_file") == 0


# ── Connection ──


@pytest.mark.asyncio
async def test_connection_changes_are_published(coordinator, client, host, bus) -> None:
    queue = bus.attach()
    _drain(queue)

    assert await coordinator.check_connection() is True
    assert await coordinator.check_connection() is True
    client.connected = False
    assert await coordinator.check_connection() is False
    client.connected = True
    await coordinator.check_connection()

    statuses = [m.connected for m in _drain(queue) if m.type == "connectionStatus"]
    assert statuses == [True, False, True]
    assert host.notifications == [("info", "BECA connection restored!")]


@pytest.mark.asyncio
async def test_close_releases_client(coordinator, client) -> None:
    await coordinator.close()
    assert client.closed is True
