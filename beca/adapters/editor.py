"""Editor-surface side of the coordinator.

The editor itself lives in another process; it pushes document
snapshots to the host, and the host keeps the latest one per URI in a
``DocumentStore``. Coordinator work always reads the snapshot current at
dispatch time. Writes are limited to replacing whole workspace files
after the user approves an edit.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from beca.engine.errors import EditApplicationError

logger = logging.getLogger(__name__)

_WORD = re.compile(r"\w+")


@dataclass
class DocumentSnapshot:
    """Read-only view of an editor document at one point in time."""
    uri: str
    text: str
    language_id: str = "plaintext"
    is_dirty: bool = False
    scheme: str = "file"

    @property
    def lines(self) -> list[str]:
        return self.text.split("\n")

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def file_path(self) -> str:
        parsed = urlparse(self.uri)
        if parsed.scheme == "file":
            return unquote(parsed.path)
        return self.uri

    def line_at(self, line: int) -> str:
        lines = self.lines
        if 0 <= line < len(lines):
            return lines[line]
        return ""

    def text_between(self, start_line: int, end_line: int) -> str:
        """Lines ``start_line..end_line`` inclusive, clamped to the document."""
        lines = self.lines
        start = max(0, start_line)
        end = min(len(lines) - 1, end_line)
        return "\n".join(lines[start:end + 1])

    def word_at(self, line: int, character: int) -> str | None:
        for match in _WORD.finditer(self.line_at(line)):
            if match.start() <= character <= match.end():
                return match.group(0)
        return None


class EditorSurface(Protocol):
    def get_document(self, uri: str) -> DocumentSnapshot | None: ...

    def write_file(self, file_path: str, content: str) -> Path: ...


class HostWindow(Protocol):
    """Notifications and confirmations shown by the host UI."""

    def notify(self, level: str, text: str) -> None: ...

    async def confirm(self, prompt: str) -> bool: ...


class DocumentStore:
    """Latest snapshot of every open document, plus workspace file writes."""

    def __init__(self, workspace_root: str | Path) -> None:
        self._root = Path(workspace_root).resolve()
        self._documents: dict[str, DocumentSnapshot] = {}

    @property
    def workspace_root(self) -> Path:
        return self._root

    def update(self, snapshot: DocumentSnapshot) -> None:
        self._documents[snapshot.uri] = snapshot

    def remove(self, uri: str) -> DocumentSnapshot | None:
        return self._documents.pop(uri, None)

    def get_document(self, uri: str) -> DocumentSnapshot | None:
        return self._documents.get(uri)

    def documents(self) -> list[DocumentSnapshot]:
        return list(self._documents.values())

    def resolve(self, file_path: str) -> Path:
        """Resolve a workspace-relative path, refusing anything outside the root."""
        if not isinstance(file_path, str) or not file_path.strip():
            raise EditApplicationError(str(file_path), "missing file path")
        target = (self._root / file_path).resolve()
        if target != self._root and self._root not in target.parents:
            raise EditApplicationError(file_path, "path is outside the workspace")
        return target

    def write_file(self, file_path: str, content: str) -> Path:
        """Atomically replace *file_path* (relative to the workspace root)."""
        target = self.resolve(file_path)
        if not isinstance(content, str):
            raise EditApplicationError(file_path, "content must be text")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent),
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, target)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()
        except OSError as exc:
            raise EditApplicationError(file_path, exc.strerror or str(exc)) from exc
        logger.info("Wrote workspace file path=%s bytes=%d", target, len(content.encode("utf-8")))
        return target
