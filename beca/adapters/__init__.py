"""Adapters package - Bridge between the engine and the editor/UI surfaces.

This package contains the interaction coordinator, the UI message bus,
and the editor-surface components that connect the engine to the
VSCode extension.
"""
from __future__ import annotations

__all__ = [
    "InteractionCoordinator",
    "UIMessageBus",
    "BusHostWindow",
    "DocumentSnapshot",
    "DocumentStore",
]

from beca.adapters.coordinator import InteractionCoordinator
from beca.adapters.event_bus import UIMessageBus
from beca.adapters.host_window import BusHostWindow
from beca.adapters.editor import DocumentSnapshot, DocumentStore
