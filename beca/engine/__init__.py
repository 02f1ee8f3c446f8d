"""BECA engine: scheduling, extraction and task tracking for the editor host."""
from .models import (
    CacheEntry,
    CodeBlock,
    CompletionCandidate,
    ConversationEntry,
    Diagnostic,
    EntryRole,
    RequestKey,
    RequestKind,
    Severity,
    StepStatus,
    Task,
    TaskStatus,
    TaskStep,
)
from .config import BecaConfig
from .errors import (
    BackendError,
    BecaError,
    ConfigError,
    EditApplicationError,
)
from .client import BackendContext, BackendResponse, BecaClient
from .scheduler import Clock, LoopClock, RequestScheduler
from .task_tracker import TaskStateMachine
from .extractor import (
    extract_code_blocks,
    extract_completions,
    extract_diagnostics,
    extract_key_points,
)

__all__ = [
    # Models
    "CacheEntry",
    "CodeBlock",
    "CompletionCandidate",
    "ConversationEntry",
    "Diagnostic",
    "EntryRole",
    "RequestKey",
    "RequestKind",
    "Severity",
    "StepStatus",
    "Task",
    "TaskStatus",
    "TaskStep",
    # Config
    "BecaConfig",
    # Errors
    "BackendError",
    "BecaError",
    "ConfigError",
    "EditApplicationError",
    # Backend
    "BackendContext",
    "BackendResponse",
    "BecaClient",
    # Coordination
    "Clock",
    "LoopClock",
    "RequestScheduler",
    "TaskStateMachine",
    "extract_code_blocks",
    "extract_completions",
    "extract_diagnostics",
    "extract_key_points",
]
