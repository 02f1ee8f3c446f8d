"""Exception hierarchy for the coordination engine.

Specific exceptions for each failure mode. Transport and extraction
problems are reported in-band to the UI; these exceptions only travel
between the scheduler, the client helpers and the coordinator.
"""
from __future__ import annotations


class BecaError(Exception):
    """Base exception for all BECA host errors."""


class BackendError(BecaError):
    """The assistant backend was unreachable or returned a failure."""
    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Backend {operation} failed: {reason}")


class EditApplicationError(BecaError):
    """Applying an approved edit to a workspace file failed."""
    def __init__(self, file_path: str, reason: str):
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"Cannot write {file_path}: {reason}")


class ConfigError(BecaError):
    """Configuration file could not be read or parsed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
