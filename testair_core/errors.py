"""Exception types shared by the compiler, runner and repair engine."""
from __future__ import annotations

from typing import Optional, Sequence


class TestairError(Exception):
    """Base class for all testair errors."""

    __test__ = False


class SchemaValidationError(TestairError):
    """Raised when a plan does not match the plan grammar."""

    def __init__(self, message: str, path: Optional[Sequence[object]] = None) -> None:
        self.path = [str(part) for part in (path or [])]
        location = " -> ".join(self.path)
        super().__init__(f"{location}: {message}" if location else message)
        self.reason = message


class LocatorResolutionError(TestairError):
    """Raised when no locator candidate attaches within the step timeout."""

    def __init__(self, target: str, tried: Optional[Sequence[str]] = None) -> None:
        self.target = target
        self.tried = list(tried or [])
        super().__init__(f'Could not resolve target "{target}" using deterministic locator heuristics')


class ActionTimeoutError(TestairError):
    """Raised when navigation or a visibility/URL wait exceeds its bound."""


class SecretResolutionError(TestairError):
    """Raised when a ${SECRET:NAME} placeholder has no value in the store."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Missing secret value for {name}")


class PatchRejectedError(TestairError):
    """Raised when a repair patch cannot be accepted."""


class ArtifactIOError(TestairError):
    """Raised when a screenshot, DOM snapshot, trace or profile cannot be written."""


class RepairTimeoutError(TestairError):
    """Raised when the repair adapter does not answer in time."""
