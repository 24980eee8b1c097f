from __future__ import annotations

from typing import Optional


class StoreError(RuntimeError):
    """A datastore call failed (transport error, PostgREST error, or timeout)."""

    def __init__(self, operation: str, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.cause = cause
