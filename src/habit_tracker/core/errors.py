# src/habit_tracker/core/errors.py

"""
Engine error taxonomy.

Every failure raised by the engine carries a `kind` tag so callers (console,
HTTP layer, ...) can map it without inspecting messages:

- validation   malformed input, rejected before any write
- not_found    referenced task/category/event does not exist
- conflict     operation violates a lifecycle rule (archived, already complete, ...)
- concurrency  the store stayed locked after one internal retry
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    kind = "engine"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.details}


class ValidationError(EngineError, ValueError):
    kind = "validation"


class NotFoundError(EngineError, LookupError):
    kind = "not_found"


class ConflictError(EngineError):
    kind = "conflict"


class ConcurrencyError(EngineError):
    kind = "concurrency"
