from __future__ import annotations
from typing import Any


class ValidationError(ValueError):
    """A submitted or official report is missing a required field."""

    def __init__(self, field: str, kind: str = "missing_required_field", message: str | None = None):
        self.field = field
        self.kind = kind
        super().__init__(message or f"{kind}: {field}")


class InvalidArgumentError(ValueError):
    """A calculator received a value outside its domain (bad score, unknown key...)."""

    def __init__(self, argument: str, value: Any, message: str | None = None):
        self.argument = argument
        self.value = value
        super().__init__(message or f"invalid {argument}: {value!r}")
