from __future__ import annotations

from dataclasses import dataclass, field

"""Validation result models (derived per row, never persisted on their own)."""

__all__ = [
    "FieldError",
    "ValidationResult",
]


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of the validator plus the duplicate flag set by the detector."""
    errors: list[FieldError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    is_duplicate: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @staticmethod
    def parse_failure(message: str) -> ValidationResult:
        return ValidationResult(errors=[FieldError(field="general", message=message)])
