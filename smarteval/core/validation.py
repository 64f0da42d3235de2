"""Validation result types shared by the rule modules and the service layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List

LOGGER = logging.getLogger("smarteval.validation")


class ValidationFailure(Exception):
    """Raised when one or more rules reject a write. Carries every violation."""

    def __init__(self, violations: Iterable[str], *, subject: str | None = None) -> None:
        self.violations = list(violations)
        self.subject = subject
        prefix = f"{subject}: " if subject else ""
        super().__init__(prefix + "; ".join(self.violations))


@dataclass
class ValidationResult:
    """Result of a validation check."""

    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    data: Any = None

    @classmethod
    def from_errors(cls, errors: Iterable[str], *, data: Any = None) -> "ValidationResult":
        collected = list(errors)
        return cls(valid=not collected, errors=collected, data=data)

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Combine two results; the merged one is valid only if both are."""
        errors = self.errors + [err for err in other.errors if err not in self.errors]
        warnings = self.warnings + [warn for warn in other.warnings if warn not in self.warnings]
        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            data=self.data if self.data is not None else other.data,
        )

    def raise_if_invalid(self, subject: str | None = None) -> None:
        """Raise ValidationFailure if validation failed."""
        if not self.valid:
            LOGGER.info("Validation rejected write", extra={"subject": subject, "violations": self.errors})
            raise ValidationFailure(self.errors, subject=subject)


__all__ = ["ValidationFailure", "ValidationResult"]
