# flowbridge/validator/errors.py
"""Validation error collection and formatting."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

STRUCTURAL = "STRUCTURAL"
SEMANTIC = "SEMANTIC"

# Error message template: [FAIL] TYPE: location problem -> Fix: action
ERROR_TEMPLATE = "[FAIL] {error_type}: {location} {problem}\n  Fix: {fix_action}"


class ValidationError:
    """Structured validation problem.

    subject names the offending step/node/reference when there is one, so
    callers can match on it without parsing the message.
    """

    def __init__(
        self,
        error_type: str,
        location: str,
        problem: str,
        fix_action: str = "",
        subject: Optional[str] = None,
    ):
        self.error_type = error_type
        self.location = location
        self.problem = problem
        self.fix_action = fix_action
        self.subject = subject

    def format(self) -> str:
        return ERROR_TEMPLATE.format(
            error_type=self.error_type,
            location=self.location,
            problem=self.problem,
            fix_action=self.fix_action or "-",
        )

    def __str__(self) -> str:
        return f"[{self.location}] {self.problem}"

    def __repr__(self) -> str:
        return f"ValidationError({self.error_type}, {self.location!r}, {self.problem!r})"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.error_type,
            "location": self.location,
            "problem": self.problem,
            "fix_action": self.fix_action,
        }
        if self.subject is not None:
            result["subject"] = self.subject
        return result


class ValidationResult:
    """Collects validation errors and warnings in the order found."""

    def __init__(self):
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationError] = []

    def add_error(
        self,
        error_type: str,
        location: str,
        problem: str,
        fix_action: str = "",
        subject: Optional[str] = None,
    ) -> None:
        self.errors.append(ValidationError(error_type, location, problem, fix_action, subject))

    def add_warning(
        self,
        error_type: str,
        location: str,
        problem: str,
        fix_action: str = "",
        subject: Optional[str] = None,
    ) -> None:
        self.warnings.append(ValidationError(error_type, location, problem, fix_action, subject))

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    @property
    def valid(self) -> bool:
        return not self.errors

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def errors_of(self, error_type: str) -> List[ValidationError]:
        return [e for e in self.errors if e.error_type == error_type]

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "status": "FAIL" if self.has_errors() else "PASS",
        }
