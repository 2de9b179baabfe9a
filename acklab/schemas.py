"""
JSON Schema validation for application payloads.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .errors import SchemaValidationError

logger = logging.getLogger(__name__)


class ValidationMode(Enum):
    """Schema validation modes."""
    SILENT = "silent"      # No logging, no rejection
    WARNING = "warning"    # Log warnings but don't reject
    STRICT = "strict"      # Reject invalid payloads (default)


@dataclass
class SchemaIssue:
    """A single validation error with details."""
    path: str           # JSON path to the error (e.g., "/message")
    message: str        # Human-readable error message
    schema_path: str = ""

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class ValidationResult:
    """Result of schema validation."""
    valid: bool
    errors: List[SchemaIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def error_messages(self) -> List[str]:
        return [str(e) for e in self.errors]


def _pointer(parts) -> str:
    return "/" + "/".join(str(p) for p in parts) if parts else "/"


class SchemaValidator:
    """
    Validates payloads against one Draft-07 JSON schema.

    The schema is checked and compiled once, when the validator is built.
    """

    def __init__(
        self,
        schema: dict,
        name: str = "payload",
        mode: ValidationMode = ValidationMode.STRICT,
    ):
        try:
            Draft7Validator.check_schema(schema)
        except SchemaError as e:
            raise ValueError(f"Invalid {name} schema: {e.message}") from e

        self.schema = schema
        self.name = name
        self.mode = mode
        self._validator = Draft7Validator(schema)

    def validate(self, data: Any) -> ValidationResult:
        """Validate `data`, collecting every error rather than the first."""
        errors = [
            SchemaIssue(
                path=_pointer(error.absolute_path),
                message=error.message,
                schema_path=_pointer(error.absolute_schema_path),
            )
            for error in self._validator.iter_errors(data)
        ]

        if not errors:
            return ValidationResult(valid=True)

        if self.mode == ValidationMode.STRICT:
            return ValidationResult(valid=False, errors=errors)

        if self.mode == ValidationMode.WARNING:
            for error in errors:
                logger.warning(f"Schema validation ({self.name}): {error}")

        return ValidationResult(valid=True, warnings=[str(e) for e in errors])

    def ensure_valid(self, data: Any) -> Any:
        """
        Return `data` unchanged if it is valid.

        Raises:
            SchemaValidationError: listing every violation.
        """
        result = self.validate(data)
        if not result.valid:
            messages = result.error_messages
            logger.warning(f"Invalid {self.name}: {'; '.join(messages)}")
            raise SchemaValidationError(
                f"Invalid {self.name}: {messages[0]}",
                errors=messages,
            )
        return data


def build_validator(
    schema: Optional[dict],
    name: str,
    mode: ValidationMode = ValidationMode.STRICT,
) -> Optional[SchemaValidator]:
    """A validator for `schema`, or None when no schema was declared."""
    if schema is None:
        return None
    return SchemaValidator(schema, name=name, mode=mode)
