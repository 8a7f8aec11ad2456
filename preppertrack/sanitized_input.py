"""Sanitized form field and form controllers."""

import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional

from .models import SanitizationType
from .sanitization import (
    sanitize_date,
    sanitize_email,
    sanitize_number,
    sanitize_string_array,
    sanitize_text,
)

logger = logging.getLogger(__name__)

_SANITIZERS: Dict[SanitizationType, Callable[[Any], Any]] = {
    SanitizationType.TEXT: sanitize_text,
    SanitizationType.NUMBER: sanitize_number,
    SanitizationType.EMAIL: sanitize_email,
    SanitizationType.DATE: sanitize_date,
    SanitizationType.ARRAY: sanitize_string_array,
}


def _coerce_kind(kind: Any) -> SanitizationType:
    try:
        return SanitizationType(kind)
    except ValueError:
        logger.debug(f"Unknown sanitization type {kind!r}; treating as text")
        return SanitizationType.TEXT


def sanitize_by_type(kind: SanitizationType, value: Any) -> Any:
    """Apply the sanitizer for ``kind``; unknown kinds fall back to text."""
    sanitizer = _SANITIZERS[_coerce_kind(kind)]
    return sanitizer(value)


def _type_error(kind: SanitizationType, value: Any) -> Optional[str]:
    """Type check shared by fields and forms."""
    if kind == SanitizationType.EMAIL and value and "@" not in str(value):
        return "Invalid email format"
    return None


def _form_type_error(kind: Optional[SanitizationType], value: Any) -> Optional[str]:
    """Form values may still hold unsanitized initial values, so types are checked too."""
    if kind is None:
        return None
    if kind == SanitizationType.TEXT and not isinstance(value, str):
        return "Invalid text format"
    if kind == SanitizationType.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "Invalid number format"
        if isinstance(value, float) and not math.isfinite(value):
            return "Invalid number format"
    return _type_error(kind, value)


class SanitizedField:
    """
    A single form control whose value is always sanitized.

    The initial value is sanitized eagerly. ``set_value`` is the only way
    to change the value; it sanitizes, validates and records the outcome.
    """

    def __init__(
        self,
        kind: SanitizationType,
        initial_value: Any = "",
        validator: Optional[Callable[[Any], bool]] = None,
        on_validation_error: Optional[Callable[[str], None]] = None,
    ):
        self.kind = _coerce_kind(kind)
        self.validator = validator
        self.on_validation_error = on_validation_error
        self._initial = sanitize_by_type(self.kind, initial_value)
        self.value = self._initial
        self.is_valid = True
        self.error: Optional[str] = None

    def set_value(self, new_value: Any) -> Any:
        """
        Sanitize and validate a new value.

        Args:
            new_value: Raw user input.

        Returns:
            The sanitized value now held by the field.
        """
        sanitized = sanitize_by_type(self.kind, new_value)

        is_valid = True
        error = None
        if self.validator is not None and not self.validator(sanitized):
            is_valid = False
            error = f"Invalid {self.kind.value} value"
            if self.on_validation_error is not None:
                self.on_validation_error(error)

        type_error = _type_error(self.kind, sanitized)
        if type_error:
            is_valid = False
            error = type_error

        self.value = sanitized
        self.is_valid = is_valid
        self.error = error
        return sanitized

    def reset(self) -> None:
        self.value = self._initial
        self.is_valid = True
        self.error = None


class SanitizedForm:
    """
    A set of sanitized fields keyed by name.

    Fields without an entry in ``sanitizers`` are stored and returned
    untouched.
    """

    def __init__(
        self,
        initial_values: Mapping[str, Any],
        sanitizers: Mapping[str, SanitizationType],
        validators: Optional[Mapping[str, Callable[[Any], Optional[str]]]] = None,
    ):
        self._initial_values = dict(initial_values)
        self.validators = dict(validators or {})
        self.sanitizers = {name: _coerce_kind(kind) for name, kind in sanitizers.items()}
        self.values: Dict[str, Any] = dict(initial_values)
        self.errors: Dict[str, str] = {}
        self.is_valid = True

    def _sanitize(self, name: str, value: Any) -> Any:
        kind = self.sanitizers.get(name)
        return value if kind is None else sanitize_by_type(kind, value)

    def update_field(self, name: str, value: Any) -> Any:
        sanitized = self._sanitize(name, value)
        self.values[name] = sanitized
        self.errors.pop(name, None)
        return sanitized

    def validate_form(self) -> bool:
        """Run type checks and validators on every field; returns overall validity."""
        errors = {}
        for name, value in self.values.items():
            error = _form_type_error(self.sanitizers.get(name), value)
            validator = self.validators.get(name)
            if error is None and validator is not None:
                error = validator(value)
            if error:
                errors[name] = error
        self.errors = errors
        self.is_valid = not errors
        if errors:
            logger.debug(f"Form validation failed for fields: {', '.join(sorted(errors))}")
        return self.is_valid

    def get_sanitized_values(self) -> Dict[str, Any]:
        return {name: self._sanitize(name, value) for name, value in self.values.items()}

    def reset(self) -> None:
        self.values = dict(self._initial_values)
        self.errors = {}
        self.is_valid = True
