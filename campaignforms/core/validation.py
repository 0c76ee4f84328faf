"""
Answer validation against a form schema and the respondent's visible set.

Only visible fields are checked, so a hidden required field can never
block a submission. Errors are returned as a map of field ID to message;
an empty map means the answers are submittable.

Custom regex rules that fail to compile are treated as failing for every
value of that field, empty or not.
"""

import logging
import re
from functools import lru_cache
from typing import Any, assert_never

from campaignforms.core.schema import (
    AnyField,
    ColumnType,
    DropdownField,
    FileField,
    FormSchema,
    PatternKind,
    TableField,
    TextField,
    TextValidation,
)
from campaignforms.core.utils import is_empty_answer
from campaignforms.core.visibility import VisibilityState

logger = logging.getLogger(__name__)

REQUIRED_MESSAGE = "This field is required"
INVALID_FORMAT_MESSAGE = "Invalid format"

BUILTIN_PATTERNS: dict[PatternKind, re.Pattern] = {
    PatternKind.EMAIL: re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    PatternKind.PHONE: re.compile(r"^\d{10}$"),
    PatternKind.NUMBER: re.compile(r"^\d+$"),
    PatternKind.ZIPCODE: re.compile(r"^\d{5}(-\d{4})?$"),
    PatternKind.DATE: re.compile(r"^\d{4}-\d{2}-\d{2}$"),
}


@lru_cache(maxsize=256)
def _compile_custom(pattern: str) -> re.Pattern | None:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning("Custom validation pattern %r does not compile: %s", pattern, e)
        return None


def resolve_pattern(rule: TextValidation) -> re.Pattern | None:
    """Return the compiled regex for a rule, or None if it cannot compile."""
    if rule.pattern == PatternKind.CUSTOM:
        if not rule.custom_rule:
            return None
        return _compile_custom(rule.custom_rule)
    return BUILTIN_PATTERNS[rule.pattern]


def validate_answers(
    schema: FormSchema,
    visibility: VisibilityState,
    answers: dict[str, Any],
) -> dict[str, str]:
    """Validate candidate answers for every visible field.

    Fields missing from ``visibility`` are treated as visible, which is
    the initial state of every field.

    Args:
        schema: The form being submitted.
        visibility: The respondent's current VisibilityState.
        answers: Candidate answers keyed by field ID.

    Returns:
        A dict of field ID to error message, in schema order.
    """
    errors: dict[str, str] = {}
    for field in schema.fields:
        if not visibility.get(field.id, True):
            continue
        error = validate_field(field, answers.get(field.id))
        if error is not None:
            errors[field.id] = error
    return errors


def validate_field(field: AnyField, value: Any) -> str | None:
    """Validate a single answer. Returns an error message or None."""
    if isinstance(field, TextField) and field.validation is not None:
        if resolve_pattern(field.validation) is None:
            return field.validation.error_message or INVALID_FORMAT_MESSAGE

    empty = is_empty_answer(value)
    if field.is_required and empty:
        return REQUIRED_MESSAGE
    if empty:
        return None

    match field:
        case TextField():
            return _validate_text(field, value)
        case DropdownField():
            return _validate_dropdown(field, value)
        case TableField():
            return _validate_table(field, value)
        case FileField():
            return None
        case _:
            assert_never(field)


def _validate_text(field: TextField, value: Any) -> str | None:
    if not isinstance(value, str):
        return "Answer must be text"
    if field.min_length is not None and len(value) < field.min_length:
        return f"Must be at least {field.min_length} characters"
    if field.max_length is not None and len(value) > field.max_length:
        return f"Must be at most {field.max_length} characters"

    rule = field.validation
    if rule is not None:
        pattern = resolve_pattern(rule)
        if pattern is None or not pattern.search(value):
            return rule.error_message or INVALID_FORMAT_MESSAGE
    return None


def _validate_dropdown(field: DropdownField, value: Any) -> str | None:
    if str(value) not in field.option_values():
        return f"'{value}' is not a valid option"
    return None


def _validate_table(field: TableField, value: Any) -> str | None:
    if not isinstance(value, list):
        return "Table answer must be a list of rows"

    for index, row in enumerate(value, start=1):
        if not isinstance(row, dict):
            return f"Row {index} must be a mapping of column name to value"
        for key, cell in row.items():
            column = field.column_by_name(key)
            if column is None:
                return f"Row {index}: unknown column '{key}'"
            if column.type == ColumnType.DROPDOWN and not is_empty_answer(cell):
                if str(cell) not in {o.value for o in column.options}:
                    return f"Row {index}: '{cell}' is not a valid option for '{key}'"
    return None
