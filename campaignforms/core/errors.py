"""
Error taxonomy for the campaign forms engine.

- SchemaError / SchemaPublishError: integrity problems found at publish time.
- GateError and subclasses: the form is missing, disabled, or the
  validation code was wrong. Terminal for the current submit attempt.
- SessionSubmittedError: a respondent session was reused after commit.
- PersistenceError: a storage tier failed. Retried by the tiered
  repository, surfaced only once every tier has failed.

Per-field validation errors are not exceptions; the validation engine
returns them as a map.
"""


class SchemaError(Exception):
    """A single integrity violation in a form schema."""

    def __init__(self, field_id: str | None, message: str):
        self.field_id = field_id
        self.message = message
        if field_id is None:
            super().__init__(message)
        else:
            super().__init__(f"Field '{field_id}': {message}")


class SchemaPublishError(Exception):
    """Raised when a schema with integrity violations is published."""

    def __init__(self, errors: list[SchemaError]):
        self.errors = list(errors)
        summary = "; ".join(str(e) for e in self.errors)
        super().__init__(f"Schema rejected ({len(self.errors)} error(s)): {summary}")


class GateError(Exception):
    """Base class for submission gate failures."""

    reason = "gated"

    def __init__(self, form_id: str, message: str):
        self.form_id = form_id
        self.message = message
        super().__init__(message)


class FormNotFoundError(GateError):
    reason = "not_found"

    def __init__(self, form_id: str):
        super().__init__(form_id, f"Form '{form_id}' not found")


class FormDisabledError(GateError):
    reason = "disabled"

    def __init__(self, form_id: str):
        super().__init__(form_id, f"Form '{form_id}' is disabled")


class InvalidValidationCodeError(GateError):
    reason = "invalid_code"

    def __init__(self, form_id: str):
        super().__init__(form_id, "Invalid validation code")


class PersistenceError(Exception):
    """A storage backend failed to complete an operation."""

    def __init__(self, tier: str, message: str):
        self.tier = tier
        self.message = message
        super().__init__(f"[{tier}] {message}")


class SessionSubmittedError(RuntimeError):
    """A respondent session was used after its submission committed."""

    def __init__(self, form_id: str):
        self.form_id = form_id
        super().__init__("Session has already been submitted")
