"""
Publishing, republishing and lifecycle operations for forms.
"""

import logging

from campaignforms.core.errors import SchemaPublishError
from campaignforms.core.schema import FormSchema, FormStatus
from campaignforms.storage.base import Repository

logger = logging.getLogger(__name__)


def _check_publishable(schema: FormSchema, verb: str) -> None:
    errors = schema.validate_schema()
    if errors:
        logger.info("Refusing to %s form %s: %d schema error(s)", verb, schema.id, len(errors))
        raise SchemaPublishError(errors)

    unflagged = schema.unflagged_targets()
    if unflagged:
        logger.warning(
            "Form %s: fields targeted by condition rules are not marked conditional: %s",
            schema.id, unflagged,
        )


def publish_form(repository: Repository, schema: FormSchema) -> str:
    """Check a schema's integrity and store it.

    Args:
        repository: Where to store the form.
        schema: The schema to publish.

    Returns:
        The stored form's ID.

    Raises:
        SchemaPublishError: If the schema has integrity errors. Nothing is
            written in that case.
    """
    _check_publishable(schema, "publish")

    form_id = repository.create_form(schema)
    logger.info("Published form %s (%d fields)", form_id, len(schema.fields))
    return form_id


def set_form_status(repository: Repository, form_id: str, status: FormStatus) -> bool:
    """Enable or disable a form. Returns False if the form does not exist."""
    updated = repository.update_form_status(form_id, FormStatus(status))
    if updated:
        logger.info("Form %s is now %s", form_id, FormStatus(status).value)
    return updated


def republish_form(repository: Repository, form_id: str, schema: FormSchema) -> bool:
    """Replace a published form's definition.

    The schema is stored under ``form_id`` whatever id it carries. Status,
    submission counter and share URL stay with the stored form, and past
    submissions keep the answers they were accepted with.

    Returns:
        False if the form does not exist.

    Raises:
        SchemaPublishError: If the new schema has integrity errors. The
            stored form is left untouched in that case.
    """
    if schema.id != form_id:
        schema = schema.model_copy(update={"id": form_id})

    _check_publishable(schema, "republish")

    updated = repository.update_form(schema)
    if updated:
        logger.info("Republished form %s (%d fields)", form_id, len(schema.fields))
    return updated
