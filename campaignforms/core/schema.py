"""
Form schema definition and integrity checks.

These Pydantic models are the contract between the form builder, the
respondent UI, and the storage backends. A published FormSchema is the
single source of truth for field order, per-type configuration, and the
conditional-logic rules attached to dropdown fields.

Wire format uses camelCase aliases (isRequired, optionValue, targetId, ...);
snake_case names are accepted on input as well.
"""

from enum import Enum
from typing import Annotated, Any, Literal, assert_never

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator
from pydantic.alias_generators import to_camel

from campaignforms.core.errors import SchemaError
from campaignforms.core.utils import new_id


# --- Enums ---


class FormStatus(str, Enum):
    """Lifecycle status of a published form."""

    ACTIVE = "active"
    DISABLED = "disabled"


class ConditionAction(str, Enum):
    """What a matching condition rule does to its target field."""

    SHOW = "show"
    HIDE = "hide"
    SKIP_TO = "skip_to"


class PatternKind(str, Enum):
    """Validation patterns available to text fields."""

    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    ZIPCODE = "zipcode"
    DATE = "date"
    CUSTOM = "custom"


class ColumnType(str, Enum):
    """Cell types available to table columns."""

    TEXT = "text"
    DROPDOWN = "dropdown"


class _WireModel(BaseModel):
    # Nested definitions are frozen along with the schema that holds them
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# --- Field configuration models ---


class OptionDefinition(_WireModel):
    """A selectable dropdown option. Bare strings are accepted as shorthand."""

    value: str = Field(..., min_length=1)
    label: str = ""

    @model_validator(mode="before")
    @classmethod
    def accept_plain_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"value": data, "label": data}
        if isinstance(data, dict) and not data.get("label"):
            # Label defaults to the value
            return {**data, "label": data.get("value", "")}
        return data


class ConditionRule(_WireModel):
    """Trigger value -> action on a target field, attached to a dropdown."""

    option_value: str
    action: ConditionAction
    target_id: str
    message: str | None = None


class ColumnDefinition(_WireModel):
    """One column of a table field. Rows are keyed by column name."""

    name: str = Field(..., min_length=1)
    type: ColumnType = ColumnType.TEXT
    options: list[OptionDefinition] = Field(default_factory=list)


class TextValidation(_WireModel):
    """Pattern rule for a text field.

    ``custom_rule`` holds the author-supplied regex and is only used when
    ``pattern`` is ``custom``.
    """

    pattern: PatternKind
    custom_rule: str | None = None
    error_message: str | None = None


# --- Field variants ---


class _FieldBase(_WireModel):
    id: str = Field(..., min_length=1, description="Unique field identifier")
    question: str = Field(default="", description="Question text shown to the respondent")
    is_required: bool = False
    is_conditional: bool = Field(
        default=False,
        description="Set when some other field's rule targets this field",
    )


class TextField(_FieldBase):
    type: Literal["text"] = "text"
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    validation: TextValidation | None = None


class DropdownField(_FieldBase):
    type: Literal["dropdown"] = "dropdown"
    options: list[OptionDefinition] = Field(default_factory=list)
    conditions: list[ConditionRule] = Field(default_factory=list)

    def option_values(self) -> list[str]:
        return [o.value for o in self.options]

    def rules_for(self, value: Any) -> list[ConditionRule]:
        """Return the rules that fire when this dropdown takes ``value``."""
        if value is None:
            return []
        return [r for r in self.conditions if r.option_value == str(value)]


class TableField(_FieldBase):
    type: Literal["table"] = "table"
    columns: list[ColumnDefinition] = Field(default_factory=list)

    def column_by_name(self, name: str) -> ColumnDefinition | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class FileField(_FieldBase):
    type: Literal["file"] = "file"


AnyField = TextField | DropdownField | TableField | FileField

FieldDefinition = Annotated[AnyField, Field(discriminator="type")]


# --- Top-level form schema ---


class FormSchema(_WireModel):
    """A published form. Frozen: status toggles go through ``with_status``."""

    id: str = Field(default_factory=new_id, min_length=1)
    title: str = Field(..., min_length=1)
    description: str | None = None
    fields: list[FieldDefinition] = Field(..., min_length=1)
    validation_code: str | None = Field(
        default=None,
        description="Shared secret a respondent must supply before submitting",
    )
    status: FormStatus = FormStatus.ACTIVE

    _index: dict[str, Any] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        index: dict[str, Any] = {}
        for f in self.fields:
            # Duplicates are reported by validate_schema(); first one wins here
            index.setdefault(f.id, f)
        self._index = index

    def field_by_id(self, field_id: str) -> AnyField | None:
        """Look up a field by its ID."""
        return self._index.get(field_id)

    def field_ids(self) -> list[str]:
        return [f.id for f in self.fields]

    def dropdowns(self) -> list[DropdownField]:
        return [f for f in self.fields if isinstance(f, DropdownField)]

    def targets_of(self, field_id: str) -> list[tuple[str, ConditionRule]]:
        """Return (controller_id, rule) pairs whose rule targets ``field_id``."""
        return [
            (dropdown.id, rule)
            for dropdown in self.dropdowns()
            for rule in dropdown.conditions
            if rule.target_id == field_id
        ]

    def is_active(self) -> bool:
        return self.status == FormStatus.ACTIVE

    def with_status(self, status: FormStatus) -> "FormSchema":
        return self.model_copy(update={"status": FormStatus(status)})

    def validate_schema(self) -> list[SchemaError]:
        """Check cross-field integrity. An empty list means publishable."""
        errors: list[SchemaError] = []
        all_ids = set(self.field_ids())
        seen: set[str] = set()

        for f in self.fields:
            if f.id in seen:
                errors.append(SchemaError(f.id, f"Duplicate field ID: '{f.id}'"))
            seen.add(f.id)

            match f:
                case DropdownField():
                    errors.extend(_check_dropdown(f, all_ids))
                case TableField():
                    errors.extend(_check_table(f))
                case TextField():
                    errors.extend(_check_text(f))
                case FileField():
                    pass
                case _:
                    assert_never(f)

        return errors

    def unflagged_targets(self) -> list[str]:
        """Targeted field IDs that are not marked ``is_conditional``."""
        targeted = {r.target_id for d in self.dropdowns() for r in d.conditions}
        return [
            f.id for f in self.fields
            if f.id in targeted and not f.is_conditional
        ]


def _check_dropdown(field: DropdownField, field_ids: set[str]) -> list[SchemaError]:
    errors: list[SchemaError] = []
    values: set[str] = set()
    for option in field.options:
        if option.value in values:
            errors.append(SchemaError(field.id, f"Duplicate option value: '{option.value}'"))
        values.add(option.value)

    for rule in field.conditions:
        if rule.target_id not in field_ids:
            errors.append(
                SchemaError(
                    field.id,
                    f"Condition targets non-existent field '{rule.target_id}'",
                )
            )
        elif rule.target_id == field.id:
            errors.append(SchemaError(field.id, "Condition targets its own field"))
        if rule.option_value not in values:
            errors.append(
                SchemaError(
                    field.id,
                    f"Condition references unknown option value '{rule.option_value}'",
                )
            )
    return errors


def _check_table(field: TableField) -> list[SchemaError]:
    errors: list[SchemaError] = []
    names: set[str] = set()
    for column in field.columns:
        if column.name in names:
            errors.append(SchemaError(field.id, f"Duplicate column name: '{column.name}'"))
        names.add(column.name)
        if column.type == ColumnType.DROPDOWN and not column.options:
            errors.append(
                SchemaError(field.id, f"Dropdown column '{column.name}' must have options")
            )
    return errors


def _check_text(field: TextField) -> list[SchemaError]:
    errors: list[SchemaError] = []
    if (
        field.min_length is not None
        and field.max_length is not None
        and field.min_length > field.max_length
    ):
        errors.append(SchemaError(field.id, "minLength is greater than maxLength"))
    rule = field.validation
    if rule is not None and rule.pattern == PatternKind.CUSTOM and not rule.custom_rule:
        errors.append(SchemaError(field.id, "Custom pattern requires a customRule"))
    return errors


# --- Serialization ---


def serialize_schema(schema: FormSchema) -> str:
    """Serialize a schema to its camelCase JSON wire form."""
    return schema.model_dump_json(by_alias=True)


def parse_schema(data: str | bytes | dict) -> FormSchema:
    """Parse a schema from JSON text or an already-decoded mapping.

    Raises:
        pydantic.ValidationError: On unknown field types, actions, or a
            malformed structure.
    """
    if isinstance(data, dict):
        return FormSchema.model_validate(data)
    return FormSchema.model_validate_json(data)
