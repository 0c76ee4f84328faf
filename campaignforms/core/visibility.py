"""
Event-driven visibility engine for a single respondent session.

Every field starts visible, including fields flagged ``is_conditional``.
Visibility only changes when a dropdown takes a value that one of its
condition rules matches:

- show:    the target becomes visible.
- hide:    the target becomes hidden and its current answer is cleared.
- skip_to: nothing changes; a navigation hint is returned for the UI.

There is no implicit undo. Moving a dropdown away from a value whose rule
fired leaves the target as the rule left it. When two dropdowns target the
same field, whichever event is processed last wins; the override is
recorded as a VisibilityConflict and logged, never raised.
"""

import logging
from typing import Any, assert_never

from pydantic import BaseModel, Field

from campaignforms.core.schema import ConditionAction, DropdownField, FormSchema

logger = logging.getLogger(__name__)

VisibilityState = dict[str, bool]


class NavigationHint(BaseModel):
    """Request to bring a field into view (from a skip_to rule)."""

    target_id: str
    message: str | None = None


class VisibilityConflict(BaseModel):
    """A rule from one controller overrode another controller's decision."""

    target_id: str
    previous_controller: str
    controller: str
    visible: bool


class VisibilityUpdate(BaseModel):
    """Everything a single value-change event did."""

    field_id: str
    shown: list[str] = Field(default_factory=list)
    hidden: list[str] = Field(default_factory=list)
    cleared: list[str] = Field(default_factory=list)
    navigation: list[NavigationHint] = Field(default_factory=list)
    conflicts: list[VisibilityConflict] = Field(default_factory=list)


class VisibilityEngine:
    """Maintains the visible-field set and answers for one respondent.

    Events are processed synchronously, strictly in the order
    ``apply_change`` is called.

    Args:
        schema: The published FormSchema the respondent is filling in.
    """

    def __init__(self, schema: FormSchema):
        self.schema = schema
        self._visibility: VisibilityState = {f.id: True for f in schema.fields}
        self._answers: dict[str, Any] = {}
        # target field id -> dropdown id whose rule last decided it
        self._decided_by: dict[str, str] = {}

    @classmethod
    def replay(cls, schema: FormSchema, answers: dict[str, Any]) -> "VisibilityEngine":
        """Build an engine by feeding ``answers`` in schema field order.

        Deterministic: replaying the same answer map always yields the same
        visible set. Answers for unknown field IDs are ignored.
        """
        engine = cls(schema)
        for field in schema.fields:
            if field.id in answers:
                engine.apply_change(field.id, answers[field.id])

        unknown = set(answers) - set(schema.field_ids())
        if unknown:
            logger.debug("Ignoring answers for unknown fields: %s", sorted(unknown))
        return engine

    # -----------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------

    def apply_change(self, field_id: str, value: Any) -> VisibilityUpdate:
        """Record a new value for a field and fire any matching rules.

        Args:
            field_id: The field whose value changed.
            value: The new value. None clears the answer.

        Returns:
            A VisibilityUpdate describing the side effects of this event.

        Raises:
            KeyError: If the field does not exist in the schema.
        """
        field = self.schema.field_by_id(field_id)
        if field is None:
            raise KeyError(f"Field '{field_id}' does not exist in the schema")

        if value is None:
            self._answers.pop(field_id, None)
        else:
            self._answers[field_id] = value

        update = VisibilityUpdate(field_id=field_id)
        if not isinstance(field, DropdownField):
            return update

        for rule in field.rules_for(value):
            match rule.action:
                case ConditionAction.SHOW:
                    self._decide(rule.target_id, True, field.id, update)
                    update.shown.append(rule.target_id)
                case ConditionAction.HIDE:
                    self._decide(rule.target_id, False, field.id, update)
                    update.hidden.append(rule.target_id)
                    if self._answers.pop(rule.target_id, None) is not None:
                        update.cleared.append(rule.target_id)
                case ConditionAction.SKIP_TO:
                    update.navigation.append(
                        NavigationHint(target_id=rule.target_id, message=rule.message)
                    )
                case _:
                    assert_never(rule.action)

        if update.shown or update.hidden or update.navigation:
            logger.debug(
                "Field %s=%r: shown=%s hidden=%s cleared=%s",
                field_id, value, update.shown, update.hidden, update.cleared,
            )
        return update

    def clear(self, field_id: str) -> VisibilityUpdate:
        """Clear a field's answer. Does not reverse rules it fired earlier."""
        return self.apply_change(field_id, None)

    def _decide(
        self,
        target_id: str,
        visible: bool,
        controller_id: str,
        update: VisibilityUpdate,
    ) -> None:
        previous = self._decided_by.get(target_id)
        if previous is not None and previous != controller_id:
            conflict = VisibilityConflict(
                target_id=target_id,
                previous_controller=previous,
                controller=controller_id,
                visible=visible,
            )
            update.conflicts.append(conflict)
            logger.info(
                "Visibility of %s set by %s overrides earlier decision by %s",
                target_id, controller_id, previous,
            )
        self._decided_by[target_id] = controller_id
        self._visibility[target_id] = visible

    # -----------------------------------------------------------------
    # State
    # -----------------------------------------------------------------

    @property
    def state(self) -> VisibilityState:
        """A copy of the current visibility map."""
        return dict(self._visibility)

    @property
    def answers(self) -> dict[str, Any]:
        return dict(self._answers)

    def is_visible(self, field_id: str) -> bool:
        return self._visibility.get(field_id, False)

    def visible_ids(self) -> list[str]:
        """Visible field IDs in schema order."""
        return [f.id for f in self.schema.fields if self._visibility[f.id]]

    def visible_answers(self) -> dict[str, Any]:
        """Answers for currently visible fields, in schema order."""
        return {
            field_id: self._answers[field_id]
            for field_id in self.visible_ids()
            if field_id in self._answers
        }
