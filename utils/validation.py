"""
Input validation and flow integrity checks.

validate_input() checks a raw user reply against a step's ``validate``
type. validate_flow_definition() walks every ``next`` reference in a
definition and rejects the ones that point nowhere.
"""
from __future__ import annotations

import re
from typing import Any, Optional, Union

from models.schemas import Button, FlowDefinition, ValidationType, VariableValue


class FlowValidationError(ValueError):
    """A flow definition is structurally unusable."""

    def __init__(self, message: str, problems: list[str] = None):
        super().__init__(message)
        self.problems = problems or []


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s()-]{10,}$")

VALIDATION_MESSAGES = {
    ValidationType.NUMBER: "Please enter a valid number",
    ValidationType.EMAIL: "Please enter a valid email address",
    ValidationType.PHONE: "Please enter a valid phone number",
}


def parse_number(text: str) -> Optional[Union[int, float]]:
    """Parse a finite number from text, keeping ints as ints."""
    text = text.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def validate_input(value: str, validation: Union[ValidationType, str, None]) -> tuple[bool, Optional[str]]:
    """
    Check a raw reply against a validation type.

    Returns:
        (valid, error_message). Unknown or absent types always pass.
    """
    if validation is None:
        return True, None
    try:
        kind = ValidationType(validation)
    except ValueError:
        return True, None

    if kind is ValidationType.NUMBER:
        ok = parse_number(value) is not None
    elif kind is ValidationType.EMAIL:
        ok = bool(EMAIL_PATTERN.match(value))
    else:
        ok = bool(PHONE_PATTERN.match(value))

    return (True, None) if ok else (False, VALIDATION_MESSAGES[kind])


def normalize_button(button: Union[Button, VariableValue, dict[str, Any]]) -> Button:
    """Bare strings and numbers become ``Button(text=str(v), value=v)``."""
    if isinstance(button, Button):
        return button
    if isinstance(button, dict):
        return Button.model_validate(button)
    return Button(text=str(button), value=button)


def normalize_buttons(buttons: Optional[list]) -> list[Button]:
    return [normalize_button(b) for b in (buttons or [])]


def find_dangling_references(flow: FlowDefinition) -> list[str]:
    """List every ``next`` reference that does not name a step in the flow."""
    step_ids = set(flow.step_index)
    problems: list[str] = []

    for step in flow.steps:
        if step.next and step.next not in step_ids:
            problems.append(f"step '{step.id}' → next '{step.next}' not found")
        if step.condition and step.condition.next not in step_ids:
            problems.append(
                f"step '{step.id}' → condition next '{step.condition.next}' not found")
        for button in normalize_buttons(step.buttons):
            if button.next and button.next not in step_ids:
                problems.append(
                    f"step '{step.id}' → button '{button.text}' next '{button.next}' not found")
    return problems


def validate_flow_definition(flow: FlowDefinition) -> FlowDefinition:
    """Raise FlowValidationError when any reference dangles."""
    problems = find_dangling_references(flow)
    if problems:
        raise FlowValidationError(
            f"Flow '{flow.name}' has invalid step references: " + "; ".join(problems),
            problems=problems,
        )
    return flow
