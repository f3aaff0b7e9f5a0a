"""
Step transition resolver.

Given the current step and a user reply: validate it, capture it into a
copy of the session variables, then pick the next step. Precedence is
matching button, then step condition, then the step's default ``next``.
No next step means the flow is complete.

Pure apart from logging; afterCapture actions are run by the caller.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Union

import structlog

from config.settings import SecurityConfig
from models.schemas import (
    FlowDefinition, FlowStep, StepCondition, TransitionResult, ValidationType, VariableValue,
)
from utils.conditions import strict_equals
from utils.sanitization import InputSanitizationError, sanitize_input
from utils.validation import normalize_buttons, parse_number, validate_input

logger = structlog.get_logger()

INVALID_INPUT_MESSAGE = "Your input contains invalid characters or exceeds length limits."


def _as_number(value: Any) -> Optional[Union[int, float]]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return parse_number(str(value))


def evaluate_step_condition(
    condition: Optional[StepCondition],
    variables: Mapping[str, Any],
) -> bool:
    """Legacy single-branch condition. Only the first comparison set is used."""
    if condition is None:
        return False
    value = variables.get(condition.variable)
    if value is None:
        return False

    if condition.equals is not None:
        return strict_equals(value, condition.equals)
    if condition.greater_than is not None:
        number = _as_number(value)
        return number is not None and number > condition.greater_than
    if condition.less_than is not None:
        number = _as_number(value)
        return number is not None and number < condition.less_than
    if condition.contains is not None:
        return condition.contains in str(value)
    return False


def find_next_step(
    step: FlowStep,
    value: VariableValue,
    variables: Mapping[str, Any],
) -> Optional[str]:
    for button in normalize_buttons(step.buttons):
        if strict_equals(button.value, value) and button.next:
            return button.next

    if step.condition and evaluate_step_condition(step.condition, variables):
        return step.condition.next

    return step.next


def _coerce_capture(step: FlowStep, value: VariableValue) -> VariableValue:
    if step.validation == ValidationType.NUMBER:
        number = _as_number(value)
        if number is not None:
            return number
    return value if isinstance(value, str) else str(value)


def resolve_transition(
    flow: FlowDefinition,
    step: FlowStep,
    value: VariableValue,
    variables: Mapping[str, VariableValue],
    security: SecurityConfig = None,
) -> TransitionResult:
    """Resolve one reply against ``step``. Never mutates ``variables``."""
    security = security or SecurityConfig()

    if step.validation is not None:
        valid, error = validate_input(str(value), step.validation)
        if not valid:
            return TransitionResult(variables=dict(variables), error=error, message=error)

    updated = dict(variables)
    captured_value: Optional[VariableValue] = None

    if step.capture:
        try:
            sanitized = sanitize_input(value, security)
        except InputSanitizationError as e:
            logger.warning("input_sanitization_failed",
                           flow=flow.name, step_id=step.id, error=str(e))
            return TransitionResult(
                variables=updated, error="Invalid input", message=INVALID_INPUT_MESSAGE,
            )
        captured_value = _coerce_capture(step, sanitized)
        updated[step.capture] = captured_value

    captured = bool(step.capture)
    next_step_id = find_next_step(step, value, updated)

    if not next_step_id:
        return TransitionResult(
            variables=updated, complete=True,
            captured=captured, captured_value=captured_value,
        )

    if flow.get_step(next_step_id) is None:
        return TransitionResult(
            variables=updated, error=f"Next step {next_step_id} not found",
            captured=captured, captured_value=captured_value,
        )

    return TransitionResult(
        next_step_id=next_step_id, variables=updated,
        captured=captured, captured_value=captured_value,
    )
