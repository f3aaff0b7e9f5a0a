"""
Runs one declarative action: lookup, config validation, bounded execution.
"""
from __future__ import annotations

import asyncio
from typing import Any

import structlog
from pydantic import ValidationError

from engine.action_registry import ActionContext, ActionRegistry

logger = structlog.get_logger()

ACTION_TIMEOUT_SECONDS = 30


class ActionError(Exception):
    """Base class for declarative action failures."""

    def __init__(self, action_type: str, message: str):
        super().__init__(message)
        self.action_type = action_type


class UnknownActionError(ActionError):
    pass


class ActionConfigError(ActionError):
    pass


class ActionTimeoutError(ActionError):
    pass


class ActionExecutionError(ActionError):
    pass


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


async def execute_declarative_action(
    action_type: str,
    config: Any,
    context: ActionContext,
    registry: ActionRegistry,
    timeout: float = ACTION_TIMEOUT_SECONDS,
) -> Any:
    """
    Validate ``config`` against the action's schema and run it.

    Raises:
        UnknownActionError: type not registered
        ActionConfigError: config rejected by the schema
        ActionTimeoutError: routine exceeded ``timeout`` seconds
        ActionExecutionError: routine raised
    """
    definition = registry.get(action_type)
    if definition is None:
        raise UnknownActionError(
            action_type,
            f"Unknown action type: {action_type}. "
            f"Available actions: {', '.join(registry.list())}",
        )

    try:
        validated = definition.schema.model_validate(config or {})
    except ValidationError as e:
        raise ActionConfigError(
            action_type,
            f"Invalid configuration for action {action_type}: {_describe(e)}",
        ) from e

    try:
        result = await asyncio.wait_for(definition.execute(validated, context), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ActionTimeoutError(
            action_type,
            f"Action {action_type} timed out after {timeout:g}s",
        ) from e
    except Exception as e:
        raise ActionExecutionError(
            action_type,
            f"Action {action_type} failed: {e}",
        ) from e

    logger.debug("action_executed", action_type=action_type,
                 session=context.session.key)
    return result
