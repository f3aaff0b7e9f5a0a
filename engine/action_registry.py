"""
Declarative action registry.

Every action type (``sheets.append``, ``data.transform``, ...) maps to an
ActionDefinition: a pydantic model that validates the action's config
and an async routine that runs it.

Actions come from two sources:
  1. Built-in actions shipped in the ``actions`` package
  2. Custom action modules listed in a flow's ``actions.imports``

A custom module exposes ``ACTIONS = {"namespace": "...", "actions": {...}}``
(or an ActionPackage). Its actions register as ``namespace.name``; a name
already taken by a built-in keeps the built-in.
"""
from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Type, Union

import structlog
from pydantic import BaseModel

from models.schemas import FlowSession, FlowStep, VariableValue

logger = structlog.get_logger()


@dataclass
class ActionContext:
    """What an action routine receives besides its validated config."""
    session: FlowSession
    api: Any = None                                   # FlowApi service bundle
    step: Optional[FlowStep] = None
    captured_variable: Optional[str] = None
    captured_value: Optional[VariableValue] = None


ActionRoutine = Callable[[Any, ActionContext], Awaitable[Any]]


@dataclass
class ActionDefinition:
    schema: Type[BaseModel]
    execute: ActionRoutine
    description: str = ""


@dataclass
class ActionPackage:
    """Shape a custom action module exports as ``ACTIONS``."""
    namespace: str
    actions: dict[str, ActionDefinition] = field(default_factory=dict)


class ActionRegistry:
    """Lookup table of action type → definition. Read-only once built."""

    def __init__(self):
        self._actions: dict[str, ActionDefinition] = {}

    def register(self, action_type: str, definition: ActionDefinition):
        self._actions[action_type] = definition

    def get(self, action_type: str) -> Optional[ActionDefinition]:
        return self._actions.get(action_type)

    def has(self, action_type: str) -> bool:
        return action_type in self._actions

    def list(self) -> list[str]:
        return sorted(self._actions)

    @property
    def count(self) -> int:
        return len(self._actions)


def builtin_actions() -> dict[str, ActionDefinition]:
    """The table of actions every flow can use without imports."""
    from actions import buttons, data, http, notify, schedule, sheets

    return {
        "sheets.append": ActionDefinition(
            sheets.SheetsAppendConfig, sheets.append_rows,
            "Append the session's variables as a row"),
        "sheets.query": ActionDefinition(
            sheets.SheetsQueryConfig, sheets.query_rows,
            "Read rows filtered by flow, user or date range"),
        "sheets.create": ActionDefinition(
            sheets.SheetsCreateConfig, sheets.create_spreadsheet,
            "Create a spreadsheet with optional headers"),
        "buttons.generateRange": ActionDefinition(
            buttons.GenerateRangeConfig, buttons.generate_range,
            "Build numeric buttons around the user's recent average"),
        "schedule.cron": ActionDefinition(
            schedule.CronConfig, schedule.schedule_cron,
            "Register a recurring reminder"),
        "schedule.oneTime": ActionDefinition(
            schedule.OneTimeConfig, schedule.schedule_one_time,
            "Register a one-off reminder"),
        "schedule.calendar": ActionDefinition(
            schedule.CalendarConfig, schedule.schedule_calendar,
            "Record the next session as a calendar event"),
        "notify.message": ActionDefinition(
            notify.NotifyConfig, notify.send_message,
            "Send a message to the sender or another recipient"),
        "notify.telegram": ActionDefinition(
            notify.NotifyConfig, notify.send_message,
            "Alias of notify.message"),
        "data.transform": ActionDefinition(
            data.TransformConfig, data.transform,
            "Aggregate or format input values"),
        "http.request": ActionDefinition(
            http.HttpRequestConfig, http.request,
            "Call an HTTP endpoint"),
    }


def create_empty_registry() -> ActionRegistry:
    return ActionRegistry()


def _as_package(module_name: str, exported: Any) -> ActionPackage:
    if isinstance(exported, ActionPackage):
        return exported
    if not isinstance(exported, Mapping):
        raise ValueError(f"module '{module_name}' must export ACTIONS with namespace and actions")
    namespace = exported.get("namespace")
    actions = exported.get("actions")
    if not namespace or not isinstance(namespace, str):
        raise ValueError(f"module '{module_name}' must have a namespace string")
    if not isinstance(actions, Mapping):
        raise ValueError(f"module '{module_name}' must have an actions mapping")
    return ActionPackage(namespace=namespace, actions=dict(actions))


def _load_package(module_name: str, registry: ActionRegistry):
    module = importlib.import_module(module_name)
    package = _as_package(module_name, getattr(module, "ACTIONS", None))

    loaded = 0
    for name, definition in package.actions.items():
        action_type = f"{package.namespace}.{name}"
        if registry.has(action_type):
            logger.warning("custom_action_conflict",
                           action_type=action_type, module=module_name)
            continue
        if not isinstance(definition, ActionDefinition) or not callable(definition.execute):
            logger.warning("custom_action_invalid",
                           action_type=action_type, module=module_name)
            continue
        registry.register(action_type, definition)
        loaded += 1

    logger.info("custom_actions_loaded",
                module=module_name, namespace=package.namespace, count=loaded)


def load_action_registry(imports: Optional[list[str]] = None) -> ActionRegistry:
    """Built-ins first, then each imported module in order."""
    registry = ActionRegistry()
    for action_type, definition in builtin_actions().items():
        registry.register(action_type, definition)

    for module_name in imports or []:
        try:
            _load_package(module_name, registry)
        except (ImportError, ValueError, TypeError, AttributeError) as e:
            logger.error("custom_action_package_failed",
                         module=module_name, error=str(e))

    return registry
