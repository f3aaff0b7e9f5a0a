"""
Flow Executor: drives a user through a flow one reply at a time.

  Orchestrator → FlowExecutor.process_step(flow, session, step_id, value)
    → resolve transition (validate, sanitize, capture, pick next step)
    → run afterCapture actions for the captured value
    → run the next step's fetch, then beforeRender actions
    → render the next step for the session's channel

Each action entry is dispatched on its own shape: ``{"type": ...}`` goes
to the declarative registry, ``{"action": ...}`` to the flow's legacy
hook module. Action failures are logged at the call site and never end
the flow, except a legacy action under the ``stop`` failure strategy.

The executor holds no session state. Callers persist what it returns.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from pydantic import ValidationError

from actions.notify import LoggingNotifier, Notifier
from actions.schedule import CalendarBackend, FileCalendarBackend
from actions.sheets import FileSpreadsheetBackend, SpreadsheetBackend
from config.settings import Settings, get_settings
from engine.action_executor import ActionError, execute_declarative_action
from engine.action_registry import ActionContext, ActionRegistry, load_action_registry
from engine.hooks_loader import (
    LoadedHooks, load_hooks, safe_execute_action, safe_execute_hook, validate_flow_actions,
)
from engine.interpolation import create_interpolation_context, interpolate_config
from engine.renderer import render_step
from engine.transitions import resolve_transition
from models.schemas import (
    DeclarativeAction, FlowDefinition, FlowSession, FlowStep, LegacyAction,
    ReplyPayload, StepAction, StepOutcome, VariableValue,
)
from utils.conditions import evaluate_condition

logger = structlog.get_logger()


@dataclass
class FlowApi:
    """Services handed to every action as ``context.api``."""
    settings: Settings = field(default_factory=get_settings)
    spreadsheets: Optional[SpreadsheetBackend] = None
    calendar: Optional[CalendarBackend] = None
    scheduler: Optional[BaseScheduler] = None
    notifier: Optional[Notifier] = None
    http_client: Optional[httpx.AsyncClient] = None

    def __post_init__(self):
        data_path = self.settings.data_path
        if self.spreadsheets is None:
            self.spreadsheets = FileSpreadsheetBackend(data_path / "sheets")
        if self.calendar is None:
            self.calendar = FileCalendarBackend(data_path / "calendar")
        if self.notifier is None:
            self.notifier = LoggingNotifier()
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone=self.settings.timezone)


@dataclass
class _FlowRuntime:
    registry: ActionRegistry
    hooks: Optional[LoadedHooks]
    env: dict[str, str]


def should_execute_action(action: LegacyAction, session: FlowSession) -> bool:
    """Legacy guard: ``if`` names a session variable; run when it is truthy."""
    if not action.if_:
        return True
    return bool(session.variables.get(action.if_))


def _is_variable_value(value: Any) -> bool:
    return isinstance(value, (int, float, str)) and not isinstance(value, bool)


def completion_message(flow: FlowDefinition, variables: dict[str, VariableValue]) -> str:
    message = f'✅ Flow "{flow.name}" completed!\n\n'
    if variables:
        message += "Summary:\n"
        for key, value in variables.items():
            message += f"• {key}: {value}\n"
    return message


class FlowExecutor:
    """
    Runs flow steps against a session.

    Dependencies are injected so hosts and tests can swap the renderer,
    hook loader, registry loader and service bundle.
    """

    def __init__(
        self,
        api: FlowApi = None,
        renderer: Callable = None,
        hooks_loader: Callable = None,
        registry_loader: Callable = load_action_registry,
    ):
        """
        Args:
            api:             FlowApi service bundle (spreadsheets, scheduler, ...)
            renderer:        fn(flow, step, session, channel) → ReplyPayload
            hooks_loader:    fn(spec, flows_dir, flow_name) → LoadedHooks | None
            registry_loader: fn(imports) → ActionRegistry
        """
        self._api = api or FlowApi()
        self._settings = self._api.settings
        self._render = renderer or render_step
        self._load_hooks = hooks_loader or load_hooks
        self._load_registry = registry_loader
        self._registries: dict[tuple[str, ...], ActionRegistry] = {}

    @property
    def api(self) -> FlowApi:
        return self._api

    # ══════════════════════════════════════════════════════════
    #  ENTRY POINTS
    # ══════════════════════════════════════════════════════════

    async def begin_flow(self, flow: FlowDefinition, session: FlowSession) -> StepOutcome:
        """Render the first step. The outcome carries env and fetched variables."""
        if not flow.steps:
            return StepOutcome(reply=ReplyPayload(text=f'Error: Flow "{flow.name}" has no steps'))

        runtime = self._prepare(flow)
        first = flow.steps[0]

        injected = self._resolve_env(flow)
        if injected:
            session = session.model_copy(update={"variables": {**session.variables, **injected}})

        step, session = await self._run_step_actions(flow, first, session, runtime)
        reply = self._render(flow, step, session, session.channel)
        logger.info("flow_started", flow=flow.name, session=session.key, step_id=first.id)
        return StepOutcome(reply=reply, updated_variables=session.variables, next_step_id=first.id)

    async def start_flow(self, flow: FlowDefinition, session: FlowSession) -> ReplyPayload:
        return (await self.begin_flow(flow, session)).reply

    async def process_step(
        self,
        flow: FlowDefinition,
        session: FlowSession,
        step_id: str,
        value: VariableValue,
    ) -> StepOutcome:
        step = flow.get_step(step_id)
        if step is None:
            return StepOutcome(
                reply=ReplyPayload(text=f"Step {step_id} not found"),
                updated_variables=session.variables,
            )

        runtime = self._prepare(flow)
        result = resolve_transition(flow, step, value, session.variables, self._settings.security)
        updated = session.model_copy(update={"variables": dict(result.variables)})

        if result.captured and step.actions and step.actions.after_capture:
            await self._run_after_capture(flow, step, updated, result.captured_value, runtime)

        if result.error:
            logger.info("flow_step_rejected", flow=flow.name, step_id=step_id, error=result.error)
            return StepOutcome(
                reply=ReplyPayload(text=result.message or result.error),
                updated_variables=result.variables,
            )

        if result.complete:
            if runtime.hooks:
                await safe_execute_hook(
                    "on_flow_complete", runtime.hooks.on_flow_complete, updated,
                    timeout_ms=self._settings.security.hook_timeout_ms,
                )
            logger.info("flow_completed", flow=flow.name, session=session.key)
            return StepOutcome(
                reply=ReplyPayload(text=completion_message(flow, result.variables)),
                complete=True,
                updated_variables=result.variables,
            )

        next_step = flow.get_step(result.next_step_id)
        next_step, updated = await self._run_step_actions(flow, next_step, updated, runtime)
        reply = self._render(flow, next_step, updated, session.channel)
        return StepOutcome(
            reply=reply,
            updated_variables=updated.variables,
            next_step_id=result.next_step_id,
        )

    # ══════════════════════════════════════════════════════════
    #  SETUP
    # ══════════════════════════════════════════════════════════

    def _registry_for(self, flow: FlowDefinition) -> ActionRegistry:
        key = tuple(flow.action_imports)
        if key not in self._registries:
            self._registries[key] = self._load_registry(list(key))
            logger.debug("action_registry_loaded", flow=flow.name,
                         actions=self._registries[key].count)
        return self._registries[key]

    def load_flow_hooks(self, flow: FlowDefinition) -> Optional[LoadedHooks]:
        if not flow.hooks:
            return None
        return self._load_hooks(flow.hooks, self._settings.flows_path, flow.name)

    def _prepare(self, flow: FlowDefinition) -> _FlowRuntime:
        """Load registry and hooks; raises FlowValidationError on bad hook references."""
        hooks = self.load_flow_hooks(flow)
        if hooks:
            validate_flow_actions(flow, hooks)
        env = {key: os.environ[key] for key in flow.env.values() if key in os.environ}
        return _FlowRuntime(registry=self._registry_for(flow), hooks=hooks, env=env)

    def _resolve_env(self, flow: FlowDefinition) -> dict[str, VariableValue]:
        resolved: dict[str, VariableValue] = {}
        for variable, env_key in flow.env.items():
            value = os.environ.get(env_key)
            if value is None:
                logger.warning("flow_env_missing", flow=flow.name,
                               env_var=env_key, variable=variable)
                continue
            resolved[variable] = value
        return resolved

    # ══════════════════════════════════════════════════════════
    #  ACTIONS
    # ══════════════════════════════════════════════════════════

    def _context(self, session: FlowSession, step: FlowStep, **extra: Any) -> ActionContext:
        return ActionContext(session=session, api=self._api, step=step, **extra)

    async def _run_declarative(
        self,
        slot: str,
        action: DeclarativeAction,
        session: FlowSession,
        step: FlowStep,
        runtime: _FlowRuntime,
        **extra: Any,
    ) -> tuple[bool, Any]:
        """Returns (ran, result). Failures are logged and reported as not run."""
        if action.if_ is not None and not evaluate_condition(action.if_, session.variables):
            logger.debug("action_skipped", slot=slot, action_type=action.type)
            return False, None

        interp = create_interpolation_context(session, runtime.env)
        config = interpolate_config(action.config, interp)
        try:
            result = await execute_declarative_action(
                action.type, config, self._context(session, step, **extra), runtime.registry,
            )
        except ActionError as e:
            logger.error("action_failed", slot=slot, action_type=action.type, error=str(e))
            return False, None
        return True, result

    async def _run_legacy(
        self,
        slot: str,
        action: LegacyAction,
        session: FlowSession,
        runtime: _FlowRuntime,
        *args: Any,
    ) -> tuple[bool, Any]:
        if not should_execute_action(action, session):
            logger.debug("action_skipped", slot=slot, action=action.action)
            return False, None
        if runtime.hooks is None:
            logger.warning("legacy_action_without_hooks", slot=slot, action=action.action)
            return False, None

        result = await safe_execute_action(
            action.action, runtime.hooks.actions.get(action.action), *args,
            timeout_ms=self._settings.security.action_timeout_ms,
            strategy=self._settings.actions.fetch_failure_strategy,
        )
        return True, result

    async def _dispatch(
        self,
        slot: str,
        action: StepAction,
        session: FlowSession,
        step: FlowStep,
        runtime: _FlowRuntime,
        legacy_args: tuple,
        **extra: Any,
    ) -> tuple[bool, Any]:
        if isinstance(action, DeclarativeAction):
            return await self._run_declarative(slot, action, session, step, runtime, **extra)
        return await self._run_legacy(slot, action, session, runtime, *legacy_args)

    async def _run_step_actions(
        self,
        flow: FlowDefinition,
        step: FlowStep,
        session: FlowSession,
        runtime: _FlowRuntime,
    ) -> tuple[FlowStep, FlowSession]:
        """fetch (inject named variables), then beforeRender (may replace the step)."""
        if not step.actions:
            return step, session

        for var_name, action in step.actions.fetch.items():
            ran, result = await self._dispatch(
                "fetch", action, session, step, runtime, (session, self._api))
            if not ran or not isinstance(result, dict) or var_name not in result:
                continue
            value = result[var_name]
            if _is_variable_value(value):
                session = session.model_copy(
                    update={"variables": {**session.variables, var_name: value}})

        for action in step.actions.before_render:
            ran, result = await self._dispatch(
                "beforeRender", action, session, step, runtime, (step, session, self._api))
            if not ran or result is None:
                continue
            if isinstance(result, FlowStep):
                step = result
            elif isinstance(result, dict):
                try:
                    step = FlowStep.model_validate(result)
                except ValidationError as e:
                    logger.error("before_render_result_invalid", flow=flow.name,
                                 step_id=step.id, error=str(e))

        return step, session

    async def _run_after_capture(
        self,
        flow: FlowDefinition,
        step: FlowStep,
        session: FlowSession,
        captured_value: Optional[VariableValue],
        runtime: _FlowRuntime,
    ):
        for action in step.actions.after_capture:
            await self._dispatch(
                "afterCapture", action, session, step, runtime,
                (step.capture, captured_value, session, self._api),
                captured_variable=step.capture, captured_value=captured_value,
            )
