"""
Legacy hook modules.

A flow may name a Python hook module in its ``hooks`` field, either as a
``.py`` path relative to the flow's directory or as a dotted module name.
Public functions in the module become step actions referenced by
``{"action": "fn_name"}``. ``on_flow_complete`` / ``on_flow_abandoned``
(module-level, or keys of a ``LIFECYCLE`` dict) are lifecycle hooks.

Calling conventions:
  fetch:         fn(session, api) → {var: value}
  beforeRender:  fn(step, session, api) → FlowStep | dict
  afterCapture:  fn(variable, value, session, api)
  lifecycle:     fn(session[, reason])
"""
from __future__ import annotations

import asyncio
import importlib
import importlib.util
import inspect
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from models.schemas import FlowDefinition, LegacyAction
from utils.validation import FlowValidationError

logger = structlog.get_logger()

LIFECYCLE_HOOKS = ("on_flow_complete", "on_flow_abandoned")


@dataclass
class LoadedHooks:
    actions: dict[str, Callable] = field(default_factory=dict)
    on_flow_complete: Optional[Callable] = None
    on_flow_abandoned: Optional[Callable] = None
    source: str = ""


_registered: dict[str, LoadedHooks] = {}


def hooks_from_module(module: ModuleType) -> LoadedHooks:
    """Collect public functions defined in ``module`` plus its lifecycle hooks."""
    lifecycle = dict(getattr(module, "LIFECYCLE", None) or {})
    for name in LIFECYCLE_HOOKS:
        if callable(getattr(module, name, None)):
            lifecycle.setdefault(name, getattr(module, name))

    actions = {
        name: obj for name, obj in vars(module).items()
        if not name.startswith("_")
        and name not in LIFECYCLE_HOOKS
        and inspect.isfunction(obj)
        and obj.__module__ == module.__name__
    }
    return LoadedHooks(
        actions=actions,
        on_flow_complete=lifecycle.get("on_flow_complete"),
        on_flow_abandoned=lifecycle.get("on_flow_abandoned"),
        source=module.__name__,
    )


def register_hooks(name: str, hooks: Union[LoadedHooks, ModuleType, Mapping[str, Callable]]):
    """Make a hook set resolvable by ``name`` without touching the filesystem."""
    if isinstance(hooks, ModuleType):
        hooks = hooks_from_module(hooks)
    elif not isinstance(hooks, LoadedHooks):
        table = dict(hooks)
        hooks = LoadedHooks(
            actions={k: v for k, v in table.items() if k not in LIFECYCLE_HOOKS},
            on_flow_complete=table.get("on_flow_complete"),
            on_flow_abandoned=table.get("on_flow_abandoned"),
            source=name,
        )
    _registered[name] = hooks
    logger.info("hooks_registered", name=name, actions=len(hooks.actions))


def clear_registered_hooks():
    _registered.clear()


def resolve_hooks_path(spec: str, flows_dir: Path, flow_name: str = "") -> Path:
    """Resolve a hook file under ``flows_dir/flow_name``; refuse anything outside flows_dir."""
    base = Path(flows_dir).expanduser().resolve()
    candidate = ((base / flow_name) if flow_name else base).joinpath(spec).resolve()
    if candidate != base and base not in candidate.parents:
        raise ValueError(f"hooks file '{spec}' escapes flows directory '{base}'")
    return candidate


def _import_file(path: Path, flow_name: str) -> ModuleType:
    if not path.is_file():
        raise FileNotFoundError(str(path))
    module_name = f"skillflow_hooks_{flow_name or 'flow'}_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load hooks from {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def load_hooks(spec: str, flows_dir: Path, flow_name: str = "") -> Optional[LoadedHooks]:
    """
    Resolve a flow's ``hooks`` field. Registered names win; otherwise a
    ``.py`` spec is loaded from disk and anything else is imported as a
    module. Returns None (after logging) when loading fails.
    """
    if spec in _registered:
        return _registered[spec]

    try:
        if spec.endswith(".py"):
            module = _import_file(resolve_hooks_path(spec, flows_dir, flow_name), flow_name)
        else:
            module = importlib.import_module(spec)
    except Exception as e:
        logger.warning("hooks_load_failed", spec=spec, flow=flow_name, error=str(e))
        return None

    hooks = hooks_from_module(module)
    logger.debug("hooks_loaded", spec=spec, actions=len(hooks.actions),
                 lifecycle=[n for n in LIFECYCLE_HOOKS if getattr(hooks, n)])
    return hooks


def validate_flow_actions(flow: FlowDefinition, hooks: LoadedHooks):
    """Raise FlowValidationError when a legacy action names a missing function."""
    available = set(hooks.actions)
    problems: list[str] = []

    for step in flow.steps:
        if not step.actions:
            continue
        slots = [
            ("fetch", list(step.actions.fetch.values())),
            ("beforeRender", step.actions.before_render),
            ("afterCapture", step.actions.after_capture),
        ]
        for slot, entries in slots:
            for entry in entries:
                if isinstance(entry, LegacyAction) and entry.action not in available:
                    problems.append(f'step "{step.id}": {slot} action "{entry.action}" not found')

    if problems:
        logger.error("flow_action_references_invalid", flow=flow.name, problems=problems)
        raise FlowValidationError(
            f'Flow "{flow.name}" references {len(problems)} action(s) missing from its hooks. '
            f"Available actions: {', '.join(sorted(available)) or '(none)'}",
            problems=problems,
        )


async def _call(fn: Callable, args: tuple, timeout_s: float) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        return await asyncio.wait_for(result, timeout=timeout_s)
    return result


async def safe_execute_hook(name: str, fn: Optional[Callable], *args: Any,
                            timeout_ms: int = 10000) -> Any:
    """Run a lifecycle hook best effort. Failures are logged and yield None."""
    if fn is None:
        return None
    try:
        return await _call(fn, args, timeout_ms / 1000)
    except asyncio.TimeoutError:
        logger.error("hook_timed_out", hook=name, timeout_ms=timeout_ms)
    except Exception as e:
        logger.error("hook_failed", hook=name, error=str(e))
    return None


async def safe_execute_action(name: str, fn: Optional[Callable], *args: Any,
                              timeout_ms: int = 5000, strategy: str = "warn") -> Any:
    """
    Run a legacy action under the fetch failure strategy.

    ``stop`` re-raises, ``warn`` logs a warning, ``silent`` logs nothing.
    """
    if fn is None:
        logger.warning("legacy_action_missing", action=name)
        return None
    try:
        return await _call(fn, args, timeout_ms / 1000)
    except Exception as e:
        if isinstance(e, asyncio.TimeoutError):
            error = f"Action {name} timed out after {timeout_ms}ms"
        else:
            error = f"Action {name} failed: {e}"
        if strategy == "stop":
            logger.error("legacy_action_failed", action=name, error=error)
            raise
        if strategy == "warn":
            logger.warning("legacy_action_failed", action=name, error=error)
    return None
