"""
Flow engine.

A flow is a list of steps the executor walks one user reply at a time:
  - transitions:     validate + capture input, choose the next step
  - interpolation:   {{expression}} templating for action configs
  - action registry: built-in and imported declarative actions
  - hooks loader:    legacy per-flow hook modules and lifecycle hooks
  - sessions:        in-memory session store with a TTL sweeper
  - renderer:        step → channel reply payload
"""
from engine.action_registry import (
    ActionContext, ActionDefinition, ActionPackage, ActionRegistry,
    create_empty_registry, load_action_registry,
)
from engine.action_executor import (
    ActionError, UnknownActionError, ActionConfigError,
    ActionTimeoutError, ActionExecutionError, execute_declarative_action,
)
from engine.interpolation import (
    InterpolationContext, create_interpolation_context,
    interpolate, interpolate_config,
)
from engine.transitions import resolve_transition, find_next_step
from engine.sessions import SessionStore, session_key
from engine.hooks_loader import LoadedHooks, load_hooks, register_hooks
from engine.renderer import render_step
from engine.executor import FlowApi, FlowExecutor, should_execute_action

__all__ = [
    # Actions
    "ActionContext", "ActionDefinition", "ActionPackage", "ActionRegistry",
    "create_empty_registry", "load_action_registry",
    "ActionError", "UnknownActionError", "ActionConfigError",
    "ActionTimeoutError", "ActionExecutionError", "execute_declarative_action",
    # Interpolation
    "InterpolationContext", "create_interpolation_context",
    "interpolate", "interpolate_config",
    # Transitions
    "resolve_transition", "find_next_step",
    # Sessions
    "SessionStore", "session_key",
    # Hooks
    "LoadedHooks", "load_hooks", "register_hooks",
    # Rendering + execution
    "render_step", "FlowApi", "FlowExecutor", "should_execute_action",
]
