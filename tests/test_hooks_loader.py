"""Tests for legacy hook modules and lifecycle hooks."""
import asyncio
import sys
import types
from unittest.mock import AsyncMock

import pytest

from engine.hooks_loader import (
    hooks_from_module, load_hooks, register_hooks, resolve_hooks_path,
    safe_execute_action, safe_execute_hook, validate_flow_actions,
)
from models.schemas import FlowDefinition
from utils.validation import FlowValidationError

HOOKS_SOURCE = '''
import json

async def fetch_average(session, api):
    return {"average": 20}

def log_reps(variable, value, session, api):
    return None

def _private_helper():
    pass

async def on_flow_complete(session):
    pass
'''


@pytest.fixture
def flows_dir(tmp_path):
    flow_dir = tmp_path / "flows" / "pushups"
    flow_dir.mkdir(parents=True)
    (flow_dir / "hooks.py").write_text(HOOKS_SOURCE)
    return tmp_path / "flows"


class TestLoadHooks:
    def test_file_hooks(self, flows_dir):
        hooks = load_hooks("hooks.py", flows_dir, "pushups")
        assert set(hooks.actions) == {"fetch_average", "log_reps"}
        assert hooks.on_flow_complete is not None
        assert hooks.on_flow_abandoned is None

    def test_missing_file_returns_none(self, flows_dir):
        assert load_hooks("nope.py", flows_dir, "pushups") is None

    def test_path_traversal_refused(self, flows_dir):
        with pytest.raises(ValueError, match="escapes"):
            resolve_hooks_path("../../outside.py", flows_dir, "pushups")
        assert load_hooks("../../outside.py", flows_dir, "pushups") is None

    def test_dotted_module(self, monkeypatch, flows_dir):
        module = types.ModuleType("pushups_hooks")
        exec("def fetch_x(session, api):\n    return {}\n", module.__dict__)
        module.LIFECYCLE = {"on_flow_abandoned": lambda session, reason: None}
        monkeypatch.setitem(sys.modules, "pushups_hooks", module)

        hooks = load_hooks("pushups_hooks", flows_dir)
        assert set(hooks.actions) == {"fetch_x"}
        assert hooks.on_flow_abandoned is not None

    def test_registered_names_win(self, flows_dir):
        register_hooks("hooks.py", {"custom": lambda session, api: {}})
        hooks = load_hooks("hooks.py", flows_dir, "pushups")
        assert set(hooks.actions) == {"custom"}

    def test_imported_functions_are_not_actions(self):
        module = types.ModuleType("with_imports")
        module.dumps = __import__("json").dumps
        assert hooks_from_module(module).actions == {}


class TestValidateFlowActions:
    def _flow(self, action_name):
        return FlowDefinition.model_validate({
            "name": "pushups",
            "steps": [{
                "id": "reps", "message": "How many?", "capture": "reps",
                "actions": {
                    "fetch": {"average": {"action": action_name}},
                    "afterCapture": [{"type": "data.transform", "config": {}}],
                },
            }],
        })

    def test_known_actions_pass(self, flows_dir):
        hooks = load_hooks("hooks.py", flows_dir, "pushups")
        validate_flow_actions(self._flow("fetch_average"), hooks)

    def test_missing_action_raises(self, flows_dir):
        hooks = load_hooks("hooks.py", flows_dir, "pushups")
        with pytest.raises(FlowValidationError) as exc:
            validate_flow_actions(self._flow("fetch_nothing"), hooks)
        assert "fetch_average" in str(exc.value)
        assert exc.value.problems == ['step "reps": fetch action "fetch_nothing" not found']


class TestSafeExecution:
    @pytest.mark.asyncio
    async def test_hook_errors_swallowed(self):
        def broken(session):
            raise RuntimeError("nope")
        assert await safe_execute_hook("on_flow_complete", broken, object()) is None

    @pytest.mark.asyncio
    async def test_hook_timeout(self):
        async def slow(session):
            await asyncio.sleep(1)
        assert await safe_execute_hook("on_flow_complete", slow, object(), timeout_ms=20) is None

    @pytest.mark.asyncio
    async def test_hook_receives_args(self):
        hook = AsyncMock(return_value="ok")
        assert await safe_execute_hook("on_flow_abandoned", hook, "s", "timeout") == "ok"
        hook.assert_awaited_once_with("s", "timeout")

    @pytest.mark.asyncio
    async def test_action_sync_and_async(self):
        assert await safe_execute_action("a", lambda x: {"v": x}, 1) == {"v": 1}
        assert await safe_execute_action("b", AsyncMock(return_value=2)) == 2

    @pytest.mark.asyncio
    async def test_action_strategies(self):
        def boom():
            raise RuntimeError("bad")
        assert await safe_execute_action("boom", boom, strategy="warn") is None
        assert await safe_execute_action("boom", boom, strategy="silent") is None
        with pytest.raises(RuntimeError):
            await safe_execute_action("boom", boom, strategy="stop")

    @pytest.mark.asyncio
    async def test_missing_action(self):
        assert await safe_execute_action("ghost", None) is None
