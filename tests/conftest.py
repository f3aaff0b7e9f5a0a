"""Shared test fixtures for SkillFlow."""
import pytest

import actions.common
from config.settings import Settings, reset_settings
from engine.executor import FlowApi, FlowExecutor
from engine.hooks_loader import clear_registered_hooks
from models.schemas import FlowDefinition, FlowSession


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    """No retry backoff, no hook registrations or cached settings leaking between tests."""
    monkeypatch.setattr(actions.common, "RETRY_DELAY_S", 0)
    yield
    clear_registered_hooks()
    reset_settings()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        flows_dir=str(tmp_path / "flows"),
        data_dir=str(tmp_path / "data"),
    )


@pytest.fixture
def api(settings) -> FlowApi:
    return FlowApi(settings=settings)


@pytest.fixture
def executor(api) -> FlowExecutor:
    return FlowExecutor(api=api)


@pytest.fixture
def make_session():
    def _make(flow_name: str = "pushups", step_id: str = "start",
              variables: dict = None, channel: str = "telegram",
              sender_id: str = "user-1") -> FlowSession:
        return FlowSession(
            flow_name=flow_name,
            current_step_id=step_id,
            sender_id=sender_id,
            channel=channel,
            variables=variables or {},
        )
    return _make


@pytest.fixture
def linear_flow() -> FlowDefinition:
    """Two questions, then done."""
    return FlowDefinition.model_validate({
        "name": "survey",
        "steps": [
            {"id": "name", "message": "What is your name?", "capture": "name", "next": "age"},
            {"id": "age", "message": "Hi {{name}}, how old are you?",
             "capture": "age", "validate": "number"},
        ],
    })


@pytest.fixture
def pushups_flow() -> FlowDefinition:
    """Numeric capture with a conditional branch and button overrides."""
    return FlowDefinition.model_validate({
        "name": "pushups",
        "description": "Daily pushups tracker",
        "steps": [
            {
                "id": "start",
                "message": "Ready for pushups?",
                "buttons": [
                    {"text": "Yes", "value": "yes", "next": "reps"},
                    {"text": "Skip today", "value": "skip", "next": "skipped"},
                ],
            },
            {
                "id": "reps",
                "message": "How many reps?",
                "buttons": [10, 20, 30, 40],
                "capture": "reps",
                "validate": "number",
                "condition": {"variable": "reps", "greaterThan": 25, "next": "great"},
                "next": "done",
            },
            {"id": "great", "message": "Great job, {{reps}} reps!"},
            {"id": "done", "message": "Logged {{reps}} reps."},
            {"id": "skipped", "message": "See you tomorrow."},
        ],
    })
