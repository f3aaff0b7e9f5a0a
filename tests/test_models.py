"""Tests for flow definition models."""
import pytest
from pydantic import ValidationError

from models.schemas import (
    DeclarativeAction, FlowDefinition, FlowSession, FlowStep, LegacyAction, StepActions,
    ValidationType,
)


class TestFlowStep:
    def test_authored_aliases(self):
        step = FlowStep.model_validate({
            "id": "reps", "message": "Reps?", "validate": "number",
            "condition": {"variable": "reps", "greaterThan": 25, "next": "great"},
        })
        assert step.validation is ValidationType.NUMBER
        assert step.condition.greater_than == 25

    def test_unknown_validation_rejected(self):
        with pytest.raises(ValidationError):
            FlowStep.model_validate({"id": "a", "message": "A", "validate": "zipcode"})


class TestStepActions:
    def test_mode_detected_per_entry(self):
        actions = StepActions.model_validate({
            "fetch": {"avg": {"action": "get_avg"}},
            "beforeRender": [{"type": "buttons.generateRange", "config": {"variable": "reps"}}],
            "afterCapture": [
                {"action": "log", "if": "enabled"},
                {"type": "sheets.append", "if": {"variable": "reps", "operator": "gt", "value": 0}},
            ],
        })
        assert isinstance(actions.fetch["avg"], LegacyAction)
        assert isinstance(actions.before_render[0], DeclarativeAction)
        assert actions.after_capture[0].if_ == "enabled"
        assert actions.after_capture[1].if_.variable == "reps"
        assert len(actions.all_actions()) == 4


class TestFlowDefinition:
    def test_requires_steps(self):
        with pytest.raises(ValidationError):
            FlowDefinition.model_validate({"name": "empty", "steps": []})

    def test_lookup_and_imports(self):
        flow = FlowDefinition.model_validate({
            "name": "f",
            "steps": [{"id": "a", "message": "A"}],
            "actions": {"imports": ["my_actions"]},
        })
        assert flow.get_step("a").message == "A"
        assert flow.get_step("b") is None
        assert flow.action_imports == ["my_actions"]


class TestFlowSession:
    def test_key(self):
        session = FlowSession(flow_name="pushups", current_step_id="start",
                              sender_id="42", channel="telegram")
        assert session.key == "42-pushups"
        assert session.variables == {}
