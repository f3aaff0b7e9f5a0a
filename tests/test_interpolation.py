"""Tests for {{expression}} interpolation."""
from datetime import datetime, timezone

import pytest

from engine.interpolation import (
    InterpolationContext, create_interpolation_context, evaluate_expression,
    interpolate, interpolate_config, interpolate_value,
)

FIXED_NOW = datetime(2024, 3, 15, 12, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def ctx(make_session):
    session = make_session(variables={"reps": 20, "name": "alice", "sets": 3})
    return create_interpolation_context(session, env={"API_KEY": "secret"}, now=lambda: FIXED_NOW)


class TestPaths:
    def test_variable(self, ctx):
        assert interpolate("Did {{variables.reps}} reps", ctx) == "Did 20 reps"

    def test_session_fields_accept_camel_case(self, ctx):
        assert interpolate("{{session.senderId}}", ctx) == "user-1"
        assert interpolate("{{session.flow_name}}", ctx) == "pushups"

    def test_env(self, ctx):
        assert interpolate("Bearer {{env.API_KEY}}", ctx) == "Bearer secret"

    def test_unresolved_left_as_written(self, ctx):
        assert interpolate("x={{variables.missing}}", ctx) == "x={{variables.missing}}"
        assert interpolate("{{session._private}}", ctx) == "{{session._private}}"

    def test_model_methods_not_reachable(self, ctx):
        assert interpolate("{{session.model_dump}}", ctx) == "{{session.model_dump}}"
        assert interpolate("{{session.modelCopy}}", ctx) == "{{session.modelCopy}}"
        assert interpolate("{{session.key}}", ctx) == "{{session.key}}"

    def test_no_placeholders_is_identity(self, ctx):
        assert interpolate("plain text", ctx) == "plain text"


class TestExpressions:
    def test_arithmetic_precedence(self, ctx):
        assert evaluate_expression("variables.reps + variables.sets * 2", ctx) == 26
        assert evaluate_expression("(variables.reps + 4) / 2", ctx) == 12

    def test_unary_minus(self, ctx):
        assert evaluate_expression("-variables.sets + 1", ctx) == -2

    def test_division_by_zero_unresolved(self, ctx):
        with pytest.raises(LookupError):
            evaluate_expression("variables.reps / 0", ctx)

    def test_arithmetic_on_text_unresolved(self, ctx):
        assert interpolate("{{variables.name * 2}}", ctx) == "{{variables.name * 2}}"

    def test_math_helpers(self, ctx):
        assert evaluate_expression("math.sum(variables.reps, variables.sets)", ctx) == 23
        assert evaluate_expression("math.max(1, 7, 3)", ctx) == 7
        assert evaluate_expression("math.round(2.567, 2)", ctx) == 2.57
        assert evaluate_expression("math.average(2, 4)", ctx) == 3

    def test_string_helpers(self, ctx):
        assert evaluate_expression("string.upper(variables.name)", ctx) == "ALICE"
        assert evaluate_expression("string.concat('a', 1, \"b\")", ctx) == "a1b"

    def test_timestamp_helpers(self, ctx):
        assert interpolate("{{timestamp.now}}", ctx) == FIXED_NOW.isoformat()
        assert evaluate_expression("timestamp.daysAgo(1)", ctx).startswith("2024-03-14")
        assert evaluate_expression("timestamp.format(timestamp.now, 'YYYY/MM/DD')", ctx) == "2024/03/15"

    def test_no_code_execution(self, ctx):
        assert interpolate("{{__import__('os')}}", ctx) == "{{__import__('os')}}"


class TestTypedValues:
    def test_sole_placeholder_keeps_type(self, ctx):
        assert interpolate_value("{{variables.reps}}", ctx) == 20
        assert interpolate_value("{{variables.reps}} reps", ctx) == "20 reps"

    def test_integral_float_rendered_without_fraction(self, ctx):
        assert interpolate("{{variables.reps / 2}}", ctx) == "10"

    def test_config_deep(self, ctx):
        config = {
            "inputs": ["{{variables.reps}}", "{{variables.sets}}"],
            "headers": {"Authorization": "Bearer {{env.API_KEY}}"},
            "limit": 5,
        }
        resolved = interpolate_config(config, ctx)
        assert resolved == {
            "inputs": [20, 3],
            "headers": {"Authorization": "Bearer secret"},
            "limit": 5,
        }
        assert config["inputs"][0] == "{{variables.reps}}"

    def test_idempotent_once_resolved(self, ctx):
        once = interpolate("{{variables.name}} did {{variables.reps}}", ctx)
        assert interpolate(once, ctx) == once

    def test_bare_context(self):
        ctx = InterpolationContext(variables={"a": 1})
        assert interpolate("{{variables.a}}", ctx) == "1"
