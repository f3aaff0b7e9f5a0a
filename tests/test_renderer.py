"""Tests for the default step renderer."""
from engine.renderer import FALLBACK_PROMPT, callback_data, interpolate_message, render_step
from models.schemas import FlowDefinition


def _flow(buttons):
    return FlowDefinition.model_validate({
        "name": "pushups",
        "steps": [{"id": "reps", "message": "Hi {{name}}, reps?", "buttons": buttons}],
    })


class TestInterpolateMessage:
    def test_known_and_unknown(self):
        assert interpolate_message("{{a}} and {{b}}", {"a": 1}) == "1 and {{b}}"


class TestTelegram:
    def test_numeric_buttons_in_two_columns(self, make_session):
        flow = _flow([10, 20, 30])
        reply = render_step(flow, flow.steps[0], make_session(variables={"name": "Ann"}), "telegram")
        assert reply.text == "Hi Ann, reps?"
        keyboard = reply.channel_data["telegram"]["buttons"]
        assert [[cell["text"] for cell in row] for row in keyboard] == [["10", "20"], ["30"]]
        assert keyboard[0][0]["callback_data"] == "/flow_step pushups reps:10"

    def test_text_buttons_one_per_row(self, make_session):
        flow = _flow([{"text": "Yes", "value": "yes"}, {"text": "No", "value": "no"}, "maybe"])
        reply = render_step(flow, flow.steps[0], make_session(), "telegram")
        assert len(reply.channel_data["telegram"]["buttons"]) == 3

    def test_two_numeric_buttons_one_per_row(self, make_session):
        flow = _flow([1, 2])
        keyboard = render_step(flow, flow.steps[0], make_session(), "telegram").channel_data["telegram"]["buttons"]
        assert keyboard == [
            [{"text": "1", "callback_data": callback_data("pushups", "reps", 1)}],
            [{"text": "2", "callback_data": callback_data("pushups", "reps", 2)}],
        ]

    def test_no_buttons(self, make_session):
        flow = _flow(None)
        reply = render_step(flow, flow.steps[0], make_session(), "telegram")
        assert reply.channel_data == {}


class TestTextChannels:
    def test_numbered_list(self, make_session):
        flow = _flow(["Yes", "No"])
        reply = render_step(flow, flow.steps[0], make_session(variables={"name": "Bo"}), "sms")
        assert reply.text == f"Hi Bo, reps?\n\n1. Yes\n2. No\n\n{FALLBACK_PROMPT}"
        assert reply.channel_data == {}
