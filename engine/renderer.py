"""
Default step renderer.

Telegram gets an inline keyboard whose callbacks route back through
``/flow_step``; every other channel gets a numbered text menu.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

from models.schemas import Button, FlowDefinition, FlowSession, FlowStep, ReplyPayload
from utils.validation import normalize_buttons

_VARIABLE = re.compile(r"\{\{(\w+)\}\}")

FALLBACK_PROMPT = "Reply with the number of your choice."


def interpolate_message(text: str, variables: Mapping[str, Any]) -> str:
    """Substitute ``{{name}}`` from variables; unknown names stay as written."""
    def replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)
    return _VARIABLE.sub(replace, text)


def callback_data(flow_name: str, step_id: str, value: Any) -> str:
    return f"/flow_step {flow_name} {step_id}:{value}"


def _is_numeric(button: Button) -> bool:
    return isinstance(button.value, (int, float)) and not isinstance(button.value, bool)


def _render_telegram(flow: FlowDefinition, step: FlowStep, message: str) -> ReplyPayload:
    buttons = normalize_buttons(step.buttons)
    if not buttons:
        return ReplyPayload(text=message)

    cells = [
        {"text": b.text, "callback_data": callback_data(flow.name, step.id, b.value)}
        for b in buttons
    ]
    if len(buttons) > 2 and all(_is_numeric(b) for b in buttons):
        keyboard = [cells[i:i + 2] for i in range(0, len(cells), 2)]
    else:
        keyboard = [[cell] for cell in cells]

    return ReplyPayload(text=message, channel_data={"telegram": {"buttons": keyboard}})


def _render_text(step: FlowStep, message: str) -> ReplyPayload:
    buttons = normalize_buttons(step.buttons)
    if not buttons:
        return ReplyPayload(text=message)
    options = "\n".join(f"{i}. {b.text}" for i, b in enumerate(buttons, start=1))
    return ReplyPayload(text=f"{message}\n\n{options}\n\n{FALLBACK_PROMPT}")


def render_step(
    flow: FlowDefinition,
    step: FlowStep,
    session: FlowSession,
    channel: str,
) -> ReplyPayload:
    message = interpolate_message(step.message, session.variables)
    if channel == "telegram":
        return _render_telegram(flow, step, message)
    return _render_text(step, message)
