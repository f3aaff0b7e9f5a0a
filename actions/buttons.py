"""
buttons.generateRange: numeric quick-reply buttons around the user's
recent average for a captured variable.
"""
from __future__ import annotations

import json
import math
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Optional, Union

import structlog
from pydantic import Field

from actions.common import ActionConfig, require_service
from models.schemas import Button, FlowStep

if TYPE_CHECKING:
    from engine.action_registry import ActionContext

logger = structlog.get_logger()

ButtonStrategy = Literal["centered", "progressive", "range"]
Number = Union[int, float]


class GenerateRangeConfig(ActionConfig):
    variable: str
    spreadsheet_id: Optional[str] = Field(default=None, alias="spreadsheetId")
    worksheet_name: str = Field(default="Sheet1", alias="worksheetName")
    history_file: Optional[str] = Field(default=None, alias="historyFile")
    strategy: ButtonStrategy = "centered"
    button_count: int = Field(default=5, alias="buttonCount", ge=1)
    step: Number = 5
    min_value: Optional[Number] = Field(default=None, alias="minValue")
    recent_count: int = Field(default=10, alias="recentCount", ge=1)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return None if math.isnan(number) else number


def _round_half_up(value: float, precision: int) -> Number:
    factor = 10 ** precision
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if precision == 0 else rounded


def get_recent_average(
    variable: str,
    history: list[dict[str, Any]],
    count: int = 10,
    precision: int = 0,
) -> Optional[Number]:
    """Average of the last ``count`` numeric values of ``variable``, or None."""
    values = [n for n in (_to_number(entry.get(variable)) for entry in history) if n is not None]
    if not values:
        return None
    recent = values[-count:]
    return _round_half_up(sum(recent) / len(recent), precision)


def generate_button_range(
    center: Number,
    count: int,
    step: Number,
    strategy: ButtonStrategy = "centered",
    min_value: Optional[Number] = None,
) -> list[Number]:
    """
    centered / range: center ± k·step, lowest first, ``count`` values.
    progressive:      center, center + step, ... upwards.
    Every value is clamped to ``min_value`` when given.
    """
    if strategy == "progressive":
        offsets = range(count)
    elif strategy in ("centered", "range"):
        half = count // 2
        offsets = range(-half, half + 1)
    else:
        raise ValueError(f"Unknown button strategy: {strategy}")

    values: list[Number] = []
    for i in offsets:
        if len(values) >= count:
            break
        value = center + i * step
        values.append(max(min_value, value) if min_value is not None else value)
    return values


def load_history_file(path: str) -> list[dict[str, Any]]:
    """Read a JSONL history file. A missing file is an empty history."""
    expanded = Path(path).expanduser()
    if not expanded.exists():
        return []
    history: list[dict[str, Any]] = []
    with open(expanded, "r") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("history_line_unparseable", path=str(expanded))
                continue
            if isinstance(entry, dict):
                # history.jsonl nests captured values under "variables"
                history.append({**entry, **(entry.get("variables") or {})})
    return history


async def generate_range(cfg: GenerateRangeConfig, context: "ActionContext") -> FlowStep:
    step = context.step
    if step is None:
        raise ValueError("buttons.generateRange requires step context")
    if step.capture != cfg.variable:
        return step

    session = context.session
    history: list[dict[str, Any]] = []
    if cfg.spreadsheet_id:
        backend = require_service(context, "spreadsheets", "buttons.generateRange")
        history = await backend.query(
            cfg.spreadsheet_id, cfg.worksheet_name,
            {"flowName": session.flow_name, "userId": session.sender_id},
        )
    elif cfg.history_file:
        history = load_history_file(cfg.history_file)

    average = get_recent_average(cfg.variable, history, cfg.recent_count)
    if average is None:
        return step

    values = generate_button_range(average, cfg.button_count, cfg.step,
                                   cfg.strategy, cfg.min_value)
    buttons = [Button(text=str(v), value=v) for v in values]
    return step.model_copy(update={"buttons": buttons})
