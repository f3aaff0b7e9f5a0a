"""data.transform: small aggregations over literal or interpolated inputs."""
from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Optional, Union

from actions.common import ActionConfig

if TYPE_CHECKING:
    from engine.action_registry import ActionContext

Operation = Literal["sum", "average", "min", "max", "concat", "format"]


class TransformConfig(ActionConfig):
    operation: Operation
    inputs: list[Union[int, float, str]]
    format: Optional[str] = None


def _numbers(inputs: list) -> list[Union[int, float]]:
    numbers = []
    for value in inputs:
        if isinstance(value, (int, float)):
            numbers.append(value)
            continue
        try:
            numbers.append(float(value))
        except ValueError:
            raise ValueError(f"non-numeric input '{value}'") from None
    return numbers


async def transform(cfg: TransformConfig, context: "ActionContext") -> dict[str, Union[int, float, str]]:
    op = cfg.operation
    if op == "concat":
        return {"result": "".join(str(v) for v in cfg.inputs)}

    if op == "format":
        if cfg.format is None:
            raise ValueError("format operation requires format string")
        result = cfg.format
        for idx, value in enumerate(cfg.inputs):
            result = result.replace(f"{{{idx}}}", str(value), 1)
        return {"result": result}

    numbers = _numbers(cfg.inputs)
    if not numbers:
        raise ValueError(f"{op} operation requires at least one input")
    if op == "sum":
        return {"result": sum(numbers)}
    if op == "average":
        return {"result": sum(numbers) / len(numbers)}
    if op == "min":
        return {"result": min(numbers)}
    return {"result": max(numbers)}
