"""
Core data models for the SkillFlow engine.
These are the universal types shared across all modules.

Flow definitions are authored as JSON/YAML with camelCase keys
(``beforeRender``, ``greaterThan``, ``if``); every model accepts both the
authored alias and the Python field name.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import (
    BaseModel, ConfigDict, Discriminator, Field, Tag, model_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


VariableValue = Union[int, float, str]
Scalar = Union[bool, int, float, str]


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ValidationType(str, Enum):
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"


class ComparisonOperator(str, Enum):
    EQUALS = "equals"
    EQ = "eq"
    NOT_EQUALS = "notEquals"
    NE = "ne"
    GREATER_THAN = "greaterThan"
    GT = "gt"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    GTE = "gte"
    LESS_THAN = "lessThan"
    LT = "lt"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    MATCHES = "matches"
    IN = "in"
    EXISTS = "exists"


class _FlowModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ──────────────────────────────────────────────────────────────
#  Conditions
# ──────────────────────────────────────────────────────────────

class ConditionExpression(_FlowModel):
    """
    Recursive boolean expression used to gate declarative actions.

    Either a comparison (variable + operator + value) or a combinator
    (and / or / not). The comparand is a scalar; see ``utils.conditions``
    for how ``in`` treats it.
    """
    variable: Optional[str] = None
    operator: Optional[ComparisonOperator] = None
    value: Optional[Scalar] = None

    and_: Optional[list[ConditionExpression]] = Field(default=None, alias="and")
    or_: Optional[list[ConditionExpression]] = Field(default=None, alias="or")
    not_: Optional[ConditionExpression] = Field(default=None, alias="not")


class StepCondition(_FlowModel):
    """Single conditional branch on a step."""
    variable: str
    equals: Optional[VariableValue] = None
    greater_than: Optional[float] = Field(default=None, alias="greaterThan")
    less_than: Optional[float] = Field(default=None, alias="lessThan")
    contains: Optional[str] = None
    next: str


# ──────────────────────────────────────────────────────────────
#  Actions
# ──────────────────────────────────────────────────────────────

class DeclarativeAction(_FlowModel):
    """Registry-dispatched action: ``{"type": "ns.action", "config": {...}}``."""
    type: str
    config: dict[str, Any] = {}
    if_: Optional[ConditionExpression] = Field(default=None, alias="if")


class LegacyAction(_FlowModel):
    """Named function from a hook module: ``{"action": "fn", "if": "flag"}``."""
    action: str
    if_: Optional[str] = Field(default=None, alias="if")


def _action_mode(raw: Any) -> str:
    if isinstance(raw, dict):
        return "declarative" if "type" in raw else "legacy"
    return "declarative" if isinstance(raw, DeclarativeAction) else "legacy"


StepAction = Annotated[
    Union[
        Annotated[DeclarativeAction, Tag("declarative")],
        Annotated[LegacyAction, Tag("legacy")],
    ],
    Discriminator(_action_mode),
]


class StepActions(_FlowModel):
    fetch: dict[str, StepAction] = {}               # variable name → action
    before_render: list[StepAction] = Field(default=[], alias="beforeRender")
    after_capture: list[StepAction] = Field(default=[], alias="afterCapture")

    def all_actions(self) -> list[StepAction]:
        return [*self.fetch.values(), *self.before_render, *self.after_capture]


# ──────────────────────────────────────────────────────────────
#  Flow Definition
# ──────────────────────────────────────────────────────────────

class Button(_FlowModel):
    text: str
    value: VariableValue
    next: Optional[str] = None


class FlowStep(_FlowModel):
    id: str
    message: str
    buttons: Optional[list[Union[Button, int, float, str]]] = None
    next: Optional[str] = None
    capture: Optional[str] = None
    validation: Optional[ValidationType] = Field(default=None, alias="validate")
    condition: Optional[StepCondition] = None
    actions: Optional[StepActions] = None


class FlowTriggers(_FlowModel):
    manual: Optional[bool] = None
    cron: Optional[str] = None
    event: Optional[str] = None


class FlowStorage(_FlowModel):
    backend: Optional[str] = None
    builtin: bool = True                            # write completed sessions to history.jsonl


class FlowActionImports(_FlowModel):
    imports: list[str] = []                         # python modules exporting ACTIONS


class FlowDefinition(_FlowModel):
    """
    Immutable-per-load workflow definition.

    Step ids are unique; dangling ``next`` references are reported by
    ``utils.validation.validate_flow_definition`` and, at runtime, by the
    transition resolver.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    description: str = ""
    version: str = "1.0.0"
    author: Optional[str] = None
    steps: list[FlowStep] = Field(min_length=1)
    triggers: Optional[FlowTriggers] = None
    hooks: Optional[str] = None                     # legacy hook module path or name
    env: dict[str, str] = {}                        # session variable → environment variable
    storage: Optional[FlowStorage] = None
    actions: Optional[FlowActionImports] = None

    @model_validator(mode="after")
    def _unique_step_ids(self) -> FlowDefinition:
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id '{step.id}'")
            seen.add(step.id)
        return self

    @property
    def step_index(self) -> dict[str, FlowStep]:
        return {s.id: s for s in self.steps}

    def get_step(self, step_id: str) -> Optional[FlowStep]:
        return self.step_index.get(step_id)

    @property
    def action_imports(self) -> list[str]:
        return self.actions.imports if self.actions else []


# ──────────────────────────────────────────────────────────────
#  Runtime State
# ──────────────────────────────────────────────────────────────

class FlowSession(BaseModel):
    """Per-(sender, flow) runtime state. Owned by the session store."""
    flow_name: str
    current_step_id: str
    sender_id: str
    channel: str
    variables: dict[str, VariableValue] = {}
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return f"{self.sender_id}-{self.flow_name}"


class TransitionResult(BaseModel):
    """Outcome of resolving one user input against a step."""
    model_config = ConfigDict(frozen=True)

    next_step_id: Optional[str] = None
    variables: dict[str, VariableValue] = {}
    complete: bool = False
    error: Optional[str] = None
    message: Optional[str] = None                   # user-facing text for the error
    captured: bool = False
    captured_value: Optional[VariableValue] = None


class ReplyPayload(BaseModel):
    text: str
    channel_data: dict[str, Any] = {}


class StepOutcome(BaseModel):
    """What ``process_step`` hands back to the caller."""
    reply: ReplyPayload
    complete: bool = False
    updated_variables: dict[str, VariableValue] = {}
    next_step_id: Optional[str] = None
