"""
Helpers shared by the built-in actions: config base model, service
lookup on the action context, and retry with exponential backoff.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

if TYPE_CHECKING:
    from engine.action_registry import ActionContext

logger = structlog.get_logger()

T = TypeVar("T")

RETRY_ATTEMPTS = 3
RETRY_DELAY_S = 1.0
RETRY_MAX_DELAY_S = 30.0


class ActionConfig(BaseModel):
    """Action configs are authored camelCase; snake_case is accepted too."""
    model_config = ConfigDict(populate_by_name=True)


def require_service(context: "ActionContext", name: str, action_type: str) -> Any:
    """Fetch ``context.api.<name>`` or fail with a readable error."""
    service = getattr(context.api, name, None) if context.api is not None else None
    if service is None:
        raise RuntimeError(f"{action_type} requires api.{name} to be configured")
    return service


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = RETRY_ATTEMPTS,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    delay_s: Optional[float] = None,
    max_delay_s: Optional[float] = None,
) -> T:
    """Call ``fn`` up to ``attempts`` times, doubling the delay each retry."""
    delay = RETRY_DELAY_S if delay_s is None else delay_s
    ceiling = RETRY_MAX_DELAY_S if max_delay_s is None else max_delay_s

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=delay, max=ceiling),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
    ):
        with attempt:
            n = attempt.retry_state.attempt_number
            if n > 1:
                logger.debug("action_retry", attempt=n)
            return await fn()
