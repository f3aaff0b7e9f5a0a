"""http.request: call an HTTP endpoint with retry on transport and status errors."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, Optional

import httpx
import structlog
from pydantic import Field, field_validator

from actions.common import ActionConfig, with_retry

if TYPE_CHECKING:
    from engine.action_registry import ActionContext

logger = structlog.get_logger()


class HttpRequestConfig(ActionConfig):
    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = {}
    body: Optional[dict[str, Any]] = None
    timeout: int = Field(default=10000, gt=0)       # ms
    retries: int = Field(default=3, ge=1)

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid url: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("url must be an absolute http(s) URL")
        return value


def _decode(response: httpx.Response) -> Any:
    if "application/json" in response.headers.get("content-type", ""):
        return response.json()
    return response.text


async def _send(client: httpx.AsyncClient, cfg: HttpRequestConfig) -> Any:
    headers = {"Content-Type": "application/json", **cfg.headers}
    json_body = cfg.body if cfg.method != "GET" and cfg.body is not None else None
    response = await client.request(
        cfg.method, cfg.url, headers=headers, json=json_body,
        timeout=cfg.timeout / 1000,
    )
    response.raise_for_status()
    return _decode(response)


async def request(cfg: HttpRequestConfig, context: "ActionContext") -> Any:
    shared: Optional[httpx.AsyncClient] = getattr(context.api, "http_client", None)

    async def attempt() -> Any:
        if shared is not None:
            return await _send(shared, cfg)
        async with httpx.AsyncClient() as client:
            return await _send(client, cfg)

    result = await with_retry(attempt, attempts=cfg.retries, retry_on=(httpx.HTTPError,))
    logger.debug("http_request_completed", method=cfg.method, url=cfg.url)
    return result
