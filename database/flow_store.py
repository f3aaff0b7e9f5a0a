"""
FileFlowStore: flow definitions persisted as JSON on disk.

Data layout:
  {flows_dir}/
    {flow_name}/
      metadata.json      ← FlowDefinition (camelCase keys)
      history.jsonl      ← written by HistoryStore
      hooks.py           ← optional legacy hook module

Writes go to a temp file and are renamed into place. Each flow name has
its own asyncio.Lock, so concurrent saves of one flow are serialized
within the process.
"""
from __future__ import annotations

import asyncio
import json
import shutil
from collections import defaultdict
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from models.schemas import FlowDefinition
from utils.validation import FlowValidationError, validate_flow_definition

logger = structlog.get_logger()

METADATA_FILE = "metadata.json"


class FileFlowStore:

    def __init__(self, flows_dir: Union[str, Path]):
        self._flows_dir = Path(flows_dir).expanduser()
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def flows_dir(self) -> Path:
        return self._flows_dir

    def _flow_dir(self, name: str) -> Path:
        base = self._flows_dir.resolve()
        path = (base / name).resolve()
        if not name or path.parent != base:
            raise ValueError(f'Invalid flow name "{name}"')
        return path

    def _metadata_path(self, name: str) -> Path:
        return self._flow_dir(name) / METADATA_FILE

    # ── Read ──────────────────────────────────────────

    def _read(self, path: Path) -> FlowDefinition:
        with open(path, "r") as f:
            data = json.load(f)
        return FlowDefinition.model_validate(data)

    async def load(self, name: str) -> Optional[FlowDefinition]:
        """Return the flow, or None when it does not exist."""
        path = self._metadata_path(name)
        async with self._locks[name]:
            if not path.exists():
                return None
            try:
                return self._read(path)
            except (json.JSONDecodeError, ValidationError) as e:
                logger.error("flow_load_failed", flow=name, error=str(e))
                raise

    async def list(self) -> list[FlowDefinition]:
        if not self._flows_dir.exists():
            return []
        flows: list[FlowDefinition] = []
        for entry in sorted(self._flows_dir.iterdir()):
            if not entry.is_dir() or not (entry / METADATA_FILE).exists():
                continue
            try:
                flow = await self.load(entry.name)
            except (json.JSONDecodeError, ValidationError):
                continue
            if flow:
                flows.append(flow)
        return flows

    # ── Write ─────────────────────────────────────────

    async def save(self, flow: Union[FlowDefinition, dict[str, Any]]) -> FlowDefinition:
        """Validate and write a flow. Raises FlowValidationError on bad definitions."""
        if not isinstance(flow, FlowDefinition):
            try:
                flow = FlowDefinition.model_validate(flow)
            except ValidationError as e:
                raise FlowValidationError(
                    "Invalid flow definition",
                    problems=[err["msg"] for err in e.errors()],
                ) from e
        validate_flow_definition(flow)

        path = self._metadata_path(flow.name)
        data = flow.model_dump(mode="json", by_alias=True, exclude_none=True)
        async with self._locks[flow.name]:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(path)

        logger.info("flow_saved", flow=flow.name, steps=len(flow.steps))
        return flow

    async def delete(self, name: str) -> bool:
        flow_dir = self._flow_dir(name)
        async with self._locks[name]:
            if not flow_dir.exists():
                return False
            shutil.rmtree(flow_dir)
        logger.info("flow_deleted", flow=name)
        return True
