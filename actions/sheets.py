"""
Spreadsheet actions: sheets.append, sheets.query, sheets.create.

The actions talk to a SpreadsheetBackend taken from ``context.api.spreadsheets``.
FileSpreadsheetBackend is the default: each worksheet is a JSON document

  {data_dir}/{spreadsheet_id}/{worksheet}.json
    {"headers": [...], "rows": [[...], ...]}

written through a temp file and an atomic rename.
"""
from __future__ import annotations

import abc
import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Optional

import structlog
from pydantic import Field

from actions.common import ActionConfig, require_service, with_retry
from models.schemas import utcnow

if TYPE_CHECKING:
    from engine.action_registry import ActionContext

logger = structlog.get_logger()

HeaderMode = Literal["append", "overwrite", "strict"]


class HeaderMismatchError(ValueError):
    """Row keys differ from the worksheet headers under ``strict`` mode."""


# ──────────────────────────────────────────────────────────────
#  Backend
# ──────────────────────────────────────────────────────────────

class SpreadsheetBackend(abc.ABC):
    """Storage the sheets.* actions write to."""

    @abc.abstractmethod
    async def append_rows(self, spreadsheet_id: str, worksheet: str,
                          rows: list[dict[str, Any]], header_mode: HeaderMode = "append"):
        ...

    @abc.abstractmethod
    async def query(self, spreadsheet_id: str, worksheet: str,
                    filters: dict[str, Any] = None) -> list[dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def create(self, title: str, worksheet: str = "Sheet1",
                     headers: list[str] = None) -> dict[str, str]:
        """Returns {"spreadsheetId": ..., "spreadsheetUrl": ...}."""
        ...


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def filter_rows(rows: list[dict[str, Any]], filters: dict[str, Any] = None) -> list[dict[str, Any]]:
    """Apply flowName / userId / dateRange filters to header-keyed rows."""
    if not filters:
        return rows
    if filters.get("flowName"):
        rows = [r for r in rows if r.get("flowName") == filters["flowName"]]
    if filters.get("userId"):
        rows = [r for r in rows if r.get("userId") == filters["userId"]]
    if filters.get("dateRange"):
        start, end = (_parse_time(v) for v in filters["dateRange"])
        kept = []
        for row in rows:
            ts = _parse_time(row.get("timestamp"))
            if ts is not None and start is not None and end is not None and start <= ts <= end:
                kept.append(row)
        rows = kept
    return rows


class FileSpreadsheetBackend(SpreadsheetBackend):
    """JSON-file worksheets under a data directory. Single-process only."""

    def __init__(self, data_dir: str | Path):
        self._data_dir = Path(data_dir).expanduser()
        self._lock = asyncio.Lock()

    def _sheet_path(self, spreadsheet_id: str, worksheet: str) -> Path:
        if not spreadsheet_id or "/" in spreadsheet_id or spreadsheet_id.startswith("."):
            raise ValueError(f"invalid spreadsheet id '{spreadsheet_id}'")
        safe = worksheet.replace("/", "_")
        return self._data_dir / spreadsheet_id / f"{safe}.json"

    def _read(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {"headers": [], "rows": []}
        with open(path, "r") as f:
            return json.load(f)

    def _write(self, path: Path, sheet: dict[str, Any]):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(sheet, f, indent=2, default=str)
        tmp_path.replace(path)

    async def append_rows(self, spreadsheet_id, worksheet, rows, header_mode="append"):
        if not rows:
            return
        path = self._sheet_path(spreadsheet_id, worksheet)
        async with self._lock:
            sheet = self._read(path)
            headers: list[str] = sheet["headers"]
            keys = list(rows[0].keys())

            if not headers:
                headers = keys
            elif headers != keys:
                if header_mode == "strict":
                    raise HeaderMismatchError(
                        f'Header mismatch in sheet "{worksheet}". '
                        f"Expected: {', '.join(headers)}. Got: {', '.join(keys)}.")
                if header_mode == "append":
                    headers = headers + [k for k in keys if k not in headers]
                else:
                    headers = keys

            sheet["headers"] = headers
            sheet["rows"].extend([[row.get(h, "") for h in headers] for row in rows])
            self._write(path, sheet)
        logger.debug("sheet_rows_appended", spreadsheet_id=spreadsheet_id,
                     worksheet=worksheet, rows=len(rows))

    async def query(self, spreadsheet_id, worksheet, filters=None):
        path = self._sheet_path(spreadsheet_id, worksheet)
        sheet = self._read(path)
        headers = sheet["headers"]
        rows = [
            {h: (row[i] if i < len(row) else "") for i, h in enumerate(headers)}
            for row in sheet["rows"]
        ]
        return filter_rows(rows, filters)

    async def create(self, title, worksheet="Sheet1", headers=None):
        spreadsheet_id = uuid.uuid4().hex
        path = self._sheet_path(spreadsheet_id, worksheet)
        async with self._lock:
            self._write(path, {"title": title, "headers": list(headers or []), "rows": []})
        logger.info("spreadsheet_created", spreadsheet_id=spreadsheet_id, title=title)
        return {
            "spreadsheetId": spreadsheet_id,
            "spreadsheetUrl": path.parent.resolve().as_uri(),
        }


# ──────────────────────────────────────────────────────────────
#  Actions
# ──────────────────────────────────────────────────────────────

class SheetsAppendConfig(ActionConfig):
    spreadsheet_id: str = Field(alias="spreadsheetId")
    worksheet_name: str = Field(default="Sheet1", alias="worksheetName")
    columns: Optional[list[str]] = None
    include_metadata: bool = Field(default=True, alias="includeMetadata")
    header_mode: HeaderMode = Field(default="append", alias="headerMode")


class SheetFilters(ActionConfig):
    flow_name: Optional[str] = Field(default=None, alias="flowName")
    user_id: Optional[str] = Field(default=None, alias="userId")
    date_range: Optional[tuple[str, str]] = Field(default=None, alias="dateRange")


class SheetsQueryConfig(ActionConfig):
    spreadsheet_id: str = Field(alias="spreadsheetId")
    worksheet_name: str = Field(default="Sheet1", alias="worksheetName")
    filters: Optional[SheetFilters] = None


class SheetsCreateConfig(ActionConfig):
    title: str
    worksheet_name: str = Field(default="Sheet1", alias="worksheetName")
    headers: Optional[list[str]] = None
    folder_id: Optional[str] = Field(default=None, alias="folderId")


def build_row(context: "ActionContext", columns: Optional[list[str]],
              include_metadata: bool) -> dict[str, Any]:
    session = context.session
    row: dict[str, Any] = {}
    if include_metadata:
        row["timestamp"] = utcnow().isoformat()
        row["userId"] = session.sender_id
        row["flowName"] = session.flow_name
        row["channel"] = session.channel
    if columns:
        for col in columns:
            row[col] = session.variables.get(col, "")
    else:
        row.update(session.variables)
    return row


async def append_rows(cfg: SheetsAppendConfig, context: "ActionContext") -> None:
    backend: SpreadsheetBackend = require_service(context, "spreadsheets", "sheets.append")
    row = build_row(context, cfg.columns, cfg.include_metadata)
    await with_retry(
        lambda: backend.append_rows(cfg.spreadsheet_id, cfg.worksheet_name, [row], cfg.header_mode),
        retry_on=(OSError,),
    )


async def query_rows(cfg: SheetsQueryConfig, context: "ActionContext") -> list[dict[str, Any]]:
    backend: SpreadsheetBackend = require_service(context, "spreadsheets", "sheets.query")
    filters = cfg.filters.model_dump(by_alias=True, exclude_none=True) if cfg.filters else None
    return await backend.query(cfg.spreadsheet_id, cfg.worksheet_name, filters)


async def create_spreadsheet(cfg: SheetsCreateConfig, context: "ActionContext") -> dict[str, str]:
    backend: SpreadsheetBackend = require_service(context, "spreadsheets", "sheets.create")
    return await backend.create(cfg.title, cfg.worksheet_name, cfg.headers)
