"""
Scheduling actions.

schedule.cron / schedule.oneTime register APScheduler jobs on
``context.api.scheduler``; when a job fires it sends the configured
message through ``context.api.notifier``. schedule.calendar records the
next session as an event on ``context.api.calendar``.
"""
from __future__ import annotations

import abc
import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Optional

import structlog
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from pydantic import Field

from actions.common import ActionConfig, require_service
from actions.notify import Notifier

if TYPE_CHECKING:
    from engine.action_registry import ActionContext

logger = structlog.get_logger()

SESSION_DURATION_MINUTES = 30


# ──────────────────────────────────────────────────────────────
#  Calendar backend
# ──────────────────────────────────────────────────────────────

class CalendarBackend(abc.ABC):

    @abc.abstractmethod
    async def add_event(self, calendar_id: str, event: dict[str, Any]) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def list_events(self, calendar_id: str) -> list[dict[str, Any]]:
        ...


class FileCalendarBackend(CalendarBackend):
    """One JSONL file of events per calendar id."""

    def __init__(self, data_dir: str | Path):
        self._data_dir = Path(data_dir).expanduser()
        self._lock = asyncio.Lock()

    def _path(self, calendar_id: str) -> Path:
        safe = calendar_id.replace("/", "_").lstrip(".") or "primary"
        return self._data_dir / f"{safe}.jsonl"

    async def add_event(self, calendar_id, event):
        stored = {"id": uuid.uuid4().hex, **event}
        path = self._path(calendar_id)
        async with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a") as f:
                f.write(json.dumps(stored, default=str) + "\n")
        logger.info("calendar_event_added", calendar_id=calendar_id, event_id=stored["id"])
        return stored

    async def list_events(self, calendar_id):
        path = self._path(calendar_id)
        if not path.exists():
            return []
        with open(path, "r") as f:
            return [json.loads(line) for line in f if line.strip()]


# ──────────────────────────────────────────────────────────────
#  Configs
# ──────────────────────────────────────────────────────────────

class CronConfig(ActionConfig):
    schedule: str                                   # crontab, e.g. "0 8 * * 1,3,5"
    timezone: Optional[str] = None
    message: str
    channel: str
    to: str
    name: Optional[str] = None                      # defaults to "{flow}-{sender}"
    session_type: Literal["main", "isolated"] = Field(default="isolated", alias="sessionType")
    delete_after_run: bool = Field(default=False, alias="deleteAfterRun")


class OneTimeConfig(ActionConfig):
    date: str                                       # ISO 8601
    message: str
    channel: str
    to: str
    name: Optional[str] = None


class CalendarConfig(ActionConfig):
    flow_name: str = Field(alias="flowName")
    sender_id: str = Field(alias="senderId")
    date: str
    calendar_id: str = Field(default="primary", alias="calendarId")


# ──────────────────────────────────────────────────────────────
#  Jobs
# ──────────────────────────────────────────────────────────────

async def deliver_reminder(notifier: Notifier, channel: str, to: str, message: str,
                           scheduler: BaseScheduler = None, job_id: str = None):
    """Job body: send the reminder, then optionally remove the job."""
    await notifier.send(channel, to, message)
    logger.info("scheduled_reminder_sent", job_id=job_id, channel=channel, to=to)
    if scheduler is not None and job_id is not None and scheduler.get_job(job_id):
        scheduler.remove_job(job_id)


def _default_timezone(context: "ActionContext") -> str:
    settings = getattr(context.api, "settings", None)
    return getattr(settings, "timezone", None) or "UTC"


def _parse_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


async def schedule_cron(cfg: CronConfig, context: "ActionContext") -> dict[str, Any]:
    scheduler: BaseScheduler = require_service(context, "scheduler", "schedule.cron")
    notifier: Notifier = require_service(context, "notifier", "schedule.cron")
    session = context.session

    job_id = cfg.name or f"{session.flow_name}-{session.sender_id}"
    trigger = CronTrigger.from_crontab(cfg.schedule, timezone=cfg.timezone or _default_timezone(context))
    kwargs: dict[str, Any] = {
        "notifier": notifier, "channel": cfg.channel, "to": cfg.to, "message": cfg.message,
    }
    if cfg.delete_after_run:
        kwargs.update(scheduler=scheduler, job_id=job_id)

    scheduler.add_job(deliver_reminder, trigger, id=job_id, name=job_id,
                      kwargs=kwargs, replace_existing=True)
    logger.info("cron_reminder_scheduled", job_id=job_id, schedule=cfg.schedule,
                session_type=cfg.session_type)
    return {"jobId": job_id}


async def schedule_one_time(cfg: OneTimeConfig, context: "ActionContext") -> dict[str, Any]:
    scheduler: BaseScheduler = require_service(context, "scheduler", "schedule.oneTime")
    notifier: Notifier = require_service(context, "notifier", "schedule.oneTime")
    session = context.session

    job_id = cfg.name or f"{session.flow_name}-{session.sender_id}-onetime"
    run_at = _parse_date(cfg.date)
    scheduler.add_job(
        deliver_reminder, DateTrigger(run_date=run_at), id=job_id, name=job_id,
        kwargs={"notifier": notifier, "channel": cfg.channel, "to": cfg.to, "message": cfg.message},
        replace_existing=True,
    )
    logger.info("one_time_reminder_scheduled", job_id=job_id, run_at=run_at.isoformat())
    return {"jobId": job_id}


async def schedule_calendar(cfg: CalendarConfig, context: "ActionContext") -> dict[str, Any]:
    calendar: CalendarBackend = require_service(context, "calendar", "schedule.calendar")
    start = _parse_date(cfg.date)
    end = start + timedelta(minutes=SESSION_DURATION_MINUTES)
    return await calendar.add_event(cfg.calendar_id, {
        "summary": f"{cfg.flow_name} Workflow",
        "start": start.isoformat(),
        "end": end.isoformat(),
        "description": f"Scheduled session for {cfg.flow_name} flow (user: {cfg.sender_id})",
    })
