"""
Built-in declarative actions.

Each module exposes pydantic config models and async routines
``(config, ActionContext) → result``. The table that maps action types to
them lives in ``engine.action_registry.builtin_actions``.

Actions reach external systems only through the service bundle on the
context (``context.api``):
  - spreadsheets: SpreadsheetBackend   (sheets.*, buttons.generateRange)
  - calendar:     CalendarBackend      (schedule.calendar)
  - scheduler:    APScheduler scheduler (schedule.cron / schedule.oneTime)
  - notifier:     Notifier             (notify.*, scheduled reminders)
  - http_client:  optional shared httpx.AsyncClient (http.request)
"""
from actions.sheets import SpreadsheetBackend, FileSpreadsheetBackend, HeaderMismatchError
from actions.schedule import CalendarBackend, FileCalendarBackend
from actions.notify import Notifier, LoggingNotifier

__all__ = [
    "SpreadsheetBackend", "FileSpreadsheetBackend", "HeaderMismatchError",
    "CalendarBackend", "FileCalendarBackend",
    "Notifier", "LoggingNotifier",
]
