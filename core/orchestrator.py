"""
FlowOrchestrator: command-level service behind /flow_start and /flow_step.

  /flow_start <flow>            → start(flow_name, sender_id, channel)
  /flow_step <flow> <step>:<v>  → handle_step_command(args, sender_id, channel)
                                  → step(flow_name, sender_id, channel, step_id, raw_value)

It wires the flow store, session store, executor and history sink
together. The executor stays stateless; this class persists what it
returns: progress is merged into the session store, completion writes
history and ends the session.

`startup()` / `shutdown()` (or `async with`) run the session sweeper and
the APScheduler instance that schedule.* actions register jobs on.
"""
from __future__ import annotations

import re
from typing import Optional

import structlog

from config.settings import Settings, get_settings
from database.flow_store import FileFlowStore
from database.history_store import HistoryStore
from engine.executor import FlowExecutor
from engine.hooks_loader import safe_execute_hook
from engine.sessions import SessionStore, session_key
from models.schemas import FlowDefinition, FlowSession, ReplyPayload, VariableValue
from utils.validation import FlowValidationError

logger = structlog.get_logger()

START_USAGE = (
    "Usage: /flow_start <flow-name>\n\n"
    "Example: /flow_start pushups\n\n"
    "Use /flow_list to see available flows."
)

_INTEGER = re.compile(r"^\d+$")


class CallbackParseError(ValueError):
    """Malformed ``/flow_step`` arguments. The message is user facing."""


def parse_callback(args: Optional[str]) -> tuple[str, str, str]:
    """Split ``"<flow> <step>:<value>"``. The value may contain spaces and colons."""
    text = (args or "").strip()
    if not text:
        raise CallbackParseError("Error: Missing step parameters")

    parts = text.split(" ")
    if len(parts) < 2:
        raise CallbackParseError("Error: Invalid step parameters")

    flow_name = parts[0]
    step_data = " ".join(parts[1:])
    step_id, sep, value = step_data.partition(":")
    if not sep:
        raise CallbackParseError("Error: Invalid step format (expected stepId:value)")
    return flow_name, step_id, value


def coerce_raw_value(raw: str) -> VariableValue:
    return int(raw) if _INTEGER.match(raw) else raw


class FlowOrchestrator:

    def __init__(
        self,
        settings: Settings = None,
        flow_store: FileFlowStore = None,
        session_store: SessionStore = None,
        history: HistoryStore = None,
        executor: FlowExecutor = None,
    ):
        self.settings = settings or get_settings()
        self.flows = flow_store or FileFlowStore(self.settings.flows_path)
        self.sessions = session_store or SessionStore(
            timeout_minutes=self.settings.session_timeout_minutes,
            cleanup_interval_minutes=self.settings.session_cleanup_interval_minutes,
        )
        self.history = history or HistoryStore(self.flows.flows_dir)
        self.executor = executor or FlowExecutor()

    # ── Lifecycle ─────────────────────────────────────

    async def startup(self):
        """Start the session sweeper and the scheduler behind schedule.* actions."""
        await self.sessions.start()
        scheduler = self.executor.api.scheduler
        if not scheduler.running:
            scheduler.start()
        logger.info("flow_orchestrator_started")

    async def shutdown(self):
        await self.sessions.stop()
        scheduler = self.executor.api.scheduler
        if scheduler.running:
            scheduler.shutdown(wait=False)
        logger.info("flow_orchestrator_stopped")

    async def __aenter__(self) -> "FlowOrchestrator":
        await self.startup()
        return self

    async def __aexit__(self, *exc_info):
        await self.shutdown()

    async def _load_flow(self, flow_name: str) -> Optional[FlowDefinition]:
        """Load a flow; names that escape the flows dir and corrupt files read as missing."""
        try:
            return await self.flows.load(flow_name)
        except ValueError as e:
            logger.warning("flow_unavailable", flow=flow_name, error=str(e))
            return None

    # ── /flow_start ───────────────────────────────────

    def _active_flow_limit_reached(self, sender_id: str, flow_name: str) -> bool:
        limit = self.settings.max_flows_per_user
        if not limit:
            return False
        others = [
            s for s in self.sessions.list_active()
            if s.sender_id == sender_id and s.flow_name != flow_name
        ]
        return len(others) >= limit

    async def start(self, flow_name: str, sender_id: str, channel: str) -> ReplyPayload:
        flow_name = (flow_name or "").strip()
        if not flow_name:
            return ReplyPayload(text=START_USAGE)

        flow = await self._load_flow(flow_name)
        if flow is None:
            return ReplyPayload(
                text=f'Flow "{flow_name}" not found.\n\nUse /flow_list to see available flows.')
        if not flow.steps:
            return ReplyPayload(text=f'Flow "{flow_name}" has no steps.')

        if self._active_flow_limit_reached(sender_id, flow.name):
            logger.info("flow_start_rejected_limit", flow=flow.name, sender=sender_id,
                        limit=self.settings.max_flows_per_user)
            return ReplyPayload(
                text=f"You already have {self.settings.max_flows_per_user} active flow(s). "
                     "Finish one before starting another.")

        session = self.sessions.create(flow.name, flow.steps[0].id, sender_id, channel)
        logger.info("flow_start", flow=flow.name, sender=sender_id, session=session.key)

        try:
            outcome = await self.executor.begin_flow(flow, session)
        except FlowValidationError as e:
            self.sessions.delete(session.key)
            return ReplyPayload(text=f"Error: {e}")

        if outcome.updated_variables:
            self.sessions.update(session.key, variables=outcome.updated_variables)
        return outcome.reply

    # ── /flow_step ────────────────────────────────────

    async def handle_step_command(self, args: Optional[str], sender_id: str,
                                  channel: str) -> ReplyPayload:
        try:
            flow_name, step_id, raw_value = parse_callback(args)
        except CallbackParseError as e:
            return ReplyPayload(text=str(e))
        return await self.step(flow_name, sender_id, channel, step_id, raw_value)

    async def _abandon(self, flow, sender_id: str, channel: str, step_id: str):
        hooks = self.executor.load_flow_hooks(flow)
        if not hooks or not hooks.on_flow_abandoned:
            return
        placeholder = FlowSession(
            flow_name=flow.name,
            current_step_id=step_id,
            sender_id=sender_id,
            channel=channel,
            variables={},
        )
        await safe_execute_hook(
            "on_flow_abandoned", hooks.on_flow_abandoned, placeholder, "timeout",
            timeout_ms=self.settings.security.hook_timeout_ms,
        )

    async def step(self, flow_name: str, sender_id: str, channel: str,
                   step_id: str, raw_value: str) -> ReplyPayload:
        flow = await self._load_flow(flow_name)
        if flow is None:
            return ReplyPayload(text=f'Flow "{flow_name}" not found.')

        key = session_key(sender_id, flow_name)
        session = self.sessions.get(key)
        if session is None:
            logger.info("flow_session_missing", flow=flow_name, sender=sender_id, step_id=step_id)
            await self._abandon(flow, sender_id, channel, step_id)
            return ReplyPayload(
                text=f"Session expired or not found.\n\nUse /flow_start {flow_name} to restart the flow.")

        value = coerce_raw_value(raw_value)
        try:
            outcome = await self.executor.process_step(flow, session, step_id, value)
        except FlowValidationError as e:
            return ReplyPayload(text=f"Error: {e}")

        if outcome.complete:
            if self.settings.enable_builtin_history and (flow.storage is None or flow.storage.builtin):
                finished = session.model_copy(update={"variables": outcome.updated_variables})
                await self.history.save(finished)
            self.sessions.delete(key)
            return outcome.reply

        patch = {"variables": outcome.updated_variables}
        if outcome.next_step_id:
            patch["current_step_id"] = outcome.next_step_id
        self.sessions.update(key, **patch)
        return outcome.reply
