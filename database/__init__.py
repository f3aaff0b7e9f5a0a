"""
Persistence for flow definitions and completed-flow history.

Layout under ``flows_dir``:
  {flow_name}/metadata.json   ← FileFlowStore
  {flow_name}/history.jsonl   ← HistoryStore

Quick start:
  from database import FileFlowStore
  store = FileFlowStore("~/.skillflow/flows")
  flow = await store.load("pushups")
"""
from database.flow_store import FileFlowStore
from database.history_store import HistoryStore

__all__ = ["FileFlowStore", "HistoryStore"]
