"""
Collaborator adapters: dry-run execution and recorded-event replay
"""

from .paper_executor import ExecutionRecord, PaperExecutor
from .replay_observer import ReplayObserver

__all__ = ["ExecutionRecord", "PaperExecutor", "ReplayObserver"]
