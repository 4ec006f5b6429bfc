"""Application layer - orchestration and service wiring."""

from .orchestrator import LoanOrchestrator
from .bootstrap import AppContainer

__all__ = ["LoanOrchestrator", "AppContainer"]
