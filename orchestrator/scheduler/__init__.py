"""
Scheduling runtime for the dispatch and result feedback loops.
"""

from orchestrator.scheduler.jobs import OrchestratorRuntime, build_scheduler

__all__ = ["OrchestratorRuntime", "build_scheduler"]
