"""
Job orchestration and credit settlement.
"""
from .coordinator import SettlementCoordinator
from .results import JobResult, result_for_job
from .settler import JobSettler

__all__ = [
    "SettlementCoordinator",
    "JobResult",
    "JobSettler",
    "result_for_job",
]
