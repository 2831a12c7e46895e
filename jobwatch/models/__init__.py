from jobwatch.models.base import Base
from jobwatch.models.execution import (
    FAILED_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    ExecutionStatus,
    JobExecution,
    TriggeredBy,
)

__all__ = [
    "Base",
    "JobExecution",
    "ExecutionStatus",
    "TriggeredBy",
    "TRANSITIONS",
    "TERMINAL_STATUSES",
    "FAILED_STATUSES",
]
