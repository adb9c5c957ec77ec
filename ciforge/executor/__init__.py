from .controller import FanoutController
from .pipeline import PipelineExecutor, expand_placeholders
from .types import (
    ExecutionContext,
    ExecutionContextError,
    Failure,
    JobOutcome,
    JobStatus,
    RunOutcome,
    StageResult,
)

__all__ = [
    "FanoutController",
    "PipelineExecutor",
    "expand_placeholders",
    "ExecutionContext",
    "ExecutionContextError",
    "Failure",
    "JobOutcome",
    "JobStatus",
    "RunOutcome",
    "StageResult",
]
