# Dispatch and execution
from .dispatch_queue import DispatchQueue
from .executor import (
    DispatchTask,
    ExecutionResult,
    HttpStrategyExecutor,
    SimulatedExecutor,
    TaskStatus,
)

__all__ = [
    "DispatchQueue",
    "DispatchTask",
    "ExecutionResult",
    "HttpStrategyExecutor",
    "SimulatedExecutor",
    "TaskStatus",
]
