"""
Dispatch queue: serialises execution of matched opportunities.

Only one drain runs at a time. Two concurrent drains could commit the same
capital to two opportunities on the same market.
"""

import asyncio
from collections import deque
from typing import Optional
import time

from ..arbitrage.matcher import StrategyKind
from ..config import DispatchConfig
from ..errors import ExecutionError
from ..utils.events import EventBus
from ..utils.logger import OpportunityLogger, get_logger
from .executor import DispatchTask, ExecutionResult, Executor, TaskStatus

logger = get_logger("dispatch")


class DispatchQueue:
    """
    FIFO of dispatch tasks with a single drainer.

    `drain()` returns immediately with False when another drain holds the
    lock. A failing task is logged and counted and the drain moves on.
    """

    def __init__(
        self,
        config: Optional[DispatchConfig] = None,
        bus: Optional[EventBus] = None
    ):
        self.config = config or DispatchConfig()
        self.bus = bus or EventBus()

        self._tasks: deque[DispatchTask] = deque()
        self._executors: dict[StrategyKind, Executor] = {}
        self._lock = asyncio.Lock()
        self._halted = False
        self._current: Optional[DispatchTask] = None

        self._opp_logger = OpportunityLogger()

        # Stats
        self.drains_executed = 0
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.total_profit = 0.0
        self.last_task_at: Optional[float] = None

    def register_executor(self, kind: StrategyKind, executor: Executor) -> None:
        self._executors[kind] = executor

    def enqueue(self, task: DispatchTask) -> DispatchTask:
        self._tasks.append(task)
        logger.debug(
            f"Enqueued {task.match.strategy.value} task {task.task_id}",
            extra={"task_id": task.task_id, "queue_size": len(self._tasks)}
        )
        return task

    @property
    def size(self) -> int:
        """Tasks waiting to run."""
        return len(self._tasks)

    @property
    def pending(self) -> int:
        """Tasks currently running."""
        return 1 if self._current is not None else 0

    @property
    def is_draining(self) -> bool:
        return self._lock.locked()

    def halt(self) -> None:
        """Stop the running drain after its current task; queued tasks stay."""
        if self._lock.locked():
            self._halted = True
            logger.info("Dispatch queue halting after current task")

    async def drain(self) -> bool:
        """
        Execute queued tasks in order until empty or halted.

        Returns:
            False if another drain was already running
        """
        if self._lock.locked():
            logger.debug("Drain already running, skipping")
            return False

        async with self._lock:
            self._halted = False
            self.drains_executed += 1

            while self._tasks and not self._halted:
                task = self._tasks.popleft()
                await self._execute(task)

                if self._tasks and not self._halted:
                    await asyncio.sleep(self.config.inter_task_delay_seconds)

            self._halted = False

        return True

    async def _run_executor(self, task: DispatchTask) -> ExecutionResult:
        kind = task.match.strategy
        executor = self._executors.get(kind)
        if executor is None:
            raise ExecutionError(f"No executor registered for {kind.value}")

        try:
            result = await asyncio.wait_for(
                executor(task),
                timeout=self.config.execution_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ExecutionError(
                f"Execution timed out after {self.config.execution_timeout_seconds}s"
            ) from e

        if not result.success:
            raise ExecutionError(result.error or "Executor reported failure")
        return result

    async def _execute(self, task: DispatchTask) -> None:
        self._current = task
        task.status = TaskStatus.RUNNING
        task.started_at = time.time()

        try:
            result = await self._run_executor(task)
        except asyncio.CancelledError:
            task.status = TaskStatus.FAILED
            task.error = "cancelled"
            raise
        except Exception as e:
            # Executors are external; any failure only fails this task
            task.status = TaskStatus.FAILED
            task.error = str(e)
            self.failed += 1
            self._opp_logger.task_failed(
                task_id=task.task_id,
                market_id=task.market_id,
                strategy=task.match.strategy.value,
                error=task.error
            )
        else:
            task.status = TaskStatus.SUCCESS
            task.profit = result.profit or 0.0
            self.succeeded += 1
            self.total_profit += task.profit
            task.finished_at = time.time()
            self._opp_logger.task_completed(
                task_id=task.task_id,
                market_id=task.market_id,
                strategy=task.match.strategy.value,
                profit=task.profit,
                latency_ms=task.duration_ms
            )
        finally:
            task.finished_at = task.finished_at or time.time()
            self.processed += 1
            self.last_task_at = task.finished_at
            self._current = None

        self.bus.publish("task", task)

    def get_stats(self) -> dict:
        return {
            "size": self.size,
            "pending": self.pending,
            "draining": self.is_draining,
            "drains_executed": self.drains_executed,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total_profit": self.total_profit,
            "last_task_at": self.last_task_at,
            "current_task": self._current.task_id if self._current else None
        }
