"""
Execution collaborators for dispatched opportunities.
The dispatch queue treats every executor as an opaque, possibly slow call.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional
from enum import Enum
import time
import uuid

import aiohttp

from ..arbitrage.matcher import MarketQuotes, StrategyMatch
from ..errors import ExecutionError
from ..utils.logger import get_logger

logger = get_logger("executor")


class TaskStatus(Enum):
    """State of a dispatched task."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class DispatchTask:
    """One matched opportunity waiting for, or going through, execution."""
    market_quotes: MarketQuotes
    match: StrategyMatch
    task_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    status: TaskStatus = TaskStatus.PENDING
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    profit: Optional[float] = None
    error: Optional[str] = None

    @property
    def market_id(self) -> str:
        return self.match.market.condition_id

    @property
    def duration_ms(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at) * 1000
        return 0.0


@dataclass
class ExecutionResult:
    """Outcome reported by an executor."""
    success: bool
    profit: Optional[float] = None
    error: Optional[str] = None


Executor = Callable[[DispatchTask], Awaitable[ExecutionResult]]


class SimulatedExecutor:
    """
    Detects but doesn't trade.

    Reports every task as successful with its estimated profit.
    """

    def __init__(self, latency_seconds: float = 0.0):
        self.latency_seconds = latency_seconds
        self.executed: list[str] = []

    async def __call__(self, task: DispatchTask) -> ExecutionResult:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        match = task.match
        logger.info(
            f"[SIMULATION] Would execute {match.strategy.value} "
            f"for ${match.trade_amount:.2f}",
            extra={
                "task_id": task.task_id,
                "market_id": task.market_id,
                "estimated_profit": match.estimated_profit
            }
        )
        self.executed.append(task.task_id)
        return ExecutionResult(success=True, profit=match.estimated_profit)


def task_payload(task: DispatchTask) -> dict:
    """JSON body describing a task for an external executor."""
    match = task.match
    market = match.market
    return {
        "task_id": task.task_id,
        "strategy": match.strategy.value,
        "confidence": match.confidence.value,
        "market_id": market.condition_id,
        "question": market.question,
        "trade_amount": match.trade_amount,
        "estimated_profit": match.estimated_profit,
        "spread_pct": match.spread_pct,
        "reason": match.reason,
        "quotes": [
            {
                "token_id": quote.token_id,
                "best_ask": quote.best_ask,
                "best_bid": quote.best_bid,
                "ask_size": quote.ask_size,
                "bid_size": quote.bid_size
            }
            for quote in task.market_quotes.quotes
        ]
    }


class HttpStrategyExecutor:
    """
    Hands tasks to a strategy execution service over HTTP.

    The service receives `task_payload(task)` and answers
    `{"success": bool, "profit": float?, "error": str?}`.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        if not self._session:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def __call__(self, task: DispatchTask) -> ExecutionResult:
        if not self._session:
            await self.initialize()

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with self._session.post(
                self.url,
                json=task_payload(task),
                timeout=timeout
            ) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExecutionError(f"Execution request failed: {e}") from e
        except ValueError as e:
            raise ExecutionError(f"Execution response is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise ExecutionError("Execution response is not an object")

        profit = data.get("profit")
        return ExecutionResult(
            success=bool(data.get("success")),
            profit=float(profit) if profit is not None else None,
            error=data.get("error")
        )
