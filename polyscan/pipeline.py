"""
Periodic scan pipeline.
Catalog -> quotes -> matches -> ranked opportunities -> dispatch queue.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional
from enum import Enum
import time

from .arbitrage.matcher import (
    Confidence,
    MarketQuotes,
    Opportunity,
    StrategyKind,
    StrategyMatch,
    match_strategies,
    rank_opportunities,
)
from .clients.gamma_client import GammaClient, Market
from .clients.quote_enricher import QuoteEnricher
from .config import ScanConfig, StrategyConfig, StrategySettings
from .errors import TransientFetchError
from .execution.dispatch_queue import DispatchQueue
from .execution.executor import DispatchTask
from .utils.events import EventBus
from .utils.logger import OpportunityLogger, get_logger
from .utils.scheduling import PeriodicTask

logger = get_logger("pipeline")


class PipelineState(Enum):
    """Periodic loop state."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class ScanResult:
    """Summary of one scan pass."""
    started_at: float
    finished_at: float = 0.0
    markets: list[Market] = field(default_factory=list)
    tokens_quoted: int = 0
    quote_failures: int = 0
    partial_catalog: bool = False
    opportunities: list[Opportunity] = field(default_factory=list)
    enqueued: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.skipped and self.error is None

    @property
    def markets_scanned(self) -> int:
        return len(self.markets)

    @property
    def duration_ms(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at) * 1000
        return 0.0


class ScanPipeline:
    """
    Runs scan passes on a fixed interval and feeds the dispatch queue.

    A pass is single-flight: `run_scan()` while one is running returns a
    skipped result. Draining happens in the background so slow executors
    never delay the next pass.
    """

    name = "scan-pipeline"

    def __init__(
        self,
        gamma_client: GammaClient,
        enricher: QuoteEnricher,
        queue: DispatchQueue,
        strategy_settings: Optional[StrategySettings] = None,
        scan_config: Optional[ScanConfig] = None,
        bus: Optional[EventBus] = None
    ):
        self.gamma_client = gamma_client
        self.enricher = enricher
        self.queue = queue
        self.strategy_settings = strategy_settings or StrategySettings()
        self.scan_config = scan_config or ScanConfig()
        self.bus = bus or EventBus()

        self._state = PipelineState.IDLE
        self._scanning = False
        self._loop: Optional[PeriodicTask] = None
        self._drains: set[asyncio.Task] = set()
        self._cooldowns: dict[tuple[str, StrategyKind], float] = {}

        self._opp_logger = OpportunityLogger()

        # Stats
        self.scan_count = 0
        self.error_count = 0
        self.total_opportunities = 0
        self.last_scan_at: Optional[float] = None
        self.last_result: Optional[ScanResult] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    # Lifecycle

    def start(self) -> None:
        """Start periodic scanning; the first pass runs immediately."""
        if self._state in (PipelineState.RUNNING, PipelineState.PAUSED):
            logger.warning(f"Pipeline already {self._state.value}")
            return

        self._state = PipelineState.RUNNING
        self._loop = PeriodicTask(
            self.scan_config.scan_interval_seconds,
            self._tick,
            name="scan-loop",
            run_immediately=True
        ).start()
        logger.info(f"Pipeline started, scanning every {self.scan_config.scan_interval_seconds}s")

    def pause(self) -> None:
        if self._state == PipelineState.RUNNING:
            self._state = PipelineState.PAUSED
            logger.info("Pipeline paused")

    def resume(self) -> None:
        if self._state == PipelineState.PAUSED:
            self._state = PipelineState.RUNNING
            logger.info("Pipeline resumed")

    def stop(self) -> None:
        """Cancel the scan loop and halt the queue after its current task."""
        if self._loop:
            self._loop.cancel()
            self._loop = None
        self.queue.halt()
        if self._state != PipelineState.STOPPED:
            self._state = PipelineState.STOPPED
            logger.info("Pipeline stopped")

    async def join(self) -> None:
        """Wait for background drains to finish."""
        if self._drains:
            await asyncio.gather(*list(self._drains), return_exceptions=True)

    async def _tick(self) -> None:
        if self._state != PipelineState.RUNNING:
            return
        await self.run_scan()

    # Scanning

    async def run_scan(self) -> ScanResult:
        """
        Run one full scan pass.

        Returns:
            ScanResult; `skipped` is set when a pass was already running
        """
        if self._scanning:
            logger.info("Scan already in progress, skipping")
            return ScanResult(started_at=time.time(), finished_at=time.time(), skipped=True)

        self._scanning = True
        result = ScanResult(started_at=time.time())

        try:
            await self._scan(result)
        except TransientFetchError as e:
            result.error = str(e)
            self.error_count += 1
            logger.error(f"Scan failed, market catalog unavailable: {e}")
        except Exception as e:
            result.error = str(e) or type(e).__name__
            self.error_count += 1
            logger.error(f"Scan failed with unexpected error: {e}", exc_info=True)
        finally:
            self._scanning = False
            result.finished_at = time.time()
            self.scan_count += 1
            self.last_scan_at = result.finished_at
            self.last_result = result

        if result.success:
            logger.info(
                f"Scan complete: {len(result.opportunities)} opportunities "
                f"in {result.markets_scanned} markets",
                extra={
                    "duration_ms": result.duration_ms,
                    "tokens_quoted": result.tokens_quoted,
                    "quote_failures": result.quote_failures,
                    "partial_catalog": result.partial_catalog,
                    "enqueued": result.enqueued
                }
            )

        self.bus.publish("scan", result)
        return result

    async def _scan(self, result: ScanResult) -> None:
        # One config snapshot per pass
        config = self.strategy_settings.current

        markets = await self.gamma_client.fetch_all_active_markets()
        result.markets = markets
        result.partial_catalog = self.gamma_client.last_stats.partial

        token_ids = [token_id for market in markets for token_id in market.token_ids]
        quotes = await self.enricher.enrich(token_ids)
        result.tokens_quoted = len(quotes)
        result.quote_failures = self.enricher.last_stats.failed

        opportunities = []
        for market in markets:
            market_quotes = MarketQuotes.from_quotes(market, quotes)
            matches = match_strategies(market_quotes, config)
            if not matches:
                continue

            opportunities.append(Opportunity(market_quotes=market_quotes, matches=matches))
            for match in matches:
                self._opp_logger.opportunity_detected(
                    market_id=market.condition_id,
                    strategy=match.strategy.value,
                    confidence=match.confidence.value,
                    estimated_profit=match.estimated_profit,
                    reason=match.reason
                )

        result.opportunities = rank_opportunities(opportunities)
        self.total_opportunities += len(opportunities)

        if config.auto_execute and result.opportunities:
            result.enqueued = self._auto_enqueue(result.opportunities)
            if result.enqueued:
                self._start_drain()

    def _auto_enqueue(self, opportunities: list[Opportunity]) -> int:
        """Queue HIGH-confidence matches that are not cooling down."""
        now = time.time()
        cooldown = self.scan_config.dispatch_cooldown_seconds
        self._cooldowns = {k: v for k, v in self._cooldowns.items() if v > now}

        enqueued = 0
        for opportunity in opportunities:
            for match in opportunity.matches:
                if match.confidence != Confidence.HIGH:
                    continue

                key = (opportunity.market.condition_id, match.strategy)
                if key in self._cooldowns:
                    logger.debug(
                        f"Skipping {match.strategy.value} on {key[0]}, dispatched recently"
                    )
                    continue

                self.queue.enqueue(
                    DispatchTask(market_quotes=opportunity.market_quotes, match=match)
                )
                self._cooldowns[key] = now + cooldown
                enqueued += 1

        return enqueued

    def _start_drain(self) -> None:
        task = asyncio.ensure_future(self.queue.drain())
        self._drains.add(task)
        task.add_done_callback(self._on_drain_done)

    def _on_drain_done(self, task: asyncio.Task) -> None:
        self._drains.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Drain failed: {task.exception()}")

    async def trigger_execution(
        self,
        market_quotes: MarketQuotes,
        match: StrategyMatch
    ) -> DispatchTask:
        """Queue any match for execution regardless of confidence."""
        task = self.queue.enqueue(DispatchTask(market_quotes=market_quotes, match=match))
        logger.info(
            f"Manual execution queued: {match.strategy.value} on {match.market.condition_id}",
            extra={"task_id": task.task_id}
        )
        self._start_drain()
        return task

    def update_config(self, partial: dict) -> StrategyConfig:
        """
        Merge a partial strategy config.

        Raises:
            ValueError: If a key is unknown
        """
        config = self.strategy_settings.update(partial)
        logger.info("Strategy config updated", extra={"keys": sorted(partial)})
        return config

    def get_status(self) -> dict:
        queue_stats = self.queue.get_stats()
        return {
            "name": self.name,
            "state": self._state.value,
            "size": queue_stats["size"],
            "pending": queue_stats["pending"],
            "processed": queue_stats["processed"],
            "errors": self.error_count + queue_stats["failed"],
            "scan_errors": self.error_count,
            "scanning": self._scanning,
            "scan_count": self.scan_count,
            "last_scan_at": self.last_scan_at,
            "total_opportunities": self.total_opportunities,
            "draining": queue_stats["draining"],
            "succeeded": queue_stats["succeeded"],
            "failed": queue_stats["failed"],
            "total_profit": queue_stats["total_profit"],
            "last_task_at": queue_stats["last_task_at"],
            "auto_execute": self.strategy_settings.current.auto_execute
        }
