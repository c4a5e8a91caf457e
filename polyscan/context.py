"""
Process-wide component wiring.

One AppContext is built per process and handed to whatever needs the core;
there are no module-level singletons.
"""

from dataclasses import dataclass, field
from typing import Optional

from .arbitrage.matcher import StrategyKind
from .clients.clob_client import CLOBClient
from .clients.gamma_client import GammaClient
from .clients.quote_enricher import QuoteEnricher
from .config import Config, StrategySettings
from .execution.dispatch_queue import DispatchQueue
from .execution.executor import HttpStrategyExecutor, SimulatedExecutor
from .monitor.realtime_monitor import ConnectFn, RealtimeMonitor
from .pipeline import ScanPipeline
from .utils.events import EventBus
from .utils.logger import get_logger

logger = get_logger("context")


@dataclass
class AppContext:
    """Every long-lived component of one scanner process."""
    config: Config
    bus: EventBus
    strategy_settings: StrategySettings
    gamma_client: GammaClient
    clob_client: CLOBClient
    enricher: QuoteEnricher
    queue: DispatchQueue
    pipeline: ScanPipeline
    monitor: RealtimeMonitor
    http_executor: Optional[HttpStrategyExecutor] = None
    executors: dict = field(default_factory=dict)

    async def initialize(self) -> None:
        await self.gamma_client.initialize()
        await self.clob_client.initialize()
        if self.http_executor:
            await self.http_executor.initialize()

    async def close(self) -> None:
        """Stop the pipeline and monitor and release HTTP sessions."""
        self.pipeline.stop()
        await self.pipeline.join()
        await self.monitor.stop()

        await self.gamma_client.close()
        await self.clob_client.close()
        if self.http_executor:
            await self.http_executor.close()


def build_context(
    config: Config,
    bus: Optional[EventBus] = None,
    connect_fn: Optional[ConnectFn] = None
) -> AppContext:
    """
    Construct and wire every component from configuration.

    Tasks are executed by a SimulatedExecutor while simulation mode is on or
    no executor URL is configured; otherwise by an HttpStrategyExecutor.
    """
    bus = bus or EventBus()
    strategy_settings = StrategySettings(config.strategy)

    gamma_client = GammaClient(exchange=config.exchange, scan=config.scan)
    clob_client = CLOBClient(exchange=config.exchange)
    enricher = QuoteEnricher(clob_client, batch_size=config.scan.book_batch_size)
    queue = DispatchQueue(config.dispatch, bus=bus)

    http_executor = None
    if config.risk.simulation_mode or not config.dispatch.executor_url:
        if not config.risk.simulation_mode:
            logger.warning("No EXECUTOR_URL configured, falling back to simulated execution")
        executor = SimulatedExecutor()
    else:
        http_executor = HttpStrategyExecutor(
            config.dispatch.executor_url,
            timeout_seconds=config.dispatch.execution_timeout_seconds
        )
        executor = http_executor

    executors = {}
    for kind in StrategyKind:
        queue.register_executor(kind, executor)
        executors[kind] = executor

    pipeline = ScanPipeline(
        gamma_client=gamma_client,
        enricher=enricher,
        queue=queue,
        strategy_settings=strategy_settings,
        scan_config=config.scan,
        bus=bus
    )

    monitor = RealtimeMonitor(
        config=config.monitor,
        exchange=config.exchange,
        strategy_settings=strategy_settings,
        bus=bus,
        connect_fn=connect_fn
    )

    return AppContext(
        config=config,
        bus=bus,
        strategy_settings=strategy_settings,
        gamma_client=gamma_client,
        clob_client=clob_client,
        enricher=enricher,
        queue=queue,
        pipeline=pipeline,
        monitor=monitor,
        http_executor=http_executor,
        executors=executors
    )
