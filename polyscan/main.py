"""
Main entry point for the Polymarket anomaly scanner.
Wires the core together and runs until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

# Use uvloop for better performance on Linux
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available (Windows)

from .config import load_config, Config
from .context import AppContext, build_context
from .monitor.realtime_monitor import MonitorState
from .pipeline import ScanResult
from .utils.logger import BusLogHandler, ROOT_LOGGER, setup_logging, get_logger
from .utils.scheduling import PeriodicTask

logger = get_logger("main")

STATS_INTERVAL_SECONDS = 60.0


class ScannerApp:
    """
    Process orchestrator.

    Coordinates:
    - Periodic scan pipeline and dispatch queue
    - Realtime monitor fed with binary markets from each scan
    - Periodic stats reporting
    """

    def __init__(self, config: Config):
        """Initialize app with configuration."""
        self.config = config
        self.context: AppContext = build_context(config)
        self._shutdown_event = asyncio.Event()
        self._stats_task: Optional[PeriodicTask] = None
        self._unsubscribe = []
        self._bus_handler: Optional[BusLogHandler] = None

    async def initialize(self) -> None:
        """Initialize all components."""
        logger.info("Initializing Polymarket scanner")

        if self.config.risk.simulation_mode:
            logger.info("Simulation mode enabled - opportunities will not be traded")

        await self.context.initialize()

        bus = self.context.bus
        self._unsubscribe.append(bus.subscribe("scan", self._on_scan))

        # Expose log records to bus consumers (dashboard, persistence)
        self._bus_handler = BusLogHandler(bus)
        logging.getLogger(ROOT_LOGGER).addHandler(self._bus_handler)

    async def run(self) -> None:
        """Run until shutdown is requested."""
        logger.info("Starting scanner")

        self.context.pipeline.start()
        self._stats_task = PeriodicTask(
            STATS_INTERVAL_SECONDS,
            self._log_stats,
            name="stats"
        ).start()

        await self._shutdown_event.wait()

    async def _on_scan(self, result: ScanResult) -> None:
        """Feed binary markets from a scan to the realtime monitor."""
        if not result.success:
            return

        monitor = self.context.monitor
        binary = sorted(
            (m for m in result.markets if m.is_binary),
            key=lambda m: m.liquidity,
            reverse=True
        )
        monitor.add_markets(binary[:self.config.monitor.max_markets])

        if monitor.state in (MonitorState.DISCONNECTED, MonitorState.STOPPED) and monitor.token_ids:
            await monitor.start()

    async def _log_stats(self) -> None:
        """Log current statistics."""
        pipeline_status = self.context.pipeline.get_status()
        monitor_status = self.context.monitor.get_status()

        logger.info(
            "Scanner stats",
            extra={
                "scans": pipeline_status["scan_count"],
                "opportunities_seen": pipeline_status["total_opportunities"],
                "tasks_processed": pipeline_status["processed"],
                "errors": pipeline_status["errors"],
                "total_profit": pipeline_status["total_profit"],
                "monitor_state": monitor_status["state"],
                "monitored_markets": monitor_status["subscriptions"],
                "alerts": monitor_status["alerts_emitted"]
            }
        )

    async def shutdown(self) -> None:
        """Gracefully shutdown the scanner."""
        logger.info("Shutting down scanner")

        if self._stats_task:
            self._stats_task.cancel()
            self._stats_task = None

        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

        await self.context.close()
        await self._log_stats()

        if self._bus_handler:
            logging.getLogger(ROOT_LOGGER).removeHandler(self._bus_handler)
            self._bus_handler = None

        logger.info("Scanner shutdown complete")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def setup_signal_handlers(app: ScannerApp) -> None:
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    # Set up logging
    setup_logging(
        level=config.logging.log_level,
        json_format=config.logging.json_logging,
        alert_log_path=config.logging.alert_log_path
    )

    logger.info("Starting Polymarket scanner")

    app = ScannerApp(config)
    setup_signal_handlers(app)

    try:
        await app.initialize()
        await app.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        await app.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
