"""
Structured logging for the Polymarket anomaly scanner.
Supports JSON logging for log aggregation.
"""

import logging
import sys
from typing import Optional, TYPE_CHECKING
from pythonjsonlogger import jsonlogger

if TYPE_CHECKING:
    from .events import EventBus

ROOT_LOGGER = "polyscan"
ALERT_LOGGER = f"{ROOT_LOGGER}.alerts"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['timestamp'] = self.formatTime(record, self.datefmt)


class BusLogHandler(logging.Handler):
    """Forwards log records to an event bus as `log` events."""

    def __init__(self, bus: "EventBus", level: int = logging.INFO):
        super().__init__(level)
        self.bus = bus

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.bus.publish("log", {
                "time": record.created,
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            })
        except Exception:
            self.handleError(record)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None,
    alert_log_path: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Whether to use JSON format
        logger_name: Optional specific logger name
        alert_log_path: Optional file that receives realtime alerts (append-only)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name or ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers = []

    # Create console handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if alert_log_path:
        alert_logger = logging.getLogger(ALERT_LOGGER)
        alert_logger.handlers = []
        file_handler = logging.FileHandler(alert_log_path, mode="a", encoding="utf-8")
        file_handler.setFormatter(CustomJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s'
        ))
        alert_logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger with the given name."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class OpportunityLogger:
    """Specialized logger for opportunity and dispatch events."""

    def __init__(self):
        self.logger = get_logger("opportunities")
        self.alert_logger = logging.getLogger(ALERT_LOGGER)

    def opportunity_detected(
        self,
        market_id: str,
        strategy: str,
        confidence: str,
        estimated_profit: float,
        reason: str
    ):
        """Log when a strategy match is found by a scan."""
        self.logger.info(
            "Opportunity detected",
            extra={
                "event": "opportunity_detected",
                "market_id": market_id,
                "strategy": strategy,
                "confidence": confidence,
                "estimated_profit_usd": estimated_profit,
                "reason": reason
            }
        )

    def task_completed(
        self,
        task_id: str,
        market_id: str,
        strategy: str,
        profit: float,
        latency_ms: float
    ):
        """Log when a dispatched task executes successfully."""
        self.logger.info(
            "Task completed",
            extra={
                "event": "task_completed",
                "task_id": task_id,
                "market_id": market_id,
                "strategy": strategy,
                "profit_usd": profit,
                "latency_ms": latency_ms
            }
        )

    def task_failed(
        self,
        task_id: str,
        market_id: str,
        strategy: str,
        error: Optional[str] = None
    ):
        """Log when a dispatched task fails."""
        self.logger.error(
            "Task failed",
            extra={
                "event": "task_failed",
                "task_id": task_id,
                "market_id": market_id,
                "strategy": strategy,
                "error": error
            }
        )

    def pair_alert(
        self,
        market_id: str,
        question: str,
        direction: str,
        yes_price: float,
        no_price: float,
        spread_pct: float,
        estimated_profit: float
    ):
        """Log a realtime two-outcome price alert."""
        self.alert_logger.info(
            "Pair alert",
            extra={
                "event": "pair_alert",
                "market_id": market_id,
                "question": question[:50],
                "direction": direction,
                "yes_price": yes_price,
                "no_price": no_price,
                "price_sum": yes_price + no_price,
                "spread_pct": spread_pct,
                "estimated_profit_usd": estimated_profit
            }
        )
