# Utilities
from .logger import setup_logging, get_logger, OpportunityLogger
from .cost_calculator import CostCalculator
from .events import EventBus
from .scheduling import ScheduledCall, PeriodicTask

__all__ = [
    "setup_logging",
    "get_logger",
    "OpportunityLogger",
    "CostCalculator",
    "EventBus",
    "ScheduledCall",
    "PeriodicTask",
]
