# Realtime monitor
from .realtime_monitor import MonitorState, PriceTable, RealtimeMonitor

__all__ = ["MonitorState", "PriceTable", "RealtimeMonitor"]
