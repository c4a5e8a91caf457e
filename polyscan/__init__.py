"""
Polymarket Anomaly Scanner

Scans Polymarket for outcome-price anomalies and dispatches matched
opportunities to execution.

Entry point: python -m polyscan.main

Key Modules:
- polyscan.clients: Gamma catalog, CLOB order books, quote enrichment, stream parsing
- polyscan.arbitrage: Opportunity matching (mint/split, long/short, market making)
- polyscan.execution: Dispatch queue and executors
- polyscan.pipeline: Periodic scan loop
- polyscan.monitor: Realtime two-outcome monitor
- polyscan.context: Per-process component wiring
"""
