# Polymarket clients
from .clob_client import CLOBClient, Quote
from .gamma_client import GammaClient, Market, OutcomeToken
from .quote_enricher import QuoteEnricher
from .websocket_client import MarketSubscription, PriceUpdate

__all__ = [
    "CLOBClient",
    "Quote",
    "GammaClient",
    "Market",
    "OutcomeToken",
    "QuoteEnricher",
    "MarketSubscription",
    "PriceUpdate",
]
