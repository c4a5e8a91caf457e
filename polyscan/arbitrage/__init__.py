# Opportunity matching
from .matcher import (
    Confidence,
    MarketQuotes,
    Opportunity,
    PairAlert,
    StrategyKind,
    StrategyMatch,
    match_price_pair,
    match_strategies,
    rank_opportunities,
)

__all__ = [
    "Confidence",
    "MarketQuotes",
    "Opportunity",
    "PairAlert",
    "StrategyKind",
    "StrategyMatch",
    "match_price_pair",
    "match_strategies",
    "rank_opportunities",
]
