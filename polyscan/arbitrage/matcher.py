"""
Opportunity matcher.
Maps a market's quotes to strategy matches; pure functions, no I/O.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import time

from ..clients.clob_client import Quote
from ..clients.gamma_client import Market
from ..clients.websocket_client import MarketSubscription
from ..config import (
    ArbitrageConfig,
    FeeConfig,
    MarketMakingConfig,
    MintSplitConfig,
    StrategyConfig,
)
from ..utils.cost_calculator import CostCalculator
from ..utils.logger import get_logger

logger = get_logger("matcher")


class StrategyKind(Enum):
    """Strategies an opportunity can be matched to."""
    MINT_SPLIT = "MINT_SPLIT"
    ARBITRAGE_LONG = "ARBITRAGE_LONG"
    ARBITRAGE_SHORT = "ARBITRAGE_SHORT"
    MARKET_MAKING = "MARKET_MAKING"


class Confidence(Enum):
    """How likely a match fills at the observed depth."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class MarketQuotes:
    """A market with one quote per outcome token, in token order."""
    market: Market
    quotes: tuple[Quote, ...]

    @classmethod
    def from_quotes(cls, market: Market, quotes: dict[str, Quote]) -> "MarketQuotes":
        return cls(
            market=market,
            quotes=tuple(
                quotes.get(token.token_id) or Quote.sentinel(token.token_id)
                for token in market.tokens
            )
        )

    @property
    def outcome_count(self) -> int:
        return len(self.quotes)

    @property
    def complete(self) -> bool:
        """True when every outcome has a fetched quote."""
        return bool(self.quotes) and all(q.available for q in self.quotes)

    @property
    def ask_prices(self) -> list[float]:
        return [q.best_ask for q in self.quotes]

    @property
    def bid_prices(self) -> list[float]:
        return [q.best_bid for q in self.quotes]

    @property
    def ask_sizes(self) -> list[float]:
        return [q.ask_size for q in self.quotes]

    @property
    def bid_sizes(self) -> list[float]:
        return [q.bid_size for q in self.quotes]

    @property
    def ask_sum(self) -> Optional[float]:
        """Cost of buying one of every outcome; None on partial data."""
        if not self.complete:
            return None
        return sum(self.ask_prices)

    @property
    def bid_sum(self) -> Optional[float]:
        """Proceeds of selling one of every outcome; None on partial data."""
        if not self.complete:
            return None
        return sum(self.bid_prices)


@dataclass(frozen=True)
class StrategyMatch:
    """A market matched to one strategy."""
    strategy: StrategyKind
    confidence: Confidence
    estimated_profit: float
    spread_pct: float
    trade_amount: float
    reason: str
    market: Market


@dataclass
class Opportunity:
    """Scanned market with at least one strategy match."""
    market_quotes: MarketQuotes
    matches: list[StrategyMatch] = field(default_factory=list)

    @property
    def market(self) -> Market:
        return self.market_quotes.market

    @property
    def best_profit(self) -> float:
        return max((m.estimated_profit for m in self.matches), default=0.0)


def _depth_confidence(min_depth: float, amount: float, fees: FeeConfig) -> Confidence:
    if min_depth >= amount * fees.high_depth_multiple:
        return Confidence.HIGH
    if min_depth >= amount * fees.medium_depth_multiple:
        return Confidence.MEDIUM
    return Confidence.LOW


def check_mint_split(
    mq: MarketQuotes,
    config: MintSplitConfig,
    fees: FeeConfig
) -> Optional[StrategyMatch]:
    """
    Mint a full outcome set for $1 and sell every part at the bid.

    Requires at least `min_outcomes` outcomes and a bid sum above
    `min_price_sum`.
    """
    if not config.enabled or mq.outcome_count < config.min_outcomes:
        return None

    bid_sum = mq.bid_sum
    if bid_sum is None or bid_sum <= config.min_price_sum:
        return None

    estimate = CostCalculator.from_config(fees).estimate(bid_sum - 1, config.mint_amount)
    if estimate.net_profit < config.min_profit:
        return None

    confidence = _depth_confidence(min(mq.bid_sizes), config.mint_amount, fees)

    return StrategyMatch(
        strategy=StrategyKind.MINT_SPLIT,
        confidence=confidence,
        estimated_profit=estimate.net_profit,
        spread_pct=(bid_sum - 1) * 100,
        trade_amount=config.mint_amount,
        reason=(
            f"{mq.outcome_count}-outcome market, bid sum={bid_sum:.4f}, "
            f"est. profit ${estimate.net_profit:.4f}"
        ),
        market=mq.market
    )


def check_arbitrage(
    mq: MarketQuotes,
    config: ArbitrageConfig,
    fees: FeeConfig
) -> list[StrategyMatch]:
    """
    Two-outcome arbitrage.

    LONG buys both outcomes when the ask sum is below 1 - threshold;
    SHORT sells both when the bid sum is above 1 + threshold.
    """
    if not config.enabled or mq.outcome_count != 2:
        return []

    ask_sum = mq.ask_sum
    bid_sum = mq.bid_sum
    if ask_sum is None or bid_sum is None:
        return []

    threshold = config.min_spread / 100
    long_hit = config.long_enabled and ask_sum < 1 - threshold
    short_hit = config.short_enabled and bid_sum > 1 + threshold

    if long_hit and short_hit:
        logger.warning(
            "Inconsistent quotes trigger both LONG and SHORT, skipping market",
            extra={
                "market_id": mq.market.condition_id,
                "ask_sum": ask_sum,
                "bid_sum": bid_sum
            }
        )
        return []

    calculator = CostCalculator.from_config(fees)
    matches = []

    if long_hit:
        estimate = calculator.estimate(1 - ask_sum, config.trade_amount)
        if estimate.is_profitable:
            confidence = (
                Confidence.HIGH if min(mq.ask_sizes) >= config.trade_amount
                else Confidence.MEDIUM
            )
            matches.append(StrategyMatch(
                strategy=StrategyKind.ARBITRAGE_LONG,
                confidence=confidence,
                estimated_profit=estimate.net_profit,
                spread_pct=(1 - ask_sum) * 100,
                trade_amount=config.trade_amount,
                reason=f"ask sum={ask_sum:.4f}, spread={(1 - ask_sum) * 100:.2f}%",
                market=mq.market
            ))

    if short_hit:
        estimate = calculator.estimate(bid_sum - 1, config.trade_amount)
        if estimate.is_profitable:
            confidence = (
                Confidence.HIGH if min(mq.bid_sizes) >= config.trade_amount
                else Confidence.MEDIUM
            )
            matches.append(StrategyMatch(
                strategy=StrategyKind.ARBITRAGE_SHORT,
                confidence=confidence,
                estimated_profit=estimate.net_profit,
                spread_pct=(bid_sum - 1) * 100,
                trade_amount=config.trade_amount,
                reason=f"bid sum={bid_sum:.4f}, spread={(bid_sum - 1) * 100:.2f}%",
                market=mq.market
            ))

    return matches


def check_market_making(
    mq: MarketQuotes,
    config: MarketMakingConfig
) -> Optional[StrategyMatch]:
    """
    Wide top-of-book spread on a liquid two-outcome market.

    This is a signal only; profit depends on future fills and is left at 0.
    """
    if not config.enabled or mq.outcome_count != 2 or not mq.complete:
        return None

    market = mq.market
    if market.liquidity < config.min_liquidity or market.volume < config.min_volume:
        return None

    first = mq.quotes[0]
    if not first.has_two_sided_book:
        return None

    mid = (first.best_ask + first.best_bid) / 2
    if mid <= 0:
        return None

    spread_pct = (first.best_ask - first.best_bid) / mid * 100
    if spread_pct < config.spread_percent:
        return None

    return StrategyMatch(
        strategy=StrategyKind.MARKET_MAKING,
        confidence=Confidence.MEDIUM,
        estimated_profit=0.0,
        spread_pct=spread_pct,
        trade_amount=config.max_position_per_side,
        reason=f"liquidity ${market.liquidity:.0f}, current spread {spread_pct:.2f}%",
        market=market
    )


def match_strategies(mq: MarketQuotes, config: StrategyConfig) -> list[StrategyMatch]:
    """
    Run every enabled strategy check against one market.

    Checks are independent; a market may match several strategies.
    Partial quote data never matches.
    """
    if not config.enabled or not mq.complete:
        return []

    matches: list[StrategyMatch] = []

    mint_split = check_mint_split(mq, config.mint_split, config.fees)
    if mint_split:
        matches.append(mint_split)

    matches.extend(check_arbitrage(mq, config.arbitrage, config.fees))

    market_making = check_market_making(mq, config.market_making)
    if market_making:
        matches.append(market_making)

    return matches


def rank_opportunities(opportunities: list[Opportunity]) -> list[Opportunity]:
    """Sort by best estimated profit, highest first."""
    return sorted(opportunities, key=lambda o: o.best_profit, reverse=True)


# Realtime two-token check

@dataclass(frozen=True)
class PairAlert:
    """Realtime price-sum deviation on a two-outcome market."""
    condition_id: str
    question: str
    direction: str  # "LONG" when sum < 1, "SHORT" when sum > 1
    yes_price: float
    no_price: float
    price_sum: float
    spread_pct: float  # (1 - sum) * 100; positive for LONG
    estimated_profit: float
    timestamp: float


def match_price_pair(
    subscription: MarketSubscription,
    yes_price: Optional[float],
    no_price: Optional[float],
    min_spread_pct: float,
    trade_amount: float
) -> Optional[PairAlert]:
    """
    Check a yes/no price pair for a price-sum deviation.

    Both prices must be known; an alert fires when |spread| >= min_spread_pct.
    """
    if yes_price is None or no_price is None:
        return None

    price_sum = yes_price + no_price
    if price_sum <= 0:
        return None

    spread = (1 - price_sum) * 100
    if abs(spread) < min_spread_pct:
        return None

    if price_sum < 1:
        direction = "LONG"
        profit = trade_amount * (1 - price_sum) / price_sum
    else:
        direction = "SHORT"
        profit = trade_amount * (price_sum - 1)

    return PairAlert(
        condition_id=subscription.condition_id,
        question=subscription.question,
        direction=direction,
        yes_price=yes_price,
        no_price=no_price,
        price_sum=price_sum,
        spread_pct=spread,
        estimated_profit=profit,
        timestamp=time.time()
    )
