"""
CLOB client for Polymarket order book reads.
Fetches top-of-book quotes per outcome token.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional
import time

import aiohttp

from ..config import ExchangeConfig
from ..errors import ParseError, TransientNetworkError
from ..utils.logger import get_logger

logger = get_logger("clob")

SENTINEL_ASK = 1.0
SENTINEL_BID = 0.0


@dataclass
class OrderBookLevel:
    """Single level in the order book."""
    price: float
    size: float


@dataclass
class OrderBook:
    """Order book state for a token."""
    asset_id: str  # Token ID
    bids: list[OrderBookLevel] = field(default_factory=list)
    asks: list[OrderBookLevel] = field(default_factory=list)
    timestamp: float = 0.0

    @property
    def best_bid(self) -> Optional[float]:
        """Get best bid price."""
        if self.bids:
            return max(level.price for level in self.bids)
        return None

    @property
    def best_ask(self) -> Optional[float]:
        """Get best ask price."""
        if self.asks:
            return min(level.price for level in self.asks)
        return None

    @staticmethod
    def size_at_price(
        levels: list[OrderBookLevel],
        target_price: Optional[float],
        tolerance: float = 0.0001
    ) -> float:
        """Get total size available at a specific price."""
        if target_price is None:
            return 0.0
        return sum(level.size for level in levels if abs(level.price - target_price) < tolerance)


@dataclass(frozen=True)
class Quote:
    """
    Top of book for one token at one point in time.

    A missing side is reported as ask=1 / bid=0 with zero size, which can
    never clear an under-1 or over-1 price-sum threshold. `available` is
    False when the book could not be fetched at all.
    """
    token_id: str
    best_ask: float = SENTINEL_ASK
    best_bid: float = SENTINEL_BID
    ask_size: float = 0.0
    bid_size: float = 0.0
    available: bool = True
    timestamp: float = 0.0

    @classmethod
    def sentinel(cls, token_id: str) -> "Quote":
        return cls(token_id=token_id, available=False, timestamp=time.time())

    @classmethod
    def from_order_book(cls, book: OrderBook) -> "Quote":
        best_ask = book.best_ask
        best_bid = book.best_bid
        return cls(
            token_id=book.asset_id,
            best_ask=best_ask if best_ask is not None else SENTINEL_ASK,
            best_bid=best_bid if best_bid is not None else SENTINEL_BID,
            ask_size=OrderBook.size_at_price(book.asks, best_ask),
            bid_size=OrderBook.size_at_price(book.bids, best_bid),
            available=True,
            timestamp=book.timestamp or time.time()
        )

    @property
    def has_two_sided_book(self) -> bool:
        return self.available and self.ask_size > 0 and self.bid_size > 0


def parse_levels(raw: Any) -> list[OrderBookLevel]:
    """Parse a list of {price, size} objects."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ParseError(f"Book side is {type(raw).__name__}, expected list")
    try:
        return [
            OrderBookLevel(price=float(level["price"]), size=float(level["size"]))
            for level in raw
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"Malformed book level: {e}") from e


class CLOBClient:
    """
    Read-only client for the Polymarket CLOB REST API.

    Order placement and signing live outside the scanner; this client
    only reads public order books.
    """

    def __init__(
        self,
        exchange: Optional[ExchangeConfig] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize CLOB client.

        Args:
            exchange: Endpoint and timeout settings
            session: Optional shared HTTP session
        """
        self.exchange = exchange or ExchangeConfig()
        self._session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if not self._session:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.exchange.user_agent}
            )
            self._owns_session = True
        logger.info("CLOB client initialized")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def _get_json(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Make HTTP GET request to the CLOB API."""
        if not self._session:
            await self.initialize()

        url = f"{self.exchange.clob_url}{endpoint}"
        timeout = aiohttp.ClientTimeout(total=self.exchange.book_timeout_seconds)

        try:
            async with self._session.get(url, params=params, timeout=timeout) as response:
                response.raise_for_status()
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"CLOB request failed: {e}") from e
        except ValueError as e:
            raise ParseError(f"CLOB response is not JSON: {e}") from e

    async def get_order_book(self, token_id: str) -> OrderBook:
        """
        Fetch the order book for a token.

        Raises:
            TransientNetworkError: On timeout or HTTP failure
            ParseError: If the response body is malformed
        """
        data = await self._get_json("/book", params={"token_id": token_id})

        if not isinstance(data, dict):
            raise ParseError(f"Book for {token_id} is {type(data).__name__}, expected object")

        return OrderBook(
            asset_id=token_id,
            bids=parse_levels(data.get("bids")),
            asks=parse_levels(data.get("asks")),
            timestamp=time.time()
        )

    async def get_quote(self, token_id: str) -> Quote:
        """Fetch top of book for a token."""
        book = await self.get_order_book(token_id)
        return Quote.from_order_book(book)
