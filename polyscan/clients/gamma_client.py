"""
Gamma API client for Polymarket market metadata.
Paginates the market listing into a deduplicated catalog snapshot.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional
from datetime import datetime, timezone

import aiohttp

from ..config import ExchangeConfig, ScanConfig
from ..errors import ParseError, TransientFetchError, TransientNetworkError
from ..utils.logger import get_logger

logger = get_logger("gamma")

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class OutcomeToken:
    """Token (outcome) information."""
    token_id: str
    outcome: str  # "Yes" or "No" or custom outcome name


@dataclass(frozen=True)
class Market:
    """Market information, immutable for one scan pass."""
    condition_id: str
    question: str
    tokens: tuple[OutcomeToken, ...] = ()
    category: str = ""
    liquidity: float = 0.0
    volume: float = 0.0
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    created_at: Optional[datetime] = None

    @property
    def outcome_count(self) -> int:
        return len(self.tokens)

    @property
    def is_binary(self) -> bool:
        """Check if this is a binary (YES/NO) market."""
        return len(self.tokens) == 2

    @property
    def token_ids(self) -> list[str]:
        return [t.token_id for t in self.tokens]

    def get_yes_token(self) -> Optional[OutcomeToken]:
        """Get the YES token for binary markets."""
        for token in self.tokens:
            if token.outcome.lower() == "yes":
                return token
        return self.tokens[0] if self.tokens else None

    def get_no_token(self) -> Optional[OutcomeToken]:
        """Get the NO token for binary markets."""
        for token in self.tokens:
            if token.outcome.lower() == "no":
                return token
        return self.tokens[1] if len(self.tokens) > 1 else None


@dataclass
class CatalogStats:
    """Counters for the last catalog fetch."""
    pages_fetched: int = 0
    records_seen: int = 0
    parse_errors: int = 0
    skipped: int = 0
    duplicates: int = 0
    retries: int = 0
    partial: bool = False


class GammaClient:
    """
    Client for Polymarket Gamma API.

    The Gamma API provides market metadata without requiring
    authentication.
    """

    def __init__(
        self,
        exchange: Optional[ExchangeConfig] = None,
        scan: Optional[ScanConfig] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize Gamma client.

        Args:
            exchange: Endpoint and timeout settings
            scan: Pagination and retry settings
            session: Optional shared HTTP session
        """
        self.exchange = exchange or ExchangeConfig()
        self.scan = scan or ScanConfig()
        self._session = session
        self._owns_session = session is None
        self.last_stats = CatalogStats()

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if not self._session:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.exchange.user_agent}
            )
            self._owns_session = True
        logger.info("Gamma client initialized")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Make HTTP request to Gamma API."""
        if not self._session:
            await self.initialize()

        url = f"{self.exchange.gamma_url}{endpoint}"
        timeout = aiohttp.ClientTimeout(total=self.exchange.catalog_timeout_seconds)

        try:
            async with self._session.get(url, params=params, timeout=timeout) as response:
                response.raise_for_status()
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransientNetworkError(f"Gamma API request failed: {e}") from e

    async def _fetch_page(self, offset: int) -> list:
        """Fetch one listing page, retrying with exponential backoff."""
        params = {
            "active": "true",
            "closed": "false",
            "limit": self.scan.page_size,
            "offset": offset
        }
        last_error: Optional[Exception] = None

        for attempt in range(self.scan.max_retries):
            try:
                data = await self._request("/markets", params=params)
                if data is None:
                    return []
                if not isinstance(data, list):
                    raise TransientNetworkError(
                        f"Unexpected listing payload type {type(data).__name__}"
                    )
                return data
            except TransientNetworkError as e:
                last_error = e
                logger.warning(
                    f"Page fetch attempt {attempt + 1}/{self.scan.max_retries} failed: {e}",
                    extra={"offset": offset}
                )

            if attempt < self.scan.max_retries - 1:
                self.last_stats.retries += 1
                await asyncio.sleep(self.scan.retry_base_delay * (2 ** attempt))

        raise TransientNetworkError(
            f"Page at offset {offset} failed after {self.scan.max_retries} attempts: {last_error}"
        )

    async def fetch_all_active_markets(self) -> list[Market]:
        """
        Fetch the complete set of active markets.

        Returns:
            Deduplicated markets, newest first

        Raises:
            TransientFetchError: If the first page cannot be fetched
        """
        stats = CatalogStats()
        self.last_stats = stats
        markets: dict[str, Market] = {}
        offset = 0

        while True:
            try:
                data = await self._fetch_page(offset)
            except TransientNetworkError as e:
                if stats.pages_fetched == 0:
                    raise TransientFetchError(str(e)) from e
                stats.partial = True
                logger.warning(
                    f"Stopping pagination early, returning partial catalog: {e}",
                    extra={"pages_fetched": stats.pages_fetched, "markets": len(markets)}
                )
                break

            stats.pages_fetched += 1

            if not data:
                break

            for market_data in data:
                stats.records_seen += 1
                try:
                    market = self.parse_market(market_data)
                except ParseError as e:
                    stats.parse_errors += 1
                    logger.debug(f"Skipping malformed market: {e}")
                    continue

                if market is None:
                    stats.skipped += 1
                    continue

                if market.condition_id in markets:
                    stats.duplicates += 1
                    continue

                markets[market.condition_id] = market

            if len(data) < self.scan.page_size:
                break

            offset += self.scan.page_size
            await asyncio.sleep(self.scan.page_delay_seconds)

        result = sorted(
            markets.values(),
            key=lambda m: m.created_at or _EPOCH,
            reverse=True
        )

        logger.info(
            f"Fetched {len(result)} active markets",
            extra={
                "pages": stats.pages_fetched,
                "parse_errors": stats.parse_errors,
                "skipped": stats.skipped,
                "duplicates": stats.duplicates,
                "partial": stats.partial
            }
        )
        return result

    @staticmethod
    def _parse_list(raw: Any) -> list:
        """Parse a field that may be a list, a JSON array string or CSV."""
        if raw is None or raw == "":
            return []
        if isinstance(raw, list):
            return raw
        if isinstance(raw, str):
            if raw.startswith("["):
                try:
                    value = json.loads(raw)
                except json.JSONDecodeError:
                    return raw.strip("[]").split(",")
                return value if isinstance(value, list) else []
            return raw.split(",")
        raise ParseError(f"Unsupported list field type {type(raw).__name__}")

    @staticmethod
    def _parse_float(raw: Any, default: Optional[float] = 0.0) -> Optional[float]:
        if raw is None or raw == "":
            return default
        try:
            return float(raw)
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _parse_datetime(raw: Any) -> Optional[datetime]:
        if not raw or not isinstance(raw, str):
            return None
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def parse_market(self, data: Any) -> Optional[Market]:
        """
        Parse a market from a listing record.

        Returns:
            Market, or None when the market is not scannable

        Raises:
            ParseError: If the record is malformed
        """
        if not isinstance(data, dict):
            raise ParseError(f"Market record is {type(data).__name__}, expected object")

        condition_id = data.get("conditionId") or data.get("condition_id")
        if not condition_id:
            raise ParseError("Market record has no condition id")

        if data.get("enableOrderBook") is False:
            return None

        tokens: list[OutcomeToken] = []
        token_objects = data.get("tokens")

        if isinstance(token_objects, list) and token_objects:
            for item in token_objects:
                if not isinstance(item, dict) or not item.get("token_id"):
                    raise ParseError(f"Malformed token entry in {condition_id}")
                tokens.append(OutcomeToken(
                    token_id=str(item["token_id"]).strip(),
                    outcome=str(item.get("outcome", "")).strip()
                ))
        else:
            token_ids = self._parse_list(data.get("clobTokenIds"))
            outcomes = self._parse_list(data.get("outcomes"))

            for i, token_id in enumerate(token_ids):
                token_id = str(token_id).strip().strip('"')
                if not token_id:
                    continue
                outcome = str(outcomes[i]).strip().strip('"') if i < len(outcomes) else f"Outcome {i}"
                tokens.append(OutcomeToken(token_id=token_id, outcome=outcome))

        if len(tokens) < 2:
            return None

        liquidity = data.get("liquidityNum")
        if liquidity is None:
            liquidity = data.get("liquidity")
        volume = data.get("volumeNum")
        if volume is None:
            volume = data.get("volume")

        return Market(
            condition_id=str(condition_id),
            question=str(data.get("question", "")),
            tokens=tuple(tokens),
            category=str(data.get("category") or ""),
            liquidity=self._parse_float(liquidity),
            volume=self._parse_float(volume),
            best_bid=self._parse_float(data.get("bestBid"), default=None),
            best_ask=self._parse_float(data.get("bestAsk"), default=None),
            created_at=self._parse_datetime(data.get("createdAt"))
        )
