"""
Quote enricher: fetches top-of-book quotes for many tokens in bounded batches.
"""

import asyncio
from dataclasses import dataclass
from typing import Iterable

from ..errors import ParseError, TransientNetworkError
from ..utils.logger import get_logger
from .clob_client import CLOBClient, Quote

logger = get_logger("enricher")


@dataclass
class EnricherStats:
    """Counters for the last enrich call."""
    requested: int = 0
    fetched: int = 0
    failed: int = 0
    batches: int = 0


class QuoteEnricher:
    """
    Fetches quotes in fixed-size concurrent batches.

    Batches run one after another; requests within a batch run
    concurrently, so at most `batch_size` book requests are outstanding.
    A failed token gets a sentinel quote instead of failing the batch.
    """

    def __init__(self, clob_client: CLOBClient, batch_size: int = 50):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.clob_client = clob_client
        self.batch_size = batch_size
        self.last_stats = EnricherStats()

    async def _fetch_one(self, token_id: str, stats: EnricherStats) -> Quote:
        try:
            quote = await self.clob_client.get_quote(token_id)
            stats.fetched += 1
            return quote
        except (TransientNetworkError, ParseError) as e:
            stats.failed += 1
            logger.debug(f"Quote fetch failed for {token_id}, using sentinel: {e}")
            return Quote.sentinel(token_id)

    async def enrich(self, token_ids: Iterable[str]) -> dict[str, Quote]:
        """
        Fetch quotes for all tokens.

        Args:
            token_ids: Token IDs; duplicates are fetched once

        Returns:
            Dict of token_id -> Quote with an entry for every token
        """
        unique_ids = list(dict.fromkeys(token_ids))
        stats = EnricherStats(requested=len(unique_ids))
        self.last_stats = stats
        quotes: dict[str, Quote] = {}

        for i in range(0, len(unique_ids), self.batch_size):
            batch = unique_ids[i:i + self.batch_size]
            results = await asyncio.gather(
                *(self._fetch_one(token_id, stats) for token_id in batch)
            )
            stats.batches += 1
            for quote in results:
                quotes[quote.token_id] = quote

        if stats.failed:
            logger.warning(
                f"{stats.failed}/{stats.requested} quote fetches failed, sentinel quotes used",
                extra={"failed": stats.failed, "requested": stats.requested}
            )
        else:
            logger.debug(f"Fetched {stats.fetched} quotes in {stats.batches} batches")

        return quotes
