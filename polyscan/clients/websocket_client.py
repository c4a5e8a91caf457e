"""
Polymarket CLOB market-channel stream: message parsing and subscriptions.
Connection handling lives in the realtime monitor.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Optional
from enum import Enum

from ..errors import ParseError
from .clob_client import parse_levels
from .gamma_client import Market

HEARTBEAT_REQUEST = "PING"
HEARTBEAT_ACK = "PONG"


class MessageType(Enum):
    """WebSocket message types from Polymarket."""
    BOOK = "book"
    PRICE_CHANGE = "price_change"
    LAST_TRADE_PRICE = "last_trade_price"
    BEST_BID_ASK = "best_bid_ask"
    TICK_SIZE_CHANGE = "tick_size_change"


@dataclass(frozen=True)
class MarketSubscription:
    """A two-outcome market watched by the realtime monitor."""
    condition_id: str
    question: str
    yes_token_id: str
    no_token_id: str
    category: str = ""

    @classmethod
    def from_market(cls, market: Market) -> Optional["MarketSubscription"]:
        """Build a subscription; None unless the market has two outcomes."""
        if not market.is_binary:
            return None
        yes = market.get_yes_token()
        no = market.get_no_token()
        if yes is None or no is None or yes.token_id == no.token_id:
            return None
        return cls(
            condition_id=market.condition_id,
            question=market.question,
            yes_token_id=yes.token_id,
            no_token_id=no.token_id,
            category=market.category
        )

    @property
    def token_ids(self) -> tuple[str, str]:
        return (self.yes_token_id, self.no_token_id)

    def opposite(self, token_id: str) -> Optional[str]:
        if token_id == self.yes_token_id:
            return self.no_token_id
        if token_id == self.no_token_id:
            return self.yes_token_id
        return None


@dataclass(frozen=True)
class PriceUpdate:
    """Price derived from one stream record."""
    asset_id: str
    price: float
    source: str
    timestamp: float


def build_initial_subscription(asset_ids: list[str]) -> str:
    """Subscription message sent once per connection."""
    return json.dumps({
        "type": "market",
        "assets_ids": list(asset_ids),
        "initial_dump": True
    })


def build_subscribe(asset_ids: list[str]) -> str:
    """Adds tokens to an already-subscribed connection."""
    return json.dumps({
        "assets_ids": list(asset_ids),
        "operation": "subscribe"
    })


def decode_message(raw: Any) -> Optional[list]:
    """
    Decode a stream payload into a list of records.

    Returns None for heartbeat acks and any non-JSON text.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or raw == HEARTBEAT_ACK:
        return None

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return None


def _to_price(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Bad price value {raw!r}") from e


def _in_range(price: Optional[float]) -> bool:
    return price is not None and 0 < price < 1


def _top_of_book_price(best_bid: Optional[float], best_ask: Optional[float]) -> Optional[float]:
    """Mid when both sides are present, otherwise the single side."""
    if best_bid is not None and best_ask is not None:
        return (best_bid + best_ask) / 2
    if best_ask is not None:
        return best_ask
    return best_bid


def _update(asset_id: str, price: Optional[float], source: str, now: float) -> list[PriceUpdate]:
    if not _in_range(price):
        return []
    return [PriceUpdate(asset_id=asset_id, price=price, source=source, timestamp=now)]


def parse_record(record: Any) -> list[PriceUpdate]:
    """
    Extract price updates from one stream record.

    Records without a usable price yield nothing; prices outside (0, 1)
    are dropped.

    Raises:
        ParseError: If the record is malformed
    """
    if not isinstance(record, dict):
        raise ParseError(f"Stream record is {type(record).__name__}, expected object")

    now = time.time()
    event_type = record.get("event_type") or record.get("type")

    # Batched price_change format: one entry per asset
    changes = record.get("price_changes")
    if isinstance(changes, list):
        updates: list[PriceUpdate] = []
        for change in changes:
            if not isinstance(change, dict) or not change.get("asset_id"):
                raise ParseError("Malformed price_changes entry")
            price = _top_of_book_price(
                _to_price(change.get("best_bid")),
                _to_price(change.get("best_ask"))
            )
            if price is None:
                price = _to_price(change.get("price"))
            updates.extend(_update(str(change["asset_id"]), price, MessageType.PRICE_CHANGE.value, now))
        return updates

    asset_id = record.get("asset_id")
    if not asset_id:
        if event_type in ("subscribed", "unsubscribed", MessageType.TICK_SIZE_CHANGE.value):
            return []
        raise ParseError("Stream record has no asset_id")
    asset_id = str(asset_id)

    if event_type == MessageType.BEST_BID_ASK.value:
        price = _top_of_book_price(
            _to_price(record.get("best_bid")),
            _to_price(record.get("best_ask"))
        )
        return _update(asset_id, price, event_type, now)

    bids = parse_levels(record.get("bids"))
    asks = parse_levels(record.get("asks"))
    if bids or asks:
        price = _top_of_book_price(
            max((level.price for level in bids), default=None),
            min((level.price for level in asks), default=None)
        )
        return _update(asset_id, price, MessageType.BOOK.value, now)

    if event_type in (MessageType.PRICE_CHANGE.value, MessageType.LAST_TRADE_PRICE.value):
        return _update(asset_id, _to_price(record.get("price")), event_type, now)

    return []
