"""
Realtime monitor for two-outcome markets.

Keeps one market-channel WebSocket open, tracks the last price per token and
re-runs the pair check on every price change. Runs independently of the
periodic scan.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..arbitrage.matcher import PairAlert, match_price_pair
from ..clients.gamma_client import Market
from ..clients.websocket_client import (
    HEARTBEAT_REQUEST,
    MarketSubscription,
    PriceUpdate,
    build_initial_subscription,
    build_subscribe,
    decode_message,
    parse_record,
)
from ..config import ExchangeConfig, MonitorConfig, StrategySettings
from ..errors import ParseError, ReconnectExhausted
from ..utils.events import EventBus
from ..utils.logger import OpportunityLogger, get_logger
from ..utils.scheduling import PeriodicTask, ScheduledCall

logger = get_logger("monitor")

ConnectFn = Callable[[str], Awaitable[Any]]


class MonitorState(Enum):
    """Connection lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class PriceTable:
    """Last known price per token. Written only by the monitor's tick handler."""

    def __init__(self):
        self._prices: dict[str, float] = {}

    def get(self, token_id: str) -> Optional[float]:
        return self._prices.get(token_id)

    def update(self, token_id: str, price: float) -> bool:
        """Store a price; returns False when it equals the last known value."""
        if self._prices.get(token_id) == price:
            return False
        self._prices[token_id] = price
        return True

    def snapshot(self) -> dict[str, float]:
        return dict(self._prices)

    def __len__(self) -> int:
        return len(self._prices)


async def _default_connect(url: str) -> Any:
    return await websockets.connect(
        url,
        ping_interval=30,
        ping_timeout=10,
        close_timeout=5
    )


class RealtimeMonitor:
    """
    Streaming price monitor with a linear-backoff reconnect state machine.

    Tick handling is synchronous: a price update, the pair check it triggers
    and the resulting alert all happen without yielding to the loop.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        exchange: Optional[ExchangeConfig] = None,
        strategy_settings: Optional[StrategySettings] = None,
        bus: Optional[EventBus] = None,
        connect_fn: Optional[ConnectFn] = None
    ):
        """
        Initialize the monitor.

        Args:
            config: Heartbeat, reconnect and alert settings
            exchange: Provides the WebSocket URL
            strategy_settings: Live strategy config; trade amount is read per alert
            bus: Event bus for alert and state events
            connect_fn: Coroutine opening a WebSocket for a URL
        """
        self.config = config or MonitorConfig()
        self.exchange = exchange or ExchangeConfig()
        self.strategy_settings = strategy_settings or StrategySettings()
        self.bus = bus or EventBus()
        self._connect_fn = connect_fn or _default_connect

        self._state = MonitorState.DISCONNECTED
        self._wanted = False
        self._ws: Optional[Any] = None
        self._reader: Optional[asyncio.Task] = None
        self._heartbeat: Optional[PeriodicTask] = None
        self._reconnect: Optional[ScheduledCall] = None
        self._pending: set[asyncio.Task] = set()
        self._attempts = 0

        self._subscriptions: dict[str, MarketSubscription] = {}
        self._token_index: dict[str, MarketSubscription] = {}
        self._sent_tokens: set[str] = set()
        self._prices = PriceTable()

        self._opp_logger = OpportunityLogger()

        # Stats
        self.messages_received = 0
        self.updates_applied = 0
        self.malformed_records = 0
        self.alerts_emitted = 0
        self.last_message_at: Optional[float] = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == MonitorState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def token_ids(self) -> list[str]:
        return list(self._token_index)

    def reconnect_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (1-based)."""
        return max(attempt, 0) * self.config.reconnect_base_delay

    def _set_state(self, state: MonitorState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        logger.info(f"Monitor state {previous.value} -> {state.value}")
        self.bus.publish("monitor.state", state)

    # Subscriptions

    def _register(self, subscription: MarketSubscription) -> bool:
        if subscription.condition_id in self._subscriptions:
            return False
        if len(self._subscriptions) >= self.config.max_markets:
            logger.warning(
                f"Monitor market limit reached ({self.config.max_markets}), "
                f"ignoring {subscription.condition_id}"
            )
            return False

        self._subscriptions[subscription.condition_id] = subscription
        for token_id in subscription.token_ids:
            self._token_index[token_id] = subscription
        return True

    def _subscribe_new_tokens(self) -> None:
        """Send tokens not yet subscribed on the live connection."""
        if self._state != MonitorState.CONNECTED or self._ws is None:
            return
        new_tokens = [t for t in self._token_index if t not in self._sent_tokens]
        if not new_tokens:
            return
        self._sent_tokens.update(new_tokens)
        self._spawn(self._ws.send(build_subscribe(new_tokens)))
        logger.info(f"Subscribed {len(new_tokens)} new tokens on live connection")

    def add_subscription(self, subscription: MarketSubscription) -> bool:
        added = self._register(subscription)
        if added:
            self._subscribe_new_tokens()
        return added

    def add_market(self, market: Market) -> bool:
        """
        Watch a two-outcome market.

        Returns:
            True if the market was added
        """
        return self.add_markets([market]) > 0

    def add_markets(self, markets: Iterable[Market]) -> int:
        """
        Watch several markets; non-binary and already watched ones are skipped.

        Tokens added while connected are subscribed with a single message.
        """
        added = 0
        for market in markets:
            subscription = MarketSubscription.from_market(market)
            if subscription is None:
                continue
            if self._register(subscription):
                added += 1

        if added:
            self._subscribe_new_tokens()
            logger.info(f"Monitoring {added} new markets ({len(self._subscriptions)} total)")
        return added

    def get_subscriptions(self) -> list[MarketSubscription]:
        return list(self._subscriptions.values())

    # Lifecycle

    async def start(self) -> None:
        """Connect and subscribe every registered token."""
        if self._state not in (MonitorState.DISCONNECTED, MonitorState.STOPPED):
            logger.warning(f"Monitor already active ({self._state.value})")
            return

        self._wanted = True
        self._attempts = 0
        await self._connect()

    async def _connect(self) -> None:
        self._reconnect = None
        if not self._wanted:
            return

        self._set_state(MonitorState.CONNECTING)
        url = self.exchange.ws_url
        logger.info("Connecting to Polymarket WebSocket", extra={"url": url})

        try:
            ws = await asyncio.wait_for(
                self._connect_fn(url),
                timeout=self.config.connect_timeout_seconds
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning(f"WebSocket connect failed: {e}")
            self._handle_disconnect()
            return
        except Exception as e:
            logger.error(f"Unexpected WebSocket connect error: {e}")
            self._handle_disconnect()
            return

        if not self._wanted:
            # stop() ran during the handshake
            await ws.close()
            return

        self._ws = ws
        self._attempts = 0
        initial_tokens = self.token_ids

        try:
            await ws.send(build_initial_subscription(initial_tokens))
        except Exception as e:
            if self._ws is ws:
                logger.warning(f"Initial subscription failed: {e}")
                self._handle_disconnect()
            return

        if not self._wanted or self._ws is not ws:
            # stop() or a newer connection superseded this one mid-subscribe
            await self._close_quietly(ws)
            return

        self._sent_tokens = set(initial_tokens)
        self._set_state(MonitorState.CONNECTED)
        logger.info(f"WebSocket connected, subscribed {len(initial_tokens)} tokens")

        # Tokens registered while the subscription was in flight
        self._subscribe_new_tokens()

        self._heartbeat = PeriodicTask(
            self.config.heartbeat_interval_seconds,
            self._send_heartbeat,
            name="ws-heartbeat"
        ).start()
        self._reader = asyncio.ensure_future(self._read_loop(ws))

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self.handle_message(raw)
            logger.warning("WebSocket stream ended")
        except ConnectionClosed as e:
            logger.warning(f"WebSocket connection closed: {e}")
        except OSError as e:
            logger.warning(f"WebSocket error: {e}")

        if ws is self._ws:
            self._reader = None
            self._handle_disconnect()

    async def _send_heartbeat(self) -> None:
        if self._ws is not None and self._state == MonitorState.CONNECTED:
            await self._ws.send(HEARTBEAT_REQUEST)

    def _drop_connection(self) -> None:
        if self._heartbeat:
            self._heartbeat.cancel()
            self._heartbeat = None
        ws = self._ws
        self._ws = None
        self._sent_tokens = set()
        if ws is not None:
            self._spawn(ws.close())

    def _handle_disconnect(self) -> None:
        """Schedule a reconnect, or stop once the attempt cap is exceeded."""
        self._drop_connection()
        if not self._wanted:
            return

        self._attempts += 1
        if self._attempts > self.config.max_reconnect_attempts:
            self._wanted = False
            self._set_state(MonitorState.STOPPED)
            error = ReconnectExhausted(self.config.max_reconnect_attempts)
            logger.error(
                f"{error}; monitor stopped, restart required",
                extra={"attempts": self._attempts}
            )
            self.bus.publish("monitor.exhausted", error)
            return

        delay = self.reconnect_delay(self._attempts)
        self._set_state(MonitorState.RECONNECTING)
        logger.info(
            f"Reconnecting in {delay:.1f}s "
            f"(attempt {self._attempts}/{self.config.max_reconnect_attempts})"
        )
        self._reconnect = ScheduledCall(delay, self._connect, name="ws-reconnect")

    async def stop(self) -> None:
        """Cancel timers, close the socket and move to STOPPED. Idempotent."""
        self._wanted = False

        if self._reconnect:
            self._reconnect.cancel()
            self._reconnect = None
        if self._heartbeat:
            self._heartbeat.cancel()
            self._heartbeat = None

        reader = self._reader
        self._reader = None
        if reader and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        pending = [t for t in self._pending if t is not asyncio.current_task()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        ws = self._ws
        self._ws = None
        self._sent_tokens = set()
        if ws is not None:
            await self._close_quietly(ws)

        if self._state != MonitorState.STOPPED:
            self._set_state(MonitorState.STOPPED)
            logger.info("Monitor stopped")

    @staticmethod
    async def _close_quietly(ws: Any) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing WebSocket: {e}")

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_pending_done)

    def _on_pending_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"WebSocket send failed: {task.exception()}")

    # Tick handling

    def handle_message(self, raw: Any) -> list[PairAlert]:
        """
        Apply one stream payload.

        Returns:
            Alerts raised by the price changes in this payload
        """
        self.messages_received += 1
        self.last_message_at = time.time()

        records = decode_message(raw)
        if records is None:
            return []

        alerts = []
        for record in records:
            try:
                updates = parse_record(record)
            except ParseError as e:
                self.malformed_records += 1
                logger.debug(f"Skipping malformed stream record: {e}")
                continue

            for update in updates:
                alert = self._apply(update)
                if alert:
                    alerts.append(alert)
        return alerts

    def _apply(self, update: PriceUpdate) -> Optional[PairAlert]:
        subscription = self._token_index.get(update.asset_id)
        if subscription is None:
            return None
        if not self._prices.update(update.asset_id, update.price):
            return None

        self.updates_applied += 1
        return self.check_pair(subscription)

    def check_pair(self, subscription: MarketSubscription) -> Optional[PairAlert]:
        """Run the two-token check against the current price table."""
        alert = match_price_pair(
            subscription,
            self._prices.get(subscription.yes_token_id),
            self._prices.get(subscription.no_token_id),
            min_spread_pct=self.config.alert_min_spread_pct,
            trade_amount=self.strategy_settings.current.arbitrage.trade_amount
        )
        if alert is None:
            return None

        self.alerts_emitted += 1
        self._opp_logger.pair_alert(
            market_id=alert.condition_id,
            question=alert.question,
            direction=alert.direction,
            yes_price=alert.yes_price,
            no_price=alert.no_price,
            spread_pct=alert.spread_pct,
            estimated_profit=alert.estimated_profit
        )
        self.bus.publish("alert", alert)
        return alert

    # Read-only views

    def get_prices(self) -> dict[str, float]:
        return self._prices.snapshot()

    def get_status(self) -> dict:
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "subscriptions": len(self._subscriptions),
            "tokens": len(self._token_index),
            "prices_tracked": len(self._prices),
            "reconnect_attempts": self._attempts,
            "messages_received": self.messages_received,
            "updates_applied": self.updates_applied,
            "malformed_records": self.malformed_records,
            "alerts_emitted": self.alerts_emitted,
            "last_message_at": self.last_message_at
        }
