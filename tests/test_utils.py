"""
Tests for the event bus, scheduling, config merging and logging helpers.
"""

import asyncio
import json
import logging

import pytest
from unittest.mock import MagicMock

from polyscan.clients.websocket_client import (
    build_initial_subscription,
    build_subscribe,
    decode_message,
    parse_record,
)
from polyscan.config import StrategyConfig, StrategySettings, merge_config
from polyscan.errors import ParseError
from polyscan.utils.cost_calculator import CostCalculator
from polyscan.utils.events import EventBus
from polyscan.utils.logger import ALERT_LOGGER, BusLogHandler, OpportunityLogger, setup_logging
from polyscan.utils.scheduling import PeriodicTask, ScheduledCall


class TestEventBus:

    def test_publish_and_unsubscribe(self):
        bus = EventBus()
        first, second = MagicMock(), MagicMock()
        unsubscribe = bus.subscribe("alert", first)
        bus.subscribe("alert", second)

        bus.publish("alert", "payload")
        unsubscribe()
        unsubscribe()
        bus.publish("alert", "again")

        first.assert_called_once_with("payload")
        assert second.call_count == 2
        assert bus.handler_count("alert") == 1

    def test_failing_handler_does_not_affect_others(self):
        bus = EventBus()
        healthy = MagicMock()
        bus.subscribe("task", MagicMock(side_effect=RuntimeError("consumer bug")))
        bus.subscribe("task", healthy)

        bus.publish("task", 1)

        healthy.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_async_handler_scheduled(self):
        bus = EventBus()
        received = []

        async def handler(payload):
            received.append(payload)

        bus.subscribe("scan", handler)
        bus.publish("scan", "done")
        await asyncio.sleep(0)

        assert received == ["done"]

    @pytest.mark.asyncio
    async def test_failing_async_handler_logged(self, caplog):
        bus = EventBus()

        async def handler(payload):
            raise RuntimeError("monitor unavailable")

        bus.subscribe("scan", handler)

        with caplog.at_level(logging.ERROR, logger="polyscan.events"):
            bus.publish("scan", "done")
            for _ in range(3):
                await asyncio.sleep(0)

        assert "monitor unavailable" in caplog.text
        assert "'scan'" in caplog.text
        assert not bus._pending


class TestScheduling:

    @pytest.mark.asyncio
    async def test_scheduled_call_fires_once(self):
        calls = []

        async def callback():
            calls.append(1)

        call = ScheduledCall(0.01, callback)
        await asyncio.sleep(0.05)

        assert calls == [1]
        assert call.done

    @pytest.mark.asyncio
    async def test_cancelled_call_never_fires(self):
        calls = []

        async def callback():
            calls.append(1)

        call = ScheduledCall(0.01, callback)
        call.cancel()
        await asyncio.sleep(0.05)

        assert calls == []
        assert call.cancelled

    @pytest.mark.asyncio
    async def test_scheduled_call_error_logged(self, caplog):
        async def callback():
            raise RuntimeError("reconnect exploded")

        with caplog.at_level(logging.ERROR, logger="polyscan.scheduling"):
            call = ScheduledCall(0.01, callback, name="ws-reconnect")
            await asyncio.sleep(0.05)

        assert call.done
        assert "ws-reconnect" in caplog.text
        assert "reconnect exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_periodic_task_survives_errors_and_stops_on_cancel(self):
        calls = 0

        async def callback():
            nonlocal calls
            calls += 1
            raise RuntimeError("tick failed")

        task = PeriodicTask(0.01, callback, run_immediately=True).start()
        await asyncio.sleep(0.05)
        task.cancel()
        seen = calls
        await asyncio.sleep(0.05)

        assert seen >= 2
        assert calls == seen
        assert not task.running


class TestConfig:

    def test_merge_nested(self):
        config = merge_config(StrategyConfig(), {"mint_split": {"mint_amount": 25.0}, "auto_execute": True})

        assert config.mint_split.mint_amount == 25.0
        assert config.mint_split.min_outcomes == 3
        assert config.auto_execute is True

    def test_merge_unknown_key(self):
        with pytest.raises(ValueError):
            merge_config(StrategyConfig(), {"nope": 1})

    def test_settings_swap_snapshot(self):
        settings = StrategySettings()
        before = settings.current

        settings.update({"arbitrage": {"min_spread": 2.0}})

        assert before.arbitrage.min_spread == 1.0
        assert settings.current.arbitrage.min_spread == 2.0


class TestCostCalculator:

    def test_fee_and_gas_deducted(self):
        estimate = CostCalculator().estimate(0.04, 10)

        assert estimate.gross_profit == pytest.approx(0.4)
        assert estimate.fee == pytest.approx(0.004)
        assert estimate.net_profit == pytest.approx(0.386)
        assert estimate.is_profitable

    def test_minimum_edge(self):
        calculator = CostCalculator()

        edge = calculator.minimum_edge_for_profit(10)

        assert calculator.estimate(edge * 1.01, 10).is_profitable
        assert not calculator.estimate(edge * 0.99, 10).is_profitable


class TestStreamParsing:

    def test_subscription_messages(self):
        assert json.loads(build_initial_subscription(["a", "b"])) == {
            "type": "market",
            "assets_ids": ["a", "b"],
            "initial_dump": True,
        }
        assert json.loads(build_subscribe(["c"])) == {"assets_ids": ["c"], "operation": "subscribe"}

    def test_decode_message(self):
        assert decode_message("PONG") is None
        assert decode_message("hello") is None
        assert decode_message('{"asset_id": "a"}') == [{"asset_id": "a"}]
        assert decode_message(b'[{"asset_id": "a"}]') == [{"asset_id": "a"}]

    def test_book_best_levels(self):
        updates = parse_record({
            "event_type": "book",
            "asset_id": "a",
            "bids": [{"price": "0.30", "size": "1"}, {"price": "0.35", "size": "1"}],
            "asks": [{"price": "0.45", "size": "1"}, {"price": "0.40", "size": "1"}],
        })

        assert len(updates) == 1
        assert updates[0].price == pytest.approx(0.375)

    def test_bad_price_raises(self):
        with pytest.raises(ParseError):
            parse_record({"event_type": "price_change", "asset_id": "a", "price": "abc"})

    def test_confirmation_without_asset_ignored(self):
        assert parse_record({"event_type": "subscribed"}) == []


class TestLogging:

    def test_bus_log_handler_forwards_records(self):
        bus = EventBus()
        received = MagicMock()
        bus.subscribe("log", received)
        logger = logging.getLogger("polyscan.test_bus")
        handler = BusLogHandler(bus)
        logger.addHandler(handler)

        try:
            logger.warning("queue stalled")
        finally:
            logger.removeHandler(handler)

        event = received.call_args[0][0]
        assert event["level"] == "WARNING"
        assert event["message"] == "queue stalled"
        assert event["logger"] == "polyscan.test_bus"

    def test_alerts_written_to_file(self, tmp_path):
        path = tmp_path / "alerts.log"
        setup_logging(level="INFO", json_format=True, alert_log_path=str(path))

        OpportunityLogger().pair_alert(
            market_id="m1",
            question="Will it rain?",
            direction="LONG",
            yes_price=0.45,
            no_price=0.50,
            spread_pct=5.0,
            estimated_profit=0.53
        )
        for handler in logging.getLogger(ALERT_LOGGER).handlers:
            handler.flush()
            handler.close()
        logging.getLogger(ALERT_LOGGER).handlers = []

        line = json.loads(path.read_text().strip().splitlines()[-1])
        assert line["event"] == "pair_alert"
        assert line["market_id"] == "m1"
        assert line["direction"] == "LONG"
