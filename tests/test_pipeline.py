"""
Tests for the periodic scan pipeline.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from polyscan.arbitrage.matcher import Confidence, StrategyKind
from polyscan.clients.clob_client import CLOBClient
from polyscan.clients.gamma_client import GammaClient
from polyscan.clients.quote_enricher import QuoteEnricher
from polyscan.config import DispatchConfig, ScanConfig, StrategyConfig, StrategySettings
from polyscan.errors import TransientFetchError, TransientNetworkError
from polyscan.execution.dispatch_queue import DispatchQueue
from polyscan.execution.executor import ExecutionResult
from polyscan.pipeline import PipelineState, ScanPipeline

from conftest import make_market, make_quote, settle


def long_quotes(market, ask_size: float = 100.0) -> dict:
    """Quotes giving a 5% LONG spread on a binary market."""
    yes, no = market.token_ids
    return {
        yes: make_quote(yes, 0.45, 0.44, ask_size=ask_size),
        no: make_quote(no, 0.50, 0.49, ask_size=ask_size),
    }


class Harness:
    """Pipeline wired to in-memory catalog and quotes."""

    def __init__(self, markets, quotes, failing_tokens=(), auto_execute=True):
        self.gamma = GammaClient()
        self.gamma.fetch_all_active_markets = AsyncMock(return_value=markets)

        self.clob = AsyncMock(spec=CLOBClient)

        async def get_quote(token_id):
            if token_id in failing_tokens:
                raise TransientNetworkError("book request timed out")
            return quotes[token_id]

        self.clob.get_quote.side_effect = get_quote

        self.executor = AsyncMock(return_value=ExecutionResult(success=True, profit=0.4))
        self.queue = DispatchQueue(DispatchConfig(inter_task_delay_seconds=0))
        for kind in StrategyKind:
            self.queue.register_executor(kind, self.executor)

        self.pipeline = ScanPipeline(
            gamma_client=self.gamma,
            enricher=QuoteEnricher(self.clob, batch_size=10),
            queue=self.queue,
            strategy_settings=StrategySettings(StrategyConfig(auto_execute=auto_execute)),
            scan_config=ScanConfig(scan_interval_seconds=60, dispatch_cooldown_seconds=60)
        )


class TestRunScan:
    """Tests for a single scan pass."""

    @pytest.mark.asyncio
    async def test_finds_and_ranks_opportunities(self):
        small, large = make_market("small"), make_market("large")
        quotes = long_quotes(small)
        yes, no = large.token_ids
        quotes[yes] = make_quote(yes, 0.40, 0.39)
        quotes[no] = make_quote(no, 0.50, 0.49)
        harness = Harness([small, large], quotes, auto_execute=False)

        result = await harness.pipeline.run_scan()

        assert result.success
        assert result.markets_scanned == 2
        assert [o.market.condition_id for o in result.opportunities] == ["large", "small"]
        assert harness.pipeline.total_opportunities == 2

    @pytest.mark.asyncio
    async def test_single_flight(self):
        market = make_market("m1")
        harness = Harness([market], long_quotes(market), auto_execute=False)
        release = asyncio.Event()

        async def slow_catalog():
            await release.wait()
            return [market]

        harness.gamma.fetch_all_active_markets = AsyncMock(side_effect=slow_catalog)

        first = asyncio.create_task(harness.pipeline.run_scan())
        await settle()
        second = await harness.pipeline.run_scan()
        release.set()
        first_result = await first

        assert second.skipped
        assert first_result.success
        assert harness.gamma.fetch_all_active_markets.call_count == 1

    @pytest.mark.asyncio
    async def test_only_high_confidence_auto_enqueued(self):
        deep, thin = make_market("deep"), make_market("thin")
        quotes = {**long_quotes(deep), **long_quotes(thin, ask_size=5.0)}
        harness = Harness([deep, thin], quotes)

        result = await harness.pipeline.run_scan()
        await harness.pipeline.join()

        confidences = {o.market.condition_id: o.matches[0].confidence for o in result.opportunities}
        assert confidences == {"deep": Confidence.HIGH, "thin": Confidence.MEDIUM}
        assert result.enqueued == 1
        harness.executor.assert_called_once()
        task = harness.executor.call_args[0][0]
        assert task.market_id == "deep"

    @pytest.mark.asyncio
    async def test_auto_execute_off_enqueues_nothing(self):
        market = make_market("m1")
        harness = Harness([market], long_quotes(market), auto_execute=False)

        result = await harness.pipeline.run_scan()

        assert result.enqueued == 0
        assert harness.queue.size == 0

    @pytest.mark.asyncio
    async def test_cooldown_blocks_repeat_dispatch(self):
        market = make_market("m1")
        harness = Harness([market], long_quotes(market))

        first = await harness.pipeline.run_scan()
        await harness.pipeline.join()
        second = await harness.pipeline.run_scan()

        assert first.enqueued == 1
        assert second.enqueued == 0

    @pytest.mark.asyncio
    async def test_book_timeout_skips_only_that_market(self):
        """A timed-out book yields a sentinel; its market has no matches and the scan goes on."""
        broken, healthy = make_market("broken"), make_market("healthy")
        quotes = {**long_quotes(broken), **long_quotes(healthy)}
        harness = Harness(
            [broken, healthy],
            quotes,
            failing_tokens={broken.token_ids[1]},
            auto_execute=False
        )

        result = await harness.pipeline.run_scan()

        assert result.success
        assert result.quote_failures == 1
        assert [o.market.condition_id for o in result.opportunities] == ["healthy"]

    @pytest.mark.asyncio
    async def test_catalog_failure_fails_pass_only(self):
        market = make_market("m1")
        harness = Harness([market], long_quotes(market), auto_execute=False)
        harness.gamma.fetch_all_active_markets = AsyncMock(
            side_effect=[TransientFetchError("gamma down"), [market]]
        )

        failed = await harness.pipeline.run_scan()
        recovered = await harness.pipeline.run_scan()

        assert failed.error == "gamma down"
        assert not failed.success
        assert recovered.success
        status = harness.pipeline.get_status()
        assert status["scan_errors"] == 1
        assert status["errors"] == 1
        assert status["scan_count"] == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_counted_and_published(self):
        market = make_market("m1")
        harness = Harness([market], long_quotes(market), auto_execute=False)
        harness.gamma.fetch_all_active_markets = AsyncMock(side_effect=RuntimeError("listing bug"))
        published = MagicMock()
        harness.pipeline.bus.subscribe("scan", published)

        result = await harness.pipeline.run_scan()

        assert result.error == "listing bug"
        assert not harness.pipeline.is_scanning
        published.assert_called_once_with(result)
        status = harness.pipeline.get_status()
        assert status["scan_errors"] == 1
        assert status["scan_count"] == 1


class TestControl:
    """Tests for lifecycle, config and manual execution."""

    @pytest.mark.asyncio
    async def test_start_pause_resume_stop(self):
        market = make_market("m1")
        harness = Harness([market], long_quotes(market), auto_execute=False)
        pipeline = harness.pipeline

        pipeline.start()
        await settle(20)
        assert pipeline.state == PipelineState.RUNNING
        assert pipeline.scan_count == 1

        pipeline.pause()
        assert pipeline.state == PipelineState.PAUSED
        await pipeline._tick()
        assert pipeline.scan_count == 1

        pipeline.resume()
        assert pipeline.state == PipelineState.RUNNING

        pipeline.stop()
        pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_update_config(self):
        market = make_market("m1")
        harness = Harness([market], long_quotes(market), auto_execute=False)

        config = harness.pipeline.update_config({"arbitrage": {"min_spread": 10.0}})
        result = await harness.pipeline.run_scan()

        assert config.arbitrage.min_spread == 10.0
        assert config.arbitrage.trade_amount == 10.0
        assert result.opportunities == []

    def test_update_config_rejects_unknown_key(self):
        harness = Harness([], {}, auto_execute=False)

        with pytest.raises(ValueError):
            harness.pipeline.update_config({"arbitrage": {"bogus": 1}})

        assert harness.pipeline.strategy_settings.current == StrategyConfig(auto_execute=False)

    @pytest.mark.asyncio
    async def test_trigger_execution_runs_any_confidence(self):
        thin = make_market("thin")
        harness = Harness([thin], long_quotes(thin, ask_size=5.0), auto_execute=False)
        result = await harness.pipeline.run_scan()
        opportunity = result.opportunities[0]

        task = await harness.pipeline.trigger_execution(
            opportunity.market_quotes,
            opportunity.matches[0]
        )
        await harness.pipeline.join()

        assert task.match.confidence == Confidence.MEDIUM
        harness.executor.assert_called_once_with(task)
        assert harness.pipeline.get_status()["processed"] == 1
