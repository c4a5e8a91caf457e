"""
Shared fixtures and fakes.
"""

import asyncio
from typing import Optional

import pytest

from polyscan.clients.clob_client import Quote
from polyscan.clients.gamma_client import Market, OutcomeToken


def make_market(
    condition_id: str = "market-1",
    outcomes: Optional[list[str]] = None,
    liquidity: float = 5000.0,
    volume: float = 20000.0
) -> Market:
    """Create a test market with one token per outcome."""
    outcomes = outcomes or ["Yes", "No"]
    return Market(
        condition_id=condition_id,
        question=f"Question for {condition_id}?",
        tokens=tuple(
            OutcomeToken(token_id=f"{condition_id}-{i}", outcome=outcome)
            for i, outcome in enumerate(outcomes)
        ),
        liquidity=liquidity,
        volume=volume
    )


def make_quote(
    token_id: str,
    ask: float,
    bid: float,
    ask_size: float = 100.0,
    bid_size: float = 100.0
) -> Quote:
    return Quote(
        token_id=token_id,
        best_ask=ask,
        best_bid=bid,
        ask_size=ask_size,
        bid_size=bid_size,
        available=True,
        timestamp=1000.0
    )


class FakeWebSocket:
    """In-memory WebSocket: feed() pushes server messages, sent records client sends."""

    _CLOSE = object()

    def __init__(self):
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, message) -> None:
        self._incoming.put_nowait(message)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(self._CLOSE)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(self._CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is self._CLOSE:
            raise StopAsyncIteration
        return message


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def binary_market() -> Market:
    return make_market("binary-1")


@pytest.fixture
def three_way_market() -> Market:
    return make_market("three-1", outcomes=["A", "B", "C"])
