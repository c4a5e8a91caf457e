"""
Cost calculator for opportunity profitability estimates.
Applies the proportional taker fee and the fixed gas estimate.
"""

from dataclasses import dataclass

from ..config import FeeConfig


@dataclass
class ProfitEstimate:
    """Gross and fee-adjusted profit for one trade size."""
    gross_profit: float
    fee: float
    gas: float
    net_profit: float

    @property
    def is_profitable(self) -> bool:
        return self.net_profit > 0


class CostCalculator:
    """
    Calculator for strategy profit estimates.

    Polymarket fee model used here:
    - Taker fee: proportional, in percent of gross profit
    - Gas: fixed USD estimate per execution
    """

    def __init__(self, taker_fee_pct: float = 1.0, gas_estimate_usd: float = 0.01):
        """
        Initialize cost calculator.

        Args:
            taker_fee_pct: Taker fee in percent (1.0 = 1%)
            gas_estimate_usd: Fixed gas cost per execution in USD
        """
        self.taker_fee_pct = taker_fee_pct
        self.gas_estimate_usd = gas_estimate_usd

    @classmethod
    def from_config(cls, fees: FeeConfig) -> "CostCalculator":
        return cls(taker_fee_pct=fees.taker_fee_pct, gas_estimate_usd=fees.gas_estimate_usd)

    def estimate(self, edge_per_dollar: float, amount: float) -> ProfitEstimate:
        """
        Estimate profit for a price-sum edge.

        Args:
            edge_per_dollar: Deviation of the price sum from $1.00
            amount: Trade or mint size in USDC

        Returns:
            ProfitEstimate with fee and gas deducted
        """
        gross = edge_per_dollar * amount
        fee = gross * self.taker_fee_pct / 100
        net = gross - fee - self.gas_estimate_usd

        return ProfitEstimate(
            gross_profit=gross,
            fee=fee,
            gas=self.gas_estimate_usd,
            net_profit=net
        )

    def minimum_edge_for_profit(self, amount: float) -> float:
        """
        Smallest price-sum edge whose net profit is positive.

        Args:
            amount: Trade size in USDC

        Returns:
            Minimum edge in decimal (e.g., 0.005 = 0.5%)
        """
        if amount <= 0:
            return float("inf")
        return self.gas_estimate_usd / (amount * (1 - self.taker_fee_pct / 100))
