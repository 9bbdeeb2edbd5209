"""
CASH FLOW ATTRIBUTOR
Net cash movement per asset and date, from the transaction ledger

RESPONSIBILITIES:
- Sign each ledger entry (negative = capital added, positive = capital removed)
- Sum signed flows per asset for a date
- Infer an implied cash flow when units change with no ledger entry

RULES:
❌ No fabricated transactions
❌ No entity-level re-derivation (entity flow = sum of asset flows)
✅ buy: -amount*price, sell: +amount*price
✅ cash_income: -amount, cash_outcome: +amount
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Optional, Sequence

from performance_engine.domain.models import (
    AssetPerformanceEntry,
    Transaction,
    TransactionType,
)
from performance_engine.domain.services.daily_return import compute_daily_return


def signed_cash_flow(transaction: Transaction) -> float:
    """Signed cash flow of one ledger entry"""
    if transaction.type == TransactionType.BUY:
        return -transaction.amount * transaction.price
    if transaction.type == TransactionType.SELL:
        return transaction.amount * transaction.price
    if transaction.type == TransactionType.CASH_INCOME:
        return -transaction.amount
    if transaction.type == TransactionType.CASH_OUTCOME:
        return transaction.amount
    raise ValueError(f"Unknown transaction type: {transaction.type}")


@dataclass(frozen=True)
class ImpliedCashFlow:
    """Cash flow inferred from an unexplained change in units"""
    units_diff: float
    implied_price: float
    cash_flow: float
    corrected_adjusted: float


@dataclass(frozen=True)
class AttributedCashFlow:
    """Cash flow finally attributed to an asset for a date"""
    amount: float
    implied: bool = False
    implied_price: Optional[float] = None


class CashFlowAttributor:
    """
    Cash Flow Attributor
    Turns ledger entries (plus unit changes) into per-asset cash flows
    """

    def __init__(self, cash_flow_tolerance: float = 0.01, units_epsilon: float = 1e-8):
        """
        Args:
            cash_flow_tolerance: Ledger flows below this are treated as zero
            units_epsilon: Unit differences below this are treated as zero
        """
        self.cash_flow_tolerance = cash_flow_tolerance
        self.units_epsilon = units_epsilon

    def attribute_asset(self, transactions: Sequence[Transaction]) -> float:
        """
        Net cash flow of the ordered transactions of one asset on one date

        Raises:
            ValueError: If the transactions span several assets or dates
        """
        if not transactions:
            return 0.0

        first = transactions[0]
        total = 0.0
        for transaction in transactions:
            if transaction.asset_key != first.asset_key or transaction.date != first.date:
                raise ValueError("attribute_asset expects transactions of a single asset and date")
            total += signed_cash_flow(transaction)
        return total

    def attribute(
        self,
        transactions: Iterable[Transaction],
        on_date: date,
        account_id: Optional[str] = None,
    ) -> Dict[str, float]:
        """
        Net cash flow per asset for a date

        Args:
            transactions: Ledger entries (any dates, any accounts)
            on_date: Date to attribute
            account_id: Restrict to one account (None = whole portfolio)

        Returns:
            Mapping asset_key -> signed cash flow
        """
        grouped: Dict[str, list] = defaultdict(list)
        for transaction in transactions:
            if transaction.date != on_date:
                continue
            if account_id is not None and transaction.account_id != account_id:
                continue
            grouped[transaction.asset_key].append(transaction)

        return {
            asset_key: self.attribute_asset(asset_transactions)
            for asset_key, asset_transactions in grouped.items()
        }

    def detect_implied(
        self,
        previous_units: float,
        current_units: float,
        start_value: float,
        end_value: float,
        ledger_cash_flow: float,
    ) -> Optional[ImpliedCashFlow]:
        """
        Infer a cash flow for a unit change the ledger does not explain

        Returns:
            ImpliedCashFlow, or None when the ledger already explains the change
        """
        units_diff = current_units - previous_units
        if abs(units_diff) <= self.units_epsilon:
            return None
        if abs(ledger_cash_flow) >= self.cash_flow_tolerance:
            return None
        if previous_units <= 0:
            return None

        if current_units > 0:
            implied_price = end_value / current_units
        else:
            # Position fully closed: only yesterday's price is left
            implied_price = start_value / previous_units

        cash_flow = -units_diff * implied_price
        corrected = compute_daily_return(start_value, end_value, cash_flow)
        return ImpliedCashFlow(
            units_diff=units_diff,
            implied_price=implied_price,
            cash_flow=cash_flow,
            corrected_adjusted=corrected.adjusted,
        )

    def resolve(
        self,
        previous_entry: Optional[AssetPerformanceEntry],
        current_units: float,
        current_value: float,
        ledger_cash_flow: float,
    ) -> AttributedCashFlow:
        """Ledger cash flow, replaced by an implied one where units moved silently"""
        if previous_entry is None:
            return AttributedCashFlow(amount=ledger_cash_flow)

        implied = self.detect_implied(
            previous_units=previous_entry.units,
            current_units=current_units,
            start_value=previous_entry.total_value,
            end_value=current_value,
            ledger_cash_flow=ledger_cash_flow,
        )
        if implied is None:
            return AttributedCashFlow(amount=ledger_cash_flow)

        return AttributedCashFlow(
            amount=implied.cash_flow,
            implied=True,
            implied_price=implied.implied_price,
        )

    @staticmethod
    def aggregate(asset_flows: Iterable[float]) -> float:
        """Entity-level cash flow: direct sum of asset-level flows"""
        return sum(asset_flows, 0.0)
