"""
DAILY PERFORMANCE CALCULATOR
Raw and cash-flow-adjusted daily change per entity

RESPONSIBILITIES:
- Per-asset entries with attributed (or implied) cash flows
- Build reference-currency daily records from snapshots, in date order
- Entity cash flow = sum of asset cash flows

RULES:
❌ No baseline (previous value <= 0) -> raw = adjusted = 0
❌ No parallel evaluation across dates of one scope
✅ adjusted == raw whenever cash flow is zero
✅ Cash flow sign: negative = capital added, positive = capital removed
"""

from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from performance_engine.domain.models import (
    REFERENCE_CURRENCY,
    AssetPerformanceEntry,
    AssetSnapshot,
    CurrencyPerformance,
    DailyPerformanceRecord,
    EntityScope,
    ScopeSnapshot,
    Transaction,
)
from performance_engine.domain.services.cash_flow_attributor import CashFlowAttributor
from performance_engine.domain.services.daily_return import compute_daily_return, total_roi


def merge_snapshots(scope: EntityScope, snapshots: Sequence[ScopeSnapshot]) -> ScopeSnapshot:
    """
    Combine account snapshots of one date into a single (overall) snapshot

    Assets sharing a key across accounts are summed.
    """
    if not snapshots:
        raise ValueError("Cannot merge an empty list of snapshots")

    snapshot_date = snapshots[0].date
    merged: Dict[str, AssetSnapshot] = {}
    for snapshot in snapshots:
        if snapshot.date != snapshot_date:
            raise ValueError("Snapshots to merge must share the same date")
        for asset in snapshot.assets:
            existing = merged.get(asset.asset_key)
            if existing is None:
                merged[asset.asset_key] = asset
                continue
            merged[asset.asset_key] = AssetSnapshot(
                asset_key=asset.asset_key,
                units=existing.units + asset.units,
                total_value=existing.total_value + asset.total_value,
                total_investment=existing.total_investment + asset.total_investment,
                done_profit_and_loss=existing.done_profit_and_loss + asset.done_profit_and_loss,
            )

    return ScopeSnapshot(scope=scope, date=snapshot_date, assets=list(merged.values()))


class DailyPerformanceCalculator:
    """
    Daily Performance Calculator
    Produces reference-currency daily records, strictly date-ordered per scope
    """

    def __init__(self, attributor: Optional[CashFlowAttributor] = None):
        self.attributor = attributor or CashFlowAttributor()

    def build_currency_performance(
        self,
        snapshot: ScopeSnapshot,
        previous: Optional[CurrencyPerformance],
        ledger_flows: Dict[str, float],
    ) -> CurrencyPerformance:
        """
        Build today's reference-currency block from the snapshot

        Args:
            snapshot: Today's snapshot of the scope
            previous: Yesterday's block (None on day one)
            ledger_flows: asset_key -> signed ledger cash flow for today

        Returns:
            CurrencyPerformance for the reference currency
        """
        previous_assets = previous.asset_performance if previous else {}
        assets: Dict[str, AssetPerformanceEntry] = {}

        for asset in snapshot.assets:
            assets[asset.asset_key] = self._build_asset_entry(
                asset,
                previous_assets.get(asset.asset_key),
                ledger_flows.get(asset.asset_key, 0.0),
            )

        # Positions that disappeared today still carry their closing cash flow
        closed_keys = (set(previous_assets) | set(ledger_flows)) - set(assets)
        for asset_key in sorted(closed_keys):
            prior = previous_assets.get(asset_key)
            closed = AssetSnapshot(asset_key=asset_key, units=0.0, total_value=0.0, total_investment=0.0)
            entry = self._build_asset_entry(closed, prior, ledger_flows.get(asset_key, 0.0))
            already_closed = prior is None or (prior.units == 0 and prior.total_value == 0)
            if already_closed and entry.total_cash_flow == 0:
                continue
            assets[asset_key] = entry

        total_value = sum(entry.total_value for entry in assets.values())
        total_investment = sum(entry.total_investment for entry in assets.values())
        total_cash_flow = self.attributor.aggregate(entry.total_cash_flow for entry in assets.values())
        done_pnl = sum(entry.done_profit_and_loss for entry in assets.values())

        daily = compute_daily_return(
            previous.total_value if previous else None,
            total_value,
            total_cash_flow,
        )

        return CurrencyPerformance(
            total_value=total_value,
            total_investment=total_investment,
            total_cash_flow=total_cash_flow,
            raw_daily_change_percentage=daily.raw,
            adjusted_daily_change_percentage=daily.adjusted,
            daily_return=daily.adjusted / 100,
            unrealized_pnl=total_value - total_investment,
            done_profit_and_loss=done_pnl,
            total_roi=total_roi(total_value, total_investment),
            asset_performance=assets,
        )

    def _build_asset_entry(
        self,
        asset: AssetSnapshot,
        previous: Optional[AssetPerformanceEntry],
        ledger_cash_flow: float,
    ) -> AssetPerformanceEntry:
        attributed = self.attributor.resolve(previous, asset.units, asset.total_value, ledger_cash_flow)
        daily = compute_daily_return(
            previous.total_value if previous else None,
            asset.total_value,
            attributed.amount,
        )
        return AssetPerformanceEntry(
            units=asset.units,
            total_value=asset.total_value,
            total_investment=asset.total_investment,
            total_cash_flow=attributed.amount,
            raw_daily_change_percentage=daily.raw,
            adjusted_daily_change_percentage=daily.adjusted,
            unrealized_profit_and_loss=asset.total_value - asset.total_investment,
            done_profit_and_loss=asset.done_profit_and_loss,
            total_roi=total_roi(asset.total_value, asset.total_investment),
            implied_cash_flow=attributed.implied,
        )

    def calculate(
        self,
        snapshot: ScopeSnapshot,
        previous_record: Optional[DailyPerformanceRecord],
        transactions: Iterable[Transaction],
    ) -> DailyPerformanceRecord:
        """Reference-currency record for one date"""
        if previous_record is not None and previous_record.date >= snapshot.date:
            raise ValueError(
                f"{snapshot.scope.key}: previous record {previous_record.date} "
                f"is not before {snapshot.date}"
            )

        ledger_flows = self.attributor.attribute(
            transactions,
            snapshot.date,
            account_id=snapshot.scope.account_id,
        )
        previous = previous_record.for_currency(REFERENCE_CURRENCY) if previous_record else None
        performance = self.build_currency_performance(snapshot, previous, ledger_flows)
        return DailyPerformanceRecord(
            scope=snapshot.scope,
            date=snapshot.date,
            currencies={REFERENCE_CURRENCY: performance},
        )

    def calculate_series(
        self,
        snapshots: Sequence[ScopeSnapshot],
        transactions: Sequence[Transaction],
        seed: Optional[DailyPerformanceRecord] = None,
    ) -> List[DailyPerformanceRecord]:
        """
        Reference-currency records for consecutive snapshots of one scope

        Args:
            snapshots: Snapshots in strictly ascending date order
            transactions: Ledger covering the snapshot dates
            seed: Stored record preceding the first snapshot, if any

        Returns:
            One record per snapshot, same order

        Raises:
            ValueError: If snapshots mix scopes or are not strictly ascending
        """
        ensure_ascending([s.date for s in snapshots], snapshots[0].scope.key if snapshots else "")
        if snapshots and any(s.scope != snapshots[0].scope for s in snapshots):
            raise ValueError("calculate_series expects snapshots of a single scope")

        records: List[DailyPerformanceRecord] = []
        for index, snapshot in enumerate(snapshots):
            previous = records[index - 1] if index > 0 else seed
            records.append(self.calculate(snapshot, previous, transactions))
        return records


def ensure_ascending(dates: Sequence[date], scope_key: str) -> None:
    for index in range(1, len(dates)):
        if dates[index] <= dates[index - 1]:
            raise ValueError(
                f"{scope_key}: dates must be strictly ascending "
                f"({dates[index - 1]} then {dates[index]})"
            )
