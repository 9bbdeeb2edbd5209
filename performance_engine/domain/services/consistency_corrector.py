"""
CONSISTENCY VERIFIER / CORRECTOR
Recompute stored daily records, flag divergence, rewrite idempotently

RESPONSIBILITIES:
- Entity cash flow vs sum of asset cash flows
- Implied cash flows for silent unit changes
- Stored adjusted return vs recomputed one (after the first date)
- Overall vs summed accounts (report only)
- Batched, transactional rewrite + downstream invalidation

RULES:
❌ No per-field patching (full currency block replace)
❌ No writes in dry-run
❌ No partial batch on a malformed record
✅ Same return function as the daily pipeline
✅ Re-running after a fix proposes nothing
"""

import logging
import math
from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence

from performance_engine.domain.exceptions import CashFlowMismatchError, MalformedRecordError
from performance_engine.domain.models import (
    AssetPerformanceEntry,
    Currency,
    CurrencyPerformance,
    DailyPerformanceRecord,
    EntityScope,
)
from performance_engine.domain.services.cash_flow_attributor import CashFlowAttributor
from performance_engine.domain.services.daily_performance import ensure_ascending
from performance_engine.domain.services.daily_return import compute_daily_return

logger = logging.getLogger(__name__)


# ======================
# Repository protocols
# ======================

class CorrectionRepository(Protocol):
    """Writes corrected daily records, one transaction per call"""
    async def replace_batch(self, records: Sequence[DailyPerformanceRecord]) -> int:
        ...


class CacheInvalidationSink(Protocol):
    """Downstream aggregates derived from daily records"""
    async def invalidate(self, scope: EntityScope, dates: Sequence[date]) -> None:
        ...


# ======================
# Results
# ======================

class DiscrepancyKind(str, Enum):
    CASH_FLOW_MISMATCH = "cash_flow_mismatch"
    ADJUSTED_MISMATCH = "adjusted_mismatch"
    RAW_MISMATCH = "raw_mismatch"
    IMPLIED_CASH_FLOW = "implied_cash_flow"
    CROSS_LEVEL = "cross_level"


@dataclass(frozen=True)
class Discrepancy:
    scope_key: str
    date: date
    currency: Currency
    kind: DiscrepancyKind
    stored: float
    expected: float
    asset_key: Optional[str] = None

    @property
    def difference(self) -> float:
        return abs(self.stored - self.expected)


@dataclass(frozen=True)
class CorrectionProposal:
    original: DailyPerformanceRecord
    corrected: DailyPerformanceRecord
    discrepancies: List[Discrepancy]


@dataclass
class CorrectionReport:
    scope_key: str
    dry_run: bool
    checked: int = 0
    corrected: int = 0
    unchanged: int = 0
    batches_committed: int = 0
    proposals: List[CorrectionProposal] = field(default_factory=list)


# ======================
# Validation helpers
# ======================

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_record(record: DailyPerformanceRecord) -> None:
    """
    Raise if a required numeric field is missing or not a finite number

    Raises:
        MalformedRecordError
    """
    for currency, block in record.currencies.items():
        for f in fields(CurrencyPerformance):
            if f.name == "asset_performance":
                continue
            if not _is_number(getattr(block, f.name)):
                raise MalformedRecordError(record.scope.key, record.date, f"{currency.value}.{f.name}")
        for asset_key, entry in block.asset_performance.items():
            for f in fields(AssetPerformanceEntry):
                if f.name == "implied_cash_flow":
                    continue
                if not _is_number(getattr(entry, f.name)):
                    raise MalformedRecordError(
                        record.scope.key,
                        record.date,
                        f"{currency.value}.assetPerformance.{asset_key}.{f.name}",
                    )


def assert_cash_flow_consistent(record: DailyPerformanceRecord, tolerance: float = 0.01) -> None:
    """
    Raises:
        CashFlowMismatchError: If any currency breaks the asset-sum invariant
    """
    for currency, block in record.currencies.items():
        if not block.asset_performance:
            continue
        expected = block.asset_cash_flow_sum
        if abs(block.total_cash_flow - expected) > tolerance:
            raise CashFlowMismatchError(
                record.scope.key, record.date, currency.value, block.total_cash_flow, expected
            )


# ======================
# Verifier
# ======================

class ConsistencyVerifier:
    """
    Consistency Verifier
    Recomputes what a stored record should hold and reports the differences
    """

    def __init__(
        self,
        field_threshold: float = 0.01,
        cross_level_threshold: float = 0.5,
        cash_flow_tolerance: float = 0.01,
        attributor: Optional[CashFlowAttributor] = None,
    ):
        self.field_threshold = field_threshold
        self.cross_level_threshold = cross_level_threshold
        self.cash_flow_tolerance = cash_flow_tolerance
        self.attributor = attributor or CashFlowAttributor(cash_flow_tolerance=cash_flow_tolerance)

    def rebuild_block(
        self,
        previous: Optional[CurrencyPerformance],
        block: CurrencyPerformance,
    ) -> CurrencyPerformance:
        """
        Expected currency block given yesterday's stored block

        Without a previous block only the cash-flow sum is rebuilt.
        """
        previous_assets = previous.asset_performance if previous else {}
        assets: Dict[str, AssetPerformanceEntry] = {}

        for asset_key, entry in block.asset_performance.items():
            if previous is None:
                assets[asset_key] = entry
                continue

            prior = previous_assets.get(asset_key)
            cash_flow = entry.total_cash_flow
            implied_flag = entry.implied_cash_flow
            if prior is not None:
                implied = self.attributor.detect_implied(
                    prior.units, entry.units, prior.total_value, entry.total_value, cash_flow
                )
                if implied is not None:
                    cash_flow = implied.cash_flow
                    implied_flag = True

            daily = compute_daily_return(
                prior.total_value if prior else None,
                entry.total_value,
                cash_flow,
            )
            assets[asset_key] = replace(
                entry,
                total_cash_flow=cash_flow,
                raw_daily_change_percentage=daily.raw,
                adjusted_daily_change_percentage=daily.adjusted,
                implied_cash_flow=implied_flag,
            )

        total_cash_flow = (
            self.attributor.aggregate(e.total_cash_flow for e in assets.values())
            if assets
            else block.total_cash_flow
        )

        if previous is None:
            return replace(block, total_cash_flow=total_cash_flow, asset_performance=assets)

        daily = compute_daily_return(previous.total_value, block.total_value, total_cash_flow)
        return replace(
            block,
            total_cash_flow=total_cash_flow,
            raw_daily_change_percentage=daily.raw,
            adjusted_daily_change_percentage=daily.adjusted,
            daily_return=daily.adjusted / 100,
            asset_performance=assets,
        )

    def _compare(
        self,
        record: DailyPerformanceRecord,
        currency: Currency,
        stored: CurrencyPerformance,
        expected: CurrencyPerformance,
    ) -> List[Discrepancy]:
        found: List[Discrepancy] = []

        def flag(kind, stored_value, expected_value, asset_key=None):
            found.append(
                Discrepancy(record.scope.key, record.date, currency, kind, stored_value, expected_value, asset_key)
            )

        for asset_key, entry in expected.asset_performance.items():
            original = stored.asset_performance[asset_key]
            if abs(original.total_cash_flow - entry.total_cash_flow) > self.cash_flow_tolerance:
                flag(DiscrepancyKind.IMPLIED_CASH_FLOW, original.total_cash_flow, entry.total_cash_flow, asset_key)
            if abs(original.adjusted_daily_change_percentage - entry.adjusted_daily_change_percentage) > self.field_threshold:
                flag(
                    DiscrepancyKind.ADJUSTED_MISMATCH,
                    original.adjusted_daily_change_percentage,
                    entry.adjusted_daily_change_percentage,
                    asset_key,
                )

        if abs(stored.total_cash_flow - expected.total_cash_flow) > self.cash_flow_tolerance:
            flag(DiscrepancyKind.CASH_FLOW_MISMATCH, stored.total_cash_flow, expected.total_cash_flow)
        if abs(stored.adjusted_daily_change_percentage - expected.adjusted_daily_change_percentage) > self.field_threshold:
            flag(
                DiscrepancyKind.ADJUSTED_MISMATCH,
                stored.adjusted_daily_change_percentage,
                expected.adjusted_daily_change_percentage,
            )
        if abs(stored.raw_daily_change_percentage - expected.raw_daily_change_percentage) > self.field_threshold:
            flag(
                DiscrepancyKind.RAW_MISMATCH,
                stored.raw_daily_change_percentage,
                expected.raw_daily_change_percentage,
            )
        return found

    def propose(
        self,
        previous: Optional[DailyPerformanceRecord],
        record: DailyPerformanceRecord,
    ) -> Optional[CorrectionProposal]:
        """Correction for one record, or None when it is consistent"""
        discrepancies: List[Discrepancy] = []
        currencies: Dict[Currency, CurrencyPerformance] = {}

        for currency, block in record.currencies.items():
            previous_block = previous.for_currency(currency) if previous else None
            expected = self.rebuild_block(previous_block, block)
            found = self._compare(record, currency, block, expected)
            discrepancies.extend(found)
            # Whole block replaced, and only when something diverged
            currencies[currency] = expected if found else block

        if not discrepancies:
            return None
        return CorrectionProposal(
            original=record,
            corrected=replace(record, currencies=currencies),
            discrepancies=discrepancies,
        )

    def verify_series(self, records: Sequence[DailyPerformanceRecord]) -> List[Discrepancy]:
        """
        All discrepancies of one scope's date-ordered records

        Raises:
            ValueError: If dates are not strictly ascending
        """
        if not records:
            return []
        ensure_ascending([r.date for r in records], records[0].scope.key)

        discrepancies: List[Discrepancy] = []
        for index, record in enumerate(records):
            previous = records[index - 1] if index > 0 else None
            proposal = self.propose(previous, record)
            if proposal is not None:
                discrepancies.extend(proposal.discrepancies)
        return discrepancies

    def verify_cross_level(
        self,
        overall_records: Sequence[DailyPerformanceRecord],
        account_series: Sequence[Sequence[DailyPerformanceRecord]],
    ) -> List[Discrepancy]:
        """
        Overall adjusted return vs the one implied by summed account records

        Args:
            overall_records: Overall scope, ascending by date
            account_series: One ascending series per account

        Returns:
            CROSS_LEVEL discrepancies above the cross-level threshold
        """
        by_date: Dict[date, List[DailyPerformanceRecord]] = {}
        for series in account_series:
            for record in series:
                by_date.setdefault(record.date, []).append(record)

        discrepancies: List[Discrepancy] = []
        for index in range(1, len(overall_records)):
            previous_overall = overall_records[index - 1]
            overall = overall_records[index]
            current_accounts = by_date.get(overall.date, [])
            previous_accounts = by_date.get(previous_overall.date, [])
            if not current_accounts or not previous_accounts:
                continue

            for currency, block in overall.currencies.items():
                current_blocks = [r.for_currency(currency) for r in current_accounts]
                previous_blocks = [r.for_currency(currency) for r in previous_accounts]
                if any(b is None for b in current_blocks) or any(b is None for b in previous_blocks):
                    continue

                current_value = sum(b.total_value for b in current_blocks)
                previous_value = sum(b.total_value for b in previous_blocks)
                cash_flow = sum(b.total_cash_flow for b in current_blocks)
                expected = compute_daily_return(previous_value, current_value, cash_flow).adjusted

                if abs(block.adjusted_daily_change_percentage - expected) > self.cross_level_threshold:
                    discrepancies.append(
                        Discrepancy(
                            overall.scope.key,
                            overall.date,
                            currency,
                            DiscrepancyKind.CROSS_LEVEL,
                            block.adjusted_daily_change_percentage,
                            expected,
                        )
                    )
        for discrepancy in discrepancies:
            logger.warning(
                f"Cross-level mismatch {discrepancy.scope_key} {discrepancy.date} "
                f"{discrepancy.currency.value}: stored {discrepancy.stored:.4f}% "
                f"vs accounts {discrepancy.expected:.4f}%"
            )
        return discrepancies


# ======================
# Corrector
# ======================

class ConsistencyCorrector:
    """
    Consistency Corrector

    Verify and fix share one path; dry_run only decides whether batches are written.
    """

    def __init__(
        self,
        repository: CorrectionRepository,
        verifier: Optional[ConsistencyVerifier] = None,
        invalidator: Optional[CacheInvalidationSink] = None,
        batch_size: int = 450,
        dry_run: bool = True,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.repository = repository
        self.verifier = verifier or ConsistencyVerifier()
        self.invalidator = invalidator
        self.batch_size = batch_size
        self.dry_run = dry_run

    async def _flush(
        self,
        scope: EntityScope,
        pending: List[CorrectionProposal],
        report: CorrectionReport,
    ) -> None:
        if not pending:
            return
        for proposal in pending:
            assert_cash_flow_consistent(proposal.corrected, self.verifier.cash_flow_tolerance)
        if not self.dry_run:
            written = await self.repository.replace_batch([p.corrected for p in pending])
            report.batches_committed += 1
            logger.info(f"{scope.key}: committed batch of {written} corrected records")
            if self.invalidator is not None:
                await self.invalidator.invalidate(scope, [p.corrected.date for p in pending])
        pending.clear()

    async def run(self, records: Sequence[DailyPerformanceRecord]) -> CorrectionReport:
        """
        Verify one scope's records and (unless dry-run) persist corrections

        Args:
            records: Stored records of a single scope, ascending by date

        Returns:
            CorrectionReport with counts and every proposal

        Raises:
            MalformedRecordError: Record unusable; the current batch is dropped
            ValueError: Mixed scopes or non-ascending dates
        """
        if not records:
            return CorrectionReport(scope_key="", dry_run=self.dry_run)

        scope = records[0].scope
        if any(r.scope != scope for r in records):
            raise ValueError("ConsistencyCorrector.run expects records of a single scope")
        ensure_ascending([r.date for r in records], scope.key)

        report = CorrectionReport(scope_key=scope.key, dry_run=self.dry_run)
        pending: List[CorrectionProposal] = []

        for index, record in enumerate(records):
            try:
                validate_record(record)
            except MalformedRecordError:
                logger.error(f"{scope.key}: aborting batch of {len(pending)} at malformed record {record.date}")
                pending.clear()
                raise

            previous = records[index - 1] if index > 0 else None
            proposal = self.verifier.propose(previous, record)
            report.checked += 1
            if proposal is None:
                report.unchanged += 1
                continue

            report.corrected += 1
            report.proposals.append(proposal)
            pending.append(proposal)
            for discrepancy in proposal.discrepancies:
                logger.info(
                    f"{'[DRY RUN] ' if self.dry_run else ''}{scope.key} {record.date} "
                    f"{discrepancy.currency.value} {discrepancy.kind.value}"
                    f"{' ' + discrepancy.asset_key if discrepancy.asset_key else ''}: "
                    f"{discrepancy.stored:.4f} -> {discrepancy.expected:.4f}"
                )

            if len(pending) >= self.batch_size:
                await self._flush(scope, pending, report)

        await self._flush(scope, pending, report)

        logger.info(
            f"{scope.key}: checked {report.checked}, corrected {report.corrected}, "
            f"unchanged {report.unchanged}, batches {report.batches_committed}"
            f"{' (dry run)' if self.dry_run else ''}"
        )
        return report
