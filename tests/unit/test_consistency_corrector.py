"""
Unit Tests for ConsistencyVerifier / ConsistencyCorrector

✅ Cash flow sum invariant
✅ Idempotent corrections
✅ Dry-run never writes
✅ Batching, invalidation and malformed-record aborts
✅ Overall vs account cross-level check
"""

import pytest
from dataclasses import replace
from datetime import date, timedelta

from performance_engine.domain.exceptions import CashFlowMismatchError, MalformedRecordError
from performance_engine.domain.models import (
    REFERENCE_CURRENCY,
    AssetPerformanceEntry,
    AssetSnapshot,
    CurrencyPerformance,
    DailyPerformanceRecord,
    EntityScope,
    ScopeSnapshot,
)
from performance_engine.domain.services.consistency_corrector import (
    ConsistencyCorrector,
    ConsistencyVerifier,
    DiscrepancyKind,
    assert_cash_flow_consistent,
    validate_record,
)
from performance_engine.domain.services.daily_performance import DailyPerformanceCalculator


ACCOUNT = EntityScope(portfolio_id="pf-1", account_id="acc-1")
START = date(2026, 6, 1)


# Mock collaborators
class MockCorrectionRepository:
    def __init__(self):
        self.batches = []

    async def replace_batch(self, records):
        self.batches.append(list(records))
        return len(records)


class MockInvalidator:
    def __init__(self):
        self.calls = []

    async def invalidate(self, scope, dates):
        self.calls.append((scope, list(dates)))


def asset_entry(value, cash_flow, units=10.0, adjusted=0.0):
    return AssetPerformanceEntry(
        units=units,
        total_value=value,
        total_investment=value,
        total_cash_flow=cash_flow,
        raw_daily_change_percentage=adjusted,
        adjusted_daily_change_percentage=adjusted,
        unrealized_profit_and_loss=0.0,
        done_profit_and_loss=0.0,
    )


def record_with(day, assets, total_cash_flow, total_value=None):
    value = sum(a.total_value for a in assets.values()) if total_value is None else total_value
    block = CurrencyPerformance(
        total_value=value,
        total_investment=value,
        total_cash_flow=total_cash_flow,
        raw_daily_change_percentage=0.0,
        adjusted_daily_change_percentage=0.0,
        daily_return=0.0,
        unrealized_pnl=0.0,
        done_profit_and_loss=0.0,
        asset_performance=assets,
    )
    return DailyPerformanceRecord(scope=ACCOUNT, date=day, currencies={REFERENCE_CURRENCY: block})


def pipeline_series(values):
    """Records exactly as the daily pipeline would store them"""
    snapshots = [
        ScopeSnapshot(
            scope=ACCOUNT,
            date=START + timedelta(days=i),
            assets=[AssetSnapshot("AAPL_stock", 10, value, 1000)],
        )
        for i, value in enumerate(values)
    ]
    return DailyPerformanceCalculator().calculate_series(snapshots, [])


def tamper(record, adjusted):
    block = record.for_currency(REFERENCE_CURRENCY)
    return replace(
        record,
        currencies={REFERENCE_CURRENCY: replace(block, adjusted_daily_change_percentage=adjusted)},
    )


def mismatched_records(count):
    """Every record stores -20 against asset flows summing to -10"""
    return [
        record_with(START + timedelta(days=i), {"AAPL_stock": asset_entry(1000, -10)}, -20)
        for i in range(count)
    ]


class TestConsistencyVerifier:
    def test_asset_sum_mismatch_is_flagged(self):
        record = record_with(
            START,
            {"AAPL_stock": asset_entry(500, -50), "MSFT_stock": asset_entry(500, -30)},
            -100,
        )

        proposal = ConsistencyVerifier().propose(None, record)

        assert proposal is not None
        kinds = {d.kind: d for d in proposal.discrepancies}
        mismatch = kinds[DiscrepancyKind.CASH_FLOW_MISMATCH]
        assert mismatch.stored == -100
        assert mismatch.expected == pytest.approx(-80)
        assert mismatch.difference == pytest.approx(20)
        assert proposal.corrected.for_currency(REFERENCE_CURRENCY).total_cash_flow == pytest.approx(-80)

    def test_pipeline_records_are_consistent(self):
        records = pipeline_series([1000, 1010, 990, 1005])
        assert ConsistencyVerifier().verify_series(records) == []

    def test_wrong_adjusted_return_is_rebuilt(self):
        records = pipeline_series([1000, 1010, 990])
        records[1] = tamper(records[1], 7.5)

        proposal = ConsistencyVerifier().propose(records[0], records[1])

        corrected = proposal.corrected.for_currency(REFERENCE_CURRENCY)
        assert corrected.adjusted_daily_change_percentage == pytest.approx(1.0)
        assert corrected.daily_return == pytest.approx(0.01)
        assert any(d.kind == DiscrepancyKind.ADJUSTED_MISMATCH for d in proposal.discrepancies)

    def test_silent_unit_change_becomes_implied_cash_flow(self):
        previous = record_with(START, {"AAPL_stock": asset_entry(1000, 0, units=10)}, 0)
        current = record_with(START + timedelta(days=1), {"AAPL_stock": asset_entry(1210, 0, units=11)}, 0)

        proposal = ConsistencyVerifier().propose(previous, current)

        entry = proposal.corrected.for_currency(REFERENCE_CURRENCY).asset_performance["AAPL_stock"]
        assert entry.implied_cash_flow is True
        assert entry.total_cash_flow == pytest.approx(-110)
        assert entry.adjusted_daily_change_percentage == pytest.approx(10.0)
        assert any(d.kind == DiscrepancyKind.IMPLIED_CASH_FLOW for d in proposal.discrepancies)

    def test_small_differences_are_tolerated(self):
        record = record_with(START, {"AAPL_stock": asset_entry(1000, -10)}, -10.005)
        assert ConsistencyVerifier().propose(None, record) is None

    def test_cross_level_mismatch_is_reported(self):
        overall_scope = EntityScope(portfolio_id="pf-1")
        accounts = pipeline_series([1000, 1010])
        overall = [
            replace(r, scope=overall_scope) for r in pipeline_series([1000, 1010])
        ]
        overall[1] = tamper(overall[1], 3.0)

        found = ConsistencyVerifier(cross_level_threshold=0.5).verify_cross_level(overall, [accounts])

        assert len(found) == 1
        assert found[0].kind == DiscrepancyKind.CROSS_LEVEL
        assert found[0].expected == pytest.approx(1.0)

    def test_cross_level_within_threshold(self):
        overall_scope = EntityScope(portfolio_id="pf-1")
        accounts = pipeline_series([1000, 1010])
        overall = [replace(r, scope=overall_scope) for r in pipeline_series([1000, 1010])]
        overall[1] = tamper(overall[1], 1.3)

        assert ConsistencyVerifier().verify_cross_level(overall, [accounts]) == []


class TestValidation:
    def test_nan_field_is_malformed(self):
        record = record_with(START, {"AAPL_stock": asset_entry(1000, 0)}, 0, total_value=float("nan"))
        with pytest.raises(MalformedRecordError):
            validate_record(record)

    def test_cash_flow_assertion(self):
        record = record_with(START, {"AAPL_stock": asset_entry(1000, -50)}, -100)
        with pytest.raises(CashFlowMismatchError):
            assert_cash_flow_consistent(record)


class TestConsistencyCorrector:
    @pytest.mark.asyncio
    async def test_dry_run_reports_without_writing(self):
        repository = MockCorrectionRepository()
        invalidator = MockInvalidator()
        corrector = ConsistencyCorrector(repository, invalidator=invalidator, dry_run=True)

        report = await corrector.run(mismatched_records(3))

        assert report.dry_run is True
        assert report.corrected == 3
        assert report.batches_committed == 0
        assert repository.batches == []
        assert invalidator.calls == []

    @pytest.mark.asyncio
    async def test_fix_mode_writes_in_batches_and_invalidates(self):
        repository = MockCorrectionRepository()
        invalidator = MockInvalidator()
        corrector = ConsistencyCorrector(repository, invalidator=invalidator, batch_size=2, dry_run=False)

        report = await corrector.run(mismatched_records(5))

        assert report.corrected == 5
        assert report.batches_committed == 3
        assert [len(b) for b in repository.batches] == [2, 2, 1]
        assert [len(dates) for _, dates in invalidator.calls] == [2, 2, 1]
        assert invalidator.calls[0][0] == ACCOUNT

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self):
        repository = MockCorrectionRepository()
        records = pipeline_series([1000, 1010, 990, 1005])
        records[2] = tamper(records[2], -9.0)

        first = await ConsistencyCorrector(repository, dry_run=False).run(records)
        fixed = [p.corrected for p in first.proposals]
        by_date = {r.date: r for r in fixed}
        rewritten = [by_date.get(r.date, r) for r in records]
        second = await ConsistencyCorrector(repository, dry_run=False).run(rewritten)

        assert first.corrected == 1
        assert second.corrected == 0
        assert second.unchanged == 4
        assert len(repository.batches) == 1

    @pytest.mark.asyncio
    async def test_consistent_records_are_untouched(self):
        repository = MockCorrectionRepository()

        report = await ConsistencyCorrector(repository, dry_run=False).run(pipeline_series([1000, 1010]))

        assert report.corrected == 0
        assert report.checked == 2
        assert repository.batches == []

    @pytest.mark.asyncio
    async def test_malformed_record_aborts_pending_batch(self):
        repository = MockCorrectionRepository()
        records = mismatched_records(3)
        records.append(
            record_with(START + timedelta(days=3), {"AAPL_stock": asset_entry(1000, -10)}, float("nan"))
        )
        corrector = ConsistencyCorrector(repository, batch_size=2, dry_run=False)

        with pytest.raises(MalformedRecordError):
            await corrector.run(records)

        # First full batch was committed, the third record was still pending
        assert [len(b) for b in repository.batches] == [2]

    @pytest.mark.asyncio
    async def test_correction_breaking_cash_flow_sum_is_not_written(self):
        class SkewedVerifier(ConsistencyVerifier):
            def propose(self, previous, record):
                proposal = super().propose(previous, record)
                if proposal is None:
                    return None
                block = proposal.corrected.for_currency(REFERENCE_CURRENCY)
                skewed = replace(block, total_cash_flow=block.total_cash_flow - 5)
                return replace(
                    proposal,
                    corrected=replace(proposal.corrected, currencies={REFERENCE_CURRENCY: skewed}),
                )

        repository = MockCorrectionRepository()
        invalidator = MockInvalidator()
        corrector = ConsistencyCorrector(
            repository, verifier=SkewedVerifier(), invalidator=invalidator, dry_run=False
        )

        with pytest.raises(CashFlowMismatchError):
            await corrector.run(mismatched_records(2))

        assert repository.batches == []
        assert invalidator.calls == []

    @pytest.mark.asyncio
    async def test_records_must_share_a_scope(self):
        records = mismatched_records(2)
        records[1] = replace(records[1], scope=EntityScope(portfolio_id="pf-1"))

        with pytest.raises(ValueError):
            await ConsistencyCorrector(MockCorrectionRepository()).run(records)

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ConsistencyCorrector(MockCorrectionRepository(), batch_size=0)
