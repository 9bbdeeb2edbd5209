import pytest
from dataclasses import replace
from datetime import date, timedelta

from performance_engine.domain.exceptions import MalformedRecordError
from performance_engine.domain.models import (
    REFERENCE_CURRENCY,
    AssetSnapshot,
    Currency,
    EntityScope,
    PeriodType,
    ScopeSnapshot,
)
from performance_engine.domain.services.currency_converter import (
    CurrencyConverter,
    ExchangeRateLookup,
    convert_currency_performance,
)
from performance_engine.domain.services.daily_performance import DailyPerformanceCalculator
from performance_engine.domain.services.period_consolidator import consolidate_period
from performance_engine.infrastructure.db.models import DailyPerformanceModel
from performance_engine.infrastructure.db.repositories.consolidated_period_repository import (
    ConsolidatedPeriodRepository,
)
from performance_engine.infrastructure.db.repositories.daily_performance_repository import (
    DailyPerformanceRepository,
)
from performance_engine.services.correction_service import CorrectionService


ACCOUNT = EntityScope(portfolio_id="pf-1", account_id="acc-1")
OVERALL = EntityScope(portfolio_id="pf-1")
START = date(2026, 7, 1)


class DummyRateSource:
    async def get_rate(self, currency, target_date):
        return {Currency.COP: 4000.0}.get(currency)


def build(scope, values):
    snapshots = [
        ScopeSnapshot(
            scope=scope,
            date=START + timedelta(days=i),
            assets=[AssetSnapshot("VOO_etf", 10, value, 1000)],
        )
        for i, value in enumerate(values)
    ]
    return DailyPerformanceCalculator().calculate_series(snapshots, [])


def with_cash_flow(record, total_cash_flow):
    block = record.for_currency(REFERENCE_CURRENCY)
    return replace(record, currencies={REFERENCE_CURRENCY: replace(block, total_cash_flow=total_cash_flow)})


async def store(session_factory, records):
    async with session_factory() as session:
        await DailyPerformanceRepository(session).save_many(records)
        await session.commit()


def correction_service(session_factory, dry_run):
    return CorrectionService(session_factory=session_factory, batch_size=2, dry_run=dry_run, concurrency=1)


@pytest.mark.asyncio
async def test_fix_mode_rewrites_and_drops_checkpoints(session_factory):
    records = build(ACCOUNT, [1000, 1010, 1020])
    records[1] = with_cash_flow(records[1], -50.0)
    await store(session_factory, records)
    async with session_factory() as session:
        await ConsolidatedPeriodRepository(session).save(consolidate_period(records, "2026-07"))
        await session.commit()

    report = await correction_service(session_factory, dry_run=False).correct_scope(ACCOUNT)

    assert report.corrected == 1
    assert report.batches_committed == 1
    async with session_factory() as session:
        fixed = await DailyPerformanceRepository(session).get(ACCOUNT, records[1].date)
        checkpoint = await ConsolidatedPeriodRepository(session).get(ACCOUNT, PeriodType.MONTH, "2026-07")
    assert fixed.for_currency(REFERENCE_CURRENCY).total_cash_flow == 0
    assert fixed.for_currency(REFERENCE_CURRENCY).adjusted_daily_change_percentage == pytest.approx(1.0)
    assert checkpoint is None

    second = await correction_service(session_factory, dry_run=False).correct_scope(ACCOUNT)
    assert second.corrected == 0


@pytest.mark.asyncio
async def test_dry_run_leaves_storage_untouched(session_factory):
    records = build(ACCOUNT, [1000, 1010])
    records[1] = with_cash_flow(records[1], -50.0)
    await store(session_factory, records)

    report = await correction_service(session_factory, dry_run=True).correct_scope(ACCOUNT)

    assert report.corrected == 1
    assert report.batches_committed == 0
    async with session_factory() as session:
        stored = await DailyPerformanceRepository(session).get(ACCOUNT, records[1].date)
    assert stored.for_currency(REFERENCE_CURRENCY).total_cash_flow == -50.0


@pytest.mark.asyncio
async def test_correct_all_raises_after_other_scopes_ran(session_factory):
    good = build(OVERALL, [1000, 1010])
    good[1] = with_cash_flow(good[1], -50.0)
    await store(session_factory, good)
    async with session_factory() as session:
        session.add(
            DailyPerformanceModel(
                scope_key=ACCOUNT.key,
                date=START,
                payload={"USD": {"totalValue": None, "assetPerformance": {}}},
            )
        )
        await session.commit()

    with pytest.raises(MalformedRecordError):
        await correction_service(session_factory, dry_run=False).correct_all("pf-1")

    async with session_factory() as session:
        fixed = await DailyPerformanceRepository(session).get(OVERALL, good[1].date)
    assert fixed.for_currency(REFERENCE_CURRENCY).total_cash_flow == 0


@pytest.mark.asyncio
async def test_cross_level_report(session_factory):
    accounts = build(ACCOUNT, [1000, 1010])
    overall = [replace(r, scope=OVERALL) for r in build(ACCOUNT, [1000, 1010])]
    block = overall[1].for_currency(REFERENCE_CURRENCY)
    overall[1] = replace(
        overall[1],
        currencies={REFERENCE_CURRENCY: replace(block, adjusted_daily_change_percentage=4.0)},
    )
    await store(session_factory, accounts + overall)

    found = await correction_service(session_factory, dry_run=True).verify_cross_level("pf-1")

    assert len(found) == 1
    assert found[0].scope_key == OVERALL.key


@pytest.mark.asyncio
async def test_repair_currencies(session_factory):
    records = build(ACCOUNT, [1000, 1010])
    usd = records[0].for_currency(REFERENCE_CURRENCY)
    records[0] = replace(records[0], currencies={REFERENCE_CURRENCY: usd, Currency.COP: usd})
    records[1] = replace(
        records[1],
        currencies={
            **records[1].currencies,
            Currency.COP: convert_currency_performance(records[1].for_currency(REFERENCE_CURRENCY), 4000.0),
        },
    )
    await store(session_factory, records)
    converter = CurrencyConverter(
        ExchangeRateLookup(DummyRateSource(), max_attempts=1, base_delay=0),
        currencies=[Currency.USD, Currency.COP],
    )
    service = correction_service(session_factory, dry_run=False)

    assert await service.repair_currencies(ACCOUNT, converter, dry_run=True) == 1
    assert await service.repair_currencies(ACCOUNT, converter) == 1

    async with session_factory() as session:
        repaired = await DailyPerformanceRepository(session).get(ACCOUNT, records[0].date)
    assert repaired.for_currency(Currency.COP).total_value == pytest.approx(1000 * 4000)
    assert await service.repair_currencies(ACCOUNT, converter) == 0
