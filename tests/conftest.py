from datetime import date, datetime
from types import SimpleNamespace

import pytest
import pytest_asyncio

from waterbills.config import Config
from waterbills.context import AppContext
from waterbills.database.core import create_tables, make_engine, make_session_factory
from waterbills.services.reading_service import record_meter_reading
from waterbills.services.registry_service import (
    create_building, create_premise, get_premise_submeter, register_bulk_meters, upsert_settings
)


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File database so separate sessions (audit writer, workers) share data
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def async_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    settings = Config()
    settings.WORKER_CONCURRENCY = 1
    settings.WORKER_POLL_SECONDS = 0.01
    settings.JOB_MAX_ATTEMPTS = 3
    settings.JOB_TIMEOUT_SECONDS = 5
    settings.JOB_BACKOFF_SECONDS = 30
    return settings


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 2, 25, 7, 0))


@pytest_asyncio.fixture
async def app_context(engine, settings, clock):
    context = AppContext(engine, settings=settings, clock=clock)
    await context.start()
    yield context
    await context.stop()


async def _record(session, meter_id, period, reading):
    await record_meter_reading(session, meter_id, period, reading, date(2026, 1, 28), "tester")


@pytest_asyncio.fixture
async def billed_building(async_session):
    """
    Building billed for 2026-01:
    council 25 m3 @60, borehole 10 m3 @30, pumping 5000 -> bill 6800;
    unit A1 uses 15 m3 and A2 uses 5 m3 -> rate 340.
    """
    building = await create_building(async_session, "Riverside Court", "12 Moi Avenue", pumping_cost_per_month=5000)
    await register_bulk_meters(async_session, building.id)
    await upsert_settings(
        async_session,
        building.id,
        council_price_per_m3=60,
        borehole_price_per_m3=30,
        pumping_cost_per_month=5000,
        penalty_daily=150,
        prorate_precision=2
    )

    a1 = await create_premise(async_session, building.id, "A1", monthly_rent=8000, previous_balance=200)
    a2 = await create_premise(async_session, building.id, "A2", monthly_rent=5000, type="apartment")
    a1_meter = await get_premise_submeter(async_session, a1.id)
    a2_meter = await get_premise_submeter(async_session, a2.id)

    await _record(async_session, building.council_meter_id, "2025-12", 100)
    await _record(async_session, building.council_meter_id, "2026-01", 125)
    await _record(async_session, building.borehole_meter_id, "2025-12", 50)
    await _record(async_session, building.borehole_meter_id, "2026-01", 60)
    await _record(async_session, a1_meter.id, "2025-12", 10)
    await _record(async_session, a1_meter.id, "2026-01", 25)
    await _record(async_session, a2_meter.id, "2025-12", 3)
    await _record(async_session, a2_meter.id, "2026-01", 8)

    return SimpleNamespace(
        building=building,
        a1=a1,
        a2=a2,
        a1_meter=a1_meter,
        a2_meter=a2_meter,
        period="2026-01"
    )


@pytest_asyncio.fixture
async def overdue_invoice(async_session, billed_building):
    """Invoice of 10000 for A1, due 2026-02-08, nothing paid yet"""
    from waterbills.database.models import Invoice, InvoiceStatus, WaterConnectionStatus

    invoice = Invoice(
        premise_id=billed_building.a1.id,
        building_id=billed_building.building.id,
        period="2026-01",
        invoice_date=date(2026, 1, 25),
        due_date=date(2026, 2, 8),
        rent_amount=10000,
        water_amount=0,
        previous_balance=0,
        penalty_amount=0,
        total_amount=10000,
        amount_paid=0,
        status=InvoiceStatus.unpaid.value,
        water_connection_status=WaterConnectionStatus.connected.value,
        payments=[]
    )
    async_session.add(invoice)
    await async_session.commit()
    return invoice
