from datetime import date

import pytest

from waterbills.services.errors import DuplicateReading, NotFound
from waterbills.services.reading_service import get_reading, get_reading_pair, record_meter_reading


@pytest.mark.asyncio
async def test_duplicate_reading_rejected(async_session, billed_building):
    meter_id = billed_building.a1_meter.id

    with pytest.raises(DuplicateReading) as exc:
        await record_meter_reading(async_session, meter_id, "2026-01", 99, date(2026, 1, 30), "tester")

    assert exc.value.meter_id == meter_id
    assert exc.value.period == "2026-01"
    assert exc.value.existing_id is not None

    # Original reading untouched
    reading = await get_reading(async_session, meter_id, "2026-01")
    assert reading.reading == 25


@pytest.mark.asyncio
async def test_reading_copies_building_and_premise(async_session, billed_building):
    reading = await record_meter_reading(
        async_session, billed_building.a2_meter.id, "2026-02", 12, date(2026, 2, 27), "tester", notes="estimated"
    )

    assert reading.building_id == billed_building.building.id
    assert reading.premise_id == billed_building.a2.id
    assert reading.notes == "estimated"


@pytest.mark.asyncio
async def test_reading_validation(async_session, billed_building):
    with pytest.raises(NotFound):
        await record_meter_reading(async_session, 999, "2026-01", 1, date(2026, 1, 30), "tester")

    with pytest.raises(ValueError):
        await record_meter_reading(async_session, billed_building.a1_meter.id, "2026-1", 1, date(2026, 1, 30), "tester")

    with pytest.raises(ValueError):
        await record_meter_reading(async_session, billed_building.a1_meter.id, "2026-03", -1, date(2026, 3, 30), "tester")


@pytest.mark.asyncio
async def test_reading_pair(async_session, billed_building):
    pair = await get_reading_pair(async_session, billed_building.a1_meter.id, "2026-01")
    assert pair.current == 25
    assert pair.previous == 10

    # Nothing recorded for 2025-11
    pair = await get_reading_pair(async_session, billed_building.a1_meter.id, "2025-12")
    assert pair.current == 10
    assert pair.previous == 0
