import pytest

from waterbills.database.models import Meter, MeterType
from waterbills.services.errors import AlreadyExists, NotFound
from waterbills.services.registry_service import (
    create_building, create_premise, get_premise_submeter, get_settings,
    list_submeters, register_bulk_meters, upsert_settings
)


@pytest.mark.asyncio
async def test_premise_gets_exactly_one_submeter(async_session):
    building = await create_building(async_session, "Sunrise Plaza", "Kenyatta Road")
    premise = await create_premise(async_session, building.id, "S1", monthly_rent=12000, tags=["corner"])

    submeter = await get_premise_submeter(async_session, premise.id)
    assert submeter.type == MeterType.submeter.value
    assert submeter.label == "Submeter S1"
    assert submeter.building_id == building.id
    assert len(await list_submeters(async_session, building.id)) == 1
    assert premise.tags == ["corner"]
    assert premise.disconnect_after_day_of_month == 20


@pytest.mark.asyncio
async def test_unit_numbers_unique_per_building(async_session):
    building = await create_building(async_session, "Sunrise Plaza", "Kenyatta Road")
    other = await create_building(async_session, "Hill View", "Ngong Road")
    await create_premise(async_session, building.id, "S1", monthly_rent=12000)

    with pytest.raises(AlreadyExists):
        await create_premise(async_session, building.id, "S1", monthly_rent=9000)

    # Same unit number in another building is fine
    await create_premise(async_session, other.id, "S1", monthly_rent=9000)

    with pytest.raises(NotFound):
        await create_premise(async_session, 999, "X1", monthly_rent=1)


@pytest.mark.asyncio
async def test_bulk_meters_registered_once(async_session):
    building = await create_building(async_session, "Sunrise Plaza", "Kenyatta Road")
    await register_bulk_meters(async_session, building.id)
    council_id, borehole_id = building.council_meter_id, building.borehole_meter_id

    await register_bulk_meters(async_session, building.id)
    assert building.council_meter_id == council_id
    assert building.borehole_meter_id == borehole_id

    council = await async_session.get(Meter, council_id)
    assert council.type == MeterType.council.value


@pytest.mark.asyncio
async def test_upsert_settings(async_session):
    building = await create_building(async_session, "Sunrise Plaza", "Kenyatta Road")
    await upsert_settings(async_session, building.id, council_price_per_m3=60, penalty_daily=150)
    await upsert_settings(async_session, building.id, penalty_daily=200)

    settings = await get_settings(async_session, building.id)
    assert settings.council_price_per_m3 == 60
    assert settings.penalty_daily == 200
    assert settings.prorate_precision == 2

    with pytest.raises(ValueError):
        await upsert_settings(async_session, building.id, discount=5)
