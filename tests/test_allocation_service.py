import logging

import pytest

from waterbills.services.allocation_service import (
    PricingSnapshot, SubmeterInput, allocate_usage, calculate_building_water_usage, preview_building_usage
)
from waterbills.services.errors import ConfigurationMissing, NotFound
from waterbills.services.reading_service import ReadingPair
from waterbills.services.registry_service import create_building, create_premise, upsert_settings

PRICING = PricingSnapshot(
    council_price_per_m3=60,
    borehole_price_per_m3=30,
    pumping_cost_per_month=5000,
    prorate_precision=2
)


def test_building_bill_spread_by_consumption():
    """25 m3 council + 10 m3 borehole + pumping 5000 over 20 submeter units"""
    result = allocate_usage(
        ReadingPair(125, 100),
        ReadingPair(60, 50),
        [
            SubmeterInput(meter_id=1, premise_id=10, readings=ReadingPair(25, 10)),
            SubmeterInput(meter_id=2, premise_id=11, readings=ReadingPair(8, 3)),
        ],
        PRICING
    )

    assert result.council_cost == 1500
    assert result.borehole_cost == 300
    assert result.total_building_bill == 6800
    assert result.total_submeter_units == 20
    assert result.per_unit_rate == 340
    assert result.for_premise(10).water_amount == 5100
    assert result.for_meter(2).water_amount == 1700


def test_allocation_conserves_bill_up_to_rounding():
    subs = [
        SubmeterInput(meter_id=i, premise_id=i, readings=ReadingPair(units, 0))
        for i, units in enumerate([7, 11, 13], start=1)
    ]
    result = allocate_usage(ReadingPair(31, 0), ReadingPair(17, 0), subs, PRICING)

    # Each share is rounded to 2 decimals: error at most 0.005 per submeter
    assert abs(result.total_allocated - result.total_building_bill) <= 0.005 * len(subs)


def test_no_submeter_consumption_gives_zero_rate():
    result = allocate_usage(
        ReadingPair(125, 100),
        ReadingPair(60, 50),
        [SubmeterInput(meter_id=1, premise_id=1, readings=ReadingPair(10, 10))],
        PRICING
    )

    assert result.total_building_bill == 6800
    assert result.per_unit_rate == 0
    assert result.submeters[0].water_amount == 0


def test_meter_going_backwards_counts_as_zero(caplog):
    with caplog.at_level(logging.WARNING):
        result = allocate_usage(
            ReadingPair(90, 100),
            ReadingPair(0, 0),
            [
                SubmeterInput(meter_id=1, premise_id=1, readings=ReadingPair(5, 20)),
                SubmeterInput(meter_id=2, premise_id=2, readings=ReadingPair(10, 0)),
            ],
            PRICING
        )

    assert result.council_units == 0
    assert result.submeters[0].consumption == 0
    assert result.submeters[0].water_amount == 0
    assert result.total_submeter_units == 10
    assert "Negative consumption" in caplog.text


def test_allocation_is_deterministic():
    subs = [SubmeterInput(meter_id=1, premise_id=1, readings=ReadingPair(9, 2))]
    first = allocate_usage(ReadingPair(40, 0), ReadingPair(3, 1), subs, PRICING)
    second = allocate_usage(ReadingPair(40, 0), ReadingPair(3, 1), subs, PRICING)
    assert first == second


@pytest.mark.asyncio
async def test_building_usage_from_recorded_readings(async_session, billed_building):
    result = await calculate_building_water_usage(async_session, billed_building.building.id, "2026-01")

    assert result.total_building_bill == 6800
    assert result.per_unit_rate == 340
    assert result.for_premise(billed_building.a1.id).water_amount == 5100
    assert result.for_premise(billed_building.a2.id).water_amount == 1700


@pytest.mark.asyncio
async def test_preview_matches_calculation(async_session, billed_building):
    building_id = billed_building.building.id
    preview = await preview_building_usage(async_session, building_id, "2026-01")
    calculated = await calculate_building_water_usage(async_session, building_id, "2026-01")
    assert preview == calculated


@pytest.mark.asyncio
async def test_missing_readings_count_as_zero(async_session, billed_building):
    # Nothing recorded for 2026-02: current 0 minus January's readings clamps to 0
    result = await calculate_building_water_usage(async_session, billed_building.building.id, "2026-02")

    assert result.council_units == 0
    assert result.total_submeter_units == 0
    assert result.total_building_bill == 5000


@pytest.mark.asyncio
async def test_unknown_building(async_session):
    with pytest.raises(NotFound):
        await calculate_building_water_usage(async_session, 999, "2026-01")


@pytest.mark.asyncio
async def test_missing_settings_or_bulk_meters(async_session):
    building = await create_building(async_session, "Bare", "No meters yet")
    await create_premise(async_session, building.id, "B1", monthly_rent=1000)

    with pytest.raises(ConfigurationMissing):
        await calculate_building_water_usage(async_session, building.id, "2026-01")

    await upsert_settings(async_session, building.id, council_price_per_m3=60)

    # Settings present, bulk meters still missing
    with pytest.raises(ConfigurationMissing):
        await calculate_building_water_usage(async_session, building.id, "2026-01")
