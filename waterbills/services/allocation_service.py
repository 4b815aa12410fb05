"""
Usage allocation - spreads a building's water bill across its submeters.

The building bill is council + borehole consumption at their per-m3 prices
plus the monthly pumping cost. Each submeter is charged
consumption * (building bill / total submeter consumption).

allocate_usage() is pure: the same readings and settings always give the
same allocation, so a preview matches the invoices generation would create.
"""
import logging
from typing import List, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import Building, BuildingSettings, Meter, MeterType
from waterbills.services.errors import ConfigurationMissing, NotFound
from waterbills.services.reading_service import ReadingPair, get_reading_pair
from waterbills.services.registry_service import get_settings, list_submeters
from waterbills.utils.periods import parse_period, round_to_precision


class PricingSnapshot(NamedTuple):
    council_price_per_m3: float
    borehole_price_per_m3: float
    pumping_cost_per_month: float
    prorate_precision: int = 2

    @classmethod
    def from_settings(cls, settings: BuildingSettings) -> "PricingSnapshot":
        return cls(
            council_price_per_m3=float(settings.council_price_per_m3 or 0),
            borehole_price_per_m3=float(settings.borehole_price_per_m3 or 0),
            pumping_cost_per_month=float(settings.pumping_cost_per_month or 0),
            prorate_precision=int(settings.prorate_precision if settings.prorate_precision is not None else 2)
        )


class SubmeterInput(NamedTuple):
    meter_id: int
    premise_id: Optional[int]
    readings: ReadingPair


class SubmeterUsage(NamedTuple):
    """Allocation for a single submeter"""
    meter_id: int
    premise_id: Optional[int]
    current: float
    previous: float
    consumption: float
    water_amount: float  # consumption * per_unit_rate, rounded


class AllocationResult(NamedTuple):
    building_id: Optional[int]
    period: Optional[str]
    council_units: float
    borehole_units: float
    council_cost: float
    borehole_cost: float
    pumping_cost: float
    total_building_bill: float
    total_submeter_units: float
    per_unit_rate: float
    submeters: List[SubmeterUsage]

    def for_premise(self, premise_id: int) -> Optional[SubmeterUsage]:
        for usage in self.submeters:
            if usage.premise_id == premise_id:
                return usage
        return None

    def for_meter(self, meter_id: int) -> Optional[SubmeterUsage]:
        for usage in self.submeters:
            if usage.meter_id == meter_id:
                return usage
        return None

    @property
    def total_allocated(self) -> float:
        return sum(usage.water_amount for usage in self.submeters)


def consumption_of(pair: ReadingPair, label: str = "meter") -> float:
    """current - previous, clamped to 0 when the meter went backwards."""
    units = pair.current - pair.previous
    if units < 0:
        logging.warning(
            f"Negative consumption on {label} (current={pair.current}, previous={pair.previous}); "
            f"treating as 0. Check for meter rollover or a data-entry error."
        )
        return 0.0
    return units


def allocate_usage(
    council: ReadingPair,
    borehole: ReadingPair,
    submeters: List[SubmeterInput],
    pricing: PricingSnapshot,
    building_id: Optional[int] = None,
    period: Optional[str] = None
) -> AllocationResult:
    council_units = consumption_of(council, f"council meter of building {building_id}")
    borehole_units = consumption_of(borehole, f"borehole meter of building {building_id}")

    council_cost = council_units * pricing.council_price_per_m3
    borehole_cost = borehole_units * pricing.borehole_price_per_m3
    total_building_bill = council_cost + borehole_cost + pricing.pumping_cost_per_month

    consumptions = [
        (sub, consumption_of(sub.readings, f"submeter {sub.meter_id}"))
        for sub in submeters
    ]
    total_submeter_units = sum(units for _, units in consumptions)

    # No submeter consumption yet: nothing to spread the bill over
    per_unit_rate = total_building_bill / total_submeter_units if total_submeter_units > 0 else 0.0

    usages = [
        SubmeterUsage(
            meter_id=sub.meter_id,
            premise_id=sub.premise_id,
            current=sub.readings.current,
            previous=sub.readings.previous,
            consumption=units,
            water_amount=round_to_precision(units * per_unit_rate, pricing.prorate_precision)
        )
        for sub, units in consumptions
    ]

    return AllocationResult(
        building_id=building_id,
        period=period,
        council_units=council_units,
        borehole_units=borehole_units,
        council_cost=council_cost,
        borehole_cost=borehole_cost,
        pumping_cost=pricing.pumping_cost_per_month,
        total_building_bill=total_building_bill,
        total_submeter_units=total_submeter_units,
        per_unit_rate=per_unit_rate,
        submeters=usages
    )


async def _resolve_bulk_meter(
    session: AsyncSession,
    building: Building,
    meter_id: Optional[int],
    meter_type: MeterType
) -> Meter:
    if meter_id is None:
        raise ConfigurationMissing(f"Building {building.id} has no {meter_type.value} meter")

    meter = await session.get(Meter, meter_id)
    if not meter or meter.building_id != building.id or meter.type != meter_type.value:
        raise ConfigurationMissing(
            f"Building {building.id} {meter_type.value} meter reference {meter_id} is invalid"
        )
    return meter


async def calculate_building_water_usage(
    session: AsyncSession,
    building_id: int,
    period: str
) -> AllocationResult:
    """
    Load readings and settings for a building and allocate the period's bill.

    Raises:
        NotFound: building does not exist
        ConfigurationMissing: settings or bulk meters missing
    """
    parse_period(period)

    building = await session.get(Building, building_id)
    if not building:
        raise NotFound(f"Building {building_id} not found")

    settings = await get_settings(session, building_id)
    if not settings:
        raise ConfigurationMissing(f"Building {building_id} has no settings")

    council_meter = await _resolve_bulk_meter(session, building, building.council_meter_id, MeterType.council)
    borehole_meter = await _resolve_bulk_meter(session, building, building.borehole_meter_id, MeterType.borehole)

    council = await get_reading_pair(session, council_meter.id, period)
    borehole = await get_reading_pair(session, borehole_meter.id, period)

    submeters = []
    for meter in await list_submeters(session, building_id):
        readings = await get_reading_pair(session, meter.id, period)
        submeters.append(SubmeterInput(meter_id=meter.id, premise_id=meter.premise_id, readings=readings))

    result = allocate_usage(
        council,
        borehole,
        submeters,
        PricingSnapshot.from_settings(settings),
        building_id=building_id,
        period=period
    )

    logging.info(
        f"Building {building_id} {period}: bill={result.total_building_bill:.2f}, "
        f"submeter units={result.total_submeter_units}, rate={result.per_unit_rate:.4f}"
    )
    return result


async def preview_building_usage(session: AsyncSession, building_id: int, period: str) -> AllocationResult:
    """Allocation without persisting anything."""
    return await calculate_building_water_usage(session, building_id, period)
