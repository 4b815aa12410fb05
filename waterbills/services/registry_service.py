"""
Settings & Meter Registry - buildings, premises, meters and pricing settings.
"""
from typing import Optional, List
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import (
    Building, Premise, Meter, MeterType, PremiseType, BuildingSettings
)
from waterbills.services.errors import NotFound, AlreadyExists

SETTINGS_FIELDS = (
    "council_price_per_m3",
    "borehole_price_per_m3",
    "pumping_cost_per_month",
    "penalty_daily",
    "prorate_precision",
)


async def create_building(
    session: AsyncSession,
    name: str,
    address: str,
    pumping_cost_per_month: float = 0.0,
    timezone: str = "Africa/Nairobi"
) -> Building:
    building = Building(
        name=name,
        address=address,
        pumping_cost_per_month=pumping_cost_per_month,
        timezone=timezone
    )
    session.add(building)
    await session.commit()
    return building


async def get_building(session: AsyncSession, building_id: int) -> Building:
    building = await session.get(Building, building_id)
    if not building:
        raise NotFound(f"Building {building_id} not found")
    return building


async def list_buildings(session: AsyncSession) -> List[Building]:
    result = await session.execute(select(Building).order_by(Building.id))
    return list(result.scalars().all())


async def register_bulk_meters(session: AsyncSession, building_id: int) -> Building:
    """
    Create the council and borehole meters for a building (if missing)
    and link them on the building record.
    """
    building = await get_building(session, building_id)

    if building.council_meter_id is None:
        council = Meter(building_id=building.id, type=MeterType.council.value, label="Council meter")
        session.add(council)
        await session.flush()
        building.council_meter_id = council.id

    if building.borehole_meter_id is None:
        borehole = Meter(building_id=building.id, type=MeterType.borehole.value, label="Borehole meter")
        session.add(borehole)
        await session.flush()
        building.borehole_meter_id = borehole.id

    await session.commit()
    return building


async def create_premise(
    session: AsyncSession,
    building_id: int,
    unit_no: str,
    monthly_rent: float,
    type: str = PremiseType.shop.value,
    disconnect_after_day_of_month: int = 20,
    previous_balance: float = 0.0,
    tags: Optional[List[str]] = None
) -> Premise:
    """
    Create a premise together with its single submeter.

    Raises:
        NotFound: building does not exist
        AlreadyExists: unit number already used in this building
    """
    await get_building(session, building_id)

    existing_stmt = select(Premise).where(
        Premise.building_id == building_id,
        Premise.unit_no == unit_no
    )
    existing = (await session.execute(existing_stmt)).scalar_one_or_none()
    if existing:
        raise AlreadyExists(f"Unit {unit_no} already exists in building {building_id}")

    premise = Premise(
        building_id=building_id,
        unit_no=unit_no,
        type=PremiseType(type).value,
        monthly_rent=monthly_rent,
        disconnect_after_day_of_month=disconnect_after_day_of_month,
        previous_balance=previous_balance,
        tags=tags or []
    )
    session.add(premise)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise AlreadyExists(f"Unit {unit_no} already exists in building {building_id}")

    submeter = Meter(
        building_id=building_id,
        premise_id=premise.id,
        type=MeterType.submeter.value,
        label=f"Submeter {unit_no}"
    )
    session.add(submeter)
    await session.commit()
    return premise


async def get_premise(session: AsyncSession, premise_id: int) -> Premise:
    premise = await session.get(Premise, premise_id)
    if not premise:
        raise NotFound(f"Premise {premise_id} not found")
    return premise


async def list_premises(session: AsyncSession, building_id: int) -> List[Premise]:
    stmt = select(Premise).where(Premise.building_id == building_id).order_by(Premise.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_premise_submeter(session: AsyncSession, premise_id: int) -> Optional[Meter]:
    stmt = select(Meter).where(
        Meter.premise_id == premise_id,
        Meter.type == MeterType.submeter.value
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_submeters(session: AsyncSession, building_id: int) -> List[Meter]:
    stmt = (
        select(Meter)
        .where(
            Meter.building_id == building_id,
            Meter.type == MeterType.submeter.value
        )
        .order_by(Meter.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_settings(session: AsyncSession, building_id: int) -> Optional[BuildingSettings]:
    stmt = select(BuildingSettings).where(BuildingSettings.building_id == building_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_settings(session: AsyncSession, building_id: int, **fields) -> BuildingSettings:
    """Create or update the pricing settings of a building."""
    unknown = set(fields) - set(SETTINGS_FIELDS)
    if unknown:
        raise ValueError(f"Unknown settings fields: {', '.join(sorted(unknown))}")

    await get_building(session, building_id)

    settings = await get_settings(session, building_id)
    if not settings:
        settings = BuildingSettings(building_id=building_id)
        session.add(settings)

    for name, value in fields.items():
        if value is not None:
            setattr(settings, name, value)

    await session.commit()
    return settings
