import logging
from datetime import date
from typing import Optional, NamedTuple
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import Meter, MeterReading
from waterbills.services.errors import NotFound, DuplicateReading
from waterbills.utils.periods import parse_period, previous_period


class ReadingPair(NamedTuple):
    """Cumulative readings at the end of a period and of the period before it"""
    current: float
    previous: float


async def record_meter_reading(
    session: AsyncSession,
    meter_id: int,
    period: str,
    reading: float,
    reading_date: date,
    created_by: str,
    notes: Optional[str] = None
) -> MeterReading:
    """
    Record a cumulative reading for a meter and period.

    Existing readings are never overwritten; corrections are an
    administrative data fix outside billing.

    Raises:
        NotFound: meter does not exist
        DuplicateReading: reading already recorded for (meter, period)
    """
    parse_period(period)
    if reading < 0:
        raise ValueError("Reading must be non-negative")

    meter = await session.get(Meter, meter_id)
    if not meter:
        raise NotFound(f"Meter {meter_id} not found")

    existing = await get_reading(session, meter_id, period)
    if existing:
        raise DuplicateReading(meter_id, period, existing.id)

    record = MeterReading(
        meter_id=meter.id,
        building_id=meter.building_id,
        premise_id=meter.premise_id,
        period=period,
        reading=reading,
        reading_date=reading_date,
        created_by=created_by,
        notes=notes
    )
    session.add(record)
    try:
        await session.commit()
    except IntegrityError:
        # Concurrent insert won the unique index
        await session.rollback()
        raise DuplicateReading(meter_id, period)

    logging.info(f"Reading {reading} recorded for meter {meter_id}, period {period}")
    return record


async def get_reading(session: AsyncSession, meter_id: int, period: str) -> Optional[MeterReading]:
    stmt = select(MeterReading).where(
        MeterReading.meter_id == meter_id,
        MeterReading.period == period
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_reading_pair(session: AsyncSession, meter_id: Optional[int], period: str) -> ReadingPair:
    """Current and previous period readings; a missing reading counts as 0."""
    if meter_id is None:
        return ReadingPair(current=0.0, previous=0.0)

    current = await get_reading(session, meter_id, period)
    previous = await get_reading(session, meter_id, previous_period(period))

    return ReadingPair(
        current=float(current.reading) if current else 0.0,
        previous=float(previous.reading) if previous else 0.0
    )
