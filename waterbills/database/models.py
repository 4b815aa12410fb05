import enum
from datetime import datetime, date
from typing import Optional, List
from sqlalchemy import String, ForeignKey, Integer, Numeric, DateTime, JSON, Text, DATE, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from waterbills.database.core import Base

# Money columns come back as float so arithmetic never mixes Decimal and float
Money = Numeric(14, 4, asdecimal=False)

# Enums
class PremiseType(str, enum.Enum):
    shop = "shop"
    apartment = "apartment"

class MeterType(str, enum.Enum):
    council = "council"
    borehole = "borehole"
    submeter = "submeter"

class InvoiceStatus(str, enum.Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"

# Invoices that still carry a balance
OPEN_INVOICE_STATUSES = (
    InvoiceStatus.unpaid.value,
    InvoiceStatus.partial.value,
    InvoiceStatus.overdue.value,
)

class WaterConnectionStatus(str, enum.Enum):
    connected = "CONNECTED"
    disconnect = "DISCONNECT"

class PaymentMethod(str, enum.Enum):
    cash = "cash"
    mpesa = "mpesa"
    bank = "bank"

class PaymentStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"

class DisconnectionTaskStatus(str, enum.Enum):
    pending = "pending"
    done = "done"

class JobKind(str, enum.Enum):
    generation = "generation"
    penalty = "penalty"
    disconnect = "disconnect"

class JobStatus(str, enum.Enum):
    enqueued = "enqueued"
    running = "running"
    completed = "completed"
    failed = "failed"


# Building
class Building(Base):
    __tablename__ = "buildings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, index=True)
    address: Mapped[str] = mapped_column(String)
    timezone: Mapped[str] = mapped_column(String, default="Africa/Nairobi")
    pumping_cost_per_month: Mapped[float] = mapped_column(Money, default=0.0)

    # Resolved against meters.id when billing runs (the two tables reference each other)
    council_meter_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    borehole_meter_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    settings: Mapped[Optional["BuildingSettings"]] = relationship(back_populates="building", uselist=False)
    premises: Mapped[List["Premise"]] = relationship(back_populates="building")
    meters: Mapped[List["Meter"]] = relationship(back_populates="building")


# Premise
class Premise(Base):
    __tablename__ = "premises"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"), index=True)
    unit_no: Mapped[str] = mapped_column(String)
    type: Mapped[PremiseType] = mapped_column(String, default=PremiseType.shop.value)

    monthly_rent: Mapped[float] = mapped_column(Money, default=0.0)
    disconnect_after_day_of_month: Mapped[int] = mapped_column(Integer, default=20)
    previous_balance: Mapped[float] = mapped_column(Money, default=0.0)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('building_id', 'unit_no', name='uq_premise_unit'),
    )

    building: Mapped["Building"] = relationship(back_populates="premises")
    invoices: Mapped[List["Invoice"]] = relationship(back_populates="premise")


# Meter
class Meter(Base):
    __tablename__ = "meters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"))
    type: Mapped[MeterType] = mapped_column(String)
    # Required for submeters only
    premise_id: Mapped[Optional[int]] = mapped_column(ForeignKey("premises.id", ondelete="CASCADE"), nullable=True, unique=True)
    label: Mapped[str] = mapped_column(String)
    unit: Mapped[str] = mapped_column(String, default="m3")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_meters_building_type', 'building_id', 'type'),
    )

    building: Mapped["Building"] = relationship(back_populates="meters")
    readings: Mapped[List["MeterReading"]] = relationship(back_populates="meter")


# MeterReading
class MeterReading(Base):
    __tablename__ = "meter_readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    meter_id: Mapped[int] = mapped_column(ForeignKey("meters.id", ondelete="CASCADE"))
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"))
    premise_id: Mapped[Optional[int]] = mapped_column(ForeignKey("premises.id"), nullable=True)

    period: Mapped[str] = mapped_column(String(7))  # YYYY-MM
    reading: Mapped[float] = mapped_column(Money)  # Cumulative
    reading_date: Mapped[date] = mapped_column(DATE)
    created_by: Mapped[str] = mapped_column(String)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('meter_id', 'period', name='uq_reading_meter_period'),
        Index('ix_meter_readings_building_period', 'building_id', 'period'),
    )

    meter: Mapped["Meter"] = relationship(back_populates="readings")


# BuildingSettings
class BuildingSettings(Base):
    __tablename__ = "settings"

    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"), primary_key=True)
    council_price_per_m3: Mapped[float] = mapped_column(Money, default=0.0)
    borehole_price_per_m3: Mapped[float] = mapped_column(Money, default=0.0)
    pumping_cost_per_month: Mapped[float] = mapped_column(Money, default=0.0)
    penalty_daily: Mapped[float] = mapped_column(Money, default=0.0)
    prorate_precision: Mapped[int] = mapped_column(Integer, default=2)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    building: Mapped["Building"] = relationship(back_populates="settings")


# Invoice
class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    premise_id: Mapped[int] = mapped_column(ForeignKey("premises.id", ondelete="CASCADE"))
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"), index=True)
    period: Mapped[str] = mapped_column(String(7))

    invoice_date: Mapped[date] = mapped_column(DATE)
    due_date: Mapped[date] = mapped_column(DATE)

    rent_amount: Mapped[float] = mapped_column(Money, default=0.0)
    water_amount: Mapped[float] = mapped_column(Money, default=0.0)
    previous_balance: Mapped[float] = mapped_column(Money, default=0.0)
    penalty_amount: Mapped[float] = mapped_column(Money, default=0.0)
    total_amount: Mapped[float] = mapped_column(Money, default=0.0)  # Gross, before payments
    amount_paid: Mapped[float] = mapped_column(Money, default=0.0)

    status: Mapped[InvoiceStatus] = mapped_column(String, default=InvoiceStatus.unpaid.value)
    water_connection_status: Mapped[WaterConnectionStatus] = mapped_column(
        String, default=WaterConnectionStatus.connected.value
    )

    # [{"payment_id": 1, "amount": 500.0, "date": "2026-01-06T10:00:00"}]
    payments: Mapped[List[dict]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('premise_id', 'period', name='uq_invoice_premise_period'),
        Index('ix_invoices_status_due_date', 'status', 'due_date'),
    )

    premise: Mapped["Premise"] = relationship(back_populates="invoices")

    @property
    def invoice_number(self) -> str:
        return f"INV-{self.period.replace('-', '')}-{self.id:06d}"

    @property
    def unpaid_amount(self) -> float:
        return float(self.total_amount or 0) - float(self.amount_paid or 0)


# Payment
class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), index=True)
    premise_id: Mapped[int] = mapped_column(ForeignKey("premises.id", ondelete="CASCADE"))

    amount: Mapped[float] = mapped_column(Money)
    method: Mapped[PaymentMethod] = mapped_column(String)
    transaction_ref: Mapped[Optional[str]] = mapped_column(String, index=True, unique=True)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[str] = mapped_column(String)
    status: Mapped[PaymentStatus] = mapped_column(String, default=PaymentStatus.completed.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    receipt: Mapped[Optional["Receipt"]] = relationship(back_populates="payment", uselist=False)


# Receipt
class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id", ondelete="CASCADE"), unique=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"))
    premise_id: Mapped[int] = mapped_column(ForeignKey("premises.id", ondelete="CASCADE"))

    receipt_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    amount: Mapped[float] = mapped_column(Money)
    payment_method: Mapped[str] = mapped_column(String)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    payment: Mapped["Payment"] = relationship(back_populates="receipt")


# AuditLog
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[int] = mapped_column(Integer)
    action: Mapped[str] = mapped_column(String)
    changes: Mapped[Optional[dict]] = mapped_column(JSON)
    performed_by: Mapped[str] = mapped_column(String, default="system")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity_type', 'entity_id'),
    )


# DisconnectionTask
class DisconnectionTask(Base):
    __tablename__ = "disconnection_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"), index=True)
    premise_id: Mapped[int] = mapped_column(ForeignKey("premises.id", ondelete="CASCADE"))
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), unique=True)
    unit_no: Mapped[str] = mapped_column(String)
    unpaid_amount: Mapped[float] = mapped_column(Money)
    flagged_on: Mapped[date] = mapped_column(DATE)
    status: Mapped[DisconnectionTaskStatus] = mapped_column(String, default=DisconnectionTaskStatus.pending.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# Job (queue row, job_key is the dedup identity)
class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[JobKind] = mapped_column(String, index=True)
    job_key: Mapped[str] = mapped_column(String, unique=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)

    status: Mapped[JobStatus] = mapped_column(String, default=JobStatus.enqueued.value, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    run_after: Mapped[datetime] = mapped_column(DateTime)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    result: Mapped[Optional[dict]] = mapped_column(JSON)

    enqueued_at: Mapped[datetime] = mapped_column(DateTime)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index('ix_jobs_status_run_after', 'status', 'run_after'),
    )
