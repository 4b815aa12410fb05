"""
Boundary validation for data coming from API layers, imports and gateway
callbacks. The billing services trust what they receive; validate first.
"""
from datetime import date, datetime
from typing import Any, Dict, List, NamedTuple, Optional, Type

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from waterbills.database.models import MeterType, PaymentMethod, PremiseType

PERIOD_PATTERN = r'^\d{4}-(0[1-9]|1[0-2])$'


def _parse_number(v):
    if isinstance(v, str):
        # Replace common separators
        v = v.replace(',', '.').replace(' ', '')
    return v


class BuildingIn(BaseModel):
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)
    timezone: str = "Africa/Nairobi"
    pumping_cost_per_month: float = Field(default=0, ge=0)


class PremiseIn(BaseModel):
    building_id: int
    unit_no: str = Field(min_length=1)
    type: PremiseType
    monthly_rent: float = Field(ge=0)
    disconnect_after_day_of_month: int = Field(default=20, ge=1, le=31)
    previous_balance: float = 0
    tags: List[str] = Field(default_factory=list)

    @field_validator('monthly_rent', 'previous_balance', mode='before')
    @classmethod
    def parse_amounts(cls, v):
        return _parse_number(v)


class MeterIn(BaseModel):
    building_id: int
    type: MeterType
    premise_id: Optional[int] = None
    label: str = Field(min_length=1)
    unit: str = "m3"

    @model_validator(mode='after')
    def submeter_needs_premise(self):
        if self.type == MeterType.submeter and self.premise_id is None:
            raise ValueError("Submeters must belong to a premise")
        return self


class MeterReadingIn(BaseModel):
    meter_id: int
    period: str = Field(pattern=PERIOD_PATTERN)
    reading: float = Field(ge=0)
    reading_date: date
    created_by: str = Field(min_length=1)
    notes: Optional[str] = None

    @field_validator('reading', mode='before')
    @classmethod
    def parse_reading(cls, v):
        return _parse_number(v)


class SettingsIn(BaseModel):
    council_price_per_m3: float = Field(ge=0)
    borehole_price_per_m3: float = Field(ge=0)
    pumping_cost_per_month: float = Field(ge=0)
    penalty_daily: float = Field(ge=0)
    prorate_precision: int = Field(default=2, ge=0, le=4)


class PaymentIn(BaseModel):
    invoice_id: int
    amount: float = Field(gt=0)
    method: PaymentMethod
    transaction_ref: Optional[str] = None
    payment_date: Optional[datetime] = None
    created_by: str = Field(min_length=1)

    @field_validator('amount', mode='before')
    @classmethod
    def parse_amount(cls, v):
        return _parse_number(v)


class ValidationResult(NamedTuple):
    success: bool
    data: Optional[Dict[str, Any]] = None
    errors: List[Dict[str, str]] = []


def validate_payload(model: Type[BaseModel], data: Dict[str, Any]) -> ValidationResult:
    """
    Validate raw input against a model.

    Returns:
        ValidationResult with the cleaned data on success, otherwise a list
        of {field, message} errors
    """
    try:
        parsed = model.model_validate(data)
    except ValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "__root__",
                "message": err["msg"]
            }
            for err in e.errors()
        ]
        return ValidationResult(success=False, errors=errors)
    return ValidationResult(success=True, data=parsed.model_dump(mode="python"), errors=[])
