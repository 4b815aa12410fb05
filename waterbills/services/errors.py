"""
Billing error taxonomy.

All errors derive from ValueError so callers that only distinguish
"bad input / missing data" from crashes keep working.
"""


class BillingError(ValueError):
    """Base class for expected billing failures."""


class ConfigurationMissing(BillingError):
    """Settings or bulk meters are missing for a building."""


class NotFound(BillingError):
    """Premise, invoice, meter or building does not exist."""


class InvalidAmount(BillingError):
    """Payment amount must be positive."""


class InvalidPayment(BillingError):
    """Payment data is malformed: unknown method or missing reference."""


class DuplicateReading(BillingError):
    """A reading already exists for this meter and period."""

    def __init__(self, meter_id: int, period: str, existing_id: int = None):
        self.meter_id = meter_id
        self.period = period
        self.existing_id = existing_id
        super().__init__(f"Reading already exists for meter {meter_id} and period {period}")


class AlreadyExists(BillingError):
    """Record already exists. Invoice generation treats this as success."""


class PaymentAlreadyRecorded(AlreadyExists):
    """A completed payment with this transaction reference was already applied."""

    def __init__(self, transaction_ref: str, payment_id: int = None):
        self.transaction_ref = transaction_ref
        self.payment_id = payment_id
        super().__init__(f"Payment with reference {transaction_ref} already recorded")
