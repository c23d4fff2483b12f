from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum

from pydantic import BaseModel, Field


class InvoiceStatus(IntEnum):
    """Invoice lifecycle status. Integer values are stable on the wire."""

    SUBMITTED = 0
    UNDER_REVIEW = 1
    APPROVED = 2
    IN_PROGRESS = 3
    PMO_REVIEW = 4
    COMPLETED = 5
    REJECTED = 6
    CANCELLED = 7
    ON_HOLD = 8

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def parse(cls, value) -> "InvoiceStatus":
        """Accept an int, a member name ("ON_HOLD") or a label ("OnHold")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if text.lstrip("-").isdigit():
            return cls(int(text))
        key = text.replace("_", "").replace(" ", "").lower()
        for status in cls:
            if key in (status.name.replace("_", "").lower(), status.label.lower()):
                return status
        raise ValueError(f"{value!r} is not a valid InvoiceStatus")


_STATUS_LABELS = {
    InvoiceStatus.SUBMITTED: "Submitted",
    InvoiceStatus.UNDER_REVIEW: "UnderReview",
    InvoiceStatus.APPROVED: "Approved",
    InvoiceStatus.IN_PROGRESS: "InProgress",
    InvoiceStatus.PMO_REVIEW: "PmoReview",
    InvoiceStatus.COMPLETED: "Completed",
    InvoiceStatus.REJECTED: "Rejected",
    InvoiceStatus.CANCELLED: "Cancelled",
    InvoiceStatus.ON_HOLD: "OnHold",
}


class LineItem(BaseModel):
    description: str = ""
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    amount: Decimal
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)


class Invoice(BaseModel):
    id: int | None = None
    invoice_number: str
    vendor_name: str
    vendor_tax_id: str
    vendor_address: str | None = None
    invoice_date: date
    due_date: date | None = None
    invoice_value: Decimal
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    currency: str = "USD"
    project_id: int | None = None
    purchase_order_number: str | None = None

    status: InvoiceStatus = InvoiceStatus.SUBMITTED
    processed_by: str | None = None
    processed_date: datetime | None = None
    paid_amount: Decimal | None = None
    payment_date: datetime | None = None

    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None
    ocr_confidence: float = 0.0
    line_items: list[LineItem] = Field(default_factory=list)

    created_by: str
    created_at: datetime
    modified_by: str | None = None
    modified_at: datetime | None = None
    version: int = 1


class StatusHistory(BaseModel):
    id: int | None = None
    invoice_id: int | None = None
    from_status: InvoiceStatus | None = None  # None on the row seeded at creation
    to_status: InvoiceStatus
    changed_by: str
    reason: str | None = None
    changed_at: datetime


class StatusChangeResult(BaseModel):
    invoice: Invoice
    history: StatusHistory


class StatusChangeRequest(BaseModel):
    status: int
    changed_by: str | None = Field(default=None)
    reason: str | None = Field(default=None)
    expected_status: int | None = Field(default=None)


class WorkflowActionRequest(BaseModel):
    user_id: str | None = Field(default=None)
