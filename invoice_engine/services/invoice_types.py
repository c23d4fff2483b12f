from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from ..models.invoice import LineItem


class SummaryFields(BaseModel):
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    discount: Decimal | None = None
    total: Decimal | None = None


class LineItemExtraction(BaseModel):
    line_items: list[LineItem] = Field(default_factory=list)
    summary: SummaryFields = Field(default_factory=SummaryFields)
    decimal_locale: str = "dot"
    document_confidence: float = 0.0
    low_confidence: bool = True


class OcrResult(BaseModel):
    raw_text: str = ""
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    vendor_name: str | None = None
    vendor_tax_id: str | None = None
    vendor_address: str | None = None
    purchase_order_number: str | None = None
    invoice_value: Decimal | None = None
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    currency: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    confidence_score: float = 0.0
    field_confidence: dict[str, float] = Field(default_factory=dict)  # Per-field confidence, 0..1
    warnings: list[str] = Field(default_factory=list)  # Consistency checks that did not block extraction
    is_processed: bool = False
    error_message: str | None = None

    def has_usable_fields(self) -> bool:
        return any([
            self.invoice_number,
            self.vendor_name,
            self.invoice_date,
            self.total_amount is not None or self.invoice_value is not None,
            self.line_items,
        ])
