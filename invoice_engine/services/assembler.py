"""
Turns an OCR result into a persisted invoice at status Submitted.
"""

from datetime import datetime, UTC
from decimal import Decimal
from typing import Optional

from loguru import logger

from .invoice_types import OcrResult
from .status_rules import INITIAL_STATUS
from .storage.invoice_store_base import InvoiceStoreBase
from ..core.config import settings
from ..core.exceptions import DuplicateInvoiceError, ValidationError
from ..models.invoice import Invoice, StatusHistory

# Placeholder until vendor matching reconciles the tax id
UNKNOWN_TAX_ID = "UNKNOWN"
DEFAULT_CURRENCY = "USD"
CREATION_REASON = "Created"

LINE_TOTAL_TOLERANCE = Decimal("0.01")
LINE_TOTAL_MISMATCH_PENALTY = 0.8


def missing_required_fields(ocr: OcrResult) -> list[str]:
    """Every required-field violation, in a stable order."""
    missing = []
    if not ocr.invoice_number:
        missing.append("Invoice number is required")
    if ocr.invoice_date is None:
        missing.append("Invoice date is required")
    if ocr.total_amount is None and ocr.invoice_value is None:
        missing.append("Invoice amount is required")
    if not ocr.vendor_name:
        missing.append("Vendor name is required")
    return missing


def line_items_match_total(ocr: OcrResult, total: Decimal) -> bool:
    """
    True when the line items add up to the invoice total (or subtotal) within 1%.

    An invoice without line items has nothing to compare and passes.
    """
    if not ocr.line_items:
        return True
    line_sum = sum((item.amount for item in ocr.line_items), Decimal("0"))
    for reference in (total, ocr.subtotal):
        if reference is None:
            continue
        if reference == 0:
            if line_sum == 0:
                return True
        elif abs(line_sum - reference) / abs(reference) <= LINE_TOTAL_TOLERANCE:
            return True
    return False


class InvoiceAssembler:
    """
    Validates an OcrResult and stores it as a new invoice.

    Required fields are checked together so one ValidationError reports all
    of them. A line-item sum that disagrees with the total only lowers the
    invoice's OCR confidence.
    """

    def __init__(self, store: InvoiceStoreBase, default_actor: Optional[str] = None):
        self.store = store
        self.default_actor = default_actor or settings.default_actor

    def assemble(
        self,
        ocr: OcrResult,
        *,
        created_by: Optional[str] = None,
        project_id: Optional[int] = None,
        file_name: Optional[str] = None,
        file_type: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> Invoice:
        """
        Build and persist an Invoice at Submitted with its seeded history row.

        Raises:
            ValidationError: required fields missing (all listed at once)
            DuplicateInvoiceError: the invoice number already exists
        """
        missing = missing_required_fields(ocr)
        if missing:
            logger.warning("Invoice validation failed", violations=missing, invoice_number=ocr.invoice_number)
            raise ValidationError("Invoice is missing required fields", missing)

        if self.store.get_by_number(ocr.invoice_number) is not None:
            raise DuplicateInvoiceError(ocr.invoice_number)

        actor = created_by or self.default_actor
        now = datetime.now(UTC)
        invoice_value = ocr.total_amount if ocr.total_amount is not None else ocr.invoice_value

        confidence = ocr.confidence_score
        if not line_items_match_total(ocr, invoice_value):
            confidence = round(confidence * LINE_TOTAL_MISMATCH_PENALTY, 4)
            logger.warning(
                "Line items do not add up to the invoice total",
                invoice_number=ocr.invoice_number,
                line_sum=str(sum((i.amount for i in ocr.line_items), Decimal("0"))),
                total=str(invoice_value),
            )

        invoice = Invoice(
            invoice_number=ocr.invoice_number,
            vendor_name=ocr.vendor_name,
            vendor_tax_id=ocr.vendor_tax_id or UNKNOWN_TAX_ID,
            vendor_address=ocr.vendor_address,
            invoice_date=ocr.invoice_date,
            due_date=ocr.due_date,
            invoice_value=invoice_value,
            subtotal=ocr.subtotal,
            tax_amount=ocr.tax_amount,
            currency=ocr.currency or DEFAULT_CURRENCY,
            project_id=project_id,
            purchase_order_number=ocr.purchase_order_number,
            status=INITIAL_STATUS,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            ocr_confidence=confidence,
            line_items=[item.model_copy() for item in ocr.line_items],
            created_by=actor,
            created_at=now,
        )
        history = StatusHistory(
            from_status=None,
            to_status=INITIAL_STATUS,
            changed_by=actor,
            reason=CREATION_REASON,
            changed_at=now,
        )

        stored = self.store.add_invoice(invoice, history)
        logger.info(
            "Invoice created",
            invoice_id=stored.id,
            invoice_number=stored.invoice_number,
            vendor=stored.vendor_name,
            created_by=actor,
        )
        return stored
