import re
import time
from datetime import date, datetime, UTC
from decimal import Decimal, InvalidOperation
from pathlib import Path

from loguru import logger
from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)

from .invoice_types import OcrResult
from .line_items import COMMA, extract_line_items
from ..core.config import settings
from ..core.exceptions import ConfigurationError, ContentError, ProcessingTimeoutError, ProviderError
from ..models.invoice import LineItem

# Confidence assigned to fields recovered from raw text rather than the provider
TEXT_FIELD_CONFIDENCE = 0.5
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
SUMMARY_TOLERANCE = Decimal("0.01")

CURRENCY_BY_SYMBOL = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}

_INVOICE_NUMBER_PATTERN = re.compile(
    r"\b(?:invoice\s*(?:#|number\b|num\b|no\b\.?)|inv\s*#)\s*[:.]?\s*([A-Z0-9][A-Z0-9/_-]*)",
    re.IGNORECASE,
)
_INVOICE_NUMBER_PREFIX = re.compile(r"^(?:(?:NUMBER|NUM|NO)\b\.?|#)\s*[:.-]?\s*", re.IGNORECASE)
_TAX_ID_PATTERN = re.compile(
    r"\b(?:tax\s*id|vat\s*(?:id|no\.?|number|reg(?:istration)?)|gst\s*(?:no\.?|number|reg(?:istration)?)|ein|tin|abn)"
    r"\s*[#:.]?\s*([A-Z0-9][A-Z0-9-]{4,})",
    re.IGNORECASE,
)
_DATE_TOKEN = (
    r"(\d{4}-\d{1,2}-\d{1,2}"
    r"|\d{1,2}[./-]\d{1,2}[./-]\d{2,4}"
    r"|\d{1,2}\s+[A-Za-z]{3,9}\.?\s+\d{4}"
    r"|[A-Za-z]{3,9}\.?\s+\d{1,2},?\s+\d{4})"
)
_INVOICE_DATE_PATTERN = re.compile(
    r"\b(?:invoice\s+date|date\s+of\s+issue|issue\s+date|(?<!due\s)date)\s*[:.]?\s*" + _DATE_TOKEN, re.IGNORECASE
)
_DUE_DATE_PATTERN = re.compile(r"\b(?:due\s+date|payment\s+due|due)\s*[:.]?\s*" + _DATE_TOKEN, re.IGNORECASE)
_CURRENCY_CODE_PATTERN = re.compile(r"\b(USD|EUR|GBP|JPY|AUD|CAD|CHF|CNY|INR|NZD|SGD)\b")

MOCK_INVOICE_TEXT = """INVOICE
Contoso Pty Ltd
ABN: 51-824-753-556
Invoice #: INV-10023
Invoice Date: 2025-09-30
Due Date: 2025-10-15
Description  Qty  Unit Price  Amount
Consulting services  3  100.00  300.00
Travel expenses  1  50.00  50.00
Subtotal 350.00
GST 35.00
Total AUD 385.00
"""


def normalize_invoice_number(value: str | None) -> str | None:
    """Strip label residue ("No.", "#:") and whitespace from an invoice number."""
    if not value:
        return None
    cleaned = _INVOICE_NUMBER_PREFIX.sub("", value.strip()).strip()
    return cleaned or None


def parse_date(text: str | None, day_first: bool = False) -> date | None:
    """Parse the common invoice date layouts. Returns None when nothing fits."""
    if not text:
        return None
    text = re.sub(r"\s+", " ", text.strip().rstrip(".,"))
    numeric = ["%d/%m/%Y", "%m/%d/%Y", "%d/%m/%y", "%m/%d/%y"]
    if not day_first:
        numeric = ["%m/%d/%Y", "%d/%m/%Y", "%m/%d/%y", "%d/%m/%y"]
    formats = ["%Y-%m-%d", *numeric, "%d %B %Y", "%d %b %Y", "%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%b %d %Y"]
    candidate = re.sub(r"[.-]", "/", text) if re.match(r"^\d{1,2}[./-]", text) else text.replace(".", "")
    for fmt in formats:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    return None


def _confidence(field) -> float:
    return float(getattr(field, "confidence", None) or 0.0)


def _string_value(field) -> str | None:
    if field is None:
        return None
    value = getattr(field, "value_string", None) or getattr(field, "content", None)
    return value.strip() if isinstance(value, str) and value.strip() else None


def _date_value(field, day_first: bool = False) -> date | None:
    if field is None:
        return None
    value = getattr(field, "value_date", None)
    if isinstance(value, date):
        return value
    return parse_date(getattr(field, "content", None), day_first)


def _money_value(field) -> Decimal | None:
    if field is None:
        return None
    currency = getattr(field, "value_currency", None)
    raw = getattr(currency, "amount", None) if currency is not None else None
    if raw is None:
        raw = getattr(field, "value_number", None)
    if raw is None:
        content = getattr(field, "content", None) or ""
        raw = re.sub(r"[^\d.\-]", "", content.replace(",", "")) or None
    if raw is None:
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        logger.warning(f"Could not parse amount field: {raw}")
        return None


class OcrOrchestrator:
    """
    Runs a document through Azure Document Intelligence and fills the gaps
    with text heuristics.

    Failures are typed: ConfigurationError (never retried), ProviderError
    (retried with exponential backoff), ProcessingTimeoutError (deadline
    exceeded) and ContentError (bad file or rejected document).
    """

    def __init__(
        self,
        client=None,
        *,
        model_id: str | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        mock_mode: bool | None = None,
        locale_hint: str | None = None,
        sleep=time.sleep,
    ):
        if client is None and settings.az_di_endpoint and settings.az_di_api_key:
            client = DocumentIntelligenceClient(
                endpoint=settings.az_di_endpoint,
                credential=AzureKeyCredential(settings.az_di_api_key),
            )
        self.client = client
        self.model_id = model_id or settings.az_di_model_id
        self.max_retries = max(1, settings.ocr_max_retries if max_retries is None else max_retries)
        self.retry_delay = settings.ocr_retry_delay_seconds if retry_delay is None else retry_delay
        self.mock_mode = settings.ocr_mock_mode if mock_mode is None else mock_mode
        self.locale_hint = locale_hint if locale_hint is not None else settings.ocr_locale_hint
        self._sleep = sleep

    def extract(self, file_path: str | Path, timeout: float | None = None) -> OcrResult:
        """
        Extract invoice fields from the file at ``file_path``.

        Args:
            file_path: Path to a PDF or image
            timeout: Overall deadline in seconds across all attempts
                (defaults to OCR_TIMEOUT_SECONDS)
        """
        data = self._read_file(file_path)
        timeout = settings.ocr_timeout_seconds if timeout is None else timeout

        if self.client is None:
            if self.mock_mode:
                return self._mock_result(len(data))
            raise ConfigurationError(
                "Azure Document Intelligence is not configured",
                {"missing": [name for name, value in (
                    ("AZ_DI_ENDPOINT", settings.az_di_endpoint),
                    ("AZ_DI_API_KEY", settings.az_di_api_key),
                ) if not value]},
            )

        logger.info(
            "Analyzing document with Azure Document Intelligence",
            model_id=self.model_id,
            size_bytes=len(data),
            timeout=timeout,
        )
        analyze_result = self._analyze_with_retry(data, timeout)
        return self._build_result(analyze_result)

    def _read_file(self, file_path: str | Path) -> bytes:
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ContentError(f"Cannot read file: {path.name}", {"path": str(path), "reason": str(e)}) from e
        if not data:
            raise ContentError(f"File is empty: {path.name}", {"path": str(path)})
        return data

    def _analyze_with_retry(self, data: bytes, timeout: float):
        deadline = time.monotonic() + timeout
        last_error: ProviderError | None = None

        for attempt in range(self.max_retries):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProcessingTimeoutError(timeout, {"attempts": attempt})
            try:
                return self._analyze_once(data, remaining, timeout)
            except ProcessingTimeoutError:
                raise
            except ProviderError as e:
                last_error = e
                logger.warning(
                    "OCR provider call failed",
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    error=e.message,
                )
                if attempt < self.max_retries - 1:
                    self._wait_before_retry(attempt, deadline)

        raise ProviderError(
            f"OCR provider failed after {self.max_retries} attempts: {last_error.message}",
            {"attempts": self.max_retries, **last_error.details},
        ) from last_error

    def _analyze_once(self, data: bytes, remaining: float, timeout: float):
        try:
            poller = self.client.begin_analyze_document(
                self.model_id,
                body=data,
                content_type="application/octet-stream",
            )
            result = poller.result(timeout=remaining)
        except ClientAuthenticationError as e:
            raise ConfigurationError(
                "Azure Document Intelligence rejected the credentials",
                {"status_code": e.status_code},
            ) from e
        except HttpResponseError as e:
            if e.status_code in RETRYABLE_STATUS_CODES:
                raise ProviderError(f"OCR provider unavailable: {e.message}", {"status_code": e.status_code}) from e
            raise ContentError(
                f"Document was rejected by the OCR provider: {e.message}",
                {"status_code": e.status_code},
            ) from e
        except (ServiceRequestError, ServiceResponseError) as e:
            raise ProviderError(f"Could not reach OCR provider: {e}", {"reason": type(e).__name__}) from e

        if not poller.done():
            raise ProcessingTimeoutError(timeout)
        return result

    def _wait_before_retry(self, attempt: int, deadline: float) -> None:
        delay = min(self.retry_delay * (2 ** attempt), max(0.0, deadline - time.monotonic()))
        logger.info(f"Retrying OCR in {delay:.2f}s")
        self._sleep(delay)

    def _build_result(self, analyze_result) -> OcrResult:
        raw_text = getattr(analyze_result, "content", None) or ""
        ocr = OcrResult(raw_text=raw_text)
        items_complete = False

        documents = getattr(analyze_result, "documents", None) or []
        if documents:
            doc = documents[0]
            fields = getattr(doc, "fields", None) or {}
            items_complete = self._apply_structured_fields(ocr, fields)
            ocr.confidence_score = float(getattr(doc, "confidence", None) or 0.0)
        else:
            logger.warning(
                "Azure DI found no structured invoice data, falling back to text heuristics",
                content_length=len(raw_text),
            )

        self._fill_from_text(ocr, replace_items=not items_complete)
        if not documents and ocr.field_confidence:
            ocr.confidence_score = round(sum(ocr.field_confidence.values()) / len(ocr.field_confidence), 2)
        return self._finalize(ocr)

    def _apply_structured_fields(self, ocr: OcrResult, fields) -> bool:
        """Copy provider fields onto ``ocr``. Returns True when every structured line item had an amount."""
        for attr, name in (
            ("invoice_number", "InvoiceId"),
            ("vendor_name", "VendorName"),
            ("vendor_tax_id", "VendorTaxId"),
            ("vendor_address", "VendorAddress"),
            ("purchase_order_number", "PurchaseOrder"),
        ):
            field = fields.get(name)
            value = _string_value(field)
            if value:
                setattr(ocr, attr, value)
                ocr.field_confidence[attr] = _confidence(field)

        for attr, name in (("invoice_date", "InvoiceDate"), ("due_date", "DueDate")):
            field = fields.get(name)
            value = _date_value(field)
            if value:
                setattr(ocr, attr, value)
                ocr.field_confidence[attr] = _confidence(field)

        for attr, name in (
            ("total_amount", "InvoiceTotal"),
            ("invoice_value", "AmountDue"),
            ("subtotal", "SubTotal"),
            ("tax_amount", "TotalTax"),
        ):
            field = fields.get(name)
            value = _money_value(field)
            if value is not None:
                setattr(ocr, attr, value)
                ocr.field_confidence[attr] = _confidence(field)

        total_field = fields.get("InvoiceTotal")
        currency = getattr(getattr(total_field, "value_currency", None), "currency_code", None)
        if currency:
            ocr.currency = currency

        items_field = fields.get("Items")
        entries = getattr(items_field, "value_array", None) or []
        complete = bool(entries)
        for entry in entries:
            obj = getattr(entry, "value_object", None) or {}
            amount = _money_value(obj.get("Amount"))
            if amount is None:
                complete = False
                continue
            quantity = obj.get("Quantity")
            ocr.line_items.append(LineItem(
                description=_string_value(obj.get("Description")) or "",
                quantity=Decimal(str(quantity.value_number)) if getattr(quantity, "value_number", None) is not None else None,
                unit_price=_money_value(obj.get("UnitPrice")),
                amount=amount,
                confidence_score=min(1.0, _confidence(entry)),
            ))
        if ocr.line_items:
            ocr.field_confidence["line_items"] = _confidence(items_field)
        return complete

    def _fill_from_text(self, ocr: OcrResult, replace_items: bool) -> None:
        """Recover missing fields from the raw OCR text."""
        text = ocr.raw_text
        extraction = extract_line_items(text, self.locale_hint)
        day_first = extraction.decimal_locale == COMMA

        if replace_items and extraction.line_items:
            if ocr.line_items:
                logger.info(
                    "Structured line items incomplete, using text extraction",
                    structured=len(ocr.line_items),
                    extracted=len(extraction.line_items),
                )
            ocr.line_items = extraction.line_items
            ocr.field_confidence["line_items"] = extraction.document_confidence

        for attr, value in (
            ("subtotal", extraction.summary.subtotal),
            ("tax_amount", extraction.summary.tax),
            ("total_amount", extraction.summary.total),
        ):
            if getattr(ocr, attr) is None and value is not None:
                setattr(ocr, attr, value)
                ocr.field_confidence[attr] = TEXT_FIELD_CONFIDENCE

        if ocr.total_amount is None and ocr.subtotal is not None:
            ocr.total_amount = ocr.subtotal + (ocr.tax_amount or Decimal("0"))
            ocr.field_confidence["total_amount"] = TEXT_FIELD_CONFIDENCE

        if not ocr.invoice_number:
            match = _INVOICE_NUMBER_PATTERN.search(text)
            if match:
                ocr.invoice_number = match.group(1)
                ocr.field_confidence["invoice_number"] = TEXT_FIELD_CONFIDENCE
        ocr.invoice_number = normalize_invoice_number(ocr.invoice_number)

        if ocr.invoice_date is None:
            match = _INVOICE_DATE_PATTERN.search(text)
            if match and (value := parse_date(match.group(1), day_first)):
                ocr.invoice_date = value
                ocr.field_confidence["invoice_date"] = TEXT_FIELD_CONFIDENCE

        if ocr.due_date is None:
            match = _DUE_DATE_PATTERN.search(text)
            if match and (value := parse_date(match.group(1), day_first)):
                ocr.due_date = value
                ocr.field_confidence["due_date"] = TEXT_FIELD_CONFIDENCE

        if not ocr.vendor_tax_id:
            match = _TAX_ID_PATTERN.search(text)
            if match:
                ocr.vendor_tax_id = match.group(1)
                ocr.field_confidence["vendor_tax_id"] = TEXT_FIELD_CONFIDENCE

        if not ocr.currency:
            code = _CURRENCY_CODE_PATTERN.search(text)
            symbol = next((s for s in CURRENCY_BY_SYMBOL if s in text), None)
            if code:
                ocr.currency = code.group(1)
            elif symbol:
                ocr.currency = CURRENCY_BY_SYMBOL[symbol]

    def _finalize(self, ocr: OcrResult) -> OcrResult:
        ocr.warnings = self._consistency_warnings(ocr)
        for warning in ocr.warnings:
            logger.warning("OCR consistency check", warning=warning, invoice_number=ocr.invoice_number)

        ocr.is_processed = ocr.has_usable_fields()
        if not ocr.is_processed:
            ocr.error_message = "No invoice fields could be recovered from the document"
            logger.warning("OCR produced no usable fields", content_length=len(ocr.raw_text))
        else:
            logger.info(
                "Invoice extraction finished",
                invoice_number=ocr.invoice_number,
                vendor=ocr.vendor_name,
                line_items=len(ocr.line_items),
                confidence=ocr.confidence_score,
            )
        return ocr

    @staticmethod
    def _consistency_warnings(ocr: OcrResult) -> list[str]:
        warnings = []
        today = datetime.now(UTC).date()
        if ocr.invoice_date and ocr.invoice_date > today:
            warnings.append("Invoice date is in the future")
        if ocr.invoice_date and ocr.due_date and ocr.due_date < ocr.invoice_date:
            warnings.append("Due date is before invoice date")
        if ocr.subtotal is not None and ocr.tax_amount is not None and ocr.total_amount is not None:
            if abs(ocr.subtotal + ocr.tax_amount - ocr.total_amount) > SUMMARY_TOLERANCE:
                warnings.append("Subtotal plus tax does not match total")
        return warnings

    def _mock_result(self, size_bytes: int) -> OcrResult:
        logger.warning(
            "Azure Document Intelligence not configured - using MOCK data. "
            "Set AZ_DI_ENDPOINT and AZ_DI_API_KEY to use real extraction."
        )
        ocr = OcrResult(raw_text=MOCK_INVOICE_TEXT, vendor_name="Contoso Pty Ltd", confidence_score=0.92)
        ocr.field_confidence["vendor_name"] = 0.92
        self._fill_from_text(ocr, replace_items=True)
        logger.info("Returning mock invoice extraction", file_size_bytes=size_bytes)
        return self._finalize(ocr)


def extract_invoice_fields(file_path: str | Path, timeout: float | None = None) -> OcrResult:
    """Extract invoice fields using the configured Azure Document Intelligence resource."""
    return OcrOrchestrator().extract(file_path, timeout=timeout)
