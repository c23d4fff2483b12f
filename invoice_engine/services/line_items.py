"""
Heuristic line item extraction from raw OCR text.

Used when the recognition provider returns no structured line items, or
returns items without amounts. The pipeline is pure and deterministic:

    tokenize -> detect_decimal_locale -> classify_line -> parse_item_line

Each stage is a plain function so it can be exercised on its own. Nothing in
this module raises for malformed input; the worst case is an empty result
flagged as low confidence.

Example:
    >>> result = extract_line_items("Widget A  2  10.00  20.00\\nTotal 20.00")
    >>> result.line_items[0].description
    'Widget A'
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from loguru import logger

from ..models.invoice import LineItem
from .invoice_types import LineItemExtraction, SummaryFields

DOT = "dot"
COMMA = "comma"

ITEM = "item"
SUMMARY = "summary"
OTHER = "other"

CURRENCY_SYMBOLS = "$€£¥"
CURRENCY_CODES = frozenset({"USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY", "INR", "NZD", "SGD"})
FILLER_TOKENS = frozenset({"=", "-", "–", ":", "|"})

# Tolerances
QUANTITY_PRICE_TOLERANCE = Decimal("0.05")
DOCUMENT_TOTAL_TOLERANCE = Decimal("0.01")

# Confidence scoring
FALLBACK_PENALTY = 0.3
MIN_ITEM_CONFIDENCE = 0.1
LOW_CONFIDENCE_THRESHOLD = 0.5

# Quantity, unit price and amount
MAX_NUMERIC_COLUMNS = 3

_DOT_AMOUNT = re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}$")
_COMMA_AMOUNT = re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+),\d{2}$")
_NUMBER_CORE = re.compile(r"^\d[\d.,]*$")

_QTY_X_PRICE = re.compile(
    r"(?<!\S)(?P<qty>\d+(?:[.,]\d+)?)\s*[x×@*]\s*(?P<price>[$€£¥]?\s?\d[\d.,]*)\s*[=:]?\s*$",
    re.IGNORECASE,
)

_TOTAL_PATTERN = re.compile(r"\b(?:total|amount\s+due|balance\s+due)\b", re.IGNORECASE)

# Order matters: "subtotal" must win over "total"
_SUMMARY_PATTERNS = (
    ("subtotal", re.compile(r"\bsub[\s-]?total\b", re.IGNORECASE)),
    ("discount", re.compile(r"\bdiscount\b", re.IGNORECASE)),
    ("tax", re.compile(r"\b(?:tax|vat|gst)\b", re.IGNORECASE)),
    ("total", _TOTAL_PATTERN),
)
_INCLUSIVE_MARKER = re.compile(r"\bincl(?:uding|usive|\.)?", re.IGNORECASE)


@dataclass(frozen=True)
class LineClassification:
    """What a single line of OCR text looks like."""

    kind: str
    amount: Decimal | None = None
    summary_field: str | None = None
    description: str = ""
    quantity: Decimal | None = None
    unit_price: Decimal | None = None


def tokenize(raw_text: str | None) -> list[str]:
    """Split OCR text into trimmed, non-empty lines."""
    if not raw_text:
        return []
    return [line.strip() for line in raw_text.splitlines() if line.strip()]


def _normalize_token(token: str) -> tuple[str, bool]:
    """Strip currency symbols, sign and accounting parentheses. Returns (core, negative)."""
    core = token.strip()
    negative = False
    if len(core) > 2 and core.startswith("(") and core.endswith(")"):
        core = core[1:-1]
        negative = True
    core = core.strip(CURRENCY_SYMBOLS)
    if core.startswith("-"):
        core = core[1:].strip(CURRENCY_SYMBOLS)
        negative = True
    return core, negative


def _is_currency_marker(token: str) -> bool:
    return token.upper() in CURRENCY_CODES or (len(token) == 1 and token in CURRENCY_SYMBOLS)


def is_amount_token(token: str, locale: str = DOT) -> bool:
    """True for a monetary amount in the given locale ("1,234.56", "$20.00", "20,00 €")."""
    core, _ = _normalize_token(token)
    pattern = _COMMA_AMOUNT if locale == COMMA else _DOT_AMOUNT
    return bool(pattern.match(core))


def parse_amount(token: str, locale: str = DOT) -> Decimal | None:
    """
    Parse a numeric token using the document's decimal convention.

    Thousands separators are only removed when they group digits in threes;
    a lone "foreign" separator is read as a decimal point, so "1,5" is 1.5
    in a dot-decimal document.
    """
    core, negative = _normalize_token(token)
    if not core or not _NUMBER_CORE.match(core):
        return None

    group, decimal = (".", ",") if locale == COMMA else (",", ".")
    grouped = re.fullmatch(
        rf"\d{{1,3}}(?:{re.escape(group)}\d{{3}})+(?:{re.escape(decimal)}\d+)?", core
    )
    if grouped:
        core = core.replace(group, "")
    elif group in core and decimal not in core:
        core = core.replace(group, decimal)
    core = core.replace(decimal, ".")

    try:
        value = Decimal(core)
    except InvalidOperation:
        return None
    return -value if negative else value


def detect_decimal_locale(lines: list[str], locale_hint: str | None = None) -> str:
    """
    Decide whether amounts use "." or "," as the decimal separator.

    Counts tokens that are unambiguous in one convention. The most frequent
    pattern wins and ties go to dot. A valid ``locale_hint`` overrides detection.
    """
    if locale_hint:
        hint = locale_hint.strip().lower()
        if hint in (DOT, COMMA):
            return hint
        logger.debug("Ignoring unknown decimal locale hint", hint=locale_hint)

    dot_votes = comma_votes = 0
    for line in lines:
        for token in line.split():
            core, _ = _normalize_token(token)
            if _DOT_AMOUNT.match(core):
                dot_votes += 1
            elif _COMMA_AMOUNT.match(core):
                comma_votes += 1

    return COMMA if comma_votes > dot_votes else DOT


def _split_trailing_amount(line: str, locale: str) -> tuple[list[str], Decimal] | None:
    tokens = line.split()
    while tokens and (_is_currency_marker(tokens[-1]) or tokens[-1] in FILLER_TOKENS):
        tokens.pop()
    if not tokens or not is_amount_token(tokens[-1], locale):
        return None
    amount = parse_amount(tokens.pop(), locale)
    if amount is None:
        return None
    return tokens, amount


def _summary_field(line: str) -> str | None:
    for field, pattern in _SUMMARY_PATTERNS:
        if pattern.search(line):
            if field == "tax" and _INCLUSIVE_MARKER.search(line) and _TOTAL_PATTERN.search(line):
                return "total"
            return field
    return None


def classify_line(line: str, locale: str = DOT) -> LineClassification:
    """
    Classify one line as an item row, a summary row, or something else.

    A candidate row must end in a monetary amount. The text before it is read
    right to left as up to two numeric columns (quantity, unit price), unless
    a "2 x 10.00" pattern sits directly before the amount. Rows carrying a
    summary keyword and no numeric columns are summary rows.
    """
    split = _split_trailing_amount(line, locale)
    if split is None:
        return LineClassification(kind=OTHER)
    prefix_tokens, amount = split

    quantity = unit_price = None
    prefix = " ".join(prefix_tokens)
    match = _QTY_X_PRICE.search(prefix)
    if match:
        quantity = parse_amount(match.group("qty"), locale)
        unit_price = parse_amount(match.group("price").replace(" ", ""), locale)
        description = prefix[: match.start()]
    else:
        columns: list[tuple[str, Decimal]] = []
        remaining = list(prefix_tokens)
        while remaining and len(columns) < MAX_NUMERIC_COLUMNS - 1:
            token = remaining[-1]
            if token in FILLER_TOKENS or _is_currency_marker(token):
                remaining.pop()
                continue
            value = parse_amount(token, locale)
            if value is None:
                break
            columns.insert(0, (token, value))
            remaining.pop()
        description = " ".join(remaining)

        if len(columns) == 2:
            quantity, unit_price = columns[0][1], columns[1][1]
        elif len(columns) == 1:
            token, value = columns[0]
            if is_amount_token(token, locale):
                unit_price = value
            else:
                quantity = value

    description = description.strip(" -:|=\t")
    summary_field = _summary_field(description or line)
    if summary_field and quantity is None and unit_price is None:
        return LineClassification(kind=SUMMARY, amount=amount, summary_field=summary_field)

    if not description and quantity is None and unit_price is None:
        return LineClassification(kind=OTHER, amount=amount)

    return LineClassification(
        kind=ITEM,
        amount=amount,
        description=description,
        quantity=quantity,
        unit_price=unit_price,
    )


def _agrees(expected: Decimal, actual: Decimal, tolerance: Decimal) -> bool:
    if actual == 0:
        return expected == 0
    return abs(expected - actual) / abs(actual) <= tolerance


def item_confidence(fallbacks: int) -> float:
    """1.0 for a full structured match, minus a fixed penalty per fallback."""
    return round(max(MIN_ITEM_CONFIDENCE, 1.0 - FALLBACK_PENALTY * fallbacks), 2)


def parse_item_line(line: str, locale: str = DOT) -> LineItem | None:
    """
    Build a LineItem from one line, or None when the line is not an item row.

    Missing sub-fields stay None. When only the quantity is known the unit
    price is derived from the amount, which still counts as a fallback.
    """
    classification = classify_line(line, locale)
    if classification.kind != ITEM:
        return None
    return _to_line_item(classification)


def _to_line_item(classification: LineClassification) -> LineItem:
    amount = classification.amount
    quantity = classification.quantity
    unit_price = classification.unit_price
    fallbacks = 0

    if not classification.description:
        fallbacks += 1
    if quantity is None:
        fallbacks += 1
    if unit_price is None:
        fallbacks += 1
        if quantity:
            try:
                unit_price = (amount / quantity).quantize(Decimal("0.01"))
            except InvalidOperation:
                # Beyond decimal precision; keep the row without a unit price
                unit_price = None
    elif quantity is not None and not _agrees(quantity * unit_price, amount, QUANTITY_PRICE_TOLERANCE):
        fallbacks += 1

    return LineItem(
        description=classification.description,
        quantity=quantity,
        unit_price=unit_price,
        amount=amount,
        confidence_score=item_confidence(fallbacks),
    )


def _items_match_summary(items: list[LineItem], summary: SummaryFields) -> bool:
    reference = summary.subtotal if summary.subtotal is not None else summary.total
    if reference is None:
        return True
    return _agrees(sum((item.amount for item in items), Decimal("0")), reference, DOCUMENT_TOTAL_TOLERANCE)


def extract_line_items(raw_text: str | None, locale_hint: str | None = None) -> LineItemExtraction:
    """
    Reconstruct line items and summary fields from unstructured OCR text.

    Args:
        raw_text: Full OCR text, one physical row per line
        locale_hint: "dot" or "comma" to skip decimal-separator detection

    Returns:
        LineItemExtraction. ``low_confidence`` is set when nothing was found,
        the mean item confidence is below 0.5, or the items disagree with the
        extracted subtotal (or total) by more than 1%.
    """
    lines = tokenize(raw_text)
    locale = detect_decimal_locale(lines, locale_hint)

    items: list[LineItem] = []
    summary_values: dict[str, Decimal] = {}
    for line in lines:
        try:
            classification = classify_line(line, locale)
            if classification.kind == SUMMARY:
                summary_values.setdefault(classification.summary_field, classification.amount)
            elif classification.kind == ITEM:
                items.append(_to_line_item(classification))
        except ArithmeticError as e:
            logger.debug("Skipping unparseable line", line=line, error=str(e))

    summary = SummaryFields(**summary_values)
    document_confidence = (
        round(sum(item.confidence_score for item in items) / len(items), 2) if items else 0.0
    )
    low_confidence = (
        not items
        or document_confidence < LOW_CONFIDENCE_THRESHOLD
        or not _items_match_summary(items, summary)
    )

    logger.debug(
        "Line item extraction finished",
        lines=len(lines),
        items=len(items),
        locale=locale,
        document_confidence=document_confidence,
        low_confidence=low_confidence,
    )

    return LineItemExtraction(
        line_items=items,
        summary=summary,
        decimal_locale=locale,
        document_confidence=document_confidence,
        low_confidence=low_confidence,
    )
