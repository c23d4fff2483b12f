"""
Pytest configuration and shared fixtures.

Registers the integration marker/option and provides fresh stores and
services so tests never share invoice state.
"""

from datetime import date
from decimal import Decimal

import pytest

from invoice_engine.models.invoice import LineItem
from invoice_engine.services.assembler import InvoiceAssembler
from invoice_engine.services.events.event_publisher import EventPublisher
from invoice_engine.services.invoice_types import OcrResult
from invoice_engine.services.status_service import InvoiceStatusService
from invoice_engine.services.storage import InMemoryInvoiceStore


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real Azure resources"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring real Azure resources"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def make_ocr_result(**overrides) -> OcrResult:
    """A fully populated OCR result; override fields to break it."""
    data = dict(
        raw_text="Widget A  2  10.00  20.00\nSubtotal 20.00\nVAT 2.00\nTotal 22.00",
        invoice_number="INV-1001",
        invoice_date=date(2025, 3, 14),
        due_date=date(2025, 4, 13),
        vendor_name="Fabrikam Ltd",
        vendor_tax_id="GB123456789",
        subtotal=Decimal("20.00"),
        tax_amount=Decimal("2.00"),
        total_amount=Decimal("22.00"),
        currency="GBP",
        line_items=[
            LineItem(
                description="Widget A",
                quantity=Decimal("2"),
                unit_price=Decimal("10.00"),
                amount=Decimal("20.00"),
                confidence_score=1.0,
            )
        ],
        confidence_score=0.9,
        is_processed=True,
    )
    data.update(overrides)
    return OcrResult(**data)


@pytest.fixture
def store():
    return InMemoryInvoiceStore()


@pytest.fixture
def disabled_publisher():
    return EventPublisher(service_bus_sender=None)


@pytest.fixture
def status_service(store, disabled_publisher):
    return InvoiceStatusService(
        store,
        default_actor="System",
        automation_only=(),
        event_publisher=disabled_publisher,
    )


@pytest.fixture
def assembler(store):
    return InvoiceAssembler(store, default_actor="System")


@pytest.fixture
def invoice(assembler):
    """A stored invoice at Submitted"""
    return assembler.assemble(make_ocr_result(), created_by="uploader@example.com")
