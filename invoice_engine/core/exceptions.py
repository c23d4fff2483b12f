"""
Exception hierarchy for the invoice engine.

Every error carries a human-readable message plus a ``details`` dict that the
API layer returns verbatim, so callers can see why an operation was refused.
"""

from typing import Any, Iterable, Optional


class InvoiceEngineError(Exception):
    """Base exception for all invoice engine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, "details": self.details}


# OCR boundary

class ConfigurationError(InvoiceEngineError):
    """OCR provider credentials are missing or were rejected. Not retryable."""
    pass


class ProviderError(InvoiceEngineError):
    """Transient failure talking to the OCR provider."""
    pass


class ProcessingTimeoutError(ProviderError):
    """The OCR call did not finish before the caller's deadline."""

    def __init__(self, timeout: float, details: Optional[dict] = None):
        self.timeout = timeout
        super().__init__(
            f"OCR processing did not complete within {timeout:g}s",
            {"timeout_seconds": timeout, **(details or {})},
        )


class ContentError(InvoiceEngineError):
    """The file is unreadable or the provider rejected its content."""
    pass


# Assembly and lifecycle

class ValidationError(InvoiceEngineError):
    """One or more business rules were violated. Lists every violation."""

    def __init__(self, message: str, violations: Optional[Iterable[str]] = None, details: Optional[dict] = None):
        self.violations = list(violations or [])
        merged = dict(details or {})
        if self.violations:
            merged.setdefault("violations", self.violations)
        super().__init__(message, merged)


class DuplicateInvoiceError(ValidationError):
    """An invoice with the same number already exists."""

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(
            f"Invoice number {invoice_number!r} already exists",
            [f"Duplicate invoice number: {invoice_number}"],
            {"invoice_number": invoice_number},
        )


class UnknownWorkflowActionError(ValidationError):
    """The workflow action name is not registered."""

    def __init__(self, action: str, known_actions: Iterable[str]):
        self.action = action
        known = sorted(known_actions)
        super().__init__(
            f"Unknown workflow action: {action!r}",
            [f"Unknown workflow action: {action}"],
            {"action": action, "known_actions": known},
        )


class NotFoundError(InvoiceEngineError):
    """The referenced invoice does not exist."""

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})


class InvalidTransitionError(InvoiceEngineError):
    """The requested status is not reachable from the current status."""

    def __init__(self, current, requested, legal: Iterable, reason: Optional[str] = None):
        self.current = current
        self.requested = requested
        self.legal = sorted(legal)
        legal_names = [s.label for s in self.legal]
        message = reason or (
            f"Cannot change status from {current.label} to {requested.label}. "
            f"Allowed: {', '.join(legal_names) or 'none (terminal status)'}"
        )
        super().__init__(
            message,
            {
                "current_status": int(current),
                "requested_status": int(requested),
                "legal_transitions": [int(s) for s in self.legal],
            },
        )


class ConcurrencyConflict(InvoiceEngineError):
    """The invoice changed underneath the caller and the change could not be applied."""
    pass


__all__ = [
    "InvoiceEngineError",
    "ConfigurationError",
    "ProviderError",
    "ProcessingTimeoutError",
    "ContentError",
    "ValidationError",
    "DuplicateInvoiceError",
    "UnknownWorkflowActionError",
    "NotFoundError",
    "InvalidTransitionError",
    "ConcurrencyConflict",
]
