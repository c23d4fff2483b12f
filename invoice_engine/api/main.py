from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from ..core.logging import setup_logging
from ..core.config import settings
from ..core.exceptions import (
    ConcurrencyConflict,
    ConfigurationError,
    ContentError,
    DuplicateInvoiceError,
    InvalidTransitionError,
    InvoiceEngineError,
    NotFoundError,
    ProcessingTimeoutError,
    ProviderError,
    ValidationError,
)
from .routers import health, invoice, workflow

logger = setup_logging()
app = FastAPI(title="Invoice Ingestion & Lifecycle Engine")

# Most specific first
ERROR_STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
    (DuplicateInvoiceError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ContentError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ProcessingTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
)


def status_code_for(exc: InvoiceEngineError) -> int:
    for exc_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(InvoiceEngineError)
async def engine_exception_handler(request: Request, exc: InvoiceEngineError):
    code = status_code_for(exc)
    log = logger.error if code >= 500 else logger.info
    log("Request failed", error=type(exc).__name__, message=exc.message, path=request.url.path, status_code=code)
    return JSONResponse(status_code=code, content=exc.to_dict())


# Add custom exception handler for validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


# Configure CORS to allow frontend access
# CORS_ORIGINS can be set in .env as comma-separated list
allowed_origins = [origin.strip() for origin in settings.cors_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(invoice.router)
app.include_router(workflow.router)
