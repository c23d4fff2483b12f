from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("invoice-engine", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Azure Document Intelligence
    az_di_endpoint: str | None = Field(default=None, alias="AZ_DI_ENDPOINT")
    az_di_api_key: str | None = Field(default=None, alias="AZ_DI_API_KEY")
    az_di_model_id: str = Field("prebuilt-invoice", alias="AZ_DI_MODEL_ID")

    # OCR orchestration
    ocr_timeout_seconds: float = Field(120.0, alias="OCR_TIMEOUT_SECONDS")
    ocr_max_retries: int = Field(3, alias="OCR_MAX_RETRIES")
    ocr_retry_delay_seconds: float = Field(1.0, alias="OCR_RETRY_DELAY_SECONDS")
    ocr_mock_mode: bool = Field(False, alias="OCR_MOCK_MODE")  # Canned extraction when Azure DI is not configured
    ocr_locale_hint: str | None = Field(default=None, alias="OCR_LOCALE_HINT")  # "dot" or "comma"

    # Lifecycle
    default_actor: str = Field("System", alias="DEFAULT_ACTOR")
    automation_only_transitions: str = Field("", alias="AUTOMATION_ONLY_TRANSITIONS")  # e.g. "PmoReview>Completed,InProgress>PmoReview"
    status_change_max_retries: int = Field(3, alias="STATUS_CHANGE_MAX_RETRIES")

    # Storage (empty = in-memory)
    invoice_db_path: str = Field("", alias="INVOICE_DB_PATH")

    # Teams
    teams_webhook_url: str | None = Field(default=None, alias="TEAMS_WEBHOOK_URL")

    # API Base URL (for links in Teams cards)
    api_base_url: str = Field("http://127.0.0.1:8000", alias="API_BASE_URL")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Service Bus (status change events)
    service_bus_connection_string: str | None = Field(default=None, alias="SERVICE_BUS_CONNECTION_STRING")
    service_bus_entity: str = Field("invoice-events", alias="SERVICE_BUS_ENTITY")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

settings = Settings()
