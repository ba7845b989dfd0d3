from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("gst-invoice-intake", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Azure Document Intelligence (recognition engine)
    az_di_endpoint: str | None = Field(default=None, alias="AZ_DI_ENDPOINT")
    az_di_api_key: str | None = Field(default=None, alias="AZ_DI_API_KEY")
    az_di_model: str = Field("prebuilt-layout", alias="AZ_DI_MODEL")

    # Business registry (ACRA) live integration - enabled only when both are set
    acra_api_url: str | None = Field(default=None, alias="ACRA_API_URL")
    acra_api_key: str | None = Field(default=None, alias="ACRA_API_KEY")
    acra_timeout_seconds: float = Field(10.0, alias="ACRA_TIMEOUT_SECONDS")

    # UEN verification cache and batch pacing
    uen_cache_ttl_hours: float = Field(24.0, alias="UEN_CACHE_TTL_HOURS")
    uen_cache_max_entries: int = Field(1000, alias="UEN_CACHE_MAX_ENTRIES")
    uen_cache_sweep_target: int = Field(800, alias="UEN_CACHE_SWEEP_TARGET")
    uen_cache_evict_count: int = Field(200, alias="UEN_CACHE_EVICT_COUNT")
    uen_batch_chunk_size: int = Field(10, alias="UEN_BATCH_CHUNK_SIZE")
    uen_batch_delay_ms: int = Field(100, alias="UEN_BATCH_DELAY_MS")

    # OCR pipeline
    ocr_min_confidence: float = Field(0.7, alias="OCR_MIN_CONFIDENCE")
    ocr_enable_template_matching: bool = Field(True, alias="OCR_ENABLE_TEMPLATE_MATCHING")

    # GST compliance rules
    gst_amount_tolerance: float = Field(0.01, alias="GST_AMOUNT_TOLERANCE")
    default_currency: str = Field("SGD", alias="DEFAULT_CURRENCY")

    # Record store (SQLite path; empty = in-memory store)
    invoice_db_path: str = Field("", alias="INVOICE_DB_PATH")

    # Service Bus (optional event publishing)
    service_bus_connection_string: str | None = Field(default=None, alias="SERVICE_BUS_CONNECTION_STRING")
    service_bus_queue: str = Field("invoice-events", alias="SERVICE_BUS_QUEUE")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

settings = Settings()
