from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Registry API
    REGISTRY_URL: str = "https://ismp.crpt.ru/api/v3/lk/documents/create"
    REGISTRY_TIMEOUT_SEC: float = 30.0
    REGISTRY_SIGNATURE_HEADER: str = "Signature"

    # Admission control
    RATE_LIMIT_WINDOW_SEC: float = 1.0
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_BUCKETS: int = 10

    # Logging
    LOG_LEVEL: str = "INFO"

    # Tracing
    TRACING_ENABLED: bool = True
    TRACING_EXPORTER: str = "none"  # console|none
    TRACING_SERVICE_NAME: str = "registry-gateway"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables

settings = Settings()
