"""Application configuration with startup validation.

All config is validated at import time via pydantic-settings.
Invalid values cause an immediate, clear error instead of a
failure deep inside an upload task.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "SM_", "env_file": ".env"}

    # Backend
    api_base_url: str = "http://localhost:8080/"
    user_sno: str = ""
    request_timeout_seconds: float = 10.0

    # Session start/end endpoints (off by default, the device frames drive the session)
    session_api_enabled: bool = False

    # Uploads
    max_concurrent_uploads: int = 4

    # Retry
    retry_max_attempts: int = 3
    retry_max_wait_seconds: int = 30

    # BLE
    characteristic_uuid: str = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"
    ble_connect_timeout_seconds: float = 10.0

    # Observability
    log_json: bool = False
    log_level: str = "INFO"
    metrics_port: int = 0

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Fail fast at startup on values the uploader cannot work with."""
        problems = []
        if not self.api_base_url.startswith(("http://", "https://")):
            problems.append("SM_API_BASE_URL must be an http(s) URL")
        if self.max_concurrent_uploads < 1:
            problems.append("SM_MAX_CONCURRENT_UPLOADS must be >= 1")
        if self.retry_max_attempts < 1:
            problems.append("SM_RETRY_MAX_ATTEMPTS must be >= 1")
        if problems:
            raise ValueError("; ".join(problems))
        return self


settings = Settings()
