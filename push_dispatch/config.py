import re
from typing import Annotated, List, Optional

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, SettingsError


class ConfigurationError(Exception):
    """Raised when required environment configuration is missing or invalid"""

    def __init__(self, missing: List[str], detail: str = ""):
        self.missing = missing
        message = "Missing or invalid configuration: " + ", ".join(missing)
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required
    onesignal_app_id: str
    onesignal_rest_api_key: str
    database_url: str
    database_service_key: str

    onesignal_api_url: str = "https://onesignal.com/api/v1/notifications"
    provider_timeout_seconds: float = 10.0
    drain_batch_size: int = 50
    drain_interval_seconds: int = 60
    branch_tag_key: str = "branch_id"
    broadcast_segment: str = "Subscribed Users"
    redis_url: Optional[str] = None
    # Comma separated in the environment, e.g. "*" or "https://a.example,https://b.example"
    cors_allow_origins: Annotated[List[str], NoDecode] = ["*"]
    service_name: str = "push-dispatch-service"
    log_level: str = "INFO"

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        if isinstance(v, str):
            v = [origin.strip() for origin in v.split(",")]
        origins = [origin for origin in v if origin]
        return origins or ["*"]


def load_settings(**overrides) -> Settings:
    """Build settings once at process start; missing required keys are fatal"""
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        missing = [".".join(str(part) for part in err["loc"]).upper() for err in e.errors()]
        raise ConfigurationError(missing) from e
    except SettingsError as e:
        match = re.search(r'field "(\w+)"', str(e))
        name = match.group(1).upper() if match else "ENVIRONMENT"
        raise ConfigurationError([name], "unparseable value") from e

    blank = [
        name.upper()
        for name in ("onesignal_app_id", "onesignal_rest_api_key", "database_url", "database_service_key")
        if not getattr(settings, name).strip()
    ]
    if blank:
        raise ConfigurationError(blank, "empty value")
    return settings
