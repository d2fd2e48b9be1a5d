"""
Configuration module for the credential proxy.

This module uses Pydantic Settings to load provider secrets and server
options from environment variables.

Environment variables are loaded from .env file or system environment.
Provider keys are optional: an unset key is forwarded as an empty credential
and the provider's own 401/403 is passed back to the caller.
"""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Secret names consumed by the provider routes, in declaration order.
PROVIDER_SECRET_NAMES = ("RUNWAY_KEY", "MARBLE_KEY", "DECART_KEY", "KIRI_API_KEY")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Holds the upstream provider secrets and the few server options needed
    to run the proxy under uvicorn.
    """

    # =========================================================================
    # Provider Secrets
    # =========================================================================

    RUNWAY_KEY: Optional[SecretStr] = Field(
        None,
        description="Runway API key, sent as 'Authorization: Bearer <key>'",
    )

    MARBLE_KEY: Optional[SecretStr] = Field(
        None,
        description="World Labs Marble API key, sent as 'WLT-Api-Key'",
    )

    DECART_KEY: Optional[SecretStr] = Field(
        None,
        description="Decart API key, sent as 'X-API-KEY'",
    )

    KIRI_API_KEY: Optional[SecretStr] = Field(
        None,
        description="KIRI Engine API key, sent as 'Authorization: Bearer <key>'",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    PROXY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the proxy server",
    )

    PROXY_PORT: int = Field(
        default=8787,
        description="Port to bind the proxy server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the logging level name."""
        level = v.strip().upper()
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )
        return level

    def secret_set(self) -> Dict[str, str]:
        """
        Build the name -> value lookup handed to the credential injector.

        Unset keys are simply absent from the mapping.

        Returns:
            Dict of secret name to plain secret value.
        """
        secrets: Dict[str, str] = {}
        for name in PROVIDER_SECRET_NAMES:
            value = getattr(self, name)
            if value is not None:
                secrets[name] = value.get_secret_value()
        return secrets

    @property
    def missing_secrets(self) -> List[str]:
        """Names of provider secrets that are unset or empty."""
        return [
            name for name in PROVIDER_SECRET_NAMES
            if not self.secret_set().get(name)
        ]


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so that the environment is read only once per process.
    """
    return Settings()


def validate_configuration(settings: Settings) -> dict:
    """
    Check provider secrets and return a report of warnings and configured keys.

    Missing keys are warnings, not errors: requests to that provider are
    still forwarded and fail upstream with an authentication error.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> status["warnings"]
        ['RUNWAY_KEY is not set; /runway/ requests will be rejected upstream']
    """
    # Imported here to keep config importable on its own
    from .proxy.routing import ROUTE_TABLE
    from .proxy.providers import required_secrets

    warnings = []
    missing = set(settings.missing_secrets)
    for route in ROUTE_TABLE:
        for name in required_secrets(route.provider):
            if name in missing:
                warnings.append(
                    f"{name} is not set; {route.prefix} requests will be rejected upstream"
                )

    return {
        "warnings": warnings,
        "configured": [n for n in PROVIDER_SECRET_NAMES if n not in missing],
    }
