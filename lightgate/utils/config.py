"""Configuration for the lightgate client.

Pydantic-based settings, overridable through environment variables or a
``.env`` file.

Environment Variables:
- LIGHTGATE_LND_REST_URL: Base URL of the LND REST API (default: https://localhost:8080)
- LIGHTGATE_MACAROON_HEX: Admin macaroon, hex encoded
- LIGHTGATE_MACAROON_PATH: Path to the admin macaroon file (used if hex is unset)
- LIGHTGATE_TLS_CERT_PATH: Path to the node TLS certificate
- LIGHTGATE_ALLOW_INSECURE: Skip TLS verification (regtest only)
- LIGHTGATE_LOG_LEVEL: Logging level (default: INFO)
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lightgate.exceptions import ConfigurationError


class Settings(BaseSettings):
    """lightgate settings.

    Example:
        >>> settings = Settings(lnd_rest_url="https://127.0.0.1:8080", macaroon_hex="0201")
        >>> settings.macaroon()
        '0201'
    """

    model_config = SettingsConfigDict(
        env_prefix="LIGHTGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Node connection
    lnd_rest_url: str = Field(
        default="https://localhost:8080",
        description="Base URL of the LND REST API",
    )
    macaroon_hex: str | None = Field(default=None, description="Hex encoded macaroon")
    macaroon_path: Path | None = Field(default=None, description="Path to a macaroon file")
    tls_cert_path: Path | None = Field(default=None, description="Node TLS certificate")
    allow_insecure: bool = Field(
        default=False,
        description="Disable TLS verification (development only)",
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Resilient calls
    retry_attempts: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Additional attempts for transient remote errors",
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Fixed delay between attempts",
    )

    # Invoice stream
    invoice_queue_capacity: int = Field(
        default=50,
        ge=1,
        le=10000,
        description="Bound of the settlement notification queue",
    )

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    @field_validator("lnd_rest_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    def macaroon(self) -> str:
        """Return the macaroon as a hex string.

        Raises:
            ConfigurationError: If neither a hex value nor a readable file is set
        """
        if self.macaroon_hex:
            return self.macaroon_hex.strip().lower()
        if self.macaroon_path is None:
            raise ConfigurationError(
                "No macaroon configured",
                setting="LIGHTGATE_MACAROON_HEX or LIGHTGATE_MACAROON_PATH",
            )
        try:
            return self.macaroon_path.read_bytes().hex()
        except OSError as e:
            raise ConfigurationError(
                f"Macaroon not readable at {self.macaroon_path}",
                setting="LIGHTGATE_MACAROON_PATH",
                original_error=e,
            ) from e


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
