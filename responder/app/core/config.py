from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

NETWORKS = ("udp", "udp4", "udp6")


class Settings(BaseSettings):
    """Responder settings loaded from environment variables.

    All settings can be configured via ``NTP_``-prefixed environment
    variables or a .env file.
    """

    # Debug mode - logs every request with its source port
    debug: bool = False

    # Listener
    listen_addr: str = "0.0.0.0:123"
    network: str = "udp"  # udp | udp4 | udp6
    read_timeout: float = 0.5  # Seconds per socket read before re-checking for shutdown

    # Reply header fields
    stratum: int = 2  # 16 means unsynchronized
    ref_id: str = "LOCL"
    leap_indicator: int = 0
    precision: int = -20  # log2 seconds, about 1 microsecond
    root_delay: int = 0  # 16.16 fixed point
    root_dispersion: int = 0  # 16.16 fixed point

    # Per-IP rate limiting (0 disables)
    rate_limit_per_second: float = 0.0
    rate_limit_burst: int = 5

    # Event distribution
    event_buffer: int = 128  # Per-subscriber buffer
    history_size: int = 500  # Recent events kept for replay

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Status API (disabled when empty), e.g. "127.0.0.1:8123"
    status_addr: str = ""
    status_token: str = ""  # Bearer token for /stats, /metrics and /events

    # Seconds between metrics summary log lines from the CLI
    metrics_log_interval: float = 10.0

    @field_validator("network")
    @classmethod
    def validate_network(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in NETWORKS:
            raise ValueError(f"network must be one of {', '.join(NETWORKS)}")
        return v

    @field_validator("stratum")
    @classmethod
    def validate_stratum(cls, v: int) -> int:
        if not 0 <= v <= 255:
            raise ValueError("stratum must fit in one byte")
        return v

    @field_validator("leap_indicator")
    @classmethod
    def validate_leap_indicator(cls, v: int) -> int:
        if not 0 <= v <= 3:
            raise ValueError("leap_indicator must be between 0 and 3")
        return v

    @field_validator("precision")
    @classmethod
    def validate_precision(cls, v: int) -> int:
        if not -128 <= v <= 127:
            raise ValueError("precision must be a signed 8-bit exponent")
        return v

    @field_validator("root_delay", "root_dispersion")
    @classmethod
    def validate_fixed_point(cls, v: int) -> int:
        if not 0 <= v <= 0xFFFFFFFF:
            raise ValueError("root delay/dispersion must fit in 32 bits")
        return v

    @field_validator("ref_id")
    @classmethod
    def validate_ref_id(cls, v: str) -> str:
        if len(v) > 4 or not v.isascii():
            raise ValueError("ref_id must be at most 4 ASCII characters")
        return v

    @field_validator("rate_limit_per_second")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        if v < 0:
            raise ValueError("rate_limit_per_second must not be negative")
        return v

    @field_validator("read_timeout", "metrics_log_interval")
    @classmethod
    def validate_interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Intervals must be positive")
        return v

    def to_server_config(self, **overrides: Any):
        """Build a ``ServerConfig`` from these settings.

        Args:
            **overrides: ServerConfig fields that are not environment driven
                (``hook``, ``logger``, ``clock``) or that should win over
                the loaded values

        Returns:
            ServerConfig instance
        """
        from responder.app.server import ServerConfig

        values: dict[str, Any] = {
            "listen_addr": self.listen_addr,
            "network": self.network,
            "stratum": self.stratum,
            "ref_id": self.ref_id,
            "leap_indicator": self.leap_indicator,
            "precision": self.precision,
            "root_delay": self.root_delay,
            "root_dispersion": self.root_dispersion,
            "rate_limit_per_second": self.rate_limit_per_second,
            "rate_limit_burst": self.rate_limit_burst,
            "event_buffer": self.event_buffer,
            "history_size": self.history_size,
            "debug": self.debug,
            "read_timeout": self.read_timeout,
        }
        values.update(overrides)
        return ServerConfig(**values)

    model_config = SettingsConfigDict(env_prefix="NTP_", env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
