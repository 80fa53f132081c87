"""
Service configuration, read from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _split_origins(value: str) -> list[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class Config:
    """
    Valuation service settings.

    Every field falls back to a development default when its variable is unset.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    allowed_origins: list[str] = field(
        default_factory=lambda: _split_origins(os.getenv("ALLOWED_ORIGINS", "*"))
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("AVM_LOG_LEVEL", "INFO").upper())

    # Data
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", "./data"))
    comparables_path: Optional[str] = field(
        default_factory=lambda: os.getenv("COMPARABLES_PATH") or None
    )
    compsets_path: Optional[str] = field(
        default_factory=lambda: os.getenv("COMPSETS_PATH") or None
    )

    # Valuation
    recency_warn_months: float = field(
        default_factory=lambda: float(os.getenv("RECENCY_WARN_MONTHS", "12"))
    )
    default_radius_km: float = field(
        default_factory=lambda: float(os.getenv("DEFAULT_RADIUS_KM", "1.0"))
    )

    def __post_init__(self) -> None:
        if self.comparables_path is None:
            self.comparables_path = os.path.join(self.data_dir, "comparables.json")
        if self.compsets_path is None:
            self.compsets_path = os.path.join(self.data_dir, "compsets.json")

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "allowed_origins": list(self.allowed_origins),
            "log_level": self.log_level,
            "data_dir": self.data_dir,
            "comparables_path": self.comparables_path,
            "compsets_path": self.compsets_path,
            "recency_warn_months": self.recency_warn_months,
            "default_radius_km": self.default_radius_km,
        }
