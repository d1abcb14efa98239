"""
blastradius service settings

Configuration management using pydantic settings.
Loads from environment variables with BLASTRADIUS_ prefix.
"""

from typing import List, Optional, Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Service configuration settings.

    Environment variables:
    - BLASTRADIUS_CONFIG_PATH: Engine config file (YAML); searched upwards from the cwd when unset
    - BLASTRADIUS_DB_PATH: SQLite file for graph persistence (in-memory graph when unset)
    - BLASTRADIUS_JOBS: Extraction workers (default: engine config scan.jobs)
    - BLASTRADIUS_STRICT_CONTRACTS: Fail /contracts on duplicate route registrations (default: false)
    - BLASTRADIUS_ALLOWED_ORIGINS_RAW: Comma-separated list of allowed CORS origins
    - BLASTRADIUS_LOG_LEVEL: Logging level (default: INFO)
    """

    model_config = SettingsConfigDict(
        env_prefix="BLASTRADIUS_",
        env_file=".env",
        extra="ignore",
    )

    config_path: Optional[str] = None
    db_path: Optional[str] = None
    jobs: Optional[int] = None
    strict_contracts: bool = False

    allowed_origins_raw: str = ""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @computed_field
    @property
    def allowed_origins(self) -> List[str]:
        """Parse comma-separated allowed origins into list."""
        if not self.allowed_origins_raw:
            return []
        return [v.strip() for v in self.allowed_origins_raw.split(",") if v.strip()]


# Global settings instance
settings = Settings()
