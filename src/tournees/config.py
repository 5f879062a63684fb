"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="TOURNEES_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Tournees Planning API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root logging level applied at startup.")
    data_root: Path = Field(default=Path("data"), description="Root directory for tours and exports.")
    sites_file: Path = Field(
        default=Path("data/sites.csv"),
        description="Site reference data (id, name, address, coordinates, pole).",
    )
    routing_provider: Literal["osrm", "google"] = Field(
        default="osrm",
        description="Which routing backend supplies driving distances and durations.",
    )
    osrm_base_url: Optional[str] = Field(
        default="https://router.project-osrm.org",
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    google_maps_api_key: Optional[str] = Field(
        default=None,
        description="Key for the Google Directions API (traffic-aware durations).",
    )
    google_directions_url: str = Field(
        default="https://maps.googleapis.com/maps/api/directions/json",
    )
    provider_timeout_seconds: float = Field(default=20.0, gt=0.0)
    provider_max_retries: int = Field(default=2, ge=0)
    provider_backoff_seconds: float = Field(default=0.5, ge=0.0)
    default_dwell_minutes: int = Field(default=5, ge=0)
    fallback_average_speed_kmh: float = Field(
        default=50.0,
        gt=0.0,
        description="Average speed used for straight-line time estimates when the provider is unavailable.",
    )
    site_cache_ttl_seconds: float = Field(default=300.0, ge=0.0)
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("data_root", "sites_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
