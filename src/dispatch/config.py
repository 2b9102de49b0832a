"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services.routing.models import DurationUnit


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Delivery Route Planner API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for persisted delivery jobs.")
    mapbox_token: Optional[str] = Field(
        default=None,
        description="Mapbox access token used for the matrix and directions APIs.",
    )
    mapbox_base_url: str = Field(default="https://api.mapbox.com")
    mapbox_profile: Literal["driving-traffic", "driving", "walking", "cycling"] = Field(
        default="driving-traffic",
        description="Mapbox routing profile used when computing travel times.",
    )
    mapbox_timeout_seconds: float = Field(default=30.0, gt=0.0)
    matrix_max_waypoints: int = Field(
        default=25,
        ge=2,
        description="Largest waypoint count (depot included) accepted by the matrix provider.",
    )
    duration_unit: DurationUnit = Field(
        default=DurationUnit.SECONDS,
        description="Unit of the duration table returned by the matrix provider.",
    )
    two_opt_max_sweeps: int = Field(default=50, ge=0)
    two_opt_threshold_seconds: float = Field(default=1.0, ge=0.0)
    two_opt_closed_cycle: Optional[bool] = Field(
        default=None,
        description=(
            "Score 2-opt moves on the closed cycle (last stop back to depot). "
            "Unset follows include_return_edge so moves are scored on the reported cost."
        ),
    )
    include_return_edge: bool = Field(
        default=False,
        description="Add the last-stop-to-depot edge to reported route totals.",
    )
    service_minutes: float = Field(default=3.0, ge=0.0, description="Time spent at each stop.")
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("data_root", mode="before")
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
