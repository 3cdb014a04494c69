from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]

    LOG_LEVEL: str = "INFO"

    # Itinerary generation
    MAX_LEGS: int = 20
    DAY_START: str = "09:00"
    DAY_END: str = "22:00"
    DAILY_ACTIVE_MINUTES: int = 540  # ~9h of activities per day
    MAX_EXPERIENCES_PER_DAY: int = 5
    ACTIVITY_BUFFER_MINUTES: int = 15
    EXPERIENCE_PACKING: Literal["even", "packed"] = "even"
    CHECK_IN_TIME: str = "15:00"
    CHECK_OUT_TIME: str = "11:00"

    # Route optimization
    OPTIMIZATION_THRESHOLD_PERCENT: float = 10.0
    ROUTE_STRATEGY: Literal["nearest_neighbor", "two_opt", "ortools"] = "two_opt"
    ROUTE_SOLVER_TIME_LIMIT_MS: int = 500
    TWO_OPT_MAX_PASSES: int = 50


settings = Settings()
