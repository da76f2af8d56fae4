# /flowbot/config/settings.py

from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Deployment
    environment: Literal["production", "development", "test"] = Field(default="production")

    # Flow state
    flow_ttl_seconds: int = Field(default=1800, gt=0)
    flow_prompt_window_ms: int = Field(default=120_000, gt=0)
    flow_store: Optional[Literal["memory", "redis"]] = None
    flow_redis_prefix: str = "flowbot:flow:"
    recovery_redis_prefix: str = "flowbot:recovery:"
    prompt_redis_prefix: str = "flowbot:prompt:"

    # Redis
    redis_url: str = "redis://localhost:6379"

    # Conversation recovery
    fuzzy_suggestion_threshold: float = 0.45
    fuzzy_confirmation_threshold: float = 0.75
    lock_duration_ms: int = Field(default=900_000, gt=0)
    notify_when_locked: bool = False

    # Outbound pacing
    rate_per_chat_cooldown_ms: int = Field(default=1200, ge=0)
    throttle_global_max: int = Field(default=12, gt=0)
    throttle_global_interval_ms: int = Field(default=1000, gt=0)
    response_base_delay_ms: int = 5000
    response_delay_factor: float = 1.5

    # App Behavior
    menu_flow: bool = True
    owner_id: Optional[str] = None
    allow_self_admin: bool = False

    # ---------------- Validators ---------------- #

    @field_validator("flow_store", mode="before")
    @classmethod
    def parse_flow_store(cls, v):
        """Accept any casing and treat an empty value as 'not configured'."""
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("fuzzy_suggestion_threshold", "fuzzy_confirmation_threshold")
    @classmethod
    def threshold_in_unit_interval(cls, v):
        if not 0 < v <= 1:
            raise ValueError("Fuzzy thresholds must be within (0, 1]")
        return v

    @field_validator("response_base_delay_ms")
    @classmethod
    def base_delay_positive(cls, v):
        if v <= 0:
            raise ValueError("RESPONSE_BASE_DELAY_MS must be greater than zero")
        return v

    @field_validator("response_delay_factor")
    @classmethod
    def delay_factor_above_one(cls, v):
        if v <= 1:
            raise ValueError("RESPONSE_DELAY_FACTOR must be greater than 1")
        return v

    @model_validator(mode="after")
    def suggestion_below_confirmation(self):
        if self.fuzzy_suggestion_threshold > self.fuzzy_confirmation_threshold:
            raise ValueError(
                "FUZZY_SUGGESTION_THRESHOLD must not exceed FUZZY_CONFIRMATION_THRESHOLD"
            )
        return self

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
