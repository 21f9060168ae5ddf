"""Runtime configuration.

Settings are read from the environment with the `SPIRIT_` prefix, e.g.
`SPIRIT_THRESHOLD=3 SPIRIT_NUM_SHARES=5 SPIRIT_CREDENTIAL_BACKEND=coconut`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SpiritSettings(BaseSettings):
    """Deployment settings for a contact-tracing instance.

    Attributes:
        threshold: Partial tokens needed to mint a credential (t)
        num_shares: Key shares dealt at setup (n)
        num_issuers: Issuers materialized at setup
        credential_backend: "coconut" for real crypto, "mock" for testing
        exposure_limit: Matching pseudonyms needed to raise an alarm
        registration_attempts: Whole-protocol registration retries
        log_level: Minimum log level
        log_format: "console" for development, "json" for production
    """

    model_config = SettingsConfigDict(env_prefix="SPIRIT_", env_file=".env", extra="ignore")

    threshold: int = Field(default=3, ge=1)
    num_shares: int = Field(default=5, ge=1)
    num_issuers: int = Field(default=5, ge=1)
    credential_backend: Literal["coconut", "mock"] = "coconut"
    exposure_limit: int = Field(default=1, ge=0)
    registration_attempts: int = Field(default=3, ge=1)
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @model_validator(mode="after")
    def _check_threshold(self) -> SpiritSettings:
        if self.threshold > self.num_shares:
            raise ValueError(f"threshold ({self.threshold}) exceeds num_shares ({self.num_shares})")
        if not self.threshold <= self.num_issuers <= self.num_shares:
            raise ValueError(
                f"num_issuers ({self.num_issuers}) must be between threshold ({self.threshold}) "
                f"and num_shares ({self.num_shares})"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> SpiritSettings:
    """Load settings once per process."""
    return SpiritSettings()
