from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    backend: Literal["scrapecreators", "apify"] = "scrapecreators"
    api_key_env: str = "SCRAPECREATORS_API_KEY"
    base_url: str = "https://api.scrapecreators.com"
    timeout_seconds: float = Field(10.0, gt=0.0, le=120.0)
    apify_token_env: str = "APIFY_TOKEN"
    apify_actor: str = "apify/instagram-scraper"

    @field_validator("api_key_env", "apify_token_env")
    @classmethod
    def _env_names_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("base_url")
    @classmethod
    def _base_url_must_be_http(cls, v: str) -> str:
        url = (v or "").strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError("must start with http:// or https://")
        return url


class BatchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    target_board_id: str | None = None
    inter_item_delay_ms: NonNegativeInt = 1000
    start_offset: NonNegativeInt = 0

    @field_validator("target_board_id")
    @classmethod
    def _strip_board_id(cls, v: str | None) -> str | None:
        return (v or "").strip() or None


class RetrySettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: PositiveInt = 1  # 1 disables retries
    base_delay_seconds: NonNegativeFloat = 1.0
    max_delay_seconds: NonNegativeFloat = 30.0
    jitter_ratio: float = Field(0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _max_delay_covers_base(self) -> "RetrySettings":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self


class TranscriptsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    inter_item_delay_ms: NonNegativeInt = 2000
    language: str = "en"
    platforms: list[Literal["instagram", "tiktok"]] = Field(
        default_factory=lambda: ["instagram", "tiktok"]
    )

    @field_validator("platforms")
    @classmethod
    def _dedupe_platforms(cls, v: list[str]) -> list[str]:
        out: list[str] = []
        for p in v:
            if p not in out:
                out.append(p)
        return out


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str = "board_ingest.sqlite"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api: ApiConfig = Field(default_factory=ApiConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    transcripts: TranscriptsConfig = Field(default_factory=TranscriptsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
