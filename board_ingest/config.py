from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig
from .errors import ConfigError
from .retry import RetryConfig


@dataclass(frozen=True)
class RuntimeSecrets:
    api_key: str | None = None
    apify_token: str | None = None


@dataclass(frozen=True)
class BatchSettings:
    """Everything the batch processor needs, passed in explicitly."""

    api_key: str
    base_url: str
    target_board_id: str
    inter_item_delay_ms: int = 1000
    start_offset: int = 0

    def __post_init__(self) -> None:
        if not (self.target_board_id or "").strip():
            raise ConfigError("target_board_id must be non-empty")
        if self.inter_item_delay_ms < 0:
            raise ConfigError("inter_item_delay_ms must be >= 0")
        if self.start_offset < 0:
            raise ConfigError("start_offset must be >= 0")


def load_config(path: str | Path) -> AppConfig:
    """
    Load a YAML config file and validate it into a typed AppConfig.

    Raises ConfigError with a readable validation message on failure.
    """
    p = Path(path)

    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")

    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {p}") from e

    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML in {p}: {e}") from e

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML in {p} must be a mapping/object")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_pydantic_errors(e, p)) from e


def resolve_runtime_secrets(
    config: AppConfig, *, environ: Mapping[str, str] | None = None
) -> RuntimeSecrets:
    """Read the credential the configured backend needs; raise ConfigError if it is unset."""
    env = os.environ if environ is None else environ

    if config.api.backend == "apify":
        name = config.api.apify_token_env
        token = (env.get(name) or "").strip()
        if not token:
            raise ConfigError(f"Missing required environment variables: {name}")
        return RuntimeSecrets(apify_token=token)

    name = config.api.api_key_env
    key = (env.get(name) or "").strip()
    if not key:
        raise ConfigError(f"Missing required environment variables: {name}")
    return RuntimeSecrets(api_key=key)


def batch_settings(
    config: AppConfig,
    secrets: RuntimeSecrets,
    *,
    board_id: str | None = None,
    delay_ms: int | None = None,
    start_offset: int | None = None,
) -> BatchSettings:
    """Combine config, secrets and command-line overrides; overrides win when given."""
    board = (board_id or "").strip() or config.batch.target_board_id
    if not board:
        raise ConfigError("A target board id is required (batch.target_board_id or --board)")

    return BatchSettings(
        api_key=secrets.api_key or secrets.apify_token or "",
        base_url=config.api.base_url,
        target_board_id=board,
        inter_item_delay_ms=config.batch.inter_item_delay_ms if delay_ms is None else int(delay_ms),
        start_offset=config.batch.start_offset if start_offset is None else int(start_offset),
    )


def retry_config(config: AppConfig) -> RetryConfig:
    r = config.retry
    return RetryConfig(
        max_attempts=r.max_attempts,
        base_delay_seconds=r.base_delay_seconds,
        max_delay_seconds=r.max_delay_seconds,
        jitter_ratio=r.jitter_ratio,
    )


def config_sha256(config: AppConfig) -> str:
    """
    Compute a stable SHA-256 hash of the config values for reproducibility.
    """
    payload = json.dumps(
        config.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def _format_pydantic_errors(err: ValidationError, path: Path) -> str:
    lines: list[str] = [f"Invalid configuration in {path}:"]
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", [])) or "<root>"
        msg = item.get("msg", "invalid value")
        lines.append(f"- {loc}: {msg}")
    return "\n".join(lines)
