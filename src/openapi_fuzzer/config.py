"""Fuzzer configuration and logging setup."""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, PositiveInt, ValidationError, field_validator

from openapi_fuzzer.errors import FuzzerError
from openapi_fuzzer.generator.compiler import AllOfPolicy

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class FuzzerConfig(BaseModel):
    """Values the fuzzing core consumes. Loading them is the caller's job."""

    base_url: str
    ignored_status_codes: list[int] = []
    extra_headers: dict[str, str] = {}
    max_trials: PositiveInt = 256
    max_backoff_attempts: int = Field(default=10, ge=0)
    overload_status_codes: list[int] = [429, 503]
    backoff_unit: float = Field(default=1.0, ge=0)  # seconds
    max_backoff: float = Field(default=60.0, ge=0)  # seconds, caps every wait
    max_shrink_iters: int = Field(default=1024, ge=0)
    seed: int | None = None
    timeout: float = 30.0
    verify_tls: bool = True
    workers: PositiveInt = 1
    all_of_policy: AllOfPolicy = "last_wins"

    @field_validator("base_url")
    @classmethod
    def _trailing_slash(cls, v: str) -> str:
        # urljoin drops the last path segment of a base without one
        return v if v.endswith("/") else v + "/"


def load_config(file_path: Path, **overrides) -> FuzzerConfig:
    """Read a YAML config file; non-None ``overrides`` take precedence."""
    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise FuzzerError(f"unable to read config {file_path}: {e}") from e
    if not isinstance(data, dict):
        raise FuzzerError(f"config {file_path} must be a mapping")
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return FuzzerConfig(**data)
    except ValidationError as e:
        raise FuzzerError(f"invalid config {file_path}: {e}") from e


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
