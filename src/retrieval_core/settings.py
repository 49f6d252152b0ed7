"""Retriever settings: a YAML file validated against a packaged JSON schema.

Example::

    work_dir: /tmp/job_1234
    debug_level: 2
    archive:
      base_url: https://archive.example.org/api
      enabled: true
      timeout: 300
      api_token_env: RETRIEVER_ARCHIVE_TOKEN
      retry: {max_attempts: 3, backoff_base: 2.0, backoff_max: 60.0}
    long_term_archive:
      available: true
    cache:
      recheck_interval_days: 1
      hash_type: md5
    condenser:
      minimum_ion_count: 3
      size_threshold_bytes: 2147483647

Environment overrides (applied after validation):
    RETRIEVER_ARCHIVE_URL      replaces archive.base_url
    RETRIEVER_DISABLE_ARCHIVE  "1"/"true"/"yes" disables archive queries
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft7Validator, FormatChecker

from retrieval_core.exceptions import ConfigValidationError, YamlParseError
from retrieval_core.secrets import SecretStr

SETTINGS_SCHEMA = "retriever_settings"
ENV_ARCHIVE_URL = "RETRIEVER_ARCHIVE_URL"
ENV_DISABLE_ARCHIVE = "RETRIEVER_DISABLE_ARCHIVE"
DEFAULT_TOKEN_ENV = "RETRIEVER_ARCHIVE_TOKEN"

_TRUTHY = {"1", "true", "yes", "on"}
_MAX_REPORTED_ERRORS = 10


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    backoff_base: float = 2.0
    backoff_max: float = 60.0


@dataclass(frozen=True)
class ArchiveSettings:
    base_url: str = ""
    enabled: bool = True
    timeout: float = 300.0
    api_token: SecretStr = field(default_factory=lambda: SecretStr(None), repr=False)
    retry: RetrySettings = field(default_factory=RetrySettings)

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.base_url.strip())


@dataclass(frozen=True)
class CacheSettings:
    recheck_interval_days: float = 1.0
    hash_type: str = "md5"


@dataclass(frozen=True)
class CondenserSettings:
    minimum_ion_count: int = 3
    size_threshold_bytes: int = 2**31 - 1


@dataclass(frozen=True)
class RetrieverSettings:
    work_dir: Path = field(default_factory=Path.cwd)
    debug_level: int = 1
    archive: ArchiveSettings = field(default_factory=ArchiveSettings)
    long_term_archive_available: bool = True
    cache: CacheSettings = field(default_factory=CacheSettings)
    condenser: CondenserSettings = field(default_factory=CondenserSettings)


@cache
def load_schema(schema_name: str) -> dict[str, Any]:
    schema_path = resources.files("retrieval_core").joinpath(
        "schemas", f"{schema_name}.schema.json"
    )
    return json.loads(schema_path.read_text(encoding="utf-8"))


def validate_config(config: Any, schema_name: str, *, config_path: Path | None = None) -> None:
    schema = load_schema(schema_name)
    validator = Draft7Validator(schema, format_checker=FormatChecker())
    errors = sorted(validator.iter_errors(config), key=lambda exc: list(exc.path))
    if not errors:
        return
    location = str(config_path) if config_path else "<config>"
    lines = [f"Schema validation failed for {location} ({schema_name})."]
    error_details: list[dict[str, str]] = []
    for error in errors[:_MAX_REPORTED_ERRORS]:
        path = ".".join(str(p) for p in error.path) if error.path else "<root>"
        lines.append(f"- {path}: {error.message}")
        error_details.append({"path": path, "message": error.message})
    if len(errors) > _MAX_REPORTED_ERRORS:
        lines.append(f"... and {len(errors) - _MAX_REPORTED_ERRORS} more errors.")
    raise ConfigValidationError(
        "\n".join(lines),
        context={
            "path": location,
            "schema": schema_name,
            "errors": error_details,
            "truncated": len(errors) > _MAX_REPORTED_ERRORS,
        },
    )


def read_yaml(path: Path, schema_name: str | None = None) -> Any:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise YamlParseError(
            f"YAML parse error in {path}: {exc}",
            context={"path": str(path), "error": str(exc)},
        ) from exc
    if data is None:
        data = {}
    if schema_name:
        validate_config(data, schema_name, config_path=path)
    return data


def settings_from_mapping(
    data: Mapping[str, Any], env: Mapping[str, str] | None = None
) -> RetrieverSettings:
    """Build settings from an already-validated mapping plus environment overrides."""
    env = os.environ if env is None else env
    archive_data = data.get("archive") or {}
    retry_data = archive_data.get("retry") or {}
    cache_data = data.get("cache") or {}
    condenser_data = data.get("condenser") or {}

    base_url = env.get(ENV_ARCHIVE_URL) or archive_data.get("base_url", "")
    enabled = bool(archive_data.get("enabled", True))
    if env.get(ENV_DISABLE_ARCHIVE, "").strip().lower() in _TRUTHY:
        enabled = False
    token_env = archive_data.get("api_token_env", DEFAULT_TOKEN_ENV)

    defaults = RetrieverSettings()
    return RetrieverSettings(
        work_dir=Path(data["work_dir"]) if data.get("work_dir") else defaults.work_dir,
        debug_level=int(data.get("debug_level", defaults.debug_level)),
        archive=ArchiveSettings(
            base_url=str(base_url),
            enabled=enabled,
            timeout=float(archive_data.get("timeout", ArchiveSettings.timeout)),
            api_token=SecretStr(env.get(token_env)),
            retry=RetrySettings(
                max_attempts=int(retry_data.get("max_attempts", RetrySettings.max_attempts)),
                backoff_base=float(retry_data.get("backoff_base", RetrySettings.backoff_base)),
                backoff_max=float(retry_data.get("backoff_max", RetrySettings.backoff_max)),
            ),
        ),
        long_term_archive_available=bool(
            (data.get("long_term_archive") or {}).get("available", True)
        ),
        cache=CacheSettings(
            recheck_interval_days=float(
                cache_data.get("recheck_interval_days", CacheSettings.recheck_interval_days)
            ),
            hash_type=str(cache_data.get("hash_type", CacheSettings.hash_type)),
        ),
        condenser=CondenserSettings(
            minimum_ion_count=int(
                condenser_data.get("minimum_ion_count", CondenserSettings.minimum_ion_count)
            ),
            size_threshold_bytes=int(
                condenser_data.get("size_threshold_bytes", CondenserSettings.size_threshold_bytes)
            ),
        ),
    )


def load_settings(
    path: Path | None = None, env: Mapping[str, str] | None = None
) -> RetrieverSettings:
    """Load and validate a settings file; defaults (plus env overrides) when ``path`` is None."""
    data = read_yaml(Path(path), SETTINGS_SCHEMA) if path is not None else {}
    return settings_from_mapping(data, env)
