"""Tests for settings loading and schema validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from retrieval_core.exceptions import ConfigValidationError, YamlParseError
from retrieval_core.settings import (
    ENV_ARCHIVE_URL,
    ENV_DISABLE_ARCHIVE,
    RetrieverSettings,
    load_settings,
    validate_config,
)

SETTINGS_YAML = """\
work_dir: /tmp/job_1234
debug_level: 2
archive:
  base_url: https://archive.example.org/api
  timeout: 120
  api_token_env: MY_ARCHIVE_TOKEN
  retry: {max_attempts: 5, backoff_base: 1.5, backoff_max: 10}
long_term_archive:
  available: false
cache:
  recheck_interval_days: 0.5
  hash_type: sha256
condenser:
  minimum_ion_count: 4
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings(env={})
        assert settings.archive.base_url == ""
        assert not settings.archive.usable
        assert settings.cache.recheck_interval_days == 1.0
        assert settings.condenser.size_threshold_bytes == 2**31 - 1
        assert settings.long_term_archive_available is True

    def test_full_file(self, tmp_path: Path) -> None:
        settings = load_settings(_write(tmp_path, SETTINGS_YAML), env={"MY_ARCHIVE_TOKEN": "t0ken"})

        assert settings.work_dir == Path("/tmp/job_1234")
        assert settings.debug_level == 2
        assert settings.archive.usable
        assert settings.archive.timeout == 120.0
        assert settings.archive.api_token.reveal() == "t0ken"
        assert settings.archive.retry.max_attempts == 5
        assert settings.long_term_archive_available is False
        assert settings.cache.hash_type == "sha256"
        assert settings.condenser.minimum_ion_count == 4
        assert settings.condenser.size_threshold_bytes == 2**31 - 1

    def test_token_is_not_in_repr(self, tmp_path: Path) -> None:
        settings = load_settings(_write(tmp_path, SETTINGS_YAML), env={"MY_ARCHIVE_TOKEN": "t0ken"})
        assert "t0ken" not in repr(settings)

    def test_env_overrides(self, tmp_path: Path) -> None:
        env = {ENV_ARCHIVE_URL: "https://mirror.example.org", ENV_DISABLE_ARCHIVE: "yes"}
        settings = load_settings(_write(tmp_path, SETTINGS_YAML), env=env)
        assert settings.archive.base_url == "https://mirror.example.org"
        assert settings.archive.enabled is False
        assert not settings.archive.usable

    def test_empty_file(self, tmp_path: Path) -> None:
        assert isinstance(load_settings(_write(tmp_path, ""), env={}), RetrieverSettings)

    def test_schema_errors_are_listed(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "debug_level: 9\ncache:\n  hash_type: crc32\nunknown: 1\n")

        with pytest.raises(ConfigValidationError) as excinfo:
            load_settings(path, env={})

        error = excinfo.value
        paths = {detail["path"] for detail in error.context["errors"]}
        assert paths == {"<root>", "debug_level", "cache.hash_type"}
        assert error.context["path"] == str(path)
        assert error.as_log_fields()["error_code"] == "config_validation_error"

    def test_yaml_parse_error(self, tmp_path: Path) -> None:
        with pytest.raises(YamlParseError):
            load_settings(_write(tmp_path, "archive: [unclosed\n"), env={})


class TestValidateConfig:
    def test_valid(self) -> None:
        validate_config({"archive": {"enabled": False}}, "retriever_settings")

    def test_retry_attempts_must_be_positive(self) -> None:
        with pytest.raises(ConfigValidationError):
            validate_config({"archive": {"retry": {"max_attempts": 0}}}, "retriever_settings")
