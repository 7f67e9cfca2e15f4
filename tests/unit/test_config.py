"""Configuration loading tests for the Task Market service."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from task_market_service.config import (
    REDACTION_MARKER,
    Settings,
    _redact,
    clear_settings_cache,
    get_safe_config,
    get_settings,
)

VALID_CONFIG = """\
service:
  name: "task-market"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "INFO"
  directory: "data/logs"
database:
  path: "data/task-market.db"
identity:
  base_url: "http://localhost:8001"
  verify_path: "/auth/verify"
  timeout_seconds: 10
categories:
  base_url: "http://localhost:8011"
  category_path: "/categories/{category_id}"
  timeout_seconds: 10
realtime:
  base_url: "http://localhost:8012"
  deliver_path: "/events/deliver"
  timeout_seconds: 5
push:
  base_url: "http://localhost:8013"
  send_path: "/push/multicast"
  timeout_seconds: 10
request:
  max_body_size: 1048576
fees:
  default_platform_fee_percentage: 5
  default_commission_percentage: 15
  default_trust_and_support_fee: 2
listing:
  task_page_size: 10
  notification_page_size: 20
"""


@pytest.fixture
def write_config(tmp_path, monkeypatch):
    """Write config text to a temp file and point CONFIG_PATH at it."""

    def _write(content: str) -> None:
        config_path = tmp_path / "config.yaml"
        config_path.write_text(content)
        monkeypatch.setenv("CONFIG_PATH", str(config_path))
        clear_settings_cache()

    return _write


@pytest.mark.unit
def test_config_loads_from_yaml(write_config):
    """Valid config loads without error."""
    write_config(VALID_CONFIG)
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service.name == "task-market"
    assert settings.server.port == 8010
    assert settings.categories.category_path == "/categories/{category_id}"
    assert settings.fees.default_commission_percentage == 15
    assert settings.listing.notification_page_size == 20


@pytest.mark.unit
def test_settings_are_cached(write_config):
    write_config(VALID_CONFIG)
    assert get_settings() is get_settings()


@pytest.mark.unit
def test_config_rejects_extra_fields(write_config):
    """Extra keys raise ValidationError (extra='forbid')."""
    write_config(VALID_CONFIG.replace('  version: "0.1.0"\n', '  version: "0.1.0"\n  unknown_field: true\n'))
    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_missing_required_section(write_config):
    """Missing required sections raise ValidationError."""
    write_config('service:\n  name: "task-market"\n  version: "0.1.0"\n')
    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_rejects_out_of_range_fee(write_config):
    write_config(VALID_CONFIG.replace("default_commission_percentage: 15", "default_commission_percentage: 150"))
    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_rejects_zero_page_size(write_config):
    write_config(VALID_CONFIG.replace("task_page_size: 10", "task_page_size: 0"))
    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_file_missing(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "absent.yaml"))
    clear_settings_cache()
    with pytest.raises(FileNotFoundError):
        get_settings()


@pytest.mark.unit
def test_config_must_be_mapping(write_config):
    write_config("- just\n- a\n- list\n")
    with pytest.raises(ValueError, match="mapping"):
        get_settings()


@pytest.mark.unit
def test_safe_config_matches_settings(write_config):
    write_config(VALID_CONFIG)
    safe = get_safe_config()
    assert safe["identity"]["base_url"] == "http://localhost:8001"
    assert safe["listing"]["task_page_size"] == 10


@pytest.mark.unit
def test_redact_masks_sensitive_keys():
    """Keys that look like credentials are masked at any depth."""
    redacted = _redact({"push": {"api_key": "k", "base_url": "u"}, "items": [{"client_secret": "s"}]})
    assert redacted["push"]["api_key"] == REDACTION_MARKER
    assert redacted["push"]["base_url"] == "u"
    assert redacted["items"][0]["client_secret"] == REDACTION_MARKER
