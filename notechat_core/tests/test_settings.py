import json
import logging

import pytest
from pydantic import ValidationError

from notechat_core.config.settings import DEFAULT_QUICK_ACTIONS, AssistantSettings
from notechat_core.infrastructure.logging.logger import JsonFormatter, setup_logger
from notechat_core.providers.stream_decoder import decode_event_line


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    cfg = AssistantSettings(_env_file=None)
    assert cfg.api_endpoint == "http://localhost:11434"
    assert cfg.temperature == 0.7
    assert cfg.max_tokens == 50000
    assert cfg.streaming_enabled is True
    assert cfg.http_timeout is None
    assert [a.label for a in cfg.quick_actions] == [a.label for a in DEFAULT_QUICK_ACTIONS]


def test_env_overrides_yaml(monkeypatch, tmp_path):
    config = tmp_path / "notechat.yaml"
    config.write_text("model: from-yaml\napi_key: yaml-key\ntemperature: 0.3\n", encoding="utf-8")
    monkeypatch.setenv("NOTECHAT_CONFIG_FILE", str(config))
    monkeypatch.setenv("NOTECHAT_MODEL", " from-env ")

    cfg = AssistantSettings(_env_file=None)
    assert cfg.model == "from-env"
    assert cfg.api_key == "yaml-key"
    assert cfg.temperature == 0.3


@pytest.mark.parametrize("field,value", [("temperature", 1.5), ("max_tokens", 0), ("http_timeout", 0)])
def test_out_of_range_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        AssistantSettings(_env_file=None, **{field: value})


def _record(msg, extra=None):
    record = logging.LogRecord("notechat_core", logging.INFO, __file__, 1, msg, None, None)
    if extra is not None:
        record.extra = extra
    return record


def test_json_formatter_merges_extra():
    line = JsonFormatter().format(_record("chat.start", {"url": "http://x", "stream": True}))
    payload = json.loads(line)
    assert payload["msg"] == "chat.start"
    assert payload["level"] == "INFO"
    assert payload["url"] == "http://x"
    assert payload["ts"].endswith("Z")


def test_json_formatter_redacts_long_messages():
    payload = json.loads(JsonFormatter(redact_content=True).format(_record("x" * 200)))
    assert len(payload["msg"]) == 64


def test_log_level_is_normalized():
    assert AssistantSettings(_env_file=None, log_level=" debug ").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        AssistantSettings(_env_file=None, log_level="chatty")


class LogSettingsStub:
    log_dir = "logs"
    log_level = "DEBUG"
    log_redact_content = False


def test_debug_level_records_skipped_stream_lines(monkeypatch, caplog):
    monkeypatch.setattr("notechat_core.infrastructure.logging.logger.settings", LogSettingsStub())
    logger = logging.getLogger("notechat_core")
    previous = logger.level
    try:
        setup_logger()
        assert logger.isEnabledFor(logging.DEBUG)
        assert decode_event_line("data: {not json") is None
    finally:
        logger.setLevel(previous)
    assert "stream.decode_skip" in caplog.messages
