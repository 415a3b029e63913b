import json
import logging

from byok_chat.config.settings import settings
from byok_chat.infrastructure.logging.logger import JsonFormatter


def _record(msg, extra):
    record = logging.LogRecord("byok_chat", logging.INFO, __file__, 1, msg, None, None)
    record.extra = extra
    return record


def test_formatter_merges_extra_and_masks_tokens(monkeypatch):
    monkeypatch.setattr(settings, "log_redact_content", False)
    line = JsonFormatter().format(_record("Opening chat stream", {"trace_id": "tr-1", "token": "secret", "content": "hi"}))
    data = json.loads(line)
    assert data["msg"] == "Opening chat stream"
    assert data["trace_id"] == "tr-1"
    assert data["token"] == "***"
    assert data["content"] == "hi"
    assert data["ts"].endswith("Z")


def test_formatter_redacts_content(monkeypatch):
    monkeypatch.setattr(settings, "log_redact_content", True)
    data = json.loads(JsonFormatter().format(_record("x" * 100, {"content": "hello world"})))
    assert data["msg"] == "x" * 64
    assert data["content"] == "<11 chars>"
