import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from byok_chat.config.settings import settings


# 这些字段可能带有用户输入或模型输出
CONTENT_FIELDS = ("content", "user_text", "message", "detail")
SECRET_FIELDS = ("token", "api_key", "authorization")


def _redact(payload: dict) -> dict:
    out = {}
    for key, value in payload.items():
        lowered = key.lower()
        if any(s in lowered for s in SECRET_FIELDS):
            out[key] = "***"
        elif settings.log_redact_content and lowered in CONTENT_FIELDS and isinstance(value, str):
            out[key] = f"<{len(value)} chars>"
        else:
            out[key] = value
    return out


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(_redact(extra))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("byok_chat")
    logger.setLevel(settings.log_level.upper())
    if any(getattr(h, "_byok_chat", False) for h in logger.handlers):
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "chat.log", encoding="utf-8")
    fh._byok_chat = True
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


logger = setup_logger()
