import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from chat_core.config.settings import settings

# 脱敏时每个字符串字段保留的最大长度
REDACT_LIMIT = 64


def _redact(value):
    if isinstance(value, str) and len(value) > REDACT_LIMIT:
        return value[:REDACT_LIMIT] + "..."
    return value


class JsonFormatter(logging.Formatter):
    """一行一个 JSON 对象；开启 log_redact_content 时截断消息和所有字符串字段。"""

    def format(self, record: logging.LogRecord) -> str:
        redact = settings.log_redact_content
        msg = record.getMessage() or ""
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": _redact(msg) if redact else msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            # 用户内容会出现在 frame、error 等结构化字段里，脱敏必须覆盖它们
            payload.update({k: _redact(v) for k, v in extra.items()} if redact else extra)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("chat_core")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "chat.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


def log_event(level: int, message: str, log_ctx: dict, **fields) -> None:
    """带结构化字段写日志，字段会被 JsonFormatter 平铺到输出中。"""
    payload = dict(log_ctx)
    payload.update(fields)
    logger.log(level, message, extra={"extra": payload})


logger = setup_logger()
