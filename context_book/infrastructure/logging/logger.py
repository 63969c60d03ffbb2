import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from context_book.config.settings import settings

# 每条请求日志都带上的上下文字段，输出在顶层
CONTEXT_FIELDS = ("trace_id", "provider", "model", "document_id")


class JsonFormatter(logging.Formatter):
    """每条日志输出一行 JSON。

    extra={"extra": {...}} 中的 trace_id/provider/model/document_id 放在顶层，
    其余字段（耗时、token 数、错误码等）放进 fields。
    """

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            fields = dict(extra)
            for key in CONTEXT_FIELDS:
                value = fields.pop(key, None)
                if value is not None:
                    payload[key] = value
            if fields:
                payload["fields"] = fields
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("context_book")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / "context_book.log", encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger


logger = setup_logger()


def log_event(
    level: int,
    message: str,
    log_ctx: Optional[Dict[str, Any]],
    exc_info: Any = None,
    **fields: Any,
) -> None:
    """以 log_ctx（trace_id、provider 等）为基础记录一条结构化日志。"""

    payload = dict(log_ctx or {})
    payload.update(fields)
    logger.log(level, message, exc_info=exc_info, extra={"extra": payload})
