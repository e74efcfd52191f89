"""airules 日志配置

命令结果走 stdout，日志一律走 stderr。CI 中设置 AIRULES_LOG_JSON=1 切换为
逐行 JSON，registry / ruleset / version 通过 extra 附加后会作为独立字段输出。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("registry", "ruleset", "version")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


def parse_level(level: str | int) -> int:
    """'debug' / 'WARNING' / 10 都接受，无法识别时退回 INFO"""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    return value if isinstance(value, int) else logging.INFO


class JSONFormatter(logging.Formatter):
    """每条记录一行 JSON

    固定字段 timestamp / level / logger / message / thread，
    上下文字段只在 extra 中给出非空值时出现，异常堆栈放在 exception。
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, object] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        payload.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None)
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str | int = "INFO", json_output: bool = False) -> None:
    """(重新)配置根日志器，重复调用只保留一个 handler"""
    reset_logging()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(parse_level(level))


def reset_logging() -> None:
    """移除并关闭根日志器上的全部 handler"""
    root = logging.getLogger()
    while root.handlers:
        handler = root.handlers[0]
        root.removeHandler(handler)
        handler.close()
