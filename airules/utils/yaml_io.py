"""配置与缓存文件读写

.airules.yml 通过 load_yaml 读取，格式问题统一转成 ConfigError；
缓存目录下的 JSON（versions.json / metadata.json / entry.json）一律原子替换写入。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from airules.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

# 配置文件上限 1MB，正常的 registry 配置远小于此
MAX_CONFIG_BYTES = 1024 * 1024


def atomic_write(path: Path, content: str | bytes) -> None:
    """写同目录临时文件后 os.replace，并发读者只会看到完整内容

    Raises:
        OSError: 写入或替换失败（临时文件已清理）
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    data = content.encode("utf-8") if isinstance(content, str) else content
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 配置；文件不存在或为空返回 {}

    Raises:
        ConfigError: 文件过大、语法错误或顶层不是映射
    """
    p = Path(path)
    if not p.is_file():
        return {}
    size = p.stat().st_size
    if size > MAX_CONFIG_BYTES:
        raise ConfigError(f"配置文件过大: {p} ({size} 字节，上限 {MAX_CONFIG_BYTES})")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"配置文件 YAML 语法错误: {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"配置文件顶层必须是映射: {p} (实际为 {type(data).__name__})")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """读取 JSON 对象文件，不存在返回 {}

    Raises:
        ValueError: JSON 损坏或顶层不是对象
        OSError: IO 错误
    """
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} 顶层不是 JSON 对象")
    return data


def save_json(path: Path, data: dict[str, Any]) -> None:
    """原子写入 JSON（键排序，便于人工比对）"""
    atomic_write(path, json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False))
