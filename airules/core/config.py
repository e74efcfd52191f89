"""集中配置管理

从 YAML 加载缓存目录、并发度与命名 registry，提供统一的配置入口。

示例 (.airules.yml):
    cache_dir: ~/.airules/cache
    default_concurrency: 0
    registry_types:
      git: {concurrency: 4}
    default_registry: default
    registries:
      default: {type: git, url: https://github.com/org/rules, api_type: github}
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from airules.core.exceptions import ConfigError
from airules.core.models import RegistrySpec
from airules.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".airules.yml"

# 未配置任何并发度时的按类型兜底值
FALLBACK_CONCURRENCY = {
    "gitlab": 2,
    "s3": 8,
    "http": 4,
    "filesystem": 10,
}
FALLBACK_CONCURRENCY_OTHER = 3


@dataclass
class Config:
    """全局配置"""

    cache_dir: str = "~/.airules/cache"
    default_concurrency: int = 0
    default_registry: str = ""
    registry_types: dict = field(default_factory=dict)
    registries: dict = field(default_factory=dict)

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    @property
    def cache_path(self) -> Path:
        return Path(os.path.expanduser(self.cache_dir))

    def registry_specs(self) -> dict[str, RegistrySpec]:
        """解析全部 registry，任一非法抛 ConfigError（附 registry 名）"""
        if not isinstance(self.registries, dict):
            raise ConfigError("registries 必须是 name -> 配置 的字典")
        return {
            name: RegistrySpec.from_dict(name, data)
            for name, data in self.registries.items()
        }

    def type_concurrency(self, registry_type: str) -> int:
        """registry_types.<type>.concurrency，未配置返回 0"""
        entry: Any = (self.registry_types or {}).get(registry_type) or {}
        if isinstance(entry, dict):
            try:
                return max(int(entry.get("concurrency", 0)), 0)
            except (TypeError, ValueError):
                logger.warning("registry_types.%s.concurrency 非整数，忽略", registry_type)
        return 0

    def global_concurrency(self) -> int:
        """default_concurrency 转为整数（YAML 中写成字符串也接受）

        Raises:
            ConfigError: 不是整数
        """
        value = self.default_concurrency
        if value is None or value == "":
            return 0
        if isinstance(value, bool):
            raise ConfigError(f"default_concurrency 必须是整数: {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"default_concurrency 必须是整数: {value!r}") from e

    def resolve_concurrency(self, spec: RegistrySpec) -> int:
        """并发度优先级: 来源覆盖 > 类型默认 > 全局默认 > 按类型兜底"""
        for value in (
            spec.concurrency,
            self.type_concurrency(spec.type),
            self.global_concurrency(),
        ):
            if value and value > 0:
                return int(value)
        return FALLBACK_CONCURRENCY.get(spec.type, FALLBACK_CONCURRENCY_OTHER)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str | None = None) -> Config:
    """从文件初始化全局配置，path 缺省取 $AIRULES_CONFIG 或 .airules.yml"""
    global _current  # noqa: PLW0603
    path = path or os.getenv("AIRULES_CONFIG", DEFAULT_CONFIG_FILE)
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
