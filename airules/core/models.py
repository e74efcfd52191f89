"""核心数据模型

RegistrySpec / ContentSelector / 下载任务与结果 / 缓存索引与条目 / 锁文件条目。
"""

from __future__ import annotations

import hashlib
import os
import re
import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from airules.core.exceptions import BatchInstallError, ConfigError
from airules.core.pattern import matches_any_pattern

if TYPE_CHECKING:
    from airules.utils.net import CancelToken

# specifier -> resolved 映射的新鲜期（秒）
VERSIONS_TTL_SECONDS = 300

REGISTRY_TYPES = ("git", "gitlab", "https", "s3", "http", "filesystem", "git-local")

_ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


# =========================================================================
# Registry 配置
# =========================================================================

@dataclass(frozen=True)
class RegistrySpec:
    """单个命名来源的配置（不可变）"""

    name: str
    type: str
    url: str
    auth_token: str = ""
    timeout: int = 30
    concurrency: int = 0  # 0 表示不覆盖，按类型默认
    api_type: str = ""  # git 专用: github / gitlab / 空（按域名推断）
    project_id: str = ""  # gitlab packages 专用
    region: str = ""  # s3 专用
    prefix: str = ""  # s3 对象键前缀

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> RegistrySpec:
        """从配置字典构造，字段非法抛 ConfigError

        auth_token 支持 ${ENV_VAR} 引用。
        """
        if not isinstance(data, dict):
            raise ConfigError(f"registry '{name}' 配置必须是字典")
        rtype = str(data.get("type", "")).strip()
        if rtype not in REGISTRY_TYPES:
            raise ConfigError(
                f"registry '{name}' 类型无效: '{rtype}'，可选: {', '.join(REGISTRY_TYPES)}"
            )
        url = str(data.get("url", "")).strip()
        if not url:
            raise ConfigError(f"registry '{name}' 缺少 url")
        try:
            timeout = int(data.get("timeout", 30))
            concurrency = int(data.get("concurrency", 0))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"registry '{name}' timeout/concurrency 必须是整数") from e
        if timeout <= 0 or concurrency < 0:
            raise ConfigError(f"registry '{name}' timeout 必须 > 0，concurrency 必须 >= 0")
        if rtype == "gitlab" and not data.get("project_id"):
            raise ConfigError(f"gitlab registry '{name}' 缺少 project_id")
        return cls(
            name=name,
            type=rtype,
            url=url,
            auth_token=expand_env(str(data.get("auth_token", "") or "")),
            timeout=timeout,
            concurrency=concurrency,
            api_type=str(data.get("api_type", "") or "").lower(),
            project_id=str(data.get("project_id", "") or ""),
            region=str(data.get("region", "") or ""),
            prefix=str(data.get("prefix", "") or "").strip("/"),
        )


def expand_env(value: str) -> str:
    """展开 ${VAR}，未定义的变量替换为空串"""
    return _ENV_REF_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)


# =========================================================================
# 内容选择
# =========================================================================

@dataclass(frozen=True)
class ContentSelector:
    """决定拉取哪些仓库相对路径：命中任一 pattern 且不命中任何 exclude"""

    patterns: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()

    @classmethod
    def of(cls, patterns: list[str] | tuple[str, ...] | None = None,
           excludes: list[str] | tuple[str, ...] | None = None) -> ContentSelector:
        return cls(tuple(patterns or ()), tuple(excludes or ()))

    def selects(self, path: str) -> bool:
        if not matches_any_pattern(path, self.patterns):
            return False
        return not (self.excludes and matches_any_pattern(path, self.excludes))

    def filter(self, files: dict[str, bytes]) -> dict[str, bytes]:
        return {p: data for p, data in files.items() if self.selects(p)}

    @property
    def cache_patterns(self) -> list[str]:
        """缓存层记录的 pattern 集合；空 pattern 即全部文件"""
        return list(self.patterns) if self.patterns else ["**"]


# =========================================================================
# 缓存
# =========================================================================

@dataclass
class VersionsIndex:
    """单个规则集的版本索引：已知版本集合 + specifier→resolved 映射

    版本集合与每条映射各自计时：fetched_at 只在重新列出版本时刷新，
    mapped_at 记录每条映射最后一次解析的时间（缺失时按 fetched_at 计）。
    """

    versions: list[str] = field(default_factory=list)
    mappings: dict[str, str] = field(default_factory=dict)
    fetched_at: float = 0.0
    mapped_at: dict[str, float] = field(default_factory=dict)

    def is_fresh(self, now: float | None = None, ttl: float = VERSIONS_TTL_SECONDS) -> bool:
        """版本集合是否仍在有效期内"""
        now = time.time() if now is None else now
        return now - self.fetched_at < ttl

    def mapping(self, spec: str, now: float | None = None, ttl: float = VERSIONS_TTL_SECONDS) -> str | None:
        if spec not in self.mappings:
            return None
        now = time.time() if now is None else now
        if now - self.mapped_at.get(spec, self.fetched_at) >= ttl:
            return None
        return self.mappings[spec]

    def prune(self, now: float | None = None, ttl: float = VERSIONS_TTL_SECONDS) -> None:
        """丢弃过期的版本集合和映射"""
        now = time.time() if now is None else now
        stale = [s for s in self.mappings if self.mapping(s, now, ttl) is None]
        for spec in stale:
            del self.mappings[spec]
            self.mapped_at.pop(spec, None)
        if not self.is_fresh(now, ttl):
            self.versions = []

    @property
    def empty(self) -> bool:
        return not self.versions and not self.mappings

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VersionsIndex:
        return cls(
            versions=[str(v) for v in data.get("versions", [])],
            mappings={str(k): str(v) for k, v in data.get("mappings", {}).items()},
            fetched_at=float(data.get("fetched_at", 0.0)),
            mapped_at={str(k): float(v) for k, v in data.get("mapped_at", {}).items()},
        )


@dataclass
class CacheEntry:
    """某个 (registry, ruleset, resolvedVersion) 的缓存记账信息"""

    registry_type: str
    registry_url: str
    ruleset: str
    version: str
    file_count: int = 0
    total_bytes: int = 0
    last_fetched: float = 0.0
    last_accessed: float = 0.0
    access_count: int = 0
    patterns: list[str] = field(default_factory=list)


# =========================================================================
# 下载任务
# =========================================================================

@dataclass
class LockEntry:
    """安装完成后交给锁文件协作方的数据"""

    ruleset: str
    version_spec: str
    resolved_version: str
    registry: str
    checksum: str
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version_spec,
            "resolved": self.resolved_version,
            "registry": self.registry,
            "checksum": self.checksum,
        }


def content_checksum(files: dict[str, bytes]) -> str:
    """按路径排序后对 路径+内容 计算 sha256，与文件系统遍历顺序无关"""
    h = hashlib.sha256()
    for path in sorted(files):
        h.update(path.encode("utf-8"))
        h.update(b"\0")
        h.update(files[path])
        h.update(b"\0")
    return f"sha256:{h.hexdigest()}"


@dataclass
class DownloadJob:
    """单个下载任务"""

    ruleset: str
    version_spec: str
    registry_name: str
    dest_dir: str
    selector: ContentSelector = field(default_factory=ContentSelector)
    cancel: CancelToken | None = None

    @property
    def label(self) -> str:
        return f"{self.registry_name}@{self.ruleset}@{self.version_spec}"


@dataclass
class DownloadResult:
    """单个下载任务的结果，error 为 None 表示成功"""

    job: DownloadJob
    error: Exception | None = None
    entry: LockEntry | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchSummary:
    """批量下载汇总: 全部成功 / 部分成功 X/Y / 全部失败"""

    results: list[DownloadResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[DownloadResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[DownloadResult]:
        return [r for r in self.results if not r.ok]

    @property
    def status(self) -> str:
        if not self.results or not self.failed:
            return "success"
        if self.succeeded:
            return "partial"
        return "failure"

    def describe(self) -> str:
        total = len(self.results)
        if self.status == "success":
            return f"全部成功: {total}/{total}"
        if self.status == "partial":
            return f"部分成功: {len(self.succeeded)}/{total}"
        return f"全部失败: 0/{total}"

    def failures(self) -> dict[str, str]:
        return {r.job.label: str(r.error) for r in self.failed}

    def raise_for_failure(self) -> None:
        """仅当全部任务失败时抛 BatchInstallError"""
        if self.status == "failure":
            raise BatchInstallError(self.describe(), failures=self.failures())
