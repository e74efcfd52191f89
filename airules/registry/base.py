"""Registry 抽象基类

对外契约:
  list_versions(name)                  -> ["latest", ...]
  resolve_version(name, spec)          -> 具体版本
  get_files(name, version, selector)   -> {相对路径: 内容}
  download_ruleset(name, spec, dest)   -> LockEntry
  close()

基类负责缓存包装（版本索引、文件缓存、回写）和传输异常的上下文补充，
子类只实现 _list_versions / _ref_source / _fetch_files 三个后端钩子。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from airules.core.exceptions import ResolutionError, TransportError, ValidationError
from airules.core.models import ContentSelector, LockEntry, RegistrySpec, content_checksum
from airules.core.resolver import RefSource, VersionResolver
from airules.core.semver import LATEST, is_latest
from airules.utils.net import CancelToken, HttpClient, UrllibHttpClient, check_cancelled
from airules.utils.yaml_io import atomic_write

if TYPE_CHECKING:
    from airules.cache.content import ContentCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Registry(ABC):
    """命名来源的统一访问接口"""

    def __init__(
        self,
        spec: RegistrySpec,
        cache: ContentCache | None = None,
        *,
        http: HttpClient | None = None,
    ) -> None:
        self.spec = spec
        self.cache = cache
        self.http: HttpClient = http or UrllibHttpClient(timeout=spec.timeout)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def type(self) -> str:
        return self.spec.type

    @property
    def url(self) -> str:
        return self.spec.url

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.url!r})"

    # =====================================================================
    # 对外契约
    # =====================================================================

    def list_versions(self, ruleset: str, cancel: CancelToken | None = None) -> list[str]:
        """可用版本列表，'latest' 哨兵在首位"""
        versions: list[str] | None = None
        if self.cache is not None:
            index = self.cache.get_versions(self.type, self.url, ruleset)
            if index is not None and index.versions:
                versions = index.versions
        if versions is None:
            check_cancelled(cancel, f"list versions {ruleset}")
            versions = self._guard(ruleset, "", lambda: self._list_versions(ruleset, cancel))
            if self.cache is not None:
                self.cache.update_versions(self.type, self.url, ruleset, versions=versions)
        return [LATEST, *(v for v in versions if v != LATEST)]

    def resolve_version(
        self, ruleset: str, spec: str, cancel: CancelToken | None = None,
    ) -> str:
        """版本说明符 -> 具体版本；非 latest 的结果写入映射缓存，再次解析不访问网络"""
        spec = spec.strip() or LATEST
        if self.cache is not None and not is_latest(spec):
            cached = self.cache.lookup_mapping(self.type, self.url, ruleset, spec)
            if cached:
                logger.debug("映射缓存命中: %s@%s -> %s", ruleset, spec, cached)
                return cached

        check_cancelled(cancel, f"resolve {ruleset}@{spec}")
        resolved = self._guard(ruleset, spec, lambda: self._resolve(ruleset, spec, cancel))
        logger.info("解析版本: %s@%s -> %s (%s)", ruleset, spec, resolved, self.name)
        if self.cache is not None and not is_latest(spec):
            self.cache.update_versions(self.type, self.url, ruleset, mappings={spec: resolved})
        return resolved

    def get_files(
        self,
        ruleset: str,
        version: str,
        selector: ContentSelector | None = None,
        cancel: CancelToken | None = None,
    ) -> dict[str, bytes]:
        """拉取已解析版本下命中 selector 的文件（先查缓存，未命中再访问后端并回写）"""
        if is_latest(version):
            raise ValidationError("get_files 需要已解析的具体版本，不能使用 'latest'")
        selector = selector or ContentSelector()
        patterns = selector.cache_patterns

        files: dict[str, bytes] | None = None
        if self.cache is not None:
            files = self.cache.get_ruleset_files(self.type, self.url, ruleset, version, patterns)
        if files is None:
            check_cancelled(cancel, f"fetch {ruleset}@{version}")
            files = self._guard(
                ruleset, version,
                lambda: self._fetch_files(ruleset, version, patterns, cancel),
            )
            logger.info(
                "拉取完成: %s@%s (%d 个文件, %s)", ruleset, version, len(files), self.name,
            )
            if self.cache is not None:
                self.cache.store_ruleset_files(
                    self.type, self.url, ruleset, version, files, patterns,
                )
        return selector.filter(files)

    def download_ruleset(
        self,
        ruleset: str,
        spec: str,
        dest_dir: str | Path,
        selector: ContentSelector | None = None,
        cancel: CancelToken | None = None,
    ) -> LockEntry:
        """解析 -> 拉取 -> 写入目标目录，返回锁文件条目"""
        resolved = self.resolve_version(ruleset, spec, cancel)
        files = self.get_files(ruleset, resolved, selector, cancel)
        if not files:
            raise ResolutionError(
                f"{ruleset}@{resolved} 中没有文件匹配 {list((selector or ContentSelector()).patterns)}",
                ruleset=ruleset, spec=spec,
            )
        check_cancelled(cancel, f"install {ruleset}")
        write_files(Path(dest_dir), files)
        return LockEntry(
            ruleset=ruleset,
            version_spec=spec,
            resolved_version=resolved,
            registry=self.name,
            checksum=content_checksum(files),
            files=sorted(files),
        )

    def close(self) -> None:
        """释放后端资源（默认无操作）"""

    def __enter__(self) -> Registry:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # =====================================================================
    # 后端钩子
    # =====================================================================

    @abstractmethod
    def _list_versions(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        ...

    @abstractmethod
    def _ref_source(self, ruleset: str, cancel: CancelToken | None) -> RefSource:
        ...

    @abstractmethod
    def _fetch_files(
        self, ruleset: str, version: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        ...

    def _resolve(self, ruleset: str, spec: str, cancel: CancelToken | None) -> str:
        return VersionResolver(self._ref_source(ruleset, cancel), ruleset=ruleset).resolve(spec)

    def _guard(self, ruleset: str, version: str, fn: Callable[[], T]) -> T:
        """为传输异常补充 registry / ruleset / version 上下文"""
        try:
            return fn()
        except TransportError as e:
            e.with_context(registry=self.name, ruleset=ruleset, version=version)
            raise


def write_files(dest_dir: Path, files: dict[str, bytes]) -> None:
    """按相对路径原子写入目标目录，拒绝越界路径"""
    root = dest_dir.resolve()
    for rel, data in sorted(files.items()):
        target = (root / rel).resolve()
        if ".." in rel or not target.is_relative_to(root):
            raise ValidationError(f"非法的文件路径: {rel}")
        atomic_write(target, data)
