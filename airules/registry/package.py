"""包类 registry 公共部分

版本即发布的包版本号（不是 git 引用）；内容是 ruleset.tar.gz。
原始包在后台线程写入缓存，调用方直接使用内存中的副本。
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Callable

from airules.core.exceptions import ResolutionError
from airules.registry.archive import extract_files
from airules.registry.base import Registry
from airules.utils.net import CancelToken

logger = logging.getLogger(__name__)


class ListedVersions:
    """以已发布版本列表为引用来源（列表按发布先后排序，最后一个即 latest）"""

    def __init__(self, loader: Callable[[], list[str]], *, ruleset: str = "") -> None:
        self._loader = loader
        self._versions: list[str] | None = None
        self._ruleset = ruleset

    def _all(self) -> list[str]:
        if self._versions is None:
            self._versions = list(self._loader())
        return self._versions

    def latest(self) -> str:
        versions = self._all()
        if not versions:
            raise ResolutionError(f"{self._ruleset} 没有已发布版本", ruleset=self._ruleset)
        return versions[-1]

    def lookup(self, ref: str) -> str | None:
        return ref if ref in self._all() else None

    def list_tags(self) -> list[str]:
        return self._all()

    def resolve_branch(self, name: str) -> str:
        # 包 registry 没有分支；非 semver 形式的版本号按原样精确匹配
        if name in self._all():
            return name
        raise ResolutionError(
            f"版本不存在: {self._ruleset}@{name}", ruleset=self._ruleset, spec=name,
        )


class PackageRegistry(Registry):
    """下载 ruleset.tar.gz 并在内存中解包的 registry"""

    def _fetch_files(
        self, ruleset: str, version: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        data = None
        if self.cache is not None:
            data = self.cache.get_package(self.type, self.url, ruleset, version)
        if data is None:
            data = self._download_package(ruleset, version, cancel)
            logger.info("下载完成: %s@%s (%d 字节)", ruleset, version, len(data))
            if self.cache is not None:
                self.cache.store_package_async(self.type, self.url, ruleset, version, data)
        return extract_files(data, patterns)

    @abstractmethod
    def _download_package(self, ruleset: str, version: str, cancel: CancelToken | None) -> bytes:
        ...
