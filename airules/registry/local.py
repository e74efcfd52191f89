"""本地 registry — 文件系统目录 / 本地 git 仓库

路径在构造时即校验，之后每次操作前复查（路径可能在运行期间被移动或删除）:
  父目录存在、路径不存在   -> RepositoryMovedError
  父目录也不存在           -> RepositoryNotFoundError
  路径存在但缺少仓库标记   -> InvalidRepositoryError
  不可读                   -> PermissionDeniedError
  git 命令失败             -> CorruptedRepositoryError
"""

from __future__ import annotations

import errno
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from airules.core.exceptions import (
    CorruptedRepositoryError,
    GitCommandError,
    InvalidRepositoryError,
    PermissionDeniedError,
    RepositoryMovedError,
    RepositoryNotFoundError,
    ResolutionError,
)
from airules.core.models import RegistrySpec
from airules.core.pattern import read_matching_files
from airules.core.resolver import RefSource
from airules.core.semver import Version
from airules.registry.archive import extract_files
from airules.registry.base import Registry
from airules.registry.git import GitRegistry, GitStrategy
from airules.registry.package import ListedVersions
from airules.utils.net import CancelToken
from airules.utils.shell import CommandExecutor

if TYPE_CHECKING:
    from airules.cache.content import ContentCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

PACKAGE_FILE = "ruleset.tar.gz"


def validate_local_repository(raw_path: str | Path, *, require_git: bool = False) -> Path:
    """校验本地仓库路径，返回绝对路径；问题以 LocalRepositoryError 子类抛出"""
    path = Path(os.path.expanduser(str(raw_path))).absolute()
    try:
        exists = path.exists()
    except PermissionError as e:
        raise PermissionDeniedError(str(path)) from e
    if not exists:
        if path.parent.exists():
            raise RepositoryMovedError(str(path))
        raise RepositoryNotFoundError(str(path))
    if not path.is_dir():
        raise InvalidRepositoryError(str(path), "不是目录")
    if not os.access(path, os.R_OK | os.X_OK):
        raise PermissionDeniedError(str(path))
    if require_git and not (path / ".git").exists():
        raise InvalidRepositoryError(str(path), "缺少 .git")
    return path


def _version_sort_key(name: str) -> tuple[int, object]:
    v = Version.parse(name)
    # 非 semver 目录按名字排在前，semver 按版本序在后，最后一个即最高版本
    return (1, v) if v is not None else (0, name)


# =========================================================================
# 文件系统目录
# =========================================================================

class FilesystemRegistry(Registry):
    """目录布局: <root>/<ruleset>/<version>/，版本目录内是文件树或 ruleset.tar.gz

    latest 为排序后的最后一个版本（semver 最高者）。
    """

    def __init__(self, spec: RegistrySpec, cache: ContentCache | None = None) -> None:
        super().__init__(spec, cache)
        self.root = validate_local_repository(spec.url)

    def _check(self) -> Path:
        return validate_local_repository(self.root)

    def _ruleset_dir(self, ruleset: str) -> Path:
        root = self._check()
        target = root / ruleset
        if ".." in ruleset or not target.is_dir():
            raise ResolutionError(f"本地目录中不存在规则集: {ruleset} ({root})", ruleset=ruleset)
        return target

    def _list_versions(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        rdir = self._ruleset_dir(ruleset)
        try:
            names = [
                p.name for p in rdir.iterdir()
                if p.is_dir() and not p.name.startswith(".")
            ]
        except PermissionError as e:
            raise PermissionDeniedError(str(rdir)) from e
        return sorted(names, key=_version_sort_key)

    def _ref_source(self, ruleset: str, cancel: CancelToken | None) -> RefSource:
        return ListedVersions(lambda: self._list_versions(ruleset, cancel), ruleset=ruleset)

    def _fetch_files(
        self, ruleset: str, version: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        vdir = self._ruleset_dir(ruleset) / version
        if ".." in version or not vdir.is_dir():
            raise ResolutionError(f"版本不存在: {ruleset}@{version}", ruleset=ruleset, spec=version)
        archive = vdir / PACKAGE_FILE
        try:
            if archive.is_file():
                return extract_files(archive.read_bytes(), patterns)
            return read_matching_files(vdir, patterns)
        except PermissionError as e:
            raise PermissionDeniedError(str(vdir)) from e


# =========================================================================
# 本地 git 仓库
# =========================================================================

class LocalGitRegistry(GitRegistry):
    """对本地路径执行 clone 操作（只读，不修改用户的工作区）

    每次操作前都 fetch，保证本地新提交立即可见。
    """

    def __init__(
        self,
        spec: RegistrySpec,
        cache: ContentCache | None = None,
        *,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.path = validate_local_repository(spec.url, require_git=True)
        super().__init__(spec, cache, executor=executor)

    def _build_strategies(self) -> list[GitStrategy]:
        return [self._clone_strategy(refresh_interval=0, source=str(self.path))]

    def _run(self, fn: Callable[[GitStrategy], T]) -> T:
        validate_local_repository(self.path, require_git=True)
        try:
            return super()._run(fn)
        except GitCommandError as e:
            # 先区分路径被移动/删除，其余 git 失败视为仓库损坏
            validate_local_repository(self.path, require_git=True)
            raise CorruptedRepositoryError(str(self.path), e.stderr.strip()[:200]) from e
        except OSError as e:
            if e.errno == errno.EACCES:
                raise PermissionDeniedError(str(self.path)) from e
            raise
