"""git 仓库 registry

访问方式是构造时确定的有序策略列表，按序尝试、首个成功即返回:
  [GitHub API | GitLab API]（可选） -> clone（兜底，真值来源）

API 策略的任何传输失败（鉴权、限流、树被截断）都回退到 clone；
版本不存在等解析错误不回退。
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar
from urllib.parse import urlparse

from airules.cache.keys import normalize_url
from airules.core.exceptions import CacheError, ResolutionError, TransportError
from airules.core.models import VERSIONS_TTL_SECONDS, RegistrySpec
from airules.core.pattern import read_matching_files
from airules.core.resolver import RefSource, VersionResolver
from airules.registry.base import Registry
from airules.registry.git_ops import GitRepo
from airules.utils.net import CancelToken, HttpClient
from airules.utils.shell import CommandExecutor, get_executor

if TYPE_CHECKING:
    from airules.cache.content import ContentCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GitStrategy(ABC):
    """git 仓库的一种访问方式"""

    label: str = ""

    @abstractmethod
    def ref_source(self, cancel: CancelToken | None) -> RefSource:
        ...

    @abstractmethod
    def list_tags(self, cancel: CancelToken | None) -> list[str]:
        ...

    @abstractmethod
    def fetch_files(
        self, sha: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        ...


class ApiStrategy(GitStrategy):
    """REST API 策略需要提供的引用查询"""

    @abstractmethod
    def default_branch(self, cancel: CancelToken | None) -> str:
        ...

    @abstractmethod
    def branch_sha(self, name: str, cancel: CancelToken | None) -> str:
        ...

    @abstractmethod
    def tag_map(self, cancel: CancelToken | None) -> dict[str, str]:
        ...

    def ref_source(self, cancel: CancelToken | None) -> RefSource:
        return ApiRefSource(self, cancel)

    def list_tags(self, cancel: CancelToken | None) -> list[str]:
        return list(self.tag_map(cancel))


class ApiRefSource:
    """基于 REST API 的引用来源，单次解析期间复用 tag 列表"""

    def __init__(self, strategy: ApiStrategy, cancel: CancelToken | None) -> None:
        self._strategy = strategy
        self._cancel = cancel
        self._tags: dict[str, str] | None = None

    def _tag_map(self) -> dict[str, str]:
        if self._tags is None:
            self._tags = self._strategy.tag_map(self._cancel)
        return self._tags

    def latest(self) -> str:
        branch = self._strategy.default_branch(self._cancel)
        return self._strategy.branch_sha(branch, self._cancel)

    def lookup(self, ref: str) -> str | None:
        return self._tag_map().get(ref)

    def list_tags(self) -> list[str]:
        return list(self._tag_map())

    def resolve_branch(self, name: str) -> str:
        return self._strategy.branch_sha(name, self._cancel)


# =========================================================================
# clone 策略
# =========================================================================

class CloneStrategy(GitStrategy):
    """完整 clone 到缓存目录，checkout 后遍历文件

    同一仓库目录的 checkout + 遍历由 lock 串行化。
    """

    label = "clone"

    def __init__(
        self,
        url: str,
        repo: GitRepo,
        lock: threading.Lock,
        *,
        refresh_interval: float = VERSIONS_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url
        self.repo = repo
        self.lock = lock
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._fetched_at: float | None = None

    def _ensure(self, cancel: CancelToken | None) -> None:
        """调用方持有 lock：首次 clone，之后按间隔 fetch"""
        now = self._clock()
        if not self.repo.exists:
            self.repo.clone(self.url, cancel)
            self._fetched_at = now
        elif self._fetched_at is None or now - self._fetched_at >= self.refresh_interval:
            self.repo.fetch(cancel)
            self._fetched_at = now

    def with_repo(self, cancel: CancelToken | None, fn: Callable[[GitRepo], T]) -> T:
        with self.lock:
            self._ensure(cancel)
            return fn(self.repo)

    def ref_source(self, cancel: CancelToken | None) -> RefSource:
        return _CloneRefSource(self, cancel)

    def list_tags(self, cancel: CancelToken | None) -> list[str]:
        return self.with_repo(cancel, lambda repo: repo.tags(cancel))

    def fetch_files(
        self, sha: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        with self.lock:
            self._ensure(cancel)
            if not self.repo.has_commit(sha, cancel):
                self.repo.fetch(cancel)
                self._fetched_at = self._clock()
                if not self.repo.has_commit(sha, cancel):
                    raise ResolutionError(f"commit 不存在: {sha} ({self.url})", spec=sha)
            self.repo.checkout(sha, cancel)
            return read_matching_files(self.repo.path, patterns)


class _CloneRefSource:
    def __init__(self, strategy: CloneStrategy, cancel: CancelToken | None) -> None:
        self._strategy = strategy
        self._cancel = cancel

    def latest(self) -> str:
        return self._strategy.with_repo(
            self._cancel, lambda repo: repo.head_of_default_branch(self._cancel),
        )

    def lookup(self, ref: str) -> str | None:
        return self._strategy.with_repo(self._cancel, lambda repo: repo.tag_commit(ref, self._cancel))

    def list_tags(self) -> list[str]:
        return self._strategy.list_tags(self._cancel)

    def resolve_branch(self, name: str) -> str:
        sha = self._strategy.with_repo(
            self._cancel, lambda repo: repo.branch_commit(name, self._cancel),
        )
        if not sha:
            raise ResolutionError(f"分支或引用不存在: {name} ({self._strategy.url})", spec=name)
        return sha


# =========================================================================
# registry
# =========================================================================

def detect_api_type(spec: RegistrySpec) -> str:
    """决定是否启用 API 策略: 显式 api_type 优先；否则有 token 时按域名推断"""
    if spec.api_type in ("github", "gitlab"):
        return spec.api_type
    if spec.api_type in ("clone", "none") or not spec.auth_token:
        return ""
    host = urlparse(normalize_url("git", spec.url)).hostname or ""
    if "github" in host:
        return "github"
    if "gitlab" in host:
        return "gitlab"
    return ""


class GitRegistry(Registry):
    """远程 git 仓库（tag 即版本，规则集名只作标识，文件由 pattern 选择）"""

    def __init__(
        self,
        spec: RegistrySpec,
        cache: ContentCache | None = None,
        *,
        http: HttpClient | None = None,
        executor: CommandExecutor | None = None,
        strategies: list[GitStrategy] | None = None,
    ) -> None:
        super().__init__(spec, cache, http=http)
        self.executor = executor or get_executor()
        self._tmpdir: str | None = None
        self.strategies = strategies or self._build_strategies()

    def _build_strategies(self) -> list[GitStrategy]:
        strategies: list[GitStrategy] = []
        api = detect_api_type(self.spec)
        if api == "github":
            from airules.registry.github_api import GitHubApiStrategy
            strategies.append(GitHubApiStrategy(self.spec, self.http))
        elif api == "gitlab":
            from airules.registry.gitlab_api import GitLabApiStrategy
            strategies.append(GitLabApiStrategy(self.spec, self.http))
        strategies.append(self._clone_strategy())
        logger.debug("%s 访问策略: %s", self.name, [s.label for s in strategies])
        return strategies

    def _clone_strategy(
        self, refresh_interval: float = VERSIONS_TTL_SECONDS, source: str = "",
    ) -> CloneStrategy:
        path: Path | None = None
        if self.cache is not None:
            try:
                self.cache.ensure_cache_dir(self.type, self.url)
                path = self.cache.repository_path(self.type, self.url)
                lock = self.cache.repository_lock(self.type, self.url)
            except CacheError as e:
                logger.warning("%s: 缓存目录不可用，改用临时目录 clone: %s", self.name, e)
        if path is None:
            self._tmpdir = tempfile.mkdtemp(prefix="airules-git-")
            path = Path(self._tmpdir) / "repository"
            lock = threading.Lock()
        repo = GitRepo(
            path, executor=self.executor,
            timeout=self.spec.timeout * 10, auth_token=self.spec.auth_token,
        )
        return CloneStrategy(source or self.url, repo, lock, refresh_interval=refresh_interval)

    def _run(self, fn: Callable[[GitStrategy], T]) -> T:
        for i, strategy in enumerate(self.strategies):
            try:
                return fn(strategy)
            except TransportError as e:
                if i == len(self.strategies) - 1:
                    raise
                logger.warning(
                    "%s: %s 策略失败，回退到 %s: %s",
                    self.name, strategy.label, self.strategies[i + 1].label, e,
                )
        raise TransportError(f"{self.name} 没有可用的访问策略")

    def _list_versions(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        return self._run(lambda s: s.list_tags(cancel))

    def _ref_source(self, ruleset: str, cancel: CancelToken | None) -> RefSource:
        """只为满足基类接口；解析由 _resolve 按策略链完成"""
        return self.strategies[-1].ref_source(cancel)

    def _resolve(self, ruleset: str, spec: str, cancel: CancelToken | None) -> str:
        return self._run(
            lambda s: VersionResolver(s.ref_source(cancel), ruleset=ruleset).resolve(spec),
        )

    def _fetch_files(
        self, ruleset: str, version: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        return self._run(lambda s: s.fetch_files(version, patterns, cancel))

    def close(self) -> None:
        if self._tmpdir:
            shutil.rmtree(self._tmpdir, ignore_errors=True)
            self._tmpdir = None
