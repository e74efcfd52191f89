"""git 命令封装

只实现解析引用和读取内容所需的最小 git 语义：clone / fetch / rev-parse / tag / checkout。
所有调用经 CommandExecutor 执行，失败抛 GitCommandError。
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from airules.core.exceptions import GitCommandError, ResolutionError
from airules.utils.net import CancelToken
from airules.utils.shell import CommandExecutor, CommandResult, get_executor

logger = logging.getLogger(__name__)

# 远端未设置 origin/HEAD 时依次尝试的默认分支
DEFAULT_BRANCH_CANDIDATES = ("main", "master")

# 非交互：凭据缺失时立即失败而不是等待输入
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0", "GIT_ASKPASS": "echo", "LC_ALL": "C"}


class GitRepo:
    """本地 git 工作目录"""

    def __init__(
        self,
        path: Path,
        *,
        executor: CommandExecutor | None = None,
        timeout: float | None = None,
        auth_token: str = "",
    ) -> None:
        self.path = Path(path)
        self.executor = executor or get_executor()
        self.timeout = timeout
        self._auth_token = auth_token

    @property
    def exists(self) -> bool:
        return (self.path / ".git").exists()

    def _auth_args(self) -> list[str]:
        # 只通过 -c 临时注入，不写进 .git/config
        if not self._auth_token:
            return []
        return ["-c", f"http.extraHeader=Authorization: Bearer {self._auth_token}"]

    def run(
        self, *args: str,
        cancel: CancelToken | None = None,
        network: bool = False,
        check: bool = True,
        cwd: Path | None = None,
    ) -> CommandResult:
        cmd = ["git", *(self._auth_args() if network else []), *args]
        logger.debug("git %s (cwd=%s)", " ".join(args), cwd or self.path)
        result = self.executor.execute(
            cmd, cwd=str(cwd or self.path), env=_GIT_ENV,
            timeout=self.timeout, cancel=cancel,
        )
        if check and not result.success:
            raise GitCommandError(list(args), result.returncode, result.stderr)
        return result

    # ---- 网络操作 ----

    def clone(self, url: str, cancel: CancelToken | None = None) -> None:
        """完整 clone 到 self.path（先清理残留的半成品目录）"""
        if self.path.exists():
            shutil.rmtree(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("git clone %s -> %s", url, self.path)
        self.run(
            "clone", "--quiet", "--no-checkout", url, str(self.path),
            cancel=cancel, network=True, cwd=self.path.parent,
        )

    def fetch(self, cancel: CancelToken | None = None) -> None:
        self.run(
            "fetch", "--quiet", "--tags", "--prune", "--force", "origin",
            cancel=cancel, network=True,
        )
        # 远端默认分支可能变化，失败（例如本地 bare 源）不影响后续解析
        self.run("remote", "set-head", "origin", "--auto", cancel=cancel, network=True, check=False)

    # ---- 引用解析 ----

    def rev_parse(self, ref: str, cancel: CancelToken | None = None) -> str | None:
        """解析为 commit SHA（附注 tag 会被剥离到 commit），不存在返回 None"""
        r = self.run(
            "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}",
            cancel=cancel, check=False,
        )
        sha = r.stdout.strip()
        return sha if r.success and sha else None

    def default_branch(self, cancel: CancelToken | None = None) -> str:
        r = self.run(
            "symbolic-ref", "--quiet", "refs/remotes/origin/HEAD",
            cancel=cancel, check=False,
        )
        ref = r.stdout.strip()
        if r.success and ref:
            return ref.removeprefix("refs/remotes/origin/")
        for candidate in DEFAULT_BRANCH_CANDIDATES:
            if self.rev_parse(f"refs/remotes/origin/{candidate}", cancel):
                return candidate
        raise ResolutionError(f"无法确定默认分支: {self.path}")

    def head_of_default_branch(self, cancel: CancelToken | None = None) -> str:
        branch = self.default_branch(cancel)
        sha = self.rev_parse(f"refs/remotes/origin/{branch}", cancel)
        if not sha:
            raise ResolutionError(f"默认分支 {branch} 不存在: {self.path}")
        return sha

    def branch_commit(self, name: str, cancel: CancelToken | None = None) -> str | None:
        return self.rev_parse(f"refs/remotes/origin/{name}", cancel)

    def tag_commit(self, tag: str, cancel: CancelToken | None = None) -> str | None:
        return self.rev_parse(f"refs/tags/{tag}", cancel)

    def tags(self, cancel: CancelToken | None = None) -> list[str]:
        r = self.run("tag", "--list", cancel=cancel)
        return [t.strip() for t in r.stdout.splitlines() if t.strip()]

    def has_commit(self, sha: str, cancel: CancelToken | None = None) -> bool:
        return self.rev_parse(sha, cancel) is not None

    # ---- 工作区 ----

    def checkout(self, sha: str, cancel: CancelToken | None = None) -> None:
        self.run("checkout", "--quiet", "--force", "--detach", sha, cancel=cancel)
