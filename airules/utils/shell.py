"""子进程执行工具 — git 调用的统一入口

通过 CommandExecutor 协议抽象子进程执行，方便测试注入假实现。
默认实现支持超时与 CancelToken：取消时终止子进程。
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Protocol

from airules.core.exceptions import OperationCancelledError, TransportError
from airules.utils.net import CancelToken

logger = logging.getLogger(__name__)

# 等待子进程时检查取消令牌的间隔（秒）
_POLL_INTERVAL = 0.2


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议

    测试时可注入假实现，记录调用参数并返回预设结果。
    """

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        ...


# =========================================================================
# 默认实现: 本地子进程
# =========================================================================

class LocalExecutor:
    """本地子进程执行器"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        full_env = {**os.environ, **env} if env else None
        try:
            proc = subprocess.Popen(  # noqa: S603
                cmd, cwd=cwd, env=full_env, text=True,
                stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            raise TransportError(f"无法启动 {cmd[0]}: {e}") from e

        deadline = time.monotonic() + timeout if timeout else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.cancelled:
                    self._kill(proc)
                    raise OperationCancelledError(
                        f"操作已取消: {' '.join(cmd[:3])}"
                    ) from None
                if deadline is not None and time.monotonic() > deadline:
                    self._kill(proc)
                    raise TransportError(
                        f"命令超时 ({timeout}s): {' '.join(cmd[:3])}"
                    ) from None

        return CommandResult(returncode=proc.returncode, stdout=stdout, stderr=stderr)

    @staticmethod
    def _kill(proc: subprocess.Popen[str]) -> None:
        proc.kill()
        proc.communicate()


# =========================================================================
# 全局默认执行器（可替换）
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor
