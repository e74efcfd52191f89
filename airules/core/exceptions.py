"""统一异常体系

所有业务异常继承 AIRulesError，每类带机器可读的 code。
CLI 层据此输出友好提示；批量下载据此逐项汇总失败原因。
"""

from __future__ import annotations


class AIRulesError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(AIRulesError):
    """配置缺失或 RegistrySpec 字段无效（只影响该 registry）"""

    code = "CONFIG_ERROR"


class ValidationError(AIRulesError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ResolutionError(AIRulesError):
    """版本说明符无法解析为具体版本"""

    code = "RESOLUTION_ERROR"

    def __init__(self, message: str, *, ruleset: str = "", spec: str = "") -> None:
        super().__init__(message)
        self.ruleset = ruleset
        self.spec = spec


class TransportError(AIRulesError):
    """网络 / API / git 调用失败

    上层通过 with_context() 补充 registry / ruleset / version 上下文，
    str() 时作为前缀输出。
    """

    code = "TRANSPORT_ERROR"

    def __init__(
        self, message: str, *,
        registry: str = "", ruleset: str = "", version: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.registry = registry
        self.ruleset = ruleset
        self.version = version

    def with_context(
        self, *, registry: str = "", ruleset: str = "", version: str = "",
    ) -> TransportError:
        # 只补空缺字段，保留最内层的上下文
        self.registry = self.registry or registry
        self.ruleset = self.ruleset or ruleset
        self.version = self.version or version
        return self

    def __str__(self) -> str:
        target = self.ruleset
        if target and self.version:
            target = f"{target}@{self.version}"
        parts = [p for p in (self.registry, target) if p]
        if not parts:
            return self.message
        return f"[{' '.join(parts)}] {self.message}"


class HttpStatusError(TransportError):
    """HTTP 非 2xx 响应"""

    code = "HTTP_STATUS_ERROR"

    def __init__(self, url: str, status: int, reason: str = "") -> None:
        label = f"HTTP {status} {reason}" if reason else f"HTTP {status}"
        super().__init__(f"{label}: {url}")
        self.url = url
        self.status = status


class GitCommandError(TransportError):
    """git 子进程返回非零"""

    code = "GIT_ERROR"

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        super().__init__(
            f"git {' '.join(args)} 失败 (rc={returncode}): {stderr.strip()[:300]}"
        )
        self.returncode = returncode
        self.stderr = stderr


class LocalRepositoryError(AIRulesError):
    """本地仓库路径问题，附带修复建议"""

    code = "LOCAL_REPOSITORY_ERROR"
    suggestion: str = ""

    def __init__(self, path: str, message: str = "") -> None:
        super().__init__(message or f"{self.code}: {path}")
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}（建议: {self.suggestion}）" if self.suggestion else base


class RepositoryNotFoundError(LocalRepositoryError):
    code = "REPOSITORY_NOT_FOUND"
    suggestion = "检查配置中的路径是否正确，或先创建该目录"

    def __init__(self, path: str) -> None:
        super().__init__(path, f"本地仓库不存在: {path}")


class RepositoryMovedError(LocalRepositoryError):
    code = "REPOSITORY_MOVED"
    suggestion = "仓库可能已被移动或删除，请更新 registry 配置中的路径"

    def __init__(self, path: str) -> None:
        super().__init__(path, f"本地仓库已移动或删除（父目录仍存在）: {path}")


class InvalidRepositoryError(LocalRepositoryError):
    code = "INVALID_REPOSITORY"
    suggestion = "确认路径指向正确的仓库根目录（git-local 需要包含 .git）"

    def __init__(self, path: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(path, f"不是有效的规则仓库 {path}{detail}")


class CorruptedRepositoryError(LocalRepositoryError):
    code = "CORRUPTED_REPOSITORY"
    suggestion = "执行 git fsck 检查，必要时重新 clone 该仓库"

    def __init__(self, path: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(path, f"本地 git 仓库已损坏 {path}{detail}")


class PermissionDeniedError(LocalRepositoryError):
    code = "PERMISSION_DENIED"
    suggestion = "检查目录读权限（chmod / 所属用户）"

    def __init__(self, path: str) -> None:
        super().__init__(path, f"无权读取本地仓库: {path}")


class CacheError(AIRulesError):
    """缓存读写失败（调用方记 warning 并按未命中处理）"""

    code = "CACHE_ERROR"


class OperationCancelledError(AIRulesError):
    """调用方通过 CancelToken 取消了操作"""

    code = "CANCELLED"


class BatchInstallError(AIRulesError):
    """批量安装全部失败"""

    code = "BATCH_FAILED"

    def __init__(self, message: str, failures: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or {}
