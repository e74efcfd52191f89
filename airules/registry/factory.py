"""Registry 工厂与管理器

按 RegistrySpec.type 选择唯一的后端实现；管理器按名字缓存实例（线程安全），
并负责 "registry@ruleset" 前缀解析、默认来源推断和并发度查询。
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from airules.core.exceptions import ConfigError
from airules.core.models import RegistrySpec
from airules.registry.base import Registry
from airules.utils.net import HttpClient
from airules.utils.shell import CommandExecutor

if TYPE_CHECKING:
    from airules.cache.content import ContentCache
    from airules.core.config import Config

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_NAME = "default"


def create_registry(
    spec: RegistrySpec,
    cache: ContentCache | None = None,
    *,
    http: HttpClient | None = None,
    executor: CommandExecutor | None = None,
) -> Registry:
    """按类型构造 registry 实例

    Raises:
        ConfigError: 未知类型或后端参数无效
        LocalRepositoryError: 本地路径校验失败
    """
    if spec.type == "git":
        from airules.registry.git import GitRegistry
        return GitRegistry(spec, cache, http=http, executor=executor)
    if spec.type == "git-local":
        from airules.registry.local import LocalGitRegistry
        return LocalGitRegistry(spec, cache, executor=executor)
    if spec.type == "filesystem":
        from airules.registry.local import FilesystemRegistry
        return FilesystemRegistry(spec, cache)
    if spec.type == "gitlab":
        from airules.registry.gitlab import GitLabPackageRegistry
        return GitLabPackageRegistry(spec, cache, http=http)
    if spec.type == "https":
        from airules.registry.https import HttpsManifestRegistry
        return HttpsManifestRegistry(spec, cache, http=http)
    if spec.type == "s3":
        from airules.registry.s3 import S3Registry
        return S3Registry(spec, cache, http=http)
    if spec.type == "http":
        from airules.registry.s3 import HttpRegistry
        return HttpRegistry(spec, cache, http=http)
    raise ConfigError(f"不支持的 registry 类型: {spec.type} ({spec.name})")


class RegistryManager:
    """命名 registry 的统一入口"""

    def __init__(
        self,
        config: Config,
        cache: ContentCache | None = None,
        *,
        http: HttpClient | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self._http = http
        self._executor = executor
        self._instances: dict[str, Registry] = {}
        self._lock = threading.Lock()

    def names(self) -> list[str]:
        return list((self.config.registries or {}).keys())

    def spec(self, name: str) -> RegistrySpec:
        """单个 registry 的配置；只有该 registry 的配置错误会抛出"""
        raw = (self.config.registries or {}).get(name)
        if raw is None:
            raise ConfigError(f"未配置的 registry: '{name}'（可用: {', '.join(self.names()) or '无'}）")
        return RegistrySpec.from_dict(name, raw)

    def get(self, name: str) -> Registry:
        with self._lock:
            registry = self._instances.get(name)
            if registry is None:
                registry = create_registry(
                    self.spec(name), self.cache, http=self._http, executor=self._executor,
                )
                self._instances[name] = registry
                logger.debug("创建 registry: %r", registry)
            return registry

    def default_name(self) -> str:
        """默认来源: 显式配置 > 名为 default 的来源 > 唯一来源"""
        names = self.names()
        if self.config.default_registry:
            if self.config.default_registry not in names:
                raise ConfigError(f"default_registry 指向未配置的来源: {self.config.default_registry}")
            return self.config.default_registry
        if DEFAULT_REGISTRY_NAME in names:
            return DEFAULT_REGISTRY_NAME
        if len(names) == 1:
            return names[0]
        raise ConfigError(
            "无法推断默认 registry，请使用 'registry@ruleset' 形式或配置 default_registry"
        )

    def split_name(self, dependency: str) -> tuple[str, str]:
        """'registry@ruleset' -> (registry, ruleset)；无前缀时使用默认来源"""
        if "@" in dependency:
            registry, ruleset = dependency.split("@", 1)
            if registry and ruleset:
                return registry, ruleset
            raise ConfigError(f"无效的依赖名: '{dependency}'")
        return self.default_name(), dependency

    def concurrency_for(self, name: str) -> int:
        return self.config.resolve_concurrency(self.spec(name))

    def close(self) -> None:
        with self._lock:
            instances, self._instances = self._instances, {}
        for registry in instances.values():
            registry.close()
