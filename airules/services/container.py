"""服务容器 — 统一构造缓存、registry 管理器与安装服务

缓存实例在容器内只创建一次，按引用传给每个 registry，不存在进程级缓存单例。

用法:
    container = ServiceContainer(config=Config.from_file(".airules.yml"))
    container.installer.install_many({"python-rules": "^1.0"}, ".rules")
    container.close()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from airules.cache.content import ContentCache
    from airules.core.config import Config
    from airules.registry.factory import RegistryManager
    from airules.services.downloader import ConcurrentDownloader
    from airules.services.installer import Installer

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器，同一容器内的实例共享缓存"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from airules.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def cache(self) -> ContentCache:
        if "cache" not in self._instances:
            from airules.cache.content import ContentCache
            self._instances["cache"] = ContentCache(self._config.cache_path)
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def registries(self) -> RegistryManager:
        if "registries" not in self._instances:
            from airules.registry.factory import RegistryManager
            self._instances["registries"] = RegistryManager(self._config, self.cache)
        return self._instances["registries"]  # type: ignore[return-value]

    @property
    def downloader(self) -> ConcurrentDownloader:
        if "downloader" not in self._instances:
            from airules.services.downloader import ConcurrentDownloader
            self._instances["downloader"] = ConcurrentDownloader(self.registries)
        return self._instances["downloader"]  # type: ignore[return-value]

    @property
    def installer(self) -> Installer:
        if "installer" not in self._instances:
            from airules.services.installer import Installer
            self._instances["installer"] = Installer(self.registries, self.downloader)
        return self._instances["installer"]  # type: ignore[return-value]

    def close(self) -> None:
        """关闭 registry 并等待后台缓存写入完成"""
        registries = self._instances.get("registries")
        if registries is not None:
            registries.close()  # type: ignore[attr-defined]
        cache = self._instances.get("cache")
        if cache is not None:
            cache.wait_pending()  # type: ignore[attr-defined]


# ---- 全局单例（CLI 使用） ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """关闭并重置全局容器"""
    global _global  # noqa: PLW0603
    with _global_lock:
        if _global is not None:
            _global.close()
        _global = None
