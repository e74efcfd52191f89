"""ServiceContainer 单元测试"""

from __future__ import annotations

from pathlib import Path

from airules.core.config import Config
from airules.services.container import (
    ServiceContainer,
    get_container,
    reset_container,
)


class TestServiceContainer:
    def test_lazy_loading(self) -> None:
        c = ServiceContainer()
        assert len(c._instances) == 0
        _ = c.installer
        assert set(c._instances) == {"cache", "registries", "downloader", "installer"}

    def test_shared_instances(self) -> None:
        c = ServiceContainer()
        assert c.cache is c.cache
        assert c.registries.cache is c.cache
        assert c.installer.manager is c.registries
        assert c.installer.downloader is c.downloader

    def test_explicit_config(self, tmp_path: Path) -> None:
        cfg = Config(cache_dir=str(tmp_path / "explicit"))
        c = ServiceContainer(config=cfg)
        assert c.config is cfg
        assert c.cache.root == tmp_path / "explicit"

    def test_separate_containers_separate_caches(self) -> None:
        assert ServiceContainer().cache is not ServiceContainer().cache

    def test_close_waits_for_cache_writes(self, tmp_path: Path) -> None:
        c = ServiceContainer(config=Config(cache_dir=str(tmp_path / "c")))
        c.cache.store_package_async("https", "https://r.example.com", "python", "1.0.0", b"x")
        c.close()
        assert c.cache.get_package("https", "https://r.example.com", "python", "1.0.0") == b"x"

    def test_close_without_use(self) -> None:
        ServiceContainer().close()


class TestGetContainer:
    def test_singleton(self) -> None:
        assert get_container() is get_container()

    def test_reset(self) -> None:
        c1 = get_container()
        reset_container()
        assert get_container() is not c1
