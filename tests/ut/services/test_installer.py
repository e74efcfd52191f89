"""Installer / RegistryManager 测试（本地文件系统 registry）"""

from __future__ import annotations

from pathlib import Path

import pytest

from airules.cache.content import ContentCache
from airules.core.config import Config
from airules.core.exceptions import BatchInstallError, ConfigError
from airules.registry.factory import RegistryManager, create_registry
from airules.registry.local import FilesystemRegistry
from airules.services.installer import Installer, parse_dependency


def _write(root: Path, rel: str, text: str) -> None:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    _write(root, "python/1.0.0/rules/a.md", "py-1.0")
    _write(root, "python/1.1.0/rules/a.md", "py-1.1")
    _write(root, "go/0.3.0/rules/go.md", "go")
    return root


@pytest.fixture
def config(repo: Path, tmp_path: Path) -> Config:
    return Config(
        cache_dir=str(tmp_path / "cache"),
        registries={
            "local": {"type": "filesystem", "url": str(repo)},
            "other": {"type": "filesystem", "url": str(repo), "concurrency": 1},
        },
        default_registry="local",
    )


@pytest.fixture
def manager(config: Config) -> RegistryManager:
    return RegistryManager(config, ContentCache(config.cache_path))


class TestParseDependency:
    def test_with_spec(self) -> None:
        assert parse_dependency("local@python=^1.0") == ("local@python", "^1.0")

    def test_default_latest(self) -> None:
        assert parse_dependency("python") == ("python", "latest")
        assert parse_dependency("python=") == ("python", "latest")


class TestRegistryManager:
    def test_split_name(self, manager: RegistryManager) -> None:
        assert manager.split_name("other@go") == ("other", "go")
        assert manager.split_name("go") == ("local", "go")

    def test_split_invalid(self, manager: RegistryManager) -> None:
        with pytest.raises(ConfigError, match="无效的依赖名"):
            manager.split_name("@go")

    def test_default_inference(self, repo: Path) -> None:
        single = RegistryManager(Config(registries={"only": {"type": "filesystem", "url": str(repo)}}))
        assert single.default_name() == "only"
        multi = RegistryManager(Config(registries={
            "a": {"type": "filesystem", "url": str(repo)},
            "b": {"type": "filesystem", "url": str(repo)},
        }))
        with pytest.raises(ConfigError, match="无法推断默认 registry"):
            multi.default_name()

    def test_instances_shared(self, manager: RegistryManager) -> None:
        assert manager.get("local") is manager.get("local")
        assert isinstance(manager.get("local"), FilesystemRegistry)

    def test_unknown_registry(self, manager: RegistryManager) -> None:
        with pytest.raises(ConfigError, match="未配置的 registry"):
            manager.get("nope")

    def test_concurrency(self, manager: RegistryManager) -> None:
        assert manager.concurrency_for("local") == 10
        assert manager.concurrency_for("other") == 1

    def test_bad_registry_does_not_affect_others(self, repo: Path) -> None:
        mgr = RegistryManager(Config(registries={
            "good": {"type": "filesystem", "url": str(repo)},
            "bad": {"type": "unknown", "url": "x"},
        }))
        assert mgr.get("good").list_versions("go") == ["latest", "0.3.0"]
        with pytest.raises(ConfigError):
            mgr.get("bad")

    def test_string_global_concurrency(self, repo: Path) -> None:
        mgr = RegistryManager(Config(
            default_concurrency="4",
            registries={"a": {"type": "filesystem", "url": str(repo)}},
        ))
        assert mgr.concurrency_for("a") == 4

    def test_create_registry_shares_cache(self, repo: Path, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "c")
        mgr = RegistryManager(Config(registries={"x": {"type": "filesystem", "url": str(repo)}}), cache)
        assert mgr.get("x").cache is cache
        assert create_registry(mgr.spec("x"), cache).cache is cache


class TestInstaller:
    def test_single_download(self, manager: RegistryManager, tmp_path: Path) -> None:
        entry = Installer(manager).download_ruleset("python", "^1.0.0", tmp_path / "out")
        assert entry.resolved_version == "1.1.0"
        assert entry.registry == "local"
        assert (tmp_path / "out" / "rules" / "a.md").read_text(encoding="utf-8") == "py-1.1"

    def test_versions_and_resolve(self, manager: RegistryManager) -> None:
        inst = Installer(manager)
        assert inst.list_versions("other@python") == ["latest", "1.0.0", "1.1.0"]
        assert inst.resolve_version("python", "1.0.0") == "1.0.0"

    def test_install_many_success(self, manager: RegistryManager, tmp_path: Path) -> None:
        target = tmp_path / "rules"
        summary = Installer(manager).install_many(
            {"python": "1.0.0", "other@go": "latest"}, target,
        )
        assert summary.status == "success"
        assert (target / "local" / "python" / "rules" / "a.md").read_text(encoding="utf-8") == "py-1.0"
        assert (target / "other" / "go" / "rules" / "go.md").is_file()

    def test_install_many_partial(self, manager: RegistryManager, tmp_path: Path) -> None:
        summary = Installer(manager).install_many(
            {"python": "^1.0.0", "rust": "1.0.0", "ghost@go": "latest"}, tmp_path / "rules",
        )
        assert summary.status == "partial"
        assert summary.describe() == "部分成功: 1/3"
        assert set(summary.failures()) == {"local@rust@1.0.0", "ghost@go@latest"}
        summary.raise_for_failure()

    def test_install_many_total_failure(self, manager: RegistryManager, tmp_path: Path) -> None:
        summary = Installer(manager).install_many(
            {"python": "^9.0.0", "@bad": "1.0.0"}, tmp_path / "rules",
        )
        assert summary.status == "failure"
        with pytest.raises(BatchInstallError, match="全部失败"):
            summary.raise_for_failure()

    def test_install_many_patterns(self, manager: RegistryManager, tmp_path: Path) -> None:
        summary = Installer(manager).install_many(
            {"python": "1.1.0"}, tmp_path / "rules", patterns=["docs/*.md"],
        )
        assert summary.status == "failure"

    def test_bad_global_concurrency_fails_jobs_not_batch(self, repo: Path, tmp_path: Path) -> None:
        mgr = RegistryManager(Config(
            cache_dir=str(tmp_path / "cache"),
            default_concurrency="many",
            registries={"a": {"type": "filesystem", "url": str(repo)}},
        ))
        summary = Installer(mgr).install_many({"python": "1.0.0", "go": "0.3.0"}, tmp_path / "rules")
        assert summary.status == "failure"
        assert all("default_concurrency" in msg for msg in summary.failures().values())

    def test_outdated(self, manager: RegistryManager) -> None:
        items = {i.name: i for i in Installer(manager).outdated({"python": "~1.0.0", "go": "latest", "rust": "1"})}
        assert items["python"].outdated
        assert (items["python"].wanted, items["python"].latest) == ("1.0.0", "1.1.0")
        assert not items["go"].outdated
        assert items["rust"].error
        assert not items["rust"].outdated
