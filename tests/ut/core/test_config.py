"""配置与 RegistrySpec 测试"""

from __future__ import annotations

from pathlib import Path

import pytest

import airules.core.config as cfgmod
from airules.core.config import Config, init_config
from airules.core.exceptions import ConfigError
from airules.core.models import RegistrySpec


class TestRegistrySpec:
    def test_minimal(self) -> None:
        spec = RegistrySpec.from_dict("main", {"type": "git", "url": "https://github.com/o/r"})
        assert spec.name == "main"
        assert spec.timeout == 30
        assert spec.concurrency == 0

    def test_unknown_type(self) -> None:
        with pytest.raises(ConfigError, match="类型无效"):
            RegistrySpec.from_dict("x", {"type": "ftp", "url": "ftp://a"})

    def test_missing_url(self) -> None:
        with pytest.raises(ConfigError, match="缺少 url"):
            RegistrySpec.from_dict("x", {"type": "git"})

    def test_not_a_dict(self) -> None:
        with pytest.raises(ConfigError, match="必须是字典"):
            RegistrySpec.from_dict("x", "git")  # type: ignore[arg-type]

    def test_bad_numbers(self) -> None:
        with pytest.raises(ConfigError):
            RegistrySpec.from_dict("x", {"type": "git", "url": "u", "timeout": "abc"})
        with pytest.raises(ConfigError):
            RegistrySpec.from_dict("x", {"type": "git", "url": "u", "timeout": 0})
        with pytest.raises(ConfigError):
            RegistrySpec.from_dict("x", {"type": "git", "url": "u", "concurrency": -1})

    def test_gitlab_requires_project(self) -> None:
        with pytest.raises(ConfigError, match="project_id"):
            RegistrySpec.from_dict("gl", {"type": "gitlab", "url": "https://gitlab.com"})

    def test_token_env_expansion(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULES_TOKEN", "s3cret")
        spec = RegistrySpec.from_dict(
            "x", {"type": "git", "url": "u", "auth_token": "${RULES_TOKEN}"},
        )
        assert spec.auth_token == "s3cret"

    def test_prefix_and_api_type_normalized(self) -> None:
        spec = RegistrySpec.from_dict(
            "x", {"type": "s3", "url": "bucket", "prefix": "/team/rules/", "api_type": "GitHub"},
        )
        assert spec.prefix == "team/rules"
        assert spec.api_type == "github"


class TestConfig:
    def test_defaults(self) -> None:
        cfg = Config()
        assert cfg.cache_path == Path("~/.airules/cache").expanduser()
        assert cfg.registries == {}

    def test_from_file(self, tmp_path: Path) -> None:
        p = tmp_path / "cfg.yml"
        p.write_text(
            "cache_dir: /tmp/c\n"
            "default_concurrency: 5\n"
            "registries:\n"
            "  main: {type: git, url: https://github.com/o/r}\n"
            "custom_key: 1\n",
            encoding="utf-8",
        )
        cfg = Config.from_file(str(p))
        assert cfg.cache_dir == "/tmp/c"
        assert cfg.default_concurrency == 5
        assert cfg.extra == {"custom_key": 1}
        assert list(cfg.registry_specs()) == ["main"]

    def test_missing_file(self, tmp_path: Path) -> None:
        cfg = Config.from_file(str(tmp_path / "nope.yml"))
        assert cfg.default_concurrency == 0

    def test_registry_specs_reports_name(self) -> None:
        cfg = Config(registries={"bad": {"type": "nope", "url": "x"}})
        with pytest.raises(ConfigError, match="bad"):
            cfg.registry_specs()

    def test_init_config_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        p = tmp_path / "env.yml"
        p.write_text("default_registry: main\n", encoding="utf-8")
        monkeypatch.setenv("AIRULES_CONFIG", str(p))
        cfg = init_config()
        assert cfg.default_registry == "main"
        assert cfgmod.get_config() is cfg


class TestConcurrency:
    def _spec(self, rtype: str, concurrency: int = 0) -> RegistrySpec:
        data = {"type": rtype, "url": "x", "concurrency": concurrency}
        if rtype == "gitlab":
            data["project_id"] = "1"
        return RegistrySpec.from_dict("r", data)

    def test_source_override_wins(self) -> None:
        cfg = Config(default_concurrency=7, registry_types={"git": {"concurrency": 4}})
        assert cfg.resolve_concurrency(self._spec("git", 2)) == 2

    def test_type_default(self) -> None:
        cfg = Config(default_concurrency=7, registry_types={"git": {"concurrency": 4}})
        assert cfg.resolve_concurrency(self._spec("git")) == 4

    def test_global_default(self) -> None:
        cfg = Config(default_concurrency=7)
        assert cfg.resolve_concurrency(self._spec("git")) == 7

    @pytest.mark.parametrize("rtype,expected", [
        ("gitlab", 2), ("s3", 8), ("http", 4), ("filesystem", 10), ("git", 3), ("https", 3),
    ])
    def test_fallback(self, rtype: str, expected: int) -> None:
        assert Config().resolve_concurrency(self._spec(rtype)) == expected

    def test_bad_type_concurrency_ignored(self) -> None:
        cfg = Config(registry_types={"git": {"concurrency": "many"}})
        assert cfg.resolve_concurrency(self._spec("git")) == 3

    def test_global_default_string_coerced(self) -> None:
        cfg = Config(default_concurrency="4")
        assert cfg.resolve_concurrency(self._spec("git")) == 4

    def test_global_default_invalid(self) -> None:
        cfg = Config(default_concurrency="many")
        with pytest.raises(ConfigError, match="default_concurrency"):
            cfg.resolve_concurrency(self._spec("git"))
