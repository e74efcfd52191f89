"""本地 registry 测试（文件系统目录、本地仓库路径校验）"""

from __future__ import annotations

from pathlib import Path

import pytest

from airules.cache.content import ContentCache
from airules.core.exceptions import (
    InvalidRepositoryError,
    RepositoryMovedError,
    RepositoryNotFoundError,
    ResolutionError,
)
from airules.core.models import ContentSelector, RegistrySpec
from airules.registry.archive import build_archive
from airules.registry.local import FilesystemRegistry, validate_local_repository


def _write(root: Path, rel: str, text: str) -> None:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "rules-repo"
    _write(root, "python/1.0.0/rules/a.md", "a-1.0")
    _write(root, "python/1.2.0/rules/a.md", "a-1.2")
    _write(root, "python/1.2.0/rules/sub/c.md", "c-1.2")
    _write(root, "python/1.10.0/rules/a.md", "a-1.10")
    _write(root, "python/dev/rules/a.md", "a-dev")
    archive_dir = root / "go" / "0.1.0"
    archive_dir.mkdir(parents=True)
    (archive_dir / "ruleset.tar.gz").write_bytes(
        build_archive({"rules/go.md": b"go", ".secret": b"x"}),
    )
    return root


def _registry(root: Path, cache: ContentCache | None = None) -> FilesystemRegistry:
    spec = RegistrySpec.from_dict("local", {"type": "filesystem", "url": str(root)})
    return FilesystemRegistry(spec, cache)


class TestValidateLocalRepository:
    def test_ok(self, repo: Path) -> None:
        assert validate_local_repository(repo) == repo

    def test_moved(self, tmp_path: Path) -> None:
        # 父目录存在，目标不存在
        with pytest.raises(RepositoryMovedError) as exc:
            validate_local_repository(tmp_path / "gone")
        assert exc.value.suggestion

    def test_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(RepositoryNotFoundError):
            validate_local_repository(tmp_path / "no" / "such" / "repo")

    def test_not_a_directory(self, tmp_path: Path) -> None:
        f = tmp_path / "file.txt"
        f.write_text("x", encoding="utf-8")
        with pytest.raises(InvalidRepositoryError, match="不是目录"):
            validate_local_repository(f)

    def test_git_required(self, repo: Path) -> None:
        with pytest.raises(InvalidRepositoryError, match=".git"):
            validate_local_repository(repo, require_git=True)


class TestFilesystemRegistry:
    def test_list_versions_sorted(self, repo: Path) -> None:
        versions = _registry(repo).list_versions("python")
        assert versions == ["latest", "dev", "1.0.0", "1.2.0", "1.10.0"]

    def test_latest_is_highest(self, repo: Path) -> None:
        assert _registry(repo).resolve_version("python", "latest") == "1.10.0"

    def test_range(self, repo: Path) -> None:
        reg = _registry(repo)
        assert reg.resolve_version("python", "~1.2.0") == "1.2.0"
        assert reg.resolve_version("python", "^1.0.0") == "1.10.0"

    def test_named_version(self, repo: Path) -> None:
        assert _registry(repo).resolve_version("python", "dev") == "dev"

    def test_unknown_ruleset(self, repo: Path) -> None:
        with pytest.raises(ResolutionError, match="不存在规则集"):
            _registry(repo).list_versions("rust")

    def test_get_files_with_pattern(self, repo: Path) -> None:
        files = _registry(repo).get_files("python", "1.2.0", ContentSelector.of(["rules/*.md"]))
        assert files == {"rules/a.md": b"a-1.2"}

    def test_get_files_recursive(self, repo: Path) -> None:
        files = _registry(repo).get_files("python", "1.2.0", ContentSelector.of(["rules/**/*.md"]))
        assert set(files) == {"rules/a.md", "rules/sub/c.md"}

    def test_archive_version(self, repo: Path) -> None:
        assert _registry(repo).get_files("go", "0.1.0") == {"rules/go.md": b"go"}

    def test_download_writes_files(self, repo: Path, tmp_path: Path) -> None:
        dest = tmp_path / "out"
        entry = _registry(repo).download_ruleset("python", "^1.0.0", dest)
        assert entry.resolved_version == "1.10.0"
        assert entry.files == ["rules/a.md"]
        assert entry.checksum.startswith("sha256:")
        assert (dest / "rules" / "a.md").read_text(encoding="utf-8") == "a-1.10"

    def test_no_matching_files(self, repo: Path, tmp_path: Path) -> None:
        with pytest.raises(ResolutionError, match="没有文件匹配"):
            _registry(repo).download_ruleset(
                "python", "1.0.0", tmp_path / "out", ContentSelector.of(["*.txt"]),
            )

    def test_moved_after_construction(self, repo: Path) -> None:
        reg = _registry(repo)
        repo.rename(repo.parent / "elsewhere")
        with pytest.raises(RepositoryMovedError):
            reg.list_versions("python")

    def test_cache_serves_after_source_removed(self, repo: Path, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        reg = _registry(repo, cache)
        first = reg.get_files("python", "1.2.0", ContentSelector.of(["rules/*.md"]))
        (repo / "python" / "1.2.0" / "rules" / "a.md").unlink()
        assert reg.get_files("python", "1.2.0", ContentSelector.of(["rules/*.md"])) == first
