"""内容缓存 — 按 (registry 类型, URL, 规则集, 具体版本) 寻址的磁盘缓存

目录布局:
    <root>/<type>/<sha256(type:normalized_url)>/
        repository/                               git clone 工作目录
        rulesets/<name>/<version>/entry.json      已满足的 pattern、文件清单
        rulesets/<name>/<version>/files/...       文件内容
        packages/<name>/<version>/ruleset.tar.gz  原始下载包
        versions.json                             版本索引 + specifier 映射
        metadata.json                             访问记账

约定:
  - "latest" 永远不作为缓存键；具体版本下的文件内容不可变，无 TTL
  - specifier -> 版本映射与版本集合各自计时，自最后一次解析/列出起 5 分钟内有效
  - 任何缓存故障记 warning 并按未命中处理，不影响正确性
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from airules.cache.keys import normalize_url, registry_key, safe_segment
from airules.cache.locks import KeyedLocks
from airules.core.exceptions import CacheError
from airules.core.models import VERSIONS_TTL_SECONDS, CacheEntry, VersionsIndex
from airules.core.pattern import matches_any_pattern
from airules.core.semver import is_latest
from airules.utils.yaml_io import atomic_write, load_json, save_json

logger = logging.getLogger(__name__)

VERSIONS_FILE = "versions.json"
METADATA_FILE = "metadata.json"
ENTRY_FILE = "entry.json"
PACKAGE_FILE = "ruleset.tar.gz"

# 可视为"全部文件"的 pattern
_MATCH_ALL = "**"


class ContentCache:
    """显式构造、按引用传入各 registry 的缓存实例"""

    def __init__(
        self,
        root: str | Path,
        *,
        ttl: float = VERSIONS_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root)
        self.ttl = ttl
        self._clock = clock
        self._locks = KeyedLocks()
        self._pending: list[threading.Thread] = []
        self._pending_lock = threading.Lock()

    # =====================================================================
    # 目录
    # =====================================================================

    def registry_dir(self, registry_type: str, url: str) -> Path:
        return self.root / safe_segment(registry_type) / registry_key(registry_type, url)

    def ensure_cache_dir(self, registry_type: str, url: str) -> Path:
        """幂等创建 registry 缓存目录

        Raises:
            CacheError: 目录无法创建
        """
        path = self.registry_dir(registry_type, url)
        try:
            path.mkdir(parents=True, exist_ok=True)
            info = path / "registry.json"
            if not info.exists():
                save_json(info, {
                    "type": registry_type,
                    "url": url,
                    "normalized_url": normalize_url(registry_type, url),
                    "created_at": self._clock(),
                })
        except OSError as e:
            raise CacheError(f"无法创建缓存目录 {path}: {e}") from e
        return path

    def repository_path(self, registry_type: str, url: str) -> Path:
        return self.registry_dir(registry_type, url) / "repository"

    def repository_lock(self, registry_type: str, url: str) -> threading.Lock:
        """保护 clone 工作目录 checkout + 遍历的互斥锁"""
        return self._locks.get(("repository", registry_type, registry_key(registry_type, url)))

    def _version_dir(self, registry_type: str, url: str, name: str, version: str) -> Path:
        if is_latest(version):
            raise CacheError("'latest' 不能作为缓存键，必须先解析为具体版本")
        return (
            self.registry_dir(registry_type, url) / "rulesets"
            / safe_segment(name) / safe_segment(version)
        )

    # =====================================================================
    # 版本索引
    # =====================================================================

    def get_versions(self, registry_type: str, url: str, name: str) -> VersionsIndex | None:
        """读取规则集版本索引；不存在、已过期或读取失败返回 None"""
        path = self.registry_dir(registry_type, url) / VERSIONS_FILE
        try:
            with self._locks.hold(("file", str(path))):
                data = load_json(path)
        except (OSError, ValueError) as e:
            logger.warning("读取版本索引失败，按未命中处理: %s (%s)", path, e)
            return None
        raw = data.get("rulesets", {}).get(name)
        if not raw:
            return None
        index = VersionsIndex.from_dict(raw)
        index.prune(self._clock(), self.ttl)
        if index.empty:
            logger.debug("版本索引已过期: %s/%s", registry_type, name)
            return None
        return index

    def lookup_mapping(self, registry_type: str, url: str, name: str, spec: str) -> str | None:
        """specifier -> 已解析版本（'latest' 不缓存）"""
        if is_latest(spec):
            return None
        index = self.get_versions(registry_type, url, name)
        if index is None:
            return None
        return index.mapping(spec, self._clock(), self.ttl)

    def update_versions(
        self,
        registry_type: str,
        url: str,
        name: str,
        *,
        versions: list[str] | None = None,
        mappings: dict[str, str] | None = None,
    ) -> None:
        """合并写入版本索引（读-改-写在 (type, url, name) 锁内完成）

        versions 不为 None 时替换已知版本集合并刷新其时间戳；mappings 合并进映射表，
        每条映射单独记录解析时间，'latest' 键被忽略。已过期的部分在合并前丢弃。
        """
        path = self.registry_dir(registry_type, url) / VERSIONS_FILE
        clean = {
            k: v for k, v in (mappings or {}).items()
            if not is_latest(k) and not is_latest(v)
        }
        try:
            self.ensure_cache_dir(registry_type, url)
            with self._locks.hold(("versions", registry_type, url, name)), \
                    self._locks.hold(("file", str(path))):
                data = load_json(path)
                rulesets = data.setdefault("rulesets", {})
                index = VersionsIndex.from_dict(rulesets.get(name, {}))
                now = self._clock()
                index.prune(now, self.ttl)
                if versions is not None:
                    index.versions = [v for v in versions if not is_latest(v)]
                    index.fetched_at = now
                index.mappings.update(clean)
                index.mapped_at.update(dict.fromkeys(clean, now))
                rulesets[name] = index.to_dict()
                data["registry_type"] = registry_type
                data["registry_url"] = url
                save_json(path, data)
        except (OSError, ValueError, CacheError) as e:
            logger.warning("写入版本索引失败（忽略）: %s (%s)", path, e)

    # =====================================================================
    # 规则集文件
    # =====================================================================

    def get_ruleset_files(
        self,
        registry_type: str,
        url: str,
        name: str,
        version: str,
        patterns: list[str],
    ) -> dict[str, bytes] | None:
        """命中条件: 请求的每个 pattern 都曾在该版本下被满足过

        返回已存储文件中命中 patterns 的子集；未命中或读取失败返回 None。
        """
        try:
            vdir = self._version_dir(registry_type, url, name, version)
            entry = load_json(vdir / ENTRY_FILE)
            if not entry:
                return None
            stored = set(entry.get("patterns", []))
            requested = set(patterns or [_MATCH_ALL])
            if _MATCH_ALL not in stored and not requested <= stored:
                logger.debug(
                    "缓存 pattern 不足: %s@%s 需要 %s", name, version,
                    sorted(requested - stored),
                )
                return None
            files_dir = vdir / "files"
            files = {
                rel: (files_dir / rel).read_bytes()
                for rel in entry.get("files", [])
                if matches_any_pattern(rel, list(requested))
            }
        except (OSError, ValueError, CacheError) as e:
            logger.warning("读取缓存失败，按未命中处理: %s@%s (%s)", name, version, e)
            return None
        self._touch(registry_type, url, name, version)
        logger.info("缓存命中: %s@%s (%d 个文件)", name, version, len(files))
        return files

    def store_ruleset_files(
        self,
        registry_type: str,
        url: str,
        name: str,
        version: str,
        files: dict[str, bytes],
        patterns: list[str],
    ) -> None:
        """按具体版本写入文件；同版本不同 pattern 的写入累积为超集"""
        try:
            vdir = self._version_dir(registry_type, url, name, version)
            self.ensure_cache_dir(registry_type, url)
            files_dir = vdir / "files"
            for rel, data in files.items():
                if ".." in rel or rel.startswith("/"):
                    logger.warning("跳过可疑路径: %s", rel)
                    continue
                atomic_write(files_dir / rel, data)
            with self._locks.hold(("entry", str(vdir))):
                entry = load_json(vdir / ENTRY_FILE)
                stored_files = set(entry.get("files", []))
                stored_files.update(r for r in files if ".." not in r and not r.startswith("/"))
                stored_patterns = list(entry.get("patterns", []))
                for p in patterns or [_MATCH_ALL]:
                    if p not in stored_patterns:
                        stored_patterns.append(p)
                entry.update({
                    "ruleset": name,
                    "version": version,
                    "patterns": stored_patterns,
                    "files": sorted(stored_files),
                })
                save_json(vdir / ENTRY_FILE, entry)
            total = sum((files_dir / r).stat().st_size for r in stored_files)
            self._record_fetch(registry_type, url, name, version, len(stored_files), total)
        except (OSError, ValueError, CacheError) as e:
            logger.warning("写入缓存失败（忽略）: %s@%s (%s)", name, version, e)

    # =====================================================================
    # 原始下载包
    # =====================================================================

    def _package_path(self, registry_type: str, url: str, name: str, version: str) -> Path:
        if is_latest(version):
            raise CacheError("'latest' 不能作为缓存键，必须先解析为具体版本")
        return (
            self.registry_dir(registry_type, url) / "packages"
            / safe_segment(name) / safe_segment(version) / PACKAGE_FILE
        )

    def get_package(self, registry_type: str, url: str, name: str, version: str) -> bytes | None:
        try:
            path = self._package_path(registry_type, url, name, version)
            if not path.is_file():
                return None
            data = path.read_bytes()
        except (OSError, ValueError, CacheError) as e:
            logger.warning("读取缓存包失败，按未命中处理: %s@%s (%s)", name, version, e)
            return None
        logger.info("缓存包命中: %s@%s (%d 字节)", name, version, len(data))
        return data

    def store_package(
        self, registry_type: str, url: str, name: str, version: str, data: bytes,
    ) -> None:
        try:
            self.ensure_cache_dir(registry_type, url)
            atomic_write(self._package_path(registry_type, url, name, version), data)
        except (OSError, ValueError, CacheError) as e:
            logger.warning("写入缓存包失败（忽略）: %s@%s (%s)", name, version, e)

    def store_package_async(
        self, registry_type: str, url: str, name: str, version: str, data: bytes,
    ) -> threading.Thread:
        """后台线程写入原始包，调用方直接使用内存中的副本"""
        t = threading.Thread(
            target=self.store_package,
            args=(registry_type, url, name, version, data),
            name=f"cache-write-{name}",
        )
        with self._pending_lock:
            self._pending = [p for p in self._pending if p.is_alive()]
            self._pending.append(t)
        t.start()
        return t

    def wait_pending(self, timeout: float | None = None) -> None:
        """等待所有后台写入完成"""
        with self._pending_lock:
            pending, self._pending = self._pending, []
        for t in pending:
            t.join(timeout)

    # =====================================================================
    # 记账
    # =====================================================================

    def _update_metadata(
        self, registry_type: str, url: str, name: str, version: str,
        update: Callable[[dict[str, Any], float], None],
    ) -> None:
        path = self.registry_dir(registry_type, url) / METADATA_FILE
        try:
            with self._locks.hold(("file", str(path))):
                data = load_json(path)
                data["registry_type"] = registry_type
                data["registry_url"] = url
                record = (
                    data.setdefault("rulesets", {})
                    .setdefault(name, {})
                    .setdefault(version, {})
                )
                update(record, self._clock())
                save_json(path, data)
        except (OSError, ValueError) as e:
            logger.warning("更新缓存记账失败（忽略）: %s (%s)", path, e)

    def _record_fetch(
        self, registry_type: str, url: str, name: str, version: str,
        file_count: int, total_bytes: int,
    ) -> None:
        def update(record: dict[str, Any], now: float) -> None:
            record["file_count"] = file_count
            record["total_bytes"] = total_bytes
            record["last_fetched"] = now
            record.setdefault("last_accessed", now)
            record.setdefault("access_count", 0)

        self._update_metadata(registry_type, url, name, version, update)

    def _touch(self, registry_type: str, url: str, name: str, version: str) -> None:
        def update(record: dict[str, Any], now: float) -> None:
            record["last_accessed"] = now
            record["access_count"] = int(record.get("access_count", 0)) + 1

        self._update_metadata(registry_type, url, name, version, update)

    def get_entry(
        self, registry_type: str, url: str, name: str, version: str,
    ) -> CacheEntry | None:
        path = self.registry_dir(registry_type, url) / METADATA_FILE
        try:
            data = load_json(path)
            record = data.get("rulesets", {}).get(name, {}).get(version)
            if record is None:
                return None
            entry = load_json(self._version_dir(registry_type, url, name, version) / ENTRY_FILE)
        except (OSError, ValueError, CacheError) as e:
            logger.warning("读取缓存记账失败: %s (%s)", path, e)
            return None
        return _make_entry(registry_type, url, name, version, record, entry.get("patterns", []))

    def list_entries(self) -> list[CacheEntry]:
        """遍历缓存根目录的全部条目（供 cache info 等检查工具使用）"""
        entries: list[CacheEntry] = []
        if not self.root.is_dir():
            return entries
        for meta_path in sorted(self.root.glob(f"*/*/{METADATA_FILE}")):
            try:
                data = load_json(meta_path)
            except (OSError, ValueError) as e:
                logger.warning("跳过损坏的记账文件: %s (%s)", meta_path, e)
                continue
            rtype = data.get("registry_type", meta_path.parent.parent.name)
            rurl = data.get("registry_url", "")
            for name, versions in sorted(data.get("rulesets", {}).items()):
                for version, record in sorted(versions.items()):
                    entries.append(_make_entry(rtype, rurl, name, version, record, []))
        return entries

    def stats(self) -> dict[str, Any]:
        entries = self.list_entries()
        return {
            "root": str(self.root),
            "registries": len({(e.registry_type, e.registry_url) for e in entries}),
            "entries": len(entries),
            "files": sum(e.file_count for e in entries),
            "bytes": sum(e.total_bytes for e in entries),
        }


def _make_entry(
    registry_type: str, url: str, name: str, version: str,
    record: dict[str, Any], patterns: list[str],
) -> CacheEntry:
    return CacheEntry(
        registry_type=registry_type,
        registry_url=url,
        ruleset=name,
        version=version,
        file_count=int(record.get("file_count", 0)),
        total_bytes=int(record.get("total_bytes", 0)),
        last_fetched=float(record.get("last_fetched", 0.0)),
        last_accessed=float(record.get("last_accessed", 0.0)),
        access_count=int(record.get("access_count", 0)),
        patterns=list(patterns),
    )
