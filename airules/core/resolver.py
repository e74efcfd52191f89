"""版本解析器 — 将版本说明符解析为唯一的具体版本

解析顺序:
  1. "latest"          -> RefSource.latest()（git 为默认分支 HEAD，而不是最高 tag）
  2. 1.2.3 / v1.2.3    -> 精确查找，找不到再补 "v" 前缀重试
  3. ^ ~ >= <= > < =   -> 解析全部 tag，过滤后取满足约束的最高版本
  4. 7~40 位十六进制    -> 视为 commit hash 原样返回
  5. 其他              -> 视为分支名，解析为当前 commit
"""

from __future__ import annotations

import logging
from typing import Protocol

from airules.core.exceptions import ResolutionError, ValidationError
from airules.core.semver import (
    VersionRange,
    is_commit_hash,
    is_latest,
    is_range,
    is_semver_literal,
    parse_versions,
)

logger = logging.getLogger(__name__)


class RefSource(Protocol):
    """可解析引用的来源（由各 registry 后端提供）"""

    def latest(self) -> str:
        """'latest' 对应的具体版本"""
        ...

    def lookup(self, ref: str) -> str | None:
        """精确 tag/版本 -> 具体版本，不存在返回 None"""
        ...

    def list_tags(self) -> list[str]:
        """全部 tag / 已发布版本"""
        ...

    def resolve_branch(self, name: str) -> str:
        """分支名 -> commit；不存在抛 ResolutionError"""
        ...


class VersionResolver:
    """按固定优先级把说明符解析为 ResolvedVersion"""

    def __init__(self, source: RefSource, *, ruleset: str = "") -> None:
        self._source = source
        self._ruleset = ruleset

    def resolve(self, spec: str) -> str:
        spec = spec.strip()
        if not spec:
            raise ResolutionError("版本说明符为空", ruleset=self._ruleset, spec=spec)

        if is_latest(spec):
            resolved = self._source.latest()
            logger.debug("latest -> %s (%s)", resolved, self._ruleset)
            return resolved

        if is_semver_literal(spec):
            return self._resolve_literal(spec)

        if is_range(spec):
            return self._resolve_range(spec)

        if is_commit_hash(spec):
            return spec

        return self._source.resolve_branch(spec)

    def _resolve_literal(self, spec: str) -> str:
        candidates = [spec]
        if not spec.lower().startswith("v"):
            candidates.append(f"v{spec}")
        for candidate in candidates:
            resolved = self._source.lookup(candidate)
            if resolved:
                return resolved
        raise ResolutionError(
            f"版本不存在: {self._ruleset}@{spec}", ruleset=self._ruleset, spec=spec,
        )

    def _resolve_range(self, spec: str) -> str:
        try:
            constraint = VersionRange.parse(spec)
        except ValidationError as e:
            raise ResolutionError(str(e), ruleset=self._ruleset, spec=spec) from e

        tags = self._source.list_tags()
        best = constraint.highest(parse_versions(tags))
        if best is None:
            raise ResolutionError(
                f"no versions satisfy constraint: {spec} ({self._ruleset}，"
                f"可用版本 {len(tags)} 个)",
                ruleset=self._ruleset, spec=spec,
            )
        resolved = self._source.lookup(best.original) or best.original
        logger.debug("%s %s -> %s (%s)", self._ruleset, spec, best.original, resolved)
        return resolved
