"""语义化版本与版本范围

排序规则: 按 major.minor.patch 数值比较；数值相同时正式版高于预发布版，
预发布版之间按字符串字典序比较；build 元数据不参与比较。

范围语法:
  ``^1.2.3``  >=1.2.3 <2.0.0（0.x 时锁定 minor，0.0.x 时锁定 patch）
  ``~1.2.3``  >=1.2.3 <1.3.0
  ``>=`` ``<=`` ``>`` ``<`` ``=``，逗号或空格分隔表示同时满足
  ``1.2``     等价 >=1.2.0 <1.3.0
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

from airules.core.exceptions import ValidationError

LATEST = "latest"

_VERSION_RE = re.compile(
    r"^[vV]?(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z][0-9A-Za-z.-]*))?(?:\+([0-9A-Za-z.-]+))?$"
)
_LITERAL_RE = re.compile(
    r"^[vV]?\d+\.\d+\.\d+(?:-[0-9A-Za-z][0-9A-Za-z.-]*)?(?:\+[0-9A-Za-z.-]+)?$"
)
_PARTIAL_RE = re.compile(r"^[vV]?\d+\.\d+$")
_COMMIT_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")
_TERM_RE = re.compile(r"^(\^|~|>=|<=|>|<|=)?(.+)$")
_OP_SPACE_RE = re.compile(r"(\^|~|>=|<=|>|<|=)\s+")

RANGE_PREFIXES = ("^", "~", ">=", "<=", ">", "<", "=")


# =========================================================================
# 说明符分类
# =========================================================================

def is_latest(spec: str) -> bool:
    return spec.strip().lower() == LATEST


def is_semver_literal(spec: str) -> bool:
    """形如 1.2.3 / v1.2.3 的精确版本"""
    return bool(_LITERAL_RE.match(spec.strip()))


def is_range(spec: str) -> bool:
    s = spec.strip()
    return s.startswith(RANGE_PREFIXES) or bool(_PARTIAL_RE.match(s))


def is_commit_hash(spec: str) -> bool:
    """7~40 位十六进制串视为 commit hash（不校验远端是否存在）"""
    return bool(_COMMIT_RE.match(spec.strip()))


# =========================================================================
# 版本
# =========================================================================

@total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """语义化版本，original 保留原始字符串（如 tag 名 v1.2.3）"""

    major: int
    minor: int = 0
    patch: int = 0
    prerelease: str = ""
    build: str = ""
    original: str = ""

    @classmethod
    def parse(cls, text: str) -> Version | None:
        """解析版本字符串，非法返回 None（允许缺省 minor/patch）"""
        m = _VERSION_RE.match(text.strip())
        if not m:
            return None
        major, minor, patch, pre, build = m.groups()
        return cls(
            major=int(major),
            minor=int(minor or 0),
            patch=int(patch or 0),
            prerelease=pre or "",
            build=build or "",
            original=text.strip(),
        )

    @property
    def sort_key(self) -> tuple[int, int, int, int, str]:
        # 正式版 (1) 排在同数值的预发布版 (0) 之后
        return (
            self.major, self.minor, self.patch,
            0 if self.prerelease else 1, self.prerelease,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.sort_key == other.sort_key

    def __lt__(self, other: Version) -> bool:
        return self.sort_key < other.sort_key

    def __hash__(self) -> int:
        return hash(self.sort_key)

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        return f"{core}-{self.prerelease}" if self.prerelease else core


# =========================================================================
# 版本范围
# =========================================================================

@dataclass(frozen=True)
class Comparator:
    op: str
    version: Version

    def check(self, v: Version) -> bool:
        if self.op == ">=":
            return v >= self.version
        if self.op == ">":
            return v > self.version
        if self.op == "<=":
            return v <= self.version
        if self.op == "<":
            return v < self.version
        return v == self.version


class VersionRange:
    """版本约束（多个比较条件取交集）"""

    def __init__(self, text: str, comparators: list[Comparator]) -> None:
        self.text = text
        self.comparators = comparators

    @classmethod
    def parse(cls, text: str) -> VersionRange:
        """解析约束表达式

        Raises:
            ValidationError: 语法无效
        """
        normalized = _OP_SPACE_RE.sub(r"\1", text.strip())
        terms = [t for t in re.split(r"[,\s]+", normalized) if t]
        if not terms:
            raise ValidationError(f"无效的版本约束: '{text}'")
        comparators: list[Comparator] = []
        for term in terms:
            comparators.extend(_expand_term(term, text))
        return cls(text, comparators)

    def allows(self, v: Version) -> bool:
        # 约束本身不含预发布版时，不匹配预发布版
        if v.prerelease and not any(c.version.prerelease for c in self.comparators):
            return False
        return all(c.check(v) for c in self.comparators)

    def highest(self, candidates: list[Version]) -> Version | None:
        """满足约束的最高版本"""
        for v in sorted(candidates, reverse=True):
            if self.allows(v):
                return v
        return None

    def __str__(self) -> str:
        return self.text


def _expand_term(term: str, text: str) -> list[Comparator]:
    m = _TERM_RE.match(term)
    if not m:
        raise ValidationError(f"无效的版本约束: '{text}'")
    op, raw = m.group(1) or "=", m.group(2)
    base = Version.parse(raw)
    if base is None:
        raise ValidationError(f"无效的版本约束: '{text}' ('{raw}' 不是合法版本)")
    parts = _VERSION_RE.match(raw.strip())
    assert parts is not None
    has_minor = parts.group(2) is not None
    has_patch = parts.group(3) is not None

    if op == "^":
        if base.major > 0 or not has_minor:
            upper = Version(base.major + 1)
        elif base.minor > 0 or not has_patch:
            upper = Version(0, base.minor + 1)
        else:
            upper = Version(0, 0, base.patch + 1)
        return [Comparator(">=", base), Comparator("<", upper)]
    if op == "~":
        upper = Version(base.major, base.minor + 1) if has_minor else Version(base.major + 1)
        return [Comparator(">=", base), Comparator("<", upper)]
    if op == "=" and not has_patch:
        # 部分版本号表示通配: 1.2 -> 1.2.x
        upper = Version(base.major, base.minor + 1) if has_minor else Version(base.major + 1)
        return [Comparator(">=", base), Comparator("<", upper)]
    return [Comparator(op, base)]


def parse_versions(tags: list[str]) -> list[Version]:
    """解析 tag 列表，静默跳过非法条目"""
    parsed = []
    for tag in tags:
        if tag == LATEST:
            continue
        v = Version.parse(tag)
        if v is not None:
            parsed.append(v)
    return parsed
