"""路径 glob 匹配

规则:
  - patterns 为空时匹配一切
  - ``**`` 匹配零或多级路径（可跨 ``/``），``**/`` 允许零级目录
  - ``*`` / ``?`` 不跨 ``/``，因此 ``rules/*.md`` 不匹配 ``rules/sub/x.md``
  - 不含通配符和 ``/`` 的字面文件名（如 ``README.md``）也匹配任意目录下的同名文件
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path

_WILDCARDS = frozenset("*?[")


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """将 glob pattern 编译为锚定的正则"""
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        if pattern.startswith("**", i):
            i += 2
            if i < n and pattern[i] == "/":
                out.append("(?:.*/)?")
                i += 1
            else:
                out.append(".*")
            continue
        c = pattern[i]
        if c == "*":
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("^" + "".join(out) + "$")


def _is_literal_name(pattern: str) -> bool:
    return "/" not in pattern and not (_WILDCARDS & set(pattern))


def matches_pattern(path: str, pattern: str) -> bool:
    path = path.replace("\\", "/")
    if glob_to_regex(pattern).match(path):
        return True
    if _is_literal_name(pattern):
        return path.rsplit("/", 1)[-1] == pattern
    return False


def matches_any_pattern(path: str, patterns: list[str] | tuple[str, ...]) -> bool:
    """path 命中任一 pattern（patterns 为空视为全部命中）"""
    if not patterns:
        return True
    return any(matches_pattern(path, p) for p in patterns)


def find_matching_files(root: str | Path, patterns: list[str] | tuple[str, ...]) -> list[str]:
    """遍历 root，返回命中 patterns 的仓库相对路径（POSIX 分隔符）

    跳过点文件与点目录（含 .git），拒绝包含 ``..`` 的路径。
    结果按遍历顺序（目录内按名字排序）返回，需要确定顺序的调用方自行排序。
    """
    root_path = Path(root)
    matched: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root_path):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            rel = Path(dirpath, name).relative_to(root_path).as_posix()
            if ".." in rel:
                continue
            if matches_any_pattern(rel, patterns):
                matched.append(rel)
    return matched


def read_matching_files(root: str | Path, patterns: list[str] | tuple[str, ...]) -> dict[str, bytes]:
    """find_matching_files + 读取内容"""
    root_path = Path(root)
    return {rel: (root_path / rel).read_bytes() for rel in find_matching_files(root_path, patterns)}
