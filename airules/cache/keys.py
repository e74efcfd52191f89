"""缓存键: registry URL 规范化与哈希

同一仓库的不同写法（SSH / HTTPS、大小写、结尾斜杠、.git 后缀）映射到同一缓存目录。
"""

from __future__ import annotations

import hashlib
import os
import re

_SSH_RE = re.compile(r"^(?:ssh://)?git@([^:/]+)[:/](.+)$")
_MULTI_SLASH_RE = re.compile(r"/{2,}")
_UNSAFE_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._@+=-]")


def _collapse_path_slashes(url: str) -> str:
    if "://" not in url:
        return _MULTI_SLASH_RE.sub("/", url)
    scheme, rest = url.split("://", 1)
    return f"{scheme}://{_MULTI_SLASH_RE.sub('/', rest)}"


def _normalize_git(url: str) -> str:
    u = url.strip().lower().rstrip("/")
    m = _SSH_RE.match(u)
    if m:
        u = f"https://{m.group(1)}/{m.group(2)}"
    u = u.removesuffix(".git")
    if not u.startswith(("http://", "https://")) and "." in u and not u.startswith("/"):
        u = f"https://{u}"
    return u


def _normalize_http(url: str) -> str:
    u = url.strip().rstrip("/")
    if "://" in u:
        scheme, rest = u.split("://", 1)
        host, _, path = rest.partition("/")
        u = f"{scheme.lower()}://{host.lower()}" + (f"/{path}" if path else "")
    elif "." in u and not u.startswith("/"):
        u = f"https://{u}"
    return _collapse_path_slashes(u)


def _normalize_s3(url: str) -> str:
    u = url.strip().removeprefix("s3://").replace("\\", "/").rstrip("/")
    return _MULTI_SLASH_RE.sub("/", u)


def _normalize_local(url: str) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(url.strip())))


def normalize_url(registry_type: str, url: str) -> str:
    """按 registry 类型规范化 URL"""
    if registry_type == "git":
        return _normalize_git(url)
    if registry_type in ("gitlab", "https", "http"):
        return _normalize_http(url)
    if registry_type == "s3":
        return _normalize_s3(url)
    if registry_type in ("filesystem", "git-local"):
        return _normalize_local(url)
    return url.strip().rstrip("/")


def registry_key(registry_type: str, url: str) -> str:
    """sha256(type:normalized_url)"""
    raw = f"{registry_type}:{normalize_url(registry_type, url)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def safe_segment(value: str) -> str:
    """把规则集名 / 版本号转换为单级安全目录名

    Raises:
        ValueError: 空串或 . / ..
    """
    cleaned = _UNSAFE_SEGMENT_RE.sub("_", value.strip())
    if cleaned in ("", ".", ".."):
        raise ValueError(f"非法的缓存路径段: '{value}'")
    return cleaned
