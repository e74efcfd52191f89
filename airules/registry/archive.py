"""ruleset.tar.gz 解包：在内存中解出命中 pattern 的文件"""

from __future__ import annotations

import io
import logging
import tarfile

from airules.core.exceptions import TransportError
from airules.core.pattern import matches_any_pattern

logger = logging.getLogger(__name__)

# 单个成员大小上限，防止解压炸弹
MAX_MEMBER_BYTES = 50 * 1024 * 1024


def _clean_member_name(name: str) -> str | None:
    rel = name.replace("\\", "/")
    while rel.startswith("./"):
        rel = rel[2:]
    if not rel or rel.startswith("/") or ".." in rel:
        return None
    if any(seg.startswith(".") for seg in rel.split("/")):
        return None
    return rel


def extract_files(data: bytes, patterns: list[str]) -> dict[str, bytes]:
    """解出 tar.gz 中的普通文件（跳过点文件、越界路径、链接）

    Raises:
        TransportError: 包损坏
    """
    files: dict[str, bytes] = {}
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tf:
            for member in tf:
                if not member.isfile():
                    continue
                rel = _clean_member_name(member.name)
                if rel is None:
                    logger.debug("跳过包成员: %s", member.name)
                    continue
                if not matches_any_pattern(rel, patterns):
                    continue
                if member.size > MAX_MEMBER_BYTES:
                    raise TransportError(f"包成员过大: {rel} ({member.size} 字节)")
                f = tf.extractfile(member)
                if f is None:
                    continue
                with f:
                    files[rel] = f.read()
    except (tarfile.TarError, EOFError, OSError) as e:
        raise TransportError(f"规则集包损坏: {e}") from e
    return files


def build_archive(files: dict[str, bytes]) -> bytes:
    """把 {路径: 内容} 打成 tar.gz（测试与本地发布用）"""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for rel, content in sorted(files.items()):
            info = tarfile.TarInfo(rel)
            info.size = len(content)
            tf.addfile(info, io.BytesIO(content))
    return buf.getvalue()
