"""GitHub REST API 访问策略

  latest   GET /repos/{o}/{r} 取 default_branch，再 GET /branches/{b}
  tags     GET /repos/{o}/{r}/tags（按 Link rel="next" 翻页）
  files    GET /git/trees/{sha}?recursive=1 + GET /git/blobs/{sha}
"""

from __future__ import annotations

import base64
import logging
import re
from collections.abc import Iterator
from typing import Any
from urllib.parse import quote, urlparse

from airules.cache.keys import normalize_url
from airules.core.exceptions import ConfigError, HttpStatusError, ResolutionError, TransportError
from airules.core.models import RegistrySpec
from airules.core.pattern import matches_any_pattern
from airules.registry.git import ApiStrategy
from airules.utils.net import CancelToken, HttpClient

logger = logging.getLogger(__name__)

_LINK_NEXT_RE = re.compile(r'<([^>]+)>;\s*rel="next"')
PER_PAGE = 100


def parse_owner_repo(url: str) -> tuple[str, str, str]:
    """仓库 URL -> (api_base, owner, repo)；github.com 之外按 GHE 处理"""
    normalized = normalize_url("git", url)
    parsed = urlparse(normalized)
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2 or not parsed.hostname:
        raise ConfigError(f"无法从 URL 解析 owner/repo: {url}")
    host = parsed.hostname
    if host == "github.com":
        api_base = "https://api.github.com"
    else:
        api_base = f"{parsed.scheme}://{host}/api/v3"
    return api_base, parts[0], parts[1]


def next_link(link_header: str) -> str:
    m = _LINK_NEXT_RE.search(link_header or "")
    return m.group(1) if m else ""


def is_hidden_or_unsafe(path: str) -> bool:
    return ".." in path or any(seg.startswith(".") for seg in path.split("/"))


class GitHubApiStrategy(ApiStrategy):
    label = "github-api"

    def __init__(self, spec: RegistrySpec, http: HttpClient) -> None:
        self.spec = spec
        self.http = http
        self.api_base, self.owner, self.repo = parse_owner_repo(spec.url)

    @property
    def repo_url(self) -> str:
        return f"{self.api_base}/repos/{quote(self.owner)}/{quote(self.repo)}"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.spec.auth_token:
            headers["Authorization"] = f"Bearer {self.spec.auth_token}"
        return headers

    def get_json(self, url: str, cancel: CancelToken | None) -> Any:
        resp = self.http.get(url, headers=self._headers(), timeout=self.spec.timeout, cancel=cancel)
        return resp.json()

    def paginate(self, url: str, cancel: CancelToken | None) -> Iterator[Any]:
        while url:
            resp = self.http.get(
                url, headers=self._headers(), timeout=self.spec.timeout, cancel=cancel,
            )
            page = resp.json()
            if not isinstance(page, list):
                raise TransportError(f"分页响应不是列表: {url}")
            yield from page
            url = next_link(resp.header("Link"))

    # ---- 引用 ----

    def default_branch(self, cancel: CancelToken | None) -> str:
        info = self.get_json(self.repo_url, cancel)
        branch = info.get("default_branch") if isinstance(info, dict) else None
        if not branch:
            raise TransportError(f"响应缺少 default_branch: {self.repo_url}")
        return str(branch)

    def branch_sha(self, name: str, cancel: CancelToken | None) -> str:
        url = f"{self.repo_url}/branches/{quote(name, safe='')}"
        try:
            data = self.get_json(url, cancel)
        except HttpStatusError as e:
            if e.status == 404:
                raise ResolutionError(f"分支不存在: {name}", spec=name) from e
            raise
        try:
            return str(data["commit"]["sha"])
        except (KeyError, TypeError) as e:
            raise TransportError(f"分支响应格式异常: {url}") from e

    def tag_map(self, cancel: CancelToken | None) -> dict[str, str]:
        """tag 名 -> commit SHA（tags 接口已剥离附注 tag）"""
        url = f"{self.repo_url}/tags?per_page={PER_PAGE}"
        tags: dict[str, str] = {}
        for t in self.paginate(url, cancel):
            commit = t.get("commit") if isinstance(t, dict) else None
            if isinstance(commit, dict) and "name" in t and commit.get("sha"):
                tags[str(t["name"])] = str(commit["sha"])
        return tags

    # ---- 内容 ----

    def fetch_files(
        self, sha: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        tree = self.get_json(f"{self.repo_url}/git/trees/{quote(sha)}?recursive=1", cancel)
        if not isinstance(tree, dict):
            raise TransportError(f"tree 响应格式异常: {sha}")
        if tree.get("truncated"):
            raise TransportError(f"tree 被截断（仓库过大），需要 clone: {sha}")
        files: dict[str, bytes] = {}
        for item in tree.get("tree", []):
            if not isinstance(item, dict):
                raise TransportError(f"tree 条目格式异常: {sha}")
            path = item.get("path", "")
            if item.get("type") != "blob" or is_hidden_or_unsafe(path):
                continue
            if not matches_any_pattern(path, patterns):
                continue
            blob_sha = item.get("sha")
            if not blob_sha:
                raise TransportError(f"tree 条目缺少 sha: {path}")
            blob = self.get_json(f"{self.repo_url}/git/blobs/{blob_sha}", cancel)
            files[path] = _decode_blob(blob, path)
        logger.debug("github-api 拉取 %s/%s@%s: %d 个文件", self.owner, self.repo, sha, len(files))
        return files


def _decode_blob(blob: Any, path: str) -> bytes:
    if not isinstance(blob, dict) or "content" not in blob:
        raise TransportError(f"blob 响应格式异常: {path}")
    if blob.get("encoding", "base64") != "base64":
        return str(blob["content"]).encode("utf-8")
    try:
        return base64.b64decode(blob["content"])
    except ValueError as e:
        raise TransportError(f"blob 解码失败: {path}") from e
