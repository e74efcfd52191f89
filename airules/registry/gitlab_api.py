"""GitLab REST API (v4) 访问策略

  latest   GET /projects/:id 取 default_branch，再 GET /repository/branches/:b
  tags     GET /repository/tags（按 X-Next-Page 翻页）
  files    GET /repository/tree?recursive=true + GET /repository/files/:path/raw
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any
from urllib.parse import quote, urlencode, urlparse

from airules.cache.keys import normalize_url
from airules.core.exceptions import ConfigError, HttpStatusError, ResolutionError, TransportError
from airules.core.models import RegistrySpec
from airules.core.pattern import matches_any_pattern
from airules.registry.git import ApiStrategy
from airules.registry.github_api import is_hidden_or_unsafe
from airules.utils.net import CancelToken, HttpClient

logger = logging.getLogger(__name__)

PER_PAGE = 100


def gitlab_headers(token: str) -> dict[str, str]:
    return {"PRIVATE-TOKEN": token} if token else {}


def paginate(
    http: HttpClient,
    url: str,
    params: dict[str, str],
    *,
    headers: dict[str, str],
    timeout: float,
    cancel: CancelToken | None,
) -> Iterator[Any]:
    """GitLab 风格分页：响应头 X-Next-Page 为空表示最后一页"""
    page = "1"
    while page:
        query = urlencode({**params, "per_page": PER_PAGE, "page": page})
        resp = http.get(f"{url}?{query}", headers=headers, timeout=timeout, cancel=cancel)
        items = resp.json()
        if not isinstance(items, list):
            raise TransportError(f"分页响应不是列表: {url}")
        yield from items
        page = resp.header("X-Next-Page").strip()


def project_api_base(url: str) -> str:
    """仓库 URL -> https://host/api/v4/projects/<url-encoded path>"""
    parsed = urlparse(normalize_url("git", url))
    path = parsed.path.strip("/")
    if not parsed.hostname or "/" not in path:
        raise ConfigError(f"无法从 URL 解析 GitLab 项目路径: {url}")
    return f"{parsed.scheme}://{parsed.netloc}/api/v4/projects/{quote(path, safe='')}"


class GitLabApiStrategy(ApiStrategy):
    label = "gitlab-api"

    def __init__(self, spec: RegistrySpec, http: HttpClient) -> None:
        self.spec = spec
        self.http = http
        self.project_url = project_api_base(spec.url)

    def _get(self, url: str, cancel: CancelToken | None) -> Any:
        return self.http.get(
            url, headers=gitlab_headers(self.spec.auth_token),
            timeout=self.spec.timeout, cancel=cancel,
        )

    def _paginate(self, url: str, params: dict[str, str], cancel: CancelToken | None) -> Iterator[Any]:
        return paginate(
            self.http, url, params,
            headers=gitlab_headers(self.spec.auth_token),
            timeout=self.spec.timeout, cancel=cancel,
        )

    def default_branch(self, cancel: CancelToken | None) -> str:
        info = self._get(self.project_url, cancel).json()
        branch = info.get("default_branch") if isinstance(info, dict) else None
        if not branch:
            raise TransportError(f"响应缺少 default_branch: {self.project_url}")
        return str(branch)

    def branch_sha(self, name: str, cancel: CancelToken | None) -> str:
        url = f"{self.project_url}/repository/branches/{quote(name, safe='')}"
        try:
            data = self._get(url, cancel).json()
        except HttpStatusError as e:
            if e.status == 404:
                raise ResolutionError(f"分支不存在: {name}", spec=name) from e
            raise
        try:
            return str(data["commit"]["id"])
        except (KeyError, TypeError) as e:
            raise TransportError(f"分支响应格式异常: {url}") from e

    def tag_map(self, cancel: CancelToken | None) -> dict[str, str]:
        tags: dict[str, str] = {}
        for t in self._paginate(f"{self.project_url}/repository/tags", {}, cancel):
            commit = t.get("commit") if isinstance(t, dict) else None
            if isinstance(commit, dict) and "name" in t and commit.get("id"):
                tags[str(t["name"])] = str(commit["id"])
        return tags

    def fetch_files(
        self, sha: str, patterns: list[str], cancel: CancelToken | None,
    ) -> dict[str, bytes]:
        tree_url = f"{self.project_url}/repository/tree"
        files: dict[str, bytes] = {}
        for item in self._paginate(tree_url, {"ref": sha, "recursive": "true"}, cancel):
            path = item.get("path", "")
            if item.get("type") != "blob" or is_hidden_or_unsafe(path):
                continue
            if not matches_any_pattern(path, patterns):
                continue
            raw_url = (
                f"{self.project_url}/repository/files/{quote(path, safe='')}/raw"
                f"?{urlencode({'ref': sha})}"
            )
            files[path] = self._get(raw_url, cancel).body
        logger.debug("gitlab-api 拉取 %s@%s: %d 个文件", self.project_url, sha, len(files))
        return files
