"""GitLab generic package registry

  列表  GET /api/v4/projects/:id/packages?package_type=generic&package_name=<name>
  下载  GET /api/v4/projects/:id/packages/generic/<name>/<version>/ruleset.tar.gz
latest 为最新发布（created_at 最大）的版本。
"""

from __future__ import annotations

from urllib.parse import quote, urlparse

from airules.core.exceptions import ResolutionError
from airules.core.resolver import RefSource
from airules.registry.gitlab_api import gitlab_headers, paginate
from airules.registry.package import ListedVersions, PackageRegistry
from airules.utils.net import CancelToken


class GitLabPackageRegistry(PackageRegistry):

    @property
    def project_url(self) -> str:
        parsed = urlparse(self.url.rstrip("/"))
        base = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else self.url.rstrip("/")
        return f"{base}/api/v4/projects/{quote(self.spec.project_id, safe='')}"

    def _published(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        """按发布时间升序的版本列表"""
        packages = [
            p for p in paginate(
                self.http, f"{self.project_url}/packages",
                {"package_type": "generic", "package_name": ruleset},
                headers=gitlab_headers(self.spec.auth_token),
                timeout=self.spec.timeout, cancel=cancel,
            )
            if isinstance(p, dict) and p.get("name") == ruleset and p.get("version")
        ]
        if not packages:
            raise ResolutionError(f"GitLab 中不存在规则集包: {ruleset}", ruleset=ruleset)
        packages.sort(key=lambda p: str(p.get("created_at", "")))
        versions: list[str] = []
        for p in packages:
            v = str(p["version"])
            if v not in versions:
                versions.append(v)
        return versions

    def _list_versions(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        return self._published(ruleset, cancel)

    def _ref_source(self, ruleset: str, cancel: CancelToken | None) -> RefSource:
        return ListedVersions(lambda: self._published(ruleset, cancel), ruleset=ruleset)

    def _download_package(self, ruleset: str, version: str, cancel: CancelToken | None) -> bytes:
        url = (
            f"{self.project_url}/packages/generic/"
            f"{quote(ruleset, safe='')}/{quote(version, safe='')}/ruleset.tar.gz"
        )
        return self.http.get(
            url, headers=gitlab_headers(self.spec.auth_token),
            timeout=self.spec.timeout, cancel=cancel,
        ).body
