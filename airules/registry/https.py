"""HTTPS manifest registry

  <base>/manifest.json                        {"rulesets": {"name": ["1.0.0", "1.1.0"]}}
  <base>/<name>/<version>/ruleset.tar.gz
"""

from __future__ import annotations

from urllib.parse import quote

from airules.core.exceptions import ResolutionError, TransportError
from airules.core.resolver import RefSource
from airules.registry.package import ListedVersions, PackageRegistry
from airules.utils.net import CancelToken, validate_url_scheme


class HttpsManifestRegistry(PackageRegistry):
    MANIFEST = "manifest.json"

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if self.spec.auth_token:
            return {"Authorization": f"Bearer {self.spec.auth_token}"}
        return {}

    def _manifest(self, cancel: CancelToken | None) -> dict[str, list[str]]:
        url = f"{self.base_url}/{self.MANIFEST}"
        validate_url_scheme(url, context=f"registry {self.name}")
        data = self.http.get(url, headers=self._headers(), timeout=self.spec.timeout, cancel=cancel).json()
        rulesets = data.get("rulesets") if isinstance(data, dict) else None
        if not isinstance(rulesets, dict):
            raise TransportError(f"manifest 格式无效（缺少 rulesets 对象）: {url}")
        return {str(k): [str(v) for v in (vs or [])] for k, vs in rulesets.items()}

    def _versions(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        manifest = self._manifest(cancel)
        if ruleset not in manifest:
            raise ResolutionError(
                f"manifest 中不存在规则集: {ruleset}（可用: {sorted(manifest)}）",
                ruleset=ruleset,
            )
        return manifest[ruleset]

    def _list_versions(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        return self._versions(ruleset, cancel)

    def _ref_source(self, ruleset: str, cancel: CancelToken | None) -> RefSource:
        return ListedVersions(lambda: self._versions(ruleset, cancel), ruleset=ruleset)

    def _download_package(self, ruleset: str, version: str, cancel: CancelToken | None) -> bytes:
        url = f"{self.base_url}/{quote(ruleset)}/{quote(version)}/ruleset.tar.gz"
        return self.http.get(url, headers=self._headers(), timeout=self.spec.timeout, cancel=cancel).body
