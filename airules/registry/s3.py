"""S3 / 通用 HTTP registry — 只支持精确版本

对象键固定为 ``[<prefix>/]<name>/<version>/ruleset.tar.gz``。
两者都无法列出版本，"latest" 和范围约束直接报错，要求调用方指定精确版本。
S3 通过公开读或预签名的虚拟主机风格 URL 访问。
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from airules.core.exceptions import ResolutionError
from airules.core.resolver import RefSource
from airules.core.semver import is_latest, is_range
from airules.registry.package import PackageRegistry
from airules.utils.net import CancelToken

logger = logging.getLogger(__name__)


class ExactVersionRegistry(PackageRegistry):
    """版本不可枚举的包 registry"""

    def _unsupported(self, ruleset: str, spec: str = "") -> ResolutionError:
        return ResolutionError(
            f"{self.type} registry '{self.name}' 无法列出版本，"
            f"请为 {ruleset} 指定精确版本 (specify exact version)",
            ruleset=ruleset, spec=spec,
        )

    def _list_versions(self, ruleset: str, cancel: CancelToken | None) -> list[str]:
        raise self._unsupported(ruleset)

    def _ref_source(self, ruleset: str, cancel: CancelToken | None) -> RefSource:
        raise self._unsupported(ruleset)

    def _resolve(self, ruleset: str, spec: str, cancel: CancelToken | None) -> str:
        if is_latest(spec) or is_range(spec):
            raise self._unsupported(ruleset, spec)
        # 精确版本不做存在性检查，下载时 404 即报错
        return spec

    def _headers(self) -> dict[str, str]:
        if self.spec.auth_token:
            return {"Authorization": f"Bearer {self.spec.auth_token}"}
        return {}

    def object_url(self, ruleset: str, version: str) -> str:
        key = f"{quote(ruleset)}/{quote(version)}/ruleset.tar.gz"
        return f"{self.base_url}/{key}"

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")

    def _download_package(self, ruleset: str, version: str, cancel: CancelToken | None) -> bytes:
        url = self.object_url(ruleset, version)
        logger.debug("GET 对象: %s", url)
        return self.http.get(
            url, headers=self._headers(), timeout=self.spec.timeout, cancel=cancel,
        ).body


class S3Registry(ExactVersionRegistry):
    """url 为 bucket 名（或 s3://bucket），也可直接给出兼容 S3 的 http(s) 端点"""

    @property
    def base_url(self) -> str:
        raw = self.url.strip().rstrip("/")
        if raw.startswith(("http://", "https://")):
            base = raw
        else:
            bucket = raw.removeprefix("s3://").split("/", 1)[0]
            region = self.spec.region or "us-east-1"
            base = f"https://{bucket}.s3.{region}.amazonaws.com"
        if self.spec.prefix:
            base = f"{base}/{quote(self.spec.prefix)}"
        return base


class HttpRegistry(ExactVersionRegistry):
    """通用 HTTP 文件服务器"""
