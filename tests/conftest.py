"""测试公共设施：假 HTTP 客户端、隔离的全局配置"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

import airules.core.config as cfgmod
from airules.core.exceptions import HttpStatusError
from airules.services.container import reset_container
from airules.utils.net import CancelToken, HttpResponse, check_cancelled


class FakeHttp:
    """按完整 URL 返回预设响应，未登记的 URL 一律 404"""

    def __init__(self) -> None:
        self.routes: dict[str, HttpResponse | Exception] = {}
        self.calls: list[str] = []
        self.headers_seen: list[dict[str, str]] = []

    def add(
        self, url: str, body: bytes = b"", *,
        json_data: Any = None, headers: dict[str, str] | None = None, status: int = 200,
    ) -> None:
        if json_data is not None:
            body = json.dumps(json_data).encode("utf-8")
        self.routes[url] = HttpResponse(
            status=status, body=body,
            headers={k.lower(): v for k, v in (headers or {}).items()},
        )

    def fail(self, url: str, error: Exception) -> None:
        self.routes[url] = error

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> HttpResponse:
        self.calls.append(url)
        self.headers_seen.append(dict(headers or {}))
        check_cancelled(cancel, url)
        route = self.routes.get(url)
        if route is None:
            raise HttpStatusError(url, 404, "Not Found")
        if isinstance(route, Exception):
            raise route
        return route

    def count(self, fragment: str) -> int:
        return sum(1 for c in self.calls if fragment in c)


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """每个测试独立的全局配置与缓存目录"""
    monkeypatch.setattr(cfgmod, "_current", cfgmod.Config(cache_dir=str(tmp_path / "cache")))
    reset_container()
    yield
    reset_container()
