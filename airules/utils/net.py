"""网络工具 — URL 校验、可取消的 HTTP GET

所有 HTTP 后端（GitHub/GitLab API、HTTPS manifest、S3/HTTP）通过 HttpClient 协议访问网络，
测试时注入假实现，无需 patch urllib。
"""

from __future__ import annotations

import json
import logging
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse

from airules import __version__
from airules.core.exceptions import (
    HttpStatusError,
    OperationCancelledError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

# 单个响应体上限，防止异常大包耗尽内存
MAX_RESPONSE_BYTES = 200 * 1024 * 1024


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


# =========================================================================
# 取消令牌
# =========================================================================

class CancelToken:
    """单个下载任务的取消令牌（跨线程安全）"""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, what: str = "") -> None:
        if self._event.is_set():
            label = f": {what}" if what else ""
            reason = f" ({self.reason})" if self.reason else ""
            raise OperationCancelledError(f"操作已取消{label}{reason}")


def check_cancelled(cancel: CancelToken | None, what: str = "") -> None:
    """cancel 为 None 时视为不可取消"""
    if cancel is not None:
        cancel.raise_if_cancelled(what)


# =========================================================================
# HTTP 客户端
# =========================================================================

@dataclass
class HttpResponse:
    """HTTP 响应（headers 键统一小写）"""

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise TransportError(f"响应不是合法 JSON: {e}") from e


class HttpClient(Protocol):
    """HTTP GET 协议，非 2xx 抛 HttpStatusError，网络故障抛 TransportError"""

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> HttpResponse:
        ...


class UrllibHttpClient:
    """基于 urllib 的默认实现，分块读取以便及时响应取消"""

    CHUNK_SIZE = 64 * 1024

    def __init__(self, timeout: float = 30, max_bytes: int = MAX_RESPONSE_BYTES) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> HttpResponse:
        validate_url_scheme(url, context="http get")
        check_cancelled(cancel, url)
        req_headers = {"User-Agent": f"airules/{__version__}"}
        req_headers.update(headers or {})
        req = urllib.request.Request(url, headers=req_headers)
        logger.debug("GET %s", url)
        try:
            with urllib.request.urlopen(  # nosec B310
                req, timeout=timeout or self.timeout,
            ) as resp:
                body = self._read_body(resp, url, cancel)
                return HttpResponse(
                    status=resp.status,
                    body=body,
                    headers={k.lower(): v for k, v in resp.headers.items()},
                )
        except urllib.error.HTTPError as e:
            raise HttpStatusError(url, e.code, str(e.reason)) from e
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(f"请求失败: {url} - {e}") from e

    def _read_body(self, resp: Any, url: str, cancel: CancelToken | None) -> bytes:
        chunks: list[bytes] = []
        total = 0
        while True:
            check_cancelled(cancel, url)
            chunk = resp.read(self.CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_bytes:
                raise TransportError(
                    f"响应过大: {url} 超过 {self.max_bytes} 字节"
                )
            chunks.append(chunk)
        return b"".join(chunks)
