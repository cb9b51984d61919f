"""公開クライアント実装。"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from themehttp.config import (
    DEFAULT_TIMEOUT,
    MAX_RETRY,
    RATE_LIMIT_PER_SEC,
    ClientConfig,
    RetryConfig,
    TransportConfig,
)
from themehttp.http import RateLimiter, build_request_headers, build_user_agent, limiter_for
from themehttp.services import OutgoingRequest, RetryExecutor
from themehttp.transport import build_http_client
from themehttp.validation import (
    join_url,
    parse_proxy_url,
    resolve_base_url,
    validate_max_retry,
    validate_timeout,
)

logger = logging.getLogger(__name__)


class ThemeClient:
    """認証ヘッダつきでテーマAPIへ要求を送る同期クライアント。

    複数スレッドから共有してよい。共有される状態はレートリミッタと
    接続プールのみで、各呼び出しは独立して再試行される。
    """

    def __init__(
        self,
        domain: str,
        access_token: str,
        *,
        proxy: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        insecure_skip_verify: bool = True,
        user_agent: str | None = None,
        rate_limit_per_sec: float = RATE_LIMIT_PER_SEC,
        max_retry: int = MAX_RETRY,
        transport_config: TransportConfig | None = None,
        limiter: RateLimiter | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """クライアントを初期化する。

        Args:
            domain: 接続先ドメイン。スキーム省略時は https。
            access_token: アクセストークン。
            proxy: プロキシURL（http/https の絶対URI）。
            timeout: 1リクエスト全体の上限秒。
            insecure_skip_verify: TLS証明書検証を無効化するか。既定は無効化。
            user_agent: User-Agent。未指定時はOS・アーキテクチャ・版を含む既定値。
            rate_limit_per_sec: ドメイン共有リミッタの1秒あたり送信回数上限。
            max_retry: 初回送信後の最大再試行回数。
            transport_config: 接続層の設定。
            limiter: 外部レートリミッタ。未指定時はドメイン単位の共有リミッタ。
            http_client: 外部httpx.Client。

        Raises:
            ThemeHttpConfigError: ドメイン、プロキシ、数値設定が不正な場合。
        """

        self._base_url = resolve_base_url(domain)
        parse_proxy_url(proxy)
        self._config = ClientConfig(
            domain=domain,
            access_token=access_token,
            proxy=proxy,
            timeout=validate_timeout(timeout),
            user_agent=user_agent or build_user_agent(),
            insecure_skip_verify=insecure_skip_verify,
            rate_limit_per_sec=rate_limit_per_sec,
            retry=RetryConfig(max_retry=validate_max_retry(max_retry)),
            transport=transport_config or TransportConfig(),
        )

        self._owns_client = http_client is None
        if http_client is None:
            self._http_client = build_http_client(self._config)
        else:
            self._http_client = http_client

        if limiter is None:
            limiter = limiter_for(self._base_url.host, rate_limit_per_sec)
        self._limiter = limiter
        self._executor = RetryExecutor(
            client=self._http_client,
            limiter=self._limiter,
            retry_config=self._config.retry,
            timeout=self._config.timeout,
        )
        logger.debug("client ready for %s", self._base_url)

    @property
    def base_url(self) -> httpx.URL:
        """解決済みベースURL。"""

        return self._base_url

    @property
    def config(self) -> ClientConfig:
        return self._config

    def get(self, path: str, headers: Mapping[str, str] | None = None) -> httpx.Response:
        """GET要求を送る。"""

        return self._do("GET", path, None, headers)

    def post(
        self,
        path: str,
        body: Any,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """body をJSON本文としてPOST要求を送る。"""

        return self._do("POST", path, body, headers)

    def put(
        self,
        path: str,
        body: Any,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """body をJSON本文としてPUT要求を送る。"""

        return self._do("PUT", path, body, headers)

    def delete(self, path: str, headers: Mapping[str, str] | None = None) -> httpx.Response:
        """DELETE要求を送る。"""

        return self._do("DELETE", path, None, headers)

    def _do(
        self,
        method: str,
        path: str,
        body: Any,
        headers: Mapping[str, str] | None,
    ) -> httpx.Response:
        request = OutgoingRequest(
            method=method,
            url=join_url(self._base_url, path),
            headers=build_request_headers(
                self._config.access_token,
                self._config.user_agent,
                headers,
            ),
            body=body,
        )
        return self._executor.execute(request)

    def close(self) -> None:
        """内部Clientをクローズし、アイドル接続を解放する。"""

        if self._owns_client:
            self._http_client.close()

    def __enter__(self) -> "ThemeClient":
        """コンテキスト開始。"""

        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """コンテキスト終了。"""

        self.close()
