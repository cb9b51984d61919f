"""再試行つきリクエスト実行。"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from themehttp.config import RetryConfig
from themehttp.errors import (
    ThemeHttpConnectivityError,
    ThemeHttpRetryExhaustedError,
    ThemeHttpSerializationError,
)
from themehttp.http import (
    TOO_MANY_REQUESTS,
    RateLimiter,
    is_host_resolution_error,
    is_success_status,
    parse_retry_after,
)
from themehttp.transport import request_deadline

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutgoingRequest:
    """1回の論理リクエスト。

    Attributes:
        method: HTTPメソッド。
        url: 絶対URL。
        headers: 送信ヘッダ。
        body: JSONへ変換する本文。本文なしはNone。
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None


def encode_body(body: Any, *, request_url: str | None = None) -> bytes:
    """本文をJSONバイト列へ変換する。"""

    try:
        return json.dumps(
            body,
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
        ).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise ThemeHttpSerializationError(
            f"リクエスト本文をJSONへ変換できません: {exc}",
            request_url=request_url,
        ) from exc


class RetryExecutor:
    """線形バックオフで再試行し、429ではリミッタを停止させる実行器。

    429応答は再試行回数に数えない。名前解決の失敗は即座に失敗とする。
    """

    def __init__(
        self,
        *,
        client: httpx.Client,
        limiter: RateLimiter,
        retry_config: RetryConfig | None = None,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._limiter = limiter
        self._retry_config = retry_config or RetryConfig()
        self._timeout = timeout

    def _build_request(self, request: OutgoingRequest) -> httpx.Request:
        """試行ごとに本文を再変換し、新しいストリームを持つ要求を作る。"""

        content = None
        if request.body is not None:
            content = encode_body(request.body, request_url=request.url)
        return self._client.build_request(
            request.method,
            request.url,
            headers=dict(request.headers),
            content=content,
        )

    def _send(self, http_request: httpx.Request) -> httpx.Response:
        with request_deadline(self._timeout):
            return self._client.send(http_request)

    def execute(self, request: OutgoingRequest) -> httpx.Response:
        """要求を送信し、成功応答（100〜428）を返す。

        Raises:
            ThemeHttpSerializationError: 本文をJSONへ変換できない場合。
            ThemeHttpConnectivityError: 名前解決に失敗した場合。
            ThemeHttpRetryExhaustedError: 再試行回数を使い切った場合。
        """

        max_retry = self._retry_config.max_retry
        last_exception: httpx.HTTPError | None = None
        last_status: int | None = None
        attempt = 0
        while attempt <= max_retry:
            http_request = self._build_request(request)
            self._limiter.wait()
            try:
                response = self._send(http_request)
            except httpx.HTTPError as exc:
                if is_host_resolution_error(exc):
                    raise ThemeHttpConnectivityError(request_url=request.url) from exc
                last_exception = exc
                last_status = None
                logger.debug(
                    "%s %s failed on attempt %d: %s",
                    request.method,
                    request.url,
                    attempt + 1,
                    exc,
                )
            else:
                status = response.status_code
                if is_success_status(status):
                    return response
                if status == TOO_MANY_REQUESTS:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    response.close()
                    logger.warning(
                        "rate limited on %s %s, pausing for %.3f seconds",
                        request.method,
                        request.url,
                        retry_after,
                    )
                    self._limiter.reset_after(retry_after)
                    continue
                last_status = status
                last_exception = None
                response.close()
                logger.debug(
                    "%s %s returned status %d on attempt %d",
                    request.method,
                    request.url,
                    status,
                    attempt + 1,
                )

            attempt += 1
            if attempt <= max_retry:
                time.sleep(attempt * self._retry_config.backoff_unit)

        logger.warning(
            "%s %s failed after %d retries",
            request.method,
            request.url,
            max_retry,
        )
        error = ThemeHttpRetryExhaustedError(
            max_retry=max_retry,
            last_status=last_status,
            request_url=request.url,
        )
        if last_exception is not None:
            raise error from last_exception
        raise error
