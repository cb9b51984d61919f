"""HTTP実行補助。"""

from __future__ import annotations

import math
import platform
import socket
import threading
import time
from typing import TYPE_CHECKING, Protocol

from themehttp.config import CLIENT_NAME, VERSION

if TYPE_CHECKING:
    from collections.abc import Mapping

SUCCESS_STATUS_MIN = 100
SUCCESS_STATUS_MAX = 428
TOO_MANY_REQUESTS = 429

_HOST_RESOLUTION_MARKERS = (
    "no such host",
    "name or service not known",
    "nodename nor servname provided",
    "temporary failure in name resolution",
    "getaddrinfo failed",
)


class RateLimiter(Protocol):
    """送信レート制御の公開インターフェース。"""

    def wait(self) -> float:
        """送信許可まで待機し、待機した秒数を返す。"""

    def reset_after(self, seconds: float) -> None:
        """以降の wait() を seconds 秒後まで止める。"""


class SyncRateLimiter:
    """同期用の最小間隔レート制御。

    wait() はロックを保持したまま待機するため、同じリミッタを共有する
    すべてのスレッドの送信はここで直列化される。
    """

    def __init__(self, rate_limit_per_sec: float) -> None:
        self._min_interval = 1.0 / rate_limit_per_sec if rate_limit_per_sec > 0 else 0.0
        self._lock = threading.Lock()
        self._next_allowed = 0.0

    def wait(self) -> float:
        """送信許可まで待機する。

        Returns:
            待機した秒数。
        """

        with self._lock:
            now = time.monotonic()
            wait = max(0.0, self._next_allowed - now)
            if wait > 0:
                time.sleep(wait)
                now = time.monotonic()
            self._next_allowed = now + self._min_interval
            return wait

    def reset_after(self, seconds: float) -> None:
        """次の送信許可時刻を seconds 秒後以降へ繰り下げる。

        既存の停止期間は短縮しない。
        """

        with self._lock:
            resume_at = time.monotonic() + max(0.0, seconds)
            if resume_at > self._next_allowed:
                self._next_allowed = resume_at


_registry_lock = threading.Lock()
_registry: dict[str, SyncRateLimiter] = {}


def limiter_for(domain: str, rate_limit_per_sec: float) -> SyncRateLimiter:
    """ドメイン単位で共有するリミッタを返す。

    同じドメインへ向かうクライアントは同じリミッタを共有する。
    レートは最初に生成したときの値を使う。
    """

    key = domain.lower()
    with _registry_lock:
        limiter = _registry.get(key)
        if limiter is None:
            limiter = SyncRateLimiter(rate_limit_per_sec)
            _registry[key] = limiter
        return limiter


def parse_retry_after(value: str | None) -> float:
    """Retry-Afterヘッダを秒へ変換する。解釈できなければ0秒。"""

    if not value:
        return 0.0
    try:
        seconds = float(value.strip())
    except ValueError:
        return 0.0
    if not math.isfinite(seconds) or seconds < 0:
        return 0.0
    return seconds


def is_success_status(status_code: int) -> bool:
    """再試行機構から見て成功扱いとするステータスか判定する。

    4xx の多くも成功扱いとし、意味的なエラーの解釈は呼び出し側に委ねる。
    """

    return SUCCESS_STATUS_MIN <= status_code <= SUCCESS_STATUS_MAX


def is_host_resolution_error(exc: BaseException) -> bool:
    """例外が名前解決の失敗に由来するか判定する。"""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        message = str(current).lower()
        if any(marker in message for marker in _HOST_RESOLUTION_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def build_user_agent() -> str:
    """OS、アーキテクチャ、バージョンを含むUser-Agentを構築する。"""

    system = platform.system().lower() or "unknown"
    machine = platform.machine().lower() or "unknown"
    return f"{CLIENT_NAME}/{VERSION} ({system}; {machine}; {VERSION})"


def build_request_headers(
    access_token: str,
    user_agent: str,
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """標準ヘッダを構築し、呼び出し側のヘッダを後から重ねる。"""

    headers = {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": user_agent,
    }
    if extra:
        headers.update(extra)
    return headers
