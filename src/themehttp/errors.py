"""例外定義。"""

from __future__ import annotations

from dataclasses import dataclass

CONNECTIVITY_MESSAGE = (
    "DNS problem while connecting to Shopify, "
    "this indicates a problem with your internet connection"
)


@dataclass(slots=True)
class ErrorContext:
    """例外に付随する共通コンテキスト。

    Attributes:
        request_url: リクエストURL。
    """

    request_url: str | None = None


class ThemeHttpError(Exception):
    """ライブラリ例外の基底クラス。

    Attributes:
        origin: 例外発生元。
        context: 追加コンテキスト。
    """

    def __init__(
        self,
        message: str,
        *,
        origin: str,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(message)
        self.origin = origin
        self.context = context or ErrorContext()


class ThemeHttpConfigError(ThemeHttpError):
    """構築時の設定エラー（ドメイン、プロキシ等）。"""

    def __init__(self, message: str) -> None:
        super().__init__(message, origin="client_validation")


class ThemeHttpSerializationError(ThemeHttpError):
    """リクエスト本文をJSONへ変換できない。"""

    def __init__(self, message: str, *, request_url: str | None = None) -> None:
        super().__init__(
            message,
            origin="client_validation",
            context=ErrorContext(request_url=request_url),
        )


class ThemeHttpTransportError(ThemeHttpError):
    """HTTP通信層の例外。"""

    def __init__(self, message: str, *, request_url: str | None = None) -> None:
        super().__init__(
            message,
            origin="transport",
            context=ErrorContext(request_url=request_url),
        )


class ThemeHttpConnectivityError(ThemeHttpTransportError):
    """名前解決に失敗した。再試行しない。"""

    def __init__(self, *, request_url: str | None = None) -> None:
        super().__init__(CONNECTIVITY_MESSAGE, request_url=request_url)


class ThemeHttpRetryExhaustedError(ThemeHttpTransportError):
    """再試行回数を使い切った。

    Attributes:
        max_retry: 設定された最大再試行回数。
        last_status: 最後に受信した応答のステータス。応答が無ければNone。
    """

    def __init__(
        self,
        *,
        max_retry: int,
        last_status: int | None = None,
        request_url: str | None = None,
    ) -> None:
        super().__init__(
            f"request failed after {max_retry} retries",
            request_url=request_url,
        )
        self.max_retry = max_retry
        self.last_status = last_status
