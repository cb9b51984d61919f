"""設定値定義。"""

from __future__ import annotations

from dataclasses import dataclass, field

VERSION = "0.1.0"
CLIENT_NAME = "themehttp"

RATE_LIMIT_PER_SEC = 4.0
DEFAULT_TIMEOUT = 30.0
MAX_RETRY = 5


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """再試行設定。

    Attributes:
        max_retry: 初回送信後に許す追加送信回数。
        backoff_unit: 線形バックオフの単位秒。n回目の失敗後は n * backoff_unit 秒待機する。
    """

    max_retry: int = MAX_RETRY
    backoff_unit: float = 1.0


@dataclass(frozen=True, slots=True)
class TransportConfig:
    """接続層の設定。

    Attributes:
        connect_timeout: TCP接続タイムアウト秒。
        keepalive_interval: TCP keep-alive 間隔秒。
        connection_deadline: 接続確立から強制終了までの絶対期限秒。
        idle_timeout: アイドル接続の保持秒。
        tls_handshake_timeout: TLSハンドシェイクのタイムアウト秒。
        response_header_timeout: 応答待ちのタイムアウト秒。
        max_idle_per_host: 保持するアイドル接続数の上限。
    """

    connect_timeout: float = 3.0
    keepalive_interval: float = 1.0
    connection_deadline: float = 5.0
    idle_timeout: float = 1.0
    tls_handshake_timeout: float = 1.0
    response_header_timeout: float = 1.0
    max_idle_per_host: int = 10


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """クライアント共通設定。

    Attributes:
        domain: 接続先ドメイン（スキーム省略可）。
        access_token: X-Shopify-Access-Token に載せるトークン。
        proxy: プロキシURL。空文字またはNoneで無効。
        timeout: 1リクエスト全体の上限秒。
        user_agent: User-Agent。
        insecure_skip_verify: TLS証明書検証を無効化するか。
        rate_limit_per_sec: 1秒あたり送信回数上限。
        retry: 再試行設定。
        transport: 接続層の設定。
    """

    domain: str
    access_token: str
    proxy: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str | None = None
    insecure_skip_verify: bool = True
    rate_limit_per_sec: float = RATE_LIMIT_PER_SEC
    retry: RetryConfig = field(default_factory=RetryConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
