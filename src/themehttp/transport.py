"""接続期限つきダイヤラとHTTPトランスポート。

すべての接続は確立直後に絶対期限を持ち、期限を過ぎた読み書きは
ソケットに触れずにタイムアウトとして失敗する。これとは別に、
request_deadline() で1リクエスト全体の上限を現在のコンテキストへ設定できる。
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import socket
import ssl
import time
from collections.abc import Iterable, Iterator
from typing import Any

import httpcore
import httpx

from themehttp.config import ClientConfig, TransportConfig
from themehttp.validation import parse_proxy_url

logger = logging.getLogger(__name__)

SocketOption = tuple[int, int, int] | tuple[int, int, bytes | bytearray] | tuple[int, int, None, int]

_request_deadline: contextvars.ContextVar[float | None] = contextvars.ContextVar(
    "themehttp_request_deadline",
    default=None,
)


@contextlib.contextmanager
def request_deadline(timeout: float | None) -> Iterator[None]:
    """1リクエスト全体（接続、TLS、送信、受信）の絶対上限を設定する。"""

    if timeout is None:
        yield
        return
    token = _request_deadline.set(time.monotonic() + timeout)
    try:
        yield
    finally:
        _request_deadline.reset(token)


def keepalive_socket_options(interval: float) -> list[SocketOption]:
    """TCP keep-alive 用のソケットオプションを返す。"""

    seconds = max(1, int(interval))
    options: list[SocketOption] = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if hasattr(socket, "TCP_KEEPIDLE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, seconds))
    elif hasattr(socket, "TCP_KEEPALIVE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPALIVE, seconds))
    if hasattr(socket, "TCP_KEEPINTVL"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, seconds))
    return options


def _bounded_timeout(
    timeout: float | None,
    *limits: float | None,
    exc_class: type[Exception],
) -> float | None:
    """timeout と各絶対期限のうち最も短い残り時間を返す。"""

    now = time.monotonic()
    candidates = [timeout] if timeout is not None else []
    for deadline in limits:
        if deadline is not None:
            candidates.append(deadline - now)
    if not candidates:
        return None
    remaining = min(candidates)
    if remaining <= 0:
        raise exc_class("connection deadline exceeded")
    return remaining


class DeadlineStream(httpcore.NetworkStream):
    """絶対期限を強制するネットワークストリーム。"""

    def __init__(
        self,
        stream: httpcore.NetworkStream,
        *,
        deadline: float,
        tls_handshake_timeout: float,
    ) -> None:
        self._stream = stream
        self._deadline = deadline
        self._tls_handshake_timeout = tls_handshake_timeout

    @property
    def deadline(self) -> float:
        return self._deadline

    def expired(self) -> bool:
        return time.monotonic() >= self._deadline

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        bounded = _bounded_timeout(
            timeout,
            self._deadline,
            _request_deadline.get(),
            exc_class=httpcore.ReadTimeout,
        )
        return self._stream.read(max_bytes, timeout=bounded)

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        bounded = _bounded_timeout(
            timeout,
            self._deadline,
            _request_deadline.get(),
            exc_class=httpcore.WriteTimeout,
        )
        self._stream.write(buffer, timeout=bounded)

    def close(self) -> None:
        self._stream.close()

    def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: str | None = None,
        timeout: float | None = None,
    ) -> httpcore.NetworkStream:
        handshake = self._tls_handshake_timeout
        if timeout is not None:
            handshake = min(timeout, handshake)
        bounded = _bounded_timeout(
            handshake,
            self._deadline,
            _request_deadline.get(),
            exc_class=httpcore.ConnectTimeout,
        )
        tls_stream = self._stream.start_tls(
            ssl_context,
            server_hostname=server_hostname,
            timeout=bounded,
        )
        return DeadlineStream(
            tls_stream,
            deadline=self._deadline,
            tls_handshake_timeout=self._tls_handshake_timeout,
        )

    def get_extra_info(self, info: str) -> Any:
        # 期限切れの接続は読み取り可能（切断済み）と報告し、プールから外させる。
        if info == "is_readable" and self.expired():
            return True
        return self._stream.get_extra_info(info)


class DeadlineBackend(httpcore.NetworkBackend):
    """接続タイムアウトと keep-alive を設定し、確立直後に絶対期限を課すダイヤラ。"""

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        backend: httpcore.NetworkBackend | None = None,
    ) -> None:
        self._config = config or TransportConfig()
        self._backend = backend or httpcore.SyncBackend()
        self._socket_options = keepalive_socket_options(self._config.keepalive_interval)

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[SocketOption] | None = None,
    ) -> httpcore.NetworkStream:
        connect_timeout = self._config.connect_timeout
        if timeout is not None:
            connect_timeout = min(timeout, connect_timeout)
        bounded = _bounded_timeout(
            connect_timeout,
            _request_deadline.get(),
            exc_class=httpcore.ConnectTimeout,
        )
        options = [*self._socket_options, *(socket_options or [])]
        stream = self._backend.connect_tcp(
            host,
            port,
            timeout=bounded,
            local_address=local_address,
            socket_options=options,
        )
        logger.debug("connected to %s:%s", host, port)
        return DeadlineStream(
            stream,
            deadline=time.monotonic() + self._config.connection_deadline,
            tls_handshake_timeout=self._config.tls_handshake_timeout,
        )

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[SocketOption] | None = None,
    ) -> httpcore.NetworkStream:
        return self._backend.connect_unix_socket(
            path,
            timeout=timeout,
            socket_options=socket_options,
        )

    def sleep(self, seconds: float) -> None:
        self._backend.sleep(seconds)


def build_ssl_context(*, insecure_skip_verify: bool) -> ssl.SSLContext:
    """SSLコンテキストを構築する。insecure_skip_verify=True で証明書検証を行わない。"""

    return httpx.create_ssl_context(verify=not insecure_skip_verify)


class DeadlineTransport(httpx.HTTPTransport):
    """DeadlineBackend 上に接続プールを構築する httpx トランスポート。"""

    def __init__(
        self,
        *,
        config: TransportConfig | None = None,
        proxy: httpx.URL | None = None,
        insecure_skip_verify: bool = True,
        network_backend: httpcore.NetworkBackend | None = None,
    ) -> None:
        # 基底の __init__ は呼ばない。リクエスト処理は self._pool のみを参照する。
        transport_config = config or TransportConfig()
        ssl_context = build_ssl_context(insecure_skip_verify=insecure_skip_verify)
        backend = network_backend or DeadlineBackend(transport_config)
        if insecure_skip_verify:
            logger.debug("TLS certificate verification is disabled")
        if proxy is None:
            self._pool = httpcore.ConnectionPool(
                ssl_context=ssl_context,
                max_keepalive_connections=transport_config.max_idle_per_host,
                keepalive_expiry=transport_config.idle_timeout,
                network_backend=backend,
            )
        else:
            proxy_conf = httpx.Proxy(url=proxy)
            self._pool = httpcore.HTTPProxy(
                proxy_url=httpcore.URL(
                    scheme=proxy_conf.url.raw_scheme,
                    host=proxy_conf.url.raw_host,
                    port=proxy_conf.url.port,
                    target=proxy_conf.url.raw_path,
                ),
                proxy_auth=proxy_conf.raw_auth,
                proxy_headers=proxy_conf.headers.raw,
                ssl_context=ssl_context,
                max_keepalive_connections=transport_config.max_idle_per_host,
                keepalive_expiry=transport_config.idle_timeout,
                network_backend=backend,
            )


def build_timeout(config: ClientConfig) -> httpx.Timeout:
    """フェーズ別タイムアウトを構築する。"""

    transport_config = config.transport
    return httpx.Timeout(
        connect=transport_config.connect_timeout,
        read=transport_config.response_header_timeout,
        write=config.timeout,
        pool=config.timeout,
    )


def build_http_client(config: ClientConfig) -> httpx.Client:
    """設定から httpx.Client を構築する。

    Raises:
        ThemeHttpConfigError: プロキシURLが不正な場合。
    """

    proxy = parse_proxy_url(config.proxy)
    transport = DeadlineTransport(
        config=config.transport,
        proxy=proxy,
        insecure_skip_verify=config.insecure_skip_verify,
    )
    return httpx.Client(
        transport=transport,
        timeout=build_timeout(config),
        follow_redirects=True,
        trust_env=False,
    )
