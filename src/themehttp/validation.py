"""入力値の検証と正規化。"""

from __future__ import annotations

import math

import httpx

from themehttp.errors import ThemeHttpConfigError

LOOPBACK_HOST = "127.0.0.1"
_SUPPORTED_PROXY_SCHEMES = ("http", "https")


def resolve_base_url(domain: str) -> httpx.URL:
    """ドメイン指定からベースURLを決定する。

    スキーム省略時は https とみなす。ホストが 127.0.0.1 のときだけ
    指定どおりのスキームを残し、それ以外は https へ固定する。

    Args:
        domain: ドメインまたはURL。

    Returns:
        正規化済みベースURL。

    Raises:
        ThemeHttpConfigError: URLとして解釈できない場合。
    """

    text = (domain or "").strip()
    candidate = text if "://" in text else f"https://{text}"
    try:
        url = httpx.URL(candidate)
    except httpx.InvalidURL as exc:
        raise ThemeHttpConfigError(f"invalid domain {domain}") from exc
    if not url.host:
        raise ThemeHttpConfigError(f"invalid domain {domain}")
    if url.host != LOOPBACK_HOST and url.scheme != "https":
        url = url.copy_with(scheme="https")
    return url


def join_url(base_url: httpx.URL, path: str) -> str:
    """ベースURLとパスを区切り1つで連結する。"""

    return str(base_url).rstrip("/") + "/" + path.lstrip("/")


def parse_proxy_url(proxy: str | None) -> httpx.URL | None:
    """プロキシURLを検証する。

    受け付けるのは http/https の絶対URIのみ。それ以外の絶対URI
    （socks5 など）は不正として扱う。

    Returns:
        プロキシURL。未指定ならNone。

    Raises:
        ThemeHttpConfigError: 絶対URIでない、または未対応スキームの場合。
    """

    if not proxy:
        return None
    try:
        url = httpx.URL(proxy)
    except httpx.InvalidURL as exc:
        raise ThemeHttpConfigError("invalid proxy URI") from exc
    if url.scheme not in _SUPPORTED_PROXY_SCHEMES or not url.host:
        raise ThemeHttpConfigError("invalid proxy URI")
    return url


def validate_timeout(timeout: float) -> float:
    """タイムアウト秒を検証する。"""

    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ThemeHttpConfigError("timeout は数値で指定してください。")
    if not math.isfinite(timeout) or timeout <= 0:
        raise ThemeHttpConfigError("timeout は0より大きい値を指定してください。")
    return float(timeout)


def validate_max_retry(max_retry: int) -> int:
    """最大再試行回数を検証する。"""

    if isinstance(max_retry, bool) or not isinstance(max_retry, int) or max_retry < 0:
        raise ThemeHttpConfigError("max_retry は0以上の整数を指定してください。")
    return max_retry
