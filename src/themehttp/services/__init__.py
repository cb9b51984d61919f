"""サービス層モジュール。"""

from themehttp.services._transport import OutgoingRequest, RetryExecutor, encode_body

__all__ = [
    "OutgoingRequest",
    "RetryExecutor",
    "encode_body",
]
