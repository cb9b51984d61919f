"""themehttp 公開API。"""

from themehttp.client import ThemeClient
from themehttp.config import VERSION, ClientConfig, RetryConfig, TransportConfig
from themehttp.errors import (
    ThemeHttpConfigError,
    ThemeHttpConnectivityError,
    ThemeHttpError,
    ThemeHttpRetryExhaustedError,
    ThemeHttpSerializationError,
    ThemeHttpTransportError,
)
from themehttp.http import RateLimiter, SyncRateLimiter

__version__ = VERSION

__all__ = [
    "ClientConfig",
    "RateLimiter",
    "RetryConfig",
    "SyncRateLimiter",
    "ThemeClient",
    "ThemeHttpConfigError",
    "ThemeHttpConnectivityError",
    "ThemeHttpError",
    "ThemeHttpRetryExhaustedError",
    "ThemeHttpSerializationError",
    "ThemeHttpTransportError",
    "TransportConfig",
    "__version__",
]
