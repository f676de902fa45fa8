"""例外定義.

NetworkError / DecodeError はスコープ単位で握りつぶしてログに出す。
CancelledError は検索の差し替えで起こる正常系なので黙って捨てる。
"""

from __future__ import annotations


class StoreSearchError(Exception):
    """store-search の例外基底クラス."""


class NetworkError(StoreSearchError):
    """通信失敗・サーバーエラー."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class DecodeError(StoreSearchError):
    """レスポンス本文が壊れている."""


class CancelledError(StoreSearchError):
    """処理が新しい検索に差し替えられた、または明示的に止められた."""
