"""iTunes 検索 API クライアント.

取得手順:
  1. スコープごとのクエリを組み立てて GET
  2. JSON の results 配列を StoreItem に変換（未知のフィールドは無視）
"""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from storesearch.config import (
    REQUEST_TIMEOUT,
    SEARCH_LANG,
    SEARCH_LIMIT,
    SEARCH_URL,
    USER_AGENT,
)
from storesearch.errors import DecodeError, NetworkError
from storesearch.models import CancellationToken, SearchScope, StoreItem

logger = logging.getLogger(__name__)

# 先に見つかったキーを採用する
_ARTWORK_KEYS = ("artworkUrl100", "artworkUrl60", "artworkUrl512", "artworkUrl30")
_PRICE_KEYS = ("trackPrice", "collectionPrice", "price")
_DESCRIPTION_KEYS = ("description", "longDescription", "shortDescription")


def build_query(term: str, scope: SearchScope) -> dict[str, str]:
    """1 スコープ分の検索クエリを返す."""
    return {
        "term": term,
        "media": scope.media_type,
        "lang": SEARCH_LANG,
        "limit": SEARCH_LIMIT,
    }


class CatalogClient:
    """検索 API を叩いて StoreItem のリストを返す."""

    def __init__(
        self,
        session: requests.Session | None = None,
        search_url: str = SEARCH_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.session = session or requests.Session()
        self.search_url = search_url
        self.timeout = timeout

    def fetch_items(
        self, query: dict[str, str], token: CancellationToken | None = None
    ) -> list[StoreItem]:
        """検索を実行する.

        Args:
            query: term / media / lang / limit
            token: 差し替え判定用。通信の前後で確認する。

        Raises:
            CancelledError: token がキャンセル済み
            NetworkError: 通信失敗・HTTP エラー
            DecodeError: レスポンスが壊れている
        """
        if token is not None:
            token.raise_if_cancelled()

        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }
        try:
            resp = self.session.get(
                self.search_url, params=query, headers=headers, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise NetworkError(
                f"検索 API エラー: status={status}", url=self.search_url, status=status
            ) from e
        except requests.RequestException as e:
            raise NetworkError(f"検索 API 通信失敗: {e}", url=self.search_url) from e

        # 通信中に差し替えられていたら結果は使わない
        if token is not None:
            token.raise_if_cancelled()

        items = parse_search_results(resp.content)
        logger.debug("検索結果: media=%s, %d 件", query.get("media"), len(items))
        return items


def parse_search_results(body: str | bytes) -> list[StoreItem]:
    """レスポンス本文から StoreItem のリストを抽出する.

    Raises:
        DecodeError: JSON として読めない、または results 配列がない
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"JSON パースエラー: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError("トップレベルがオブジェクトではありません")

    entries = payload.get("results")
    if not isinstance(entries, list):
        raise DecodeError("results 配列がありません")

    items: list[StoreItem] = []
    for entry in entries:
        item = _parse_entry(entry)
        if item is not None:
            items.append(item)
        else:
            logger.warning("解釈できない検索結果をスキップ: %r", entry)
    return items


def _parse_entry(entry: Any) -> StoreItem | None:
    if not isinstance(entry, dict):
        return None

    item_id = entry.get("trackId") or entry.get("collectionId")
    name = entry.get("trackName") or entry.get("collectionName")
    if not isinstance(item_id, int) or not isinstance(name, str):
        return None

    price = _first(entry, _PRICE_KEYS)
    return StoreItem(
        id=item_id,
        name=name,
        kind=_resolve_kind(entry),
        artwork_url=_first(entry, _ARTWORK_KEYS),
        artist=entry.get("artistName"),
        price=float(price) if isinstance(price, (int, float)) else None,
        currency=entry.get("currency"),
        description=_first(entry, _DESCRIPTION_KEYS),
    )


def _resolve_kind(entry: dict) -> str:
    """kind を返す. アルバムは kind を持たないので wrapperType から補う."""
    kind = entry.get("kind")
    if isinstance(kind, str) and kind:
        return kind
    if entry.get("wrapperType") == "collection" and entry.get("collectionType") == "Album":
        return "album"
    return str(entry.get("wrapperType") or "")


def _first(entry: dict, keys: tuple[str, ...]):
    """keys のうち最初に値が入っているものを返す."""
    for key in keys:
        value = entry.get(key)
        if value is not None and value != "":
            return value
    return None
