"""検索の並列実行・マージ・キャンセル.

処理フロー:
  1. スコープを解決（ALL は 4 種に展開）
  2. 前回の検索をキャンセルし、正規の結果集合を空にする
  3. スコープごとに CatalogClient.fetch_items をワーカープールで並列実行
  4. 完了したものから制御スレッドに戻し、有効なものだけマージして購読者へ通知
  5. 全スコープ完了で検索を終了扱いにする

正規の結果集合を書き換えるのは制御スレッド（1 スレッドの executor）だけ。
ロックは使わず、マージ直前のトークン確認で古い検索の結果を捨てる。
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from storesearch.catalog import CatalogClient, build_query
from storesearch.config import MAX_WORKERS
from storesearch.errors import CancelledError, StoreSearchError
from storesearch.models import (
    ResultSection,
    SearchRequest,
    SearchScope,
    StoreItem,
    build_sections,
)

logger = logging.getLogger(__name__)

SectionsCallback = Callable[[tuple[ResultSection, ...]], None]


class Subscription:
    """購読の解除ハンドル."""

    def __init__(self, owner: SearchOrchestrator, callback: SectionsCallback):
        self._owner = owner
        self.callback = callback

    def unsubscribe(self) -> None:
        self._owner._remove_subscription(self)


class SearchOrchestrator:
    """検索結果の正規集合を持ち、購読者（Projection Sink）に配る."""

    def __init__(
        self,
        client: CatalogClient,
        *,
        worker_pool: ThreadPoolExecutor | None = None,
        control: ThreadPoolExecutor | None = None,
    ):
        self._client = client
        self._workers = worker_pool or ThreadPoolExecutor(
            max_workers=MAX_WORKERS, thread_name_prefix="search-worker"
        )
        self._control = control or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="search-control"
        )

        # 以下は制御スレッドからのみ書き換える
        self._items: list[StoreItem] = []
        self._item_index: dict[int, StoreItem] = {}
        self._sections: tuple[ResultSection, ...] = ()
        self._selected_scope = SearchScope.ALL
        self._active: SearchRequest | None = None
        self._futures: list[Future] = []

        self._subscriptions: list[Subscription] = []
        self._subscriptions_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    # --- 参照 ---

    @property
    def items(self) -> list[StoreItem]:
        return list(self._items)

    @property
    def sections(self) -> tuple[ResultSection, ...]:
        return self._sections

    @property
    def selected_scope(self) -> SearchScope:
        return self._selected_scope

    @property
    def active_request(self) -> SearchRequest | None:
        return self._active

    def item(self, item_id: int) -> StoreItem | None:
        return self._item_index.get(item_id)

    # --- 購読 ---

    def subscribe(self, callback: SectionsCallback) -> Subscription:
        subscription = Subscription(self, callback)
        with self._subscriptions_lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: Subscription) -> None:
        with self._subscriptions_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    # --- 操作 ---

    def search(self, term: str, scope: SearchScope = SearchScope.ALL) -> None:
        """新しい検索を開始する. 実行中の検索は差し替えられる."""
        self._control.submit(self._start, term, scope)

    def set_scope(self, scope: SearchScope) -> None:
        """スコープの絞り込みだけを変える. 実行中の無関係なスコープの結果は捨てられる."""
        self._control.submit(self._select_scope, scope)

    def cancel(self) -> None:
        """実行中の検索を止める. マージ済みの結果はそのまま残る."""
        self._control.submit(self._cancel_and_settle)

    def call_soon(self, fn: Callable, *args) -> Future:
        """fn を制御スレッドで実行する."""
        return self._control.submit(fn, *args)

    def flush(self, timeout: float | None = None) -> None:
        """ここまでに積まれた制御スレッドの処理が終わるまで待つ."""
        self._control.submit(lambda: None).result(timeout)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """実行中の検索が終わるまで待つ. タイムアウトしたら False."""
        # 積まれている _start を先に流してから待つ
        self.flush(timeout)
        finished = self._idle.wait(timeout)
        if finished:
            self.flush(timeout)
        return finished

    def close(self) -> None:
        if self._active is not None:
            self._active.token.cancel()
        self._control.shutdown(wait=True)
        self._workers.shutdown(wait=False, cancel_futures=True)
        self._idle.set()

    # --- 制御スレッド側 ---

    def _start(self, term: str, scope: SearchScope) -> None:
        self._cancel_active()
        self._selected_scope = scope
        self._replace_items([])

        term = term.strip()
        if not term:
            logger.debug("検索語が空のため結果をクリア")
            self._idle.set()
            return

        request = SearchRequest(term=term, scopes=scope.resolve())
        self._active = request
        self._idle.clear()
        logger.info(
            "検索開始: term=%s, scopes=%s",
            term, ",".join(s.title for s in request.scopes),
        )

        for target in request.scopes:
            future = self._workers.submit(self._fetch, request, target)
            future.add_done_callback(
                lambda f, target=target: self._post_result(request, target, f)
            )
            self._futures.append(future)

    def _select_scope(self, scope: SearchScope) -> None:
        if scope is not self._selected_scope:
            logger.debug("スコープ変更: %s → %s", self._selected_scope.title, scope.title)
        self._selected_scope = scope

    def _cancel_active(self) -> None:
        if self._active is None:
            return
        logger.debug("前回の検索をキャンセル: term=%s", self._active.term)
        self._active.token.cancel()
        for future in self._futures:
            future.cancel()
        self._futures = []
        self._active = None

    def _cancel_and_settle(self) -> None:
        self._cancel_active()
        self._idle.set()

    def _fetch(self, request: SearchRequest, scope: SearchScope) -> list[StoreItem]:
        """ワーカースレッドで 1 スコープ分を取得する."""
        request.token.raise_if_cancelled()
        return self._client.fetch_items(build_query(request.term, scope), token=request.token)

    def _post_result(self, request: SearchRequest, scope: SearchScope, future: Future) -> None:
        # ワーカースレッドから呼ばれる。制御スレッドに戻してからマージする
        try:
            self._control.submit(self._on_scope_done, request, scope, future)
        except RuntimeError:
            logger.debug("制御スレッド停止済みのため結果を破棄: scope=%s", scope.title)

    def _on_scope_done(self, request: SearchRequest, scope: SearchScope, future: Future) -> None:
        if request is not self._active or request.token.cancelled:
            logger.debug("差し替え済みの検索結果を破棄: term=%s, scope=%s", request.term, scope.title)
            return

        request.pending.discard(scope)
        try:
            items = self._result_of(request, scope, future)
            if items is not None:
                self._merge(scope, items)
        finally:
            if request.done:
                self._retire(request)

    def _result_of(
        self, request: SearchRequest, scope: SearchScope, future: Future
    ) -> list[StoreItem] | None:
        if future.cancelled():
            return None
        error = future.exception()
        if error is None:
            return future.result()
        if isinstance(error, CancelledError):
            return None
        if isinstance(error, StoreSearchError):
            logger.error("検索失敗: term=%s, scope=%s, error=%s", request.term, scope.title, error)
        else:
            logger.error(
                "検索中に予期しないエラー: term=%s, scope=%s",
                request.term, scope.title, exc_info=error,
            )
        request.failures[scope] = error
        return None

    def _merge(self, scope: SearchScope, items: list[StoreItem]) -> None:
        if self._selected_scope is not SearchScope.ALL and scope is not self._selected_scope:
            logger.debug("選択外スコープの結果を破棄: scope=%s", scope.title)
            return

        # 既存分とレスポンス内の重複をどちらも落とす
        seen = set(self._item_index)
        fresh: list[StoreItem] = []
        for item in items:
            if item.id not in seen:
                seen.add(item.id)
                fresh.append(item)
        if len(fresh) < len(items):
            logger.debug("重複アイテムをスキップ: %d 件", len(items) - len(fresh))
        logger.info("マージ: scope=%s, %d 件", scope.title, len(fresh))
        self._replace_items(self._items + fresh)

    def _replace_items(self, items: list[StoreItem]) -> None:
        self._items = items
        self._item_index = {item.id: item for item in items}
        self._sections = build_sections(items)
        self._notify()

    def _notify(self) -> None:
        with self._subscriptions_lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            try:
                subscription.callback(self._sections)
            except Exception:
                logger.exception("購読者への通知に失敗")

    def _retire(self, request: SearchRequest) -> None:
        self._active = None
        self._futures = []
        if request.failures:
            logger.warning(
                "検索完了（一部失敗）: term=%s, %d 件, 失敗=%s",
                request.term, len(self._items),
                ",".join(s.title for s in request.failures),
            )
        else:
            logger.info("検索完了: term=%s, %d 件", request.term, len(self._items))
        self._idle.set()
