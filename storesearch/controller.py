"""検索画面のコントローラー.

入力の間引き・スコープ選択・リスト/グリッドの切り替えを受け持ち、
SearchOrchestrator と 2 つの表示側をつなぐ。
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from storesearch.artwork import ArtworkFetcher
from storesearch.catalog import CatalogClient
from storesearch.config import DEBOUNCE_INTERVAL
from storesearch.models import SearchScope
from storesearch.orchestrator import SearchOrchestrator
from storesearch.sinks import GridSink, ListSink, LoggingRenderTarget, RenderTarget

logger = logging.getLogger(__name__)


class Debouncer:
    """最後の呼び出しから interval 秒経ったら callback を1回だけ実行する."""

    def __init__(self, interval: float, callback: Callable[..., None]):
        self.interval = interval
        self.callback = callback
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def call(self, *args) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.interval, self.callback, args=args)
            timer.daemon = True
            timer.start()
            self._timer = timer

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class SearchController:
    """検索欄・スコープ切り替え・表示切り替えの受け口."""

    def __init__(
        self,
        orchestrator: SearchOrchestrator | None = None,
        fetcher: ArtworkFetcher | None = None,
        list_target: RenderTarget | None = None,
        grid_target: RenderTarget | None = None,
        debounce_interval: float = DEBOUNCE_INTERVAL,
    ):
        self.orchestrator = orchestrator or SearchOrchestrator(CatalogClient())
        self.fetcher = fetcher or ArtworkFetcher()
        self.list_sink = ListSink(
            list_target or LoggingRenderTarget("list"),
            self.fetcher,
            self.orchestrator.item,
            dispatch=self.orchestrator.call_soon,
        )
        self.grid_sink = GridSink(
            grid_target or LoggingRenderTarget("grid"),
            self.fetcher,
            self.orchestrator.item,
            dispatch=self.orchestrator.call_soon,
        )
        self._subscriptions = [
            self.orchestrator.subscribe(self.list_sink.render),
            self.orchestrator.subscribe(self.grid_sink.render),
        ]

        self.search_text = ""
        self.scope = SearchScope.ALL
        self.active_view = "list"
        self._debouncer = Debouncer(debounce_interval, self._run_search)

    def update_search(self, text: str) -> None:
        """検索欄の入力. 一定時間入力が止まってから検索する."""
        self.search_text = text
        self._debouncer.call()

    def select_scope(self, scope: SearchScope) -> None:
        """スコープボタンの選択."""
        self.scope = scope
        self.orchestrator.set_scope(scope)
        self.grid_sink.configure_layout(scope)
        self._debouncer.call()

    def search(self, text: str) -> None:
        """検索ボタン相当. 間引きを待たずにすぐ検索する."""
        self._debouncer.cancel()
        self.search_text = text
        self._run_search()

    def show_artwork(self, sink, position, item) -> None:
        """表示位置に出たアイテムの画像取得を制御スレッドで依頼する."""
        self.orchestrator.call_soon(sink.request_artwork, position, item)

    def toggle_view(self) -> str:
        """リスト表示とグリッド表示を切り替える."""
        self.active_view = "grid" if self.active_view == "list" else "list"
        return self.active_view

    def _run_search(self) -> None:
        logger.debug("検索実行: text=%s, scope=%s", self.search_text, self.scope.title)
        # 新しい検索の前に表示側の画像取得を止める
        self.orchestrator.call_soon(self.list_sink.cancel_artwork)
        self.orchestrator.call_soon(self.grid_sink.cancel_artwork)
        self.orchestrator.search(self.search_text, self.scope)

    def close(self) -> None:
        self._debouncer.cancel()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self.orchestrator.close()
        self.fetcher.close()
