"""アートワーク画像の取得・キャッシュ.

同じ URL への同時リクエストは 1 本のダウンロードに相乗りさせる。
呼び出し側ごとにキャンセルでき、待っている呼び出し側がいなくなったときだけ
元のダウンロードを止める。
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

import requests

from storesearch.config import ARTWORK_CACHE_SIZE, MAX_WORKERS, REQUEST_TIMEOUT, USER_AGENT
from storesearch.errors import CancelledError, NetworkError
from storesearch.models import CancellationToken

logger = logging.getLogger(__name__)


class ArtworkRequest(Future):
    """呼び出し側1つ分の待ち受け. cancel() はこの呼び出し側だけを外す."""

    def __init__(self, url: str, release: Callable[[ArtworkRequest], None] | None = None):
        super().__init__()
        self.url = url
        self._release = release

    def cancel(self) -> bool:
        cancelled = super().cancel()
        if cancelled and self._release is not None:
            self._release(self)
        return cancelled


class _PendingDownload:
    """進行中のダウンロードと、その結果を待つ呼び出し側."""

    def __init__(self, url: str):
        self.url = url
        self.token = CancellationToken()
        self.waiters: list[ArtworkRequest] = []
        self.future: Future | None = None


class ArtworkFetcher:
    """URL → bytes の取得とセッション内キャッシュ."""

    def __init__(
        self,
        session: requests.Session | None = None,
        worker_pool: ThreadPoolExecutor | None = None,
        cache_size: int = ARTWORK_CACHE_SIZE,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.session = session or requests.Session()
        self._pool = worker_pool or ThreadPoolExecutor(
            max_workers=MAX_WORKERS, thread_name_prefix="artwork"
        )
        self._owns_pool = worker_pool is None
        self.cache_size = cache_size
        self.timeout = timeout

        self._lock = threading.Lock()
        self._cache: OrderedDict[str, bytes] = OrderedDict()
        self._pending: dict[str, _PendingDownload] = {}

    def request(self, url: str) -> ArtworkRequest:
        """画像取得を開始し、呼び出し側専用の Future を返す."""
        with self._lock:
            data = self._cache.get(url)
            if data is not None:
                self._cache.move_to_end(url)
                done = ArtworkRequest(url)
                done.set_result(data)
                return done

            waiter = ArtworkRequest(url, release=self._release)
            pending = self._pending.get(url)
            if pending is not None:
                pending.waiters.append(waiter)
                logger.debug("取得中の画像に相乗り: %s (%d 件待ち)", url, len(pending.waiters))
                return waiter

            pending = _PendingDownload(url)
            pending.waiters.append(waiter)
            self._pending[url] = pending
            pending.future = self._pool.submit(self._download, url, pending.token)

        pending.future.add_done_callback(lambda f: self._finish(pending, f))
        return waiter

    def fetch_image(self, url: str, timeout: float | None = None) -> bytes:
        """画像を取得するまでブロックする.

        Raises:
            NetworkError: 取得失敗
        """
        return self.request(url).result(timeout)

    def cached(self, url: str) -> bytes | None:
        with self._lock:
            return self._cache.get(url)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def close(self) -> None:
        if self._owns_pool:
            self._pool.shutdown(wait=False, cancel_futures=True)

    def _download(self, url: str, token: CancellationToken) -> bytes:
        token.raise_if_cancelled()
        try:
            resp = self.session.get(
                url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            raise NetworkError(f"画像取得失敗: {e}", url=url, status=status) from e
        token.raise_if_cancelled()
        return resp.content

    def _release(self, waiter: ArtworkRequest) -> None:
        """呼び出し側を外す. 誰も待っていなければダウンロードも止める."""
        with self._lock:
            pending = self._pending.get(waiter.url)
            if pending is None or waiter not in pending.waiters:
                return
            pending.waiters.remove(waiter)
            if pending.waiters:
                return
            del self._pending[waiter.url]
            pending.token.cancel()

        # 未着手なら done callback が同期で走るのでロックの外で止める
        if pending.future is not None:
            pending.future.cancel()
        logger.debug("画像取得をキャンセル: %s", waiter.url)

    def _finish(self, pending: _PendingDownload, future: Future) -> None:
        error: BaseException | None = None
        with self._lock:
            if self._pending.get(pending.url) is pending:
                del self._pending[pending.url]
            waiters = list(pending.waiters)
            pending.waiters.clear()

            stopped = future.cancelled() or pending.token.cancelled
            if not stopped:
                error = future.exception()
                if error is None:
                    self._store(pending.url, future.result())

        if stopped or isinstance(error, CancelledError):
            # プール停止などで残った呼び出し側はキャンセル扱い
            for waiter in waiters:
                waiter.cancel()
            return
        if error is not None:
            logger.error("画像取得エラー: url=%s, error=%s", pending.url, error)

        for waiter in waiters:
            # 直前に cancel された呼び出し側には渡さない
            if not waiter.set_running_or_notify_cancel():
                continue
            if error is None:
                waiter.set_result(future.result())
            else:
                waiter.set_exception(error)

    def _store(self, url: str, data: bytes) -> None:
        self._cache[url] = data
        self._cache.move_to_end(url)
        if self.cache_size > 0:
            while len(self._cache) > self.cache_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug("キャッシュから削除: %s", evicted)
