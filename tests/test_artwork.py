"""artwork モジュールのテスト."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import requests

from storesearch.artwork import ArtworkFetcher
from storesearch.errors import NetworkError

URL = "https://example.test/art/101.jpg"


def _gated_session(gate: threading.Event, body: bytes = b"img") -> MagicMock:
    """gate が開くまで応答を返さないセッション."""
    resp = MagicMock(content=body)

    def _get(*args, **kwargs):
        gate.wait(5)
        return resp

    session = MagicMock()
    session.get.side_effect = _get
    return session


class TestSharedDownload:
    """同じ URL の同時リクエストのテスト."""

    def test_concurrent_requests_share_one_download(self):
        """同時に 2 件頼んでも通信は 1 回で、両方に同じ結果が届くこと."""
        gate = threading.Event()
        session = _gated_session(gate)
        fetcher = ArtworkFetcher(session=session)

        first = fetcher.request(URL)
        second = fetcher.request(URL)
        gate.set()

        assert first.result(5) == b"img"
        assert second.result(5) == b"img"
        assert session.get.call_count == 1
        fetcher.close()

    def test_cache_hit(self):
        session = MagicMock()
        session.get.return_value = MagicMock(content=b"img")
        fetcher = ArtworkFetcher(session=session)

        assert fetcher.fetch_image(URL, timeout=5) == b"img"
        cached = fetcher.request(URL)

        assert cached.done()
        assert cached.result() == b"img"
        assert fetcher.cached(URL) == b"img"
        assert session.get.call_count == 1
        fetcher.close()

    def test_failure_not_cached(self):
        """失敗はキャッシュせず、次の呼び出しで取り直すこと."""
        session = MagicMock()
        session.get.side_effect = [
            requests.ConnectionError("reset"),
            MagicMock(content=b"img"),
        ]
        fetcher = ArtworkFetcher(session=session)

        with pytest.raises(NetworkError):
            fetcher.fetch_image(URL, timeout=5)
        assert fetcher.cached(URL) is None

        assert fetcher.fetch_image(URL, timeout=5) == b"img"
        assert session.get.call_count == 2
        fetcher.close()

    def test_http_error(self):
        resp = MagicMock(status_code=404)
        resp.raise_for_status.side_effect = requests.HTTPError("404", response=resp)
        session = MagicMock()
        session.get.return_value = resp
        fetcher = ArtworkFetcher(session=session)

        with pytest.raises(NetworkError) as excinfo:
            fetcher.fetch_image(URL, timeout=5)
        assert excinfo.value.status == 404
        assert excinfo.value.url == URL
        fetcher.close()


class TestCancellation:
    """呼び出し側ごとのキャンセルのテスト."""

    def test_cancel_one_caller_keeps_download(self):
        """1 件キャンセルしても、残りの呼び出し側には結果が届くこと."""
        gate = threading.Event()
        session = _gated_session(gate)
        fetcher = ArtworkFetcher(session=session)

        first = fetcher.request(URL)
        second = fetcher.request(URL)
        assert first.cancel()
        gate.set()

        assert second.result(5) == b"img"
        assert first.cancelled()
        assert fetcher.cached(URL) == b"img"
        fetcher.close()

    def test_cancel_all_callers_stops_download(self):
        """全員がキャンセルしたら結果は捨てられ、次は取り直すこと."""
        gate = threading.Event()
        session = _gated_session(gate)
        pool = ThreadPoolExecutor(max_workers=2)
        fetcher = ArtworkFetcher(session=session, worker_pool=pool)

        first = fetcher.request(URL)
        second = fetcher.request(URL)
        first.cancel()
        second.cancel()
        gate.set()
        pool.shutdown(wait=True)

        assert fetcher.cached(URL) is None
        assert first.cancelled() and second.cancelled()

        again = ArtworkFetcher(session=session)
        assert again.fetch_image(URL, timeout=5) == b"img"
        again.close()

    def test_cancel_after_done_is_noop(self):
        session = MagicMock()
        session.get.return_value = MagicMock(content=b"img")
        fetcher = ArtworkFetcher(session=session)

        request = fetcher.request(URL)
        assert request.result(5) == b"img"
        assert not request.cancel()
        fetcher.close()


class TestCacheEviction:
    """キャッシュ上限のテスト."""

    def test_lru_eviction(self):
        session = MagicMock()
        session.get.return_value = MagicMock(content=b"img")
        fetcher = ArtworkFetcher(session=session, cache_size=2)

        fetcher.fetch_image("https://example.test/a", timeout=5)
        fetcher.fetch_image("https://example.test/b", timeout=5)
        # a を使ったので b が最も古くなる
        fetcher.fetch_image("https://example.test/a", timeout=5)
        fetcher.fetch_image("https://example.test/c", timeout=5)

        assert fetcher.cached("https://example.test/a") == b"img"
        assert fetcher.cached("https://example.test/b") is None
        assert fetcher.cached("https://example.test/c") == b"img"
        assert session.get.call_count == 3
        fetcher.close()

    def test_unbounded(self):
        session = MagicMock()
        session.get.return_value = MagicMock(content=b"img")
        fetcher = ArtworkFetcher(session=session, cache_size=0)

        for i in range(10):
            fetcher.fetch_image(f"https://example.test/{i}", timeout=5)

        assert all(fetcher.cached(f"https://example.test/{i}") for i in range(10))
        fetcher.close()

    def test_clear(self):
        session = MagicMock()
        session.get.return_value = MagicMock(content=b"img")
        fetcher = ArtworkFetcher(session=session)

        fetcher.fetch_image(URL, timeout=5)
        fetcher.clear()

        assert fetcher.cached(URL) is None
        fetcher.fetch_image(URL, timeout=5)
        assert session.get.call_count == 2
        fetcher.close()
