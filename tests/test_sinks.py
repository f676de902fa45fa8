"""sinks モジュールのテスト."""

import threading
from unittest.mock import MagicMock

from storesearch.artwork import ArtworkFetcher, ArtworkRequest
from storesearch.errors import NetworkError
from storesearch.models import ResultSection, SearchScope, StoreItem
from storesearch.orchestrator import SearchOrchestrator
from storesearch.sinks import GridSink, ListSink, layout_for_scope


class RecordingTarget:
    """描画の代わりに呼び出しを記録する."""

    def __init__(self):
        self.applied = []
        self.reconfigured = []

    def apply(self, changes, sections):
        self.applied.append((changes, sections))

    def reconfigure(self, item_ids):
        self.reconfigured.append(list(item_ids))


class FakeFetcher:
    """request() の Future を手で完了させる偽フェッチャー."""

    def __init__(self):
        self.requests: list[ArtworkRequest] = []
        self.released: list[ArtworkRequest] = []

    def request(self, url):
        request = ArtworkRequest(url, release=self.released.append)
        self.requests.append(request)
        return request


def _item(item_id: int, kind: str = "song") -> StoreItem:
    return StoreItem(
        id=item_id, name=f"item-{item_id}", kind=kind,
        artwork_url=f"https://example.test/art/{item_id}.jpg",
    )


ITEMS = {i: _item(i) for i in range(1, 6)}
SECTIONS = (ResultSection("Music", (1, 2)), ResultSection("Apps", (3,)))


def _sink(cls=ListSink, fetcher=None):
    target = RecordingTarget()
    sink = cls(target, fetcher or FakeFetcher(), ITEMS.get)
    return sink, target


class TestRender:
    """render のテスト."""

    def test_render_applies_diff(self):
        sink, target = _sink()

        changes = sink.render(SECTIONS)

        assert changes.inserted_sections == [0, 1]
        assert len(target.applied) == 1
        assert target.applied[0][1] == SECTIONS
        assert sink.sections == SECTIONS

    def test_rerender_unchanged_is_noop(self):
        """同じセクション集合を再描画しても差分は出ないこと."""
        sink, target = _sink()
        sink.render(SECTIONS)

        changes = sink.render(list(SECTIONS))

        assert changes.is_empty
        assert len(target.applied) == 1

    def test_item_lookup(self):
        sink, _ = _sink()
        sink.render(SECTIONS)

        assert sink.item_at((0, 1)) == ITEMS[2]
        assert sink.item_at((1, 0)) == ITEMS[3]
        assert sink.item_at((1, 1)) is None
        assert sink.item_at((5, 0)) is None

    def test_section_titles(self):
        list_sink, _ = _sink(ListSink)
        grid_sink, _ = _sink(GridSink)
        list_sink.render(SECTIONS)
        grid_sink.render(SECTIONS)

        assert list_sink.title_for_section(1) == "Apps"
        assert grid_sink.header_title(0) == "Music"


class TestArtwork:
    """表示位置ごとのアートワーク取得のテスト."""

    def test_success_reconfigures_only_that_item(self):
        fetcher = FakeFetcher()
        sink, target = _sink(fetcher=fetcher)
        sink.render(SECTIONS)

        sink.request_artwork((0, 1), ITEMS[2])
        fetcher.requests[0].set_result(b"img")

        assert target.reconfigured == [[2]]
        assert sink.pending_artwork == {}

    def test_same_item_not_requested_twice(self):
        fetcher = FakeFetcher()
        sink, _ = _sink(fetcher=fetcher)
        sink.render(SECTIONS)

        sink.request_artwork((0, 0), ITEMS[1])
        sink.request_artwork((0, 0), ITEMS[1])

        assert len(fetcher.requests) == 1
        assert sink.pending_artwork == {(0, 0): 1}

    def test_reused_position_cancels_previous(self):
        """同じ位置に別のアイテムが来たら前の取得を止めること."""
        fetcher = FakeFetcher()
        sink, target = _sink(fetcher=fetcher)
        sink.render(SECTIONS)

        sink.request_artwork((0, 0), ITEMS[1])
        sink.request_artwork((0, 0), ITEMS[4])

        first, second = fetcher.requests
        assert first.cancelled()
        assert fetcher.released == [first]
        assert not second.done()
        assert sink.pending_artwork == {(0, 0): 4}
        assert target.reconfigured == []

    def test_render_cancels_changed_positions_only(self):
        fetcher = FakeFetcher()
        sink, _ = _sink(fetcher=fetcher)
        sink.render(SECTIONS)
        sink.request_artwork((0, 0), ITEMS[1])
        sink.request_artwork((1, 0), ITEMS[3])

        # Music の先頭が 5 に入れ替わる。Apps はそのまま
        sink.render((ResultSection("Music", (5, 2)), ResultSection("Apps", (3,))))

        music_request, apps_request = fetcher.requests
        assert music_request.cancelled()
        assert not apps_request.cancelled()
        assert sink.pending_artwork == {(1, 0): 3}

    def test_clear_cancels_everything(self):
        fetcher = FakeFetcher()
        sink, _ = _sink(fetcher=fetcher)
        sink.render(SECTIONS)
        sink.request_artwork((0, 0), ITEMS[1])
        sink.request_artwork((0, 1), ITEMS[2])

        sink.render(())

        assert all(r.cancelled() for r in fetcher.requests)
        assert sink.pending_artwork == {}

    def test_failure_is_logged(self, caplog):
        fetcher = FakeFetcher()
        sink, target = _sink(fetcher=fetcher)
        sink.render(SECTIONS)

        sink.request_artwork((0, 0), ITEMS[1])
        fetcher.requests[0].set_exception(NetworkError("404"))

        assert target.reconfigured == []
        assert "アートワーク取得失敗" in caplog.text

    def test_item_without_artwork(self):
        fetcher = FakeFetcher()
        sink, _ = _sink(fetcher=fetcher)
        sink.render(SECTIONS)

        sink.request_artwork((0, 0), StoreItem(id=1, name="no art", kind="song"))

        assert fetcher.requests == []

    def test_cancel_artwork(self):
        fetcher = FakeFetcher()
        sink, target = _sink(fetcher=fetcher)
        sink.render(SECTIONS)
        sink.request_artwork((0, 0), ITEMS[1])
        sink.request_artwork((1, 0), ITEMS[3])

        sink.cancel_artwork()

        assert all(r.cancelled() for r in fetcher.requests)
        assert fetcher.released == fetcher.requests
        assert sink.pending_artwork == {}
        assert target.reconfigured == []

    def test_result_for_removed_item_not_rendered(self):
        """描画対象から外れたアイテムの画像が届いても再描画しないこと."""
        fetcher = FakeFetcher()
        target = RecordingTarget()
        dispatched = []
        sink = ListSink(target, fetcher, ITEMS.get, dispatch=lambda fn, *args: dispatched.append((fn, args)))
        sink.render(SECTIONS)
        sink.request_artwork((0, 0), ITEMS[1])
        fetcher.requests[0].set_result(b"img")

        # 完了通知が表示側に戻る前に結果集合が空になった
        sink.render(())
        fn, args = dispatched[0]
        fn(*args)

        assert target.reconfigured == []

    def test_dispatch_used_for_completion(self):
        fetcher = FakeFetcher()
        target = RecordingTarget()
        dispatched = []
        sink = ListSink(target, fetcher, ITEMS.get, dispatch=lambda fn, *args: dispatched.append((fn, args)))
        sink.render(SECTIONS)

        sink.request_artwork((0, 0), ITEMS[1])
        fetcher.requests[0].set_result(b"img")
        assert target.reconfigured == []

        fn, args = dispatched[0]
        fn(*args)
        assert target.reconfigured == [[1]]


class TestArtworkOnControlThread:
    """完了通知を制御スレッドに戻す場合のテスト."""

    def test_reused_position_with_call_soon(self):
        """制御スレッド経由でも、再利用された位置の前の取得だけが止まること."""
        orchestrator = SearchOrchestrator(MagicMock())
        fetcher = FakeFetcher()
        target = RecordingTarget()
        sink = ListSink(target, fetcher, ITEMS.get, dispatch=orchestrator.call_soon)
        try:
            orchestrator.call_soon(sink.render, SECTIONS).result(5)

            sink.request_artwork((0, 0), ITEMS[1])
            sink.request_artwork((0, 0), ITEMS[2])
            orchestrator.flush(5)

            first, second = fetcher.requests
            assert first.cancelled()
            assert sink.pending_artwork == {(0, 0): 2}

            second.set_result(b"img")
            orchestrator.flush(5)

            assert target.reconfigured == [[2]]
            assert sink.pending_artwork == {}
        finally:
            orchestrator.close()


class TestSharedArtworkAcrossSinks:
    """2 つの表示側から同じ URL を頼んだときのテスト."""

    def test_one_outbound_fetch(self):
        """リストとグリッドが同時に同じ画像を頼んでも通信は 1 回であること."""
        gate = threading.Event()
        resp = MagicMock(content=b"img")

        def _get(*args, **kwargs):
            gate.wait(5)
            return resp

        session = MagicMock()
        session.get.side_effect = _get
        fetcher = ArtworkFetcher(session=session)
        list_sink, list_target = _sink(ListSink, fetcher)
        grid_sink, grid_target = _sink(GridSink, fetcher)
        list_sink.render(SECTIONS)
        grid_sink.render(SECTIONS)

        done = threading.Event()
        grid_target.reconfigure = lambda ids: (grid_target.reconfigured.append(ids), done.set())

        list_sink.request_artwork((0, 0), ITEMS[1])
        grid_sink.request_artwork((0, 0), ITEMS[1])
        gate.set()

        assert done.wait(5)
        assert session.get.call_count == 1
        assert grid_target.reconfigured == [[1]]
        fetcher.close()


class TestGridLayout:
    """グリッドレイアウトのテスト."""

    def test_all_scrolls_horizontally(self):
        layout = layout_for_scope(SearchScope.ALL)
        assert layout.orthogonal_scrolling
        assert layout.items_per_group == 1

    def test_single_scope_three_columns(self):
        sink, _ = _sink(GridSink)
        layout = sink.configure_layout(SearchScope.MUSIC)

        assert layout.items_per_group == 3
        assert not layout.orthogonal_scrolling
        assert sink.layout is layout
        assert layout.item_height == 166
