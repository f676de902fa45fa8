"""検索結果の表示側（リスト表示・グリッド表示）.

どちらも SearchOrchestrator のセクション集合を読むだけで書き換えない。
描画そのものは RenderTarget に任せ、ここでは差分計算と
表示位置ごとのアートワーク取得の管理を行う。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from storesearch.artwork import ArtworkFetcher, ArtworkRequest
from storesearch.diff import Changeset, Position, diff_sections
from storesearch.errors import CancelledError
from storesearch.models import ResultSection, SearchScope, StoreItem

logger = logging.getLogger(__name__)


class RenderTarget(Protocol):
    """実際の描画を行う側."""

    def apply(self, changes: Changeset, sections: tuple[ResultSection, ...]) -> None: ...

    def reconfigure(self, item_ids: list[int]) -> None: ...


class LoggingRenderTarget:
    """描画の代わりに差分をログに出す."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(f"{__name__}.{name}")

    def apply(self, changes: Changeset, sections: tuple[ResultSection, ...]) -> None:
        self._logger.info(
            "描画: sections=%s, 挿入=%d, 削除=%d, 移動=%d",
            [(s.title, len(s.item_ids)) for s in sections],
            len(changes.inserted_items) + len(changes.inserted_sections),
            len(changes.deleted_items) + len(changes.deleted_sections),
            len(changes.moved_items) + len(changes.moved_sections),
        )

    def reconfigure(self, item_ids: list[int]) -> None:
        self._logger.debug("再描画: %s", item_ids)


@dataclass
class _ArtworkTask:
    item_id: int
    request: ArtworkRequest


class ProjectionSink:
    """セクション集合の読み取り専用ビュー."""

    def __init__(
        self,
        target: RenderTarget,
        fetcher: ArtworkFetcher,
        item_lookup: Callable[[int], StoreItem | None],
        dispatch: Callable[..., object] | None = None,
    ):
        self.target = target
        self.fetcher = fetcher
        self.item_lookup = item_lookup
        # アートワーク取得の完了を表示側のスレッドに戻す
        self.dispatch = dispatch or (lambda fn, *args: fn(*args))

        self._sections: tuple[ResultSection, ...] = ()
        self._rendered_ids: set[int] = set()
        self._artwork_tasks: dict[Position, _ArtworkTask] = {}

    @property
    def sections(self) -> tuple[ResultSection, ...]:
        return self._sections

    @property
    def pending_artwork(self) -> dict[Position, int]:
        """取得中のアートワーク（位置 → アイテム ID）."""
        return {pos: task.item_id for pos, task in self._artwork_tasks.items()}

    def item_id_at(self, position: Position) -> int | None:
        section, row = position
        if section >= len(self._sections) or row >= len(self._sections[section].item_ids):
            return None
        return self._sections[section].item_ids[row]

    def item_at(self, position: Position) -> StoreItem | None:
        item_id = self.item_id_at(position)
        return None if item_id is None else self.item_lookup(item_id)

    def render(self, sections: Sequence[ResultSection]) -> Changeset:
        """表示内容を sections に揃える. 前回との差分だけを描画側に渡す."""
        sections = tuple(sections)
        changes = diff_sections(self._sections, sections)
        self._sections = sections
        self._rendered_ids = {item_id for s in sections for item_id in s.item_ids}
        self._cancel_stale_artwork()

        if not changes.is_empty:
            self.target.apply(changes, sections)
        return changes

    def request_artwork(self, position: Position, item: StoreItem) -> None:
        """表示位置に出たアイテムのアートワークを取りに行く."""
        current = self._artwork_tasks.get(position)
        if current is not None:
            if current.item_id == item.id and not current.request.done():
                return
            # セルが別のアイテムに再利用された. cancel() は done callback を同期で呼ぶので先に外す
            self._artwork_tasks.pop(position, None)
            current.request.cancel()

        if not item.artwork_url:
            return

        request = self.fetcher.request(item.artwork_url)
        task = _ArtworkTask(item.id, request)
        self._artwork_tasks[position] = task
        request.add_done_callback(
            lambda r: self.dispatch(self._artwork_done, position, task)
        )

    def cancel_artwork(self) -> None:
        """取得中のアートワークをすべて止める."""
        tasks = list(self._artwork_tasks.values())
        self._artwork_tasks.clear()
        for task in tasks:
            task.request.cancel()

    def _cancel_stale_artwork(self) -> None:
        for position, task in list(self._artwork_tasks.items()):
            if self.item_id_at(position) != task.item_id:
                del self._artwork_tasks[position]
                task.request.cancel()

    def _artwork_done(self, position: Position, task: _ArtworkTask) -> None:
        if self._artwork_tasks.get(position) is task:
            del self._artwork_tasks[position]

        request = task.request
        if request.cancelled():
            return
        error = request.exception()
        if isinstance(error, CancelledError):
            return
        if error is not None:
            logger.error("アートワーク取得失敗: item=%s, error=%s", task.item_id, error)
            return

        if task.item_id in self._rendered_ids:
            self.target.reconfigure([task.item_id])


class ListSink(ProjectionSink):
    """リスト表示. セクション見出しを持つ."""

    def title_for_section(self, index: int) -> str:
        return self._sections[index].title


@dataclass(frozen=True)
class GridLayout:
    """グリッドの並べ方."""

    items_per_group: int
    group_width_fraction: float
    orthogonal_scrolling: bool
    item_height: float = 166
    header_height: float = 28
    item_insets: tuple[float, float, float, float] = (8, 5, 8, 5)  # 上, 左, 下, 右


def layout_for_scope(scope: SearchScope) -> GridLayout:
    """ALL はセクションごとに横スクロール、単一スコープは 3 列の縦グリッド."""
    if scope is SearchScope.ALL:
        return GridLayout(items_per_group=1, group_width_fraction=1 / 3, orthogonal_scrolling=True)
    return GridLayout(items_per_group=3, group_width_fraction=1.0, orthogonal_scrolling=False)


class GridSink(ProjectionSink):
    """グリッド表示. スコープに応じてレイアウトを切り替える."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.layout = layout_for_scope(SearchScope.ALL)

    def configure_layout(self, scope: SearchScope) -> GridLayout:
        self.layout = layout_for_scope(scope)
        return self.layout

    def header_title(self, index: int) -> str:
        return self._sections[index].title
