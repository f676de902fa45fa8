"""データモデル定義."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

from storesearch.errors import CancelledError


class SearchScope(Enum):
    """検索対象のコンテンツ種別."""

    ALL = ("all", "All", ())
    MOVIES = ("movie", "Movies", ("feature-movie",))
    MUSIC = ("music", "Music", ("song", "album"))
    APPS = ("software", "Apps", ("software",))
    BOOKS = ("ebook", "Books", ("ebook",))

    def __init__(self, media_type: str, title: str, kinds: tuple[str, ...]):
        self.media_type = media_type  # API の media パラメータ
        self.title = title  # セクション見出し
        self.kinds = kinds  # このスコープに属する kind 文字列

    def resolve(self) -> tuple[SearchScope, ...]:
        """実際に問い合わせるスコープ一覧を返す. ALL は 4 種に展開する."""
        if self is SearchScope.ALL:
            return SECTION_ORDER
        return (self,)

    @classmethod
    def for_kind(cls, kind: str) -> SearchScope | None:
        for scope in SECTION_ORDER:
            if kind in scope.kinds:
                return scope
        return None


SECTION_ORDER = (
    SearchScope.MOVIES,
    SearchScope.MUSIC,
    SearchScope.APPS,
    SearchScope.BOOKS,
)


@dataclass(frozen=True)
class StoreItem:
    """検索結果の1件を表す."""

    id: int  # trackId / collectionId
    name: str
    kind: str  # 例: song, feature-movie, software, ebook
    artwork_url: str | None = None
    artist: str | None = None
    price: float | None = None
    currency: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ResultSection:
    """見出しとその配下のアイテム ID 列."""

    title: str
    item_ids: tuple[int, ...]


def build_sections(items: list[StoreItem]) -> tuple[ResultSection, ...]:
    """アイテム列からセクションを組み立てる.

    セクション順は SECTION_ORDER 固定、セクション内は items の並び順。
    空のセクションと、どのスコープにも属さない kind は含めない。
    """
    grouped: dict[SearchScope, list[int]] = {scope: [] for scope in SECTION_ORDER}
    for item in items:
        scope = SearchScope.for_kind(item.kind)
        if scope is not None:
            grouped[scope].append(item.id)

    return tuple(
        ResultSection(title=scope.title, item_ids=tuple(ids))
        for scope, ids in grouped.items()
        if ids
    )


class CancellationToken:
    """検索1回分の有効性フラグ. どのスレッドからでも cancel できる."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError("operation cancelled")


@dataclass(eq=False)
class SearchRequest:
    """キャンセルの単位となる検索リクエスト."""

    term: str
    scopes: tuple[SearchScope, ...]
    token: CancellationToken = field(default_factory=CancellationToken)
    pending: set[SearchScope] = field(default_factory=set)
    failures: dict[SearchScope, Exception] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.pending:
            self.pending = set(self.scopes)

    @property
    def done(self) -> bool:
        return not self.pending
