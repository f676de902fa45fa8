"""セクション集合どうしの差分計算.

セクション見出しとアイテム ID をキーに最長共通部分列 (LCS) を取り、
LCS に残らなかったものだけを挿入・削除・移動として出す。
位置はすべて (セクション番号, アイテム番号)。削除は旧位置、挿入は新位置で表す。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Hashable, Sequence

from storesearch.models import ResultSection

Position = tuple[int, int]


@dataclass
class Changeset:
    """描画側に適用する差分."""

    deleted_sections: list[int] = field(default_factory=list)
    inserted_sections: list[int] = field(default_factory=list)
    moved_sections: list[tuple[int, int]] = field(default_factory=list)
    deleted_items: list[Position] = field(default_factory=list)
    inserted_items: list[Position] = field(default_factory=list)
    moved_items: list[tuple[Position, Position]] = field(default_factory=list)

    def __len__(self) -> int:
        return (
            len(self.deleted_sections)
            + len(self.inserted_sections)
            + len(self.moved_sections)
            + len(self.deleted_items)
            + len(self.inserted_items)
            + len(self.moved_items)
        )

    @property
    def is_empty(self) -> bool:
        return len(self) == 0


def lcs_keys(old: Sequence[Hashable], new: Sequence[Hashable]) -> set[Hashable]:
    """old と new の最長共通部分列に含まれるキーを返す. キーは各列で一意であること."""
    n, m = len(old), len(new)
    table = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        for j in range(m - 1, -1, -1):
            if old[i] == new[j]:
                table[i][j] = table[i + 1][j + 1] + 1
            else:
                table[i][j] = max(table[i + 1][j], table[i][j + 1])

    common: set[Hashable] = set()
    i = j = 0
    while i < n and j < m:
        if old[i] == new[j]:
            common.add(old[i])
            i += 1
            j += 1
        elif table[i + 1][j] >= table[i][j + 1]:
            i += 1
        else:
            j += 1
    return common


def diff_sections(
    old: Sequence[ResultSection], new: Sequence[ResultSection]
) -> Changeset:
    """old から new への最小差分を計算する."""
    changes = Changeset()

    old_titles = [s.title for s in old]
    new_titles = [s.title for s in new]
    old_section_index = {title: i for i, title in enumerate(old_titles)}
    new_section_index = {title: i for i, title in enumerate(new_titles)}
    stable_sections = lcs_keys(old_titles, new_titles)

    for i, title in enumerate(old_titles):
        if title not in new_section_index:
            changes.deleted_sections.append(i)
    for j, title in enumerate(new_titles):
        if title not in old_section_index:
            changes.inserted_sections.append(j)
        elif title not in stable_sections:
            changes.moved_sections.append((old_section_index[title], j))

    old_positions: dict[int, Position] = {}
    for s, section in enumerate(old):
        for k, item_id in enumerate(section.item_ids):
            old_positions[item_id] = (s, k)
    new_positions: dict[int, Position] = {}
    for s, section in enumerate(new):
        for k, item_id in enumerate(section.item_ids):
            new_positions[item_id] = (s, k)

    # 同じ見出しのセクション内で動かなかったアイテム
    stable_items: set[Hashable] = set()
    for title in old_section_index.keys() & new_section_index.keys():
        stable_items |= lcs_keys(
            old[old_section_index[title]].item_ids,
            new[new_section_index[title]].item_ids,
        )

    deleted_section_set = set(changes.deleted_sections)
    for item_id, pos in old_positions.items():
        # 削除されたセクションの中身はセクションごと消える
        if item_id not in new_positions and pos[0] not in deleted_section_set:
            changes.deleted_items.append(pos)

    inserted_section_set = set(changes.inserted_sections)
    for item_id, pos in new_positions.items():
        if item_id not in old_positions:
            if pos[0] not in inserted_section_set:
                changes.inserted_items.append(pos)
        elif item_id not in stable_items:
            changes.moved_items.append((old_positions[item_id], pos))

    changes.deleted_items.sort()
    changes.inserted_items.sort()
    changes.moved_items.sort(key=lambda move: move[1])
    return changes
