"""iTunes 検索 — デモ用エントリーポイント.

処理フロー:
  1. 引数から検索語とスコープを取得
  2. SearchController 経由で全スコープを並列検索（リスト・グリッド両方に描画）
  3. 完了後、セクションごとの件数と先頭数件をログに出し、先頭数件の画像を取得

使い方: python -m storesearch.main TERM [all|movies|music|apps|books]
"""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime

from storesearch.config import LOG_DIR, REQUEST_TIMEOUT
from storesearch.controller import SearchController
from storesearch.errors import NetworkError
from storesearch.models import SearchScope

_PREVIEW_COUNT = 3


def setup_logging() -> None:
    """ロギングの初期設定."""
    LOG_DIR.mkdir(exist_ok=True)
    log_file = LOG_DIR / f"storesearch_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def parse_scope(name: str) -> SearchScope:
    """スコープ名（大文字小文字は区別しない）を SearchScope に変換する."""
    try:
        return SearchScope[name.upper()]
    except KeyError:
        raise ValueError(f"不明なスコープ: {name}") from None


def search_and_preview(
    controller: SearchController,
    term: str,
    scope: SearchScope,
    timeout: float = REQUEST_TIMEOUT * 2,
) -> int:
    """検索して結果をログに出し、各セクション先頭数件の画像を取得する.

    Returns:
        マージされたアイテム数
    """
    logger = logging.getLogger(__name__)
    orchestrator = controller.orchestrator
    sink = controller.list_sink

    controller.select_scope(scope)
    controller.search(term)
    # 全スコープが同時にタイムアウトしても待ち切れるだけの余裕を取る
    if not orchestrator.wait_until_idle(timeout=timeout):
        logger.warning("時間内に検索が終わりませんでした")

    previews = []
    for section_index, section in enumerate(sink.sections):
        logger.info("[%s] %d 件", section.title, len(section.item_ids))
        for row in range(min(_PREVIEW_COUNT, len(section.item_ids))):
            item = sink.item_at((section_index, row))
            if item is None:
                continue
            logger.info("  %s (%s)", item.name, item.artist or "-")
            controller.show_artwork(sink, (section_index, row), item)
            if item.artwork_url:
                previews.append(item.artwork_url)

    # 表示側の取得に相乗りして完了を待つ
    for url in previews:
        try:
            controller.fetcher.fetch_image(url, timeout=timeout)
        except NetworkError as e:
            logger.warning("画像取得失敗: %s", e)
    orchestrator.flush(timeout)
    return len(orchestrator.items)


def run(argv: list[str] | None = None) -> int:
    """メイン処理."""
    argv = sys.argv[1:] if argv is None else argv
    setup_logging()
    logger = logging.getLogger(__name__)

    if not argv:
        logger.error("検索語を指定してください: python -m storesearch.main TERM [SCOPE]")
        return 2
    term = argv[0]
    try:
        scope = parse_scope(argv[1]) if len(argv) > 1 else SearchScope.ALL
    except ValueError as e:
        logger.error("%s", e)
        return 2

    logger.info("=== 検索 開始: term=%s, scope=%s ===", term, scope.title)
    start_time = time.time()

    controller = SearchController()
    try:
        count = search_and_preview(controller, term, scope)
    finally:
        controller.close()

    elapsed = time.time() - start_time
    logger.info("=== 検索 完了: %d 件, 所要時間: %.1f 秒 ===", count, elapsed)
    return 0


if __name__ == "__main__":
    sys.exit(run())
