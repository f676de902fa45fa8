"""設定モジュール — 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- iTunes 検索 API ---
SEARCH_URL: str = os.environ.get(
    "STORESEARCH_SEARCH_URL", "https://itunes.apple.com/search"
)
SEARCH_LANG = "en_us"
SEARCH_LIMIT = "50"

# --- User-Agent ---
USER_AGENT = "store-search/0.1 (+https://itunes.apple.com/search)"

# --- リクエスト設定 ---
REQUEST_TIMEOUT = float(os.environ.get("STORESEARCH_REQUEST_TIMEOUT", "15"))  # 秒
MAX_WORKERS = int(os.environ.get("STORESEARCH_MAX_WORKERS", "8"))

# --- 入力 ---
DEBOUNCE_INTERVAL = 0.3  # 秒

# --- アートワークキャッシュ (0 = 無制限) ---
ARTWORK_CACHE_SIZE = int(os.environ.get("STORESEARCH_ARTWORK_CACHE_SIZE", "256"))

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"
