"""Shared constants."""

# Embed のデフォルトカラー (Discord Blurple)
DEFAULT_EMBED_COLOR = 0x5865F2

# 降格一覧 Embed のカラー
DEMOTION_EMBED_COLOR = 0xFF6B6B

# 降格期間の上限
MAX_DEMOTION_HOURS = 720
MAX_DEMOTION_MINUTES = 59

# 履歴表示件数
DEMOTION_HISTORY_LIMIT = 10

# オートコンプリートの候補上限 (Discord の仕様)
AUTOCOMPLETE_CHOICE_LIMIT = 25

# 復元処理中の予約マーカーの有効期限 (秒)。完了後は猶予時間で上書きする
RESTORE_IN_FLIGHT_TTL_SECONDS = 60.0

# 理由未指定時の表示
DEFAULT_REASON = "理由なし"

# テスト用 DB (インメモリ SQLite)
DEFAULT_TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
