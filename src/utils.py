"""Shared utility functions."""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable

# =============================================================================
# 時刻
# =============================================================================


def now_ms() -> int:
    """現在時刻をエポックからのミリ秒で返す."""
    return int(time.time() * 1000)


# =============================================================================
# 期限付きキーキャッシュ (予約マーカー・クールダウン)
# =============================================================================

# 期限切れキーの掃除間隔
_CACHE_CLEANUP_INTERVAL = 300  # 5分


class ExpiringKeyCache:
    """キーごとに有効期限を持つキャッシュ.

    キー → 期限 (monotonic 秒) のマッピング。期限を過ぎたキーは
    存在しないものとして扱い、一定間隔でまとめて削除する。

    用途:
        - 復元処理中の (user_id, role_id) 予約マーカー
          (Protection Guard が Bot 自身のロール付与を巻き戻さないため)
        - ユーザーごとのコマンドクールダウン

    Example:
        cache = ExpiringKeyCache()
        cache.reserve(("123", "456"), ttl=60)
        if cache.is_reserved(("123", "456")):
            ...
        cache.release(("123", "456"))
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expiry: dict[Hashable, float] = {}
        self._last_cleanup_time = float("-inf")

    def reserve(self, key: Hashable, ttl: float) -> None:
        """キーを ttl 秒間予約する. 既に予約済みなら期限を上書きする."""
        self._cleanup()
        self._expiry[key] = self._clock() + ttl

    def is_reserved(self, key: Hashable) -> bool:
        """キーが有効期限内かどうかを返す."""
        expires_at = self._expiry.get(key)
        if expires_at is None:
            return False
        if self._clock() >= expires_at:
            del self._expiry[key]
            return False
        return True

    def remaining(self, key: Hashable) -> float:
        """残り秒数を返す. 予約されていなければ 0."""
        if not self.is_reserved(key):
            return 0.0
        return self._expiry[key] - self._clock()

    def release(self, key: Hashable) -> None:
        """キーの予約を解除する (未予約でもエラーにしない)."""
        self._expiry.pop(key, None)

    def clear(self) -> None:
        """全ての予約を解除する (テスト用)."""
        self._expiry.clear()

    def __len__(self) -> int:
        return len(self._expiry)

    def _cleanup(self) -> None:
        """期限切れキーを削除する."""
        now = self._clock()
        if now - self._last_cleanup_time < _CACHE_CLEANUP_INTERVAL:
            return
        self._last_cleanup_time = now
        expired = [key for key, expires_at in self._expiry.items() if now >= expires_at]
        for key in expired:
            del self._expiry[key]


def reservation_key(user_id: str | int, role_id: str | int) -> tuple[str, str]:
    """予約マーカーのキーを作る."""
    return (str(user_id), str(role_id))
