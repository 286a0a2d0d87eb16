"""Exception hierarchy for the demotion feature.

各例外は呼び出し元 (スラッシュコマンド) にそのまま表示できる
``user_message`` を持つ。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.database.models import Demotion


class DemotionConflictError(Exception):
    """同じ (user, guild, role) に有効な降格レコードが既に存在する (Store 層)。"""

    def __init__(self, existing: Demotion) -> None:
        super().__init__(
            f"Active demotion {existing.id} already exists for "
            f"user={existing.user_id} role={existing.role_id}"
        )
        self.existing = existing


class DemotionError(Exception):
    """降格操作の失敗を表す基底例外。"""

    user_message = "降格操作に失敗しました。"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.user_message = message
        super().__init__(self.user_message)


# --- 入力検証エラー (再試行しない) ---


class NotAuthorizedError(DemotionError):
    user_message = "このコマンドはサーバーオーナーのみ使用できます。"


class SelfTargetForbiddenError(DemotionError):
    user_message = "自分自身を降格することはできません。"


class InvalidDurationError(DemotionError):
    user_message = "期間を指定してください (時間と分の合計が 0 より大きい必要があります)。"


# --- 競合 ---


class AlreadyDemotedError(DemotionError):
    user_message = "このユーザーは既にこのロールから降格中です。"

    def __init__(self, existing: Demotion | None = None) -> None:
        super().__init__()
        self.existing = existing


class NoActiveDemotionError(DemotionError):
    user_message = "有効な降格が見つかりません。"


# --- 対象の状態 ---


class TargetNotFoundError(DemotionError):
    user_message = "対象のユーザーがサーバーにいません。"


class RoleNotFoundError(TargetNotFoundError):
    user_message = "ロールが見つかりません。候補から選択してください。"


class RoleNotHeldError(DemotionError):
    user_message = "対象のユーザーはこのロールを持っていません。"


class RoleHierarchyViolationError(DemotionError):
    user_message = "このロールは Bot の最上位ロール以上のため管理できません。"


# --- 外部要因 ---


class PlatformOperationFailedError(DemotionError):
    user_message = "ロールの操作に失敗しました。Bot の権限を確認してください。"


class StoreOperationFailedError(DemotionError):
    user_message = "降格の記録に失敗しました。管理者に連絡してください。"
