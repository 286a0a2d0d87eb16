"""Discord gateway used by the demotion services.

降格機能が Discord に対して行う操作をまとめたアダプター。
サービス層はこのクラスだけを通して Discord を触るため、テストでは
AsyncMock に差し替えられる。

Notes:
    - すべての API 呼び出しは asyncio.wait_for でタイムアウトを設ける
    - タイムアウトと discord.HTTPException は PlatformError に変換する
    - fetch_* 系は見つからない場合やエラー時に None を返す
    - send_direct_message は失敗しても例外を投げない (ベストエフォート)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

import discord
from discord.ext import commands

from src.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlatformError(Exception):
    """Discord 側の操作 (ネットワーク・権限・対象不在) の失敗。"""


@dataclass(frozen=True)
class AuditEntry:
    """監査ログの1エントリ (実行者と対象)。"""

    actor_id: str | None
    target_id: str | None


class DiscordGateway:
    """discord.py の Bot をラップしてタイムアウト付きで操作する。"""

    def __init__(self, bot: commands.Bot, *, timeout: float | None = None) -> None:
        self.bot = bot
        self.timeout = (
            timeout if timeout is not None else settings.platform_timeout_seconds
        )

    @property
    def bot_user_id(self) -> str | None:
        """Bot 自身のユーザー ID。"""
        return str(self.bot.user.id) if self.bot.user else None

    async def _call(self, awaitable: Awaitable[T], action: str) -> T:
        """タイムアウト付きで API を呼び出し、失敗を PlatformError に変換する。"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except TimeoutError as e:
            msg = f"{action} timed out after {self.timeout}s"
            raise PlatformError(msg) from e
        except discord.HTTPException as e:
            msg = f"{action} failed: {e}"
            raise PlatformError(msg) from e

    # ==========================================================================
    # 取得
    # ==========================================================================

    async def fetch_guild(self, guild_id: str) -> discord.Guild | None:
        """ギルドを取得する。"""
        guild = self.bot.get_guild(int(guild_id))
        if guild is not None:
            return guild
        try:
            return await self._call(
                self.bot.fetch_guild(int(guild_id)), f"fetch_guild({guild_id})"
            )
        except PlatformError:
            logger.debug("Guild %s not available", guild_id, exc_info=True)
            return None

    async def fetch_member(
        self, guild_id: str, user_id: str
    ) -> discord.Member | None:
        """ギルドメンバーを取得する。キャッシュになければ API から取得する。"""
        guild = await self.fetch_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await self._call(
                guild.fetch_member(int(user_id)),
                f"fetch_member({guild_id}, {user_id})",
            )
        except PlatformError:
            logger.debug(
                "Member %s not available in guild %s", user_id, guild_id, exc_info=True
            )
            return None

    async def fetch_role(self, guild_id: str, role_id: str) -> discord.Role | None:
        """ロールを取得する。削除済みなら None。"""
        guild = await self.fetch_guild(guild_id)
        if guild is None:
            return None
        return guild.get_role(int(role_id))

    async def bot_top_role_position(self, guild_id: str) -> int:
        """Bot の最上位ロールの位置を返す。取得できなければ 0。"""
        guild = await self.fetch_guild(guild_id)
        if guild is None or guild.me is None:
            return 0
        return guild.me.top_role.position

    async def fetch_recent_audit_entry(
        self, guild_id: str, action: discord.AuditLogAction
    ) -> AuditEntry | None:
        """指定種別の最新の監査ログエントリを返す。"""
        guild = await self.fetch_guild(guild_id)
        if guild is None:
            return None

        async def _first() -> AuditEntry | None:
            async for entry in guild.audit_logs(limit=1, action=action):
                target = entry.target
                return AuditEntry(
                    actor_id=str(entry.user.id) if entry.user else None,
                    target_id=str(target.id) if target is not None else None,
                )
            return None

        return await self._call(_first(), f"audit_logs({guild_id}, {action})")

    # ==========================================================================
    # 変更
    # ==========================================================================

    async def remove_role(
        self, guild_id: str, user_id: str, role_id: str, reason: str
    ) -> None:
        """メンバーからロールを外す。

        Raises:
            PlatformError: メンバー不在・権限不足・タイムアウト
        """
        member = await self.fetch_member(guild_id, user_id)
        if member is None:
            msg = f"member {user_id} not found in guild {guild_id}"
            raise PlatformError(msg)
        await self._call(
            member.remove_roles(discord.Object(id=int(role_id)), reason=reason),
            f"remove_role({guild_id}, {user_id}, {role_id})",
        )

    async def add_role(
        self, guild_id: str, user_id: str, role_id: str, reason: str
    ) -> None:
        """メンバーにロールを付与する。

        Raises:
            PlatformError: メンバー不在・権限不足・タイムアウト
        """
        member = await self.fetch_member(guild_id, user_id)
        if member is None:
            msg = f"member {user_id} not found in guild {guild_id}"
            raise PlatformError(msg)
        await self._call(
            member.add_roles(discord.Object(id=int(role_id)), reason=reason),
            f"add_role({guild_id}, {user_id}, {role_id})",
        )

    async def send_direct_message(self, user_id: str, text: str) -> bool:
        """ユーザーに DM を送る。DM 拒否などの失敗は False を返す。"""
        try:
            user = self.bot.get_user(int(user_id))
            if user is None:
                user = await self._call(
                    self.bot.fetch_user(int(user_id)), f"fetch_user({user_id})"
                )
            await self._call(user.send(text), f"send_dm({user_id})")
        except PlatformError:
            logger.debug("Could not DM user %s", user_id, exc_info=True)
            return False
        return True
