"""Tests for the Discord gateway adapter."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from discord.ext import commands

from src.services.gateway import AuditEntry, DiscordGateway, PlatformError
from tests.factories import make_guild, make_member

GUILD_ID = "100"
USER_ID = "200"
ROLE_ID = "300"


def _forbidden() -> discord.Forbidden:
    response = MagicMock(status=403, reason="Forbidden")
    return discord.Forbidden(response, "Missing Permissions")


async def _never(*_: Any, **__: Any) -> None:
    await asyncio.sleep(10)


@pytest.fixture
def guild() -> MagicMock:
    guild = make_guild(GUILD_ID, owner_id="1")
    guild.get_member.return_value = None
    guild.fetch_member = AsyncMock(return_value=None)
    return guild


@pytest.fixture
def bot(guild: MagicMock) -> MagicMock:
    bot = MagicMock(spec=commands.Bot)
    bot.user = MagicMock(id=999)
    bot.get_guild.return_value = guild
    bot.fetch_guild = AsyncMock(return_value=None)
    bot.get_user.return_value = None
    bot.fetch_user = AsyncMock()
    return bot


@pytest.fixture
def gateway(bot: MagicMock) -> DiscordGateway:
    return DiscordGateway(bot, timeout=0.05)


# ===========================================================================
# 取得
# ===========================================================================


class TestFetch:
    """Tests for the fetch helpers."""

    def test_bot_user_id(self, gateway: DiscordGateway, bot: MagicMock) -> None:
        """Bot のユーザー ID を文字列で返す。"""
        assert gateway.bot_user_id == "999"
        bot.user = None
        assert gateway.bot_user_id is None

    async def test_fetch_guild_falls_back_to_api(
        self, gateway: DiscordGateway, bot: MagicMock, guild: MagicMock
    ) -> None:
        """キャッシュになければ API から取得する。"""
        bot.get_guild.return_value = None
        bot.fetch_guild.return_value = guild

        assert await gateway.fetch_guild(GUILD_ID) is guild
        bot.fetch_guild.assert_awaited_once_with(int(GUILD_ID))

    async def test_fetch_guild_timeout_returns_none(
        self, gateway: DiscordGateway, bot: MagicMock
    ) -> None:
        """タイムアウトしたら None。"""
        bot.get_guild.return_value = None
        bot.fetch_guild = MagicMock(side_effect=_never)

        assert await gateway.fetch_guild(GUILD_ID) is None

    async def test_fetch_member_uses_cache(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """キャッシュにあるメンバーはそのまま返す。"""
        member = make_member(USER_ID)
        guild.get_member.return_value = member

        assert await gateway.fetch_member(GUILD_ID, USER_ID) is member
        guild.fetch_member.assert_not_awaited()

    async def test_fetch_member_not_found(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """API でも見つからなければ None。"""
        response = MagicMock(status=404, reason="Not Found")
        guild.fetch_member.side_effect = discord.NotFound(response, "Unknown Member")

        assert await gateway.fetch_member(GUILD_ID, USER_ID) is None

    async def test_bot_top_role_position(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """Bot の最上位ロールの位置を返す。"""
        guild.me = MagicMock()
        guild.me.top_role.position = 12

        assert await gateway.bot_top_role_position(GUILD_ID) == 12

    async def test_fetch_recent_audit_entry(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """最新の監査ログの実行者と対象を返す。"""
        entry = MagicMock()
        entry.user.id = 1
        entry.target.id = 2

        async def _logs(**_: Any) -> AsyncIterator[MagicMock]:
            yield entry

        guild.audit_logs = MagicMock(side_effect=_logs)

        result = await gateway.fetch_recent_audit_entry(
            GUILD_ID, discord.AuditLogAction.member_role_update
        )

        assert result == AuditEntry(actor_id="1", target_id="2")
        guild.audit_logs.assert_called_once_with(
            limit=1, action=discord.AuditLogAction.member_role_update
        )

    async def test_fetch_recent_audit_entry_forbidden(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """監査ログの権限がなければ PlatformError。"""

        async def _logs(**_: Any) -> AsyncIterator[MagicMock]:
            raise _forbidden()
            yield  # pragma: no cover

        guild.audit_logs = MagicMock(side_effect=_logs)

        with pytest.raises(PlatformError):
            await gateway.fetch_recent_audit_entry(
                GUILD_ID, discord.AuditLogAction.member_role_update
            )


# ===========================================================================
# 変更
# ===========================================================================


class TestRoleChanges:
    """Tests for remove_role / add_role."""

    async def test_remove_role(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """discord.Object で指定してロールを外す。"""
        member = make_member(USER_ID)
        member.remove_roles = AsyncMock()
        guild.get_member.return_value = member

        await gateway.remove_role(GUILD_ID, USER_ID, ROLE_ID, reason="test")

        member.remove_roles.assert_awaited_once()
        role_arg = member.remove_roles.await_args.args[0]
        assert role_arg.id == int(ROLE_ID)
        assert member.remove_roles.await_args.kwargs["reason"] == "test"

    async def test_add_role_missing_member(self, gateway: DiscordGateway) -> None:
        """メンバーがいなければ PlatformError。"""
        with pytest.raises(PlatformError, match="not found"):
            await gateway.add_role(GUILD_ID, USER_ID, ROLE_ID, reason="test")

    async def test_http_error_becomes_platform_error(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """discord.HTTPException は PlatformError に変換される。"""
        member = make_member(USER_ID)
        member.add_roles = AsyncMock(side_effect=_forbidden())
        guild.get_member.return_value = member

        with pytest.raises(PlatformError):
            await gateway.add_role(GUILD_ID, USER_ID, ROLE_ID, reason="test")

    async def test_timeout_becomes_platform_error(
        self, gateway: DiscordGateway, guild: MagicMock
    ) -> None:
        """タイムアウトは PlatformError に変換される。"""
        member = make_member(USER_ID)
        member.add_roles = MagicMock(side_effect=_never)
        guild.get_member.return_value = member

        with pytest.raises(PlatformError, match="timed out"):
            await gateway.add_role(GUILD_ID, USER_ID, ROLE_ID, reason="test")


# ===========================================================================
# DM
# ===========================================================================


class TestSendDirectMessage:
    """Tests for send_direct_message()."""

    async def test_success(self, gateway: DiscordGateway, bot: MagicMock) -> None:
        """送信できたら True。"""
        user = MagicMock()
        user.send = AsyncMock()
        bot.fetch_user.return_value = user

        assert await gateway.send_direct_message(USER_ID, "hello") is True
        user.send.assert_awaited_once_with("hello")

    async def test_dm_closed(self, gateway: DiscordGateway, bot: MagicMock) -> None:
        """DM を拒否されていたら False (例外は投げない)。"""
        user = MagicMock()
        user.send = AsyncMock(side_effect=_forbidden())
        bot.get_user.return_value = user

        assert await gateway.send_direct_message(USER_ID, "hello") is False
