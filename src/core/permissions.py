"""Pure functions for permission checks."""

from collections.abc import Callable

import discord

# 降格コマンドの実行権限を判定する関数の型
# (guild, actor_id) -> 実行可能なら True
AuthorizationPolicy = Callable[[discord.Guild, int], bool]


def is_guild_owner(guild: discord.Guild, user_id: int) -> bool:
    """Check if a user owns the guild.

    This is the default authorization policy for demotion commands.

    Args:
        guild: The Discord guild
        user_id: The user ID to check

    Returns:
        True if the user is the guild owner
    """
    return guild.owner_id == user_id


def can_manage_role(bot_top_position: int, role_position: int) -> bool:
    """Check whether the bot can add or remove a role.

    Discord only lets a member manage roles strictly below its highest role.

    Args:
        bot_top_position: Position of the bot's highest role
        role_position: Position of the target role

    Returns:
        True if the role is below the bot's highest role
    """
    return role_position < bot_top_position


def is_self_target(actor_id: int | str, target_id: int | str) -> bool:
    """Check whether the actor is targeting themselves."""
    return str(actor_id) == str(target_id)
