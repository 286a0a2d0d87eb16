"""Pure functions for building display strings."""

from src.core.validators import MS_PER_MINUTE


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}{'s' if value > 1 else ''}"


def build_duration_text(hours: int, minutes: int) -> str:
    """Build a human readable duration such as "1 day 2 hours 30 minutes".

    Args:
        hours: Hours of the demotion (may exceed 24)
        minutes: Minutes of the demotion

    Returns:
        The formatted duration
    """
    parts: list[str] = []
    days, display_hours = divmod(hours, 24)
    if days > 0:
        parts.append(_plural(days, "day"))
    if display_hours > 0:
        parts.append(_plural(display_hours, "hour"))
    if minutes > 0:
        parts.append(_plural(minutes, "minute"))
    return " ".join(parts)


def build_remaining_text(remaining_ms: int) -> str:
    """Build a compact remaining-time string such as "1h 5m".

    Minutes are rounded up so that a few seconds left still shows "1m".
    """
    total_minutes = max(0, -(-remaining_ms // MS_PER_MINUTE))
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def build_discord_timestamp(ms: int, style: str = "F") -> str:
    """Build a Discord timestamp markup from milliseconds since epoch."""
    return f"<t:{ms // 1000}:{style}>"


def build_role_list_text(role_names: list[str]) -> str:
    """Join role names for a message, e.g. "**A, B**"."""
    return f"**{', '.join(role_names)}**" if role_names else "-"
