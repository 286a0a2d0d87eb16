"""Pure validation functions."""

from src.constants import MAX_DEMOTION_HOURS, MAX_DEMOTION_MINUTES

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE


def validate_demotion_duration(hours: int, minutes: int) -> bool:
    """Validate a demotion duration.

    Args:
        hours: Hours (0-720)
        minutes: Minutes (0-59)

    Returns:
        True if both parts are in range and the total is positive
    """
    if not 0 <= hours <= MAX_DEMOTION_HOURS:
        return False
    if not 0 <= minutes <= MAX_DEMOTION_MINUTES:
        return False
    return hours > 0 or minutes > 0


def duration_to_ms(hours: int, minutes: int) -> int:
    """Convert hours and minutes to milliseconds."""
    return hours * MS_PER_HOUR + minutes * MS_PER_MINUTE


def compute_restore_at(demoted_at: int, hours: int, minutes: int) -> int:
    """Return the restore timestamp (ms) for a demotion starting at demoted_at."""
    return demoted_at + duration_to_ms(hours, minutes)


def is_selectable_role_id(role_id: str | None) -> bool:
    """Check that an autocomplete value refers to a role.

    The autocomplete hints use the placeholder value "none".
    """
    return bool(role_id) and role_id != "none" and str(role_id).isdigit()
