"""Leveling - Pure functions for the XP curve.

All functions are pure: same input always produces same output, no side effects.
"""

from .models import LevelInfo


# (last level of tier, XP cost per level); the final tier is open-ended
LEVEL_TIERS: tuple[tuple[int, int], ...] = (
    (10, 100),
    (20, 250),
    (30, 500),
)
MAX_TIER_COST = 1000


def cost_of_level(level: int) -> int:
    """XP required to advance out of `level` into `level + 1`.

    Args:
        level: A level, starting at 1

    Returns:
        100 for levels 1-10, 250 for 11-20, 500 for 21-30, 1000 beyond

    Raises:
        ValueError: If level is below 1
    """
    if level < 1:
        raise ValueError(f"level must be at least 1, got {level}")

    for last_level, cost in LEVEL_TIERS:
        if level <= last_level:
            return cost
    return MAX_TIER_COST


def level_info(total_xp: int) -> LevelInfo:
    """Derive level and in-level progress from a cumulative XP total.

    Consumes whole tiers while the remaining XP covers them, then divides
    what is left by the current tier's cost. Runs in time proportional to
    the number of tiers, not the level reached.

    Args:
        total_xp: Cumulative XP, never negative

    Returns:
        LevelInfo where 0 <= xp < xp_to_next_level

    Raises:
        ValueError: If total_xp is negative
    """
    if total_xp < 0:
        raise ValueError(f"total_xp must be non-negative, got {total_xp}")

    level = 1
    remaining = total_xp
    for last_level, cost in LEVEL_TIERS:
        tier_xp = (last_level - level + 1) * cost
        if remaining < tier_xp:
            steps, progress = divmod(remaining, cost)
            return LevelInfo(level=level + steps, xp=progress, xp_to_next_level=cost)
        remaining -= tier_xp
        level = last_level + 1

    steps, progress = divmod(remaining, MAX_TIER_COST)
    return LevelInfo(level=level + steps, xp=progress, xp_to_next_level=MAX_TIER_COST)
