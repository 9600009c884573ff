MAX_SCORE = 2
MAX_PENALTY = 4

# Penalty levels
NONE = 0
YELLOW = 1
RED = 2
RED_YELLOW = 3
RED_RED = 4


def clamp_score(value: int) -> int:
    return max(0, min(MAX_SCORE, int(value)))


def clamp_penalty(value: int) -> int:
    return max(NONE, min(MAX_PENALTY, int(value)))


def penalty_points(level: int) -> int:
    """Points a penalty level hands to the opponent: one per red card."""
    if level < NONE or level > MAX_PENALTY:
        raise ValueError(f'penalty level out of range: {level}')
    return level // 2


def apply_penalty_change(old_level: int, new_level: int, opponent_score: int) -> int:
    """Return the opponent's score after a penalty moves from old_level to new_level.

    Crossing a red-card threshold upward awards the opponent a point, crossing
    it downward takes the point back. The result is clamped to [0, MAX_SCORE],
    so an award that hits the ceiling is not fully undone by the inverse change.
    """
    awarded = penalty_points(new_level) - penalty_points(old_level)
    return clamp_score(opponent_score + awarded)


def is_match_ended(score: int, penalty: int) -> bool:
    return score >= MAX_SCORE or penalty >= MAX_PENALTY
