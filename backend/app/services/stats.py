import math
from typing import Dict


def _percent(value: float) -> int:
    return int(math.floor(value * 100 + 0.5))


def intimacy_score(total_answers: int = 0, matching_answers: int = 0, total_games: int = 0,
                   game_wins: int = 0, message_count: int = 0, days_active: int = 0) -> Dict[str, int]:
    """Weighted closeness score for a room, with its component percentages.

    Chat and consistency points are capped at 100 each; every 100 total
    points is one level, starting from level 1.
    """
    answer_points = total_answers * 10
    match_points = matching_answers * 20
    game_points = total_games * 15
    win_points = game_wins * 25
    chat_points = min(message_count * 2, 100)
    consistency_points = min(days_active * 5, 100)
    total = answer_points + match_points + game_points + win_points + chat_points + consistency_points
    return {
        'total': total,
        'empathy': _percent(match_points / max(total_answers * 20, 1)),
        'activity': _percent((answer_points + game_points) / 500),
        'communication': _percent(chat_points / 100),
        'consistency': _percent(consistency_points / 100),
        'level': total // 100 + 1,
    }
