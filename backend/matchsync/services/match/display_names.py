from collections import OrderedDict
from typing import Dict, List


def generate_display_names(players: List[Dict]) -> List[Dict]:
    """Assign each player of a team a short, unique display_name.

    Everyone starts with their last name. Players sharing a last name get the
    shortest common first-name prefix that tells them apart; if even full
    first names collide, the whole group falls back to last + full first name.
    Returns new dicts, input order preserved.
    """
    named = [dict(p, display_name=p.get('last_name', '')) for p in players]

    groups: 'OrderedDict[str, List[Dict]]' = OrderedDict()
    for player in named:
        groups.setdefault(player['display_name'], []).append(player)

    for group in groups.values():
        if len(group) > 1:
            _resolve_conflicts(group)
    return named


def _resolve_conflicts(group: List[Dict]) -> None:
    longest = max(len(p.get('first_name', '')) for p in group)
    for length in range(1, longest + 1):
        candidates = [_with_prefix(p, length) for p in group]
        if len(set(candidates)) == len(candidates):
            for player, name in zip(group, candidates):
                player['display_name'] = name
            return
    for player in group:
        player['display_name'] = f"{player.get('last_name', '')} {player.get('first_name', '')}"


def _with_prefix(player: Dict, length: int) -> str:
    return f"{player.get('last_name', '')} {player.get('first_name', '')[:length]}"
