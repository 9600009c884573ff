from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Optional

from .penalties import (
    MAX_PENALTY,
    MAX_SCORE,
    apply_penalty_change,
    clamp_penalty,
    clamp_score,
    is_match_ended,
)

COUNTDOWN = 'countdown'
STOPWATCH = 'stopwatch'
TIMER_MODES = (COUNTDOWN, STOPWATCH)

VIEW_INITIAL = 'initial'
VIEW_SCOREBOARD = 'scoreboard'
VIEW_MATCH_RESULT = 'match_result'
VIEW_TEAM_RESULT = 'team_result'
VIEW_MODES = (VIEW_INITIAL, VIEW_SCOREBOARD, VIEW_MATCH_RESULT, VIEW_TEAM_RESULT)

DEFAULT_MATCH_TIME_SEC = 180

_SLOT_ALIASES = {
    'a': 'A',
    'playera': 'A',
    'b': 'B',
    'playerb': 'B',
}


def normalize_slot(slot: str) -> str:
    key = str(slot or '').strip().lower()
    if key not in _SLOT_ALIASES:
        raise ValueError(f'unknown competitor slot: {slot!r}')
    return _SLOT_ALIASES[key]


@dataclass
class Competitor:
    display_name: str = ''
    team_name: str = ''
    score: int = 0
    penalty: int = 0


@dataclass(frozen=True)
class MatchResult:
    winner: Optional[str]
    is_finished: bool
    reason: Optional[str] = None

    def to_dict(self):
        return {'winner': self.winner, 'reason': self.reason}


class MatchState:
    """Authoritative state of one bout on one court.

    Scores and penalties are clamped on the way in, never rejected. The bout
    finishes the moment a score reaches MAX_SCORE or a penalty reaches
    MAX_PENALTY, and the same mutation stops the timer.
    """

    def __init__(
        self,
        match_id: str,
        competitor_a: Competitor,
        competitor_b: Competitor,
        tournament_name: str = '',
        court_name: str = '',
        round_name: str = '',
        time_remaining: int = DEFAULT_MATCH_TIME_SEC,
        timer_mode: str = COUNTDOWN,
        view_mode: str = VIEW_SCOREBOARD,
        is_public: bool = False,
        group_matches: Optional[Any] = None,
        team_match_results: Optional[Any] = None,
    ):
        self.match_id = match_id
        self.tournament_name = tournament_name
        self.court_name = court_name
        self.round_name = round_name
        self.competitors = {'A': competitor_a, 'B': competitor_b}
        self.time_remaining = max(0, int(time_remaining))
        self.timer_mode = COUNTDOWN
        self.set_timer_mode(timer_mode)
        self.view_mode = VIEW_SCOREBOARD
        self.set_view_mode(view_mode)
        self.is_public = bool(is_public)
        self.is_running = False
        self.is_finished = False
        self.group_matches = deepcopy(group_matches)
        self.team_match_results = deepcopy(team_match_results)
        for competitor in self.competitors.values():
            competitor.score = clamp_score(competitor.score)
            competitor.penalty = clamp_penalty(competitor.penalty)
        self._settle()

    @classmethod
    def from_record(cls, match_record, resolved_players, **kwargs):
        """Build a state from a stored match record and resolved display names.

        match_record carries match_id and per-competitor score/penalty under
        players.playerA / players.playerB; resolved_players carries
        display_name/team_name under the same keys.
        """
        players = (match_record or {}).get('players') or {}
        resolved = resolved_players or {}
        competitors = []
        for key in ('playerA', 'playerB'):
            stored = players.get(key) or {}
            names = resolved.get(key) or {}
            competitors.append(Competitor(
                display_name=names.get('display_name', ''),
                team_name=names.get('team_name', ''),
                score=_as_int(stored.get('score')),
                penalty=_as_int(stored.get('penalty', stored.get('hansoku'))),
            ))
        return cls(match_record.get('match_id'), competitors[0], competitors[1], **kwargs)

    @property
    def competitor_a(self) -> Competitor:
        return self.competitors['A']

    @property
    def competitor_b(self) -> Competitor:
        return self.competitors['B']

    def competitor(self, slot: str) -> Competitor:
        return self.competitors[normalize_slot(slot)]

    def opponent(self, slot: str) -> Competitor:
        return self.competitors['B' if normalize_slot(slot) == 'A' else 'A']

    # ---- scoring ----

    def set_score(self, slot: str, value: int) -> None:
        self.competitor(slot).score = clamp_score(value)
        self._settle()

    def set_penalty(self, slot: str, value: int) -> None:
        competitor = self.competitor(slot)
        opponent = self.opponent(slot)
        new_level = clamp_penalty(value)
        opponent.score = apply_penalty_change(competitor.penalty, new_level, opponent.score)
        if new_level == MAX_PENALTY:
            # Second red hands the bout to the opponent outright
            opponent.score = MAX_SCORE
        competitor.penalty = new_level
        self._settle()

    def reset_match(self) -> None:
        for competitor in self.competitors.values():
            competitor.score = 0
            competitor.penalty = 0
        self.is_finished = False

    def _settle(self) -> None:
        finished = any(is_match_ended(c.score, c.penalty) for c in self.competitors.values())
        if finished:
            self.is_running = False
        self.is_finished = finished

    # ---- timer ----

    def start_timer(self) -> bool:
        if self.is_finished:
            return False
        self.is_running = True
        return True

    def stop_timer(self) -> None:
        self.is_running = False

    def set_time_remaining(self, seconds: int) -> None:
        self.time_remaining = max(0, int(seconds))

    def set_timer_mode(self, mode: str) -> None:
        if mode not in TIMER_MODES:
            raise ValueError(f'unknown timer mode: {mode!r}')
        self.timer_mode = mode

    def tick(self) -> None:
        """Advance the clock by one second.

        Countdown stops on reaching zero and never goes negative; the
        stopwatch only counts up.
        """
        if not self.is_running:
            return
        if self.timer_mode == STOPWATCH:
            self.time_remaining += 1
            return
        if self.time_remaining > 0:
            self.time_remaining -= 1
        if self.time_remaining == 0:
            self.is_running = False

    # ---- display ----

    def set_public(self, is_public: bool) -> None:
        self.is_public = bool(is_public)

    def toggle_public(self) -> None:
        self.is_public = not self.is_public

    def set_view_mode(self, mode: str) -> None:
        if mode not in VIEW_MODES:
            raise ValueError(f'unknown view mode: {mode!r}')
        self.view_mode = mode

    # ---- results ----

    def result(self) -> MatchResult:
        """Winner once finished, or the current leader while the bout is on.

        A competitor at MAX_PENALTY loses whatever the scores say.
        """
        a, b = self.competitor_a, self.competitor_b
        if self.is_finished:
            if a.penalty >= MAX_PENALTY:
                return MatchResult(winner='playerB', is_finished=True, reason='penalty_loss')
            if b.penalty >= MAX_PENALTY:
                return MatchResult(winner='playerA', is_finished=True, reason='penalty_loss')
        if a.score > b.score:
            winner = 'playerA'
        elif b.score > a.score:
            winner = 'playerB'
        else:
            winner = 'draw'
        reason = 'two_points' if self.is_finished else None
        return MatchResult(winner=winner, is_finished=self.is_finished, reason=reason)


def _as_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
