import json
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Optional

from matchsync.services.match.state import VIEW_MATCH_RESULT, Competitor, MatchState


@dataclass(frozen=True)
class PlayerSnapshot:
    display_name: str
    team_name: str
    score: int
    hansoku: int

    @classmethod
    def from_competitor(cls, competitor: Competitor) -> 'PlayerSnapshot':
        return cls(competitor.display_name, competitor.team_name, competitor.score, competitor.penalty)

    def to_dict(self):
        return {
            'displayName': self.display_name,
            'teamName': self.team_name,
            'score': self.score,
            'hansoku': self.hansoku,
        }


@dataclass(frozen=True)
class Snapshot:
    """Full, self-contained projection of a MatchState for the displays.

    Nested collections are private copies taken at build time, so later
    mutations of the match never leak into a snapshot already handed out.
    """

    match_id: str
    tournament_name: str
    court_name: str
    round_name: str
    player_a: PlayerSnapshot
    player_b: PlayerSnapshot
    time_remaining: int
    is_timer_running: bool
    timer_mode: str
    is_public: bool
    view_mode: str
    is_finished: bool
    match_result: Optional[dict] = None
    team_match_results: Optional[Any] = None
    group_matches: Optional[Any] = None

    @classmethod
    def from_state(cls, state: MatchState) -> 'Snapshot':
        result = None
        if state.is_finished or state.view_mode == VIEW_MATCH_RESULT:
            result = state.result().to_dict()
        return cls(
            match_id=state.match_id,
            tournament_name=state.tournament_name,
            court_name=state.court_name,
            round_name=state.round_name,
            player_a=PlayerSnapshot.from_competitor(state.competitor_a),
            player_b=PlayerSnapshot.from_competitor(state.competitor_b),
            time_remaining=state.time_remaining,
            is_timer_running=state.is_running,
            timer_mode=state.timer_mode,
            is_public=state.is_public,
            view_mode=state.view_mode,
            is_finished=state.is_finished,
            match_result=result,
            team_match_results=deepcopy(state.team_match_results),
            group_matches=deepcopy(state.group_matches),
        )

    def to_dict(self):
        payload = {
            'matchId': self.match_id,
            'tournamentName': self.tournament_name,
            'courtName': self.court_name,
            'roundName': self.round_name,
            'playerA': self.player_a.to_dict(),
            'playerB': self.player_b.to_dict(),
            'timeRemaining': self.time_remaining,
            'isTimerRunning': self.is_timer_running,
            'timerMode': self.timer_mode,
            'isPublic': self.is_public,
            'viewMode': self.view_mode,
        }
        # Optional keys are omitted rather than sent as null
        if self.match_result is not None:
            payload['matchResult'] = dict(self.match_result)
        if self.team_match_results is not None:
            payload['teamMatchResults'] = deepcopy(self.team_match_results)
        if self.group_matches is not None:
            payload['groupMatches'] = deepcopy(self.group_matches)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(',', ':'))
