import logging
import random
from datetime import datetime
from typing import List, Dict, Optional

from sqlalchemy.exc import IntegrityError

from .errors import NotFound, InvalidState, ConflictingWrite, IntegrityViolation
from .models import Tournament, TournamentParticipant, TournamentRound, Match, MatchParticipant, User
from .swiss import calculate_round_count, calculate_standings, generate_pairings
from .unit_of_work import UnitOfWork
from shared.state_machine import TournamentStateMachine, TransitionError
from shared.events import (
    state_changed_event, tournament_started_event, round_started_event,
    match_result_event, tournament_completed_event,
)
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)


class MatchEngine:
    """
    Runs the Swiss round lifecycle of a tournament:
    - Start: open -> in_progress, round 1 from a shuffled field
    - Report result: score a pending match
    - Advance: close the current round, pair the next one or finish
    """

    def __init__(self, session, events: EventPublisher = None, rng: random.Random = None):
        self.session = session
        self.events = events or EventPublisher()
        self.rng = rng or random.Random()

    # ==================== Reads ====================

    def _load_tournament(self, tournament_id: int, lock: bool = False) -> Tournament:
        query = self.session.query(Tournament).filter(Tournament.id == tournament_id)
        if lock:
            query = query.with_for_update()
        tournament = query.first()
        if not tournament:
            raise NotFound("Tournament not found")
        return tournament

    def _participants(self, tournament_id: int) -> List[Dict]:
        rows = (
            self.session.query(TournamentParticipant.user_id, User.username, User.tag)
            .join(User, User.id == TournamentParticipant.user_id)
            .filter(TournamentParticipant.tournament_id == tournament_id)
            .order_by(TournamentParticipant.joined_at, TournamentParticipant.id)
            .all()
        )
        return [{'userId': r.user_id, 'username': r.username, 'tag': r.tag} for r in rows]

    def _completed_match_rows(self, tournament_id: int) -> List[Dict]:
        rows = (
            self.session.query(
                Match.id, Match.round_id, Match.winner_team_id, Match.is_bye,
                Match.team_1_score, Match.team_2_score,
                MatchParticipant.player_id, MatchParticipant.team_id, MatchParticipant.score,
            )
            .join(MatchParticipant, MatchParticipant.match_id == Match.id)
            .filter(Match.tournament_id == tournament_id, Match.status == 'completed')
            .order_by(Match.id, MatchParticipant.team_id)
            .all()
        )
        return [
            {
                'matchId': r[0],
                'roundId': r[1],
                'winnerTeamId': r[2],
                'isBye': bool(r[3]),
                'team1Score': r[4],
                'team2Score': r[5],
                'playerId': r[6],
                'teamId': r[7],
                'gamesWon': r[8],
            }
            for r in rows
        ]

    def total_rounds(self, tournament: Tournament, player_count: int) -> int:
        if tournament.number_of_rounds is not None:
            return tournament.number_of_rounds
        return calculate_round_count(player_count)

    def get_tournament_data(self, tournament_id: int) -> Optional[Dict]:
        """Tournament summary, participants and completed match rows, or None."""
        tournament = self.session.get(Tournament, tournament_id)
        if not tournament:
            return None

        participants = self._participants(tournament_id)
        return {
            'tournament': {
                'id': tournament.id,
                'status': tournament.status,
                'currentRound': tournament.current_round,
                'totalRounds': self.total_rounds(tournament, len(participants)),
                'playerCount': len(participants),
            },
            'participants': participants,
            'matches': self._completed_match_rows(tournament_id),
        }

    def get_standings(self, tournament_id: int) -> List[Dict]:
        data = self.get_tournament_data(tournament_id)
        if data is None:
            raise NotFound("Tournament not found")
        return calculate_standings(data['participants'], data['matches'])

    def get_round(self, tournament_id: int, round_number: int) -> Optional[TournamentRound]:
        return (
            self.session.query(TournamentRound)
            .filter_by(tournament_id=tournament_id, round_number=round_number)
            .first()
        )

    def all_matches_complete(self, round_id: int) -> bool:
        pending = (
            self.session.query(Match)
            .filter(Match.round_id == round_id, Match.status != 'completed')
            .count()
        )
        return pending == 0

    # ==================== Round creation ====================

    def _open_round(self, tournament: Tournament, round_number: int) -> TournamentRound:
        tournament_round = TournamentRound(
            tournament_id=tournament.id,
            round_number=round_number,
            status='in_progress',
            started_at=datetime.utcnow(),
        )
        self.session.add(tournament_round)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise ConflictingWrite(f"Round {round_number} already exists") from e
        return tournament_round

    def _create_matches(self, tournament: Tournament, tournament_round: TournamentRound,
                        pairings: List[Dict]) -> List[Match]:
        matches = []
        for pairing in pairings:
            match = Match(
                tournament_id=tournament.id,
                round_id=tournament_round.id,
                match_type='swiss',
                is_bye=pairing['isBye'],
                status='pending',
            )
            match.participants.append(MatchParticipant(player_id=pairing['player1'], team_id=1))
            if pairing['isBye']:
                match.status = 'completed'
                match.winner_team_id = 1
                match.completed_at = datetime.utcnow()
            else:
                match.participants.append(MatchParticipant(player_id=pairing['player2'], team_id=2))
            self.session.add(match)
            matches.append(match)

        self.session.flush()
        logger.debug(f"Created {len(matches)} matches for round {tournament_round.round_number} "
                     f"of tournament {tournament.id}")
        return matches

    # ==================== Lifecycle ====================

    def start_tournament(self, tournament_id: int) -> Dict:
        """Move an open tournament to in_progress and pair round 1 at random."""
        with UnitOfWork(self.session) as uow:
            tournament = self._load_tournament(tournament_id, lock=True)
            participants = self._participants(tournament_id)

            sm = TournamentStateMachine.from_state_string(tournament.status)
            try:
                old_state = sm.state.value
                new_state = sm.transition('start', {
                    'participants': participants,
                    'min_players': max(2, tournament.min_player_count or 2),
                })
            except TransitionError as e:
                raise InvalidState(e.reason) from e

            tournament.status = new_state.value
            tournament.current_round = 1
            tournament_round = self._open_round(tournament, 1)

            shuffled = list(participants)
            self.rng.shuffle(shuffled)
            pairings = generate_pairings([{'userId': p['userId'], 'opponents': []} for p in shuffled])
            self._create_matches(tournament, tournament_round, pairings)

            total_rounds = self.total_rounds(tournament, len(participants))
            self.events.publish_after_commit(uow, state_changed_event(tournament.id, old_state, new_state.value))
            self.events.publish_after_commit(uow, tournament_started_event(tournament.id, len(participants), total_rounds))
            self.events.publish_after_commit(uow, round_started_event(tournament.id, 1, len(pairings)))
            result = {'roundId': tournament_round.id, 'roundNumber': 1, 'pairings': pairings}

        logger.info(f"Tournament {tournament_id} started with {len(participants)} players, "
                    f"{total_rounds} rounds planned")
        return result

    def report_match_result(self, match_id: int, team1_score: int, team2_score: int) -> Dict:
        """Score a pending two-player match. Draws are rejected."""
        with UnitOfWork(self.session) as uow:
            match = self.session.query(Match).filter(Match.id == match_id).with_for_update().first()
            if not match:
                raise NotFound("Match not found")
            if match.status == 'completed':
                raise InvalidState("Match already completed")
            if match.status == 'cancelled':
                raise InvalidState("Match was cancelled")
            if match.is_bye:
                raise InvalidState("Cannot report result for a bye")
            if not TournamentStateMachine.from_state_string(match.tournament.status).can_perform('report_result'):
                raise InvalidState("Tournament is not in progress")
            if team1_score == team2_score:
                raise IntegrityViolation("Match cannot end in a draw")

            winner_team_id = 1 if team1_score > team2_score else 2
            match.team_1_score = team1_score
            match.team_2_score = team2_score
            match.winner_team_id = winner_team_id
            match.status = 'completed'
            match.completed_at = datetime.utcnow()

            for participant in match.participants:
                participant.score = team1_score if participant.team_id == 1 else team2_score

            self.events.publish_after_commit(uow, match_result_event(
                match.tournament_id, match.id, winner_team_id, match.round.round_number
            ))

        logger.info(f"Match {match_id} completed {team1_score}-{team2_score}, team {winner_team_id} wins")
        return {'matchId': match_id, 'winnerTeamId': winner_team_id}

    def advance_round(self, tournament_id: int) -> Dict:
        """
        Close the current round, then either complete the tournament or
        pair the next round from fresh standings.
        """
        with UnitOfWork(self.session) as uow:
            tournament = self._load_tournament(tournament_id, lock=True)
            sm = TournamentStateMachine.from_state_string(tournament.status)
            if not sm.can_perform('advance'):
                raise InvalidState("Tournament is not in progress")

            current = self.get_round(tournament.id, tournament.current_round)
            if current is None:
                raise InvalidState(f"Round {tournament.current_round} does not exist")
            if current.status == 'completed':
                raise ConflictingWrite("Round already advanced")

            round_matches = [{'status': m.status} for m in current.matches]
            participants = self._participants(tournament.id)
            total_rounds = self.total_rounds(tournament, len(participants))
            action = 'complete' if tournament.current_round >= total_rounds else 'advance'

            try:
                old_state = sm.state.value
                new_state = sm.transition(action, {'matches': round_matches})
            except TransitionError as e:
                raise InvalidState(e.reason) from e

            current.status = 'completed'
            current.completed_at = datetime.utcnow()

            if action == 'complete':
                tournament.status = new_state.value
                self.session.flush()
                self.events.publish_after_commit(uow, state_changed_event(tournament.id, old_state, new_state.value))
                self.events.publish_after_commit(uow, tournament_completed_event(tournament.id, tournament.current_round))
                result = {'completed': True}
            else:
                next_round = tournament.current_round + 1
                tournament.current_round = next_round
                tournament_round = self._open_round(tournament, next_round)

                standings = calculate_standings(participants, self._completed_match_rows(tournament.id))
                pairings = generate_pairings(standings)
                self._create_matches(tournament, tournament_round, pairings)

                self.events.publish_after_commit(uow, round_started_event(tournament.id, next_round, len(pairings)))
                result = {'roundId': tournament_round.id, 'roundNumber': next_round, 'pairings': pairings}

        if result.get('completed'):
            logger.info(f"Tournament {tournament_id} completed after {total_rounds} rounds")
        else:
            logger.info(f"Tournament {tournament_id} advanced to round {result['roundNumber']}")
        return result
