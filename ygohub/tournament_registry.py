import logging
import secrets
from typing import Optional, List, Dict

from .collection_stores import store_for
from .custom_cards import CustomCardService
from .errors import NotFound, InvalidState, ConflictingWrite, IntegrityViolation
from .match_engine import MatchEngine
from .models import Tournament, TournamentParticipant, TournamentRound, Match, User
from .snapshot_engine import SnapshotEngine
from .unit_of_work import UnitOfWork
from shared.state_machine import TournamentState, TournamentStateMachine

logger = logging.getLogger(__name__)

DECK_MODES = ('player', 'organizer')


class TournamentRegistry:
    """
    Manages tournament records and the creator-facing lifecycle:
    - Create tournaments and hand out invite codes
    - Join by invite code
    - Start: freeze decks, lock custom snapshots, pair round 1
    - Creator-only advance and result reporting
    """

    def __init__(self, session, match_engine: MatchEngine, snapshots: SnapshotEngine,
                 custom_snapshots: SnapshotEngine, custom_cards: CustomCardService,
                 invite_code_bytes: int = 4, default_min_players: int = 2):
        self.session = session
        self.match_engine = match_engine
        self.snapshots = snapshots
        self.custom_snapshots = custom_snapshots
        self.custom_cards = custom_cards
        self.invite_code_bytes = invite_code_bytes
        self.default_min_players = default_min_players

    def snapshots_for(self, tournament: Tournament) -> SnapshotEngine:
        """Snapshot engine backed by the store matching the tournament's card pool."""
        return self.custom_snapshots if tournament.uses_custom_cards else self.snapshots

    def _new_invite_code(self) -> str:
        while True:
            code = secrets.token_hex(self.invite_code_bytes).upper()
            if not self.session.query(Tournament.id).filter_by(invite_code=code).first():
                return code

    def _owned_tournament(self, tournament_id: int, user_id: int, lock: bool = False) -> Tournament:
        query = self.session.query(Tournament).filter(Tournament.id == tournament_id)
        if lock:
            query = query.with_for_update()
        tournament = query.first()
        if not tournament or tournament.created_by != user_id:
            raise NotFound("Tournament not found")
        return tournament

    # ==================== Records ====================

    def create_tournament(
        self,
        user_id: int,
        name: str,
        min_player_count: int = None,
        max_player_count: int = None,
        number_of_rounds: int = None,
        deck_mode: str = 'player',
        collection_id: int = None,
        uses_custom_cards: bool = False,
        series_id: int = None,
    ) -> Tournament:
        """Create an open tournament with a fresh invite code."""
        if deck_mode not in DECK_MODES:
            raise IntegrityViolation(f"Invalid deck mode '{deck_mode}'")
        if min_player_count is None:
            min_player_count = self.default_min_players
        if max_player_count is not None and max_player_count < min_player_count:
            raise IntegrityViolation("max_player_count cannot be below min_player_count")
        if number_of_rounds is not None and number_of_rounds < 1:
            raise IntegrityViolation("number_of_rounds must be positive")

        with UnitOfWork(self.session) as uow:
            if deck_mode == 'organizer':
                if collection_id is None:
                    raise NotFound("Collection not found")
                store_for(self.session, uses_custom_cards).get_collection(collection_id, user_id)

            tournament = Tournament(
                name=name,
                created_by=user_id,
                status=TournamentState.OPEN.value,
                invite_code=self._new_invite_code(),
                min_player_count=min_player_count,
                max_player_count=max_player_count,
                number_of_rounds=number_of_rounds,
                deck_mode=deck_mode,
                collection_id=collection_id,
                uses_custom_cards=uses_custom_cards,
                series_id=series_id,
            )
            self.session.add(tournament)
            uow.flush()

        logger.info(f"User {user_id} created tournament {tournament.id} ({tournament.invite_code})")
        return tournament

    def join_tournament(self, invite_code: str, user_id: int) -> Dict:
        with UnitOfWork(self.session):
            tournament = (
                self.session.query(Tournament)
                .filter(Tournament.invite_code == invite_code)
                .with_for_update()
                .first()
            )
            if not tournament:
                raise NotFound("Invalid invite code")
            if not TournamentStateMachine.from_state_string(tournament.status).can_perform('join'):
                raise InvalidState("Tournament has already started")
            if tournament.max_player_count and tournament.player_count >= tournament.max_player_count:
                raise InvalidState("Tournament is full")

            existing = (
                self.session.query(TournamentParticipant)
                .filter_by(tournament_id=tournament.id, user_id=user_id)
                .first()
            )
            if existing:
                raise ConflictingWrite("Already joined this tournament")

            self.session.add(TournamentParticipant(tournament_id=tournament.id, user_id=user_id))
            tournament.player_count = tournament.player_count + 1

        logger.info(f"User {user_id} joined tournament {tournament.id}")
        return {'tournamentId': tournament.id}

    def get_tournament(self, tournament_id: int) -> Optional[Tournament]:
        return self.session.get(Tournament, tournament_id)

    def list_tournaments(self, status: str = None, limit: int = 50, offset: int = 0) -> List[Tournament]:
        """List tournaments, newest first."""
        query = self.session.query(Tournament)
        if status:
            query = query.filter_by(status=status)
        query = query.order_by(Tournament.created_at.desc(), Tournament.id.desc())
        return query.offset(offset).limit(limit).all()

    def get_tournament_detail(self, tournament_id: int, requesting_user_id: int = None) -> Optional[Dict]:
        tournament = self.get_tournament(tournament_id)
        if not tournament:
            return None

        participants = (
            self.session.query(TournamentParticipant)
            .join(User, User.id == TournamentParticipant.user_id)
            .filter(TournamentParticipant.tournament_id == tournament_id)
            .order_by(TournamentParticipant.joined_at, TournamentParticipant.id)
            .all()
        )
        rounds = (
            self.session.query(TournamentRound)
            .filter_by(tournament_id=tournament_id)
            .order_by(TournamentRound.round_number)
            .all()
        )

        detail = tournament.to_dict()
        detail['participants'] = [p.to_dict() for p in participants]
        detail['rounds'] = [r.to_dict() for r in rounds]
        detail['isCreator'] = requesting_user_id is not None and tournament.created_by == requesting_user_id
        detail['isParticipant'] = any(p.user_id == requesting_user_id for p in participants)
        return detail

    # ==================== Lifecycle ====================

    def start_tournament(self, tournament_id: int, user_id: int) -> Dict:
        """
        Freeze the deck pool and pair round 1 in a single transaction.
        A failure at any step leaves the tournament open with no snapshot.
        """
        with UnitOfWork(self.session):
            tournament = self._owned_tournament(tournament_id, user_id, lock=True)
            if not TournamentStateMachine.from_state_string(tournament.status).can_perform('start'):
                raise InvalidState("Tournament is not open")
            player_count = (
                self.session.query(TournamentParticipant)
                .filter_by(tournament_id=tournament_id)
                .count()
            )
            if player_count < max(2, tournament.min_player_count or 2):
                raise InvalidState("Not enough players")

            engine = self.snapshots_for(tournament)
            snapshot = None
            if tournament.deck_mode == 'organizer':
                snapshot = engine.snapshot_assigned_decks(
                    tournament.id, tournament.collection_id, series_id=tournament.series_id
                )
            else:
                has_decks = (
                    self.session.query(TournamentParticipant)
                    .filter(TournamentParticipant.tournament_id == tournament_id,
                            TournamentParticipant.assigned_deck_id.isnot(None))
                    .count()
                )
                if has_decks:
                    snapshot = engine.snapshot_player_decks(tournament.id, series_id=tournament.series_id)

            if tournament.uses_custom_cards:
                self.custom_cards.lock_tournament_snapshots(tournament.id)

            round_one = self.match_engine.start_tournament(tournament.id)

        return {'roundId': round_one['roundId'], 'pairings': round_one['pairings'], 'snapshot': snapshot}

    def advance_round(self, tournament_id: int, user_id: int) -> Dict:
        self._owned_tournament(tournament_id, user_id)
        return self.match_engine.advance_round(tournament_id)

    def report_match_result(self, match_id: int, user_id: int, team1_score: int, team2_score: int) -> Dict:
        match = self.session.get(Match, match_id)
        if not match or match.tournament.created_by != user_id:
            raise NotFound("Match not found")
        return self.match_engine.report_match_result(match_id, team1_score, team2_score)
