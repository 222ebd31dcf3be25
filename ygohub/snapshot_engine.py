import logging
from typing import Dict, Optional

from .collection_stores import CollectionStore, SnapshotCopy
from .errors import NotFound, InvalidState, ConflictingWrite, IntegrityViolation
from .models import Tournament, TournamentParticipant, PlayerTournamentDeck
from .unit_of_work import UnitOfWork
from shared.state_machine import TournamentStateMachine
from shared.events import snapshot_created_event
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)

SOURCE_USER_COLLECTION = 'user_collection'
SOURCE_SERIES_SNAPSHOT = 'series_snapshot'
SOURCE_PREVIOUS_TOURNAMENT = 'previous_tournament'

PLAYER_DECKS_NAME = 'Player Decks'


class SnapshotEngine:
    """
    Freezes live deck collections into versioned snapshots.

    Every public operation runs in one unit of work: the snapshot row, its
    decks and all card rows are written together or not at all. The store
    decides which table family (standard or custom) is used.
    """

    def __init__(self, session, store: CollectionStore, events: EventPublisher = None):
        self.session = session
        self.store = store
        self.events = events or EventPublisher()

    def _tournament(self, tournament_id: int) -> Tournament:
        tournament = self.session.get(Tournament, tournament_id)
        if not tournament:
            raise NotFound("Tournament not found")
        return tournament

    def _participant(self, tournament_id: int, user_id: int) -> TournamentParticipant:
        participant = (
            self.session.query(TournamentParticipant)
            .filter_by(tournament_id=tournament_id, user_id=user_id)
            .first()
        )
        if not participant:
            raise NotFound("Not a participant in this tournament")
        return participant

    def _result(self, snapshot, copy: SnapshotCopy) -> Dict:
        result = {
            'snapshotId': snapshot.id,
            'version': snapshot.version_number,
            'deckCount': copy.deck_count,
        }
        if self.store.custom:
            result['customCardsSnapshotted'] = copy.custom_cards_copied
        return result

    def _freeze(self, uow: UnitOfWork, collection, snapshot_type: str, tournament_id: int = None,
                series_id: int = None, parent=None):
        snapshot = self.store.create_snapshot(
            snapshot_type=snapshot_type,
            collection_name=collection.name,
            description=collection.description,
            source_collection_id=collection.id,
            parent_snapshot_id=parent.id if parent is not None else None,
            series_id=series_id,
            tournament_id=tournament_id,
        )
        copy = self.store.copy_decks(snapshot, list(collection.decks), parent_snapshot=parent)
        self.events.publish_after_commit(uow, snapshot_created_event(
            tournament_id, snapshot.id, snapshot.version_number, self.store.custom
        ))
        logger.info(f"Created {snapshot_type} snapshot {snapshot.id} v{snapshot.version_number} "
                    f"of collection {collection.id} with {copy.deck_count} decks")
        return snapshot, copy

    # ==================== Snapshot creation ====================

    def create_collection_snapshot(self, tournament_id: int, collection_id: int,
                                   series_id: int = None) -> Dict:
        """Freeze a whole collection as the tournament's deck pool."""
        with UnitOfWork(self.session) as uow:
            self._tournament(tournament_id)
            collection = self.store.get_collection(collection_id)
            snapshot, copy = self._freeze(uow, collection, 'tournament',
                                          tournament_id=tournament_id, series_id=series_id)
            return self._result(snapshot, copy)

    def create_series_snapshot(self, series_id: int, collection_id: int, user_id: int = None) -> Dict:
        with UnitOfWork(self.session) as uow:
            collection = self.store.get_collection(collection_id, user_id)
            snapshot, _ = self._freeze(uow, collection, 'series', series_id=series_id)
            return self.store.serialize_snapshot(snapshot)

    def create_tournament_snapshot(self, tournament_id: int, source_type: str, source_id: int,
                                   series_id: int = None, user_id: int = None) -> Dict:
        """
        Tournament snapshot from a live collection or chained from an
        earlier series/tournament snapshot of the same collection.
        """
        with UnitOfWork(self.session) as uow:
            self._tournament(tournament_id)
            parent = None

            if source_type == SOURCE_USER_COLLECTION:
                collection = self.store.get_collection(source_id, user_id)
            elif source_type in (SOURCE_SERIES_SNAPSHOT, SOURCE_PREVIOUS_TOURNAMENT):
                parent = self.store.get_snapshot(source_id)
                if parent is None:
                    label = 'Series' if source_type == SOURCE_SERIES_SNAPSHOT else 'Tournament'
                    raise NotFound(f"{label} snapshot not found")
                if parent.source_collection_id is None:
                    raise InvalidState("Snapshot has no source collection")
                collection = self.store.get_collection(parent.source_collection_id)
            else:
                raise IntegrityViolation("Invalid sourceType")

            snapshot, _ = self._freeze(uow, collection, 'tournament', tournament_id=tournament_id,
                                       series_id=series_id, parent=parent)
            return self.store.serialize_snapshot(snapshot)

    def snapshot_assigned_decks(self, tournament_id: int, collection_id: int,
                                series_id: int = None) -> Dict:
        """
        Freeze the collection, then point every participant with an
        assigned live deck at that deck's snapshot copy.
        """
        with UnitOfWork(self.session) as uow:
            self._tournament(tournament_id)
            collection = self.store.get_collection(collection_id)
            snapshot, copy = self._freeze(uow, collection, 'tournament',
                                          tournament_id=tournament_id, series_id=series_id)

            participants = (
                self.session.query(TournamentParticipant)
                .filter(TournamentParticipant.tournament_id == tournament_id,
                        TournamentParticipant.assigned_deck_id.isnot(None))
                .all()
            )
            for participant in participants:
                snapshot_deck = copy.deck_map.get(participant.assigned_deck_id)
                if snapshot_deck is None:
                    logger.warning(f"Deck {participant.assigned_deck_id} of user {participant.user_id} "
                                   f"is not in snapshot {snapshot.id}, skipping")
                    continue
                self.store.record_player_deck(tournament_id, participant.user_id, snapshot_deck)
                self.store.increment_times_selected(snapshot_deck)

            return self._result(snapshot, copy)

    def snapshot_player_decks(self, tournament_id: int, series_id: int = None) -> Dict:
        """Freeze each participant's own selected deck into one 'Player Decks' snapshot."""
        with UnitOfWork(self.session) as uow:
            self._tournament(tournament_id)
            participants = (
                self.session.query(TournamentParticipant)
                .filter(TournamentParticipant.tournament_id == tournament_id,
                        TournamentParticipant.assigned_deck_id.isnot(None))
                .order_by(TournamentParticipant.id)
                .all()
            )
            decks = []
            for participant in participants:
                deck = self.store.get_deck(participant.assigned_deck_id)
                if deck is None:
                    logger.warning(f"Selected deck {participant.assigned_deck_id} of user "
                                   f"{participant.user_id} no longer exists, skipping")
                    continue
                decks.append((participant, deck))

            if not decks:
                return {'snapshotId': None, 'deckCount': 0}

            snapshot = self.store.create_snapshot(
                snapshot_type='tournament',
                collection_name=PLAYER_DECKS_NAME,
                series_id=series_id,
                tournament_id=tournament_id,
            )
            copy = self.store.copy_decks(snapshot, [deck for _, deck in decks])
            for participant, deck in decks:
                snapshot_deck = copy.deck_map[deck.id]
                self.store.record_player_deck(tournament_id, participant.user_id, snapshot_deck)
                self.store.increment_times_selected(snapshot_deck)

            self.events.publish_after_commit(uow, snapshot_created_event(
                tournament_id, snapshot.id, snapshot.version_number, self.store.custom
            ))
            logger.info(f"Froze {copy.deck_count} player decks for tournament {tournament_id}")
            return self._result(snapshot, copy)

    # ==================== Deck selection ====================

    def _require_open(self, tournament: Tournament, deck_mode: str, action: str):
        if not TournamentStateMachine.from_state_string(tournament.status).can_perform(action):
            raise InvalidState("Tournament has already started")
        if tournament.deck_mode != deck_mode:
            raise InvalidState(f"Tournament does not use {deck_mode} deck selection")

    def select_player_deck(self, tournament_id: int, user_id: int, deck_id: int) -> Dict:
        """Player mode: remember the live deck a participant will play."""
        with UnitOfWork(self.session):
            tournament = self._tournament(tournament_id)
            deck = self.store.get_deck(deck_id)
            if deck is None:
                raise NotFound("Deck not found")
            if deck.collection.user_id != user_id:
                raise NotFound("Deck does not belong to user")
            participant = self._participant(tournament_id, user_id)
            self._require_open(tournament, 'player', 'select_deck')

            participant.assigned_deck_id = deck.id
            return {'deckId': deck.id, 'deckName': deck.deck_name}

    def assign_deck(self, tournament_id: int, organizer_id: int, user_id: int, deck_id: int) -> Dict:
        """Organizer mode: the creator hands a collection deck to a participant."""
        with UnitOfWork(self.session):
            tournament = self._tournament(tournament_id)
            if tournament.created_by != organizer_id:
                raise NotFound("Tournament not found")
            deck = self.store.get_deck(deck_id)
            if deck is None or deck.collection_id != tournament.collection_id:
                raise NotFound("Deck not found in tournament collection")
            participant = self._participant(tournament_id, user_id)
            self._require_open(tournament, 'organizer', 'assign_deck')

            participant.assigned_deck_id = deck.id
            return {'userId': user_id, 'deckId': deck.id, 'deckName': deck.deck_name}

    def select_deck_for_tournament(self, tournament_id: int, user_id: int, snapshot_deck_id: int) -> Dict:
        """Pick a deck from the tournament's frozen pool, honouring max_selections."""
        with UnitOfWork(self.session):
            self._tournament(tournament_id)
            pool = self.store.latest_tournament_snapshot(tournament_id)
            if pool is None:
                raise NotFound("Tournament has no deck pool")

            snapshot_deck = self.store.get_snapshot_deck(snapshot_deck_id, lock=True)
            if snapshot_deck is None or snapshot_deck.snapshot_id != pool.id:
                raise NotFound("Deck not available in this tournament")
            self._participant(tournament_id, user_id)

            if (snapshot_deck.max_selections is not None
                    and snapshot_deck.times_selected >= snapshot_deck.max_selections):
                raise ConflictingWrite("This deck has reached its selection limit")

            existing = (
                self.session.query(PlayerTournamentDeck)
                .filter_by(tournament_id=tournament_id, user_id=user_id)
                .first()
            )
            if existing is not None:
                raise ConflictingWrite("Deck already selected for this tournament")

            record = self.store.record_player_deck(tournament_id, user_id, snapshot_deck)
            self.store.increment_times_selected(snapshot_deck)
            return record.to_dict()

    def set_max_selections(self, snapshot_deck_id: int, user_id: int, max_selections: Optional[int]) -> Dict:
        """Cap how many players may pick a pool deck. Creator only."""
        with UnitOfWork(self.session):
            snapshot_deck = self.store.get_snapshot_deck(snapshot_deck_id, lock=True)
            tournament = None
            if snapshot_deck is not None and snapshot_deck.snapshot.tournament_id is not None:
                tournament = self.session.get(Tournament, snapshot_deck.snapshot.tournament_id)
            if tournament is None or tournament.created_by != user_id:
                raise NotFound("Snapshot deck not found")
            if max_selections is not None and max_selections < snapshot_deck.times_selected:
                raise IntegrityViolation("max_selections cannot be below times_selected")
            snapshot_deck.max_selections = max_selections
            return {'id': snapshot_deck.id, 'max_selections': max_selections,
                    'times_selected': snapshot_deck.times_selected}

    # ==================== Reads ====================

    def get_snapshot(self, snapshot_id: int) -> Optional[Dict]:
        snapshot = self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            return None
        return self.store.serialize_snapshot(snapshot)

    def get_tournament_snapshot(self, tournament_id: int) -> Optional[Dict]:
        snapshot = self.store.latest_tournament_snapshot(tournament_id)
        if snapshot is None:
            return None
        return self.store.serialize_snapshot(snapshot)
