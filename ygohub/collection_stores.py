"""
Storage for deck collections and their snapshots.

Two stores share one interface: StandardCollectionStore works on decks of
official cards, CustomCollectionStore additionally carries user-authored
custom cards and copies them into each snapshot. Callers pick a store once
(see ``store_for``) and the snapshot engine never needs to know which one
it holds.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .errors import NotFound, ConflictingWrite, IntegrityViolation
from .models import (
    DECK_SECTIONS, MAX_COPIES_PER_DECK,
    Card, CustomCard, PlayerTournamentDeck,
    DeckCollection, CollectionDeck, CollectionDeckCard,
    CollectionSnapshot, SnapshotDeck, SnapshotDeckCard,
    CustomDeckCollection, CustomCollectionDeck, CustomCollectionDeckCard,
    CustomCollectionSnapshot, CustomSnapshotDeck, CustomSnapshotDeckCard, SnapshotCustomCard,
)

logger = logging.getLogger(__name__)


@dataclass
class SnapshotCopy:
    """Outcome of copying live decks into a snapshot."""
    deck_map: Dict[int, object] = field(default_factory=dict)  # live deck id -> snapshot deck
    card_cache: Dict[int, SnapshotCustomCard] = field(default_factory=dict)  # custom card id -> copy
    custom_cards_copied: int = 0

    @property
    def deck_count(self) -> int:
        return len(self.deck_map)


class CollectionStore(ABC):
    custom = False
    collection_model = None
    deck_model = None
    deck_card_model = None
    snapshot_model = None
    snapshot_deck_model = None

    def __init__(self, session):
        self.session = session

    # ==================== Live collections ====================

    def create_collection(self, user_id: int, name: str, description: str = None):
        collection = self.collection_model(user_id=user_id, name=name, description=description)
        self.session.add(collection)
        self.session.flush()
        return collection

    def get_collection(self, collection_id: int, user_id: int = None):
        """Collection by id; NotFound when missing or owned by someone else."""
        collection = self.session.get(self.collection_model, collection_id)
        if not collection or (user_id is not None and collection.user_id != user_id):
            raise NotFound("Collection not found")
        return collection

    def add_deck(self, collection_id: int, user_id: int, deck_name: str,
                 archetype: str = None, description: str = None):
        collection = self.get_collection(collection_id, user_id)
        deck = self.deck_model(
            collection_id=collection.id,
            deck_name=deck_name,
            archetype=archetype,
            description=description,
        )
        self.session.add(deck)
        collection.updated_at = datetime.utcnow()
        self.session.flush()
        return deck

    def get_deck(self, deck_id: int):
        return self.session.get(self.deck_model, deck_id)

    def get_owned_deck(self, deck_id: int, user_id: int):
        deck = self.get_deck(deck_id)
        if not deck or deck.collection.user_id != user_id:
            raise NotFound("Deck not found")
        return deck

    def _check_quantity(self, deck, quantity: int, deck_section: str, same_card):
        if deck_section not in DECK_SECTIONS:
            raise IntegrityViolation(f"Invalid deck section '{deck_section}'")
        if quantity < 1 or quantity > MAX_COPIES_PER_DECK:
            raise IntegrityViolation(f"Quantity must be between 1 and {MAX_COPIES_PER_DECK}")
        other_sections = sum(c.quantity for c in deck.cards if same_card(c) and c.deck_section != deck_section)
        if other_sections + quantity > MAX_COPIES_PER_DECK:
            raise IntegrityViolation(f"A deck may hold at most {MAX_COPIES_PER_DECK} copies of a card")

    @abstractmethod
    def add_card_to_deck(self, deck_id: int, user_id: int, quantity: int, deck_section: str = 'main',
                         card_id: int = None, custom_card_id: int = None):
        """Insert or update one card row in a live deck."""

    @abstractmethod
    def remove_card_from_deck(self, deck_id: int, user_id: int, deck_section: str = 'main',
                              card_id: int = None, custom_card_id: int = None):
        """Remove one card row from a live deck."""

    # ==================== Snapshots ====================

    def next_version_number(self, source_collection_id: Optional[int]) -> int:
        query = self.session.query(func.coalesce(func.max(self.snapshot_model.version_number), 0))
        if source_collection_id is None:
            query = query.filter(self.snapshot_model.source_collection_id.is_(None))
        else:
            query = query.filter(self.snapshot_model.source_collection_id == source_collection_id)
        return query.scalar() + 1

    def create_snapshot(self, snapshot_type: str, collection_name: str, source_collection_id: int = None,
                        parent_snapshot_id: int = None, series_id: int = None, tournament_id: int = None,
                        description: str = None):
        version = self.next_version_number(source_collection_id)
        snapshot = self.snapshot_model(
            source_collection_id=source_collection_id,
            parent_snapshot_id=parent_snapshot_id,
            snapshot_type=snapshot_type,
            series_id=series_id,
            tournament_id=tournament_id,
            collection_name=collection_name,
            description=description,
            version_number=version,
        )
        self.session.add(snapshot)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise ConflictingWrite(
                f"Snapshot version {version} already exists for collection {source_collection_id}"
            ) from e
        return snapshot

    def copy_decks(self, snapshot, decks: List, parent_snapshot=None) -> SnapshotCopy:
        """Deep-copy live decks and their cards into snapshot."""
        parent_decks = {}
        if parent_snapshot is not None:
            parent_decks = {d.source_deck_id: d.id for d in parent_snapshot.decks if d.source_deck_id}

        copy = SnapshotCopy()
        for deck in decks:
            snapshot_deck = self.snapshot_deck_model(
                source_deck_id=deck.id,
                parent_deck_id=parent_decks.get(deck.id),
                deck_name=deck.deck_name,
                archetype=deck.archetype,
                description=deck.description,
            )
            snapshot.decks.append(snapshot_deck)
            self._copy_deck_cards(snapshot, snapshot_deck, deck, copy)
            copy.deck_map[deck.id] = snapshot_deck

        self.session.flush()
        logger.debug(f"Copied {copy.deck_count} decks into snapshot {snapshot.id}")
        return copy

    @abstractmethod
    def _copy_deck_cards(self, snapshot, snapshot_deck, deck, copy: SnapshotCopy):
        """Copy the card rows of one live deck."""

    def get_snapshot(self, snapshot_id: int, lock: bool = False):
        query = self.session.query(self.snapshot_model).filter(self.snapshot_model.id == snapshot_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def get_snapshot_deck(self, snapshot_deck_id: int, lock: bool = False):
        query = self.session.query(self.snapshot_deck_model).filter(self.snapshot_deck_model.id == snapshot_deck_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def tournament_snapshots(self, tournament_id: int) -> List:
        return (
            self.session.query(self.snapshot_model)
            .filter_by(tournament_id=tournament_id, snapshot_type='tournament')
            .order_by(self.snapshot_model.id)
            .all()
        )

    def latest_tournament_snapshot(self, tournament_id: int):
        return (
            self.session.query(self.snapshot_model)
            .filter_by(tournament_id=tournament_id, snapshot_type='tournament')
            .order_by(self.snapshot_model.id.desc())
            .first()
        )

    def increment_times_selected(self, snapshot_deck):
        """Atomic +1 on times_selected; ConflictingWrite when the cap is hit."""
        snapshot_deck.times_selected = self.snapshot_deck_model.times_selected + 1
        try:
            self.session.flush()
        except IntegrityError as e:
            raise ConflictingWrite("This deck has reached its selection limit") from e

    @abstractmethod
    def _player_deck_columns(self, snapshot_deck) -> dict:
        """PlayerTournamentDeck column values pointing at snapshot_deck."""

    def record_player_deck(self, tournament_id: int, user_id: int, snapshot_deck) -> PlayerTournamentDeck:
        columns = self._player_deck_columns(snapshot_deck)
        record = (
            self.session.query(PlayerTournamentDeck)
            .filter_by(tournament_id=tournament_id, user_id=user_id)
            .with_for_update()
            .first()
        )
        if record is None:
            record = PlayerTournamentDeck(tournament_id=tournament_id, user_id=user_id)
            self.session.add(record)
        for name, value in columns.items():
            setattr(record, name, value)
        record.selected_at = datetime.utcnow()
        self.session.flush()
        return record

    def _snapshot_deck_dict(self, deck) -> dict:
        return {
            'id': deck.id,
            'source_deck_id': deck.source_deck_id,
            'parent_deck_id': deck.parent_deck_id,
            'deck_name': deck.deck_name,
            'archetype': deck.archetype,
            'description': deck.description,
            'max_selections': deck.max_selections,
            'times_selected': deck.times_selected,
            'cards': [self._snapshot_card_dict(c) for c in deck.cards],
        }

    @abstractmethod
    def _snapshot_card_dict(self, card) -> dict:
        """Serialize one snapshot deck card row."""

    def serialize_snapshot(self, snapshot) -> dict:
        return {
            'id': snapshot.id,
            'source_collection_id': snapshot.source_collection_id,
            'parent_snapshot_id': snapshot.parent_snapshot_id,
            'snapshot_type': snapshot.snapshot_type,
            'series_id': snapshot.series_id,
            'tournament_id': snapshot.tournament_id,
            'collection_name': snapshot.collection_name,
            'description': snapshot.description,
            'version_number': snapshot.version_number,
            'created_at': snapshot.created_at.isoformat() if snapshot.created_at else None,
            'custom': self.custom,
            'decks': [self._snapshot_deck_dict(d) for d in snapshot.decks],
        }


class StandardCollectionStore(CollectionStore):
    """Collections built from the official card catalog."""
    collection_model = DeckCollection
    deck_model = CollectionDeck
    deck_card_model = CollectionDeckCard
    snapshot_model = CollectionSnapshot
    snapshot_deck_model = SnapshotDeck

    def add_card_to_deck(self, deck_id: int, user_id: int, quantity: int, deck_section: str = 'main',
                         card_id: int = None, custom_card_id: int = None):
        if custom_card_id is not None:
            raise IntegrityViolation("Custom cards require a custom collection")
        deck = self.get_owned_deck(deck_id, user_id)
        if card_id is None or self.session.get(Card, card_id) is None:
            raise NotFound("Card not found")

        self._check_quantity(deck, quantity, deck_section, lambda c: c.card_id == card_id)

        row = next((c for c in deck.cards if c.card_id == card_id and c.deck_section == deck_section), None)
        if row is None:
            row = CollectionDeckCard(card_id=card_id, deck_section=deck_section, quantity=quantity)
            deck.cards.append(row)
        else:
            row.quantity = quantity
        deck.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def remove_card_from_deck(self, deck_id: int, user_id: int, deck_section: str = 'main',
                              card_id: int = None, custom_card_id: int = None):
        deck = self.get_owned_deck(deck_id, user_id)
        row = next((c for c in deck.cards if c.card_id == card_id and c.deck_section == deck_section), None)
        if row is None:
            raise NotFound("Card not found in deck")
        deck.cards.remove(row)
        deck.updated_at = datetime.utcnow()
        self.session.flush()

    def _copy_deck_cards(self, snapshot, snapshot_deck, deck, copy: SnapshotCopy):
        for card in deck.cards:
            snapshot_deck.cards.append(SnapshotDeckCard(
                card_id=card.card_id,
                quantity=card.quantity,
                deck_section=card.deck_section,
            ))

    def _player_deck_columns(self, snapshot_deck) -> dict:
        return {'snapshot_deck_id': snapshot_deck.id, 'custom_snapshot_deck_id': None}

    def _snapshot_card_dict(self, card) -> dict:
        return {
            'card_id': card.card_id,
            'quantity': card.quantity,
            'deck_section': card.deck_section,
        }


class CustomCollectionStore(CollectionStore):
    """Collections that may hold user-authored custom cards."""
    custom = True
    collection_model = CustomDeckCollection
    deck_model = CustomCollectionDeck
    deck_card_model = CustomCollectionDeckCard
    snapshot_model = CustomCollectionSnapshot
    snapshot_deck_model = CustomSnapshotDeck

    @staticmethod
    def _matches(row, card_id, custom_card_id) -> bool:
        return row.card_id == card_id and row.custom_card_id == custom_card_id

    def add_card_to_deck(self, deck_id: int, user_id: int, quantity: int, deck_section: str = 'main',
                         card_id: int = None, custom_card_id: int = None):
        if (card_id is None) == (custom_card_id is None):
            raise IntegrityViolation("Exactly one of card_id or custom_card_id is required")
        deck = self.get_owned_deck(deck_id, user_id)

        if card_id is not None and self.session.get(Card, card_id) is None:
            raise NotFound("Card not found")
        if custom_card_id is not None:
            custom_card = self.session.get(CustomCard, custom_card_id)
            if custom_card is None or custom_card.is_deleted:
                raise NotFound("Custom card not found")

        self._check_quantity(deck, quantity, deck_section,
                             lambda c: self._matches(c, card_id, custom_card_id))

        row = next((c for c in deck.cards
                    if self._matches(c, card_id, custom_card_id) and c.deck_section == deck_section), None)
        if row is None:
            row = CustomCollectionDeckCard(
                card_id=card_id,
                custom_card_id=custom_card_id,
                deck_section=deck_section,
                quantity=quantity,
            )
            deck.cards.append(row)
        else:
            row.quantity = quantity
        deck.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def remove_card_from_deck(self, deck_id: int, user_id: int, deck_section: str = 'main',
                              card_id: int = None, custom_card_id: int = None):
        deck = self.get_owned_deck(deck_id, user_id)
        row = next((c for c in deck.cards
                    if self._matches(c, card_id, custom_card_id) and c.deck_section == deck_section), None)
        if row is None:
            raise NotFound("Card not found in deck")
        deck.cards.remove(row)
        deck.updated_at = datetime.utcnow()
        self.session.flush()

    def _snapshot_custom_card(self, snapshot, custom_card_id: int, copy: SnapshotCopy) -> Optional[SnapshotCustomCard]:
        if custom_card_id in copy.card_cache:
            return copy.card_cache[custom_card_id]

        # Shared lock: a concurrent delete waits until this snapshot commits
        source = (
            self.session.query(CustomCard)
            .filter(CustomCard.id == custom_card_id, CustomCard.deleted_at.is_(None))
            .with_for_update(read=True)
            .first()
        )
        if source is None:
            return None

        card_copy = SnapshotCustomCard(
            source_custom_card_id=source.id,
            version_at_snapshot=source.version,
        )
        card_copy.apply_card_fields(source.card_fields())
        snapshot.custom_cards.append(card_copy)
        copy.card_cache[custom_card_id] = card_copy
        copy.custom_cards_copied += 1
        return card_copy

    def _copy_deck_cards(self, snapshot, snapshot_deck, deck, copy: SnapshotCopy):
        for card in deck.cards:
            card_copy = None
            if card.custom_card_id is not None:
                card_copy = self._snapshot_custom_card(snapshot, card.custom_card_id, copy)
                if card_copy is None:
                    logger.debug(f"Skipping deleted custom card {card.custom_card_id} in deck {deck.id}")
                    continue
            snapshot_deck.cards.append(CustomSnapshotDeckCard(
                card_id=card.card_id,
                snapshot_custom_card=card_copy,
                quantity=card.quantity,
                deck_section=card.deck_section,
            ))

    def _player_deck_columns(self, snapshot_deck) -> dict:
        return {'snapshot_deck_id': None, 'custom_snapshot_deck_id': snapshot_deck.id}

    def _snapshot_card_dict(self, card) -> dict:
        return {
            'card_id': card.card_id,
            'snapshot_custom_card_id': card.snapshot_custom_card_id,
            'quantity': card.quantity,
            'deck_section': card.deck_section,
        }

    def serialize_snapshot(self, snapshot) -> dict:
        data = super().serialize_snapshot(snapshot)
        data['sync_locked'] = snapshot.sync_locked
        data['custom_cards'] = [c.to_dict() for c in snapshot.custom_cards]
        return data


def store_for(session, uses_custom_cards: bool) -> CollectionStore:
    """Pick the store matching a tournament's card pool."""
    if uses_custom_cards:
        return CustomCollectionStore(session)
    return StandardCollectionStore(session)
