from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin

db = SQLAlchemy()

# Editable card fields as exposed to callers, mapped to model attributes
CARD_FIELDS = (
    'name', 'type', 'humanreadablecardtype', 'frametype', 'description',
    'race', 'archetype', 'atk', 'def', 'level', 'attribute',
)
CARD_FIELD_ATTRIBUTES = {field: ('defense' if field == 'def' else field) for field in CARD_FIELDS}

DECK_SECTIONS = ('main', 'extra', 'side')
MAX_COPIES_PER_DECK = 3


def _iso(value):
    return value.isoformat() if value else None


class CardFieldsMixin:
    """Shared column set of custom cards and their snapshot copies."""
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(100), nullable=True)
    humanreadablecardtype = db.Column(db.String(100), nullable=True)
    frametype = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    race = db.Column(db.String(100), nullable=True)
    archetype = db.Column(db.String(100), nullable=True)
    atk = db.Column(db.Integer, nullable=True)
    defense = db.Column('def', db.Integer, nullable=True)
    level = db.Column(db.Integer, nullable=True)
    attribute = db.Column(db.String(20), nullable=True)

    def card_fields(self) -> dict:
        return {field: getattr(self, attr) for field, attr in CARD_FIELD_ATTRIBUTES.items()}

    def apply_card_fields(self, changes: dict):
        for field, value in changes.items():
            setattr(self, CARD_FIELD_ATTRIBUTES[field], value)


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), nullable=False)
    tag = db.Column(db.String(10), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('username', 'tag', name='unique_username_tag'),
    )

    def get_id(self):
        """Return the user ID for Flask-Login."""
        return str(self.id)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'tag': self.tag,
        }


class TournamentSeries(db.Model):
    __tablename__ = 'tournament_series'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='open')
    invite_code = db.Column(db.String(20), unique=True, nullable=False, index=True)

    min_player_count = db.Column(db.Integer, nullable=False, default=2)
    max_player_count = db.Column(db.Integer, nullable=True)
    player_count = db.Column(db.Integer, nullable=False, default=0)

    # Swiss settings; number_of_rounds NULL means ceil(log2(players))
    number_of_rounds = db.Column(db.Integer, nullable=True)
    current_round = db.Column(db.Integer, nullable=False, default=0)

    # Deck pool: 'player' decks are picked by participants, 'organizer'
    # decks come from the creator's collection_id
    deck_mode = db.Column(db.String(20), nullable=False, default='player')
    collection_id = db.Column(db.Integer, nullable=True)
    uses_custom_cards = db.Column(db.Boolean, nullable=False, default=False)
    series_id = db.Column(db.Integer, db.ForeignKey('tournament_series.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    participants = db.relationship('TournamentParticipant', back_populates='tournament',
                                   cascade='all, delete-orphan',
                                   order_by='TournamentParticipant.joined_at')
    rounds = db.relationship('TournamentRound', back_populates='tournament',
                             cascade='all, delete-orphan',
                             order_by='TournamentRound.round_number')
    matches = db.relationship('Match', back_populates='tournament', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint("status IN ('open', 'in_progress', 'completed')", name='tournament_status_valid'),
        db.CheckConstraint("deck_mode IN ('player', 'organizer')", name='tournament_deck_mode_valid'),
        db.CheckConstraint('min_player_count > 0', name='tournament_min_players_positive'),
        db.CheckConstraint('max_player_count IS NULL OR player_count <= max_player_count',
                           name='tournament_not_over_capacity'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'created_by': self.created_by,
            'status': self.status,
            'invite_code': self.invite_code,
            'min_player_count': self.min_player_count,
            'max_player_count': self.max_player_count,
            'player_count': self.player_count,
            'number_of_rounds': self.number_of_rounds,
            'current_round': self.current_round,
            'deck_mode': self.deck_mode,
            'collection_id': self.collection_id,
            'uses_custom_cards': self.uses_custom_cards,
            'series_id': self.series_id,
            'created_at': _iso(self.created_at),
        }


class TournamentParticipant(db.Model):
    __tablename__ = 'tournament_participants'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    # Live deck id in the tournament's store, frozen into a snapshot at start
    assigned_deck_id = db.Column(db.Integer, nullable=True)
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='participants')
    user = db.relationship('User')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'user_id', name='unique_participant_per_tournament'),
    )

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.user.username,
            'tag': self.user.tag,
            'assigned_deck_id': self.assigned_deck_id,
            'joined_at': _iso(self.joined_at),
        }


class TournamentRound(db.Model):
    __tablename__ = 'tournament_rounds'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='in_progress')
    started_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    tournament = db.relationship('Tournament', back_populates='rounds')
    matches = db.relationship('Match', back_populates='round', order_by='Match.id')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'round_number', name='unique_round_per_tournament'),
        db.CheckConstraint("status IN ('in_progress', 'completed')", name='round_status_valid'),
        db.CheckConstraint('round_number >= 1', name='round_number_positive'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'round_number': self.round_number,
            'status': self.status,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'matches': [m.to_dict() for m in self.matches],
        }


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    round_id = db.Column(db.Integer, db.ForeignKey('tournament_rounds.id'), nullable=False)
    match_type = db.Column(db.String(20), nullable=False, default='swiss')
    status = db.Column(db.String(20), nullable=False, default='pending')
    is_bye = db.Column(db.Boolean, nullable=False, default=False)
    team_1_score = db.Column(db.Integer, default=0)
    team_2_score = db.Column(db.Integer, default=0)
    winner_team_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    tournament = db.relationship('Tournament', back_populates='matches')
    round = db.relationship('TournamentRound', back_populates='matches')
    participants = db.relationship('MatchParticipant', back_populates='match',
                                   cascade='all, delete-orphan',
                                   order_by='MatchParticipant.team_id')

    __table_args__ = (
        db.CheckConstraint("status IN ('pending', 'in_progress', 'completed', 'cancelled')",
                           name='match_status_valid'),
        db.CheckConstraint('winner_team_id IS NULL OR winner_team_id IN (1, 2)',
                           name='match_winner_valid'),
        db.CheckConstraint("(status = 'completed') = (completed_at IS NOT NULL)",
                           name='match_completed_has_timestamp'),
    )

    def team(self, team_id: int):
        return [p for p in self.participants if p.team_id == team_id]

    def to_dict(self):
        return {
            'id': self.id,
            'status': self.status,
            'is_bye': self.is_bye,
            'team_1_score': self.team_1_score,
            'team_2_score': self.team_2_score,
            'winner_team_id': self.winner_team_id,
            'team1': [p.to_dict() for p in self.team(1)],
            'team2': [p.to_dict() for p in self.team(2)],
            'completed_at': _iso(self.completed_at),
        }


class MatchParticipant(db.Model):
    __tablename__ = 'match_participants'

    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('users.id'), primary_key=True)
    team_id = db.Column(db.Integer, nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)

    match = db.relationship('Match', back_populates='participants')
    player = db.relationship('User')

    __table_args__ = (
        db.CheckConstraint('team_id IN (1, 2)', name='match_participant_team_valid'),
    )

    def to_dict(self):
        return {
            'user_id': self.player_id,
            'username': self.player.username,
            'tag': self.player.tag,
            'score': self.score,
        }


# ==================== Official card catalog ====================

class Card(db.Model):
    __tablename__ = 'cards'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    type = db.Column(db.String(100), nullable=True)
    frametype = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    race = db.Column(db.String(100), nullable=True)
    archetype = db.Column(db.String(100), nullable=True)
    atk = db.Column(db.Integer, nullable=True)
    defense = db.Column('def', db.Integer, nullable=True)
    level = db.Column(db.Integer, nullable=True)
    attribute = db.Column(db.String(20), nullable=True)


# ==================== Standard collections ====================

class DeckCollection(db.Model):
    __tablename__ = 'deck_collections'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    decks = db.relationship('CollectionDeck', back_populates='collection',
                            cascade='all, delete-orphan', order_by='CollectionDeck.id')


class CollectionDeck(db.Model):
    __tablename__ = 'collection_decks'

    id = db.Column(db.Integer, primary_key=True)
    collection_id = db.Column(db.Integer, db.ForeignKey('deck_collections.id'), nullable=False, index=True)
    deck_name = db.Column(db.String(200), nullable=False)
    archetype = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    collection = db.relationship('DeckCollection', back_populates='decks')
    cards = db.relationship('CollectionDeckCard', back_populates='deck', cascade='all, delete-orphan')


class CollectionDeckCard(db.Model):
    __tablename__ = 'collection_deck_cards'

    deck_id = db.Column(db.Integer, db.ForeignKey('collection_decks.id'), primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey('cards.id'), primary_key=True)
    deck_section = db.Column(db.String(10), primary_key=True, default='main')
    quantity = db.Column(db.Integer, nullable=False)

    deck = db.relationship('CollectionDeck', back_populates='cards')

    __table_args__ = (
        db.CheckConstraint('quantity BETWEEN 1 AND 3', name='collection_card_quantity_valid'),
        db.CheckConstraint("deck_section IN ('main', 'extra', 'side')", name='collection_card_section_valid'),
    )


class CollectionSnapshot(db.Model):
    __tablename__ = 'collection_snapshots'

    id = db.Column(db.Integer, primary_key=True)
    source_collection_id = db.Column(db.Integer, db.ForeignKey('deck_collections.id'), nullable=True)
    parent_snapshot_id = db.Column(db.Integer, db.ForeignKey('collection_snapshots.id'), nullable=True)
    snapshot_type = db.Column(db.String(20), nullable=False)
    series_id = db.Column(db.Integer, db.ForeignKey('tournament_series.id'), nullable=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=True)
    collection_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    version_number = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    decks = db.relationship('SnapshotDeck', back_populates='snapshot',
                            cascade='all, delete-orphan', order_by='SnapshotDeck.id')

    __table_args__ = (
        db.UniqueConstraint('source_collection_id', 'version_number', name='unique_snapshot_version'),
        db.CheckConstraint("snapshot_type IN ('series', 'tournament')", name='snapshot_type_valid'),
        db.CheckConstraint("snapshot_type <> 'tournament' OR tournament_id IS NOT NULL",
                           name='tournament_snapshot_has_tournament'),
    )


class SnapshotDeck(db.Model):
    __tablename__ = 'snapshot_decks'

    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(db.Integer, db.ForeignKey('collection_snapshots.id'), nullable=False, index=True)
    source_deck_id = db.Column(db.Integer, nullable=True)
    parent_deck_id = db.Column(db.Integer, db.ForeignKey('snapshot_decks.id'), nullable=True)
    deck_name = db.Column(db.String(200), nullable=False)
    archetype = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    max_selections = db.Column(db.Integer, nullable=True)
    times_selected = db.Column(db.Integer, nullable=False, default=0)

    snapshot = db.relationship('CollectionSnapshot', back_populates='decks')
    cards = db.relationship('SnapshotDeckCard', back_populates='deck', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('max_selections IS NULL OR times_selected <= max_selections',
                           name='snapshot_deck_selection_cap'),
    )


class SnapshotDeckCard(db.Model):
    __tablename__ = 'snapshot_deck_cards'

    snapshot_deck_id = db.Column(db.Integer, db.ForeignKey('snapshot_decks.id'), primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey('cards.id'), primary_key=True)
    deck_section = db.Column(db.String(10), primary_key=True, default='main')
    quantity = db.Column(db.Integer, nullable=False)

    deck = db.relationship('SnapshotDeck', back_populates='cards')

    __table_args__ = (
        db.CheckConstraint('quantity BETWEEN 1 AND 3', name='snapshot_card_quantity_valid'),
        db.CheckConstraint("deck_section IN ('main', 'extra', 'side')", name='snapshot_card_section_valid'),
    )


class PlayerTournamentDeck(db.Model):
    """The frozen deck each player uses in a tournament."""
    __tablename__ = 'player_tournament_decks'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    snapshot_deck_id = db.Column(db.Integer, db.ForeignKey('snapshot_decks.id'), nullable=True)
    custom_snapshot_deck_id = db.Column(db.Integer, db.ForeignKey('custom_snapshot_decks.id'), nullable=True)
    selected_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'user_id', name='unique_player_deck_per_tournament'),
    )

    def to_dict(self):
        return {
            'tournament_id': self.tournament_id,
            'user_id': self.user_id,
            'snapshot_deck_id': self.snapshot_deck_id,
            'custom_snapshot_deck_id': self.custom_snapshot_deck_id,
            'selected_at': _iso(self.selected_at),
        }


# ==================== Custom cards and collections ====================

class CustomCard(CardFieldsMixin, db.Model):
    __tablename__ = 'custom_cards'

    id = db.Column(db.Integer, primary_key=True)
    # NULL together with deleted_at marks a soft delete
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    origin_card_id = db.Column(db.Integer, db.ForeignKey('cards.id'), nullable=True)
    origin_custom_card_id = db.Column(db.Integer, db.ForeignKey('custom_cards.id'), nullable=True)
    origin_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.CheckConstraint('version >= 1', name='custom_card_version_positive'),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self):
        data = {
            'id': self.id,
            'created_by': self.created_by,
            'origin_card_id': self.origin_card_id,
            'origin_custom_card_id': self.origin_custom_card_id,
            'origin_user_id': self.origin_user_id,
            'version': self.version,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'deleted_at': _iso(self.deleted_at),
        }
        data.update(self.card_fields())
        return data


class CustomDeckCollection(db.Model):
    __tablename__ = 'custom_deck_collections'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    decks = db.relationship('CustomCollectionDeck', back_populates='collection',
                            cascade='all, delete-orphan', order_by='CustomCollectionDeck.id')


class CustomCollectionDeck(db.Model):
    __tablename__ = 'custom_collection_decks'

    id = db.Column(db.Integer, primary_key=True)
    collection_id = db.Column(db.Integer, db.ForeignKey('custom_deck_collections.id'), nullable=False, index=True)
    deck_name = db.Column(db.String(200), nullable=False)
    archetype = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    collection = db.relationship('CustomDeckCollection', back_populates='decks')
    cards = db.relationship('CustomCollectionDeckCard', back_populates='deck',
                            cascade='all, delete-orphan', order_by='CustomCollectionDeckCard.id')


class CustomCollectionDeckCard(db.Model):
    __tablename__ = 'custom_collection_deck_cards'

    id = db.Column(db.Integer, primary_key=True)
    deck_id = db.Column(db.Integer, db.ForeignKey('custom_collection_decks.id'), nullable=False, index=True)
    card_id = db.Column(db.Integer, db.ForeignKey('cards.id'), nullable=True)
    custom_card_id = db.Column(db.Integer, db.ForeignKey('custom_cards.id'), nullable=True, index=True)
    deck_section = db.Column(db.String(10), nullable=False, default='main')
    quantity = db.Column(db.Integer, nullable=False)

    deck = db.relationship('CustomCollectionDeck', back_populates='cards')
    custom_card = db.relationship('CustomCard')

    __table_args__ = (
        db.CheckConstraint('quantity BETWEEN 1 AND 3', name='custom_card_quantity_valid'),
        db.CheckConstraint("deck_section IN ('main', 'extra', 'side')", name='custom_card_section_valid'),
        db.CheckConstraint('(card_id IS NULL) <> (custom_card_id IS NULL)', name='custom_deck_card_one_source'),
    )


class CustomCollectionSnapshot(db.Model):
    __tablename__ = 'custom_collection_snapshots'

    id = db.Column(db.Integer, primary_key=True)
    source_collection_id = db.Column(db.Integer, db.ForeignKey('custom_deck_collections.id'), nullable=True)
    parent_snapshot_id = db.Column(db.Integer, db.ForeignKey('custom_collection_snapshots.id'), nullable=True)
    snapshot_type = db.Column(db.String(20), nullable=False)
    series_id = db.Column(db.Integer, db.ForeignKey('tournament_series.id'), nullable=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=True)
    collection_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    version_number = db.Column(db.Integer, nullable=False, default=1)
    # One-way latch: once True, custom card edits no longer reach this snapshot
    sync_locked = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    decks = db.relationship('CustomSnapshotDeck', back_populates='snapshot',
                            cascade='all, delete-orphan', order_by='CustomSnapshotDeck.id')
    custom_cards = db.relationship('SnapshotCustomCard', back_populates='snapshot',
                                   cascade='all, delete-orphan', order_by='SnapshotCustomCard.id')

    __table_args__ = (
        db.UniqueConstraint('source_collection_id', 'version_number', name='unique_custom_snapshot_version'),
        db.CheckConstraint("snapshot_type IN ('series', 'tournament')", name='custom_snapshot_type_valid'),
        db.CheckConstraint("snapshot_type <> 'tournament' OR tournament_id IS NOT NULL",
                           name='custom_tournament_snapshot_has_tournament'),
    )


class CustomSnapshotDeck(db.Model):
    __tablename__ = 'custom_snapshot_decks'

    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(db.Integer, db.ForeignKey('custom_collection_snapshots.id'), nullable=False, index=True)
    source_deck_id = db.Column(db.Integer, nullable=True)
    parent_deck_id = db.Column(db.Integer, db.ForeignKey('custom_snapshot_decks.id'), nullable=True)
    deck_name = db.Column(db.String(200), nullable=False)
    archetype = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    max_selections = db.Column(db.Integer, nullable=True)
    times_selected = db.Column(db.Integer, nullable=False, default=0)

    snapshot = db.relationship('CustomCollectionSnapshot', back_populates='decks')
    cards = db.relationship('CustomSnapshotDeckCard', back_populates='deck',
                            cascade='all, delete-orphan', order_by='CustomSnapshotDeckCard.id')

    __table_args__ = (
        db.CheckConstraint('max_selections IS NULL OR times_selected <= max_selections',
                           name='custom_snapshot_deck_selection_cap'),
    )


class SnapshotCustomCard(CardFieldsMixin, db.Model):
    __tablename__ = 'snapshot_custom_cards'

    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(db.Integer, db.ForeignKey('custom_collection_snapshots.id'), nullable=False, index=True)
    source_custom_card_id = db.Column(db.Integer, db.ForeignKey('custom_cards.id'), nullable=True, index=True)
    version_at_snapshot = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    snapshot = db.relationship('CustomCollectionSnapshot', back_populates='custom_cards')

    def to_dict(self):
        data = {
            'id': self.id,
            'snapshot_id': self.snapshot_id,
            'source_custom_card_id': self.source_custom_card_id,
            'version_at_snapshot': self.version_at_snapshot,
            'created_at': _iso(self.created_at),
        }
        data.update(self.card_fields())
        return data


class CustomSnapshotDeckCard(db.Model):
    __tablename__ = 'custom_snapshot_deck_cards'

    id = db.Column(db.Integer, primary_key=True)
    deck_id = db.Column(db.Integer, db.ForeignKey('custom_snapshot_decks.id'), nullable=False, index=True)
    card_id = db.Column(db.Integer, db.ForeignKey('cards.id'), nullable=True)
    snapshot_custom_card_id = db.Column(db.Integer, db.ForeignKey('snapshot_custom_cards.id'), nullable=True)
    deck_section = db.Column(db.String(10), nullable=False, default='main')
    quantity = db.Column(db.Integer, nullable=False)

    deck = db.relationship('CustomSnapshotDeck', back_populates='cards')
    snapshot_custom_card = db.relationship('SnapshotCustomCard')

    __table_args__ = (
        db.CheckConstraint('quantity BETWEEN 1 AND 3', name='custom_snapshot_card_quantity_valid'),
        db.CheckConstraint("deck_section IN ('main', 'extra', 'side')",
                           name='custom_snapshot_card_section_valid'),
    )
