"""
Pytest configuration and fixtures for YGOHub tests.

Fixtures hand out primary keys rather than ORM objects: every test opens
its own app context, so it works with its own session.
"""
import os
import sys
import random
import itertools
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

from ygohub.app import create_app
from ygohub.models import (
    db, User, Card, CustomCard, Tournament, TournamentParticipant,
    DeckCollection, CollectionDeck, CollectionDeckCard,
    CustomDeckCollection, CustomCollectionDeck, CustomCollectionDeckCard,
)
from ygohub.collection_stores import StandardCollectionStore, CustomCollectionStore
from ygohub.custom_cards import CustomCardService
from ygohub.match_engine import MatchEngine
from ygohub.snapshot_engine import SnapshotEngine
from ygohub.tournament_registry import TournamentRegistry
from shared.pubsub import EventPublisher

_invite_codes = itertools.count(1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    # No context is held open here, so every request gets its own session
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Clear all tables before each test.

    The context is popped before the test runs; a request made while an app
    context is pushed reuses it, along with the user cached in ``g``.
    """
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

    yield


# ==================== Services ====================

@pytest.fixture
def events(mocker):
    """EventPublisher backed by a mocked Redis client."""
    return EventPublisher(mocker.MagicMock(), channel='test:events')


@pytest.fixture
def services(app, events):
    """Fresh service graph with a seeded shuffle and a mocked event sink."""
    match_engine = MatchEngine(db.session, events, rng=random.Random(7))
    snapshots = SnapshotEngine(db.session, StandardCollectionStore(db.session), events)
    custom_snapshots = SnapshotEngine(db.session, CustomCollectionStore(db.session), events)
    custom_cards = CustomCardService(db.session, events)
    registry = TournamentRegistry(db.session, match_engine, snapshots, custom_snapshots, custom_cards)
    return {
        'registry': registry,
        'match_engine': match_engine,
        'snapshots': snapshots,
        'custom_snapshots': custom_snapshots,
        'custom_cards': custom_cards,
    }


# ==================== Sample data ====================

@pytest.fixture
def users(app, db_session):
    """Nine users; the first one organises, the other eight play."""
    with app.app_context():
        created = [User(username=f'duelist{i + 1}', tag=f'{1000 + i}') for i in range(9)]
        db.session.add_all(created)
        db.session.commit()
        return [u.id for u in created]


@pytest.fixture
def sample_cards(app, db_session):
    with app.app_context():
        cards = [
            Card(id=89631139, name='Blue-Eyes White Dragon', type='Normal Monster', atk=3000, defense=2500, level=8),
            Card(id=46986414, name='Dark Magician', type='Normal Monster', atk=2500, defense=2100, level=7),
            Card(id=83764718, name='Monster Reborn', type='Spell Card'),
        ]
        db.session.add_all(cards)
        db.session.commit()
        return [c.id for c in cards]


@pytest.fixture
def standard_collection(app, db_session, users, sample_cards):
    """Organizer collection with two decks of official cards."""
    with app.app_context():
        collection = DeckCollection(user_id=users[0], name='Cube', description='Organizer cube')
        dragons = CollectionDeck(deck_name='Dragons', archetype='Blue-Eyes')
        dragons.cards.append(CollectionDeckCard(card_id=sample_cards[0], quantity=3, deck_section='main'))
        dragons.cards.append(CollectionDeckCard(card_id=sample_cards[2], quantity=1, deck_section='main'))
        spellcasters = CollectionDeck(deck_name='Spellcasters', archetype='Dark Magician')
        spellcasters.cards.append(CollectionDeckCard(card_id=sample_cards[1], quantity=3, deck_section='main'))
        spellcasters.cards.append(CollectionDeckCard(card_id=sample_cards[2], quantity=1, deck_section='side'))
        collection.decks.extend([dragons, spellcasters])
        db.session.add(collection)
        db.session.commit()
        return {'collection_id': collection.id, 'deck_ids': [dragons.id, spellcasters.id]}


@pytest.fixture
def custom_card(app, db_session, users):
    """Custom card owned by users[0], version 1, atk 1000."""
    with app.app_context():
        card = CustomCard(created_by=users[0], name='Homebrew Knight', type='Effect Monster',
                          atk=1000, defense=1000, level=4, attribute='LIGHT', version=1)
        db.session.add(card)
        db.session.commit()
        return card.id


@pytest.fixture
def custom_collection(app, db_session, users, sample_cards, custom_card):
    """Custom collection of users[0] whose one deck mixes a custom and an official card."""
    with app.app_context():
        collection = CustomDeckCollection(user_id=users[0], name='Homebrew', description='Custom cube')
        deck = CustomCollectionDeck(deck_name='Knights')
        deck.cards.append(CustomCollectionDeckCard(custom_card_id=custom_card, quantity=2, deck_section='main'))
        deck.cards.append(CustomCollectionDeckCard(card_id=sample_cards[2], quantity=1, deck_section='main'))
        collection.decks.append(deck)
        db.session.add(collection)
        db.session.commit()
        return {'collection_id': collection.id, 'deck_ids': [deck.id]}


@pytest.fixture
def tournament_factory(app, db_session, users):
    """Create an open tournament by users[0] and join the given players."""
    def make(player_count: int = 4, **fields):
        with app.app_context():
            tournament = Tournament(
                name=fields.pop('name', 'Locals'),
                created_by=users[0],
                invite_code=fields.pop('invite_code', f'CODE{next(_invite_codes):04X}'),
                **fields
            )
            db.session.add(tournament)
            db.session.flush()
            for user_id in users[1:player_count + 1]:
                db.session.add(TournamentParticipant(tournament_id=tournament.id, user_id=user_id))
            tournament.player_count = player_count
            db.session.commit()
            return tournament.id
    return make


@pytest.fixture
def sample_tournament(tournament_factory):
    """Open player-mode tournament with four participants."""
    return tournament_factory(4)
