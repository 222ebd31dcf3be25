"""
Unit tests for TournamentRegistry class.
Tests: create_tournament, join_tournament, get_tournament_detail, list_tournaments,
       start_tournament, advance_round, report_match_result
"""
import re
import pytest
from ygohub.errors import NotFound, InvalidState, ConflictingWrite, IntegrityViolation
from ygohub.models import (
    db, Tournament, TournamentParticipant, CollectionSnapshot, CustomCollectionSnapshot,
    PlayerTournamentDeck, Match,
)


def join_all(registry, tournament, user_ids):
    for user_id in user_ids:
        registry.join_tournament(tournament.invite_code, user_id)


class TestCreateTournament:
    """Tests for create_tournament method."""

    def test_create_defaults(self, app, services, users):
        with app.app_context():
            tournament = services['registry'].create_tournament(users[0], "Locals")

            assert tournament.status == 'open'
            assert tournament.created_by == users[0]
            assert tournament.deck_mode == 'player'
            assert tournament.min_player_count == 2
            assert tournament.player_count == 0
            assert tournament.current_round == 0
            assert re.fullmatch(r'[0-9A-F]{8}', tournament.invite_code)

    def test_unique_invite_codes(self, app, services, users):
        with app.app_context():
            codes = {services['registry'].create_tournament(users[0], f"Event {i}").invite_code
                     for i in range(10)}
            assert len(codes) == 10

    @pytest.mark.parametrize('fields', [
        {'deck_mode': 'sealed'},
        {'min_player_count': 4, 'max_player_count': 3},
        {'number_of_rounds': 0},
    ])
    def test_invalid_settings(self, app, services, users, fields):
        with app.app_context():
            with pytest.raises(IntegrityViolation):
                services['registry'].create_tournament(users[0], "Broken", **fields)
            assert db.session.query(Tournament).count() == 0

    def test_organizer_mode_needs_owned_collection(self, app, services, users, standard_collection):
        with app.app_context():
            registry = services['registry']
            with pytest.raises(NotFound, match="Collection not found"):
                registry.create_tournament(users[0], "Cube", deck_mode='organizer')
            with pytest.raises(NotFound, match="Collection not found"):
                registry.create_tournament(users[1], "Cube", deck_mode='organizer',
                                           collection_id=standard_collection['collection_id'])

            tournament = registry.create_tournament(users[0], "Cube", deck_mode='organizer',
                                                    collection_id=standard_collection['collection_id'])
            assert tournament.collection_id == standard_collection['collection_id']

    def test_custom_collection_looked_up_in_custom_store(self, app, services, users, custom_collection):
        with app.app_context():
            tournament = services['registry'].create_tournament(
                users[0], "Homebrew", deck_mode='organizer',
                collection_id=custom_collection['collection_id'], uses_custom_cards=True,
            )
            assert tournament.uses_custom_cards is True
            assert services['registry'].snapshots_for(tournament) is services['custom_snapshots']


class TestJoinTournament:
    """Tests for join_tournament method."""

    def test_join(self, app, services, users):
        with app.app_context():
            registry = services['registry']
            tournament = registry.create_tournament(users[0], "Locals")

            result = registry.join_tournament(tournament.invite_code, users[1])

            assert result == {'tournamentId': tournament.id}
            assert db.session.get(Tournament, tournament.id).player_count == 1

    def test_invalid_code(self, app, services, users):
        with app.app_context():
            with pytest.raises(NotFound, match="Invalid invite code"):
                services['registry'].join_tournament('NOPE', users[1])

    def test_join_twice(self, app, services, users):
        with app.app_context():
            registry = services['registry']
            tournament = registry.create_tournament(users[0], "Locals")
            registry.join_tournament(tournament.invite_code, users[1])

            with pytest.raises(ConflictingWrite, match="Already joined"):
                registry.join_tournament(tournament.invite_code, users[1])
            assert db.session.get(Tournament, tournament.id).player_count == 1

    def test_full(self, app, services, users):
        with app.app_context():
            registry = services['registry']
            tournament = registry.create_tournament(users[0], "Tiny", max_player_count=2)
            join_all(registry, tournament, users[1:3])

            with pytest.raises(InvalidState, match="Tournament is full"):
                registry.join_tournament(tournament.invite_code, users[3])

    def test_started(self, app, services, users):
        with app.app_context():
            registry = services['registry']
            tournament = registry.create_tournament(users[0], "Locals")
            join_all(registry, tournament, users[1:3])
            registry.start_tournament(tournament.id, users[0])

            with pytest.raises(InvalidState, match="already started"):
                registry.join_tournament(tournament.invite_code, users[3])


class TestReads:
    """Tests for get_tournament_detail and list_tournaments."""

    def test_detail_flags(self, app, services, users, sample_tournament):
        with app.app_context():
            registry = services['registry']

            as_creator = registry.get_tournament_detail(sample_tournament, users[0])
            assert as_creator['isCreator'] is True
            assert as_creator['isParticipant'] is False
            assert len(as_creator['participants']) == 4
            assert as_creator['rounds'] == []

            as_player = registry.get_tournament_detail(sample_tournament, users[2])
            assert as_player['isCreator'] is False
            assert as_player['isParticipant'] is True

            assert registry.get_tournament_detail(999) is None

    def test_list_by_status(self, app, services, tournament_factory):
        with app.app_context():
            open_id = tournament_factory(2)
            done_id = tournament_factory(2, status='completed')
            registry = services['registry']

            assert [t.id for t in registry.list_tournaments(status='open')] == [open_id]
            assert {t.id for t in registry.list_tournaments()} == {open_id, done_id}
            assert len(registry.list_tournaments(limit=1)) == 1


class TestStartTournament:
    """Tests for start_tournament method."""

    def test_creator_only(self, app, services, users, sample_tournament):
        with app.app_context():
            with pytest.raises(NotFound, match="Tournament not found"):
                services['registry'].start_tournament(sample_tournament, users[1])
            assert db.session.get(Tournament, sample_tournament).status == 'open'

    def test_player_mode_without_decks(self, app, services, users, sample_tournament):
        with app.app_context():
            result = services['registry'].start_tournament(sample_tournament, users[0])

            assert result['snapshot'] is None
            assert len(result['pairings']) == 2
            assert db.session.query(CollectionSnapshot).count() == 0

    def test_not_enough_players(self, app, services, users, tournament_factory):
        with app.app_context():
            tournament_id = tournament_factory(1)
            with pytest.raises(InvalidState, match="Not enough players"):
                services['registry'].start_tournament(tournament_id, users[0])

    def test_player_mode_freezes_selected_decks(self, app, services, users, sample_tournament, sample_cards):
        with app.app_context():
            store = services['snapshots'].store
            collection = store.create_collection(users[1], 'Mine')
            deck = store.add_deck(collection.id, users[1], 'Burn')
            store.add_card_to_deck(deck.id, users[1], 2, card_id=sample_cards[2])
            db.session.commit()
            services['snapshots'].select_player_deck(sample_tournament, users[1], deck.id)

            result = services['registry'].start_tournament(sample_tournament, users[0])

            assert result['snapshot']['deckCount'] == 1
            record = db.session.query(PlayerTournamentDeck).filter_by(
                tournament_id=sample_tournament, user_id=users[1]).one()
            assert record.snapshot_deck_id is not None

    def test_organizer_mode(self, app, services, users, standard_collection):
        with app.app_context():
            registry = services['registry']
            tournament = registry.create_tournament(users[0], "Cube", deck_mode='organizer',
                                                    collection_id=standard_collection['collection_id'])
            tournament_id = tournament.id
            join_all(registry, tournament, users[1:3])
            for user_id, deck_id in zip(users[1:3], standard_collection['deck_ids']):
                services['snapshots'].assign_deck(tournament_id, users[0], user_id, deck_id)

            result = registry.start_tournament(tournament_id, users[0])

            assert result['snapshot']['deckCount'] == 2
            assert len(result['pairings']) == 1
            assert {result['pairings'][0]['player1'], result['pairings'][0]['player2']} == set(users[1:3])
            assert db.session.query(PlayerTournamentDeck).filter_by(tournament_id=tournament_id).count() == 2
            assert db.session.get(Tournament, tournament_id).status == 'in_progress'

    def test_custom_snapshots_locked_on_start(self, app, services, users, custom_collection):
        with app.app_context():
            registry = services['registry']
            tournament = registry.create_tournament(users[0], "Homebrew", deck_mode='organizer',
                                                    collection_id=custom_collection['collection_id'],
                                                    uses_custom_cards=True)
            tournament_id = tournament.id
            join_all(registry, tournament, users[1:3])
            services['custom_snapshots'].assign_deck(tournament_id, users[0], users[1],
                                                     custom_collection['deck_ids'][0])

            result = registry.start_tournament(tournament_id, users[0])

            assert result['snapshot']['customCardsSnapshotted'] == 1
            snapshot = db.session.get(CustomCollectionSnapshot, result['snapshot']['snapshotId'])
            assert snapshot.sync_locked is True
            record = db.session.query(PlayerTournamentDeck).filter_by(
                tournament_id=tournament_id, user_id=users[1]).one()
            assert record.custom_snapshot_deck_id is not None
            assert record.snapshot_deck_id is None

    def test_failed_start_rolls_back_snapshot(self, app, services, users, standard_collection, mocker):
        """Pairing failure after the snapshot leaves no snapshot behind."""
        with app.app_context():
            registry = services['registry']
            tournament = registry.create_tournament(users[0], "Cube", deck_mode='organizer',
                                                    collection_id=standard_collection['collection_id'])
            tournament_id = tournament.id
            join_all(registry, tournament, users[1:3])
            services['snapshots'].assign_deck(tournament_id, users[0], users[1],
                                              standard_collection['deck_ids'][0])
            mocker.patch.object(services['match_engine'], 'start_tournament',
                                side_effect=RuntimeError("pairing failed"))

            with pytest.raises(RuntimeError):
                registry.start_tournament(tournament_id, users[0])

            assert db.session.get(Tournament, tournament_id).status == 'open'
            assert db.session.query(CollectionSnapshot).count() == 0
            assert db.session.query(PlayerTournamentDeck).count() == 0


class TestCreatorActions:
    """Tests for advance_round and report_match_result."""

    def test_report_creator_only(self, app, services, users, sample_tournament):
        with app.app_context():
            registry = services['registry']
            registry.start_tournament(sample_tournament, users[0])
            match = db.session.query(Match).filter_by(tournament_id=sample_tournament).first()

            with pytest.raises(NotFound, match="Match not found"):
                registry.report_match_result(match.id, users[1], 2, 0)

            assert registry.report_match_result(match.id, users[0], 2, 0)['winnerTeamId'] == 1

    def test_advance_creator_only(self, app, services, users, sample_tournament):
        with app.app_context():
            registry = services['registry']
            registry.start_tournament(sample_tournament, users[0])

            with pytest.raises(NotFound):
                registry.advance_round(sample_tournament, users[1])
            with pytest.raises(InvalidState, match="Not all matches are completed"):
                registry.advance_round(sample_tournament, users[0])

    def test_participant_rows_untouched_by_start(self, app, services, users, sample_tournament):
        with app.app_context():
            services['registry'].start_tournament(sample_tournament, users[0])
            count = db.session.query(TournamentParticipant).filter_by(tournament_id=sample_tournament).count()
            assert count == 4
