"""
Integration tests for API routes.
Tests the tournaments, collections, snapshots and custom-cards blueprints.
"""
import json
import pytest
from ygohub.models import db, Match, TournamentSeries


def auth(user_id):
    return {'X-User-Id': str(user_id)}


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert json.loads(response.data) == {'status': 'ok'}


class TestAuthentication:
    """Write endpoints require the gateway user header."""

    def test_missing_header(self, client, db_session):
        response = client.post('/api/v1/tournaments', json={'name': 'Locals'})
        assert response.status_code == 401
        assert response.get_json() == {'error': 'Authentication required', 'kind': 'unauthorized'}

    def test_unknown_user(self, client, db_session):
        response = client.post('/api/v1/tournaments', json={'name': 'Locals'}, headers=auth(424242))
        assert response.status_code == 401

    def test_non_numeric_header(self, client, db_session):
        response = client.post('/api/v1/tournaments', json={'name': 'Locals'}, headers={'X-User-Id': 'kaiba'})
        assert response.status_code == 401

    def test_each_request_loads_its_own_user(self, client, users):
        """A second request in the same test acts as the user in its own header."""
        first = client.get('/api/v1/custom-cards', headers=auth(users[0]))
        assert first.status_code == 200

        created = client.post('/api/v1/custom-cards', json={'name': 'Borrowed Knight'},
                              headers=auth(users[3]))

        assert created.status_code == 201
        assert created.get_json()['created_by'] == users[3]
        assert client.get('/api/v1/custom-cards', headers=auth(users[0])).get_json()['count'] == 0


class TestTournamentFlow:
    """Create, join, start, report and advance over HTTP."""

    def test_create_tournament(self, client, users):
        response = client.post('/api/v1/tournaments', json={'name': 'Locals', 'max_player_count': 8},
                               headers=auth(users[0]))

        assert response.status_code == 201
        data = response.get_json()
        assert data['message'] == 'Tournament created'
        assert data['tournament']['status'] == 'open'
        assert data['tournament']['created_by'] == users[0]
        assert len(data['tournament']['invite_code']) == 8

    def test_create_tournament_missing_name(self, client, users):
        response = client.post('/api/v1/tournaments', json={}, headers=auth(users[0]))
        assert response.status_code == 400

    def test_invalid_settings_are_422(self, client, users):
        response = client.post('/api/v1/tournaments', json={'name': 'X', 'deck_mode': 'sealed'},
                               headers=auth(users[0]))
        assert response.status_code == 422
        assert response.get_json()['kind'] == 'integrity_violation'

    def test_full_event(self, app, client, users):
        created = client.post('/api/v1/tournaments', json={'name': 'Locals', 'number_of_rounds': 2},
                              headers=auth(users[0])).get_json()['tournament']
        tournament_id = created['id']

        for user_id in users[1:5]:
            response = client.post('/api/v1/tournaments/join',
                                   json={'invite_code': created['invite_code'].lower()},
                                   headers=auth(user_id))
            assert response.status_code == 200
            assert response.get_json() == {'tournamentId': tournament_id}

        detail = client.get(f'/api/v1/tournaments/{tournament_id}', headers=auth(users[1])).get_json()
        assert detail['player_count'] == 4
        assert detail['isParticipant'] is True
        assert detail['isCreator'] is False

        started = client.post(f'/api/v1/tournaments/{tournament_id}/start', headers=auth(users[0]))
        assert started.status_code == 200
        assert len(started.get_json()['pairings']) == 2

        for round_number in (1, 2):
            with app.app_context():
                match_ids = [m.id for m in db.session.query(Match)
                             .filter_by(tournament_id=tournament_id, status='pending').all()]
            assert len(match_ids) == 2
            for match_id in match_ids:
                response = client.post(f'/api/v1/matches/{match_id}/result',
                                       json={'team1_score': 2, 'team2_score': 1}, headers=auth(users[0]))
                assert response.status_code == 200

            advanced = client.post(f'/api/v1/tournaments/{tournament_id}/advance', headers=auth(users[0]))
            assert advanced.status_code == 200

        assert advanced.get_json() == {'completed': True}
        standings = client.get(f'/api/v1/tournaments/{tournament_id}/standings').get_json()['standings']
        assert [row['rank'] for row in standings] == [1, 2, 3, 4]
        assert standings[0]['matchWins'] == 2
        assert standings[-1]['matchWins'] == 0

    def test_join_errors(self, client, users, sample_tournament):
        missing = client.post('/api/v1/tournaments/join', json={'invite_code': 'ZZZZ'}, headers=auth(users[5]))
        assert missing.status_code == 404

        blank = client.post('/api/v1/tournaments/join', json={}, headers=auth(users[5]))
        assert blank.status_code == 400

    def test_duplicate_join_is_409(self, client, users):
        created = client.post('/api/v1/tournaments', json={'name': 'Locals'},
                              headers=auth(users[0])).get_json()['tournament']
        client.post('/api/v1/tournaments/join', json={'invite_code': created['invite_code']},
                    headers=auth(users[1]))

        response = client.post('/api/v1/tournaments/join', json={'invite_code': created['invite_code']},
                               headers=auth(users[1]))
        assert response.status_code == 409
        assert response.get_json()['kind'] == 'conflicting_write'

    def test_invalid_state_is_400(self, client, users, sample_tournament):
        response = client.post(f'/api/v1/tournaments/{sample_tournament}/advance', headers=auth(users[0]))
        assert response.status_code == 400
        assert response.get_json() == {'error': 'Tournament is not in progress', 'kind': 'invalid_state'}

    def test_non_creator_start_is_404(self, client, users, sample_tournament):
        response = client.post(f'/api/v1/tournaments/{sample_tournament}/start', headers=auth(users[1]))
        assert response.status_code == 404
        assert response.get_json()['kind'] == 'not_found'

    def test_result_requires_integer_scores(self, client, users, sample_tournament):
        client.post(f'/api/v1/tournaments/{sample_tournament}/start', headers=auth(users[0]))
        response = client.post('/api/v1/matches/1/result', json={'team1_score': '2', 'team2_score': 0},
                               headers=auth(users[0]))
        assert response.status_code == 400

    def test_missing_tournament(self, client, db_session):
        assert client.get('/api/v1/tournaments/999').status_code == 404
        assert client.get('/api/v1/tournaments/999/standings').status_code == 404

    def test_list_tournaments(self, client, sample_tournament):
        data = client.get('/api/v1/tournaments?status=open').get_json()
        assert data['count'] == 1
        assert data['tournaments'][0]['id'] == sample_tournament


class TestDeckRoutes:
    """Deck selection and pool routes."""

    def test_organizer_assigns_then_starts(self, client, users, standard_collection):
        created = client.post('/api/v1/tournaments', json={
            'name': 'Cube', 'deck_mode': 'organizer', 'collection_id': standard_collection['collection_id'],
        }, headers=auth(users[0])).get_json()['tournament']
        for user_id in users[1:3]:
            client.post('/api/v1/tournaments/join', json={'invite_code': created['invite_code']},
                        headers=auth(user_id))

        assigned = client.post(f"/api/v1/tournaments/{created['id']}/assign-deck",
                               json={'user_id': users[1], 'deck_id': standard_collection['deck_ids'][0]},
                               headers=auth(users[0]))
        assert assigned.status_code == 200
        assert assigned.get_json()['deckName'] == 'Dragons'

        started = client.post(f"/api/v1/tournaments/{created['id']}/start", headers=auth(users[0])).get_json()
        assert started['snapshot']['deckCount'] == 2

        snapshot = client.get(f"/api/v1/tournaments/{created['id']}/snapshot").get_json()
        assert snapshot['id'] == started['snapshot']['snapshotId']
        assert snapshot['custom'] is False

    def test_no_snapshot(self, client, sample_tournament):
        response = client.get(f'/api/v1/tournaments/{sample_tournament}/snapshot')
        assert response.status_code == 404
        assert response.get_json() == {'error': 'No snapshot for this tournament'}

    def test_pool_selection_and_cap(self, client, users, sample_tournament, standard_collection):
        pool = client.post('/api/v1/snapshots/tournament', json={
            'tournament_id': sample_tournament, 'source_type': 'user_collection',
            'source_id': standard_collection['collection_id'],
        }, headers=auth(users[0]))
        assert pool.status_code == 201
        deck_id = pool.get_json()['decks'][0]['id']

        capped = client.patch(f'/api/v1/snapshots/decks/{deck_id}', json={'max_selections': 1},
                              headers=auth(users[0]))
        assert capped.get_json() == {'id': deck_id, 'max_selections': 1, 'times_selected': 0}

        first = client.post(f'/api/v1/tournaments/{sample_tournament}/pool-deck',
                            json={'snapshot_deck_id': deck_id}, headers=auth(users[1]))
        assert first.status_code == 200
        assert first.get_json()['user_id'] == users[1]

        second = client.post(f'/api/v1/tournaments/{sample_tournament}/pool-deck',
                             json={'snapshot_deck_id': deck_id}, headers=auth(users[2]))
        assert second.status_code == 409

    def test_invalid_source_type(self, client, users, sample_tournament):
        response = client.post('/api/v1/snapshots/tournament', json={
            'tournament_id': sample_tournament, 'source_type': 'banlist', 'source_id': 1,
        }, headers=auth(users[0]))
        assert response.status_code == 422


class TestCollectionRoutes:
    """Deck building routes for both stores."""

    def test_build_a_deck(self, client, users, sample_cards):
        collection = client.post('/api/v1/collections', json={'name': 'Mine'}, headers=auth(users[1]))
        assert collection.status_code == 201
        collection_id = collection.get_json()['id']

        deck = client.post(f'/api/v1/collections/{collection_id}/decks', json={'deck_name': 'Dragons'},
                           headers=auth(users[1]))
        assert deck.status_code == 201
        deck_id = deck.get_json()['id']

        updated = client.put(f'/api/v1/collections/decks/{deck_id}/cards',
                             json={'card_id': sample_cards[0], 'quantity': 3}, headers=auth(users[1]))
        assert updated.get_json()['cards'] == [
            {'card_id': sample_cards[0], 'custom_card_id': None, 'quantity': 3, 'deck_section': 'main'},
        ]

        too_many = client.put(f'/api/v1/collections/decks/{deck_id}/cards',
                              json={'card_id': sample_cards[0], 'quantity': 1, 'deck_section': 'side'},
                              headers=auth(users[1]))
        assert too_many.status_code == 422

        removed = client.delete(f'/api/v1/collections/decks/{deck_id}/cards',
                                json={'card_id': sample_cards[0]}, headers=auth(users[1]))
        assert removed.get_json()['cards'] == []

    def test_collection_owner_only(self, client, users, standard_collection):
        response = client.get(f"/api/v1/collections/{standard_collection['collection_id']}",
                              headers=auth(users[1]))
        assert response.status_code == 404

    def test_custom_collection(self, client, users, custom_card):
        collection_id = client.post('/api/v1/custom-collections', json={'name': 'Homebrew'},
                                    headers=auth(users[0])).get_json()['id']
        deck_id = client.post(f'/api/v1/custom-collections/{collection_id}/decks',
                              json={'deck_name': 'Knights'}, headers=auth(users[0])).get_json()['id']

        response = client.put(f'/api/v1/custom-collections/decks/{deck_id}/cards',
                              json={'custom_card_id': custom_card, 'quantity': 2}, headers=auth(users[0]))

        assert response.status_code == 200
        assert response.get_json()['cards'][0]['custom_card_id'] == custom_card
        fetched = client.get(f'/api/v1/custom-collections/{collection_id}', headers=auth(users[0])).get_json()
        assert fetched['decks'][0]['deck_name'] == 'Knights'


class TestCustomCardRoutes:
    """Custom card CRUD, propagation and history over HTTP."""

    def test_create_and_list(self, client, users):
        created = client.post('/api/v1/custom-cards', json={'name': 'Homebrew Dragon', 'atk': 2800},
                              headers=auth(users[2]))
        assert created.status_code == 201
        assert created.get_json()['version'] == 1

        listed = client.get('/api/v1/custom-cards', headers=auth(users[2])).get_json()
        assert listed['count'] == 1
        assert listed['cards'][0]['name'] == 'Homebrew Dragon'

    def test_create_requires_name(self, client, users):
        response = client.post('/api/v1/custom-cards', json={'atk': 1}, headers=auth(users[2]))
        assert response.status_code == 400

    def test_edit_propagates(self, client, users, sample_tournament, custom_collection, custom_card):
        snapshot = client.post('/api/v1/custom-snapshots/tournament', json={
            'tournament_id': sample_tournament, 'source_type': 'user_collection',
            'source_id': custom_collection['collection_id'],
        }, headers=auth(users[0])).get_json()
        assert snapshot['sync_locked'] is False

        edited = client.patch(f'/api/v1/custom-cards/{custom_card}', json={'atk': 1900}, headers=auth(users[0]))

        assert edited.status_code == 200
        assert edited.get_json()['propagatedTo'] == 1
        assert edited.get_json()['card']['version'] == 2
        refreshed = client.get(f"/api/v1/custom-snapshots/{snapshot['id']}").get_json()
        assert refreshed['custom_cards'][0]['atk'] == 1900

    def test_locked_snapshot_edit(self, client, users, sample_tournament, custom_collection, custom_card):
        snapshot = client.post('/api/v1/custom-snapshots/tournament', json={
            'tournament_id': sample_tournament, 'source_type': 'user_collection',
            'source_id': custom_collection['collection_id'],
        }, headers=auth(users[0])).get_json()
        locked = client.post(f"/api/v1/custom-snapshots/{snapshot['id']}/lock", headers=auth(users[0]))
        assert locked.get_json() == {'id': snapshot['id'], 'sync_locked': True}

        copy_id = snapshot['custom_cards'][0]['id']
        response = client.patch(f'/api/v1/custom-cards/snapshot/{copy_id}',
                                json={'atk': 500, 'propagate_to_source': False}, headers=auth(users[0]))

        assert response.get_json() == {'snapshotCardId': copy_id, 'isLocked': True,
                                       'sourceUpdated': False, 'propagatedTo': 0}
        source = client.get(f'/api/v1/custom-cards/{custom_card}').get_json()
        assert source['atk'] == 1000

    def test_propagate_flag_must_be_bool(self, client, users):
        response = client.patch('/api/v1/custom-cards/snapshot/1', json={'propagate_to_source': 'no'},
                                headers=auth(users[0]))
        assert response.status_code == 400

    @pytest.mark.parametrize('snapshotted,delete_type,message', [
        (False, 'hard', 'Card permanently deleted'),
        (True, 'soft', 'Card removed from your collection (preserved in tournament history)'),
    ])
    def test_delete(self, client, users, sample_tournament, custom_collection, custom_card,
                    snapshotted, delete_type, message):
        if snapshotted:
            client.post('/api/v1/custom-snapshots/tournament', json={
                'tournament_id': sample_tournament, 'source_type': 'user_collection',
                'source_id': custom_collection['collection_id'],
            }, headers=auth(users[0]))

        response = client.delete(f'/api/v1/custom-cards/{custom_card}', headers=auth(users[0]))

        assert response.get_json() == {'deleted': True, 'id': custom_card, 'type': delete_type,
                                       'message': message}
        listed = client.get('/api/v1/custom-cards', headers=auth(users[0])).get_json()
        assert listed['count'] == 0

    def test_history(self, client, users, sample_tournament, custom_collection, custom_card):
        client.post('/api/v1/custom-snapshots/tournament', json={
            'tournament_id': sample_tournament, 'source_type': 'user_collection',
            'source_id': custom_collection['collection_id'],
        }, headers=auth(users[0]))

        history = client.get(f'/api/v1/custom-cards/{custom_card}/history', headers=auth(users[0])).get_json()

        assert history['cardName'] == 'Homebrew Knight'
        assert len(history['history']) == 1
        assert history['history'][0]['tournament']['id'] == sample_tournament

        other = client.get(f'/api/v1/custom-cards/{custom_card}/history', headers=auth(users[1]))
        assert other.status_code == 404


class TestSeriesSnapshots:

    def test_chain_series_into_tournament(self, app, client, users, sample_tournament, standard_collection):
        with app.app_context():
            series = TournamentSeries(name='Spring League', created_by=users[0])
            db.session.add(series)
            db.session.commit()
            series_id = series.id

        series_snapshot = client.post('/api/v1/snapshots/series', json={
            'series_id': series_id, 'collection_id': standard_collection['collection_id'],
        }, headers=auth(users[0]))
        assert series_snapshot.status_code == 201
        assert series_snapshot.get_json()['snapshot_type'] == 'series'

        chained = client.post('/api/v1/snapshots/tournament', json={
            'tournament_id': sample_tournament, 'source_type': 'series_snapshot',
            'source_id': series_snapshot.get_json()['id'], 'series_id': series_id,
        }, headers=auth(users[0])).get_json()

        assert chained['parent_snapshot_id'] == series_snapshot.get_json()['id']
        assert chained['version_number'] == 2
        assert chained['series_id'] == series_id

    def test_missing_snapshot(self, client, db_session):
        assert client.get('/api/v1/snapshots/999').status_code == 404
        assert client.get('/api/v1/custom-snapshots/999').status_code == 404
