from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user

from ygohub.errors import NotFound
from ygohub.swiss import standings_view

bp = Blueprint('tournaments', __name__, url_prefix='/api/v1')


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _tournament_or_404(tournament_id: int):
    tournament = current_app.registry.get_tournament(tournament_id)
    if not tournament:
        raise NotFound("Tournament not found")
    return tournament


# ==================== Tournament records ====================

@bp.route('/tournaments', methods=['GET'])
def list_tournaments():
    """List tournaments with optional status filter."""
    status = request.args.get('status')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    tournaments = current_app.registry.list_tournaments(status=status, limit=limit, offset=offset)
    return jsonify({
        'tournaments': [t.to_dict() for t in tournaments],
        'count': len(tournaments),
        'limit': limit,
        'offset': offset
    })


@bp.route('/tournaments', methods=['POST'])
@login_required
def create_tournament():
    data = _body()
    name = data.get('name')
    if not name:
        return jsonify({'error': 'Tournament name is required'}), 400

    tournament = current_app.registry.create_tournament(
        user_id=current_user.id,
        name=name,
        min_player_count=data.get('min_player_count'),
        max_player_count=data.get('max_player_count'),
        number_of_rounds=data.get('number_of_rounds'),
        deck_mode=data.get('deck_mode', 'player'),
        collection_id=data.get('collection_id'),
        uses_custom_cards=bool(data.get('uses_custom_cards', False)),
        series_id=data.get('series_id'),
    )
    return jsonify({'message': 'Tournament created', 'tournament': tournament.to_dict()}), 201


@bp.route('/tournaments/join', methods=['POST'])
@login_required
def join_tournament():
    invite_code = (_body().get('invite_code') or '').strip().upper()
    if not invite_code:
        return jsonify({'error': 'Invite code is required'}), 400
    return jsonify(current_app.registry.join_tournament(invite_code, current_user.id))


@bp.route('/tournaments/<int:tournament_id>', methods=['GET'])
def get_tournament(tournament_id: int):
    user_id = current_user.id if current_user.is_authenticated else None
    detail = current_app.registry.get_tournament_detail(tournament_id, user_id)
    if detail is None:
        return jsonify({'error': 'Tournament not found'}), 404
    return jsonify(detail)


# ==================== Lifecycle ====================

@bp.route('/tournaments/<int:tournament_id>/start', methods=['POST'])
@login_required
def start_tournament(tournament_id: int):
    return jsonify(current_app.registry.start_tournament(tournament_id, current_user.id))


@bp.route('/tournaments/<int:tournament_id>/advance', methods=['POST'])
@login_required
def advance_round(tournament_id: int):
    return jsonify(current_app.registry.advance_round(tournament_id, current_user.id))


@bp.route('/tournaments/<int:tournament_id>/standings', methods=['GET'])
def get_standings(tournament_id: int):
    standings = current_app.match_engine.get_standings(tournament_id)
    return jsonify({'standings': standings_view(standings)})


@bp.route('/matches/<int:match_id>/result', methods=['POST'])
@login_required
def report_match_result(match_id: int):
    data = _body()
    team1_score = data.get('team1_score')
    team2_score = data.get('team2_score')
    if not isinstance(team1_score, int) or not isinstance(team2_score, int):
        return jsonify({'error': 'team1_score and team2_score must be integers'}), 400

    result = current_app.registry.report_match_result(match_id, current_user.id, team1_score, team2_score)
    return jsonify(result)


# ==================== Decks ====================

@bp.route('/tournaments/<int:tournament_id>/deck', methods=['POST'])
@login_required
def select_player_deck(tournament_id: int):
    """Player mode: choose one of your own live decks."""
    deck_id = _body().get('deck_id')
    if not isinstance(deck_id, int):
        return jsonify({'error': 'deck_id is required'}), 400

    engine = current_app.registry.snapshots_for(_tournament_or_404(tournament_id))
    return jsonify(engine.select_player_deck(tournament_id, current_user.id, deck_id))


@bp.route('/tournaments/<int:tournament_id>/assign-deck', methods=['POST'])
@login_required
def assign_deck(tournament_id: int):
    """Organizer mode: hand a collection deck to a participant."""
    data = _body()
    if not isinstance(data.get('user_id'), int) or not isinstance(data.get('deck_id'), int):
        return jsonify({'error': 'user_id and deck_id are required'}), 400

    engine = current_app.registry.snapshots_for(_tournament_or_404(tournament_id))
    return jsonify(engine.assign_deck(tournament_id, current_user.id, data['user_id'], data['deck_id']))


@bp.route('/tournaments/<int:tournament_id>/pool-deck', methods=['POST'])
@login_required
def select_pool_deck(tournament_id: int):
    snapshot_deck_id = _body().get('snapshot_deck_id')
    if not isinstance(snapshot_deck_id, int):
        return jsonify({'error': 'snapshot_deck_id is required'}), 400

    engine = current_app.registry.snapshots_for(_tournament_or_404(tournament_id))
    return jsonify(engine.select_deck_for_tournament(tournament_id, current_user.id, snapshot_deck_id))


@bp.route('/tournaments/<int:tournament_id>/snapshot', methods=['GET'])
def get_tournament_snapshot(tournament_id: int):
    engine = current_app.registry.snapshots_for(_tournament_or_404(tournament_id))
    snapshot = engine.get_tournament_snapshot(tournament_id)
    if snapshot is None:
        return jsonify({'error': 'No snapshot for this tournament'}), 404
    return jsonify(snapshot)
