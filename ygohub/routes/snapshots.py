from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user

bp = Blueprint('snapshots', __name__, url_prefix='/api/v1')


def both_stores(rule: str, **options):
    """Register a view under /snapshots (standard) and /custom-snapshots."""
    def decorator(view):
        bp.add_url_rule(f'/snapshots{rule}', view_func=view, defaults={'custom': False}, **options)
        bp.add_url_rule(f'/custom-snapshots{rule}', endpoint=f'custom_{view.__name__}',
                        view_func=view, defaults={'custom': True}, **options)
        return view
    return decorator


def _engine(custom: bool):
    return current_app.custom_snapshots if custom else current_app.snapshots


def _body() -> dict:
    return request.get_json(silent=True) or {}


@both_stores('/series', methods=['POST'])
@login_required
def create_series_snapshot(custom: bool):
    data = _body()
    if not isinstance(data.get('series_id'), int) or not isinstance(data.get('collection_id'), int):
        return jsonify({'error': 'series_id and collection_id are required'}), 400

    snapshot = _engine(custom).create_series_snapshot(
        data['series_id'], data['collection_id'], user_id=current_user.id
    )
    return jsonify(snapshot), 201


@both_stores('/tournament', methods=['POST'])
@login_required
def create_tournament_snapshot(custom: bool):
    data = _body()
    if not isinstance(data.get('tournament_id'), int) or not isinstance(data.get('source_id'), int):
        return jsonify({'error': 'tournament_id and source_id are required'}), 400

    snapshot = _engine(custom).create_tournament_snapshot(
        data['tournament_id'],
        data.get('source_type'),
        data['source_id'],
        series_id=data.get('series_id'),
        user_id=current_user.id,
    )
    return jsonify(snapshot), 201


@both_stores('/<int:snapshot_id>', methods=['GET'])
def get_snapshot(custom: bool, snapshot_id: int):
    snapshot = _engine(custom).get_snapshot(snapshot_id)
    if snapshot is None:
        return jsonify({'error': 'Snapshot not found'}), 404
    return jsonify(snapshot)


@both_stores('/decks/<int:snapshot_deck_id>', methods=['PATCH'])
@login_required
def set_max_selections(custom: bool, snapshot_deck_id: int):
    max_selections = _body().get('max_selections')
    if max_selections is not None and not isinstance(max_selections, int):
        return jsonify({'error': 'max_selections must be an integer or null'}), 400

    return jsonify(_engine(custom).set_max_selections(snapshot_deck_id, current_user.id, max_selections))


@bp.route('/custom-snapshots/<int:snapshot_id>/lock', methods=['POST'])
@login_required
def lock_snapshot(snapshot_id: int):
    snapshot = current_app.custom_cards.lock_snapshot(snapshot_id)
    if snapshot is None:
        return jsonify({'error': 'Snapshot not found'}), 404
    return jsonify({'id': snapshot.id, 'sync_locked': snapshot.sync_locked})
