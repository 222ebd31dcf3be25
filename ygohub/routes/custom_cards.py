from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user

bp = Blueprint('custom_cards', __name__, url_prefix='/api/v1/custom-cards')


def _body() -> dict:
    return request.get_json(silent=True) or {}


@bp.route('', methods=['GET'])
@login_required
def list_custom_cards():
    """The current user's cards, soft deleted ones excluded."""
    cards = current_app.custom_cards.get_user_custom_cards(current_user.id)
    return jsonify({'cards': [c.to_dict() for c in cards], 'count': len(cards)})


@bp.route('/<int:card_id>', methods=['GET'])
def get_custom_card(card_id: int):
    card = current_app.custom_cards.get_custom_card(card_id)
    if not card:
        return jsonify({'error': 'Card not found'}), 404
    return jsonify(card.to_dict())


@bp.route('', methods=['POST'])
@login_required
def create_custom_card():
    data = _body()
    if not data.get('name'):
        return jsonify({'error': 'Card name is required'}), 400

    card = current_app.custom_cards.create_custom_card(current_user.id, data)
    return jsonify(card.to_dict()), 201


@bp.route('/<int:card_id>', methods=['PATCH'])
@login_required
def edit_custom_card(card_id: int):
    return jsonify(current_app.custom_cards.edit_custom_card(card_id, current_user.id, _body()))


@bp.route('/<int:card_id>', methods=['DELETE'])
@login_required
def delete_custom_card(card_id: int):
    result = current_app.custom_cards.delete_custom_card(card_id, current_user.id)
    if result['type'] == 'soft':
        result['message'] = 'Card removed from your collection (preserved in tournament history)'
    else:
        result['message'] = 'Card permanently deleted'
    return jsonify(result)


@bp.route('/<int:card_id>/history', methods=['GET'])
@login_required
def get_custom_card_history(card_id: int):
    return jsonify(current_app.custom_cards.get_custom_card_history(card_id, current_user.id))


@bp.route('/snapshot/<int:snapshot_card_id>', methods=['PATCH'])
@login_required
def edit_snapshot_custom_card(snapshot_card_id: int):
    data = dict(_body())
    propagate_to_source = data.pop('propagate_to_source', True)
    if not isinstance(propagate_to_source, bool):
        return jsonify({'error': 'propagate_to_source must be a boolean'}), 400

    result = current_app.custom_cards.edit_snapshot_custom_card(
        snapshot_card_id, current_user.id, data, propagate_to_source=propagate_to_source
    )
    return jsonify(result)
