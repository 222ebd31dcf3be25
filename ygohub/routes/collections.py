"""
Minimal deck building for both collection stores.

``/collections`` works on official-card collections,
``/custom-collections`` on collections that may hold custom cards.
"""
from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user

from ygohub.models import db
from ygohub.unit_of_work import UnitOfWork

bp = Blueprint('collections', __name__, url_prefix='/api/v1')


def both_stores(rule: str, **options):
    """Register a view under the standard and the custom prefix."""
    def decorator(view):
        bp.add_url_rule(f'/collections{rule}', view_func=view, defaults={'custom': False}, **options)
        bp.add_url_rule(f'/custom-collections{rule}', endpoint=f'custom_{view.__name__}',
                        view_func=view, defaults={'custom': True}, **options)
        return view
    return decorator


def _store(custom: bool):
    engine = current_app.custom_snapshots if custom else current_app.snapshots
    return engine.store


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _deck_dict(deck) -> dict:
    return {
        'id': deck.id,
        'collection_id': deck.collection_id,
        'deck_name': deck.deck_name,
        'archetype': deck.archetype,
        'description': deck.description,
        'cards': [
            {
                'card_id': c.card_id,
                'custom_card_id': getattr(c, 'custom_card_id', None),
                'quantity': c.quantity,
                'deck_section': c.deck_section,
            }
            for c in deck.cards
        ],
    }


@both_stores('', methods=['POST'])
@login_required
def create_collection(custom: bool):
    data = _body()
    if not data.get('name'):
        return jsonify({'error': 'Collection name is required'}), 400

    with UnitOfWork(db.session):
        collection = _store(custom).create_collection(current_user.id, data['name'], data.get('description'))
    return jsonify({'id': collection.id, 'name': collection.name, 'description': collection.description}), 201


@both_stores('/<int:collection_id>', methods=['GET'])
@login_required
def get_collection(custom: bool, collection_id: int):
    collection = _store(custom).get_collection(collection_id, current_user.id)
    return jsonify({
        'id': collection.id,
        'name': collection.name,
        'description': collection.description,
        'decks': [_deck_dict(d) for d in collection.decks],
    })


@both_stores('/<int:collection_id>/decks', methods=['POST'])
@login_required
def add_deck(custom: bool, collection_id: int):
    data = _body()
    if not data.get('deck_name'):
        return jsonify({'error': 'Deck name is required'}), 400

    with UnitOfWork(db.session):
        deck = _store(custom).add_deck(
            collection_id, current_user.id, data['deck_name'],
            archetype=data.get('archetype'), description=data.get('description'),
        )
    return jsonify(_deck_dict(deck)), 201


@both_stores('/decks/<int:deck_id>/cards', methods=['PUT'])
@login_required
def put_deck_card(custom: bool, deck_id: int):
    data = _body()
    if not isinstance(data.get('quantity'), int):
        return jsonify({'error': 'quantity must be an integer'}), 400

    store = _store(custom)
    with UnitOfWork(db.session):
        store.add_card_to_deck(
            deck_id, current_user.id, data['quantity'],
            deck_section=data.get('deck_section', 'main'),
            card_id=data.get('card_id'),
            custom_card_id=data.get('custom_card_id'),
        )
    return jsonify(_deck_dict(store.get_deck(deck_id)))


@both_stores('/decks/<int:deck_id>/cards', methods=['DELETE'])
@login_required
def delete_deck_card(custom: bool, deck_id: int):
    data = _body()
    store = _store(custom)
    with UnitOfWork(db.session):
        store.remove_card_from_deck(
            deck_id, current_user.id,
            deck_section=data.get('deck_section', 'main'),
            card_id=data.get('card_id'),
            custom_card_id=data.get('custom_card_id'),
        )
    return jsonify(_deck_dict(store.get_deck(deck_id)))
