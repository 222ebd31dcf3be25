import os
import logging
from flask import Flask, jsonify
from flask_login import LoginManager

from .config import config
from .models import db, User
from .errors import HubError
from .collection_stores import StandardCollectionStore, CustomCollectionStore
from .match_engine import MatchEngine
from .snapshot_engine import SnapshotEngine
from .custom_cards import CustomCardService
from .tournament_registry import TournamentRegistry
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)

login_manager = LoginManager()

ERROR_STATUS = {
    'not_found': 404,
    'invalid_state': 400,
    'conflicting_write': 409,
    'integrity_violation': 422,
}


def create_app(config_name: str = None) -> Flask:
    """Application factory for the YGOHub service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    # Create tables
    with app.app_context():
        db.create_all()

    # Initialize services
    events = EventPublisher.from_url(app.config.get('REDIS_URL'), app.config.get('EVENTS_CHANNEL'))
    if not events.enabled:
        logger.info("REDIS_URL not set, event publishing disabled")

    app.events = events
    app.match_engine = MatchEngine(db.session, events)
    app.snapshots = SnapshotEngine(db.session, StandardCollectionStore(db.session), events)
    app.custom_snapshots = SnapshotEngine(db.session, CustomCollectionStore(db.session), events)
    app.custom_cards = CustomCardService(db.session, events)
    app.registry = TournamentRegistry(
        db.session,
        app.match_engine,
        app.snapshots,
        app.custom_snapshots,
        app.custom_cards,
        invite_code_bytes=app.config['INVITE_CODE_BYTES'],
        default_min_players=app.config['DEFAULT_MIN_PLAYERS'],
    )

    register_error_handlers(app)

    # Register Blueprints
    from .routes import tournaments, collections, snapshots, custom_cards
    app.register_blueprint(tournaments.bp)
    app.register_blueprint(collections.bp)
    app.register_blueprint(snapshots.bp)
    app.register_blueprint(custom_cards.bp)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    return app


@login_manager.request_loader
def load_user_from_request(request):
    """Trust the user id the upstream auth gateway put in the header."""
    from flask import current_app
    raw_id = request.headers.get(current_app.config['USER_ID_HEADER'])
    if not raw_id or not raw_id.isdigit():
        return None
    return db.session.get(User, int(raw_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required', 'kind': 'unauthorized'}), 401


def register_error_handlers(app: Flask):

    @app.errorhandler(HubError)
    def handle_hub_error(error: HubError):
        return jsonify(error.to_dict()), ERROR_STATUS.get(error.kind, 400)
