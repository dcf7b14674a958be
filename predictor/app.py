import os
import logging

import click
import redis
from flask import Flask, jsonify
from flask_migrate import Migrate

from shared.errors import PredictorError
from .accounts import AccountService
from .auth import Role, login_manager
from .config import config
from .group_manager import GroupManager
from .invite_codes import InviteCodeService
from .leaderboard import Leaderboard
from .models import db, User
from .predictions import PredictionStore
from .score_calculator import ScoreCalculator
from .scoring_engine import ScoringEngine
from .tournament_registry import TournamentRegistry
from .transaction import TransactionRunner

logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_name: str = None, overrides: dict = None) -> Flask:
    """Application factory for the prediction service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    redis_url = app.config.get('REDIS_URL')
    app.redis = redis.from_url(redis_url, decode_responses=True) if redis_url else None

    # Create tables
    with app.app_context():
        db.create_all()

    init_services(app)

    # Register routes
    from .routes import admin, groups, predictions
    app.register_blueprint(groups.bp, url_prefix='/api/v1')
    app.register_blueprint(predictions.bp, url_prefix='/api/v1')
    app.register_blueprint(admin.bp, url_prefix='/api/v1')
    register_error_handlers(app)
    register_health_route(app)
    register_commands(app)

    return app


def init_services(app: Flask):
    """Build the service graph once, threading the store handle and policy through constructors."""
    cfg = app.config
    session = db.session
    transactions = TransactionRunner(
        session,
        max_attempts=cfg['TRANSACTION_MAX_ATTEMPTS'],
        backoff_seconds=cfg['TRANSACTION_BACKOFF_SECONDS']
    )
    invite_codes = InviteCodeService(
        session,
        code_length=cfg['INVITE_CODE_LENGTH'],
        max_attempts=cfg['INVITE_CODE_MAX_ATTEMPTS']
    )
    scoring = ScoringEngine(
        session,
        calculator=ScoreCalculator(
            exact_score_points=cfg['EXACT_SCORE_POINTS'],
            correct_outcome_points=cfg['CORRECT_OUTCOME_POINTS'],
            round_advance_points=cfg['ROUND_ADVANCE_POINTS']
        ),
        transactions=transactions,
        redis_client=app.redis,
        lock_timeout=cfg['SCORING_LOCK_TIMEOUT']
    )

    # Store services on app for access in routes
    app.accounts = AccountService(session, transactions=transactions)
    app.invite_codes = invite_codes
    app.groups = GroupManager(
        session,
        invite_codes=invite_codes,
        transactions=transactions,
        max_members=cfg['GROUP_MAX_MEMBERS'],
        redis_client=app.redis
    )
    app.predictions = PredictionStore(session, transactions=transactions)
    app.scoring = scoring
    app.registry = TournamentRegistry(
        session,
        scoring=scoring,
        transactions=transactions,
        redis_client=app.redis,
        default_limit=cfg['LEADERBOARD_DEFAULT_LIMIT'],
        max_limit=cfg['LEADERBOARD_MAX_LIMIT']
    )
    app.leaderboard = Leaderboard(
        session,
        default_limit=cfg['LEADERBOARD_DEFAULT_LIMIT'],
        max_limit=cfg['LEADERBOARD_MAX_LIMIT']
    )


def register_error_handlers(app: Flask):

    @app.errorhandler(PredictorError)
    def handle_predictor_error(error: PredictorError):
        logger.info(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code


def register_health_route(app: Flask):

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        if app.redis is None:
            redis_state = 'disabled'
        else:
            try:
                app.redis.ping()
                redis_state = 'connected'
            except redis.RedisError:
                redis_state = 'disconnected'

        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except Exception as e:
            logger.error(f"Health check database query failed: {e}")
            db_ok = False

        healthy = db_ok and redis_state != 'disconnected'
        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'redis': redis_state,
            'database': 'connected' if db_ok else 'disconnected'
        }), 200 if healthy else 503


def register_commands(app: Flask):

    @app.cli.command('init-db')
    @click.option('--admin-email', default=None, help='Create an admin user with this email.')
    @click.option('--admin-name', default='Admin', help='Display name for the admin user.')
    def init_db_command(admin_email, admin_name):
        """Create all tables and optionally seed an admin user."""
        init_database(app, admin_email=admin_email, admin_name=admin_name)
        click.echo('Database initialized.')


def init_database(app: Flask, admin_email: str = None, admin_name: str = 'Admin'):
    with app.app_context():
        db.create_all()
        if admin_email:
            existing = db.session.scalars(db.select(User).filter_by(email=admin_email.lower())).first()
            if existing is None:
                app.accounts.create_user(admin_name, admin_email, role=Role.ADMIN)
                logger.info(f"Seeded admin user {admin_email}")
