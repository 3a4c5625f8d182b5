import logging

from flask import Flask, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import db, migrate, scheduler
from .bank import bank_bp, cron_bp
from .bank.verification import reset_verification_limits
from .billing import billing_bp
from .orders import food_orders_bp
from .wallet import wallet_bp
from .webhooks import webhooks_bp
from .cli import register_cli
from .plans import seed_plans

logger = logging.getLogger(__name__)


def _bootstrap_app(app: Flask) -> None:
    db.create_all()
    seed_plans()


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        if not request.path.startswith('/api/'):
            return exc
        return jsonify({'error': exc.description or exc.name}), exc.code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(exc: SQLAlchemyError):
        db.session.rollback()
        app.logger.exception('Database error on %s: %s', request.path, exc)
        return jsonify({'error': 'Database error'}), 500


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)
    cfg = config_object or Config
    app.config.from_object(cfg)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    db.init_app(app)
    migrate.init_app(app, db)
    register_cli(app)
    _register_error_handlers(app)

    app.register_blueprint(food_orders_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(bank_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(webhooks_bp)

    def _schedule_job(fn, **trigger_kwargs):
        def runner():
            with app.app_context():
                fn()

        scheduler.add_job(runner, **trigger_kwargs)

    with app.app_context():
        _bootstrap_app(app)

        if app.config.get('SCHEDULER_ENABLED') and not getattr(app, 'apscheduler', None) and not scheduler.running:
            _schedule_job(
                reset_verification_limits,
                trigger='cron',
                hour=0,
                minute=5,
                id='reset-verification-limits',
                replace_existing=True,
            )
            scheduler.start()
            app.apscheduler = scheduler
            logger.info('Scheduler started: verification limit reset at 00:05 UTC')

    return app
