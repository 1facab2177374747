from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from flask import Flask, request, jsonify, current_app, g
import uuid
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_cors import CORS
from flask_socketio import SocketIO
from flask_jwt_extended import JWTManager
from flask_jwt_extended.exceptions import NoAuthorizationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException as WerkzeugHTTPException
from flask_talisman import Talisman
from minigames_be.exceptions import AppException
from minigames_be.error_codes import ErrorCodes
import logging
from pythonjsonlogger import jsonlogger
from marshmallow import ValidationError
from http import HTTPStatus
import click


# Custom Logging Filter for Request ID
class RequestIdFilter(logging.Filter):
    def filter(self, record):
        try:
            record.request_id = g.get('request_id', 'N/A')
        except RuntimeError:
            # outside a request, e.g. the crash round thread
            record.request_id = 'N/A'
        return True


from .models import db, Player, LEDGER_DEPOSIT, LEDGER_BONUS
from .config import Config
from .utils.money import to_amount
from .utils.auth import register_jwt_handlers
from .utils.game_config_manager import GameConfigManager
from .services.event_bus import EventBus
from .services.games import build_game_registry
from .services.ledger import Ledger
from .services.settlement import SettlementOrchestrator
from .services.crash_round_scheduler import CrashRoundScheduler
from .services.websocket_manager import WebSocketManager

from .routes.dice import dice_bp
from .routes.coinflip import coinflip_bp
from .routes.slots import slots_bp
from .routes.mines import mines_bp
from .routes.crash import crash_bp
from .routes.wallet import wallet_bp
from .routes.games import games_bp


def create_app(config_class=Config):
    """Application factory. Returns (app, socketio)."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    # --- Security Headers with Talisman ---
    csp = {
        'default-src': "'self'",
        'img-src': "'self' data:",
        'connect-src': "'self'",
        'frame-ancestors': "'none'"
    }
    Talisman(app,
             force_https=not (app.debug or app.testing),
             strict_transport_security=True,
             content_security_policy=csp)

    # --- Logging Configuration ---
    if not app.debug:
        handler = logging.StreamHandler()
        formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(request_id)s %(name)s %(funcName)s %(lineno)d %(message)s'
        )
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        # service loggers live under the package logger; app.logger is its child, so it must not propagate
        for logger in (app.logger, logging.getLogger('minigames_be')):
            if logger.hasHandlers():
                logger.handlers.clear()
            logger.addHandler(handler)
            logger.setLevel(logging.INFO)
        app.logger.propagate = False
    elif not app.logger.handlers:
        logging.basicConfig(level=logging.DEBUG)

    # --- CORS Setup ---
    allowed_origins = list(app.config.get('CORS_ORIGINS_LIST') or [])
    if app.debug:
        allowed_origins.extend(["http://localhost:8080", "http://127.0.0.1:8080"])
    if allowed_origins:
        CORS(app,
             origins=allowed_origins,
             supports_credentials=True,
             methods=['GET', 'POST', 'OPTIONS'],
             allow_headers=['Content-Type', 'Authorization', 'X-Request-ID'],
             max_age=86400)
        app.logger.info(f"CORS configured for origins: {allowed_origins}")
    else:
        app.logger.warning("No CORS origins configured - API will reject cross-origin requests")

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())

    @app.after_request
    def echo_request_id(response):
        response.headers['X-Request-ID'] = g.get('request_id', '')
        return response

    # --- Rate Limiter Setup ---
    if app.config.get("TESTING"):
        app.config['RATELIMIT_ENABLED'] = False
        app.config['RATELIMIT_DEFAULT_LIMITS_ENABLED'] = False
    else:
        app.config.setdefault('RATELIMIT_ENABLED', True)
        app.config.setdefault('RATELIMIT_DEFAULT', "600 per minute")

    limiter = Limiter(key_func=get_remote_address)
    limiter.init_app(app)

    # --- Database Setup ---
    db.init_app(app)
    Migrate(app, db)

    # --- JWT Setup ---
    jwt = JWTManager(app)
    register_jwt_handlers(jwt)

    # --- Game services ---
    game_config = GameConfigManager.from_app_config(app.config)
    event_bus = EventBus()
    ledger = Ledger(event_bus=event_bus, write_timeout=app.config.get('LEDGER_WRITE_TIMEOUT', 5.0))
    settlement = SettlementOrchestrator(ledger, build_game_registry(game_config), event_bus=event_bus)
    crash_scheduler = CrashRoundScheduler(settlement, event_bus=event_bus, app=app)

    app.game_config = game_config
    app.event_bus = event_bus
    app.ledger = ledger
    app.settlement = settlement
    app.crash_scheduler = crash_scheduler

    # --- WebSocket Setup ---
    socketio = SocketIO(app,
                        cors_allowed_origins=allowed_origins,
                        async_mode='threading',
                        logger=app.logger,
                        engineio_logger=False)
    websocket_manager = WebSocketManager(socketio, event_bus)
    app.socketio = socketio
    app.websocket_manager = websocket_manager

    if app.config.get('CRASH_SCHEDULER_ENABLED') and not app.config.get('TESTING', False):
        crash_scheduler.start()

    # --- Error Handlers ---
    def error_response(status_code, error_code, status_message, details=None, action_button=None):
        return jsonify({
            'request_id': g.get('request_id', 'N/A'),
            'status': False,
            'error_code': error_code,
            'status_message': status_message,
            'details': details if details is not None else {},
            'action_button': action_button
        }), status_code

    @app.errorhandler(AppException)
    def handle_app_exception(e):
        current_app.logger.log(
            logging.ERROR if e.status_code >= 500 else logging.WARNING,
            f"AppException: {e.error_code} - {e.status_message} - Details: {e.details}",
            exc_info=e.status_code >= 500
        )
        return error_response(e.status_code, e.error_code, e.status_message, e.details, e.action_button or None)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        current_app.logger.warning(f"Validation error: {e.messages}")
        return error_response(
            HTTPStatus.UNPROCESSABLE_ENTITY, ErrorCodes.VALIDATION_ERROR,
            'Input validation failed.', {'errors': e.messages}
        )

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        current_app.logger.error("Database error", exc_info=True)
        return error_response(
            HTTPStatus.INTERNAL_SERVER_ERROR, ErrorCodes.INTERNAL_SERVER_ERROR,
            'A database error occurred. Please try again later.'
        )

    @app.errorhandler(NoAuthorizationError)
    def handle_no_auth_error(e):
        current_app.logger.warning(f"JWT NoAuthorizationError: {str(e)}")
        return error_response(
            HTTPStatus.UNAUTHORIZED, ErrorCodes.UNAUTHENTICATED,
            'Missing or invalid authorization token.', {'original_error': str(e)}
        )

    @app.errorhandler(WerkzeugHTTPException)
    def handle_werkzeug_http_exception(e):
        error_code = ErrorCodes.GENERIC_ERROR
        if e.code == 404:
            error_code = ErrorCodes.NOT_FOUND
        elif e.code == 405:
            error_code = ErrorCodes.METHOD_NOT_ALLOWED
        elif e.code == 401:
            error_code = ErrorCodes.UNAUTHENTICATED
        elif e.code == 403:
            error_code = ErrorCodes.FORBIDDEN
        elif e.code >= 500:
            error_code = ErrorCodes.INTERNAL_SERVER_ERROR
        current_app.logger.warning(f"HTTPException: {e.code} - {e.name}: {e.description}")
        return error_response(e.code, error_code, e.name, {'description': e.description})

    @app.errorhandler(Exception)
    def handle_global_exception(e):
        current_app.logger.critical("Unhandled exception", exc_info=True)
        return error_response(
            HTTPStatus.INTERNAL_SERVER_ERROR, ErrorCodes.INTERNAL_SERVER_ERROR,
            'An unexpected internal server error occurred. Please try again later.'
        )

    # Register Blueprints
    app.register_blueprint(dice_bp)
    app.register_blueprint(coinflip_bp)
    app.register_blueprint(slots_bp)
    app.register_blueprint(mines_bp)
    app.register_blueprint(crash_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(games_bp)

    register_cli_commands(app)

    return app, socketio


def register_cli_commands(app):
    """Operator commands: `flask <command>`."""

    @app.cli.command("create-player")
    @click.argument('username')
    @click.option('-b', '--balance', default='0', help='Opening deposit')
    def create_player_command(username, balance):
        """Creates a player, optionally with an opening deposit."""
        try:
            opening = to_amount(balance)
        except ValueError as e:
            raise click.ClickException(str(e))
        if db.session.scalar(select(Player).filter_by(username=username)):
            raise click.ClickException(f"Player '{username}' already exists.")
        player = Player(username=username)
        db.session.add(player)
        db.session.commit()
        if opening > 0:
            app.ledger.deposit(player.id, opening, memo='Opening deposit')
        click.echo(f"Created player {player.id} '{username}' with balance {app.ledger.get_balance(player.id)}")

    @app.cli.command("credit-player")
    @click.argument('player_id', type=int)
    @click.argument('amount')
    @click.option('-c', '--category', type=click.Choice([LEDGER_DEPOSIT, LEDGER_BONUS]), default=LEDGER_DEPOSIT)
    @click.option('-m', '--memo', default=None)
    @click.option('-k', '--idempotency-key', default=None)
    def credit_player_command(player_id, amount, category, memo, idempotency_key):
        """Deposits to or grants a bonus to a player."""
        write = app.ledger.deposit if category == LEDGER_DEPOSIT else app.ledger.bonus
        try:
            entry = write(player_id, amount, memo=memo or category.capitalize(), idempotency_key=idempotency_key)
        except (AppException, ValueError) as e:
            raise click.ClickException(getattr(e, 'status_message', str(e)))
        click.echo(f"Credited {entry.amount} ({category}) to player {player_id}; balance {entry.balance_after}")

    @app.cli.command("debit-player")
    @click.argument('player_id', type=int)
    @click.argument('amount')
    @click.option('-m', '--memo', default='Withdrawal')
    @click.option('-k', '--idempotency-key', default=None)
    def debit_player_command(player_id, amount, memo, idempotency_key):
        """Withdraws from a player's balance. Refused if the balance is short."""
        try:
            entry = app.ledger.withdraw(player_id, amount, memo=memo, idempotency_key=idempotency_key)
        except (AppException, ValueError) as e:
            raise click.ClickException(getattr(e, 'status_message', str(e)))
        click.echo(f"Debited {-entry.amount} from player {player_id}; balance {entry.balance_after}")

    @app.cli.command("anonymize-player")
    @click.argument('player_id', type=int)
    def anonymize_player_command(player_id):
        """Removes a player's identity while keeping every ledger entry."""
        try:
            player = app.ledger.anonymize_player(player_id)
        except AppException as e:
            raise click.ClickException(e.status_message)
        click.echo(f"Player {player_id} anonymized as '{player.username}'")

    @app.cli.command("reconcile-wagers")
    @click.option('--older-than', type=int, default=60, help='Only void staked instant wagers older than this many seconds')
    def reconcile_wagers_command(older_than):
        """Retries unconfirmed payouts and voids stuck instant wagers."""
        summary = app.settlement.reconcile_pending(older_than_seconds=older_than)
        click.echo(
            f"Checked {summary['checked']} wagers: {summary['settled']} settled, "
            f"{summary['voided']} voided, {summary['failed']} failed"
        )


if __name__ == '__main__':
    app, socketio = create_app()
    socketio.run(app, host='0.0.0.0', port=5000, debug=app.debug)
