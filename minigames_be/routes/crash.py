from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus
from marshmallow import ValidationError
from sqlalchemy import select

from ..models import db, CrashRound
from ..schemas import CrashBetSchema, CrashRoundSchema, WagerSchema
from ..services.wager_session import QUEUED
from ..utils.auth import is_authenticated, require_player_id
from ..utils.crash_helper import crash_point_from_draw
from ..utils.rng import first_draw, hash_server_seed
from minigames_be.exceptions import NotFoundException, ValidationException

crash_bp = Blueprint('crash', __name__, url_prefix='/api/crash')


def _wager_response(wager, player_id, status_code=HTTPStatus.OK, **extra):
    body = {
        'status': True,
        'wager': WagerSchema().dump(wager),
        'balance': str(current_app.ledger.get_balance(player_id))
    }
    body.update(extra)
    return jsonify(body), status_code


@crash_bp.route('/bet', methods=['POST'])
@jwt_required()
def crash_place_bet():
    player_id = require_player_id()
    try:
        loaded_data = CrashBetSchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        raise ValidationException(status_message="Input validation failed.", details=e.messages)

    wager = current_app.crash_scheduler.place_bet(
        player_id, loaded_data['stake'],
        auto_cashout=loaded_data['auto_cashout'],
        idempotency_key=loaded_data['idempotency_key']
    )
    queued = wager.phase == QUEUED
    current_app.logger.info(
        f"Player {player_id} {'queued' if queued else 'placed'} crash bet {wager.id} for round {wager.round_number}"
    )
    return _wager_response(wager, player_id, HTTPStatus.CREATED, queued=queued)


@crash_bp.route('/cancel', methods=['POST'])
@jwt_required()
def crash_cancel_bet():
    player_id = require_player_id()
    wager = current_app.crash_scheduler.cancel_bet(player_id)
    return _wager_response(wager, player_id)


@crash_bp.route('/cashout', methods=['POST'])
@jwt_required()
def crash_cash_out():
    player_id = require_player_id()
    wager = current_app.crash_scheduler.cash_out(player_id)
    current_app.logger.info(f"Player {player_id} cashed out crash bet {wager.id} at {wager.multiplier}x")
    return _wager_response(wager, player_id)


@crash_bp.route('/state', methods=['GET'])
def crash_state():
    """Public round state. With a valid token it also carries the caller's open bet."""
    body = {'status': True, 'round': current_app.crash_scheduler.snapshot()}
    if is_authenticated():
        wager = current_app.crash_scheduler.open_bet(require_player_id())
        body['bet'] = WagerSchema().dump(wager) if wager is not None else None
    return jsonify(body), HTTPStatus.OK


@crash_bp.route('/history', methods=['GET'])
def crash_history():
    return jsonify({'status': True, 'history': current_app.crash_scheduler.recent_history()}), HTTPStatus.OK


@crash_bp.route('/rounds/<int:round_number>', methods=['GET'])
def crash_round_details(round_number):
    """Revealed seed material of a finished round, with the recomputed crash point."""
    crash_round = db.session.scalar(select(CrashRound).where(CrashRound.round_number == round_number))
    # rounds still in flight are indistinguishable from missing ones
    if crash_round is None or crash_round.crashed_at is None:
        raise NotFoundException(status_message="Crash round not found.", details={'round_number': round_number})

    game = current_app.settlement.game('crash')
    recomputed = crash_point_from_draw(
        first_draw(crash_round.server_seed, crash_round.client_seed, crash_round.nonce),
        game.house_edge_factor, game.max_crash_point
    )
    return jsonify({
        'status': True,
        'round': CrashRoundSchema().dump(crash_round),
        'verification': {
            'hash_matches': hash_server_seed(crash_round.server_seed) == crash_round.server_seed_hash,
            'recomputed_crash_point': recomputed,
            'crash_point_matches': recomputed == crash_round.crash_point,
        }
    }), HTTPStatus.OK
