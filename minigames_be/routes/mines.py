from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus
from marshmallow import ValidationError

from ..models import BOARD_ACTIVE
from ..schemas import MinesStartSchema, MinesRevealSchema, MinesBoardSchema
from ..utils.auth import require_player_id
from minigames_be.exceptions import ValidationException

mines_bp = Blueprint('mines', __name__, url_prefix='/api/mines')


def _board_response(board, player_id, status_code=HTTPStatus.OK):
    data = MinesBoardSchema().dump(board)
    if board.status == BOARD_ACTIVE:
        current, upcoming = current_app.settlement.board_multipliers(board)
        data['current_multiplier'] = current
        data['next_multiplier'] = upcoming
    return jsonify({
        'status': True,
        'board': data,
        'balance': str(current_app.ledger.get_balance(player_id))
    }), status_code


@mines_bp.route('/start', methods=['POST'])
@jwt_required()
def mines_start():
    player_id = require_player_id()
    try:
        loaded_data = MinesStartSchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        raise ValidationException(status_message="Input validation failed.", details=e.messages)

    board = current_app.settlement.start_mines(
        player_id, loaded_data['stake'], loaded_data['mine_count'],
        idempotency_key=loaded_data['idempotency_key']
    )
    return _board_response(board, player_id, HTTPStatus.CREATED)


@mines_bp.route('/active', methods=['GET'])
@jwt_required()
def mines_active():
    player_id = require_player_id()
    board = current_app.settlement.active_board(player_id)
    if board is None:
        return jsonify({'status': True, 'board': None}), HTTPStatus.OK
    return _board_response(board, player_id)


@mines_bp.route('/<int:board_id>/reveal', methods=['POST'])
@jwt_required()
def mines_reveal(board_id):
    player_id = require_player_id()
    try:
        loaded_data = MinesRevealSchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        raise ValidationException(status_message="Input validation failed.", details=e.messages)

    board = current_app.settlement.reveal_cell(player_id, board_id, loaded_data['cell'])
    return _board_response(board, player_id)


@mines_bp.route('/<int:board_id>/cashout', methods=['POST'])
@jwt_required()
def mines_cashout(board_id):
    player_id = require_player_id()
    board = current_app.settlement.cash_out_mines(player_id, board_id)
    current_app.logger.info(f"Player {player_id} cashed out mines board {board_id} for {board.wager.payout}")
    return _board_response(board, player_id)


@mines_bp.route('/<int:board_id>/cancel', methods=['POST'])
@jwt_required()
def mines_cancel(board_id):
    player_id = require_player_id()
    board = current_app.settlement.cancel_mines(player_id, board_id)
    return _board_response(board, player_id)


@mines_bp.route('/multipliers', methods=['GET'])
def mines_multipliers():
    game = current_app.settlement.game('mines')
    mine_count = request.args.get('mine_count', type=int)
    mine_count = game.validate_prediction(mine_count)
    return jsonify({
        'status': True,
        'mine_count': mine_count,
        'multipliers': game.multiplier_table(mine_count)
    }), HTTPStatus.OK
