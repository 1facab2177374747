from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus
from marshmallow import ValidationError

from ..schemas import CoinFlipPlaySchema, WagerSchema
from ..utils.auth import require_player_id
from minigames_be.exceptions import ValidationException

coinflip_bp = Blueprint('coinflip', __name__, url_prefix='/api/coinflip')


@coinflip_bp.route('/play', methods=['POST'])
@jwt_required()
def coinflip_play():
    player_id = require_player_id()
    try:
        loaded_data = CoinFlipPlaySchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        raise ValidationException(status_message="Input validation failed.", details=e.messages)

    wager = current_app.settlement.play_instant(
        player_id, 'coinflip', loaded_data['stake'],
        prediction=loaded_data['prediction'],
        idempotency_key=loaded_data['idempotency_key']
    )
    current_app.logger.info(f"Player {player_id} coin flip wager {wager.id} -> {wager.status}")
    return jsonify({
        'status': True,
        'wager': WagerSchema().dump(wager),
        'balance': str(current_app.ledger.get_balance(player_id))
    }), HTTPStatus.OK
