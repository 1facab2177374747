from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus
from marshmallow import ValidationError

from ..schemas import DicePlaySchema, WagerSchema
from ..utils.auth import require_player_id
from minigames_be.exceptions import ValidationException

dice_bp = Blueprint('dice', __name__, url_prefix='/api/dice')


@dice_bp.route('/play', methods=['POST'])
@jwt_required()
def dice_play():
    player_id = require_player_id()
    try:
        loaded_data = DicePlaySchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        raise ValidationException(status_message="Input validation failed.", details=e.messages)

    wager = current_app.settlement.play_instant(
        player_id, 'dice', loaded_data['stake'],
        prediction=loaded_data['prediction'],
        idempotency_key=loaded_data['idempotency_key']
    )
    current_app.logger.info(
        f"Player {player_id} dice wager {wager.id}: {loaded_data['prediction']} -> {wager.status}, payout {wager.payout}"
    )
    return jsonify({
        'status': True,
        'wager': WagerSchema().dump(wager),
        'balance': str(current_app.ledger.get_balance(player_id))
    }), HTTPStatus.OK
