from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus
from marshmallow import ValidationError

from ..schemas import SlotSpinSchema, WagerSchema
from ..utils.auth import require_player_id
from minigames_be.exceptions import GameNotFoundException, ValidationException

slots_bp = Blueprint('slots', __name__, url_prefix='/api/slots')

SLOT_GAMES = ('card_coming', 'taka_coming')


@slots_bp.route('/<string:game>/spin', methods=['POST'])
@jwt_required()
def slots_spin(game):
    if game not in SLOT_GAMES:
        raise GameNotFoundException(status_message=f"Slot '{game}' not found.", details={'game': game})
    player_id = require_player_id()
    try:
        loaded_data = SlotSpinSchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        raise ValidationException(status_message="Input validation failed.", details=e.messages)

    wager = current_app.settlement.play_instant(
        player_id, game, loaded_data['stake'],
        idempotency_key=loaded_data['idempotency_key']
    )
    current_app.logger.info(f"Player {player_id} spun {game}, wager {wager.id} paid {wager.payout}")
    return jsonify({
        'status': True,
        'wager': WagerSchema().dump(wager),
        'balance': str(current_app.ledger.get_balance(player_id))
    }), HTTPStatus.OK
