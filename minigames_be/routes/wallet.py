from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from http import HTTPStatus
from marshmallow import ValidationError

from ..schemas import PaginationSchema, LedgerPageSchema
from ..utils.auth import require_player_id
from minigames_be.exceptions import ValidationException

wallet_bp = Blueprint('wallet', __name__, url_prefix='/api/wallet')


@wallet_bp.route('/balance', methods=['GET'])
@jwt_required()
def wallet_balance():
    player_id = require_player_id()
    return jsonify({
        'status': True,
        'balance': str(current_app.ledger.get_balance(player_id))
    }), HTTPStatus.OK


@wallet_bp.route('/ledger', methods=['GET'])
@jwt_required()
def wallet_ledger():
    player_id = require_player_id()
    try:
        page = PaginationSchema().load(request.args)
    except ValidationError as e:
        raise ValidationException(status_message="Invalid pagination parameters.", details=e.messages)

    entries = current_app.ledger.entries_for(player_id, limit=page['limit'], offset=page['offset'])
    data = LedgerPageSchema().dump({
        'limit': page['limit'],
        'offset': page['offset'],
        'balance': current_app.ledger.get_balance(player_id),
        'items': entries,
    })
    return jsonify({'status': True, 'ledger': data}), HTTPStatus.OK
