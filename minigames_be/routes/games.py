from flask import Blueprint, jsonify, current_app
from http import HTTPStatus

from minigames_be.exceptions import GameNotFoundException

games_bp = Blueprint('games', __name__, url_prefix='/api/games')


@games_bp.route('', methods=['GET'])
def list_games():
    """Public per-game configuration: limits, paytables and round timing."""
    return jsonify({'status': True, 'games': current_app.game_config.all_client_configs()}), HTTPStatus.OK


@games_bp.route('/<string:game>', methods=['GET'])
def game_details(game):
    config = current_app.game_config.get_client_config(game)
    if config is None:
        raise GameNotFoundException(status_message=f"Game '{game}' not found.", details={'game': game})
    return jsonify({'status': True, 'game': config}), HTTPStatus.OK
