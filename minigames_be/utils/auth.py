from flask_jwt_extended import get_current_user, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from minigames_be.exceptions import AuthenticationException
from minigames_be.models import db, Player


def player_identity_lookup(player):
    return str(player.id)


def player_lookup_callback(_jwt_header, jwt_data):
    identity = jwt_data["sub"]
    try:
        player = db.session.get(Player, int(identity))
    except (TypeError, ValueError):
        return None
    # anonymized players keep their rows but can no longer act
    if player is None or not player.is_active:
        return None
    return player


def register_jwt_handlers(jwt):
    jwt.user_identity_loader(player_identity_lookup)
    jwt.user_lookup_loader(player_lookup_callback)


def current_player_id():
    """Id of the player behind the request's access token, or None."""
    try:
        verify_jwt_in_request(optional=True)
        player = get_current_user()
    except (JWTExtendedException, PyJWTError):
        return None
    return player.id if player is not None else None


def is_authenticated():
    return current_player_id() is not None


def require_player_id():
    player_id = current_player_id()
    if player_id is None:
        raise AuthenticationException(status_message="Missing or invalid authorization token.")
    return player_id
