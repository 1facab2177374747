"""
WebSocket Manager for Real-time Game Communications
Relays EventBus events to Socket.IO rooms: round updates to everyone in the
crash room, balance and settlement updates to the owning player only.
"""

from flask_socketio import emit, join_room, leave_room, disconnect
from flask_jwt_extended import decode_token
from flask import request
from datetime import datetime, timezone
import logging

from minigames_be.services.event_bus import BALANCE_CHANGED, ROUND_PHASE_CHANGED, WAGER_SETTLED

logger = logging.getLogger(__name__)

CRASH_ROOM = 'crash'


def player_room(player_id):
    return f'player_{player_id}'


class WebSocketManager:
    def __init__(self, socketio=None, event_bus=None):
        self.socketio = socketio
        self.connected_players = {}  # socket_id -> player_id
        self.crash_room = set()
        if socketio is not None:
            self.init_socketio(socketio)
        if event_bus is not None:
            self.attach(event_bus)

    def init_socketio(self, socketio):
        self.socketio = socketio
        self.socketio.on_event('connect', self.handle_connect)
        self.socketio.on_event('disconnect', self.handle_disconnect)
        self.socketio.on_event('join_crash', self.handle_join_crash)
        self.socketio.on_event('leave_crash', self.handle_leave_crash)

    def attach(self, event_bus):
        event_bus.subscribe(ROUND_PHASE_CHANGED, self.broadcast_round_update)
        event_bus.subscribe(BALANCE_CHANGED, self.relay_balance_changed)
        event_bus.subscribe(WAGER_SETTLED, self.relay_wager_settled)

    def authenticate_player(self, auth_token=None):
        """Player id from a bearer token or the access token cookie, or None."""
        try:
            if not auth_token:
                auth_token = request.cookies.get('access_token_cookie')
            if not auth_token:
                return None
            if auth_token.startswith('Bearer '):
                auth_token = auth_token[7:]
            player_id = decode_token(auth_token).get('sub')
            return int(player_id) if player_id else None
        except Exception as e:
            logger.warning(f"WebSocket authentication failed: {str(e)}")
            return None

    def handle_connect(self, auth=None):
        auth_token = request.args.get('token') or (auth.get('token') if auth else None)
        player_id = self.authenticate_player(auth_token)

        if not player_id:
            logger.warning("WebSocket connection refused - invalid authentication")
            disconnect()
            return False

        self.connected_players[request.sid] = player_id
        join_room(player_room(player_id))
        logger.info(f"Player {player_id} connected via WebSocket (socket: {request.sid})")
        emit('connection_status', {'status': 'connected', 'player_id': player_id})
        return True

    def handle_disconnect(self, *args):
        player_id = self.connected_players.pop(request.sid, None)
        if player_id:
            self.crash_room.discard(request.sid)
            logger.info(f"Player {player_id} disconnected from WebSocket")

    def handle_join_crash(self, data=None):
        if request.sid not in self.connected_players:
            emit('error', {'message': 'Authentication required'})
            return
        join_room(CRASH_ROOM)
        self.crash_room.add(request.sid)
        emit('room_joined', {'room': CRASH_ROOM, 'success': True})

    def handle_leave_crash(self, data=None):
        leave_room(CRASH_ROOM)
        self.crash_room.discard(request.sid)
        emit('room_left', {'room': CRASH_ROOM})

    # Event relays
    def broadcast_round_update(self, round_data):
        if not self.socketio:
            return
        self.socketio.emit(
            'crash_update',
            {
                'type': 'crash_update',
                'round': round_data,
                'timestamp': datetime.now(timezone.utc).isoformat()
            },
            room=CRASH_ROOM
        )

    def relay_balance_changed(self, payload):
        if not self.socketio:
            return
        self.socketio.emit(
            'balance_update',
            {
                'type': 'balance_update',
                'balance': payload['balance'],
                'amount': payload['amount'],
                'category': payload['category'],
                'timestamp': datetime.now(timezone.utc).isoformat()
            },
            room=player_room(payload['player_id'])
        )

    def relay_wager_settled(self, payload):
        if not self.socketio:
            return
        self.socketio.emit(
            'wager_settled',
            {
                'type': 'wager_settled',
                'wager': payload,
                'timestamp': datetime.now(timezone.utc).isoformat()
            },
            room=player_room(payload['player_id'])
        )
        logger.debug(f"Relayed settlement of wager {payload['wager_id']} to player {payload['player_id']}")

    def get_connected_players_count(self):
        return len(set(self.connected_players.values()))
