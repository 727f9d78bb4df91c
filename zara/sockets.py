"""
Handlers de Socket.IO: el cliente se une a sus salas enviando su token.
"""
import logging

from flask_socketio import join_room, emit

from zara.auth import authenticate, SUPERVISOR_ROLES
from zara.services import events
from zara.utils.error_utils import Unauthorized

logger = logging.getLogger('zara.sockets')


def register_socket_handlers(socketio):
    @socketio.on('join')
    def handle_join(data):
        token = (data or {}).get('token')
        try:
            user = authenticate(token or '')
        except Unauthorized as e:
            emit('join:error', e.to_dict())
            return

        salas = [events.user_room(user.id)]
        salas.append(events.LEADERSHIP_ROOM if user.role in SUPERVISOR_ROLES else events.OPERATORS_ROOM)
        for sala in salas:
            join_room(sala)
        logger.info(f"Socket do usuário {user.id} entrou em {salas}")
        emit('join:ok', {'rooms': salas})
