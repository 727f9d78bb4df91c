"""
Publicación de eventos en tiempo real (Socket.IO).
El núcleo solo emite; el transporte lo resuelve Flask-SocketIO.
"""
import logging

from zara.extensions import socketio

logger = logging.getLogger('zara.events')

OPERATION_STARTED = 'machine:operation-started'
OPERATION_ENDED = 'machine:operation-ended'
OPERATION_CANCELLED = 'machine:operation-cancelled'
STATUS_CHANGED = 'machine:status:changed'
SPEED_UPDATED = 'machine:production-speed-updated'
PRODUCTION_UPDATE = 'production:update'
NEW_NOTIFICATION = 'new-notification'

LEADERSHIP_ROOM = 'leadership'
OPERATORS_ROOM = 'operators'


def user_room(user_id):
    return f"user:{user_id}"


def publish(event, payload, room=None):
    """Emite el evento a todos los clientes o solo a una sala."""
    logger.debug(f"emit {event} room={room}")
    if room is None:
        socketio.emit(event, payload)
    else:
        socketio.emit(event, payload, to=room)
