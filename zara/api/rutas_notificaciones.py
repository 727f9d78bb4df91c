from flask import Blueprint, jsonify, request

from zara.auth import require_auth, current_user
from zara.services import notification_service
from zara.utils.error_utils import handle_errors, success_response

notificaciones_bp = Blueprint('notificaciones', __name__)


@notificaciones_bp.route('/notifications', methods=['GET'])
@require_auth()
@handle_errors
def listar_notificaciones():
    """
    Query params:
        - page, limit: paginación (limit máximo 100)
        - unread_only: 'true' para solo no leídas
        - type: MACHINE_STATUS | OPERATION | SYSTEM
    """
    resultado = notification_service.get_notifications(
        current_user().id,
        page=request.args.get('page', 1, type=int),
        limit=request.args.get('limit', 20, type=int),
        unread_only=request.args.get('unread_only', 'false').lower() == 'true',
        type=request.args.get('type')
    )
    return jsonify(resultado), 200


@notificaciones_bp.route('/notifications/unread-count', methods=['GET'])
@require_auth()
@handle_errors
def contar_no_leidas():
    return jsonify({'count': notification_service.unread_count(current_user().id)}), 200


@notificaciones_bp.route('/notifications/<int:notification_id>/read', methods=['PUT'])
@require_auth()
@handle_errors
def marcar_leida(notification_id):
    notificacion = notification_service.mark_as_read(notification_id, current_user().id)
    return jsonify(notificacion.to_dict()), 200


@notificaciones_bp.route('/notifications/read-all', methods=['PUT'])
@require_auth()
@handle_errors
def marcar_todas_leidas():
    actualizadas = notification_service.mark_all_as_read(current_user().id)
    return success_response({'updated': actualizadas}, 'Notificações marcadas como lidas')
