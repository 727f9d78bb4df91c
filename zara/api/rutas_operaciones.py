from flask import Blueprint, jsonify, request, current_app

from zara.auth import require_auth, current_user, SUPERVISOR_ROLES, MANAGEMENT_ROLES
from zara.models.operation import OperationStatus
from zara.services import operation_service
from zara.utils.error_utils import handle_errors, success_response, log_request, PermissionDenied, ValidationError

operaciones_bp = Blueprint('operaciones', __name__)


def _puede_cerrar(user, operacion):
    return operacion.user_id == user.id or user.role in MANAGEMENT_ROLES


@operaciones_bp.route('/operations', methods=['GET'])
@require_auth()
@handle_errors
def listar_operaciones():
    """
    Historial de operaciones.
    Query params: machine_id, user_id, status, limit
    Un operador solo ve las suyas.
    """
    user = current_user()
    status = request.args.get('status')
    if status and status not in OperationStatus.__members__:
        raise ValidationError(f"Status inválido: {status}")

    user_id = request.args.get('user_id', type=int)
    if user.role not in SUPERVISOR_ROLES:
        user_id = user.id

    operaciones = operation_service.list_operations(
        machine_id=request.args.get('machine_id', type=int),
        user_id=user_id,
        status=status,
        limit=request.args.get('limit', 50, type=int)
    )
    return jsonify([op.to_dict() for op in operaciones]), 200


@operaciones_bp.route('/operations/active', methods=['GET'])
@require_auth()
@handle_errors
def operacion_activa():
    """Operación ACTIVE del usuario autenticado (o null)."""
    operacion = operation_service.get_active_operation_for_user(current_user().id)
    return jsonify(operacion.to_dict() if operacion else None), 200


@operaciones_bp.route('/operations/<int:operation_id>/stop', methods=['POST'])
@require_auth()
@handle_errors
def detener_operacion(operation_id):
    data = request.get_json(silent=True) or {}
    user = current_user()
    operacion = operation_service.get_operation(operation_id)
    if not _puede_cerrar(user, operacion):
        raise PermissionDenied('Apenas o operador ou a gerência podem finalizar esta operação')

    log_request('detener_operacion', user_id=user.id, operation_id=operation_id)
    operacion = operation_service.stop_operation(operation_id, notes=data.get('notes'), user_id=user.id)
    return success_response(operacion.to_dict(), 'Operação finalizada')


@operaciones_bp.route('/operations/<int:operation_id>/cancel', methods=['POST'])
@require_auth()
@handle_errors
def cancelar_operacion(operation_id):
    """Body: { reason }"""
    data = request.get_json(silent=True) or {}
    user = current_user()
    operacion = operation_service.get_operation(operation_id)
    if not _puede_cerrar(user, operacion):
        raise PermissionDenied('Apenas o operador ou a gerência podem cancelar esta operação')

    log_request('cancelar_operacion', user_id=user.id, operation_id=operation_id)
    operacion = operation_service.cancel_operation(operation_id, data.get('reason'), user_id=user.id)
    return success_response(operacion.to_dict(), 'Operação cancelada')


@operaciones_bp.route('/operations/sweep', methods=['POST'])
@require_auth(roles=MANAGEMENT_ROLES)
@handle_errors
def barrer_operaciones():
    """
    Ejecuta a demanda el barrido de operaciones travadas.
    Body opcional: { max_age_hours }
    """
    data = request.get_json(silent=True) or {}
    horas = data.get('max_age_hours', current_app.config.get('STUCK_OPERATION_MAX_HOURS', 24))
    try:
        horas = float(horas)
    except (TypeError, ValueError):
        raise ValidationError('max_age_hours deve ser numérico')
    if horas <= 0:
        raise ValidationError('max_age_hours deve ser positivo')

    log_request('barrer_operaciones', user_id=current_user().id, max_age_hours=horas)
    resultado = operation_service.sweep_stuck_operations(max_age_hours=horas)
    return success_response(resultado, f"{len(resultado['cancelled'])} operação(ões) cancelada(s)")
