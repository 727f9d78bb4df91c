from flask import Blueprint, jsonify, request

from zara.auth import require_auth, require_machine_permission, current_user, SUPERVISOR_ROLES, MANAGEMENT_ROLES
from zara.models.operation import OperationStatus
from zara.services import machine_service, operation_service, shift_service
from zara.utils.error_utils import (
    handle_errors, success_response, validate_required, log_request, PermissionDenied, InvalidState
)

# Rutas de máquinas: catálogo, status y ciclo de operación
maquinas_bp = Blueprint('maquinas', __name__)


@maquinas_bp.route('/machines', methods=['GET'])
@require_auth()
@handle_errors
def listar_maquinas():
    """
    Lista de máquinas activas.
    Query params:
        - status: filtra por status (PARADA, FUNCIONANDO, ...)
        - include_inactive: 'true' para incluir las dadas de baja
    """
    status = request.args.get('status')
    incluir_inactivas = request.args.get('include_inactive', 'false').lower() == 'true'
    maquinas = machine_service.list_machines(status=status, include_inactive=incluir_inactivas)

    user = current_user()
    if user.role not in SUPERVISOR_ROLES:
        # Un operador solo ve las máquinas con can_view
        visibles = {p.machine_id for p in user.machine_permissions if p.can_view}
        maquinas = [m for m in maquinas if m.id in visibles]

    activas = {op.machine_id: op for op in operation_service.list_operations(
        status=OperationStatus.ACTIVE.value, limit=1000)}
    respuesta = []
    for m in maquinas:
        item = m.to_dict()
        op = activas.get(m.id)
        item['current_operation'] = op.to_dict() if op else None
        respuesta.append(item)
    return jsonify(respuesta), 200


@maquinas_bp.route('/machines/<int:machine_id>', methods=['GET'])
@require_auth()
@require_machine_permission('view')
@handle_errors
def obtener_maquina(machine_id):
    machine = machine_service.get_machine(machine_id)
    item = machine.to_dict()
    op = operation_service.get_active_operation_for_machine(machine.id)
    item['current_operation'] = op.to_dict() if op else None
    return jsonify(item), 200


@maquinas_bp.route('/machines', methods=['POST'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def crear_maquina():
    data = request.get_json(silent=True)
    validate_required(data, ['code', 'name'])
    log_request('crear_maquina', user_id=current_user().id, code=data.get('code'))
    machine = machine_service.create_machine(data)
    return jsonify(machine.to_dict()), 201


@maquinas_bp.route('/machines/<int:machine_id>', methods=['PUT'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def editar_maquina(machine_id):
    data = request.get_json(silent=True) or {}
    if 'status' in data:
        raise InvalidState('Use PUT /machines/<id>/status para alterar o status')
    machine = machine_service.update_machine(machine_id, data)
    return jsonify(machine.to_dict()), 200


@maquinas_bp.route('/machines/<int:machine_id>', methods=['DELETE'])
@require_auth(roles=MANAGEMENT_ROLES)
@handle_errors
def desactivar_maquina(machine_id):
    machine_service.deactivate_machine(machine_id)
    return success_response(message='Máquina desativada')


@maquinas_bp.route('/machines/<int:machine_id>/status', methods=['PUT'])
@require_auth()
@require_machine_permission('maintain')
@handle_errors
def cambiar_status(machine_id):
    """
    Cambio manual de status. Body: { status, reason?, notes? }
    """
    data = request.get_json(silent=True)
    validate_required(data, ['status'])
    user = current_user()
    log_request('cambiar_status', user_id=user.id, machine_id=machine_id, status=data['status'])

    machine, historial = machine_service.change_status(
        machine_id, data['status'], user_id=user.id,
        reason=data.get('reason'), notes=data.get('notes')
    )
    return jsonify({
        'machine': machine.to_dict(),
        'history': historial.to_dict() if historial else None
    }), 200


@maquinas_bp.route('/machines/<int:machine_id>/production-speed', methods=['PUT'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def cambiar_velocidad(machine_id):
    """Body: { production_speed, target_production? }"""
    data = request.get_json(silent=True)
    validate_required(data, ['production_speed'])
    machine = machine_service.set_production_speed(
        machine_id, data['production_speed'], data.get('target_production'), user=current_user()
    )
    return jsonify(machine.to_dict()), 200


@maquinas_bp.route('/machines/<int:machine_id>/status-history', methods=['GET'])
@require_auth()
@require_machine_permission('view')
@handle_errors
def historial_status(machine_id):
    limit = request.args.get('limit', 50, type=int)
    historial = machine_service.get_status_history(machine_id, limit=limit)
    return jsonify([h.to_dict() for h in historial]), 200


@maquinas_bp.route('/machines/<int:machine_id>/start-operation', methods=['POST'])
@require_auth()
@handle_errors
def iniciar_operacion(machine_id):
    """
    Inicia una operación del usuario autenticado en la máquina.
    El permiso can_operate lo verifica el servicio para todos los roles.
    """
    data = request.get_json(silent=True) or {}
    user = current_user()
    log_request('iniciar_operacion', user_id=user.id, machine_id=machine_id)
    operacion = operation_service.start_operation(user.id, machine_id, notes=data.get('notes'))
    return success_response(operacion.to_dict(), 'Operação iniciada', 201)


@maquinas_bp.route('/machines/<int:machine_id>/end-operation', methods=['POST'])
@require_auth()
@handle_errors
def finalizar_operacion(machine_id):
    """
    Finaliza la operación activa de la máquina.
    Solo el propio operador, salvo MANAGER / ADMIN.
    """
    data = request.get_json(silent=True) or {}
    user = current_user()
    machine_service.get_machine(machine_id)
    operacion = operation_service.get_active_operation_for_machine(machine_id)
    if operacion is None:
        raise InvalidState('Máquina não possui operação ativa', code='OPERATION_NOT_ACTIVE')
    if operacion.user_id != user.id and user.role not in MANAGEMENT_ROLES:
        raise PermissionDenied('Apenas o operador ou a gerência podem finalizar esta operação')

    log_request('finalizar_operacion', user_id=user.id, machine_id=machine_id, operation_id=operacion.id)
    operacion = operation_service.stop_operation(operacion.id, notes=data.get('notes'), user_id=user.id)
    return success_response(operacion.to_dict(), 'Operação finalizada')


@maquinas_bp.route('/machines/<int:machine_id>/production/current-shift', methods=['GET'])
@require_auth()
@require_machine_permission('view')
@handle_errors
def produccion_turno_actual(machine_id):
    window, shift = shift_service.get_current_shift(machine_id)
    return jsonify({
        'machine_id': machine_id,
        'shift_type': window.shift_type,
        'shift_date': window.shift_date.isoformat(),
        'start': window.start.isoformat(),
        'end': window.end.isoformat(),
        'shift': shift.to_dict() if shift else None
    }), 200
