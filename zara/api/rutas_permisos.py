from flask import Blueprint, jsonify, request

from zara.auth import require_auth, current_user, SUPERVISOR_ROLES
from zara.services import permission_gate
from zara.utils.error_utils import handle_errors, success_response, validate_required, PermissionDenied

permisos_bp = Blueprint('permisos', __name__)


@permisos_bp.route('/permissions', methods=['GET'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def listar_permisos():
    """Query params: user_id, machine_id"""
    permisos = permission_gate.list_permissions(
        user_id=request.args.get('user_id', type=int),
        machine_id=request.args.get('machine_id', type=int)
    )
    return jsonify([p.to_dict() for p in permisos]), 200


@permisos_bp.route('/permissions/user/<int:user_id>', methods=['GET'])
@require_auth()
@handle_errors
def permisos_de_usuario(user_id):
    user = current_user()
    if user.id != user_id and user.role not in SUPERVISOR_ROLES:
        raise PermissionDenied('Sem permissão para consultar outro usuário')
    permisos = permission_gate.list_permissions(user_id=user_id)
    return jsonify([p.to_dict() for p in permisos]), 200


@permisos_bp.route('/permissions/check', methods=['GET'])
@require_auth()
@handle_errors
def verificar_permiso():
    """
    Query params: machine_id, capability (view|operate|maintain|edit), user_id opcional.
    """
    user = current_user()
    machine_id = request.args.get('machine_id', type=int)
    capability = request.args.get('capability', 'view')
    user_id = request.args.get('user_id', user.id, type=int)
    if user_id != user.id and user.role not in SUPERVISOR_ROLES:
        raise PermissionDenied('Sem permissão para consultar outro usuário')
    validate_required({'machine_id': machine_id}, ['machine_id'])

    permitido = permission_gate.check(user_id, machine_id, capability)
    return jsonify({
        'user_id': user_id,
        'machine_id': machine_id,
        'capability': capability,
        'allowed': permitido
    }), 200


@permisos_bp.route('/permissions', methods=['POST'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def conceder_permiso():
    """Body: { user_id, machine_id, can_view?, can_operate?, can_maintain?, can_edit? }"""
    data = request.get_json(silent=True)
    validate_required(data, ['user_id', 'machine_id'])
    permiso = permission_gate.grant(
        int(data['user_id']), int(data['machine_id']), data, granted_by=current_user().id
    )
    return jsonify(permiso.to_dict()), 201


@permisos_bp.route('/permissions/<int:permission_id>', methods=['PUT'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def editar_permiso(permission_id):
    data = request.get_json(silent=True) or {}
    permiso = permission_gate.update_permission(permission_id, data)
    return jsonify(permiso.to_dict()), 200


@permisos_bp.route('/permissions/<int:permission_id>', methods=['DELETE'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def revocar_permiso(permission_id):
    permission_gate.revoke(permission_id)
    return success_response(message='Permissão removida')


@permisos_bp.route('/permissions/bulk', methods=['POST'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def conceder_en_lote():
    """Body: { user_id, machine_ids: [...], permissions: { can_view, ... } }"""
    data = request.get_json(silent=True)
    validate_required(data, ['user_id', 'machine_ids'])
    permisos = permission_gate.bulk_grant(
        int(data['user_id']),
        [int(m) for m in data['machine_ids']],
        data.get('permissions') or {},
        granted_by=current_user().id
    )
    return success_response([p.to_dict() for p in permisos], f"{len(permisos)} permissões aplicadas", 201)
