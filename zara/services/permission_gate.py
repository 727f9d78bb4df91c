"""
Permission Gate: qué puede hacer cada usuario sobre cada máquina.
Por defecto se niega: sin fila en machine_permission no hay ninguna capacidad.
"""
from zara.extensions import db
from zara.models.machine import Machine
from zara.models.permission import MachinePermission, CAPABILITIES
from zara.models.user import User
from zara.utils.error_utils import ValidationError, NotFound, log_operation


def _validar_capacidad(capability):
    if capability not in CAPABILITIES:
        raise ValidationError(
            f"Capacidade inválida: {capability}. Use uma de: {', '.join(CAPABILITIES)}"
        )


def get_permission(user_id, machine_id):
    return MachinePermission.query.filter_by(user_id=user_id, machine_id=machine_id).first()


def check(user_id, machine_id, capability):
    """Retorna True solo si existe la fila y la capacidad está habilitada."""
    _validar_capacidad(capability)
    permiso = get_permission(user_id, machine_id)
    if permiso is None:
        return False
    return permiso.allows(capability)


def _flags_desde_payload(data):
    flags = {}
    for capability, columna in CAPABILITIES.items():
        # Se aceptan tanto 'can_operate' como 'canOperate'
        camel = 'can' + capability.capitalize()
        if columna in data:
            flags[columna] = bool(data[columna])
        elif camel in data:
            flags[columna] = bool(data[camel])
    return flags


def grant(user_id, machine_id, flags, granted_by=None, commit=True):
    """
    Crea o actualiza (upsert) el permiso de un usuario sobre una máquina.

    Args:
        flags: dict con can_view / can_operate / can_maintain / can_edit
    """
    if db.session.get(User, user_id) is None:
        raise NotFound('Usuário não encontrado')
    if db.session.get(Machine, machine_id) is None:
        raise NotFound('Máquina não encontrada')

    permiso = get_permission(user_id, machine_id)
    if permiso is None:
        permiso = MachinePermission(user_id=user_id, machine_id=machine_id)
        db.session.add(permiso)

    for columna, valor in _flags_desde_payload(flags).items():
        setattr(permiso, columna, valor)
    permiso.granted_by = granted_by

    if commit:
        db.session.commit()
        log_operation('grant_permission', user_id=user_id, machine_id=machine_id, granted_by=granted_by)
    return permiso


def update_permission(permission_id, flags):
    permiso = db.session.get(MachinePermission, permission_id)
    if permiso is None:
        raise NotFound('Permissão não encontrada')
    for columna, valor in _flags_desde_payload(flags).items():
        setattr(permiso, columna, valor)
    db.session.commit()
    return permiso


def revoke(permission_id):
    permiso = db.session.get(MachinePermission, permission_id)
    if permiso is None:
        raise NotFound('Permissão não encontrada')
    db.session.delete(permiso)
    db.session.commit()
    log_operation('revoke_permission', permission_id=permission_id)


def list_permissions(user_id=None, machine_id=None):
    query = MachinePermission.query
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if machine_id is not None:
        query = query.filter_by(machine_id=machine_id)
    return query.order_by(MachinePermission.user_id, MachinePermission.machine_id).all()


def bulk_grant(user_id, machine_ids, flags, granted_by=None):
    """Aplica los mismos flags a varias máquinas en una sola transacción."""
    if not machine_ids:
        raise ValidationError('machine_ids não pode ser vazio')
    permisos = [grant(user_id, machine_id, flags, granted_by=granted_by, commit=False)
                for machine_id in machine_ids]
    db.session.commit()
    log_operation('bulk_grant_permission', user_id=user_id, machines=len(permisos))
    return permisos
