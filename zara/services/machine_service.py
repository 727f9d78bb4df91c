"""
Machine Registry: alta, edición, velocidad, baja lógica y cambios manuales de status.
"""
from sqlalchemy.exc import IntegrityError

from zara.extensions import db
from zara.models.machine import Machine, MachineStatus, MachineStatusHistory, record_status_change
from zara.models.operation import Operation, OperationStatus
from zara.models.user import User
from zara.services import events, shift_service
from zara.services import notification_service as notifications
from zara.utils.error_utils import NotFound, InvalidState, ValidationError, log_operation

# RUNNING solo se alcanza iniciando una operación
MANUAL_STATUSES = (MachineStatus.STOPPED, MachineStatus.MAINTENANCE, MachineStatus.OFF_SHIFT)


def _non_negative(data, campo, tipo=float):
    if campo not in data or data[campo] is None:
        return None
    try:
        valor = tipo(data[campo])
    except (TypeError, ValueError):
        raise ValidationError(f"{campo} deve ser numérico")
    if valor < 0:
        raise ValidationError(f"{campo} não pode ser negativo")
    return valor


def get_machine(machine_id):
    machine = db.session.get(Machine, machine_id)
    if machine is None:
        raise NotFound('Máquina não encontrada', code='MACHINE_NOT_FOUND')
    return machine


def list_machines(status=None, include_inactive=False):
    query = Machine.query
    if not include_inactive:
        query = query.filter(Machine.is_active.is_(True))
    if status:
        try:
            query = query.filter(Machine.status == MachineStatus.parse(status).value)
        except ValueError as e:
            raise ValidationError(str(e))
    return query.order_by(Machine.name).all()


def create_machine(data):
    if not data or not data.get('code') or not data.get('name'):
        raise ValidationError('code e name são obrigatórios')
    velocidad = _non_negative(data, 'production_speed')
    meta = _non_negative(data, 'target_production', int)

    machine = Machine(
        code=str(data['code']).strip(),
        name=str(data['name']).strip(),
        location=data.get('location'),
        production_speed=velocidad or 0.0,
        target_production=meta or 0,
        status=MachineStatus.STOPPED.value,
        is_active=True
    )
    db.session.add(machine)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Já existe uma máquina com o código {data['code']}")

    log_operation('create_machine', machine_id=machine.id, code=machine.code)
    return machine


def update_machine(machine_id, data, now=None):
    """
    Edita datos de catálogo. El status no se toca aquí.
    Un cambio de velocidad solo afecta a la producción futura.
    """
    machine = get_machine(machine_id)
    if 'name' in data and not data['name']:
        raise ValidationError('name não pode ser vazio')
    velocidad = _non_negative(data, 'production_speed')
    meta = _non_negative(data, 'target_production', int)

    if velocidad is not None and velocidad != machine.production_speed:
        activa = _active_operation(machine.id)
        if activa is not None:
            shift_service.checkpoint_segment(machine, activa, now=now)

    if 'name' in data:
        machine.name = data['name']
    if 'location' in data:
        machine.location = data['location']
    if velocidad is not None:
        machine.production_speed = velocidad
    if meta is not None:
        machine.target_production = meta
    db.session.commit()
    return machine


def set_production_speed(machine_id, production_speed, target_production=None, user=None, now=None):
    datos = {'production_speed': production_speed}
    if target_production is not None:
        datos['target_production'] = target_production
    if _non_negative(datos, 'production_speed') is None:
        raise ValidationError('production_speed é obrigatório')

    machine = update_machine(machine_id, datos, now=now)
    events.publish(events.SPEED_UPDATED, {
        'machineId': machine.id,
        'productionSpeed': machine.production_speed,
        'targetProduction': machine.target_production,
        'user': user.name if user else None
    })
    log_operation('set_production_speed', machine_id=machine.id, speed=machine.production_speed)
    return machine


def _active_operation(machine_id):
    return Operation.query.filter_by(machine_id=machine_id, status=OperationStatus.ACTIVE.value).first()


def deactivate_machine(machine_id):
    """Baja lógica: nunca se borra la máquina."""
    machine = get_machine(machine_id)
    if _active_operation(machine.id) is not None:
        raise InvalidState('Máquina possui operação ativa', code='MACHINE_IN_USE')
    machine.is_active = False
    db.session.commit()
    log_operation('deactivate_machine', machine_id=machine.id)
    return machine


def change_status(machine_id, new_status, user_id=None, reason=None, notes=None):
    """
    Cambio manual de status (PARADA / MANUTENCAO / FORA_DE_TURNO).
    FUNCIONANDO se deriva de las operaciones y no se puede fijar a mano, y una
    máquina con operación activa no puede salir de FUNCIONANDO por esta vía.
    """
    try:
        nuevo = MachineStatus.parse(new_status)
    except ValueError as e:
        raise ValidationError(str(e))
    if nuevo not in MANUAL_STATUSES:
        raise InvalidState('Status FUNCIONANDO só é definido ao iniciar uma operação')

    machine = get_machine(machine_id)
    if _active_operation(machine.id) is not None:
        raise InvalidState('Finalize a operação ativa antes de alterar o status', code='MACHINE_IN_USE')

    anterior = machine.status
    user = db.session.get(User, user_id) if user_id is not None else None
    historial = record_status_change(machine, nuevo, user_id=user_id, reason=reason, notes=notes)
    db.session.commit()
    if historial is None:
        return machine, None

    log_operation('change_status', machine_id=machine.id, previous=anterior, new=machine.status)
    events.publish(events.STATUS_CHANGED, {
        'machineId': machine.id,
        'machineName': machine.name,
        'previousStatus': anterior,
        'newStatus': machine.status,
        'user': user.name if user else None,
        'reason': reason,
        'notes': notes
    })
    notifications.dispatch(notifications.machine_status_event(
        machine, anterior, machine.status,
        operator_name=user.name if user else None, reason=reason, notes=notes
    ))
    return machine, historial


def get_status_history(machine_id, limit=50):
    machine = get_machine(machine_id)
    return (MachineStatusHistory.query.filter_by(machine_id=machine.id)
            .order_by(MachineStatusHistory.created_at.desc(), MachineStatusHistory.id.desc())
            .limit(limit).all())
