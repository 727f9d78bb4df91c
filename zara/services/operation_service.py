"""
Operation Lifecycle Manager.

Reglas:
    - Como máximo una operación ACTIVE por máquina.
    - Como máximo una operación ACTIVE por usuario en todo el sistema.
    - ACTIVE -> COMPLETED (stop) o ACTIVE -> CANCELLED (cancel / barrido).
    - COMPLETED y CANCELLED son finales.

Las reglas se verifican antes de escribir, pero quien las garantiza bajo
concurrencia son los índices parciales de machine_operation y los UPDATE
condicionados a status = 'ACTIVE'.
"""
import logging
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from zara.extensions import db
from zara.models.machine import Machine, MachineStatus, record_status_change
from zara.models.operation import Operation, OperationStatus
from zara.models.user import User
from zara.services import events, permission_gate, shift_service
from zara.services import notification_service as notifications
from zara.utils.error_utils import (
    NotFound, InvalidState, PermissionDenied, ConflictActiveOperation, log_operation
)
from zara.utils.retry import retry_on_storage_error
from zara.utils.time_utils import utcnow

logger = logging.getLogger('zara.operations')

STUCK_NOTE = 'Operação cancelada automaticamente - tempo excedido (>{hours}h)'


def get_active_operation_for_user(user_id):
    return Operation.query.filter_by(user_id=user_id, status=OperationStatus.ACTIVE.value).first()


def get_active_operation_for_machine(machine_id):
    return Operation.query.filter_by(machine_id=machine_id, status=OperationStatus.ACTIVE.value).first()


def get_operation(operation_id):
    operacion = db.session.get(Operation, operation_id)
    if operacion is None:
        raise NotFound('Operação não encontrada')
    return operacion


def list_operations(machine_id=None, user_id=None, status=None, limit=50):
    query = Operation.query
    if machine_id is not None:
        query = query.filter_by(machine_id=machine_id)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Operation.start_time.desc(), Operation.id.desc()).limit(limit).all()


def _safe_accrual(operacion, now):
    try:
        shift_service.accrue_production(operacion.machine, operacion, now=now)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Falha na apuração de produção da operação {operacion.id}: {e}")


@retry_on_storage_error(conflict_message='Máquina ou operador já possui operação ativa')
def _create_operation(user, machine, notes, now):
    """Lectura optimista + inserción; el índice único decide si hay carrera."""
    if get_active_operation_for_user(user.id) is not None:
        raise ConflictActiveOperation('Operador já possui operação ativa', code='OPERATOR_BUSY')
    if get_active_operation_for_machine(machine.id) is not None:
        raise ConflictActiveOperation('Máquina já está em operação', code='MACHINE_IN_USE')

    operacion = Operation(
        machine_id=machine.id,
        user_id=user.id,
        start_time=now,
        status=OperationStatus.ACTIVE.value,
        notes=notes
    )
    db.session.add(operacion)
    db.session.flush()

    record_status_change(machine, MachineStatus.RUNNING, user_id=user.id, reason='Operação iniciada')
    db.session.commit()
    return operacion


def start_operation(user_id, machine_id, notes=None, now=None):
    """
    Inicia una operación del usuario en la máquina.

    Raises:
        NotFound: usuario o máquina inexistente
        InvalidState: máquina inactiva o en mantenimiento
        PermissionDenied: sin permiso can_operate
        ConflictActiveOperation: el usuario o la máquina ya tienen operación activa
    """
    now = now or utcnow()
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFound('Usuário não encontrado')
    machine = db.session.get(Machine, machine_id)
    if machine is None:
        raise NotFound('Máquina não encontrada', code='MACHINE_NOT_FOUND')
    if not machine.is_active:
        raise InvalidState('Máquina inativa', code='MACHINE_INACTIVE')
    if machine.status == MachineStatus.MAINTENANCE.value:
        raise InvalidState('Máquina em manutenção', code='MACHINE_IN_MAINTENANCE')

    if not permission_gate.check(user.id, machine.id, 'operate'):
        raise PermissionDenied('Sem permissão para operar esta máquina')

    operacion = _create_operation(user, machine, notes, now)

    # Abre la ventana del turno para que la lectura inmediata ya tenga fila
    _safe_accrual(operacion, now)

    log_operation('start_operation', operation_id=operacion.id, machine_id=machine.id, user_id=user.id)
    events.publish(events.OPERATION_STARTED, {
        'machineId': machine.id,
        'machineName': machine.name,
        'operatorId': user.id,
        'operatorName': user.name,
        'operation': operacion.to_dict(),
        'timestamp': now.isoformat()
    })
    events.publish(events.PRODUCTION_UPDATE, {
        'machineId': machine.id,
        'status': machine.status,
        'timestamp': now.isoformat()
    })
    notifications.dispatch(notifications.operation_event('operation_started', operacion, machine, user), now=now)
    return operacion


def _release_machine(machine, user_id, reason):
    """Pasa la máquina a PARADA salvo que otra operación siga activa en ella."""
    if get_active_operation_for_machine(machine.id) is not None:
        return None
    return record_status_change(machine, MachineStatus.STOPPED, user_id=user_id, reason=reason)


@retry_on_storage_error(conflict_message='Operação alterada por outro processo')
def _close_operation(operation_id, new_status, now, notes, user_id, reason):
    """
    UPDATE condicionado: solo cierra si sigue ACTIVE. Cero filas afectadas
    significa que otro proceso la cerró antes.
    """
    valores = {'status': new_status, 'end_time': now}
    if notes is not None:
        valores['notes'] = notes
    afectadas = Operation.query.filter(
        Operation.id == operation_id,
        Operation.status == OperationStatus.ACTIVE.value
    ).update(valores, synchronize_session=False)
    if afectadas == 0:
        db.session.rollback()
        raise InvalidState('Operação não está ativa', code='OPERATION_NOT_ACTIVE')

    operacion = db.session.get(Operation, operation_id)
    db.session.refresh(operacion)
    _release_machine(operacion.machine, user_id, reason)
    db.session.commit()
    return operacion


def stop_operation(operation_id, notes=None, user_id=None, now=None):
    """
    Finaliza (COMPLETED) una operación activa.

    Raises:
        NotFound: la operación no existe
        InvalidState: la operación no está ACTIVE
    """
    now = now or utcnow()
    operacion = get_operation(operation_id)
    if not operacion.is_active:
        raise InvalidState('Operação não está ativa', code='OPERATION_NOT_ACTIVE')

    # Última acumulación mientras todavía está ACTIVE y la máquina FUNCIONANDO
    _safe_accrual(operacion, now)

    operacion = _close_operation(
        operation_id, OperationStatus.COMPLETED.value, now, notes,
        user_id or operacion.user_id, 'Operação finalizada'
    )
    machine, user = operacion.machine, operacion.user

    log_operation('stop_operation', operation_id=operacion.id, machine_id=machine.id)
    events.publish(events.OPERATION_ENDED, {
        'machineId': machine.id,
        'machineName': machine.name,
        'operatorId': user.id,
        'operatorName': user.name,
        'operation': operacion.to_dict(),
        'timestamp': now.isoformat()
    })
    notifications.dispatch(notifications.operation_event('operation_ended', operacion, machine, user), now=now)
    return operacion


def cancel_operation(operation_id, reason, user_id=None, now=None):
    """
    Cancela una operación activa guardando el motivo en notes.

    Raises:
        NotFound, InvalidState: igual que stop_operation
    """
    now = now or utcnow()
    operacion = get_operation(operation_id)
    if not operacion.is_active:
        raise InvalidState('Operação não está ativa', code='OPERATION_NOT_ACTIVE')

    _safe_accrual(operacion, now)

    operacion = _close_operation(
        operation_id, OperationStatus.CANCELLED.value, now, reason or 'Operação cancelada',
        user_id or operacion.user_id, 'Operação cancelada'
    )
    machine, user = operacion.machine, operacion.user

    log_operation('cancel_operation', operation_id=operacion.id, machine_id=machine.id, reason=reason)
    events.publish(events.OPERATION_CANCELLED, {
        'machineId': machine.id,
        'machineName': machine.name,
        'operatorId': user.id,
        'operation': operacion.to_dict(),
        'reason': reason,
        'timestamp': now.isoformat()
    })
    notifications.dispatch(
        notifications.operation_event('operation_cancelled', operacion, machine, user, reason=reason), now=now
    )
    return operacion


def sweep_stuck_operations(max_age_hours=24, now=None):
    """
    Cancela las operaciones ACTIVE con más de `max_age_hours` y para sus máquinas.
    Cada registro se confirma por separado: si uno falla se registra y se sigue
    con el resto. Volver a ejecutarlo no cambia nada (ya no quedan ACTIVE viejas).

    Returns:
        dict con 'cancelled' (ids), 'failed' (ids) y 'machines' (ids detenidas)
    """
    now = now or utcnow()
    if float(max_age_hours).is_integer():
        # 24.0 y 24 dejan la misma nota
        max_age_hours = int(max_age_hours)
    limite = now - timedelta(hours=max_age_hours)
    nota = STUCK_NOTE.format(hours=max_age_hours)

    candidatas = [op.id for op in Operation.query.filter(
        Operation.status == OperationStatus.ACTIVE.value,
        Operation.start_time < limite
    ).order_by(Operation.start_time).all()]

    canceladas, fallidas, maquinas = [], [], set()
    for operation_id in candidatas:
        try:
            afectadas = Operation.query.filter(
                Operation.id == operation_id,
                Operation.status == OperationStatus.ACTIVE.value
            ).update({'status': OperationStatus.CANCELLED.value, 'end_time': now, 'notes': nota},
                     synchronize_session=False)
            if afectadas == 0:
                # Cerrada por un stop/cancel concurrente
                db.session.rollback()
                continue
            operacion = db.session.get(Operation, operation_id)
            db.session.refresh(operacion)
            _release_machine(operacion.machine, None, 'Operação travada cancelada automaticamente')
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            fallidas.append(operation_id)
            log_operation('sweep_stuck_operation', status='error', operation_id=operation_id, error=str(e))
            continue

        canceladas.append(operacion.id)
        maquinas.add(operacion.machine_id)
        horas = round((now - operacion.start_time).total_seconds() / 3600, 1)
        log_operation('sweep_stuck_operation', status='warning', operation_id=operacion.id,
                      machine_id=operacion.machine_id, user_id=operacion.user_id, hours_active=horas)
        events.publish(events.OPERATION_CANCELLED, {
            'machineId': operacion.machine_id,
            'operatorId': operacion.user_id,
            'operation': operacion.to_dict(),
            'reason': nota,
            'timestamp': now.isoformat()
        })
        notifications.dispatch(
            notifications.operation_event('operation_auto_cancelled', operacion, operacion.machine,
                                          operacion.user, reason=nota, hours=max_age_hours),
            now=now
        )

    log_operation('sweep_stuck_operations', found=len(candidatas), cancelled=len(canceladas), failed=len(fallidas))
    return {'cancelled': canceladas, 'failed': fallidas, 'machines': sorted(maquinas)}
