"""
Shift Production Aggregator.

Turnos fijos de 12 horas en hora local de planta:
    MORNING 07:00 - 19:00
    NIGHT   19:00 - 07:00 (termina al día siguiente)

La producción se recalcula desde el inicio del tramo (no se incrementa), así
llamar varias veces con el mismo reloj no cuenta doble. El total se guarda con
un UPDATE condicional (total < calculado) para que nunca disminuya, ni siquiera
con dos escritores a la vez.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from io import BytesIO

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from zara.extensions import db
from zara.models.machine import Machine, MachineStatus
from zara.models.operation import Operation, OperationStatus
from zara.models.shift import ShiftData, ShiftType
from zara.services import events
from zara.utils.error_utils import NotFound, ValidationError, log_operation
from zara.utils.time_utils import utcnow, to_local, to_naive_utc

logger = logging.getLogger('zara.shifts')

MORNING_START = time(7, 0)
NIGHT_START = time(19, 0)


@dataclass(frozen=True)
class ShiftWindow:
    shift_type: str
    shift_date: date
    start: datetime
    end: datetime

    def contains(self, instant):
        return self.start <= instant < self.end


def current_shift_window(now):
    """
    Función pura: instante -> ventana de turno, en la misma zona que `now`.
    Antes de las 07:00 el instante pertenece a la noche que empezó el día anterior.
    """
    hoy = now.date()
    tz = now.tzinfo

    def _at(day, hour):
        return datetime.combine(day, hour, tzinfo=tz)

    if MORNING_START <= now.time() < NIGHT_START:
        return ShiftWindow(ShiftType.MORNING.value, hoy, _at(hoy, MORNING_START), _at(hoy, NIGHT_START))

    inicio_noche = hoy if now.time() >= NIGHT_START else hoy - timedelta(days=1)
    return ShiftWindow(
        ShiftType.NIGHT.value,
        inicio_noche,
        _at(inicio_noche, NIGHT_START),
        _at(inicio_noche + timedelta(days=1), MORNING_START)
    )


def shift_window_utc(now_utc, tz_name=None):
    """Aplica la regla en la zona de planta y devuelve los límites en UTC naive."""
    tz_name = tz_name or current_app.config.get('SHIFT_TIMEZONE', 'UTC')
    local = current_shift_window(to_local(now_utc, tz_name))
    return ShiftWindow(local.shift_type, local.shift_date, to_naive_utc(local.start), to_naive_utc(local.end))


def get_or_create_shift_data(machine, window, operator_id=None):
    """
    Busca la fila del turno o la crea. Si otro proceso la crea en paralelo,
    la violación de unicidad se resuelve releyendo.
    """
    filtro = dict(machine_id=machine.id, shift_date=window.shift_date, shift_type=window.shift_type)
    shift = ShiftData.query.filter_by(**filtro).first()
    if shift is not None:
        return shift

    shift = ShiftData(
        start_time=window.start,
        end_time=window.end,
        operator_id=operator_id,
        total_production=0,
        target_production=machine.target_production or 0,
        efficiency=0.0,
        **filtro
    )
    db.session.add(shift)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        shift = ShiftData.query.filter_by(**filtro).first()
        if shift is None:
            raise
    return shift


def _accrue_window(machine, operation, window, now):
    """Acumula una ventana concreta. El tope es window.end aunque `now` sea posterior."""
    shift = get_or_create_shift_data(machine, window, operator_id=operation.user_id)
    if shift.is_closed:
        return None

    if shift.current_operation_id != operation.id:
        # Nueva operación en esta ventana: lo ya producido queda como base.
        # Solo un escritor gana el rebase; los demás ven la fila ya rebasada.
        ShiftData.query.filter(
            ShiftData.id == shift.id,
            or_(ShiftData.current_operation_id.is_(None), ShiftData.current_operation_id != operation.id)
        ).update({
            'current_operation_id': operation.id,
            'operation_baseline': ShiftData.total_production,
            'segment_start': None,
            'operator_id': operation.user_id
        }, synchronize_session=False)
        db.session.commit()

    hasta = now if window.contains(now) else window.end
    desde = max(shift.segment_start or operation.start_time, window.start)
    minutos = max(0, int((hasta - desde).total_seconds() // 60))
    calculado = shift.operation_baseline + math.floor(minutos * (machine.production_speed or 0))

    meta = machine.target_production or shift.target_production
    valores = {
        'total_production': calculado,
        'efficiency': round((calculado / meta) * 100, 2) if meta else 0.0,
        'updated_at': utcnow()
    }
    if machine.target_production:
        valores['target_production'] = machine.target_production

    # El máximo se aplica en la BD: un escritor más lento no pisa un total mayor
    ShiftData.query.filter(
        ShiftData.id == shift.id,
        ShiftData.is_closed.is_(False),
        ShiftData.total_production < calculado
    ).update(valores, synchronize_session=False)
    db.session.commit()

    if machine.target_production and shift.target_production != machine.target_production:
        shift.target_production = machine.target_production
        shift.refresh_efficiency()
        db.session.commit()
    return shift


def accrue_production(machine, operation, now=None):
    """
    Actualiza la producción del turno actual para la operación activa.

    minutos = minutos enteros desde max(inicio del tramo, inicio turno)
    total   = max(total, base_tramo + floor(minutos * velocidad))

    El tramo empieza con la operación y se reinicia en cada cambio de velocidad
    (ver checkpoint_segment). Si la operación viene del turno anterior, ese turno
    se completa hasta su fin antes de pasar a la fila nueva.

    Returns:
        ShiftData actualizado, o None si la máquina no está FUNCIONANDO, la
        operación no está ACTIVE o el turno ya está cerrado.
    """
    now = now or utcnow()
    if not machine.is_running or operation.status != OperationStatus.ACTIVE.value:
        return None
    if operation.machine_id != machine.id:
        raise ValidationError('Operação não pertence a esta máquina')

    window = shift_window_utc(now)
    if operation.start_time < window.start:
        anterior = shift_window_utc(window.start - timedelta(seconds=1))
        _accrue_window(machine, operation, anterior, anterior.end)
    return _accrue_window(machine, operation, window, now)


def checkpoint_segment(machine, operation, now=None):
    """
    Antes de cambiar la velocidad: cuenta lo producido con la velocidad vigente
    y abre un tramo nuevo en `now` con el total actual como base.
    """
    now = now or utcnow()
    shift = accrue_production(machine, operation, now=now)
    if shift is None:
        return None
    ShiftData.query.filter(
        ShiftData.id == shift.id,
        ShiftData.current_operation_id == operation.id,
        ShiftData.is_closed.is_(False)
    ).update({
        'segment_start': now,
        'operation_baseline': ShiftData.total_production
    }, synchronize_session=False)
    db.session.commit()
    log_operation('checkpoint_segment', machine_id=machine.id, operation_id=operation.id,
                  total=shift.total_production)
    return shift


def update_running_machines(now=None):
    """
    Tarea periódica: acumula producción de todas las máquinas FUNCIONANDO
    con operación activa y publica 'production:update'.
    """
    now = now or utcnow()
    procesadas, fallidas = 0, 0

    filas = (db.session.query(Machine, Operation)
             .join(Operation, Operation.machine_id == Machine.id)
             .filter(Machine.status == MachineStatus.RUNNING.value,
                     Operation.status == OperationStatus.ACTIVE.value)
             .all())

    for machine, operation in filas:
        try:
            shift = accrue_production(machine, operation, now=now)
        except SQLAlchemyError as e:
            db.session.rollback()
            fallidas += 1
            logger.error(f"Erro ao atualizar produção da máquina {machine.id}: {e}")
            continue
        if shift is None:
            continue
        procesadas += 1
        events.publish(events.PRODUCTION_UPDATE, {
            'machineId': machine.id,
            'machineName': machine.name,
            'operatorName': operation.user.name if operation.user else None,
            'totalProduction': shift.total_production,
            'operationDuration': operation.duration_minutes(now),
            'productionSpeed': machine.production_speed,
            'lastUpdate': now.isoformat()
        })

    if filas:
        log_operation('update_running_machines', updated=procesadas, failed=fallidas)
    return {'updated': procesadas, 'failed': fallidas}


def close_finished_shifts(now=None):
    """Marca como cerradas las ventanas que ya terminaron; desde entonces son de solo lectura."""
    now = now or utcnow()
    cerradas = ShiftData.query.filter(
        ShiftData.is_closed.is_(False),
        ShiftData.end_time <= now
    ).update({'is_closed': True}, synchronize_session=False)
    db.session.commit()
    if cerradas:
        log_operation('close_finished_shifts', closed=cerradas)
    return cerradas


def run_production_cycle(now=None):
    """Lo que hace el job periódico: acumular y cerrar turnos vencidos."""
    now = now or utcnow()
    resultado = update_running_machines(now=now)
    resultado['closed'] = close_finished_shifts(now=now)
    return resultado


def get_current_shift(machine_id, now=None):
    """
    Turno actual de la máquina. Si está produciendo, primero acumula para que
    la lectura salga al día.
    """
    now = now or utcnow()
    machine = db.session.get(Machine, machine_id)
    if machine is None:
        raise NotFound('Máquina não encontrada')

    activa = Operation.query.filter_by(machine_id=machine.id, status=OperationStatus.ACTIVE.value).first()
    if activa is not None:
        accrue_production(machine, activa, now=now)

    window = shift_window_utc(now)
    shift = ShiftData.query.filter_by(
        machine_id=machine.id, shift_date=window.shift_date, shift_type=window.shift_type
    ).first()
    return window, shift


def list_shift_history(machine_id=None, date_from=None, date_to=None, shift_type=None, limit=200):
    query = ShiftData.query
    if machine_id is not None:
        query = query.filter(ShiftData.machine_id == machine_id)
    if date_from is not None:
        query = query.filter(ShiftData.shift_date >= date_from)
    if date_to is not None:
        query = query.filter(ShiftData.shift_date <= date_to)
    if shift_type:
        if shift_type not in ShiftType.__members__:
            raise ValidationError(f"Tipo de turno inválido: {shift_type}")
        query = query.filter(ShiftData.shift_type == shift_type)
    return (query.order_by(ShiftData.shift_date.desc(), ShiftData.start_time.desc())
            .limit(limit).all())


def shift_summary(shift_date):
    """Totales por tipo de turno para una fecha."""
    filas = ShiftData.query.filter(ShiftData.shift_date == shift_date).all()
    resumen = {}
    for tipo in ShiftType:
        del_tipo = [s for s in filas if s.shift_type == tipo.value]
        total = sum(s.total_production for s in del_tipo)
        meta = sum(s.target_production for s in del_tipo)
        resumen[tipo.value] = {
            'machines': len(del_tipo),
            'total_production': total,
            'target_production': meta,
            'efficiency': round((total / meta) * 100, 2) if meta else 0.0
        }
    return {
        'date': shift_date.isoformat(),
        'shifts': resumen,
        'total_production': sum(s.total_production for s in filas)
    }


EXPORT_HEADERS = [
    'Data', 'Turno', 'Máquina', 'Operador', 'Início', 'Fim',
    'Produção Total', 'Meta', 'Eficiência (%)', 'Fechado'
]


def export_shifts_excel(shifts) -> BytesIO:
    """
    Genera un Excel con una fila por ShiftData.

    Returns:
        BytesIO: Buffer con el archivo listo para descarga
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = 'PRODUCAO TURNOS'

    for col, titulo in enumerate(EXPORT_HEADERS, start=1):
        celda = ws.cell(row=1, column=col, value=titulo)
        celda.font = Font(bold=True)

    for fila, s in enumerate(shifts, start=2):
        ws.cell(row=fila, column=1, value=s.shift_date)
        ws.cell(row=fila, column=2, value=s.shift_type)
        ws.cell(row=fila, column=3, value=s.machine.name if s.machine else s.machine_id)
        ws.cell(row=fila, column=4, value=s.operator.name if s.operator else '')
        ws.cell(row=fila, column=5, value=s.start_time)
        ws.cell(row=fila, column=6, value=s.end_time)
        ws.cell(row=fila, column=7, value=s.total_production)
        ws.cell(row=fila, column=8, value=s.target_production)
        ws.cell(row=fila, column=9, value=s.efficiency)
        ws.cell(row=fila, column=10, value='SIM' if s.is_closed else 'NÃO')

    for col in range(1, len(EXPORT_HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer
