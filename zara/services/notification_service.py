"""
Notification Dispatcher.
Resuelve la audiencia por rol, crea una notificación por destinatario y evita
duplicados (usuario, tipo, mensaje) dentro de la ventana configurada.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from zara.extensions import db
from zara.models.notification import (
    Notification, NotificationType, Priority, PAYLOAD_TYPES,
    MachineStatusPayload, OperationPayload, content_key
)
from zara.models.machine import MachineStatus
from zara.models.user import User, LEADERSHIP_ROLES
from zara.services import events
from zara.utils.error_utils import ValidationError, NotFound, log_operation
from zara.utils.time_utils import utcnow

logger = logging.getLogger('zara.notifications')

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    title: str
    message: str
    payload: object
    priority: str = Priority.MEDIUM.value
    machine_id: Optional[int] = None
    roles: Sequence[str] = LEADERSHIP_ROLES
    user_ids: Optional[Sequence[int]] = None

    def __post_init__(self):
        esperado = PAYLOAD_TYPES.get(self.type)
        if esperado is None:
            raise ValidationError(f"Tipo de notificação inválido: {self.type}")
        if not isinstance(self.payload, esperado):
            raise ValidationError(f"Payload incompatível com o tipo {self.type}")
        if self.priority not in Priority.__members__:
            raise ValidationError(f"Prioridade inválida: {self.priority}")
        if not self.title or not self.message:
            raise ValidationError('Título e mensagem são obrigatórios')


def _dedupe_window():
    return max(1, int(current_app.config.get('NOTIFICATION_DEDUPE_SECONDS', 300)))


def _bucket(now, window):
    return int((now - _EPOCH).total_seconds()) // window


def resolve_audience(event):
    query = User.query.filter(User.is_active.is_(True))
    if event.user_ids is not None:
        query = query.filter(User.id.in_(list(event.user_ids)))
    else:
        query = query.filter(User.role.in_(list(event.roles)))
    return query.order_by(User.id).all()


def _is_duplicate(key, now, window):
    desde = now - timedelta(seconds=window)
    return db.session.query(Notification.id).filter(
        Notification.dedupe_key == key,
        Notification.created_at >= desde
    ).first() is not None


def _lost_race(notificacion, now, window):
    """
    La constraint solo ve duplicados dentro del mismo bucket. Dos inserciones
    concurrentes a ambos lados de un límite de bucket pasan las dos; se queda
    la de id menor.
    """
    desde = now - timedelta(seconds=window)
    return db.session.query(Notification.id).filter(
        Notification.dedupe_key == notificacion.dedupe_key,
        Notification.created_at >= desde,
        Notification.id < notificacion.id
    ).first() is not None


def notify(event, now=None):
    """
    Crea una Notification por destinatario.

    Returns:
        list[Notification]: solo las creadas (los duplicados se omiten)
    """
    now = now or utcnow()
    window = _dedupe_window()
    creadas = []

    for user in resolve_audience(event):
        key = content_key(user.id, event.type, event.message)
        if _is_duplicate(key, now, window):
            logger.info(f"Notificação duplicada omitida user={user.id} type={event.type}")
            continue

        notificacion = Notification(
            user_id=user.id,
            machine_id=event.machine_id,
            type=event.type,
            title=event.title,
            message=event.message,
            priority=event.priority,
            payload=event.payload.to_dict(),
            dedupe_key=key,
            dedupe_bucket=_bucket(now, window),
            created_at=now
        )
        db.session.add(notificacion)
        try:
            db.session.commit()
        except IntegrityError:
            # Otro proceso insertó la misma notificación en paralelo
            db.session.rollback()
            logger.info(f"Notificação duplicada (constraint) user={user.id} type={event.type}")
            continue

        if _lost_race(notificacion, now, window):
            db.session.delete(notificacion)
            db.session.commit()
            logger.info(f"Notificação duplicada (concorrente) user={user.id} type={event.type}")
            continue

        creadas.append(notificacion)
        events.publish(events.NEW_NOTIFICATION, notificacion.to_dict(), room=events.user_room(user.id))

    log_operation('notify', type=event.type, created=len(creadas))
    return creadas


def dispatch(event, now=None):
    """
    Igual que notify, pero un fallo de almacenamiento no revierte la transición
    que originó el evento (ya confirmada); se registra y se devuelve [].
    """
    try:
        return notify(event, now=now)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Falha ao gravar notificações {event.type}: {e}")
        return []


def machine_status_event(machine, previous_status, new_status, operator_name=None, reason=None, notes=None):
    nuevo = MachineStatus.parse(new_status).value
    mensaje = f"{machine.name} - Status: {nuevo}" + (f" ({reason})" if reason else '')
    return NotificationEvent(
        type=NotificationType.MACHINE_STATUS.value,
        title='Status da Máquina Alterado',
        message=mensaje,
        priority=Priority.HIGH.value if nuevo == MachineStatus.STOPPED.value else Priority.MEDIUM.value,
        machine_id=machine.id,
        payload=MachineStatusPayload(
            machine_id=machine.id,
            machine_name=machine.name,
            previous_status=previous_status,
            new_status=nuevo,
            operator_name=operator_name,
            reason=reason,
            notes=notes
        )
    )


_OPERATION_TEXTS = {
    'operation_started': ('Operação Iniciada', '{operator} iniciou operação na máquina {machine}'),
    'operation_ended': ('Operação Finalizada', '{operator} finalizou operação na máquina {machine}'),
    'operation_cancelled': ('Operação Cancelada', 'Operação de {operator} na máquina {machine} foi cancelada'),
    'operation_auto_cancelled': ('Operação Travada Cancelada',
                                 'Operação de {operator} na máquina {machine} cancelada automaticamente (>{hours}h)'),
}


def operation_event(action, operation, machine, operator, reason=None, hours=None):
    titulo, plantilla = _OPERATION_TEXTS[action]
    mensaje = plantilla.format(operator=operator.name, machine=machine.name, hours=hours)
    # Incluir el id evita que dos operaciones distintas se deduplicen entre sí
    mensaje = f"{mensaje} (#{operation.id})"
    prioridad = Priority.HIGH.value if action == 'operation_auto_cancelled' else Priority.MEDIUM.value
    return NotificationEvent(
        type=NotificationType.OPERATION.value,
        title=titulo,
        message=mensaje,
        priority=prioridad,
        machine_id=machine.id,
        payload=OperationPayload(
            action=action,
            machine_id=machine.id,
            operation_id=operation.id,
            operator_id=operator.id,
            operator_name=operator.name,
            reason=reason
        )
    )


def _visible_para(user_id):
    return db.or_(Notification.user_id == user_id, Notification.user_id.is_(None))


def get_notifications(user_id, page=1, limit=20, unread_only=False, type=None):
    """Notificaciones del usuario más las globales, más recientes primero."""
    page = max(1, int(page))
    limit = max(1, min(int(limit), 100))

    query = Notification.query.filter(_visible_para(user_id))
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    if type:
        query = query.filter(Notification.type == type)

    total = query.count()
    items = (query.order_by(Notification.created_at.desc(), Notification.id.desc())
             .offset((page - 1) * limit)
             .limit(limit)
             .all())
    return {
        'data': [n.to_dict() for n in items],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit
        }
    }


def unread_count(user_id):
    return Notification.query.filter(_visible_para(user_id), Notification.read.is_(False)).count()


def mark_as_read(notification_id, user_id):
    notificacion = Notification.query.filter(
        Notification.id == notification_id, _visible_para(user_id)
    ).first()
    if notificacion is None:
        raise NotFound('Notificação não encontrada')
    if not notificacion.read:
        notificacion.read = True
        notificacion.read_at = utcnow()
        db.session.commit()
    return notificacion


def mark_all_as_read(user_id):
    actualizadas = Notification.query.filter(
        _visible_para(user_id), Notification.read.is_(False)
    ).update({'read': True, 'read_at': utcnow()}, synchronize_session=False)
    db.session.commit()
    return actualizadas
