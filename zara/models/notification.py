"""
Modelo Notification y payloads tipados por tipo de notificación.
"""
import hashlib
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

from zara.extensions import db
from zara.models.machine import MachineStatus
from zara.utils.error_utils import ValidationError
from zara.utils.time_utils import utcnow, iso


class NotificationType(str, Enum):
    MACHINE_STATUS = 'MACHINE_STATUS'
    OPERATION = 'OPERATION'
    SYSTEM = 'SYSTEM'


class Priority(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'


OPERATION_ACTIONS = (
    'operation_started',
    'operation_ended',
    'operation_cancelled',
    'operation_auto_cancelled',
)


@dataclass(frozen=True)
class MachineStatusPayload:
    machine_id: int
    machine_name: str
    previous_status: Optional[str]
    new_status: str
    operator_name: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None

    kind = NotificationType.MACHINE_STATUS.value

    def __post_init__(self):
        if not isinstance(self.machine_id, int):
            raise ValidationError('machine_id deve ser inteiro')
        try:
            MachineStatus.parse(self.new_status)
            if self.previous_status is not None:
                MachineStatus.parse(self.previous_status)
        except ValueError as e:
            raise ValidationError(str(e))

    def to_dict(self):
        return {'kind': self.kind, **asdict(self)}


@dataclass(frozen=True)
class OperationPayload:
    action: str
    machine_id: int
    operation_id: int
    operator_id: int
    operator_name: Optional[str] = None
    reason: Optional[str] = None

    kind = NotificationType.OPERATION.value

    def __post_init__(self):
        if self.action not in OPERATION_ACTIONS:
            raise ValidationError(f"Ação de operação inválida: {self.action}")
        for campo in ('machine_id', 'operation_id', 'operator_id'):
            if not isinstance(getattr(self, campo), int):
                raise ValidationError(f"{campo} deve ser inteiro")

    def to_dict(self):
        return {'kind': self.kind, **asdict(self)}


@dataclass(frozen=True)
class SystemPayload:
    detail: dict = field(default_factory=dict)

    kind = NotificationType.SYSTEM.value

    def __post_init__(self):
        if not isinstance(self.detail, dict):
            raise ValidationError('detail deve ser um objeto')

    def to_dict(self):
        return {'kind': self.kind, **asdict(self)}


PAYLOAD_TYPES = {
    NotificationType.MACHINE_STATUS.value: MachineStatusPayload,
    NotificationType.OPERATION.value: OperationPayload,
    NotificationType.SYSTEM.value: SystemPayload,
}


def payload_from_dict(data):
    """Reconstruye el payload tipado a partir del JSON guardado."""
    if not data:
        return None
    datos = dict(data)
    kind = datos.pop('kind', None)
    if kind not in PAYLOAD_TYPES:
        raise ValidationError(f"Tipo de payload desconhecido: {kind}")
    return PAYLOAD_TYPES[kind](**datos)


def content_key(user_id, notification_type, message):
    """Hash del contenido usado para deduplicar (usuario, tipo, mensaje)."""
    raw = f"{user_id}|{notification_type}|{message}"
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


class Notification(db.Model):
    """
    Notificación para un usuario (user_id None = global).
    Solo se modifica para marcarla como leída.
    """
    __tablename__ = 'notification'
    __table_args__ = (
        # Cubre inserciones concurrentes en el mismo bucket; las que caen en
        # buckets vecinos se resuelven tras el commit (notification_service._lost_race)
        db.UniqueConstraint('dedupe_key', 'dedupe_bucket', name='uq_notification_dedupe'),
        db.Index('ix_notification_user_created', 'user_id', 'created_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machine.id'), nullable=True)

    type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(10), nullable=False, default=Priority.MEDIUM.value)

    read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)

    # 'metadata' está reservado en los modelos declarativos
    payload = db.Column('metadata', db.JSON, nullable=True)

    dedupe_key = db.Column(db.String(64), nullable=False, index=True)
    dedupe_bucket = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    machine = db.relationship('Machine')

    @property
    def typed_payload(self):
        return payload_from_dict(self.payload)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'machine_id': self.machine_id,
            'machine_name': self.machine.name if self.machine else None,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'priority': self.priority,
            'read': self.read,
            'read_at': iso(self.read_at),
            'metadata': self.payload,
            'created_at': iso(self.created_at)
        }

    def __repr__(self):
        return f'<Notification {self.id} {self.type} user={self.user_id}>'
