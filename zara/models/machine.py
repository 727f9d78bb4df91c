"""
Modelos del registro de máquinas: Machine y su historial de estados.
"""
from enum import Enum

from zara.extensions import db
from zara.utils.time_utils import utcnow, iso


class MachineStatus(str, Enum):
    STOPPED = 'PARADA'
    RUNNING = 'FUNCIONANDO'
    MAINTENANCE = 'MANUTENCAO'
    OFF_SHIFT = 'FORA_DE_TURNO'

    @classmethod
    def parse(cls, value):
        """Acepta el valor guardado ('PARADA') o el nombre ('STOPPED')."""
        if isinstance(value, cls):
            return value
        texto = str(value or '').strip().upper()
        for status in cls:
            if texto in (status.value, status.name):
                return status
        raise ValueError(f"Status de máquina inválido: {value}")


class Machine(db.Model):
    """
    Entidad de catálogo para máquinas de producción.
    El status RUNNING solo lo pone el ciclo de vida de operaciones.
    """
    __tablename__ = 'machine'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    location = db.Column(db.String(100))

    status = db.Column(db.String(20), nullable=False, default=MachineStatus.STOPPED.value)
    production_speed = db.Column(db.Float, nullable=False, default=0.0)  # piezas/minuto
    target_production = db.Column(db.Integer, nullable=False, default=0)  # piezas/turno

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    operations = db.relationship('Operation', backref='machine', lazy=True)

    @property
    def is_running(self):
        return self.status == MachineStatus.RUNNING.value

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'location': self.location,
            'status': self.status,
            'production_speed': self.production_speed,
            'target_production': self.target_production,
            'is_active': self.is_active,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }

    def __repr__(self):
        return f'<Machine {self.code} {self.status}>'


class MachineStatusHistory(db.Model):
    """
    Registra cada cambio de status de una Machine.
    user_id es None cuando la transición la hace el sistema (barrido de operaciones).
    """
    __tablename__ = 'machine_status_history'

    id = db.Column(db.Integer, primary_key=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machine.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)

    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    machine = db.relationship(
        'Machine',
        backref=db.backref('status_history', lazy='dynamic', order_by='MachineStatusHistory.id.desc()')
    )

    def to_dict(self):
        return {
            'id': self.id,
            'machine_id': self.machine_id,
            'user_id': self.user_id,
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'reason': self.reason,
            'notes': self.notes,
            'created_at': iso(self.created_at)
        }

    def __repr__(self):
        return f'<MachineStatusHistory {self.machine_id} {self.previous_status}->{self.new_status}>'


def record_status_change(machine, new_status, user_id=None, reason=None, notes=None):
    """
    Cambia el status de la máquina y deja el registro en el historial.
    No hace commit; el llamador decide la transacción.

    Returns:
        MachineStatusHistory creado, o None si el status no cambia.
    """
    nuevo = MachineStatus.parse(new_status).value
    anterior = machine.status
    if anterior == nuevo:
        return None

    historial = MachineStatusHistory(
        machine_id=machine.id,
        user_id=user_id,
        previous_status=anterior,
        new_status=nuevo,
        reason=reason,
        notes=notes
    )
    machine.status = nuevo
    db.session.add(historial)
    return historial
