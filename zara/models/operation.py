"""
Modelo Operation: uso continuo de una máquina por un operador.
"""
from enum import Enum

from zara.extensions import db
from zara.utils.time_utils import utcnow, iso


class OperationStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class Operation(db.Model):
    """
    Una operación ACTIVE no tiene end_time.
    Los índices parciales garantizan en la BD una sola ACTIVE por máquina
    y una sola ACTIVE por usuario, aunque varios procesos escriban a la vez.
    """
    __tablename__ = 'machine_operation'
    __table_args__ = (
        db.Index(
            'uq_operation_active_machine', 'machine_id', unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'")
        ),
        db.Index(
            'uq_operation_active_user', 'user_id', unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'")
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machine.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)

    start_time = db.Column(db.DateTime, nullable=False, default=utcnow)
    end_time = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=OperationStatus.ACTIVE.value)
    notes = db.Column(db.Text, nullable=True)

    @property
    def is_active(self):
        return self.status == OperationStatus.ACTIVE.value

    def duration_minutes(self, now=None):
        fin = self.end_time or now or utcnow()
        return int((fin - self.start_time).total_seconds() // 60)

    def to_dict(self):
        return {
            'id': self.id,
            'machine_id': self.machine_id,
            'machine_name': self.machine.name if self.machine else None,
            'user_id': self.user_id,
            'operator_name': self.user.name if self.user else None,
            'start_time': iso(self.start_time),
            'end_time': iso(self.end_time),
            'status': self.status,
            'notes': self.notes,
            'duration_minutes': self.duration_minutes()
        }

    def __repr__(self):
        return f'<Operation {self.id} machine={self.machine_id} user={self.user_id} {self.status}>'
