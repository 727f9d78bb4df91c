from enum import Enum

from zara.extensions import db
from zara.utils.time_utils import utcnow, iso


class ShiftType(str, Enum):
    MORNING = 'MORNING'  # 07:00 - 19:00
    NIGHT = 'NIGHT'      # 19:00 - 07:00 del día siguiente


class ShiftData(db.Model):
    """
    Producción agregada de una máquina en una ventana de turno.
    total_production nunca baja mientras el turno está abierto; una vez
    cerrado (is_closed) la fila ya no se toca.
    """
    __tablename__ = 'shift_data'
    __table_args__ = (
        db.UniqueConstraint('machine_id', 'shift_date', 'shift_type', name='uq_shift_machine_window'),
    )

    id = db.Column(db.Integer, primary_key=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machine.id'), nullable=False, index=True)
    operator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)

    shift_date = db.Column(db.Date, nullable=False)  # fecha local de inicio del turno
    shift_type = db.Column(db.String(10), nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    total_production = db.Column(db.Integer, nullable=False, default=0)
    target_production = db.Column(db.Integer, nullable=False, default=0)
    efficiency = db.Column(db.Float, nullable=False, default=0.0)  # % de la meta

    # Operación que está sumando ahora y el total que había antes de su tramo.
    # Un cambio de velocidad abre un tramo nuevo en segment_start.
    current_operation_id = db.Column(db.Integer, db.ForeignKey('machine_operation.id'), nullable=True)
    operation_baseline = db.Column(db.Integer, nullable=False, default=0)
    segment_start = db.Column(db.DateTime, nullable=True)

    is_closed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    machine = db.relationship('Machine', backref=db.backref('shifts', lazy='dynamic'))
    operator = db.relationship('User', foreign_keys=[operator_id])

    def refresh_efficiency(self):
        if self.target_production and self.target_production > 0:
            self.efficiency = round((self.total_production / self.target_production) * 100, 2)
        else:
            self.efficiency = 0.0

    def to_dict(self):
        return {
            'id': self.id,
            'machine_id': self.machine_id,
            'machine_name': self.machine.name if self.machine else None,
            'operator_id': self.operator_id,
            'operator_name': self.operator.name if self.operator else None,
            'shift_date': self.shift_date.isoformat() if self.shift_date else None,
            'shift_type': self.shift_type,
            'start_time': iso(self.start_time),
            'end_time': iso(self.end_time),
            'total_production': self.total_production,
            'target_production': self.target_production,
            'efficiency': self.efficiency,
            'is_closed': self.is_closed,
            'updated_at': iso(self.updated_at)
        }

    def __repr__(self):
        return f'<ShiftData machine={self.machine_id} {self.shift_date} {self.shift_type} total={self.total_production}>'
