from zara.extensions import db
from zara.utils.time_utils import utcnow, iso


# capacidad pedida -> columna del modelo
CAPABILITIES = {
    'view': 'can_view',
    'operate': 'can_operate',
    'maintain': 'can_maintain',
    'edit': 'can_edit',
}


class MachinePermission(db.Model):
    """
    Capacidades de un usuario sobre una máquina.
    Sin fila = sin ningún permiso (no hay concesión implícita).
    """
    __tablename__ = 'machine_permission'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'machine_id', name='uq_permission_user_machine'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey('machine.id'), nullable=False, index=True)

    can_view = db.Column(db.Boolean, nullable=False, default=False)
    can_operate = db.Column(db.Boolean, nullable=False, default=False)
    can_maintain = db.Column(db.Boolean, nullable=False, default=False)
    can_edit = db.Column(db.Boolean, nullable=False, default=False)

    granted_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', foreign_keys=[user_id], backref=db.backref('machine_permissions', lazy=True))
    machine = db.relationship('Machine', backref=db.backref('permissions', lazy=True))

    def allows(self, capability):
        return bool(getattr(self, CAPABILITIES[capability]))

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_name': self.user.name if self.user else None,
            'machine_id': self.machine_id,
            'machine_name': self.machine.name if self.machine else None,
            'can_view': self.can_view,
            'can_operate': self.can_operate,
            'can_maintain': self.can_maintain,
            'can_edit': self.can_edit,
            'granted_by': self.granted_by,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }

    def __repr__(self):
        return f'<MachinePermission user={self.user_id} machine={self.machine_id}>'
