from enum import Enum

from zara.extensions import db
from zara.utils.time_utils import utcnow, iso


class Role(str, Enum):
    OPERATOR = 'OPERATOR'
    LEADER = 'LEADER'
    MANAGER = 'MANAGER'
    ADMIN = 'ADMIN'


# Roles que reciben alertas de máquina y operación
LEADERSHIP_ROLES = (Role.LEADER.value, Role.MANAGER.value, Role.ADMIN.value)


class User(db.Model):
    """Usuario del sistema. La identidad la provee la capa de autenticación."""
    __tablename__ = 'user'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.OPERATOR.value)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    operations = db.relationship('Operation', backref='user', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': iso(self.created_at)
        }

    def __repr__(self):
        return f'<User {self.email} {self.role}>'
