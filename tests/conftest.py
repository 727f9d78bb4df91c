import os
# Forzar SQLite para tests -> debe hacerse antes de importar zara.config
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from zara import create_app, db
from zara.config import TestingConfig
from zara.auth import create_access_token
from zara.models.machine import Machine, MachineStatus
from zara.models.user import User, Role
from zara.services import permission_gate


@pytest.fixture
def app():
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Fábrica de usuarios: make_user(role='OPERATOR', name=...)."""
    contador = {'n': 0}

    def _make(role=Role.OPERATOR.value, name=None, is_active=True):
        contador['n'] += 1
        n = contador['n']
        user = User(
            name=name or f"Usuario {n}",
            email=f"user{n}@zara.test",
            role=role,
            is_active=is_active
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_machine(app):
    """Fábrica de máquinas: make_machine(speed=2.0, target=1000)."""
    contador = {'n': 0}

    def _make(speed=2.0, target=1000, status=MachineStatus.STOPPED.value, name=None):
        contador['n'] += 1
        n = contador['n']
        machine = Machine(
            code=f"MAQ{n:03d}",
            name=name or f"Máquina {n:02d}",
            location='Setor 1',
            status=status,
            production_speed=speed,
            target_production=target
        )
        db.session.add(machine)
        db.session.commit()
        return machine
    return _make


@pytest.fixture
def grant(app):
    """Concede permisos: grant(user, machine, operate=True, view=True)."""
    def _grant(user, machine, view=True, operate=True, maintain=False, edit=False):
        return permission_gate.grant(user.id, machine.id, {
            'can_view': view,
            'can_operate': operate,
            'can_maintain': maintain,
            'can_edit': edit
        })
    return _grant


@pytest.fixture
def operator(make_user):
    return make_user(Role.OPERATOR.value, name='Ana Costa')


@pytest.fixture
def leader(make_user):
    return make_user(Role.LEADER.value, name='Maria Santos')


@pytest.fixture
def manager(make_user):
    return make_user(Role.MANAGER.value, name='João Silva')


@pytest.fixture
def machine(make_machine):
    return make_machine(speed=2.0, target=1000)


@pytest.fixture
def auth_headers(app):
    """Cabeceras Bearer para un usuario: client.get(url, headers=auth_headers(user))."""
    def _headers(user):
        token = create_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers
