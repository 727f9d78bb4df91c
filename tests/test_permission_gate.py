import pytest

from zara.models.permission import MachinePermission
from zara.services import permission_gate
from zara.utils.error_utils import ValidationError, NotFound


class TestCheck:

    def test_sin_fila_todo_es_false(self, app, operator, machine):
        for capability in ('view', 'operate', 'maintain', 'edit'):
            assert permission_gate.check(operator.id, machine.id, capability) is False

    def test_capacidades_independientes(self, app, operator, machine, grant):
        grant(operator, machine, view=True, operate=False, maintain=True)
        assert permission_gate.check(operator.id, machine.id, 'view') is True
        assert permission_gate.check(operator.id, machine.id, 'operate') is False
        assert permission_gate.check(operator.id, machine.id, 'maintain') is True
        assert permission_gate.check(operator.id, machine.id, 'edit') is False

    def test_admin_sin_fila_tambien_false(self, app, make_user, machine):
        admin = make_user('ADMIN')
        assert permission_gate.check(admin.id, machine.id, 'operate') is False

    def test_capacidad_desconocida(self, app, operator, machine):
        with pytest.raises(ValidationError):
            permission_gate.check(operator.id, machine.id, 'delete')


class TestGrant:

    def test_upsert_no_duplica(self, app, operator, leader, machine):
        permission_gate.grant(operator.id, machine.id, {'can_view': True}, granted_by=leader.id)
        permiso = permission_gate.grant(operator.id, machine.id, {'canOperate': True}, granted_by=leader.id)

        assert MachinePermission.query.count() == 1
        assert permiso.can_view is True
        assert permiso.can_operate is True
        assert permiso.granted_by == leader.id

    def test_usuario_o_maquina_inexistente(self, app, operator, machine):
        with pytest.raises(NotFound):
            permission_gate.grant(999, machine.id, {'can_view': True})
        with pytest.raises(NotFound):
            permission_gate.grant(operator.id, 999, {'can_view': True})

    def test_update_y_revoke(self, app, operator, machine, grant):
        permiso = grant(operator, machine, operate=True)
        permission_gate.update_permission(permiso.id, {'can_operate': False})
        assert permission_gate.check(operator.id, machine.id, 'operate') is False

        permission_gate.revoke(permiso.id)
        assert permission_gate.get_permission(operator.id, machine.id) is None
        with pytest.raises(NotFound):
            permission_gate.revoke(permiso.id)

    def test_bulk_grant(self, app, operator, make_machine):
        maquinas = [make_machine() for _ in range(3)]
        permisos = permission_gate.bulk_grant(operator.id, [m.id for m in maquinas], {'can_view': True})

        assert len(permisos) == 3
        assert all(permission_gate.check(operator.id, m.id, 'view') for m in maquinas)
        assert len(permission_gate.list_permissions(user_id=operator.id)) == 3

    def test_bulk_grant_vacio(self, app, operator):
        with pytest.raises(ValidationError):
            permission_gate.bulk_grant(operator.id, [], {'can_view': True})
