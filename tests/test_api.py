"""
Tests de las rutas REST con el cliente de pruebas de Flask.
"""
import io
from datetime import timedelta

import openpyxl

from zara.extensions import db
from zara.models.machine import MachineStatus
from zara.models.operation import Operation, OperationStatus
from zara.services.operation_service import STUCK_NOTE
from zara.utils.time_utils import utcnow


class TestAuth:

    def test_sin_token(self, client):
        resp = client.get('/api/machines')
        assert resp.status_code == 401
        assert resp.get_json()['code'] == 'NO_TOKEN'

    def test_token_invalido(self, client):
        resp = client.get('/api/machines', headers={'Authorization': 'Bearer nao-e-um-jwt'})
        assert resp.status_code == 401
        assert resp.get_json()['code'] == 'INVALID_TOKEN'

    def test_rol_insuficiente(self, client, operator, auth_headers):
        resp = client.post('/api/machines', json={'code': 'X', 'name': 'Y'}, headers=auth_headers(operator))
        assert resp.status_code == 403
        assert resp.get_json()['code'] == 'INSUFFICIENT_PERMISSION'

    def test_health(self, client):
        assert client.get('/api/health').get_json() == {'status': 'ok'}


class TestMachinesApi:

    def test_operador_solo_ve_maquinas_con_permiso(self, client, operator, make_machine, grant, auth_headers):
        visible = make_machine()
        make_machine()
        grant(operator, visible, view=True, operate=False)

        resp = client.get('/api/machines', headers=auth_headers(operator))

        assert resp.status_code == 200
        assert [m['id'] for m in resp.get_json()] == [visible.id]

    def test_detalle_sin_permiso(self, client, operator, machine, auth_headers):
        resp = client.get(f'/api/machines/{machine.id}', headers=auth_headers(operator))
        assert resp.status_code == 403

    def test_crear_y_editar(self, client, manager, auth_headers):
        resp = client.post('/api/machines', json={'code': 'INJ-9', 'name': 'Injetora 9'},
                           headers=auth_headers(manager))
        assert resp.status_code == 201
        machine_id = resp.get_json()['id']

        resp = client.put(f'/api/machines/{machine_id}', json={'location': 'Galpão 2'},
                          headers=auth_headers(manager))
        assert resp.get_json()['location'] == 'Galpão 2'

    def test_velocidad_negativa_400(self, client, leader, machine, auth_headers):
        resp = client.put(f'/api/machines/{machine.id}/production-speed',
                          json={'production_speed': -2}, headers=auth_headers(leader))
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'VALIDATION_ERROR'

    def test_cambio_de_status(self, client, leader, machine, auth_headers):
        resp = client.put(f'/api/machines/{machine.id}/status',
                          json={'status': 'MANUTENCAO', 'reason': 'Preventiva'},
                          headers=auth_headers(leader))
        assert resp.status_code == 200
        assert resp.get_json()['machine']['status'] == MachineStatus.MAINTENANCE.value

        resp = client.get(f'/api/machines/{machine.id}/status-history', headers=auth_headers(leader))
        assert resp.get_json()[0]['reason'] == 'Preventiva'

    def test_ciclo_start_end(self, client, operator, machine, grant, auth_headers):
        grant(operator, machine)
        headers = auth_headers(operator)

        resp = client.post(f'/api/machines/{machine.id}/start-operation', json={'notes': 'OP 1322'}, headers=headers)
        assert resp.status_code == 201
        operacion = resp.get_json()['data']
        assert operacion['status'] == 'ACTIVE'

        resp = client.get('/api/operations/active', headers=headers)
        assert resp.get_json()['id'] == operacion['id']

        resp = client.get(f'/api/machines/{machine.id}/production/current-shift', headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()['shift'] is not None

        resp = client.post(f'/api/machines/{machine.id}/end-operation', headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()['data']['status'] == 'COMPLETED'

    def test_start_conflicto_409(self, client, make_user, machine, grant, auth_headers):
        ana, pedro = make_user(), make_user()
        grant(ana, machine)
        grant(pedro, machine)
        client.post(f'/api/machines/{machine.id}/start-operation', headers=auth_headers(ana))

        resp = client.post(f'/api/machines/{machine.id}/start-operation', headers=auth_headers(pedro))

        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'MACHINE_IN_USE'

    def test_start_sin_permiso_403(self, client, operator, machine, auth_headers):
        resp = client.post(f'/api/machines/{machine.id}/start-operation', headers=auth_headers(operator))
        assert resp.status_code == 403
        assert resp.get_json()['code'] == 'PERMISSION_DENIED'

    def test_otro_operador_no_puede_finalizar(self, client, make_user, machine, grant, auth_headers):
        ana, pedro = make_user(), make_user()
        grant(ana, machine)
        client.post(f'/api/machines/{machine.id}/start-operation', headers=auth_headers(ana))

        resp = client.post(f'/api/machines/{machine.id}/end-operation', headers=auth_headers(pedro))
        assert resp.status_code == 403

    def test_gerente_puede_finalizar(self, client, operator, manager, machine, grant, auth_headers):
        grant(operator, machine)
        client.post(f'/api/machines/{machine.id}/start-operation', headers=auth_headers(operator))

        resp = client.post(f'/api/machines/{machine.id}/end-operation', headers=auth_headers(manager))
        assert resp.status_code == 200


class TestOperationsApi:

    def test_cancelar(self, client, operator, machine, grant, auth_headers):
        grant(operator, machine)
        headers = auth_headers(operator)
        op_id = client.post(f'/api/machines/{machine.id}/start-operation', headers=headers).get_json()['data']['id']

        resp = client.post(f'/api/operations/{op_id}/cancel', json={'reason': 'Molde quebrado'}, headers=headers)
        assert resp.get_json()['data']['notes'] == 'Molde quebrado'

        resp = client.post(f'/api/operations/{op_id}/stop', headers=headers)
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'OPERATION_NOT_ACTIVE'

    def test_operacion_inexistente_404(self, client, operator, auth_headers):
        resp = client.post('/api/operations/999/stop', headers=auth_headers(operator))
        assert resp.status_code == 404

    def test_operador_solo_lista_las_suyas(self, client, make_user, make_machine, grant, auth_headers):
        ana, pedro = make_user(), make_user()
        m1, m2 = make_machine(), make_machine()
        grant(ana, m1)
        grant(pedro, m2)
        client.post(f'/api/machines/{m1.id}/start-operation', headers=auth_headers(ana))
        client.post(f'/api/machines/{m2.id}/start-operation', headers=auth_headers(pedro))

        resp = client.get('/api/operations', headers=auth_headers(ana))
        assert [op['user_id'] for op in resp.get_json()] == [ana.id]

    def test_sweep_manual(self, client, operator, manager, machine, auth_headers):
        db.session.add(Operation(machine_id=machine.id, user_id=operator.id,
                                 start_time=utcnow() - timedelta(hours=30)))
        machine.status = MachineStatus.RUNNING.value
        db.session.commit()

        resp = client.post('/api/operations/sweep', headers=auth_headers(manager))

        assert resp.status_code == 200
        assert len(resp.get_json()['data']['cancelled']) == 1
        db.session.expire_all()
        assert Operation.query.one().status == OperationStatus.CANCELLED.value
        assert Operation.query.one().notes == STUCK_NOTE.format(hours=24)

    def test_sweep_solo_gerencia(self, client, leader, auth_headers):
        assert client.post('/api/operations/sweep', headers=auth_headers(leader)).status_code == 403


class TestPermissionsApi:

    def test_conceder_y_verificar(self, client, leader, operator, machine, auth_headers):
        resp = client.post('/api/permissions', json={
            'user_id': operator.id, 'machine_id': machine.id, 'canView': True, 'canOperate': True
        }, headers=auth_headers(leader))
        assert resp.status_code == 201
        assert resp.get_json()['granted_by'] == leader.id

        resp = client.get(f'/api/permissions/check?machine_id={machine.id}&capability=operate',
                          headers=auth_headers(operator))
        assert resp.get_json()['allowed'] is True

    def test_operador_no_concede(self, client, operator, machine, auth_headers):
        resp = client.post('/api/permissions', json={'user_id': operator.id, 'machine_id': machine.id},
                           headers=auth_headers(operator))
        assert resp.status_code == 403

    def test_bulk(self, client, leader, operator, make_machine, auth_headers):
        ids = [make_machine().id for _ in range(2)]
        resp = client.post('/api/permissions/bulk', json={
            'user_id': operator.id, 'machine_ids': ids, 'permissions': {'can_view': True}
        }, headers=auth_headers(leader))
        assert resp.status_code == 201
        assert len(resp.get_json()['data']) == 2

        resp = client.get(f'/api/permissions/user/{operator.id}', headers=auth_headers(operator))
        assert len(resp.get_json()) == 2


class TestNotificationsApi:

    def test_flujo_de_lectura(self, client, operator, leader, machine, grant, auth_headers):
        grant(operator, machine)
        client.post(f'/api/machines/{machine.id}/start-operation', headers=auth_headers(operator))
        headers = auth_headers(leader)

        assert client.get('/api/notifications/unread-count', headers=headers).get_json() == {'count': 1}
        lista = client.get('/api/notifications', headers=headers).get_json()
        assert lista['data'][0]['metadata']['action'] == 'operation_started'

        resp = client.put(f"/api/notifications/{lista['data'][0]['id']}/read", headers=headers)
        assert resp.get_json()['read'] is True
        assert client.get('/api/notifications/unread-count', headers=headers).get_json() == {'count': 0}

    def test_read_all(self, client, leader, machine, auth_headers):
        client.put(f'/api/machines/{machine.id}/status', json={'status': 'MANUTENCAO'}, headers=auth_headers(leader))
        resp = client.put('/api/notifications/read-all', headers=auth_headers(leader))
        assert resp.get_json()['data'] == {'updated': 1}


class TestShiftsApi:

    def test_turno_actual(self, client, operator, auth_headers):
        resp = client.get('/api/shifts/current', headers=auth_headers(operator))
        assert resp.get_json()['shift_type'] in ('MORNING', 'NIGHT')

    def test_fecha_invalida(self, client, leader, auth_headers):
        resp = client.get('/api/shifts/history?date_from=05/03/2024', headers=auth_headers(leader))
        assert resp.status_code == 400

    def test_export(self, client, operator, leader, machine, grant, auth_headers):
        grant(operator, machine)
        client.post(f'/api/machines/{machine.id}/start-operation', headers=auth_headers(operator))

        resp = client.get('/api/shifts/export', headers=auth_headers(leader))

        assert resp.status_code == 200
        assert resp.mimetype == 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        ws = openpyxl.load_workbook(io.BytesIO(resp.data)).active
        assert ws.max_row == 2
