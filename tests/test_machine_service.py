from datetime import datetime

import pytest

from zara.models.machine import MachineStatus, MachineStatusHistory, record_status_change
from zara.models.notification import Notification
from zara.services import machine_service, operation_service
from zara.utils.error_utils import ValidationError, InvalidState

T0 = datetime(2024, 3, 5, 10, 0, 0)


class TestRegistry:

    def test_crear_maquina(self, app):
        maquina = machine_service.create_machine({'code': 'INJ-01', 'name': 'Injetora 01', 'production_speed': 4})
        assert maquina.status == MachineStatus.STOPPED.value
        assert maquina.production_speed == 4.0
        assert maquina.is_active is True

    def test_codigo_duplicado(self, app, machine):
        with pytest.raises(ValidationError):
            machine_service.create_machine({'code': machine.code, 'name': 'Copia'})

    def test_velocidad_negativa(self, app, machine):
        with pytest.raises(ValidationError):
            machine_service.set_production_speed(machine.id, -1)
        with pytest.raises(ValidationError):
            machine_service.set_production_speed(machine.id, 'rápido')

    def test_set_production_speed(self, app, leader, machine):
        maquina = machine_service.set_production_speed(machine.id, 5.5, target_production=3000, user=leader)
        assert maquina.production_speed == 5.5
        assert maquina.target_production == 3000

    def test_desactivar_con_operacion_activa(self, app, operator, machine, grant):
        grant(operator, machine)
        operation_service.start_operation(operator.id, machine.id, now=T0)
        with pytest.raises(InvalidState):
            machine_service.deactivate_machine(machine.id)

    def test_list_machines_oculta_inactivas(self, app, make_machine):
        activa = make_machine()
        baja = make_machine()
        machine_service.deactivate_machine(baja.id)

        assert [m.id for m in machine_service.list_machines()] == [activa.id]
        assert len(machine_service.list_machines(include_inactive=True)) == 2
        with pytest.raises(ValidationError):
            machine_service.list_machines(status='VOANDO')


class TestChangeStatus:

    def test_cambio_manual_registra_historial_y_notifica(self, app, operator, leader, machine):
        maquina, historial = machine_service.change_status(
            machine.id, 'MAINTENANCE', user_id=operator.id, reason='Troca de molde'
        )

        assert maquina.status == MachineStatus.MAINTENANCE.value
        assert historial.previous_status == MachineStatus.STOPPED.value
        assert historial.reason == 'Troca de molde'
        notificacion = Notification.query.filter_by(user_id=leader.id).one()
        assert notificacion.type == 'MACHINE_STATUS'
        assert notificacion.typed_payload.operator_name == operator.name

    def test_no_se_puede_poner_funcionando_a_mano(self, app, machine):
        with pytest.raises(InvalidState):
            machine_service.change_status(machine.id, 'FUNCIONANDO')

    def test_no_con_operacion_activa(self, app, operator, machine, grant):
        grant(operator, machine)
        operation_service.start_operation(operator.id, machine.id, now=T0)
        with pytest.raises(InvalidState):
            machine_service.change_status(machine.id, 'PARADA')
        assert machine.status == MachineStatus.RUNNING.value

    def test_mismo_status_no_registra(self, app, machine):
        _, historial = machine_service.change_status(machine.id, 'PARADA')
        assert historial is None
        assert MachineStatusHistory.query.count() == 0

    def test_record_status_change_sin_cambio(self, app, machine):
        assert record_status_change(machine, MachineStatus.STOPPED) is None

    def test_status_history_mas_reciente_primero(self, app, machine):
        machine_service.change_status(machine.id, 'MANUTENCAO')
        machine_service.change_status(machine.id, 'PARADA')
        historial = machine_service.get_status_history(machine.id)
        assert [h.new_status for h in historial] == ['PARADA', 'MANUTENCAO']
