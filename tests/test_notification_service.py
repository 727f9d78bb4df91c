"""
Tests del despachador de notificaciones: audiencia, deduplicación y payloads.
"""
from datetime import datetime, timedelta

import pytest

from zara.extensions import db
from zara.models.notification import (
    Notification, NotificationType, MachineStatusPayload, OperationPayload, SystemPayload,
    payload_from_dict
)
from zara.services import notification_service
from zara.services.notification_service import NotificationEvent
from zara.utils.error_utils import ValidationError, NotFound

T0 = datetime(2024, 3, 5, 10, 0, 0)


def _evento_sistema(mensaje='Backup concluído', **kwargs):
    return NotificationEvent(
        type=NotificationType.SYSTEM.value,
        title='Sistema',
        message=mensaje,
        payload=SystemPayload({'job': 'backup'}),
        **kwargs
    )


class TestPayloads:

    def test_status_invalido(self):
        with pytest.raises(ValidationError):
            MachineStatusPayload(machine_id=1, machine_name='M1', previous_status='PARADA', new_status='VOANDO')

    def test_accion_invalida(self):
        with pytest.raises(ValidationError):
            OperationPayload(action='operation_paused', machine_id=1, operation_id=1, operator_id=1)

    def test_tipo_y_payload_no_coinciden(self):
        with pytest.raises(ValidationError):
            NotificationEvent(
                type=NotificationType.OPERATION.value,
                title='x', message='y',
                payload=SystemPayload({})
            )

    def test_reconstruye_desde_json(self):
        original = MachineStatusPayload(1, 'M1', 'FUNCIONANDO', 'PARADA', reason='Quebra')
        assert payload_from_dict(original.to_dict()) == original

    def test_kind_desconocido(self):
        with pytest.raises(ValidationError):
            payload_from_dict({'kind': 'OTHER', 'x': 1})


class TestNotify:

    def test_audiencia_por_rol_y_activos(self, app, make_user):
        lider = make_user('LEADER')
        gerente = make_user('MANAGER')
        make_user('OPERATOR')
        make_user('ADMIN', is_active=False)

        creadas = notification_service.notify(_evento_sistema(), now=T0)

        assert sorted(n.user_id for n in creadas) == sorted([lider.id, gerente.id])

    def test_audiencia_explicita(self, app, make_user):
        operador = make_user('OPERATOR')
        make_user('LEADER')
        creadas = notification_service.notify(_evento_sistema(user_ids=[operador.id]), now=T0)
        assert [n.user_id for n in creadas] == [operador.id]

    def test_duplicado_en_ventana_se_guarda_una_vez(self, app, leader):
        notification_service.notify(_evento_sistema(), now=T0)
        segunda = notification_service.notify(_evento_sistema(), now=T0 + timedelta(seconds=30))

        assert segunda == []
        assert Notification.query.filter_by(user_id=leader.id).count() == 1

    def test_concurrentes_en_buckets_vecinos_se_guarda_una(self, app, leader, monkeypatch):
        """La otra inserción aún no era visible al consultar; cae en el bucket anterior."""
        primera = notification_service.notify(_evento_sistema(), now=T0 - timedelta(seconds=10))
        monkeypatch.setattr(notification_service, '_is_duplicate', lambda key, now, window: False)

        segunda = notification_service.notify(_evento_sistema(), now=T0 + timedelta(seconds=10))

        assert segunda == []
        assert [n.id for n in Notification.query.filter_by(user_id=leader.id).all()] == [primera[0].id]

    def test_fuera_de_ventana_se_vuelve_a_enviar(self, app, leader):
        notification_service.notify(_evento_sistema(), now=T0)
        notification_service.notify(_evento_sistema(), now=T0 + timedelta(seconds=301))
        assert Notification.query.filter_by(user_id=leader.id).count() == 2

    def test_mensaje_distinto_no_es_duplicado(self, app, leader):
        notification_service.notify(_evento_sistema('A'), now=T0)
        notification_service.notify(_evento_sistema('B'), now=T0 + timedelta(seconds=1))
        assert Notification.query.filter_by(user_id=leader.id).count() == 2

    def test_status_parada_es_prioridad_alta(self, app, leader, machine):
        evento = notification_service.machine_status_event(machine, 'FUNCIONANDO', 'PARADA', reason='Quebra')
        notificacion = notification_service.notify(evento, now=T0)[0]

        assert notificacion.priority == 'HIGH'
        assert notificacion.to_dict()['metadata']['new_status'] == 'PARADA'
        assert notificacion.typed_payload.reason == 'Quebra'


class TestLectura:

    @pytest.fixture
    def bandeja(self, app, leader):
        for i in range(3):
            notification_service.notify(_evento_sistema(f"msg {i}"), now=T0 + timedelta(minutes=i))
        # Global (user_id None): visible para todos
        db.session.add(Notification(
            user_id=None, type='SYSTEM', title='Aviso', message='Parada geral às 18h',
            dedupe_key='global-1', dedupe_bucket=0, created_at=T0 + timedelta(minutes=10)
        ))
        db.session.commit()
        return leader

    def test_paginacion_y_orden(self, bandeja):
        pagina = notification_service.get_notifications(bandeja.id, page=1, limit=2)
        assert pagina['pagination'] == {'page': 1, 'limit': 2, 'total': 4, 'pages': 2}
        assert pagina['data'][0]['message'] == 'Parada geral às 18h'

    def test_marcar_leida(self, bandeja):
        assert notification_service.unread_count(bandeja.id) == 4
        primera = notification_service.get_notifications(bandeja.id)['data'][-1]

        leida = notification_service.mark_as_read(primera['id'], bandeja.id)

        assert leida.read is True
        assert leida.read_at is not None
        assert notification_service.unread_count(bandeja.id) == 3

    def test_no_puede_leer_la_de_otro(self, bandeja, make_user):
        otro = make_user('MANAGER')
        ajena = Notification.query.filter_by(user_id=bandeja.id).first()
        with pytest.raises(NotFound):
            notification_service.mark_as_read(ajena.id, otro.id)

    def test_marcar_todas(self, bandeja):
        assert notification_service.mark_all_as_read(bandeja.id) == 4
        assert notification_service.unread_count(bandeja.id) == 0
        solo_no_leidas = notification_service.get_notifications(bandeja.id, unread_only=True)
        assert solo_no_leidas['data'] == []
