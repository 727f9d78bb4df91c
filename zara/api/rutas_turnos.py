from datetime import date

from flask import Blueprint, jsonify, request, send_file

from zara.auth import require_auth, SUPERVISOR_ROLES
from zara.services import shift_service
from zara.utils.error_utils import handle_errors, ValidationError
from zara.utils.time_utils import utcnow

turnos_bp = Blueprint('turnos', __name__)


def _fecha_param(nombre):
    valor = request.args.get(nombre)
    if not valor:
        return None
    try:
        return date.fromisoformat(valor)
    except ValueError:
        raise ValidationError(f"{nombre} deve estar no formato AAAA-MM-DD")


def _filtrar_historial():
    return shift_service.list_shift_history(
        machine_id=request.args.get('machine_id', type=int),
        date_from=_fecha_param('date_from'),
        date_to=_fecha_param('date_to'),
        shift_type=request.args.get('shift_type'),
        limit=request.args.get('limit', 200, type=int)
    )


@turnos_bp.route('/shifts/current', methods=['GET'])
@require_auth()
@handle_errors
def turno_actual():
    """Ventana de turno vigente en la zona horaria de la planta."""
    window = shift_service.shift_window_utc(utcnow())
    return jsonify({
        'shift_type': window.shift_type,
        'shift_date': window.shift_date.isoformat(),
        'start': window.start.isoformat(),
        'end': window.end.isoformat()
    }), 200


@turnos_bp.route('/shifts/history', methods=['GET'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def historial_turnos():
    """Query params: machine_id, date_from, date_to, shift_type, limit"""
    return jsonify([s.to_dict() for s in _filtrar_historial()]), 200


@turnos_bp.route('/shifts/summary', methods=['GET'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def resumen_turnos():
    """Query param: date (default: fecha del turno actual)"""
    fecha = _fecha_param('date') or shift_service.shift_window_utc(utcnow()).shift_date
    return jsonify(shift_service.shift_summary(fecha)), 200


@turnos_bp.route('/shifts/export', methods=['GET'])
@require_auth(roles=SUPERVISOR_ROLES)
@handle_errors
def exportar_turnos():
    """
    Descarga el historial filtrado como Excel.
    Mismos query params que /shifts/history.
    """
    buffer = shift_service.export_shifts_excel(_filtrar_historial())
    return send_file(
        buffer,
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        as_attachment=True,
        download_name=f"turnos-{utcnow().date().isoformat()}.xlsx"
    )
