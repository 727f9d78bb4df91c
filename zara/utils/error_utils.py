"""
Utilidades centralizadas para manejo de errores y respuestas estandarizadas.
Provee la jerarquía de errores del dominio, helpers de respuesta y logging estructurado.
"""
from flask import jsonify, current_app
from functools import wraps
import traceback
import logging
from datetime import datetime, timezone

# Configurar logger
logger = logging.getLogger('zara')


def _timestamp():
    return datetime.now(timezone.utc).isoformat()


class APIError(Exception):
    """
    Excepción base para errores de API.
    Permite especificar código HTTP, código interno y mensaje.
    """
    status_code = 400
    code = 'BAD_REQUEST'

    def __init__(self, message, status_code=None, payload=None, code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['error'] = self.message
        rv['code'] = self.code
        rv['status'] = self.status_code
        rv['timestamp'] = _timestamp()
        return rv


class ValidationError(APIError):
    """Entrada mal formada (ej: velocidad de producción negativa)."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class PermissionDenied(APIError):
    """No existe MachinePermission o la capacidad pedida está en False."""
    status_code = 403
    code = 'PERMISSION_DENIED'


class NotFound(APIError):
    status_code = 404
    code = 'NOT_FOUND'


class ConflictActiveOperation(APIError):
    """Violaría la regla de una sola operación ACTIVE por máquina / por usuario."""
    status_code = 409
    code = 'ACTIVE_OPERATION_CONFLICT'


class InvalidState(APIError):
    """Transición pedida desde un estado que no la admite."""
    status_code = 409
    code = 'INVALID_STATE'


class Unavailable(APIError):
    """Error transitorio de almacenamiento que persistió tras el reintento."""
    status_code = 503
    code = 'UNAVAILABLE'


class Unauthorized(APIError):
    status_code = 401
    code = 'UNAUTHORIZED'


class Forbidden(APIError):
    status_code = 403
    code = 'FORBIDDEN'


def error_response(message, status_code=400, code=None, details=None):
    """
    Genera una respuesta de error estandarizada.

    Args:
        message: Mensaje de error para el usuario
        status_code: Código HTTP (default 400)
        code: Código de error interno (opcional)
        details: Detalles adicionales (opcional, solo en desarrollo)

    Returns:
        tuple: (response, status_code)
    """
    response = {
        'error': message,
        'status': status_code,
        'timestamp': _timestamp()
    }

    if code:
        response['code'] = code

    # Solo incluir detalles técnicos en desarrollo
    if details and current_app.debug:
        response['details'] = details

    return jsonify(response), status_code


def success_response(data=None, message=None, status_code=200):
    """
    Genera una respuesta de éxito estandarizada.

    Returns:
        tuple: (response, status_code)
    """
    response = {'success': True}

    if data is not None:
        response['data'] = data

    if message:
        response['message'] = message

    return jsonify(response), status_code


def handle_errors(f):
    """
    Decorator para manejar errores en rutas de Flask.
    Captura excepciones y las convierte en respuestas JSON estandarizadas.

    Uso:
        @bp.route('/api/example')
        @handle_errors
        def example_route():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from zara.extensions import db
        try:
            return f(*args, **kwargs)
        except APIError as e:
            db.session.rollback()
            logger.warning(f"{e.__class__.__name__} in {f.__name__}: {e.message}")
            return jsonify(e.to_dict()), e.status_code
        except ValueError as e:
            db.session.rollback()
            logger.warning(f"ValueError in {f.__name__}: {str(e)}")
            return error_response(str(e), 400, 'VALIDATION_ERROR')
        except KeyError as e:
            db.session.rollback()
            logger.warning(f"KeyError in {f.__name__}: Missing key {e}")
            return error_response(f"Campo obrigatório ausente: {e}", 400, 'MISSING_FIELD')
        except Exception as e:
            db.session.rollback()
            # Log completo del error para debugging
            logger.error(f"Unhandled error in {f.__name__}: {str(e)}")
            logger.error(traceback.format_exc())

            # Respuesta genérica al usuario
            return error_response(
                "Erro interno do servidor. Tente novamente mais tarde.",
                500,
                'SERVER_ERROR',
                details=str(e) if current_app.debug else None
            )
    return decorated_function


def log_request(route_name, **context):
    """
    Registra información de una petición con contexto.

    Args:
        route_name: Nombre de la ruta/operación
        **context: Datos adicionales de contexto (user_id, machine_id, etc.)
    """
    log_data = {
        'route': route_name,
        'timestamp': _timestamp(),
        **context
    }
    logger.info(f"REQUEST: {log_data}")


def log_operation(operation, status='success', **context):
    """
    Registra el resultado de una operación.

    Args:
        operation: Nombre de la operación (start_operation, sweep, etc.)
        status: 'success', 'warning', 'error'
        **context: Datos adicionales
    """
    log_data = {
        'operation': operation,
        'status': status,
        'timestamp': _timestamp(),
        **context
    }

    if status == 'error':
        logger.error(f"OPERATION: {log_data}")
    elif status == 'warning':
        logger.warning(f"OPERATION: {log_data}")
    else:
        logger.info(f"OPERATION: {log_data}")


# Helper para validación
def validate_required(data, required_fields):
    """
    Valida que todos los campos requeridos estén presentes.

    Raises:
        ValidationError: Si falta algún campo
    """
    if data is None:
        raise ValidationError("Payload JSON obrigatório")
    missing = [f for f in required_fields if f not in data or data[f] is None]
    if missing:
        raise ValidationError(
            f"Campos obrigatórios ausentes: {', '.join(missing)}"
        )
