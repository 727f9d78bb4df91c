"""
Reintento único con backoff para errores transitorios de almacenamiento.
Tras agotar el reintento, las carreras de constraint se reportan como
ConflictActiveOperation y los fallos de conexión/timeout como Unavailable.
"""
import time
import logging
from functools import wraps

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from zara.extensions import db
from zara.utils.error_utils import ConflictActiveOperation, Unavailable

logger = logging.getLogger('zara.retry')


def retry_on_storage_error(retries=1, conflict_message='Conflito de operação ativa'):
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return f(*args, **kwargs)
                except (IntegrityError, OperationalError) as e:
                    db.session.rollback()
                    attempt += 1
                    if attempt > retries:
                        logger.warning(f"{f.__name__}: falla definitiva tras {attempt} intentos: {e.__class__.__name__}")
                        if isinstance(e, IntegrityError):
                            raise ConflictActiveOperation(conflict_message) from e
                        raise Unavailable('Banco de dados indisponível, tente novamente') from e
                    # backoff simple: base, 2x base, ...
                    wait = current_app.config.get('STORAGE_RETRY_BACKOFF', 0.2) * (2 ** (attempt - 1))
                    logger.info(f"{f.__name__}: {e.__class__.__name__} (intento {attempt}/{retries}), reintento en {wait:.2f}s")
                    time.sleep(wait)
        return wrapper
    return decorator
