"""
Helpers de fecha/hora.
En la BD todo se guarda como UTC naive; la hora local de planta solo se usa
para decidir a qué turno pertenece un instante.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow():
    """Instante actual en UTC sin tzinfo (formato de las columnas DateTime)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(naive_utc, tz_name):
    return naive_utc.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))


def to_naive_utc(value):
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def iso(value):
    return value.isoformat() if value else None
