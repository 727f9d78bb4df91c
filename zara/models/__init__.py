# Importar todos los modelos para facilitar acceso
from zara.models.user import User, Role, LEADERSHIP_ROLES
from zara.models.machine import Machine, MachineStatus, MachineStatusHistory, record_status_change
from zara.models.operation import Operation, OperationStatus
from zara.models.shift import ShiftData, ShiftType
from zara.models.permission import MachinePermission, CAPABILITIES
from zara.models.notification import (
    Notification,
    NotificationType,
    Priority,
    MachineStatusPayload,
    OperationPayload,
    SystemPayload,
)
