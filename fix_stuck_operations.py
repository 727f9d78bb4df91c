"""
Cancela a mano las operaciones ACTIVE que superan el límite de horas
y deja sus máquinas en PARADA. Se puede ejecutar varias veces sin efecto extra.

Uso:
    python fix_stuck_operations.py            # usa STUCK_OPERATION_MAX_HOURS
    python fix_stuck_operations.py 12         # límite de 12 horas
"""
import sys

from zara import create_app
from zara.models.operation import Operation, OperationStatus
from zara.services import operation_service
from zara.utils.time_utils import utcnow

app = create_app()

with app.app_context():
    horas = float(sys.argv[1]) if len(sys.argv) > 1 else app.config['STUCK_OPERATION_MAX_HOURS']
    ahora = utcnow()

    print("--- Operaciones ACTIVE ---")
    activas = Operation.query.filter_by(status=OperationStatus.ACTIVE.value).order_by(Operation.start_time).all()
    for op in activas:
        duracion = (ahora - op.start_time).total_seconds() / 3600
        marca = "⚠️ " if duracion > horas else "   "
        print(f"{marca}#{op.id} máquina={op.machine_id} usuario={op.user_id} {duracion:.1f}h")

    resultado = operation_service.sweep_stuck_operations(max_age_hours=horas, now=ahora)

    restantes = Operation.query.filter_by(status=OperationStatus.ACTIVE.value).count()
    print(f"\nCanceladas: {resultado['cancelled']}")
    print(f"Siguen ACTIVE: {restantes}")
    print(f"Máquinas detenidas: {resultado['machines']}")
    if resultado['failed']:
        print(f"❌ Fallaron: {resultado['failed']}")
        sys.exit(1)
    print("✅ Listo")
