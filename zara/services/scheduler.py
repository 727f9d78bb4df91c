"""
Tareas periódicas cooperativas (barrido de operaciones travadas y
actualización de producción), con ciclo de vida explícito start/stop.
"""
import logging
import threading

from zara.extensions import db
from zara.utils.error_utils import log_operation

logger = logging.getLogger('zara.scheduler')


class PeriodicTask:
    """
    Ejecuta `func` cada `interval_seconds` dentro del app context, en un hilo
    que espera el evento de parada entre ejecuciones. Un fallo en una ejecución
    se registra y el ciclo continúa.
    """

    def __init__(self, name, interval_seconds, func, app):
        if interval_seconds <= 0:
            raise ValueError('interval_seconds debe ser positivo')
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.app = app
        self._stop = threading.Event()
        self._thread = None
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def run_once(self):
        with self.app.app_context():
            try:
                return self.func()
            except Exception as e:
                self.failures += 1
                log_operation(self.name, status='error', error=str(e))
                logger.exception(f"Tarefa '{self.name}' falhou")
                return None
            finally:
                self.runs += 1
                db.session.remove()

    def _run(self):
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval_seconds)

    def start(self):
        if self.is_running:
            logger.warning(f"Tarefa '{self.name}' já está rodando")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"task-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"Tarefa '{self.name}' iniciada (cada {self.interval_seconds}s)")

    def stop(self, timeout=5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info(f"Tarefa '{self.name}' parada")


class Scheduler:
    def __init__(self):
        self.tasks = {}

    def add(self, task):
        self.tasks[task.name] = task
        return task

    def start_all(self):
        for task in self.tasks.values():
            task.start()

    def stop_all(self, timeout=5.0):
        for task in self.tasks.values():
            task.stop(timeout=timeout)


def init_scheduler(app):
    """Registra las tareas del sistema. No las arranca."""
    from zara.services import operation_service, shift_service

    scheduler = Scheduler()
    max_horas = app.config.get('STUCK_OPERATION_MAX_HOURS', 24)
    scheduler.add(PeriodicTask(
        'stuck-operation-sweep',
        app.config.get('SWEEP_INTERVAL_SECONDS', 900),
        lambda: operation_service.sweep_stuck_operations(max_age_hours=max_horas),
        app
    ))
    scheduler.add(PeriodicTask(
        'production-update',
        app.config.get('PRODUCTION_UPDATE_SECONDS', 30),
        shift_service.run_production_cycle,
        app
    ))
    app.extensions['zara_scheduler'] = scheduler
    return scheduler
