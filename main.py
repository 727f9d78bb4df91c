import os

from zara import create_app
from zara.extensions import socketio
from zara.services.scheduler import init_scheduler

app = create_app()

# ───────────────────────────────────────────────
# Ejecución del servidor (HTTP + Socket.IO + tareas periódicas)
if __name__ == '__main__':
    scheduler = init_scheduler(app)
    if app.config.get('SCHEDULER_ENABLED'):
        scheduler.start_all()
    try:
        socketio.run(
            app,
            host=os.getenv('HOST', '0.0.0.0'),
            port=int(os.getenv('PORT', 5000)),
            allow_unsafe_werkzeug=True
        )
    finally:
        scheduler.stop_all()
