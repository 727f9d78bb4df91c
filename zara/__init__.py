import logging

from flask import Flask
from zara.config import Config
from zara.extensions import db, cors, socketio


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    if not app.config.get('JWT_SECRET') and not app.config.get('TESTING'):
        raise RuntimeError('JWT_SECRET no configurado. Defínalo en el entorno o en .env')

    logging.basicConfig(format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    logging.getLogger('zara').setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(app)
    cors.init_app(app, origins=app.config.get('CORS_ORIGINS', '*'))  # Para que el Frontend pueda llamar al Backend
    socketio.init_app(app, cors_allowed_origins=app.config.get('CORS_ORIGINS', '*'), async_mode='threading')

    # --- IMPORTAR MODELOS ---
    # Se importan aquí para que SQLAlchemy los registre antes que los blueprints.
    from zara.models import machine, user, operation, shift, permission, notification  # noqa: F401

    # --- REGISTRO DE RUTAS ---
    from zara.api.rutas_maquinas import maquinas_bp
    from zara.api.rutas_operaciones import operaciones_bp
    from zara.api.rutas_permisos import permisos_bp
    from zara.api.rutas_notificaciones import notificaciones_bp
    from zara.api.rutas_turnos import turnos_bp
    app.register_blueprint(maquinas_bp, url_prefix='/api')
    app.register_blueprint(operaciones_bp, url_prefix='/api')
    app.register_blueprint(permisos_bp, url_prefix='/api')
    app.register_blueprint(notificaciones_bp, url_prefix='/api')
    app.register_blueprint(turnos_bp, url_prefix='/api')

    from zara.sockets import register_socket_handlers
    register_socket_handlers(socketio)

    @app.route('/api/health')
    def health():
        return {'status': 'ok'}

    return app
