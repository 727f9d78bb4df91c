from flask_cors import CORS
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
cors = CORS()
# Canal de tiempo real (estado de máquinas, operaciones, notificaciones)
socketio = SocketIO()
