"""
Adaptador de autenticación.
Verifica el Bearer JWT emitido por la capa de autenticación y deja en `g`
la identidad {user_id, role}. El núcleo confía en esa identidad.
"""
from datetime import datetime, timedelta, timezone
from functools import wraps

from flask import current_app, g, request, jsonify
from jose import jwt, JWTError, ExpiredSignatureError

from zara.extensions import db
from zara.models.user import User, Role
from zara.utils.error_utils import Unauthorized, Forbidden

# Roles con acceso amplio a nivel de rutas (capa de autorización por rol)
SUPERVISOR_ROLES = (Role.LEADER.value, Role.MANAGER.value, Role.ADMIN.value)
MANAGEMENT_ROLES = (Role.MANAGER.value, Role.ADMIN.value)


def create_access_token(user_id, role, expires_minutes=60 * 12):
    """Usado por scripts y tests; en producción el token lo emite la capa de auth."""
    ahora = datetime.now(timezone.utc)
    claims = {
        'sub': str(user_id),
        'role': role,
        'iat': ahora,
        'exp': ahora + timedelta(minutes=expires_minutes)
    }
    return jwt.encode(claims, current_app.config['JWT_SECRET'], algorithm=current_app.config['JWT_ALGORITHM'])


def decode_token(token):
    try:
        claims = jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=[current_app.config['JWT_ALGORITHM']]
        )
    except ExpiredSignatureError:
        raise Unauthorized('Token expirado', code='TOKEN_EXPIRED')
    except JWTError:
        raise Unauthorized('Token inválido', code='INVALID_TOKEN')

    try:
        user_id = int(claims['sub'])
    except (KeyError, TypeError, ValueError):
        raise Unauthorized('Token inválido', code='INVALID_TOKEN')
    return user_id, claims.get('role')


def authenticate(token):
    user_id, _ = decode_token(token)
    user = db.session.get(User, user_id)
    if user is None:
        raise Unauthorized('Usuário não encontrado', code='USER_NOT_FOUND')
    if not user.is_active:
        raise Unauthorized('Usuário inativo', code='USER_INACTIVE')
    return user


def _bearer_token():
    header = request.headers.get('Authorization', '')
    partes = header.split(' ')
    if len(partes) == 2 and partes[0].lower() == 'bearer':
        return partes[1]
    return None


def current_user():
    return g.get('current_user')


def require_auth(roles=None):
    """
    Decorator: exige token válido y, opcionalmente, uno de los roles dados.
    El rol se toma del usuario en BD, no del token.
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                token = _bearer_token()
                if not token:
                    raise Unauthorized('Token de acesso requerido', code='NO_TOKEN')
                user = authenticate(token)
                if roles and user.role not in roles:
                    raise Forbidden('Acesso negado - permissão insuficiente',
                                    code='INSUFFICIENT_PERMISSION',
                                    payload={'required': list(roles), 'current': user.role})
            except (Unauthorized, Forbidden) as e:
                return jsonify(e.to_dict()), e.status_code
            g.current_user = user
            return f(*args, **kwargs)
        return wrapper
    return decorator


def require_machine_permission(capability):
    """
    Decorator para rutas /machines/<machine_id>/...: supervisores pasan por rol,
    los operadores necesitan la fila en machine_permission.
    Debe ir después de require_auth.
    """
    from zara.services import permission_gate

    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            user = current_user()
            machine_id = kwargs.get('machine_id')
            if user.role not in SUPERVISOR_ROLES and not permission_gate.check(user.id, machine_id, capability):
                e = Forbidden('Sem permissão para esta máquina', code='MACHINE_PERMISSION_DENIED')
                return jsonify(e.to_dict()), e.status_code
            return f(*args, **kwargs)
        return wrapper
    return decorator
